"""
Configuration module for the VeritasLog service.

Centralizes all configuration with environment variable support
and validation.
"""

import os
from typing import Dict, List

from veritaslog.encryption import resolve_threshold

# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("VERITASLOG_ENV", "dev")  # dev|stage|prod

# Threshold encryption
THRESHOLD = resolve_threshold(os.getenv("VERITASLOG_THRESHOLD"))
THRESHOLD_BACKEND = os.getenv("VERITASLOG_THRESHOLD_BACKEND", "local")  # local|http
THRESHOLD_GATEWAY_URL = os.getenv("VERITASLOG_THRESHOLD_GATEWAY_URL", "")
# Comma-separated base64 master secrets, one per local key server
KEY_SERVER_SECRETS = os.getenv("VERITASLOG_KEY_SERVER_SECRETS", "")
KEY_SERVER_COUNT = int(os.getenv("VERITASLOG_KEY_SERVER_COUNT", "3"))
POLICY_NAMESPACE = os.getenv("VERITASLOG_POLICY_NAMESPACE", "veritaslog")

# Size cap (bytes)
MAX_BLOB_SIZE = int(os.getenv("VERITASLOG_MAX_BLOB_SIZE", str(10 * 1024 * 1024)))

# Upload retry
UPLOAD_MAX_RETRIES = int(os.getenv("VERITASLOG_UPLOAD_MAX_RETRIES", "3"))
UPLOAD_BASE_DELAY = float(os.getenv("VERITASLOG_UPLOAD_BASE_DELAY", "2.0"))

# Blob storage
BLOB_BACKEND = os.getenv("VERITASLOG_BLOB_BACKEND", "memory")  # memory|walrus_http|s3
STORAGE_EPOCHS = int(os.getenv("VERITASLOG_STORAGE_EPOCHS", "1"))
STORAGE_TIMEOUT = float(os.getenv("VERITASLOG_STORAGE_TIMEOUT", "120"))
WALRUS_PUBLISHER_URL = os.getenv("VERITASLOG_WALRUS_PUBLISHER_URL", "https://publisher.walrus-testnet.walrus.space")
WALRUS_AGGREGATOR_URL = os.getenv("VERITASLOG_WALRUS_AGGREGATOR_URL", "https://aggregator.walrus-testnet.walrus.space")
S3_BUCKET = os.getenv("VERITASLOG_S3_BUCKET", "")
S3_PREFIX = os.getenv("VERITASLOG_S3_PREFIX", "veritaslog/blobs/")
AWS_REGION = os.getenv("AWS_REGION", "")

# Upload sponsor (signs / pays for blob writes)
SPONSOR_SECRET_KEY = os.getenv("VERITASLOG_SPONSOR_SECRET_KEY", "")

# Logging
LOG_LEVEL = os.getenv("VERITASLOG_LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("VERITASLOG_LOG_JSON", "1").lower() in ("1", "true", "yes")


def key_server_secrets() -> List[str]:
    return [s.strip() for s in KEY_SERVER_SECRETS.split(",") if s.strip()]


# ============================================================
# Validation
# ============================================================

def validate_config() -> Dict[str, bool]:
    """
    Check that the settings the selected backends need are present.
    Returns dict of setting -> configured.
    """
    checks = {"sponsor_secret_key": bool(SPONSOR_SECRET_KEY)}

    if BLOB_BACKEND == "walrus_http":
        checks["walrus_publisher_url"] = bool(WALRUS_PUBLISHER_URL)
        checks["walrus_aggregator_url"] = bool(WALRUS_AGGREGATOR_URL)
    elif BLOB_BACKEND == "s3":
        checks["s3_bucket"] = bool(S3_BUCKET)

    if THRESHOLD_BACKEND == "http":
        checks["threshold_gateway_url"] = bool(THRESHOLD_GATEWAY_URL)
    elif is_production():
        checks["key_server_secrets"] = len(key_server_secrets()) >= THRESHOLD

    return checks


# ============================================================
# Feature Flags
# ============================================================

def is_production() -> bool:
    """Check if running in production mode."""
    return ENV == "prod"


def is_debug() -> bool:
    """Check if debug mode is enabled."""
    return os.getenv("VERITASLOG_DEBUG", "").lower() in ("1", "true", "yes")
