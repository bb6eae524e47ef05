"""
Logging configuration for the VeritasLog service.

Every line is a JSON object carrying the request id of the HTTP call that
produced it, so registration, upload retries and verification outcomes of
one request can be correlated downstream.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import IO, Any, Dict, Optional

SERVICE_NAME = "veritaslog"

# Loggers of HTTP and AWS clients that are too chatty at INFO
NOISY_LOGGERS = ("urllib3", "botocore", "boto3", "s3transfer")

MAX_REQUEST_ID_LENGTH = 64

request_id_var: ContextVar[str] = ContextVar('request_id', default='')


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, with audit fields merged at top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime(record.created)),
            "service": SERVICE_NAME,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.levelno >= logging.WARNING:
            entry["where"] = f"{record.module}.{record.funcName}:{record.lineno}"

        request_id = request_id_var.get()
        if request_id:
            entry["request_id"] = request_id

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        entry.update(getattr(record, "extra_fields", {}))
        return json.dumps(entry, default=str)


class AuditLogger:
    """
    Logger for compliance-relevant events.

    Registrations, upload retries, downloads, verification outcomes and
    security events. Commitments are logged as 16-character prefixes.
    """

    def __init__(self, name: str = "veritaslog.audit"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event_type: str, message: str = "", **fields) -> None:
        fields["event_type"] = event_type
        self._logger.log(level, "%s: %s", event_type, message, extra={"extra_fields": fields})

    def log_registered(
        self,
        blob_id: str,
        commitment_hex: str,
        size: int,
        threshold: int,
        log_id: Optional[int] = None
    ) -> None:
        self._log(
            logging.INFO,
            "LOG_REGISTERED",
            blob_id=blob_id,
            commitment=commitment_hex[:16],
            size=size,
            threshold=threshold,
            log_id=log_id,
            message=f"Log registered as blob {blob_id}"
        )

    def upload_retry(self, attempt: int, delay: float, error: str) -> None:
        self._log(
            logging.WARNING,
            "UPLOAD_RETRY",
            attempt=attempt,
            delay_ms=int(delay * 1000),
            error=error,
            message=f"Upload attempt {attempt} failed, retrying"
        )

    def registration_failed(self, code: str, reason: str) -> None:
        level = logging.WARNING if code in ("INVALID_INPUT", "BLOB_TOO_LARGE") else logging.ERROR
        self._log(
            level,
            "REGISTRATION_FAILED",
            code=code,
            reason=reason,
            message=f"Registration failed: {code}"
        )

    def download(self, blob_id: str, size: Optional[int] = None, status: str = "SUCCESS") -> None:
        level = logging.INFO if status == "SUCCESS" else logging.WARNING
        self._log(
            level,
            "DOWNLOAD",
            blob_id=blob_id,
            size=size,
            status=status,
            message=f"Download {status} for blob {blob_id}"
        )

    def verification_result(self, mode: str, matched: bool, expected_hex: str, computed_hex: str) -> None:
        level = logging.INFO if matched else logging.WARNING
        self._log(
            level,
            "VERIFICATION_RESULT",
            mode=mode,
            matched=matched,
            expected=expected_hex[:16],
            computed=computed_hex[:16],
            message="Commitment match" if matched else "Commitment mismatch"
        )

    def security_event(
        self,
        event: str,
        severity: str = "medium",
        **details
    ) -> None:
        """Log a security-relevant event."""
        level = {
            "low": logging.INFO,
            "medium": logging.WARNING,
            "high": logging.ERROR,
            "critical": logging.CRITICAL
        }.get(severity, logging.WARNING)

        self._log(
            level,
            "SECURITY_EVENT",
            security_event=event,
            severity=severity,
            **details,
            message=f"Security event: {event}"
        )


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    stream: Optional[IO[str]] = None
) -> None:
    """
    Install a single handler on the root logger.

    Args:
        level: Log level name; unknown names fall back to INFO
        json_format: StructuredFormatter when true, plain text otherwise
        stream: Output stream, stdout by default
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for existing in list(root.handlers):
        root.removeHandler(existing)

    handler = logging.StreamHandler(stream or sys.stdout)
    if json_format:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)s [%(name)s] %(message)s'))
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(root.level, logging.WARNING))


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind a request id to the current context, generating one if absent or blank."""
    request_id = (request_id or "").strip()[:MAX_REQUEST_ID_LENGTH] or uuid.uuid4().hex
    request_id_var.set(request_id)
    return request_id


audit_log = AuditLogger()
