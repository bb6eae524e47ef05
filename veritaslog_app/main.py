import json
import time
from typing import Any, Dict, Optional

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse, Response

from veritaslog.encryption import EncryptionGateway
from veritaslog.errors import (
    AccessDenied,
    DecryptionFailure,
    DownloadFailure,
    EncryptionFailure,
    InvalidInput,
    OversizeArtifact,
    UploadFailure,
    VeritasLogError,
)
from veritaslog.keys import Ed25519Identity
from veritaslog.ledger import InMemoryLedger
from veritaslog.pipeline import LogRegistrar
from veritaslog.storage import (
    BlobStore,
    InMemoryBlobStore,
    RetryPolicy,
    S3BlobStore,
    StorageUploader,
    WalrusHttpBlobStore,
)
from veritaslog.threshold import HttpThresholdService, LocalThresholdService, ThresholdService
from veritaslog.util import b64d
from veritaslog.verifier import verify_file

from . import config
from .logging_config import audit_log, configure_logging, set_request_id
from .models import RegisterLogRequest, VerifyFileRequest

app = FastAPI(title="VeritasLog")

_STATUS = {
    InvalidInput: 400,
    OversizeArtifact: 413,
    AccessDenied: 403,
    EncryptionFailure: 502,
    DownloadFailure: 502,
    UploadFailure: 503,
    DecryptionFailure: 500,
}

# Backoff sleep; replaced in tests
SLEEP = time.sleep


def status_for(error: VeritasLogError) -> int:
    for cls in type(error).__mro__:
        if cls in _STATUS:
            return _STATUS[cls]
    return 500


def get_blob_store() -> BlobStore:
    if config.BLOB_BACKEND == "walrus_http":
        return WalrusHttpBlobStore(
            config.WALRUS_PUBLISHER_URL,
            config.WALRUS_AGGREGATOR_URL,
            timeout=config.STORAGE_TIMEOUT,
        )
    if config.BLOB_BACKEND == "s3":
        return S3BlobStore(bucket=config.S3_BUCKET, prefix=config.S3_PREFIX, region=config.AWS_REGION or None)
    return InMemoryBlobStore()


def get_threshold_service(ledger: InMemoryLedger) -> ThresholdService:
    if config.THRESHOLD_BACKEND == "http":
        return HttpThresholdService(config.THRESHOLD_GATEWAY_URL)
    secrets = [b64d(s) for s in config.key_server_secrets()] or None
    count = len(secrets) if secrets else max(config.KEY_SERVER_COUNT, config.THRESHOLD)
    return LocalThresholdService.create(count, policy=ledger.evaluate_access_check, master_secrets=secrets)


LEDGER = InMemoryLedger(namespace=config.POLICY_NAMESPACE)
STORE = get_blob_store()
THRESHOLD_SERVICE = get_threshold_service(LEDGER)


def get_registrar(sponsor: Ed25519Identity) -> LogRegistrar:
    gateway = EncryptionGateway(
        THRESHOLD_SERVICE,
        config.POLICY_NAMESPACE,
        threshold=config.THRESHOLD,
        max_blob_size=config.MAX_BLOB_SIZE,
    )
    uploader = StorageUploader(
        STORE,
        RetryPolicy(max_attempts=config.UPLOAD_MAX_RETRIES, base_delay=config.UPLOAD_BASE_DELAY, sleep=SLEEP),
        epochs=config.STORAGE_EPOCHS,
        deletable=True,
        signer=sponsor,
        max_blob_size=config.MAX_BLOB_SIZE,
        on_retry=lambda attempt, delay, e: audit_log.upload_retry(attempt, delay, str(e)),
    )
    return LogRegistrar(gateway, uploader, LEDGER)


def parse_meta(meta: Any) -> Dict[str, Any]:
    if isinstance(meta, str):
        try:
            meta = json.loads(meta)
        except ValueError:
            raise InvalidInput("meta", "must be a JSON object")
    if not isinstance(meta, dict):
        raise InvalidInput("meta", "is required")
    return meta


def load_sponsor() -> Optional[Ed25519Identity]:
    if not config.SPONSOR_SECRET_KEY:
        return None
    return Ed25519Identity.from_secret_b64(config.SPONSOR_SECRET_KEY)


@app.on_event("startup")
def _startup():
    configure_logging("DEBUG" if config.is_debug() else config.LOG_LEVEL, config.LOG_JSON)


@app.middleware("http")
async def _request_id(request: Request, call_next):
    request_id = set_request_id(request.headers.get("X-Request-ID"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(VeritasLogError)
async def _veritaslog_error(request: Request, exc: VeritasLogError):
    return JSONResponse(status_code=status_for(exc), content=exc.to_dict())


@app.get("/health")
def health():
    return {
        "status": "ok",
        "env": config.ENV,
        "blobBackend": config.BLOB_BACKEND,
        "thresholdBackend": config.THRESHOLD_BACKEND,
        "threshold": config.THRESHOLD,
        "config": config.validate_config(),
    }


@app.post("/api/register-log")
def register_log(req: RegisterLogRequest):
    if not req.text or req.meta is None:
        audit_log.registration_failed("INVALID_INPUT", "text and meta are required")
        raise InvalidInput("text", "text and meta are required")

    try:
        sponsor = load_sponsor()
    except ValueError:
        audit_log.security_event("invalid_sponsor_key", severity="high")
        return JSONResponse(
            status_code=500,
            content={"error": "INVALID_SPONSOR_KEY", "message": "VERITASLOG_SPONSOR_SECRET_KEY is malformed"},
        )
    if sponsor is None:
        audit_log.registration_failed("NO_SPONSOR_KEY", "sponsor key not configured")
        return JSONResponse(
            status_code=500,
            content={"error": "NO_SPONSOR_KEY", "message": "VERITASLOG_SPONSOR_SECRET_KEY not configured"},
        )

    try:
        receipt = get_registrar(sponsor).register_raw(req.text, parse_meta(req.meta), owner=sponsor.address)
    except VeritasLogError as e:
        audit_log.registration_failed(e.code, e.message)
        raise

    audit_log.log_registered(receipt.blob_id, receipt.commitment_hex, receipt.size, receipt.threshold, receipt.log_id)
    body = receipt.to_dict()
    body["success"] = True
    body["message"] = "Encrypted and uploaded"
    return body


@app.get("/api/download-log")
def download_log(blobId: str = Query("")):
    if not blobId.strip():
        raise InvalidInput("blobId", "is required")
    try:
        data = STORE.get(blobId)
    except DownloadFailure:
        audit_log.download(blobId, status="FAILED")
        raise
    audit_log.download(blobId, size=len(data))
    return Response(content=data, media_type="application/octet-stream")


@app.post("/api/verify-file")
def verify_file_endpoint(req: VerifyFileRequest):
    if req.meta is None:
        raise InvalidInput("meta", "is required")
    if req.commitmentHex is None:
        raise InvalidInput("commitmentHex", "is required")
    result = verify_file(req.text, parse_meta(req.meta), req.commitmentHex)
    audit_log.verification_result(result.mode.value, result.matched, result.expected_hex, result.computed_hex)
    return result.to_dict()
