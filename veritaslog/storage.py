"""
Blob storage for encrypted artifacts.

BlobStore is the backend contract (put bytes -> BlobReference, get id ->
bytes). StorageUploader persists an EncryptedArtifact through a store with a
bounded RetryPolicy. Ciphertext and identity are fixed before the first
attempt, so every retry sends byte-identical payload.

Backends:
- InMemoryBlobStore   content-addressed dict (tests, local development)
- WalrusHttpBlobStore Walrus publisher / aggregator HTTP API
- S3BlobStore         S3 bucket, Object Lock for non-deletable blobs
"""

import base64
import hashlib
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, TypeVar
from urllib.parse import quote

from .envelope import MAX_BLOB_SIZE, EncryptedArtifact, check_artifact_size
from .errors import DownloadFailure, UploadFailure
from .keys import Ed25519Identity

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120.0  # seconds, applied to every outbound storage call
IDENTITY_ATTRIBUTE = "policy_id_hex"

T = TypeVar("T")


@dataclass(frozen=True)
class BlobReference:
    """Opaque handle returned by a successful upload. Immutable."""
    blob_id: str
    size: int = 0
    attributes: Dict[str, str] = field(default_factory=dict, compare=False)


@dataclass
class PutOptions:
    epochs: int = 1
    deletable: bool = True
    signer: Optional[Ed25519Identity] = None
    attributes: Dict[str, str] = field(default_factory=dict)


def content_blob_id(data: bytes) -> str:
    """URL-safe base64 SHA-256 of the stored bytes."""
    return base64.urlsafe_b64encode(hashlib.sha256(data).digest()).rstrip(b"=").decode("ascii")


class BlobStore(ABC):

    @abstractmethod
    def put(self, data: bytes, options: PutOptions) -> BlobReference:
        """Store bytes. Raises UploadFailure (or the backend's own error)."""
        pass

    @abstractmethod
    def get(self, blob_id: str) -> bytes:
        """Fetch bytes. Raises DownloadFailure."""
        pass


# ============================================================
# Retry policy
# ============================================================

@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded exponential backoff without jitter.

    With the defaults a failing call is attempted 3 times, sleeping 2s and
    then 4s in between. The last error is re-raised unchanged.
    `sleep` is injectable so schedules can be tested with a virtual clock.
    """
    max_attempts: int = 3
    base_delay: float = 2.0
    factor: float = 2.0
    sleep: Callable[[float], None] = time.sleep

    def delay_for(self, attempt: int) -> float:
        """Delay after failed attempt number `attempt` (1-based)."""
        return self.base_delay * (self.factor ** (attempt - 1))

    def run(
        self,
        fn: Callable[[int], T],
        on_retry: Optional[Callable[[int, float, Exception], None]] = None,
    ) -> T:
        attempts = max(1, self.max_attempts)
        for attempt in range(1, attempts + 1):
            try:
                return fn(attempt)
            except Exception as e:
                if attempt == attempts:
                    raise
                delay = self.delay_for(attempt)
                logger.warning("[Retry %d/%d] %s; waiting %.0fms", attempt, attempts, e, delay * 1000)
                if on_retry is not None:
                    on_retry(attempt, delay, e)
                self.sleep(delay)
        raise AssertionError("unreachable")


class StorageUploader:
    """Uploads encrypted artifacts with bounded retry."""

    def __init__(
        self,
        store: BlobStore,
        retry: Optional[RetryPolicy] = None,
        epochs: int = 1,
        deletable: bool = True,
        signer: Optional[Ed25519Identity] = None,
        max_blob_size: int = MAX_BLOB_SIZE,
        on_retry: Optional[Callable[[int, float, Exception], None]] = None,
    ):
        self._store = store
        self._retry = retry or RetryPolicy()
        self._epochs = epochs
        self._deletable = deletable
        self._signer = signer
        self._max_blob_size = max_blob_size
        self._on_retry = on_retry

    def upload(self, artifact: EncryptedArtifact, attributes: Optional[Dict[str, str]] = None) -> BlobReference:
        check_artifact_size(artifact.size, self._max_blob_size)

        attrs = dict(attributes or {})
        attrs[IDENTITY_ATTRIBUTE] = artifact.identity_hex
        options = PutOptions(
            epochs=self._epochs,
            deletable=self._deletable,
            signer=self._signer,
            attributes=attrs,
        )
        data = artifact.ciphertext
        return self._retry.run(lambda attempt: self._store.put(data, options), self._on_retry)


# ============================================================
# Backends
# ============================================================

class InMemoryBlobStore(BlobStore):
    """
    Content-addressed in-process store.

    `fail_next(n)` makes the next n puts raise, for retry tests.
    """

    def __init__(self):
        self.blobs: Dict[str, bytes] = {}
        self.attributes: Dict[str, Dict[str, str]] = {}
        self.put_calls: List[bytes] = []
        self.get_calls: List[str] = []
        self._failures: List[Exception] = []
        self._lock = threading.Lock()

    def fail_next(self, count: int, error: Optional[Exception] = None) -> None:
        with self._lock:
            for _ in range(count):
                self._failures.append(error or UploadFailure("storage node unavailable"))

    def put(self, data: bytes, options: PutOptions) -> BlobReference:
        with self._lock:
            self.put_calls.append(data)
            if self._failures:
                raise self._failures.pop(0)
            blob_id = content_blob_id(data)
            self.blobs[blob_id] = bytes(data)
            self.attributes[blob_id] = dict(options.attributes)
            return BlobReference(blob_id=blob_id, size=len(data), attributes=dict(options.attributes))

    def get(self, blob_id: str) -> bytes:
        with self._lock:
            self.get_calls.append(blob_id)
            data = self.blobs.get(blob_id)
        if data is None:
            raise DownloadFailure(f"blob {blob_id} not found")
        return data


class WalrusHttpBlobStore(BlobStore):
    """
    Walrus HTTP API client.

    PUT {publisher}/v1/blobs?epochs=N[&deletable=true][&send_object_to=addr]
    GET {aggregator}/v1/blobs/{blob_id}

    Attributes are forwarded as `X-Blob-Attribute-<name>` headers.
    """

    def __init__(self, publisher_url: str, aggregator_url: str, timeout: float = DEFAULT_TIMEOUT, session: Any = None):
        import requests

        self._publisher = publisher_url.rstrip("/")
        self._aggregator = aggregator_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()

    def put(self, data: bytes, options: PutOptions) -> BlobReference:
        import requests

        params: Dict[str, Any] = {"epochs": options.epochs}
        if options.deletable:
            params["deletable"] = "true"
        if options.signer is not None:
            params["send_object_to"] = options.signer.address
        headers = {f"X-Blob-Attribute-{k}": v for k, v in options.attributes.items()}

        try:
            r = self._session.put(
                f"{self._publisher}/v1/blobs",
                params=params,
                data=data,
                headers=headers,
                timeout=self._timeout,
            )
            r.raise_for_status()
            body = r.json()
        except requests.RequestException as e:
            raise UploadFailure(f"Walrus publisher error: {e}") from e
        except ValueError as e:
            raise UploadFailure("Walrus publisher returned non-JSON response") from e

        blob_id = _walrus_blob_id(body)
        if not blob_id:
            raise UploadFailure("Walrus publisher response carried no blob id")
        return BlobReference(blob_id=blob_id, size=len(data), attributes=dict(options.attributes))

    def get(self, blob_id: str) -> bytes:
        import requests

        try:
            r = self._session.get(f"{self._aggregator}/v1/blobs/{quote(blob_id, safe='')}", timeout=self._timeout)
        except requests.RequestException as e:
            raise DownloadFailure(f"Walrus aggregator unreachable: {e}") from e
        if r.status_code == 404:
            raise DownloadFailure(f"blob {blob_id} not found")
        if r.status_code != 200:
            raise DownloadFailure(f"Failed to download from Walrus: {r.status_code}")
        return r.content


def _walrus_blob_id(body: Any) -> Optional[str]:
    if not isinstance(body, dict):
        return None
    created = body.get("newlyCreated")
    if isinstance(created, dict):
        return (created.get("blobObject") or {}).get("blobId")
    certified = body.get("alreadyCertified")
    if isinstance(certified, dict):
        return certified.get("blobId")
    return None


class S3BlobStore(BlobStore):
    """
    Stores each blob as an S3 object keyed by its content digest.

    Non-deletable blobs are written with Object Lock in COMPLIANCE mode and
    retained for epochs * epoch_days. Requires a bucket with Object Lock
    enabled for that case.
    Docs: https://docs.aws.amazon.com/AmazonS3/latest/userguide/object-lock.html
    """

    def __init__(self, bucket: str, prefix: str = "veritaslog/blobs/", epoch_days: int = 14,
                 region: Optional[str] = None, client: Any = None):
        self.bucket = bucket
        self.prefix = prefix.rstrip("/") + "/"
        self.epoch_days = epoch_days
        self._region = region
        self._client = client

    def _get_client(self):
        """Lazy-load boto3 client."""
        if self._client is None:
            try:
                import boto3
            except ImportError as e:
                raise RuntimeError("boto3 required for S3 blob storage. Install with: pip install boto3") from e
            self._client = boto3.client("s3", region_name=self._region)
        return self._client

    def put(self, data: bytes, options: PutOptions) -> BlobReference:
        blob_id = content_blob_id(data)
        metadata = dict(options.attributes)
        if options.signer is not None:
            metadata["signer"] = options.signer.address

        kwargs: Dict[str, Any] = {
            "Bucket": self.bucket,
            "Key": self.prefix + blob_id,
            "Body": data,
            "ContentType": "application/octet-stream",
            "Metadata": metadata,
        }
        if not options.deletable:
            kwargs["ObjectLockMode"] = "COMPLIANCE"
            kwargs["ObjectLockRetainUntilDate"] = (
                datetime.now(timezone.utc) + timedelta(days=options.epochs * self.epoch_days)
            )
        try:
            self._get_client().put_object(**kwargs)
        except RuntimeError:
            raise
        except Exception as e:
            raise UploadFailure(f"S3 put_object failed: {e}") from e
        return BlobReference(blob_id=blob_id, size=len(data), attributes=dict(options.attributes))

    def get(self, blob_id: str) -> bytes:
        try:
            resp = self._get_client().get_object(Bucket=self.bucket, Key=self.prefix + blob_id)
            return resp["Body"].read()
        except RuntimeError:
            raise
        except Exception as e:
            code = getattr(e, "response", {}).get("Error", {}).get("Code", "")
            if code in ("NoSuchKey", "404"):
                raise DownloadFailure(f"blob {blob_id} not found") from e
            raise DownloadFailure(f"S3 get_object failed: {e}") from e
