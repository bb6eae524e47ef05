"""
VeritasLog error taxonomy.

Every failure the registration and verification pipelines can surface is a
subclass of VeritasLogError carrying a stable machine code, a human message
and an optional numeric detail (e.g. the measured ciphertext size).

A commitment mismatch is NOT an error: it is the negative outcome of a
verification and is reported through VerificationResult.
"""

from typing import Any, Dict, Optional


class VeritasLogError(Exception):
    """Base class for all pipeline errors."""

    code = "VERITASLOG_ERROR"
    retryable = False

    def __init__(self, message: str, detail: Optional[int] = None):
        self.message = message
        self.detail = detail
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.detail is not None:
            out["detail"] = self.detail
        return out


class InvalidInput(VeritasLogError):
    """Missing or malformed submission field. Raised before any external call."""

    code = "INVALID_INPUT"

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        out["field"] = self.field
        return out


class OversizeArtifact(VeritasLogError):
    """Encrypted artifact exceeds the configured cap."""

    code = "BLOB_TOO_LARGE"

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(
            f"Encrypted data exceeds {limit / 1024 / 1024:g}MB limit",
            detail=size,
        )

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        out["size"] = self.size
        return out


class EncryptionFailure(VeritasLogError):
    code = "ENCRYPTION_FAILED"


class UploadFailure(VeritasLogError):
    """Storage backend error. The backend exception is kept as __cause__."""

    code = "UPLOAD_FAILED"
    retryable = True


class DownloadFailure(VeritasLogError):
    code = "DOWNLOAD_FAILED"
    retryable = True


class AccessDenied(VeritasLogError):
    """The requester's policy proof was rejected. Request access, do not retry."""

    code = "NO_ACCESS"


class DecryptionFailure(VeritasLogError):
    code = "DECRYPTION_FAILED"


class SigningTimeout(DecryptionFailure):
    """The interactive session signature was not produced in time."""

    code = "SIGNATURE_TIMEOUT"
    retryable = True
