"""
Registration pipeline.

Submission -> canonicalize -> bundle -> commitment -> threshold encrypt
-> upload (with retry) -> optional ledger record -> RegistrationReceipt.

Validation runs before any external call. The commitment in the receipt is
the same value the ciphertext's policy identity was derived from.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from .bundle import LogMeta, Severity
from .encryption import EncryptionGateway
from .errors import InvalidInput
from .ledger import Ledger
from .storage import BlobReference, StorageUploader

logger = logging.getLogger(__name__)


@dataclass
class Submission:
    """A log as entered by an operator."""
    title: str
    severity: Any
    module_name: str
    narrative: str
    notes: str = ""
    created_at: Optional[int] = None

    @classmethod
    def from_form(cls, data: Mapping[str, Any]) -> "Submission":
        """Build from a camelCase form payload ({title, severity, moduleName, narrative, notes, createdAt})."""
        return cls(
            title=data.get("title"),
            severity=data.get("severity"),
            module_name=data.get("moduleName"),
            narrative=data.get("narrative"),
            notes=data.get("notes") or "",
            created_at=data.get("createdAt"),
        )

    def validate(self) -> None:
        for name, value in (("title", self.title), ("moduleName", self.module_name), ("narrative", self.narrative)):
            if not isinstance(value, str) or not value.strip():
                raise InvalidInput(name, "is required")
        Severity.parse(self.severity)
        if not isinstance(self.notes, str):
            raise InvalidInput("notes", "must be a string")

    def to_meta(self, now: int) -> LogMeta:
        self.validate()
        created_at = now if self.created_at is None else self.created_at
        return LogMeta.from_dict({
            "title": self.title,
            "severity": Severity.parse(self.severity).value,
            "moduleName": self.module_name,
            "notes": self.notes,
            "createdAt": created_at,
        })


@dataclass(frozen=True)
class RegistrationReceipt:
    blob_id: str
    commitment_hex: str
    threshold: int
    namespace: str
    services: Tuple[str, ...] = ()
    size: int = 0
    created_at: int = 0
    severity_code: int = 0
    log_id: Optional[int] = None
    attributes: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "blobId": self.blob_id,
            "commitmentHex": self.commitment_hex,
            "size": self.size,
            "createdAt": self.created_at,
            "severityCode": self.severity_code,
            "encryption": {
                "identityHex": self.commitment_hex,
                "threshold": self.threshold,
                "namespace": self.namespace,
                "services": list(self.services),
            },
        }
        if self.log_id is not None:
            out["logId"] = self.log_id
        return out


class LogRegistrar:
    """Runs the write path end to end."""

    def __init__(
        self,
        gateway: EncryptionGateway,
        uploader: StorageUploader,
        ledger: Optional[Ledger] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.gateway = gateway
        self.uploader = uploader
        self.ledger = ledger
        self._clock = clock

    def register(self, submission: Submission, owner: Optional[str] = None) -> RegistrationReceipt:
        meta = submission.to_meta(int(self._clock()))
        return self._register(meta, submission.narrative, owner)

    def register_raw(self, text: str, meta: Mapping[str, Any], owner: Optional[str] = None) -> RegistrationReceipt:
        """Register already-assembled (text, meta) as submitted over the API."""
        if not isinstance(meta, Mapping):
            raise InvalidInput("meta", "must be an object")
        return self._register(LogMeta.from_dict(meta), text, owner)

    def _register(self, meta: LogMeta, text: str, owner: Optional[str]) -> RegistrationReceipt:
        if self.ledger is not None and not owner:
            raise InvalidInput("owner", "is required when recording on a ledger")

        artifact = self.gateway.encrypt_bundle(meta, text)
        ref: BlobReference = self.uploader.upload(artifact)

        log_id = None
        if self.ledger is not None:
            log_id = self.ledger.register_log(
                ref.blob_id, artifact.identity_hex, meta.created_at, meta.severity.code, owner
            )

        logger.info("Registered log blob=%s commitment=%s...", ref.blob_id, artifact.identity_hex[:16])
        return RegistrationReceipt(
            blob_id=ref.blob_id,
            commitment_hex=artifact.identity_hex,
            threshold=artifact.threshold,
            namespace=artifact.namespace,
            services=artifact.services,
            size=artifact.size,
            created_at=meta.created_at,
            severity_code=meta.severity.code,
            log_id=log_id,
            attributes=dict(ref.attributes),
        )
