"""
VeritasLog bundle data model.

A LogBundle is the unit that gets encrypted and committed to:

    {"v": 1, "meta": {...}, "payload": {"kind": "text"|"json", "data": "..."}}

Metadata travels inside the same bundle as the sensitive payload so the
commitment covers both. Serialization is deterministic: the same logical
bundle always yields the same bytes.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from .canonicalization import CanonicalPayload, PayloadKind, canonicalize, to_json_bytes
from .errors import InvalidInput

BUNDLE_VERSION = 1

# Key order used when metadata is built locally (matches the submission form)
META_FIELD_ORDER = ("title", "severity", "moduleName", "notes", "createdAt")


class Severity(str, Enum):
    """Log severity; the ledger stores it as a small integer code."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @property
    def code(self) -> int:
        return _SEVERITY_CODES[self]

    @classmethod
    def from_code(cls, code: int) -> "Severity":
        for severity, value in _SEVERITY_CODES.items():
            if value == code:
                return severity
        raise InvalidInput("severityCode", f"unknown severity code {code!r}")

    @classmethod
    def parse(cls, value: Any) -> "Severity":
        if isinstance(value, Severity):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().upper())
            except ValueError:
                pass
        raise InvalidInput("severity", "must be one of LOW, MEDIUM, HIGH")


_SEVERITY_CODES = {Severity.LOW: 0, Severity.MEDIUM: 1, Severity.HIGH: 2}


@dataclass(frozen=True)
class LogMeta:
    """
    Structured log metadata.

    `field_order` records the key order the metadata was received in, so a
    bundle decoded from another client re-serializes to the same bytes.
    Unknown keys are kept in `extra`.
    """
    title: str
    severity: Severity
    module_name: str
    notes: str = ""
    created_at: int = 0
    extra: Dict[str, Any] = field(default_factory=dict)
    field_order: Tuple[str, ...] = META_FIELD_ORDER

    def to_dict(self) -> Dict[str, Any]:
        known = {
            "title": self.title,
            "severity": self.severity.value,
            "moduleName": self.module_name,
            "notes": self.notes,
            "createdAt": self.created_at,
        }
        out: Dict[str, Any] = {}
        for key in self.field_order:
            if key in known:
                out[key] = known[key]
            elif key in self.extra:
                out[key] = self.extra[key]
        for key, value in known.items():
            out.setdefault(key, value)
        for key, value in self.extra.items():
            out.setdefault(key, value)
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LogMeta":
        """Validate a metadata mapping. Raises InvalidInput on bad fields."""
        if not isinstance(data, Mapping):
            raise InvalidInput("meta", "must be an object")

        title = _require_str(data, "title")
        module_name = _require_str(data, "moduleName")
        severity = Severity.parse(data.get("severity"))

        notes = data.get("notes", "")
        if notes is None:
            notes = ""
        if not isinstance(notes, str):
            raise InvalidInput("notes", "must be a string")

        created_at = data.get("createdAt", 0)
        if isinstance(created_at, bool) or not isinstance(created_at, int) or created_at < 0:
            raise InvalidInput("createdAt", "must be a non-negative integer (unix seconds)")

        extra = {k: v for k, v in data.items() if k not in META_FIELD_ORDER}
        return cls(
            title=title,
            severity=severity,
            module_name=module_name,
            notes=notes,
            created_at=created_at,
            extra=extra,
            field_order=tuple(data.keys()),
        )


def _require_str(data: Mapping[str, Any], name: str) -> str:
    value = data.get(name)
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput(name, "is required")
    return value


@dataclass(frozen=True)
class LogBundle:
    meta: LogMeta
    payload: CanonicalPayload
    version: int = BUNDLE_VERSION

    @classmethod
    def build(cls, meta: LogMeta, text: str) -> "LogBundle":
        """Canonicalize raw text and wrap it with metadata."""
        return cls(meta=meta, payload=canonicalize(text))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "v": self.version,
            "meta": self.meta.to_dict(),
            "payload": self.payload.to_dict(),
        }

    def to_bytes(self) -> bytes:
        """Exact bytes the commitment is computed over."""
        return to_json_bytes(self.to_dict())

    def recanonicalized(self) -> "LogBundle":
        """Same bundle with the payload text run through the canonicalizer again."""
        return LogBundle(meta=self.meta, payload=canonicalize(self.payload.data), version=self.version)

    def with_payload_text(self, text: str) -> "LogBundle":
        return LogBundle(meta=self.meta, payload=canonicalize(text), version=self.version)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LogBundle":
        if not isinstance(data, Mapping):
            raise InvalidInput("bundle", "must be an object")

        version = data.get("v")
        if isinstance(version, bool) or not isinstance(version, int):
            raise InvalidInput("v", "must be an integer")

        payload = data.get("payload")
        if not isinstance(payload, Mapping):
            raise InvalidInput("payload", "must be an object")
        try:
            kind = PayloadKind(payload.get("kind"))
        except ValueError:
            raise InvalidInput("payload.kind", "must be 'text' or 'json'")
        payload_data = payload.get("data")
        if not isinstance(payload_data, str):
            raise InvalidInput("payload.data", "must be a string")

        return cls(
            meta=LogMeta.from_dict(data.get("meta")),
            payload=CanonicalPayload(kind, payload_data),
            version=version,
        )


def severity_code(value: Optional[Any]) -> int:
    return Severity.parse(value).code
