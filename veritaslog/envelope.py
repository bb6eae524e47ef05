"""
Encrypted envelope format.

Layout:

    MAGIC (5 bytes) | version (1 byte) | header length (4 bytes, big endian)
    | header (compact JSON) | ciphertext

The header carries everything needed to route a decryption request:
policy namespace, identity hex, threshold and the per-key-server sealed
shares. The identity is always read back from here at decrypt time; it is
never re-derived or guessed.
"""

import json
import re
import struct
from dataclasses import dataclass
from typing import Any, Dict, Tuple

from .canonicalization import to_json_bytes
from .errors import OversizeArtifact

MAGIC = b"VLENC"
ENVELOPE_VERSION = 1

MAX_BLOB_SIZE = 10 * 1024 * 1024  # 10 MiB

_PREFIX = struct.Struct(">5sBI")
_HEX64 = re.compile(r"^[0-9a-f]{64}$")


class EnvelopeError(ValueError):
    """Raised when bytes are not a well-formed envelope."""


@dataclass(frozen=True)
class KeyShare:
    """A data-key share sealed for one key server."""
    service_id: str
    index: int
    sealed_b64: str

    def to_dict(self) -> Dict[str, Any]:
        return {"service": self.service_id, "index": self.index, "sealed": self.sealed_b64}


@dataclass(frozen=True)
class EncryptedEnvelope:
    namespace: str
    identity_hex: str
    threshold: int
    shares: Tuple[KeyShare, ...]
    ciphertext: bytes
    version: int = ENVELOPE_VERSION

    @property
    def services(self) -> Tuple[str, ...]:
        return tuple(share.service_id for share in self.shares)

    def header(self) -> Dict[str, Any]:
        return {
            "namespace": self.namespace,
            "id": self.identity_hex,
            "threshold": self.threshold,
            "shares": [share.to_dict() for share in self.shares],
        }

    def to_bytes(self) -> bytes:
        header = to_json_bytes(self.header())
        return _PREFIX.pack(MAGIC, self.version, len(header)) + header + self.ciphertext

    @classmethod
    def parse(cls, data: bytes) -> "EncryptedEnvelope":
        if len(data) < _PREFIX.size:
            raise EnvelopeError("envelope truncated")
        magic, version, header_len = _PREFIX.unpack_from(data)
        if magic != MAGIC:
            raise EnvelopeError("not a VeritasLog envelope")
        if version != ENVELOPE_VERSION:
            raise EnvelopeError(f"unsupported envelope version {version}")

        start = _PREFIX.size
        end = start + header_len
        if end > len(data):
            raise EnvelopeError("envelope header truncated")
        try:
            header = json.loads(data[start:end].decode("utf-8"))
            shares = tuple(
                KeyShare(service_id=str(s["service"]), index=int(s["index"]), sealed_b64=str(s["sealed"]))
                for s in header["shares"]
            )
            envelope = cls(
                namespace=str(header["namespace"]),
                identity_hex=str(header["id"]),
                threshold=int(header["threshold"]),
                shares=shares,
                ciphertext=bytes(data[end:]),
                version=version,
            )
        except (UnicodeDecodeError, ValueError, KeyError, TypeError) as e:
            raise EnvelopeError(f"malformed envelope header: {e}") from e

        if not _HEX64.match(envelope.identity_hex):
            raise EnvelopeError("envelope identity is not a 32-byte hex digest")
        if not 1 <= envelope.threshold <= len(envelope.shares):
            raise EnvelopeError("envelope threshold out of range")
        return envelope


@dataclass(frozen=True)
class EncryptedArtifact:
    """Ciphertext plus the identity / policy metadata it is bound to."""
    ciphertext: bytes
    identity_hex: str
    threshold: int
    namespace: str
    services: Tuple[str, ...] = ()

    @property
    def size(self) -> int:
        return len(self.ciphertext)


def check_artifact_size(size: int, limit: int = MAX_BLOB_SIZE) -> None:
    """Raise OversizeArtifact if `size` exceeds `limit`."""
    if size > limit:
        raise OversizeArtifact(size=size, limit=limit)
