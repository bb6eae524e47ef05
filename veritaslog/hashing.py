"""
VeritasLog Commitment Derivation

commitment = SHA-256(serialized LogBundle)

The 32-byte digest is used twice: hex-encoded it is the identity the
threshold encryption policy is bound to, and it is the tamper-evidence
commitment recorded on the ledger. The same function runs on the write path
and on every verify path.
"""

import hashlib
import hmac
import re
from typing import Iterable, Union

from .bundle import LogBundle, LogMeta
from .errors import InvalidInput

DIGEST_SIZE = 32

_HEX64 = re.compile(r"^[0-9a-f]{64}$")


def derive_identity(bundle_bytes: bytes) -> bytes:
    """SHA-256 over the exact serialized bundle bytes."""
    if isinstance(bundle_bytes, str):
        raise TypeError("derive_identity expects bytes; serialize the bundle first")
    return hashlib.sha256(bundle_bytes).digest()


def identity_hex(bundle_bytes: bytes) -> str:
    return derive_identity(bundle_bytes).hex()


def bundle_commitment(bundle: LogBundle) -> str:
    """Hex commitment of a bundle."""
    return identity_hex(bundle.to_bytes())


def commitment_for(meta: LogMeta, text: str) -> str:
    """Canonicalize `text`, wrap it with `meta` and return the hex commitment."""
    return bundle_commitment(LogBundle.build(meta, text))


def normalize_commitment(value: Union[str, bytes, bytearray, Iterable[int]]) -> str:
    """
    Normalize a commitment to 64 lowercase hex characters.

    Accepts hex strings (optionally 0x-prefixed), raw 32-byte values, or the
    list-of-byte-ints form ledgers return for vector<u8> fields.
    """
    if isinstance(value, str):
        hex_value = value.strip().lower()
        if hex_value.startswith("0x"):
            hex_value = hex_value[2:]
    elif isinstance(value, (bytes, bytearray)):
        hex_value = bytes(value).hex()
    else:
        try:
            hex_value = bytes(list(value)).hex()
        except (TypeError, ValueError):
            raise InvalidInput("commitment", "must be hex, bytes or a list of byte values")

    if not _HEX64.match(hex_value):
        raise InvalidInput("commitment", f"must be {DIGEST_SIZE} bytes of hex")
    return hex_value


def commitments_equal(a: str, b: str) -> bool:
    """Exact comparison of two normalized hex commitments in constant time."""
    return hmac.compare_digest(a.encode("ascii"), b.encode("ascii"))
