"""
VeritasLog Verification

Proves that a stored log has not been tampered with by re-deriving its
commitment and comparing it to the one recorded on the ledger.

Modes:
    AUTO    decrypt the stored blob, re-canonicalize the payload, rehash
    UPLOAD  hash a candidate text under the metadata of a decrypted bundle
    BUNDLE  hash a bundle supplied by the caller

All modes share the same derivation as the write path. Comparison is exact;
shortened digests only appear in human-facing messages. A mismatch is a
result, not an exception.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from .bundle import LogBundle, LogMeta
from .decryptor import AccessGatedDecryptor, DecryptedLog
from .errors import InvalidInput
from .hashing import bundle_commitment, commitments_equal, normalize_commitment
from .util import short_hex

logger = logging.getLogger(__name__)

DEFAULT_PREFIX_LENGTH = 16


class VerificationMode(str, Enum):
    AUTO = "auto"
    UPLOAD = "upload"
    BUNDLE = "bundle"


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of one verification. Full digests are always available."""
    matched: bool
    expected_hex: str
    computed_hex: str
    mode: VerificationMode
    bundle: Optional[LogBundle] = None
    prefix_length: int = DEFAULT_PREFIX_LENGTH

    @property
    def message(self) -> str:
        if self.matched:
            return "Commitment matches. Log has not been tampered with."
        return "Commitment mismatch. Log content differs from the registered commitment."

    @property
    def details(self) -> str:
        n = self.prefix_length
        if self.matched:
            return f"Commitment: {short_hex(self.computed_hex, n)}"
        return f"Expected: {short_hex(self.expected_hex, n)}\nGot: {short_hex(self.computed_hex, n)}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "matched": self.matched,
            "mode": self.mode.value,
            "expectedHex": self.expected_hex,
            "computedHex": self.computed_hex,
            "message": self.message,
            "details": self.details,
        }


class Verifier:

    def __init__(self, decryptor: Optional[AccessGatedDecryptor] = None, prefix_length: int = DEFAULT_PREFIX_LENGTH):
        self.decryptor = decryptor
        self.prefix_length = prefix_length

    def verify_bundle(
        self,
        bundle: LogBundle,
        expected: Any,
        mode: VerificationMode = VerificationMode.BUNDLE,
    ) -> VerificationResult:
        """Re-canonicalize the payload, reserialize, rehash and compare."""
        expected_hex = normalize_commitment(expected)
        recanonical = bundle.recanonicalized()
        computed_hex = bundle_commitment(recanonical)
        matched = commitments_equal(computed_hex, expected_hex)

        result = VerificationResult(
            matched=matched,
            expected_hex=expected_hex,
            computed_hex=computed_hex,
            mode=mode,
            bundle=recanonical,
            prefix_length=self.prefix_length,
        )
        if matched:
            logger.info("Verification (%s) matched %s...", mode.value, computed_hex[:self.prefix_length])
        else:
            logger.warning(
                "Verification (%s) mismatch: expected %s... got %s...",
                mode.value, expected_hex[:self.prefix_length], computed_hex[:self.prefix_length],
            )
        return result

    def verify_auto(self, blob_ref: Any, requester: Any, proof_builder: Any, expected: Any) -> VerificationResult:
        """Decrypt the stored log and check it against the ledger commitment."""
        if self.decryptor is None:
            raise ValueError("verify_auto requires a decryptor")
        expected_hex = normalize_commitment(expected)
        decrypted = self.decryptor.decrypt(blob_ref, requester, proof_builder)
        return self.verify_bundle(decrypted.bundle, expected_hex, VerificationMode.AUTO)

    def verify_candidate(
        self,
        candidate_text: str,
        decrypted: Optional[Union[DecryptedLog, LogBundle]],
        expected: Any,
    ) -> VerificationResult:
        """
        Check a candidate text against a commitment.

        The metadata comes from a previously decrypted bundle; without one
        there is nothing to bind the candidate to.
        """
        if decrypted is None:
            raise InvalidInput("decrypted", "decrypt the stored log before verifying a candidate file")
        if not isinstance(candidate_text, str):
            raise InvalidInput("text", "must be a string")
        reference = decrypted.bundle if isinstance(decrypted, DecryptedLog) else decrypted
        return self.verify_bundle(
            reference.with_payload_text(candidate_text), expected, VerificationMode.UPLOAD
        )


def verify_file(
    text: str,
    meta: Union[LogMeta, Mapping[str, Any]],
    expected: Any,
    prefix_length: int = DEFAULT_PREFIX_LENGTH,
) -> VerificationResult:
    """
    Offline verification of a file against a commitment.

    Args:
        text: Raw file contents
        meta: Log metadata (LogMeta or the submitted mapping)
        expected: Ledger commitment (hex, bytes or list of byte ints)

    Returns:
        VerificationResult in UPLOAD mode
    """
    if not isinstance(text, str):
        raise InvalidInput("text", "must be a string")
    if not isinstance(meta, LogMeta):
        meta = LogMeta.from_dict(meta)
    bundle = LogBundle.build(meta, text)
    return Verifier(prefix_length=prefix_length).verify_bundle(bundle, expected, VerificationMode.UPLOAD)
