"""
Encryption Gateway.

Turns (metadata, raw text) into an EncryptedArtifact:

1. Canonicalize the text and wrap it in a v1 LogBundle
2. Serialize the bundle and derive the identity (SHA-256 hex)
3. Threshold-encrypt the bundle bytes under that identity
4. Refuse the result if it exceeds the size cap

The identity is computed exactly once per registration and the same value is
used as the policy identity and as the ledger commitment.
"""

import logging
from typing import Any, Mapping, Optional, Union

from .bundle import LogBundle, LogMeta
from .envelope import MAX_BLOB_SIZE, EncryptedArtifact, EncryptedEnvelope, EnvelopeError, check_artifact_size
from .errors import EncryptionFailure, InvalidInput, OversizeArtifact
from .hashing import identity_hex
from .threshold import EncryptRequest, ThresholdService, ThresholdServiceError

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 2


def resolve_threshold(value: Optional[Any]) -> int:
    """Parse a configured threshold. Unset or unparseable means the default; never below 1."""
    if value is None or value == "":
        return DEFAULT_THRESHOLD
    try:
        threshold = int(value)
    except (TypeError, ValueError):
        return DEFAULT_THRESHOLD
    return max(1, threshold)


class EncryptionGateway:
    """Binds log bundles to their commitment and encrypts them."""

    def __init__(
        self,
        service: ThresholdService,
        namespace: str,
        threshold: int = DEFAULT_THRESHOLD,
        max_blob_size: int = MAX_BLOB_SIZE,
    ):
        self.service = service
        self.namespace = namespace
        self.threshold = max(1, int(threshold))
        self.max_blob_size = max_blob_size

    def encrypt_bundle(self, meta: Union[LogMeta, Mapping[str, Any]], text: str) -> EncryptedArtifact:
        if not isinstance(text, str) or not text.strip():
            raise InvalidInput("text", "log content is required")
        if not isinstance(meta, LogMeta):
            meta = LogMeta.from_dict(meta)

        bundle = LogBundle.build(meta, text)
        return self.encrypt(bundle)

    def encrypt(self, bundle: LogBundle) -> EncryptedArtifact:
        """Encrypt an already-built bundle."""
        plaintext = bundle.to_bytes()
        id_hex = identity_hex(plaintext)

        try:
            ciphertext = self.service.encrypt(EncryptRequest(
                threshold=self.threshold,
                namespace=self.namespace,
                identity_hex=id_hex,
                plaintext=plaintext,
            ))
        except ThresholdServiceError as e:
            logger.error("Threshold encryption failed for %s...: %s", id_hex[:16], e)
            raise EncryptionFailure(f"Threshold encryption failed: {e}") from e

        try:
            check_artifact_size(len(ciphertext), self.max_blob_size)
        except OversizeArtifact:
            logger.warning("Rejecting %d-byte artifact (limit %d)", len(ciphertext), self.max_blob_size)
            raise

        try:
            services = EncryptedEnvelope.parse(ciphertext).services
        except EnvelopeError as e:
            raise EncryptionFailure(f"Threshold service returned a malformed envelope: {e}") from e

        logger.info("Encrypted bundle %s... (%d bytes, %d-of-%d)",
                    id_hex[:16], len(ciphertext), self.threshold, len(services))
        return EncryptedArtifact(
            ciphertext=ciphertext,
            identity_hex=id_hex,
            threshold=self.threshold,
            namespace=self.namespace,
            services=services,
        )
