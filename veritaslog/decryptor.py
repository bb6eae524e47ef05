"""
Access-Gated Decryptor.

Given a blob reference and a requester, fetch the ciphertext, read the
identity from the envelope, build the policy proof, obtain a session
credential and ask the threshold service to decrypt. Key servers release
shares only when the ledger approves the proof.

Failure mapping:
- storage problems               -> DownloadFailure
- malformed envelope / plaintext -> DecryptionFailure
- policy rejection               -> AccessDenied
- slow interactive signature     -> SigningTimeout
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Union

from .bundle import LogBundle
from .envelope import EncryptedEnvelope, EnvelopeError
from .errors import AccessDenied, DecryptionFailure, DownloadFailure, InvalidInput, VeritasLogError
from .ledger import LedgerError
from .session import SessionCredentialCache, SessionError
from .storage import BlobReference, BlobStore
from .threshold import NoAccessError, ThresholdService, ThresholdServiceError
from .util import mask_address

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DecryptedLog:
    blob_id: str
    bundle: LogBundle
    plaintext: bytes
    envelope: EncryptedEnvelope

    @property
    def identity_hex(self) -> str:
        return self.envelope.identity_hex


class AccessGatedDecryptor:

    def __init__(self, blob_store: BlobStore, threshold_service: ThresholdService, sessions: SessionCredentialCache):
        self.blob_store = blob_store
        self.threshold_service = threshold_service
        self.sessions = sessions

    def fetch(self, blob_ref: Union[BlobReference, str]) -> bytes:
        """Download raw envelope bytes."""
        blob_id = blob_ref.blob_id if isinstance(blob_ref, BlobReference) else blob_ref
        if not isinstance(blob_id, str) or not blob_id.strip():
            raise InvalidInput("blobId", "is required")
        try:
            return self.blob_store.get(blob_id)
        except DownloadFailure:
            raise
        except Exception as e:
            raise DownloadFailure(f"Failed to download blob {blob_id}: {e}") from e

    def decrypt(self, blob_ref: Union[BlobReference, str], requester: Any, proof_builder: Any) -> DecryptedLog:
        """
        Decrypt a stored log for `requester`.

        Args:
            blob_ref: BlobReference or blob id
            requester: object with `address` and `sign_personal_message(message)`
            proof_builder: object with `build(identity_hex, address) -> bytes`
        """
        blob_id = blob_ref.blob_id if isinstance(blob_ref, BlobReference) else blob_ref
        data = self.fetch(blob_id)

        try:
            envelope = EncryptedEnvelope.parse(data)
        except EnvelopeError as e:
            raise DecryptionFailure(f"Stored blob is not a valid envelope: {e}") from e
        if envelope.namespace != self.sessions.namespace:
            raise DecryptionFailure(
                f"Envelope namespace {envelope.namespace!r} does not match session namespace"
            )

        try:
            proof = proof_builder.build(envelope.identity_hex, requester.address)
        except LedgerError as e:
            raise DecryptionFailure(f"Could not build access proof: {e}") from e

        try:
            credential = self.sessions.get_or_create(requester)
        except VeritasLogError:
            raise
        except SessionError as e:
            raise DecryptionFailure(f"Session credential rejected: {e}") from e

        try:
            plaintext = self.threshold_service.decrypt(data, credential, proof)
        except NoAccessError as e:
            logger.warning("Access denied for %s on blob %s", mask_address(requester.address), blob_id)
            raise AccessDenied("not allowed") from e
        except ThresholdServiceError as e:
            raise DecryptionFailure(f"Threshold decryption failed: {e}") from e

        bundle = _decode_bundle(plaintext)
        logger.info("Decrypted blob %s for %s", blob_id, mask_address(requester.address))
        return DecryptedLog(blob_id=blob_id, bundle=bundle, plaintext=plaintext, envelope=envelope)


def _decode_bundle(plaintext: bytes) -> LogBundle:
    try:
        data = json.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise DecryptionFailure("Decrypted payload is not UTF-8 JSON") from e
    try:
        return LogBundle.from_dict(data)
    except InvalidInput as e:
        raise DecryptionFailure(f"Decrypted payload is not a log bundle: {e.message}") from e
