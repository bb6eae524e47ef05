"""
VeritasLog Reference Implementation

Version: 1.0.0

Tamper-evident, access-controlled compliance logs.

A log is canonicalized and wrapped with its metadata into a bundle. The
SHA-256 of the serialized bundle is the commitment:

    commitment = SHA-256(serialize({v: 1, meta, payload}))

The same commitment is the identity the bundle is threshold-encrypted under,
so only requesters the ledger approves for that exact commitment can obtain
key shares. Verification re-derives the commitment and compares it exactly.

Usage:
    from veritaslog import (
        EncryptionGateway,
        LocalThresholdService,
        InMemoryBlobStore,
        InMemoryLedger,
        LogRegistrar,
        StorageUploader,
        Submission,
    )

    ledger = InMemoryLedger()
    service = LocalThresholdService.create(3, policy=ledger.evaluate_access_check)
    registrar = LogRegistrar(
        EncryptionGateway(service, ledger.namespace, threshold=2),
        StorageUploader(InMemoryBlobStore()),
        ledger,
    )
    receipt = registrar.register(Submission(
        title="Outage", severity="HIGH", module_name="Ops", narrative="details",
    ), owner=owner.address)

    # Later: decrypt and verify
    result = Verifier(decryptor).verify_auto(
        receipt.blob_id, owner, AccessCheckBuilder(ledger, receipt.log_id), receipt.commitment_hex
    )
    assert result.matched
"""

__version__ = "1.0.0"

# Canonicalization and data model
from .canonicalization import (
    CanonicalPayload,
    PayloadKind,
    canonicalize,
    normalize_text,
    to_json,
    to_json_bytes,
)
from .bundle import (
    BUNDLE_VERSION,
    LogBundle,
    LogMeta,
    Severity,
    severity_code,
)

# Commitments
from .hashing import (
    bundle_commitment,
    commitment_for,
    commitments_equal,
    derive_identity,
    identity_hex,
    normalize_commitment,
)

# Errors
from .errors import (
    VeritasLogError,
    InvalidInput,
    OversizeArtifact,
    EncryptionFailure,
    UploadFailure,
    DownloadFailure,
    AccessDenied,
    DecryptionFailure,
    SigningTimeout,
)

# Encryption
from .envelope import MAX_BLOB_SIZE, EncryptedArtifact, EncryptedEnvelope
from .threshold import (
    EncryptRequest,
    HttpThresholdService,
    LocalThresholdService,
    NoAccessError,
    ThresholdService,
    ThresholdServiceError,
)
from .encryption import DEFAULT_THRESHOLD, EncryptionGateway, resolve_threshold

# Storage
from .storage import (
    BlobReference,
    BlobStore,
    InMemoryBlobStore,
    PutOptions,
    RetryPolicy,
    S3BlobStore,
    StorageUploader,
    WalrusHttpBlobStore,
)

# Identities, sessions and the ledger
from .keys import Ed25519Identity, SignedMessage, derive_address
from .session import CallbackRequester, SessionCredential, SessionCredentialCache
from .ledger import AccessCheckBuilder, InMemoryLedger, Ledger, LedgerError

# Decryption and verification
from .decryptor import AccessGatedDecryptor, DecryptedLog
from .verifier import VerificationMode, VerificationResult, Verifier, verify_file

# Registration
from .pipeline import LogRegistrar, RegistrationReceipt, Submission


__all__ = [
    # Version
    "__version__",

    # Canonicalization
    "CanonicalPayload",
    "PayloadKind",
    "canonicalize",
    "normalize_text",
    "to_json",
    "to_json_bytes",

    # Data model
    "BUNDLE_VERSION",
    "LogBundle",
    "LogMeta",
    "Severity",
    "severity_code",

    # Commitments
    "bundle_commitment",
    "commitment_for",
    "commitments_equal",
    "derive_identity",
    "identity_hex",
    "normalize_commitment",

    # Errors
    "VeritasLogError",
    "InvalidInput",
    "OversizeArtifact",
    "EncryptionFailure",
    "UploadFailure",
    "DownloadFailure",
    "AccessDenied",
    "DecryptionFailure",
    "SigningTimeout",

    # Encryption
    "MAX_BLOB_SIZE",
    "EncryptedArtifact",
    "EncryptedEnvelope",
    "EncryptRequest",
    "ThresholdService",
    "LocalThresholdService",
    "HttpThresholdService",
    "NoAccessError",
    "ThresholdServiceError",
    "DEFAULT_THRESHOLD",
    "EncryptionGateway",
    "resolve_threshold",

    # Storage
    "BlobReference",
    "BlobStore",
    "PutOptions",
    "RetryPolicy",
    "StorageUploader",
    "InMemoryBlobStore",
    "WalrusHttpBlobStore",
    "S3BlobStore",

    # Identities / sessions / ledger
    "Ed25519Identity",
    "SignedMessage",
    "derive_address",
    "CallbackRequester",
    "SessionCredential",
    "SessionCredentialCache",
    "Ledger",
    "LedgerError",
    "InMemoryLedger",
    "AccessCheckBuilder",

    # Decryption / verification
    "AccessGatedDecryptor",
    "DecryptedLog",
    "Verifier",
    "VerificationMode",
    "VerificationResult",
    "verify_file",

    # Registration
    "LogRegistrar",
    "RegistrationReceipt",
    "Submission",
]
