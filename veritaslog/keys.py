"""
Ed25519 identities for VeritasLog.

Wallet-style accounts used for two things:
- the sponsor identity that signs blob uploads
- requesters signing the personal message that activates a session credential

Addresses are derived Sui-style: 0x || BLAKE2b-256(flag || public_key).
"""

import hashlib
from dataclasses import dataclass
from typing import Optional

from nacl.signing import SigningKey, VerifyKey
from nacl.exceptions import CryptoError

from .util import b64d, b64e

ED25519_FLAG = 0x00


def derive_address(public_key: bytes) -> str:
    """Account address for an Ed25519 public key."""
    digest = hashlib.blake2b(bytes([ED25519_FLAG]) + public_key, digest_size=32)
    return "0x" + digest.hexdigest()


@dataclass(frozen=True)
class SignedMessage:
    """Signature produced by a wallet over a personal message."""
    signature_b64: str
    public_key_b64: str


class Ed25519Identity:
    """An Ed25519 keypair with its derived account address."""

    def __init__(self, signing_key: SigningKey):
        self._sk = signing_key
        self._pk = bytes(signing_key.verify_key)
        self._address = derive_address(self._pk)

    @classmethod
    def generate(cls) -> "Ed25519Identity":
        return cls(SigningKey.generate())

    @classmethod
    def from_secret_b64(cls, secret_b64: str) -> "Ed25519Identity":
        """
        Load from a base64 secret.

        Accepts a 32-byte seed, a 33-byte flag-prefixed seed (wallet export
        format) or a 64-byte seed||public key.
        """
        raw = b64d(secret_b64.strip())
        if len(raw) == 33 and raw[0] == ED25519_FLAG:
            raw = raw[1:]
        elif len(raw) == 64:
            raw = raw[:32]
        if len(raw) != 32:
            raise ValueError("Ed25519 secret must decode to a 32-byte seed")
        return cls(SigningKey(raw))

    @property
    def address(self) -> str:
        return self._address

    @property
    def public_key(self) -> bytes:
        return self._pk

    @property
    def public_key_b64(self) -> str:
        return b64e(self._pk)

    def secret_b64(self) -> str:
        return b64e(bytes(self._sk))

    def sign(self, payload: bytes) -> bytes:
        return self._sk.sign(payload).signature

    def sign_personal_message(self, message: bytes) -> SignedMessage:
        return SignedMessage(signature_b64=b64e(self.sign(message)), public_key_b64=self.public_key_b64)

    def __repr__(self) -> str:
        return f"Ed25519Identity(address={self._address!r})"


def verify_signature(signature_b64: str, payload: bytes, public_key_b64: str) -> bool:
    """
    Verify an Ed25519 signature.

    Returns:
        True if signature is valid, False otherwise
    """
    try:
        vk = VerifyKey(b64d(public_key_b64))
        vk.verify(payload, b64d(signature_b64))
        return True
    except (CryptoError, ValueError, TypeError):
        return False


def verify_personal_message(
    address: str,
    message: bytes,
    signed: SignedMessage,
    expected_public_key: Optional[bytes] = None,
) -> bool:
    """Check that `signed` is a valid signature over `message` by the holder of `address`."""
    try:
        public_key = b64d(signed.public_key_b64)
    except ValueError:
        return False
    if expected_public_key is not None and public_key != expected_public_key:
        return False
    if derive_address(public_key) != address:
        return False
    return verify_signature(signed.signature_b64, message, signed.public_key_b64)
