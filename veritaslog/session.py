"""
Decryption session credentials.

A requester activates a short-lived session by signing a personal message
with their wallet. The message binds the requester's address, the policy
namespace, the creation time, the validity window and an ephemeral session
public key. Afterwards the ephemeral key signs each decryption request, so
several decryptions inside the window need no further wallet interaction.

Credentials are cached per requester address by a SessionCredentialCache the
caller owns. There is no process-wide credential.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional

from nacl.signing import SigningKey

from .errors import SigningTimeout
from .keys import SignedMessage, verify_personal_message, verify_signature
from .util import b64e, mask_address

logger = logging.getLogger(__name__)

DEFAULT_TTL_MINUTES = 10
DEFAULT_SIGNING_TIMEOUT = 120.0


class SessionError(Exception):
    """Session certificate is invalid (bad signature, wrong namespace, unsigned)."""


class SessionExpired(SessionError):
    pass


def personal_message(namespace: str, ttl_minutes: int, creation_time_ms: int, session_vk_b64: str) -> bytes:
    """The message a wallet signs to activate a session."""
    created = datetime.fromtimestamp(creation_time_ms / 1000, tz=timezone.utc)
    return (
        f"Accessing keys of package {namespace} for {ttl_minutes} mins from "
        f"{created.strftime('%Y-%m-%d %H:%M:%S')} UTC, session key {session_vk_b64}"
    ).encode("utf-8")


class SessionCredential:
    """Ephemeral session key plus the wallet signature that activates it."""

    def __init__(
        self,
        address: str,
        namespace: str,
        ttl_minutes: int = DEFAULT_TTL_MINUTES,
        clock: Callable[[], float] = time.time,
    ):
        self.address = address
        self.namespace = namespace
        self.ttl_minutes = ttl_minutes
        self._clock = clock
        self.creation_time_ms = int(clock() * 1000)
        self._session_key = SigningKey.generate()
        self._session_vk_b64 = b64e(bytes(self._session_key.verify_key))
        self._signed: Optional[SignedMessage] = None

    @property
    def expires_at(self) -> float:
        return self.creation_time_ms / 1000 + self.ttl_minutes * 60

    def is_expired(self) -> bool:
        return self._clock() >= self.expires_at

    @property
    def is_signed(self) -> bool:
        return self._signed is not None

    def personal_message(self) -> bytes:
        return personal_message(self.namespace, self.ttl_minutes, self.creation_time_ms, self._session_vk_b64)

    def set_personal_message_signature(self, signed: SignedMessage) -> None:
        if not verify_personal_message(self.address, self.personal_message(), signed):
            raise SessionError(f"personal message signature does not match {self.address}")
        self._signed = signed

    def certificate(self) -> Dict[str, Any]:
        """Public part of the session, sent along with every decryption request."""
        if self._signed is None:
            raise SessionError("session credential has not been signed")
        return {
            "address": self.address,
            "namespace": self.namespace,
            "creation_time": self.creation_time_ms,
            "ttl_min": self.ttl_minutes,
            "session_vk": self._session_vk_b64,
            "signature": self._signed.signature_b64,
            "public_key": self._signed.public_key_b64,
        }

    def sign_request(self, payload: bytes) -> str:
        return b64e(self._session_key.sign(payload).signature)


def check_certificate(
    certificate: Mapping[str, Any],
    namespace: str,
    now: float,
    request: Optional[bytes] = None,
    request_signature: Optional[str] = None,
) -> str:
    """
    Validate a session certificate (and optionally a request signed with it).

    Returns:
        The requester address the certificate speaks for.

    Raises:
        SessionExpired: outside the validity window
        SessionError: any other defect
    """
    try:
        address = str(certificate["address"])
        cert_namespace = str(certificate["namespace"])
        creation_time_ms = int(certificate["creation_time"])
        ttl_minutes = int(certificate["ttl_min"])
        session_vk = str(certificate["session_vk"])
        signed = SignedMessage(
            signature_b64=str(certificate["signature"]),
            public_key_b64=str(certificate["public_key"]),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise SessionError(f"malformed session certificate: {e}") from e

    if cert_namespace != namespace:
        raise SessionError("session certificate issued for a different namespace")
    if now >= creation_time_ms / 1000 + ttl_minutes * 60:
        raise SessionExpired("session certificate expired")

    message = personal_message(cert_namespace, ttl_minutes, creation_time_ms, session_vk)
    if not verify_personal_message(address, message, signed):
        raise SessionError("invalid personal message signature")

    if request is not None:
        if not request_signature or not verify_signature(request_signature, request, session_vk):
            raise SessionError("invalid request signature")
    return address


# ============================================================
# Requesters
# ============================================================

@dataclass(frozen=True)
class CallbackRequester:
    """
    Requester backed by a signing callback, e.g. a wallet bridge.

    The callback receives the personal message bytes and returns a SignedMessage.
    """
    address: str
    sign: Callable[[bytes], SignedMessage]

    def sign_personal_message(self, message: bytes) -> SignedMessage:
        return self.sign(message)


class SessionCredentialCache:
    """
    Per-requester cache of signed session credentials.

    Concurrent callers for the same address wait on one creation and then
    reuse its result. The interactive signing step is bounded by
    `signing_timeout` seconds.
    """

    def __init__(
        self,
        namespace: str,
        ttl_minutes: int = DEFAULT_TTL_MINUTES,
        signing_timeout: float = DEFAULT_SIGNING_TIMEOUT,
        clock: Callable[[], float] = time.time,
    ):
        self.namespace = namespace
        self._ttl = ttl_minutes
        self._signing_timeout = signing_timeout
        self._clock = clock
        self._credentials: Dict[str, SessionCredential] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._lock = threading.Lock()

    def get_or_create(self, requester: Any) -> SessionCredential:
        """
        Return a live credential for `requester`, creating and signing one if needed.

        `requester` needs an `address` attribute and a
        `sign_personal_message(message) -> SignedMessage` method.
        """
        address = requester.address
        with self._lock:
            address_lock = self._locks.setdefault(address, threading.Lock())

        with address_lock:
            credential = self._credentials.get(address)
            if credential is not None and not credential.is_expired():
                return credential

            credential = SessionCredential(address, self.namespace, self._ttl, self._clock)
            signed = self._sign_with_timeout(requester, credential.personal_message())
            credential.set_personal_message_signature(signed)
            self._credentials[address] = credential
            logger.info("Created session credential for %s (ttl %d min)", mask_address(address), self._ttl)
            return credential

    def get(self, address: str) -> Optional[SessionCredential]:
        credential = self._credentials.get(address)
        if credential is None or credential.is_expired():
            return None
        return credential

    def invalidate(self, address: Optional[str] = None) -> None:
        """Drop one credential, or all of them. Waits out an in-flight signing step."""
        with self._lock:
            if address:
                targets = [(address, self._locks.setdefault(address, threading.Lock()))]
            else:
                targets = list(self._locks.items())
        for target, address_lock in targets:
            with address_lock:
                self._credentials.pop(target, None)

    def _sign_with_timeout(self, requester: Any, message: bytes) -> SignedMessage:
        executor = ThreadPoolExecutor(max_workers=1)
        future = executor.submit(requester.sign_personal_message, message)
        try:
            return future.result(timeout=self._signing_timeout)
        except FutureTimeout:
            future.cancel()
            raise SigningTimeout(
                f"Session signature not received within {self._signing_timeout:g}s"
            )
        finally:
            executor.shutdown(wait=False)
