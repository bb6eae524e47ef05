"""
Threshold identity-based encryption service.

The core consumes the service through ThresholdService:

    encrypt(EncryptRequest) -> envelope bytes
    decrypt(envelope, session credential, policy proof) -> plaintext

Two implementations are provided:

LocalThresholdService
    In-process key servers. A random data key encrypts the plaintext; the
    key is split t-of-n with Shamir's scheme and each share is sealed under a
    key the server derives from its master secret and the policy identity.
    On decrypt every server independently validates the session certificate,
    the request signature and the policy proof (evaluated against the
    ledger) before releasing its share.

HttpThresholdService
    Adapter for a remote threshold gateway speaking JSON over HTTP.
"""

import hashlib
import json
import logging
import secrets
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import nacl.utils
from nacl.exceptions import CryptoError
from nacl.secret import SecretBox

from .envelope import EncryptedEnvelope, EnvelopeError, KeyShare
from .session import SessionError, SessionExpired, check_certificate
from .util import b64d, b64e

logger = logging.getLogger(__name__)


class NoAccessError(Exception):
    """Policy not satisfied: the requester may not obtain key shares."""


class ThresholdServiceError(Exception):
    """Transport or service fault (unreachable, malformed data, no quorum)."""


@dataclass(frozen=True)
class EncryptRequest:
    threshold: int
    namespace: str
    identity_hex: str
    plaintext: bytes


class ThresholdService(ABC):
    """Interface the Encryption Gateway and the Decryptor depend on."""

    @abstractmethod
    def encrypt(self, request: EncryptRequest) -> bytes:
        pass

    @abstractmethod
    def decrypt(self, envelope: bytes, credential: Any, proof: bytes) -> bytes:
        """
        Decrypt an envelope.

        Args:
            envelope: Envelope bytes exactly as stored
            credential: Signed SessionCredential of the requester
            proof: Policy proof bytes (ledger access check)

        Raises:
            NoAccessError: the policy rejected the requester
            ThresholdServiceError: anything else
        """
        pass


# ============================================================
# Shamir secret sharing over a prime field
# ============================================================

PRIME = 2 ** 521 - 1
_SHARE_BYTES = 66


def split_secret(secret: bytes, threshold: int, count: int) -> List[Tuple[int, bytes]]:
    """Split `secret` into `count` shares, any `threshold` of which recover it."""
    if not 1 <= threshold <= count:
        raise ValueError("threshold must be between 1 and the share count")
    value = int.from_bytes(secret, "big")
    coefficients = [value] + [secrets.randbelow(PRIME) for _ in range(threshold - 1)]

    shares = []
    for x in range(1, count + 1):
        y = 0
        for coefficient in reversed(coefficients):
            y = (y * x + coefficient) % PRIME
        shares.append((x, y.to_bytes(_SHARE_BYTES, "big")))
    return shares


def combine_shares(shares: Sequence[Tuple[int, bytes]], secret_length: int = 32) -> bytes:
    """Lagrange interpolation at zero."""
    points = [(x, int.from_bytes(y, "big")) for x, y in shares]
    secret = 0
    for i, (xi, yi) in enumerate(points):
        numerator, denominator = 1, 1
        for j, (xj, _) in enumerate(points):
            if i != j:
                numerator = (numerator * xj) % PRIME
                denominator = (denominator * (xj - xi)) % PRIME
        secret = (secret + yi * numerator * pow(denominator, -1, PRIME)) % PRIME
    return secret.to_bytes(secret_length, "big")


# ============================================================
# Local key servers
# ============================================================

class KeyServer:
    """One independent key-holder."""

    def __init__(
        self,
        service_id: str,
        master_secret: bytes,
        policy: Callable[[bytes], bool],
        clock: Callable[[], float] = time.time,
    ):
        if len(master_secret) < 32:
            raise ValueError("key server master secret must be at least 32 bytes")
        self.service_id = service_id
        self._master = master_secret
        self._policy = policy
        self._clock = clock
        self.online = True

    def _identity_key(self, namespace: str, identity_hex: str) -> bytes:
        material = namespace.encode("utf-8") + b"\x00" + bytes.fromhex(identity_hex)
        return hashlib.blake2b(material, key=self._master[:64], digest_size=32, person=b"veritaslog-ibe").digest()

    def seal_share(self, namespace: str, identity_hex: str, share: bytes) -> bytes:
        return bytes(SecretBox(self._identity_key(namespace, identity_hex)).encrypt(share))

    def release_share(
        self,
        namespace: str,
        identity_hex: str,
        sealed: bytes,
        certificate: Dict[str, Any],
        request_signature: str,
        proof: bytes,
    ) -> bytes:
        if not self.online:
            raise ThresholdServiceError(f"key server {self.service_id} unavailable")

        try:
            requester = check_certificate(certificate, namespace, self._clock(), proof, request_signature)
        except SessionExpired as e:
            raise ThresholdServiceError(str(e)) from e
        except SessionError as e:
            raise NoAccessError(str(e)) from e

        if not _proof_matches(proof, identity_hex, requester):
            raise NoAccessError("policy proof does not reference this identity and requester")
        if not self._policy(proof):
            raise NoAccessError(f"key server {self.service_id}: access denied for {requester}")

        try:
            return SecretBox(self._identity_key(namespace, identity_hex)).decrypt(sealed)
        except CryptoError as e:
            raise ThresholdServiceError("sealed share failed authentication") from e


def _proof_matches(proof: bytes, identity_hex: str, requester: str) -> bool:
    try:
        parsed = json.loads(proof.decode("utf-8"))
        return parsed["args"]["id"] == identity_hex and parsed["sender"] == requester
    except (UnicodeDecodeError, ValueError, KeyError, TypeError):
        return False


class LocalThresholdService(ThresholdService):
    """t-of-n threshold encryption backed by in-process key servers."""

    def __init__(self, servers: Sequence[KeyServer]):
        if not servers:
            raise ValueError("at least one key server is required")
        self._servers: Dict[str, KeyServer] = {s.service_id: s for s in servers}

    @classmethod
    def create(
        cls,
        count: int,
        policy: Callable[[bytes], bool],
        master_secrets: Optional[Sequence[bytes]] = None,
        clock: Callable[[], float] = time.time,
    ) -> "LocalThresholdService":
        if master_secrets is None:
            master_secrets = [nacl.utils.random(32) for _ in range(count)]
        if len(master_secrets) != count:
            raise ValueError("need one master secret per key server")
        servers = [
            KeyServer(f"key-server-{i + 1}", secret, policy, clock)
            for i, secret in enumerate(master_secrets)
        ]
        return cls(servers)

    @property
    def servers(self) -> List[KeyServer]:
        return list(self._servers.values())

    def encrypt(self, request: EncryptRequest) -> bytes:
        servers = self.servers
        if not 1 <= request.threshold <= len(servers):
            raise ThresholdServiceError(
                f"threshold {request.threshold} not satisfiable with {len(servers)} key servers"
            )
        try:
            bytes.fromhex(request.identity_hex)
        except ValueError as e:
            raise ThresholdServiceError("identity must be hex") from e

        data_key = nacl.utils.random(SecretBox.KEY_SIZE)
        ciphertext = bytes(SecretBox(data_key).encrypt(request.plaintext))
        points = split_secret(data_key, request.threshold, len(servers))

        shares = tuple(
            KeyShare(
                service_id=server.service_id,
                index=x,
                sealed_b64=b64e(server.seal_share(request.namespace, request.identity_hex, y)),
            )
            for server, (x, y) in zip(servers, points)
        )
        envelope = EncryptedEnvelope(
            namespace=request.namespace,
            identity_hex=request.identity_hex,
            threshold=request.threshold,
            shares=shares,
            ciphertext=ciphertext,
        )
        return envelope.to_bytes()

    def decrypt(self, envelope: bytes, credential: Any, proof: bytes) -> bytes:
        try:
            parsed = EncryptedEnvelope.parse(envelope)
        except EnvelopeError as e:
            raise ThresholdServiceError(str(e)) from e

        try:
            certificate = credential.certificate()
        except SessionError as e:
            raise ThresholdServiceError(str(e)) from e
        request_signature = credential.sign_request(proof)

        collected: List[Tuple[int, bytes]] = []
        denials: List[str] = []
        for share in parsed.shares:
            server = self._servers.get(share.service_id)
            if server is None:
                continue
            try:
                sealed = b64d(share.sealed_b64)
            except ValueError:
                logger.warning("Skipping malformed share for %s", share.service_id)
                continue
            try:
                y = server.release_share(
                    parsed.namespace, parsed.identity_hex, sealed,
                    certificate, request_signature, proof,
                )
            except NoAccessError as e:
                denials.append(str(e))
                continue
            except ThresholdServiceError as e:
                logger.warning("Key server %s failed: %s", share.service_id, e)
                continue
            collected.append((share.index, y))
            if len(collected) >= parsed.threshold:
                break

        if len(collected) < parsed.threshold:
            if denials:
                raise NoAccessError(denials[0])
            raise ThresholdServiceError(
                f"only {len(collected)} of {parsed.threshold} required key servers responded"
            )

        data_key = combine_shares(collected, SecretBox.KEY_SIZE)
        try:
            return SecretBox(data_key).decrypt(parsed.ciphertext)
        except CryptoError as e:
            raise ThresholdServiceError("ciphertext failed authentication") from e


# ============================================================
# Remote gateway
# ============================================================

class HttpThresholdService(ThresholdService):
    """
    JSON-over-HTTP threshold gateway client.

    POST {base}/v1/encrypt  {threshold, namespace, id, plaintext_b64} -> {envelope_b64}
    POST {base}/v1/decrypt  {envelope_b64, certificate, request_signature, proof_b64} -> {plaintext_b64}

    HTTP 403 from /v1/decrypt means the policy rejected the requester.
    """

    def __init__(self, base_url: str, timeout: float = 60.0, session: Any = None):
        import requests

        self._base = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()

    def _post(self, path: str, body: Dict[str, Any]) -> Any:
        import requests

        try:
            return self._session.post(self._base + path, json=body, timeout=self._timeout)
        except requests.RequestException as e:
            raise ThresholdServiceError(f"threshold gateway unreachable: {e}") from e

    def encrypt(self, request: EncryptRequest) -> bytes:
        r = self._post("/v1/encrypt", {
            "threshold": request.threshold,
            "namespace": request.namespace,
            "id": request.identity_hex,
            "plaintext_b64": b64e(request.plaintext),
        })
        if r.status_code != 200:
            raise ThresholdServiceError(f"threshold gateway encrypt failed: HTTP {r.status_code}")
        try:
            return b64d(r.json()["envelope_b64"])
        except (ValueError, KeyError, TypeError) as e:
            raise ThresholdServiceError("malformed encrypt response") from e

    def decrypt(self, envelope: bytes, credential: Any, proof: bytes) -> bytes:
        try:
            certificate = credential.certificate()
        except SessionError as e:
            raise ThresholdServiceError(str(e)) from e
        r = self._post("/v1/decrypt", {
            "envelope_b64": b64e(envelope),
            "certificate": certificate,
            "request_signature": credential.sign_request(proof),
            "proof_b64": b64e(proof),
        })
        if r.status_code == 403:
            raise NoAccessError("threshold gateway: access denied")
        if r.status_code != 200:
            raise ThresholdServiceError(f"threshold gateway decrypt failed: HTTP {r.status_code}")
        try:
            return b64d(r.json()["plaintext_b64"])
        except (ValueError, KeyError, TypeError) as e:
            raise ThresholdServiceError("malformed decrypt response") from e
