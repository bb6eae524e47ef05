"""
Ledger / registry interface.

The ledger is an external collaborator. The core needs it for three things:
- recording (blob reference, commitment) pairs and reading them back
- per-log allow-lists plus pending access requests
- evaluating the access check that a policy proof encodes

InMemoryLedger is a reference registry for tests and local development.
It mirrors the registry contract's observable behaviour, not its internals.
"""

import json
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .canonicalization import to_json_bytes
from .errors import InvalidInput
from .hashing import commitments_equal, normalize_commitment

ACCESS_CHECK_FUNCTION = "registry::seal_approve"


class LedgerError(Exception):
    """Unknown log, unauthorized mutation or malformed request."""


@dataclass
class LogRecord:
    log_id: int
    blob_id: str
    commitment_hex: str
    created_at: int
    severity_code: int
    owner: str
    allowed: List[str] = field(default_factory=list)
    pending: List[str] = field(default_factory=list)

    def to_event(self) -> Dict[str, Any]:
        """The 'log registered' event payload."""
        return {
            "logId": self.log_id,
            "blobId": self.blob_id,
            "commitmentHex": self.commitment_hex,
            "createdAt": self.created_at,
            "severityCode": self.severity_code,
            "owner": self.owner,
        }


@dataclass(frozen=True)
class AccessRequest:
    log_id: int
    requester: str
    requested_at: int


class Ledger(ABC):
    """Registry operations the core consumes. Implementations talk to the chain."""

    namespace: str
    registry_id: str

    @abstractmethod
    def register_log(self, blob_id: str, commitment: Any, created_at: int, severity_code: int, owner: str) -> int:
        pass

    @abstractmethod
    def get_log(self, log_id: int) -> LogRecord:
        pass

    @abstractmethod
    def list_registered(self, limit: int = 100, descending: bool = True) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def request_access(self, log_id: int, requester: str) -> None:
        pass

    @abstractmethod
    def approve_access(self, log_id: int, requester: str, approver: str) -> None:
        pass

    @abstractmethod
    def reject_access(self, log_id: int, requester: str, approver: str) -> None:
        pass

    @abstractmethod
    def pending_requests(self, owner: Optional[str] = None) -> List[AccessRequest]:
        pass

    @abstractmethod
    def check_access(self, identity_hex: str, log_id: int, requester: str) -> bool:
        """Allow iff `identity_hex` is the log's commitment and `requester` is allowed."""
        pass

    def build_access_check(self, identity_hex: str, log_id: int, requester: str) -> bytes:
        """Encode the access-check call a policy proof consists of."""
        return to_json_bytes({
            "target": f"{self.namespace}::{ACCESS_CHECK_FUNCTION}",
            "args": {"id": identity_hex, "registry": self.registry_id, "logId": int(log_id)},
            "sender": requester,
        })

    def evaluate_access_check(self, proof: bytes) -> bool:
        """Dry-run an encoded access check. Malformed proofs evaluate to deny."""
        try:
            call = json.loads(proof.decode("utf-8"))
            target = call["target"]
            args = call["args"]
            sender = call["sender"]
            identity_hex = args["id"]
            log_id = int(args["logId"])
            registry = args["registry"]
        except (UnicodeDecodeError, ValueError, KeyError, TypeError):
            return False
        if target != f"{self.namespace}::{ACCESS_CHECK_FUNCTION}" or registry != self.registry_id:
            return False
        return self.check_access(identity_hex, log_id, sender)


class AccessCheckBuilder:
    """Policy proof builder for one log on one ledger."""

    def __init__(self, ledger: Ledger, log_id: int):
        self.ledger = ledger
        self.log_id = log_id

    def build(self, identity_hex: str, requester: str) -> bytes:
        return self.ledger.build_access_check(identity_hex, self.log_id, requester)


class InMemoryLedger(Ledger):
    """
    Thread-safe in-process registry.

    The owner of a log is on its allow-list from registration and is the only
    address that may approve or reject pending requests.
    """

    def __init__(
        self,
        namespace: str = "veritaslog",
        registry_id: str = "registry-local",
        clock: Callable[[], float] = time.time,
    ):
        self.namespace = namespace
        self.registry_id = registry_id
        self._clock = clock
        self._logs: Dict[int, LogRecord] = {}
        self._requests: Dict[tuple, AccessRequest] = {}
        self._next_id = 0
        self._lock = threading.RLock()

    def register_log(self, blob_id: str, commitment: Any, created_at: int, severity_code: int, owner: str) -> int:
        if not blob_id or not blob_id.strip():
            raise LedgerError("blob id is required")
        if severity_code not in (0, 1, 2):
            raise LedgerError(f"invalid severity code {severity_code}")
        commitment_hex = normalize_commitment(commitment)
        with self._lock:
            log_id = self._next_id
            self._next_id += 1
            self._logs[log_id] = LogRecord(
                log_id=log_id,
                blob_id=blob_id,
                commitment_hex=commitment_hex,
                created_at=int(created_at),
                severity_code=severity_code,
                owner=owner,
                allowed=[owner],
            )
            return log_id

    def get_log(self, log_id: int) -> LogRecord:
        with self._lock:
            record = self._logs.get(int(log_id))
            if record is None:
                raise LedgerError(f"log {log_id} not found")
            return record

    def list_registered(self, limit: int = 100, descending: bool = True) -> List[Dict[str, Any]]:
        with self._lock:
            records = sorted(self._logs.values(), key=lambda r: (r.created_at, r.log_id), reverse=descending)
            return [r.to_event() for r in records[:limit]]

    def request_access(self, log_id: int, requester: str) -> None:
        with self._lock:
            record = self.get_log(log_id)
            if requester in record.allowed or requester in record.pending:
                return
            record.pending.append(requester)
            self._requests[(record.log_id, requester)] = AccessRequest(
                log_id=record.log_id, requester=requester, requested_at=int(self._clock())
            )

    def approve_access(self, log_id: int, requester: str, approver: str) -> None:
        with self._lock:
            record = self._resolve_pending(log_id, requester, approver)
            record.allowed.append(requester)

    def reject_access(self, log_id: int, requester: str, approver: str) -> None:
        with self._lock:
            self._resolve_pending(log_id, requester, approver)

    def _resolve_pending(self, log_id: int, requester: str, approver: str) -> LogRecord:
        record = self.get_log(log_id)
        if approver != record.owner:
            raise LedgerError(f"{approver} is not the owner of log {log_id}")
        if requester not in record.pending:
            raise LedgerError(f"no pending request from {requester} on log {log_id}")
        record.pending.remove(requester)
        self._requests.pop((record.log_id, requester), None)
        return record

    def pending_requests(self, owner: Optional[str] = None) -> List[AccessRequest]:
        with self._lock:
            return [
                req for req in self._requests.values()
                if owner is None or self._logs[req.log_id].owner == owner
            ]

    def check_access(self, identity_hex: str, log_id: int, requester: str) -> bool:
        with self._lock:
            record = self._logs.get(int(log_id))
            if record is None:
                return False
            try:
                identity = normalize_commitment(identity_hex)
            except InvalidInput:
                return False
            return commitments_equal(identity, record.commitment_hex) and requester in record.allowed
