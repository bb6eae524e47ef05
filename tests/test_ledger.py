"""
In-memory registry tests: records, access requests and access checks.
"""

import json
import unittest

from veritaslog import AccessCheckBuilder, InMemoryLedger, LedgerError

COMMITMENT = "43c95a96a9ae8182dbe6277fadc58ebf1499d1255f7e8af059a4b6b9a886f368"
OTHER = "55bcb5f24f95a1aa11f3e00ab8f63eda4d8a6149d4c53271aaf32c2204ff208b"
OWNER = "0x" + "11" * 32
ALICE = "0x" + "aa" * 32


class TestRegistry(unittest.TestCase):

    def setUp(self):
        self.ledger = InMemoryLedger(clock=lambda: 1700000100)

    def test_register_and_get(self):
        log_id = self.ledger.register_log("blob-1", COMMITMENT, 1700000000, 2, OWNER)
        record = self.ledger.get_log(log_id)
        self.assertEqual(record.blob_id, "blob-1")
        self.assertEqual(record.commitment_hex, COMMITMENT)
        self.assertEqual(record.severity_code, 2)
        self.assertEqual(record.allowed, [OWNER])

    def test_commitment_as_byte_list(self):
        log_id = self.ledger.register_log("blob-1", list(bytes.fromhex(COMMITMENT)), 1, 0, OWNER)
        self.assertEqual(self.ledger.get_log(log_id).commitment_hex, COMMITMENT)

    def test_rejects_bad_records(self):
        with self.assertRaises(LedgerError):
            self.ledger.register_log(" ", COMMITMENT, 1, 0, OWNER)
        with self.assertRaises(LedgerError):
            self.ledger.register_log("blob", COMMITMENT, 1, 3, OWNER)
        with self.assertRaises(LedgerError):
            self.ledger.get_log(99)

    def test_events_newest_first(self):
        self.ledger.register_log("old", COMMITMENT, 100, 0, OWNER)
        self.ledger.register_log("new", OTHER, 200, 1, OWNER)
        events = self.ledger.list_registered()
        self.assertEqual([e["blobId"] for e in events], ["new", "old"])
        self.assertEqual(
            set(events[0]),
            {"logId", "blobId", "commitmentHex", "createdAt", "severityCode", "owner"},
        )
        self.assertEqual(len(self.ledger.list_registered(limit=1)), 1)
        self.assertEqual(self.ledger.list_registered(descending=False)[0]["blobId"], "old")


class TestAccessRequests(unittest.TestCase):

    def setUp(self):
        self.ledger = InMemoryLedger(clock=lambda: 1700000100)
        self.log_id = self.ledger.register_log("blob-1", COMMITMENT, 1700000000, 2, OWNER)

    def test_owner_has_access(self):
        self.assertTrue(self.ledger.check_access(COMMITMENT, self.log_id, OWNER))

    def test_request_then_approve(self):
        self.assertFalse(self.ledger.check_access(COMMITMENT, self.log_id, ALICE))
        self.ledger.request_access(self.log_id, ALICE)
        pending = self.ledger.pending_requests(OWNER)
        self.assertEqual([(r.log_id, r.requester, r.requested_at) for r in pending],
                         [(self.log_id, ALICE, 1700000100)])
        self.ledger.approve_access(self.log_id, ALICE, OWNER)
        self.assertTrue(self.ledger.check_access(COMMITMENT, self.log_id, ALICE))
        self.assertEqual(self.ledger.pending_requests(), [])

    def test_reject(self):
        self.ledger.request_access(self.log_id, ALICE)
        self.ledger.reject_access(self.log_id, ALICE, OWNER)
        self.assertFalse(self.ledger.check_access(COMMITMENT, self.log_id, ALICE))
        with self.assertRaises(LedgerError):
            self.ledger.approve_access(self.log_id, ALICE, OWNER)

    def test_only_owner_decides(self):
        self.ledger.request_access(self.log_id, ALICE)
        with self.assertRaises(LedgerError):
            self.ledger.approve_access(self.log_id, ALICE, ALICE)

    def test_identity_must_match_commitment(self):
        self.assertFalse(self.ledger.check_access(OTHER, self.log_id, OWNER))
        self.assertFalse(self.ledger.check_access("not-hex", self.log_id, OWNER))
        self.assertFalse(self.ledger.check_access(COMMITMENT, 42, OWNER))


class TestAccessCheck(unittest.TestCase):

    def setUp(self):
        self.ledger = InMemoryLedger(namespace="ns", registry_id="reg-1")
        self.log_id = self.ledger.register_log("blob-1", COMMITMENT, 1, 0, OWNER)

    def test_encoding(self):
        proof = AccessCheckBuilder(self.ledger, self.log_id).build(COMMITMENT, OWNER)
        call = json.loads(proof)
        self.assertEqual(call["target"], "ns::registry::seal_approve")
        self.assertEqual(call["args"], {"id": COMMITMENT, "registry": "reg-1", "logId": self.log_id})
        self.assertEqual(call["sender"], OWNER)

    def test_evaluate(self):
        builder = AccessCheckBuilder(self.ledger, self.log_id)
        self.assertTrue(self.ledger.evaluate_access_check(builder.build(COMMITMENT, OWNER)))
        self.assertFalse(self.ledger.evaluate_access_check(builder.build(COMMITMENT, ALICE)))
        self.assertFalse(self.ledger.evaluate_access_check(builder.build(OTHER, OWNER)))

    def test_foreign_registry_or_garbage(self):
        other = InMemoryLedger(namespace="ns", registry_id="reg-2")
        other.register_log("blob-1", COMMITMENT, 1, 0, OWNER)
        proof = AccessCheckBuilder(other, 0).build(COMMITMENT, OWNER)
        self.assertFalse(self.ledger.evaluate_access_check(proof))
        self.assertFalse(self.ledger.evaluate_access_check(b"\xff\xfe"))
        self.assertFalse(self.ledger.evaluate_access_check(b'{"target": 1}'))


if __name__ == "__main__":
    unittest.main()
