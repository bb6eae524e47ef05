"""
Encryption Gateway, envelope and threshold service tests.
"""

import unittest
from unittest import mock

import nacl.utils

from veritaslog import (
    EncryptedEnvelope,
    EncryptionFailure,
    EncryptionGateway,
    InvalidInput,
    LocalThresholdService,
    LogMeta,
    OversizeArtifact,
    ThresholdServiceError,
    commitment_for,
    resolve_threshold,
)
from veritaslog.envelope import MAGIC, EnvelopeError
from veritaslog.threshold import EncryptRequest, HttpThresholdService, NoAccessError, combine_shares, split_secret

META = {"title": "X", "severity": "HIGH", "moduleName": "Ops", "notes": "", "createdAt": 1700000000}
TEXT_COMMITMENT = "43c95a96a9ae8182dbe6277fadc58ebf1499d1255f7e8af059a4b6b9a886f368"


class TestResolveThreshold(unittest.TestCase):

    def test_values(self):
        self.assertEqual(resolve_threshold(None), 2)
        self.assertEqual(resolve_threshold(""), 2)
        self.assertEqual(resolve_threshold("abc"), 2)
        self.assertEqual(resolve_threshold("5"), 5)
        self.assertEqual(resolve_threshold("0"), 1)
        self.assertEqual(resolve_threshold(-3), 1)


class TestShamir(unittest.TestCase):

    def test_any_quorum_recovers_secret(self):
        secret = nacl.utils.random(32)
        shares = split_secret(secret, 2, 3)
        for pair in ((0, 1), (0, 2), (1, 2)):
            with self.subTest(pair=pair):
                self.assertEqual(combine_shares([shares[i] for i in pair]), secret)

    def test_three_of_five(self):
        secret = nacl.utils.random(32)
        shares = split_secret(secret, 3, 5)
        self.assertEqual(combine_shares(shares[:3]), secret)
        self.assertEqual(combine_shares(shares[2:]), secret)
        self.assertEqual(len({y for _, y in shares}), 5)

    def test_invalid_threshold(self):
        with self.assertRaises(ValueError):
            split_secret(b"\x01" * 32, 4, 3)


class TestEncryptionGateway(unittest.TestCase):

    def setUp(self):
        self.service = LocalThresholdService.create(3, policy=lambda proof: True)
        self.gateway = EncryptionGateway(self.service, "veritaslog", threshold=2)

    def test_identity_is_commitment(self):
        artifact = self.gateway.encrypt_bundle(META, "incident details")
        self.assertEqual(artifact.identity_hex, TEXT_COMMITMENT)
        self.assertEqual(artifact.identity_hex, commitment_for(LogMeta.from_dict(META), "incident details"))

    def test_artifact_fields(self):
        artifact = self.gateway.encrypt_bundle(LogMeta.from_dict(META), "incident details")
        self.assertEqual(artifact.threshold, 2)
        self.assertEqual(artifact.namespace, "veritaslog")
        self.assertEqual(artifact.services, ("key-server-1", "key-server-2", "key-server-3"))
        self.assertEqual(artifact.size, len(artifact.ciphertext))
        self.assertTrue(artifact.ciphertext.startswith(MAGIC))

    def test_envelope_carries_identity(self):
        artifact = self.gateway.encrypt_bundle(META, "incident details")
        envelope = EncryptedEnvelope.parse(artifact.ciphertext)
        self.assertEqual(envelope.identity_hex, artifact.identity_hex)
        self.assertEqual(envelope.threshold, 2)
        self.assertNotIn(b"incident details", artifact.ciphertext)

    def test_threshold_floor(self):
        gateway = EncryptionGateway(self.service, "veritaslog", threshold=0)
        self.assertEqual(gateway.encrypt_bundle(META, "x").threshold, 1)

    def test_blank_text_rejected_before_service_call(self):
        service = mock.Mock()
        gateway = EncryptionGateway(service, "veritaslog")
        for text in ("", "   \r\n", None):
            with self.subTest(text=text):
                with self.assertRaises(InvalidInput):
                    gateway.encrypt_bundle(META, text)
        with self.assertRaises(InvalidInput):
            gateway.encrypt_bundle({**META, "title": ""}, "x")
        service.encrypt.assert_not_called()

    def test_service_error_becomes_encryption_failure(self):
        service = mock.Mock()
        cause = ThresholdServiceError("key server unreachable")
        service.encrypt.side_effect = cause
        with self.assertRaises(EncryptionFailure) as ctx:
            EncryptionGateway(service, "veritaslog").encrypt_bundle(META, "x")
        self.assertIs(ctx.exception.__cause__, cause)

    def test_unsatisfiable_threshold(self):
        gateway = EncryptionGateway(self.service, "veritaslog", threshold=4)
        with self.assertRaises(EncryptionFailure):
            gateway.encrypt_bundle(META, "x")

    def test_oversize(self):
        gateway = EncryptionGateway(self.service, "veritaslog", max_blob_size=64)
        with self.assertRaises(OversizeArtifact) as ctx:
            gateway.encrypt_bundle(META, "incident details")
        self.assertGreater(ctx.exception.size, 64)


class TestEnvelope(unittest.TestCase):

    def test_rejects_garbage(self):
        for data in (b"", b"garbage bytes here", MAGIC + b"\x02" + b"\x00" * 4):
            with self.subTest(data=data):
                with self.assertRaises(EnvelopeError):
                    EncryptedEnvelope.parse(data)

    def test_round_trip_header(self):
        service = LocalThresholdService.create(2, policy=lambda proof: True)
        data = service.encrypt(EncryptRequest(2, "ns", "cd" * 32, b"payload"))
        envelope = EncryptedEnvelope.parse(data)
        self.assertEqual(envelope.namespace, "ns")
        self.assertEqual(envelope.to_bytes(), data)


class TestHttpThresholdService(unittest.TestCase):

    def test_encrypt(self):
        session = mock.Mock()
        session.post.return_value = mock.Mock(status_code=200, json=lambda: {"envelope_b64": "AQID"})
        service = HttpThresholdService("https://gw.example/", session=session)
        self.assertEqual(service.encrypt(EncryptRequest(2, "ns", "ab" * 32, b"x")), b"\x01\x02\x03")
        self.assertEqual(session.post.call_args[0][0], "https://gw.example/v1/encrypt")

    def test_decrypt_forbidden(self):
        session = mock.Mock()
        session.post.return_value = mock.Mock(status_code=403)
        credential = mock.Mock()
        credential.certificate.return_value = {}
        credential.sign_request.return_value = "sig"
        service = HttpThresholdService("https://gw.example", session=session)
        with self.assertRaises(NoAccessError):
            service.decrypt(b"env", credential, b"proof")

    def test_server_error(self):
        session = mock.Mock()
        session.post.return_value = mock.Mock(status_code=500)
        with self.assertRaises(ThresholdServiceError):
            HttpThresholdService("https://gw.example", session=session).encrypt(EncryptRequest(2, "ns", "ab" * 32, b"x"))


if __name__ == "__main__":
    unittest.main()
