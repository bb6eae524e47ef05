"""
Session credential and cache tests.
"""

import threading
import unittest

from veritaslog import CallbackRequester, Ed25519Identity, SessionCredential, SessionCredentialCache, SigningTimeout
from veritaslog.keys import derive_address, verify_personal_message
from veritaslog.session import SessionError, SessionExpired, check_certificate

NAMESPACE = "veritaslog"


class Clock:
    def __init__(self, now: float = 1700000000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class CountingRequester:
    def __init__(self, identity):
        self.identity = identity
        self.address = identity.address
        self.calls = 0

    def sign_personal_message(self, message):
        self.calls += 1
        return self.identity.sign_personal_message(message)


class TestKeys(unittest.TestCase):

    def test_address_format(self):
        identity = Ed25519Identity.generate()
        self.assertTrue(identity.address.startswith("0x"))
        self.assertEqual(len(identity.address), 66)
        self.assertEqual(identity.address, derive_address(identity.public_key))

    def test_secret_round_trip(self):
        identity = Ed25519Identity.generate()
        self.assertEqual(Ed25519Identity.from_secret_b64(identity.secret_b64()).address, identity.address)

    def test_personal_message_signature(self):
        identity = Ed25519Identity.generate()
        other = Ed25519Identity.generate()
        signed = identity.sign_personal_message(b"hello")
        self.assertTrue(verify_personal_message(identity.address, b"hello", signed))
        self.assertFalse(verify_personal_message(identity.address, b"hellO", signed))
        self.assertFalse(verify_personal_message(other.address, b"hello", signed))


class TestSessionCredential(unittest.TestCase):

    def setUp(self):
        self.clock = Clock()
        self.identity = Ed25519Identity.generate()

    def _signed_credential(self):
        credential = SessionCredential(self.identity.address, NAMESPACE, clock=self.clock)
        credential.set_personal_message_signature(self.identity.sign_personal_message(credential.personal_message()))
        return credential

    def test_personal_message_mentions_namespace_and_ttl(self):
        credential = SessionCredential(self.identity.address, NAMESPACE, clock=self.clock)
        message = credential.personal_message().decode("utf-8")
        self.assertIn(NAMESPACE, message)
        self.assertIn("10 mins", message)

    def test_unsigned_credential_has_no_certificate(self):
        credential = SessionCredential(self.identity.address, NAMESPACE, clock=self.clock)
        with self.assertRaises(SessionError):
            credential.certificate()

    def test_wrong_signer_rejected(self):
        credential = SessionCredential(self.identity.address, NAMESPACE, clock=self.clock)
        impostor = Ed25519Identity.generate()
        with self.assertRaises(SessionError):
            credential.set_personal_message_signature(impostor.sign_personal_message(credential.personal_message()))

    def test_certificate_checks(self):
        credential = self._signed_credential()
        cert = credential.certificate()
        request = b"decrypt request"
        signature = credential.sign_request(request)

        self.assertEqual(check_certificate(cert, NAMESPACE, self.clock(), request, signature), self.identity.address)
        with self.assertRaises(SessionError):
            check_certificate(cert, "other", self.clock())
        with self.assertRaises(SessionError):
            check_certificate(cert, NAMESPACE, self.clock(), b"another request", signature)
        with self.assertRaises(SessionError):
            check_certificate({**cert, "ttl_min": 60}, NAMESPACE, self.clock())
        with self.assertRaises(SessionError):
            check_certificate({"address": self.identity.address}, NAMESPACE, self.clock())

    def test_expiry(self):
        credential = self._signed_credential()
        self.clock.now += 599
        self.assertFalse(credential.is_expired())
        check_certificate(credential.certificate(), NAMESPACE, self.clock())
        self.clock.now += 1
        self.assertTrue(credential.is_expired())
        with self.assertRaises(SessionExpired):
            check_certificate(credential.certificate(), NAMESPACE, self.clock())


class TestSessionCredentialCache(unittest.TestCase):

    def setUp(self):
        self.clock = Clock()
        self.cache = SessionCredentialCache(NAMESPACE, clock=self.clock)

    def test_reuse_within_ttl(self):
        requester = CountingRequester(Ed25519Identity.generate())
        first = self.cache.get_or_create(requester)
        self.clock.now += 300
        self.assertIs(self.cache.get_or_create(requester), first)
        self.assertEqual(requester.calls, 1)

    def test_recreate_after_expiry(self):
        requester = CountingRequester(Ed25519Identity.generate())
        first = self.cache.get_or_create(requester)
        self.clock.now += 601
        self.assertIsNone(self.cache.get(requester.address))
        second = self.cache.get_or_create(requester)
        self.assertIsNot(second, first)
        self.assertEqual(requester.calls, 2)

    def test_per_address(self):
        a = CountingRequester(Ed25519Identity.generate())
        b = CountingRequester(Ed25519Identity.generate())
        self.assertIsNot(self.cache.get_or_create(a), self.cache.get_or_create(b))

    def test_invalidate(self):
        requester = CountingRequester(Ed25519Identity.generate())
        self.cache.get_or_create(requester)
        self.cache.invalidate(requester.address)
        self.assertIsNone(self.cache.get(requester.address))

    def test_invalidate_during_signing_is_not_lost(self):
        signing = threading.Event()
        release = threading.Event()
        identity = Ed25519Identity.generate()

        def blocking_sign(message):
            signing.set()
            release.wait(5)
            return identity.sign_personal_message(message)

        requester = CallbackRequester(identity.address, blocking_sign)
        creator = threading.Thread(target=self.cache.get_or_create, args=(requester,))
        creator.start()
        self.assertTrue(signing.wait(5))

        invalidator = threading.Thread(target=self.cache.invalidate, args=(identity.address,))
        invalidator.start()
        invalidator.join(0.1)
        self.assertTrue(invalidator.is_alive())

        release.set()
        creator.join(5)
        invalidator.join(5)
        self.assertIsNone(self.cache.get(identity.address))

    def test_invalidate_all(self):
        a = CountingRequester(Ed25519Identity.generate())
        b = CountingRequester(Ed25519Identity.generate())
        self.cache.get_or_create(a)
        self.cache.get_or_create(b)
        self.cache.invalidate()
        self.assertIsNone(self.cache.get(a.address))
        self.assertIsNone(self.cache.get(b.address))

    def test_concurrent_callers_share_one_credential(self):
        requester = CountingRequester(Ed25519Identity.generate())
        results = []
        threads = [threading.Thread(target=lambda: results.append(self.cache.get_or_create(requester)))
                   for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(requester.calls, 1)
        self.assertEqual(len({id(c) for c in results}), 1)

    def test_signing_timeout(self):
        release = threading.Event()
        identity = Ed25519Identity.generate()

        def slow_sign(message):
            release.wait(5)
            return identity.sign_personal_message(message)

        cache = SessionCredentialCache(NAMESPACE, signing_timeout=0.05, clock=self.clock)
        try:
            with self.assertRaises(SigningTimeout) as ctx:
                cache.get_or_create(CallbackRequester(identity.address, slow_sign))
            self.assertEqual(ctx.exception.code, "SIGNATURE_TIMEOUT")
            self.assertIsNone(cache.get(identity.address))
        finally:
            release.set()


if __name__ == "__main__":
    unittest.main()
