import unittest

from filedrop import accounts
from filedrop.auth import IdentityTokenVerifier, UidTokenVerifier, extract_bearer_token
from filedrop.db import InMemoryRecordStore
from filedrop.errors import AuthError, RecordCreateFailed, ValidationError
from filedrop.identity import IdentityError, InMemoryIdentityProvider
from scripts.recount_uploads import recount_uploads


class BrokenRecordStore(InMemoryRecordStore):
    def create_principal(self, principal_id, email, display_name):
        raise RuntimeError("unavailable")


class MisconfiguredIdentityProvider(InMemoryIdentityProvider):
    def sign_in(self, email, password):
        raise IdentityError("FIREBASE_WEB_API_KEY is required for password sign-in")


class SignupTests(unittest.TestCase):
    def setUp(self):
        self.identity = InMemoryIdentityProvider()
        self.records = InMemoryRecordStore()

    def test_signup_creates_identity_and_record(self):
        principal = accounts.signup(
            self.identity, self.records, "Dana@Example.com", "secret123", "Dana"
        )
        self.assertEqual(principal.display_name, "Dana")
        self.assertEqual(self.records.get_principal(principal.id).upload_count, 0)
        self.assertEqual(self.identity.get_user(principal.id).email, "Dana@Example.com")

    def test_signup_validates_input(self):
        with self.assertRaises(ValidationError):
            accounts.signup(self.identity, self.records, "", "secret123")
        with self.assertRaises(ValidationError):
            accounts.signup(self.identity, self.records, "dana@example.com", "123")
        with self.assertRaises(ValidationError):
            accounts.signup(self.identity, self.records, "not-an-email", "secret123")
        self.assertEqual(self.identity.users, {})

    def test_record_failure_rolls_back_identity(self):
        with self.assertRaises(RecordCreateFailed):
            accounts.signup(
                self.identity, BrokenRecordStore(), "dana@example.com", "secret123"
            )
        self.assertEqual(self.identity.users, {})


class LoginTests(unittest.TestCase):
    def setUp(self):
        self.identity = InMemoryIdentityProvider()
        self.records = InMemoryRecordStore()
        self.principal = accounts.signup(
            self.identity, self.records, "dana@example.com", "secret123"
        )

    def test_login_verifies_password(self):
        result = accounts.login(self.identity, self.records, "dana@example.com", "secret123")
        self.assertEqual(result.principal.id, self.principal.id)
        self.assertEqual(self.identity.verify_token(result.token), self.principal.id)

        with self.assertRaises(AuthError):
            accounts.login(self.identity, self.records, "dana@example.com", "wrong-pass")
        with self.assertRaises(AuthError):
            accounts.login(self.identity, self.records, "nobody@example.com", "secret123")

    def test_login_requires_fields(self):
        with self.assertRaises(ValidationError):
            accounts.login(self.identity, self.records, "dana@example.com", None)

    def test_login_without_user_record_creates_it(self):
        self.records.reset()
        result = accounts.login(self.identity, self.records, "dana@example.com", "secret123")
        self.assertEqual(result.principal.upload_count, 0)
        self.assertEqual(result.principal.email, "dana@example.com")

        stored = self.records.get_principal(self.principal.id)
        self.assertIsNotNone(stored)
        self.assertEqual(stored.display_name, "dana")
        verifier = IdentityTokenVerifier(self.identity, self.records)
        self.assertEqual(verifier.resolve_principal(result.token).id, self.principal.id)

    def test_login_record_failure_is_not_auth_error(self):
        records = BrokenRecordStore()
        with self.assertRaises(RecordCreateFailed):
            accounts.login(self.identity, records, "dana@example.com", "secret123")

    def test_identity_backend_failure_propagates(self):
        identity = MisconfiguredIdentityProvider()
        with self.assertRaises(IdentityError) as ctx:
            accounts.login(identity, self.records, "dana@example.com", "secret123")
        self.assertNotIsInstance(ctx.exception, AuthError)


class AuthGateTests(unittest.TestCase):
    def setUp(self):
        self.identity = InMemoryIdentityProvider()
        self.records = InMemoryRecordStore()
        self.principal = accounts.signup(
            self.identity, self.records, "dana@example.com", "secret123"
        )

    def test_extract_bearer_token(self):
        self.assertEqual(extract_bearer_token("Bearer abc"), "abc")
        self.assertEqual(extract_bearer_token("bearer  abc "), "abc")
        for header in (None, "", "Bearer", "Bearer   ", "Token abc"):
            with self.assertRaises(AuthError):
                extract_bearer_token(header)

    def test_identity_token_verifier(self):
        verifier = IdentityTokenVerifier(self.identity, self.records)
        token = self.identity.sign_in("dana@example.com", "secret123")
        self.assertEqual(verifier.resolve_principal(token).id, self.principal.id)
        with self.assertRaises(AuthError):
            verifier.resolve_principal(self.principal.id)

    def test_uid_token_verifier(self):
        verifier = UidTokenVerifier(self.identity, self.records)
        self.assertEqual(verifier.resolve_principal(self.principal.id).id, self.principal.id)
        with self.assertRaises(AuthError):
            verifier.resolve_principal("unknown-uid")

    def test_token_for_user_without_record_is_rejected(self):
        verifier = IdentityTokenVerifier(self.identity, self.records)
        token = self.identity.sign_in("dana@example.com", "secret123")
        self.records.reset()
        with self.assertRaises(AuthError):
            verifier.resolve_principal(token)


class RecountUploadsTests(unittest.TestCase):
    def test_recount_fixes_drift(self):
        records = InMemoryRecordStore()
        records.create_principal("alice", "alice@example.com", "alice")
        records.create_principal("bob", "bob@example.com", "bob")
        for i in range(2):
            records.create_file_record(
                owner_principal_id="alice",
                display_name=f"{i}.txt",
                storage_path=f"uploads/alice/{i}.txt",
                size_bytes=1,
                content_type="text/plain",
                public_reference="",
            )
        records.set_upload_count("bob", 3)

        self.assertEqual(recount_uploads(records, dry_run=True), 2)
        self.assertEqual(records.get_principal("alice").upload_count, 0)

        self.assertEqual(recount_uploads(records, dry_run=False), 2)
        self.assertEqual(records.get_principal("alice").upload_count, 2)
        self.assertEqual(records.get_principal("bob").upload_count, 0)
        self.assertEqual(recount_uploads(records, dry_run=False), 0)


if __name__ == "__main__":
    unittest.main()
