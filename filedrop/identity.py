"""
Identity provider abstraction: Firebase Auth and an in-memory stand-in.
"""

from __future__ import annotations

import secrets
import uuid
from dataclasses import dataclass
from typing import Dict, Optional, Protocol

import requests
from firebase_admin import auth as firebase_auth
from passlib.context import CryptContext

IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"
MIN_PASSWORD_LENGTH = 6


class IdentityError(Exception):
    """Base class for identity provider failures."""


class DuplicateIdentity(IdentityError):
    pass


class InvalidIdentityInput(IdentityError):
    pass


class UnknownIdentity(IdentityError, LookupError):
    pass


class InvalidCredentials(IdentityError):
    pass


@dataclass
class Identity:
    uid: str
    email: str
    display_name: Optional[str] = None


class IdentityProvider(Protocol):
    """Operations the account flows and the auth gate need."""

    def create_user(
        self, email: str, password: str, display_name: Optional[str] = None
    ) -> Identity:
        ...

    def delete_user(self, uid: str) -> None:
        ...

    def get_user(self, uid: str) -> Identity:
        ...

    def get_user_by_email(self, email: str) -> Identity:
        ...

    def sign_in(self, email: str, password: str) -> str:
        """Verify the password and return a bearer token for the user."""
        ...

    def verify_token(self, token: str) -> str:
        """Return the uid the token was issued to."""
        ...


class InMemoryIdentityProvider:
    """Development/test identity provider with hashed passwords and opaque tokens."""

    def __init__(self):
        self._pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
        self.users: Dict[str, Identity] = {}
        self.password_hashes: Dict[str, str] = {}
        self.tokens: Dict[str, str] = {}

    def create_user(
        self, email: str, password: str, display_name: Optional[str] = None
    ) -> Identity:
        if "@" not in email:
            raise InvalidIdentityInput("Invalid email address")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise InvalidIdentityInput(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
            )
        key = email.lower()
        if any(user.email.lower() == key for user in self.users.values()):
            raise DuplicateIdentity("The email address is already in use")
        identity = Identity(uid=uuid.uuid4().hex[:28], email=email, display_name=display_name)
        self.users[identity.uid] = identity
        self.password_hashes[identity.uid] = self._pwd_context.hash(password)
        return identity

    def delete_user(self, uid: str) -> None:
        self.users.pop(uid, None)
        self.password_hashes.pop(uid, None)
        self.tokens = {t: u for t, u in self.tokens.items() if u != uid}

    def get_user(self, uid: str) -> Identity:
        identity = self.users.get(uid)
        if identity is None:
            raise UnknownIdentity(uid)
        return identity

    def get_user_by_email(self, email: str) -> Identity:
        key = email.lower()
        for identity in self.users.values():
            if identity.email.lower() == key:
                return identity
        raise UnknownIdentity(email)

    def sign_in(self, email: str, password: str) -> str:
        try:
            identity = self.get_user_by_email(email)
        except UnknownIdentity as e:
            raise InvalidCredentials("Invalid credentials") from e
        if not self._pwd_context.verify(password, self.password_hashes[identity.uid]):
            raise InvalidCredentials("Invalid credentials")
        token = secrets.token_urlsafe(32)
        self.tokens[token] = identity.uid
        return token

    def verify_token(self, token: str) -> str:
        uid = self.tokens.get(token)
        if uid is None or uid not in self.users:
            raise InvalidCredentials("Invalid or expired token")
        return uid

    def reset(self) -> None:
        self.users.clear()
        self.password_hashes.clear()
        self.tokens.clear()


class FirebaseIdentityProvider:
    """
    Firebase Auth through the Admin SDK.

    The Admin SDK cannot check passwords, so ``sign_in`` calls the Identity
    Toolkit ``signInWithPassword`` REST endpoint with the project's web API
    key and returns the resulting ID token. ``verify_token`` validates such ID
    tokens (signature, expiry and revocation).
    """

    def __init__(self, web_api_key: Optional[str] = None, *, app=None, timeout: float = 10.0):
        self.web_api_key = web_api_key
        self.app = app
        self.timeout = timeout

    @staticmethod
    def _to_identity(user_record) -> Identity:
        return Identity(
            uid=user_record.uid,
            email=user_record.email,
            display_name=user_record.display_name,
        )

    def create_user(
        self, email: str, password: str, display_name: Optional[str] = None
    ) -> Identity:
        try:
            user_record = firebase_auth.create_user(
                email=email,
                password=password,
                display_name=display_name,
                app=self.app,
            )
        except firebase_auth.EmailAlreadyExistsError as e:
            raise DuplicateIdentity("The email address is already in use") from e
        except ValueError as e:
            # The Admin SDK validates email/password shape locally.
            raise InvalidIdentityInput(str(e)) from e
        return self._to_identity(user_record)

    def delete_user(self, uid: str) -> None:
        try:
            firebase_auth.delete_user(uid, app=self.app)
        except firebase_auth.UserNotFoundError:
            return

    def get_user(self, uid: str) -> Identity:
        try:
            return self._to_identity(firebase_auth.get_user(uid, app=self.app))
        except (firebase_auth.UserNotFoundError, ValueError) as e:
            raise UnknownIdentity(uid) from e

    def get_user_by_email(self, email: str) -> Identity:
        try:
            return self._to_identity(
                firebase_auth.get_user_by_email(email, app=self.app)
            )
        except (firebase_auth.UserNotFoundError, ValueError) as e:
            raise UnknownIdentity(email) from e

    def sign_in(self, email: str, password: str) -> str:
        if not self.web_api_key:
            raise IdentityError("FIREBASE_WEB_API_KEY is required for password sign-in")
        response = requests.post(
            f"{IDENTITY_TOOLKIT_URL}/accounts:signInWithPassword",
            params={"key": self.web_api_key},
            json={"email": email, "password": password, "returnSecureToken": True},
            timeout=self.timeout,
        )
        if response.status_code in (400, 401, 403):
            raise InvalidCredentials("Invalid credentials")
        response.raise_for_status()
        return response.json()["idToken"]

    def verify_token(self, token: str) -> str:
        try:
            decoded = firebase_auth.verify_id_token(
                token, app=self.app, check_revoked=True
            )
        except (
            firebase_auth.InvalidIdTokenError,
            firebase_auth.UserDisabledError,
            ValueError,
        ) as e:
            raise InvalidCredentials("Invalid or expired token") from e
        return decoded["uid"]
