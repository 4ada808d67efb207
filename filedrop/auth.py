"""
Auth gate: resolve a bearer credential to a Principal before any side effect.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from filedrop.db import Principal, RecordStore
from filedrop.errors import AuthError
from filedrop.identity import IdentityProvider, InvalidCredentials, UnknownIdentity

logger = logging.getLogger(__name__)


class TokenVerifier(Protocol):
    def resolve_principal(self, bearer_token: str) -> Principal:
        """Return the principal for the token or raise AuthError."""
        ...


def extract_bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise AuthError("No authorization header provided")
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        raise AuthError("No token provided")
    return parts[1].strip()


def _load_principal(records: RecordStore, uid: str) -> Principal:
    principal = records.get_principal(uid)
    if principal is None:
        logger.warning("Token resolved to uid %s with no user record", uid)
        raise AuthError("Invalid or expired token", details="Please login again")
    return principal


class IdentityTokenVerifier:
    """Verifies tokens issued by the identity provider's sign-in."""

    def __init__(self, identity: IdentityProvider, records: RecordStore):
        self.identity = identity
        self.records = records

    def resolve_principal(self, bearer_token: str) -> Principal:
        try:
            uid = self.identity.verify_token(bearer_token)
        except InvalidCredentials as e:
            logger.info("Authentication failed: %s", e)
            raise AuthError("Invalid or expired token", details="Please login again") from e
        return _load_principal(self.records, uid)


class UidTokenVerifier:
    """
    Accepts a raw uid as the bearer value and only checks that the user exists.

    Local testing only; enabled with TRUST_UID_TOKENS.
    """

    def __init__(self, identity: IdentityProvider, records: RecordStore):
        self.identity = identity
        self.records = records

    def resolve_principal(self, bearer_token: str) -> Principal:
        try:
            identity = self.identity.get_user(bearer_token)
        except UnknownIdentity as e:
            logger.info("Authentication failed: unknown uid")
            raise AuthError("Invalid or expired token", details="Please login again") from e
        return _load_principal(self.records, identity.uid)
