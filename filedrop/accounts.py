"""
Signup and login flows.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from filedrop.db import Principal, RecordStore
from filedrop.errors import AuthError, RecordCreateFailed, ValidationError
from filedrop.identity import (
    IdentityError,
    IdentityProvider,
    InvalidCredentials,
    UnknownIdentity,
)

logger = logging.getLogger(__name__)


@dataclass
class LoginResult:
    token: str
    principal: Principal


def default_display_name(email: str) -> str:
    return email.split("@")[0]


def signup(
    identity: IdentityProvider,
    records: RecordStore,
    email: Optional[str],
    password: Optional[str],
    display_name: Optional[str] = None,
) -> Principal:
    """
    Create the identity, then the user record with a zero upload count.

    If the record write fails the identity is removed again so the email can
    be reused; if that cleanup fails too the uid is logged for manual removal.
    """
    if not email or not password:
        raise ValidationError("Email and password are required")
    display_name = display_name or default_display_name(email)

    try:
        created = identity.create_user(email, password, display_name)
    except IdentityError as e:
        raise ValidationError(str(e)) from e

    try:
        principal = records.create_principal(created.uid, created.email, display_name)
    except Exception as e:
        logger.exception("Failed to store user record for %s", created.uid)
        try:
            identity.delete_user(created.uid)
        except Exception:
            logger.exception("Could not roll back identity %s", created.uid)
        raise RecordCreateFailed("Failed to create user", cause=e) from e

    logger.info("Created user %s", principal.id)
    return principal


def login(
    identity: IdentityProvider,
    records: RecordStore,
    email: Optional[str],
    password: Optional[str],
) -> LoginResult:
    """
    Verify the password and return a token with the user's profile.

    Only bad credentials map to 401; any other identity failure propagates.
    An identity without a user record (e.g. created in the console) gets one
    here so the token works on the protected routes.
    """
    if not email or not password:
        raise ValidationError("Email and password are required")
    try:
        token = identity.sign_in(email, password)
        user = identity.get_user_by_email(email)
    except (InvalidCredentials, UnknownIdentity) as e:
        raise AuthError("Invalid credentials") from e

    principal = records.get_principal(user.uid)
    if principal is None:
        display_name = user.display_name or default_display_name(user.email)
        try:
            principal = records.create_principal(user.uid, user.email, display_name)
        except Exception as e:
            logger.exception("Failed to store user record for %s", user.uid)
            raise RecordCreateFailed("Failed to create user", cause=e) from e
        logger.info("Created missing user record for %s", user.uid)
    return LoginResult(token=token, principal=principal)
