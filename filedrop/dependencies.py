"""
Dependency wiring for the FastAPI app.

Platform clients are built once by ``build_backends`` when the app is created
and kept on ``app.state``; route dependencies only read them from there.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import firebase_admin
from fastapi import Depends, Header, Request
from firebase_admin import credentials

from filedrop.auth import (
    IdentityTokenVerifier,
    TokenVerifier,
    UidTokenVerifier,
    extract_bearer_token,
)
from filedrop.config import Settings
from filedrop.db import (
    FirestoreRecordStore,
    InMemoryRecordStore,
    Principal,
    RecordStore,
    SqlRecordStore,
)
from filedrop.identity import (
    FirebaseIdentityProvider,
    IdentityProvider,
    InMemoryIdentityProvider,
)
from filedrop.pipeline import StagedWritePipeline
from filedrop.storage import (
    FirebaseObjectStore,
    InMemoryObjectStore,
    ObjectStore,
    S3ObjectStore,
)

logger = logging.getLogger(__name__)


@dataclass
class Backends:
    identity: IdentityProvider
    records: RecordStore
    objects: ObjectStore
    verifier: TokenVerifier
    pipeline: StagedWritePipeline


def assemble_backends(
    identity: IdentityProvider,
    records: RecordStore,
    objects: ObjectStore,
    *,
    trust_uid_tokens: bool = False,
) -> Backends:
    if trust_uid_tokens:
        logger.warning("TRUST_UID_TOKENS is on: bearer tokens are accepted as raw uids")
        verifier: TokenVerifier = UidTokenVerifier(identity, records)
    else:
        verifier = IdentityTokenVerifier(identity, records)
    return Backends(
        identity=identity,
        records=records,
        objects=objects,
        verifier=verifier,
        pipeline=StagedWritePipeline(objects, records),
    )


def in_memory_backends(*, trust_uid_tokens: bool = False) -> Backends:
    return assemble_backends(
        InMemoryIdentityProvider(),
        InMemoryRecordStore(),
        InMemoryObjectStore(),
        trust_uid_tokens=trust_uid_tokens,
    )


def _firebase_app(settings: Settings) -> firebase_admin.App:
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass
    cred = credentials.Certificate(settings.firebase_credentials_path)
    options = {}
    if settings.storage_bucket:
        options["storageBucket"] = settings.storage_bucket
    return firebase_admin.initialize_app(cred, options)


def build_backends(settings: Settings) -> Backends:
    """Construct the clients selected by FILEDROP_BACKEND."""
    if settings.backend == "memory":
        logger.info("Using in-memory backends")
        return in_memory_backends(trust_uid_tokens=settings.trust_uid_tokens)

    # Password sign-in goes through the Identity Toolkit REST API.
    if not settings.firebase_web_api_key:
        raise ValueError(
            f"FIREBASE_WEB_API_KEY is required for the {settings.backend} backend"
        )

    if settings.backend == "sql":
        if not settings.s3_bucket:
            raise ValueError("S3_BUCKET is required for the sql backend")
        logger.info("Using SQL records and S3 bucket %s", settings.s3_bucket)
        # Identity still comes from Firebase Auth.
        app = _firebase_app(settings)
        return assemble_backends(
            FirebaseIdentityProvider(settings.firebase_web_api_key, app=app),
            SqlRecordStore(settings.database_url or ""),
            S3ObjectStore(
                bucket=settings.s3_bucket,
                region=settings.s3_region or "",
                endpoint=settings.s3_endpoint or "",
                access_key_id=settings.aws_access_key_id or "",
                secret_access_key=settings.aws_secret_access_key or "",
                public_base_url=settings.s3_public_base_url,
                make_public=settings.make_uploads_public,
            ),
            trust_uid_tokens=settings.trust_uid_tokens,
        )

    if not settings.storage_bucket:
        raise ValueError("FIREBASE_STORAGE_BUCKET is required for the firebase backend")
    logger.info("Using Firebase project with bucket %s", settings.storage_bucket)
    app = _firebase_app(settings)
    return assemble_backends(
        FirebaseIdentityProvider(settings.firebase_web_api_key, app=app),
        FirestoreRecordStore(app=app),
        FirebaseObjectStore(
            settings.storage_bucket, make_public=settings.make_uploads_public, app=app
        ),
        trust_uid_tokens=settings.trust_uid_tokens,
    )


def get_backends(request: Request) -> Backends:
    return request.app.state.backends


def get_settings_dep(request: Request) -> Settings:
    return request.app.state.settings


def get_identity(backends: Backends = Depends(get_backends)) -> IdentityProvider:
    return backends.identity


def get_records(backends: Backends = Depends(get_backends)) -> RecordStore:
    return backends.records


def get_pipeline(backends: Backends = Depends(get_backends)) -> StagedWritePipeline:
    return backends.pipeline


def get_current_principal(
    authorization: Optional[str] = Header(default=None),
    backends: Backends = Depends(get_backends),
) -> Principal:
    token = extract_bearer_token(authorization)
    principal = backends.verifier.resolve_principal(token)
    logger.info("User authenticated: %s", principal.id)
    return principal
