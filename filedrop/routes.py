"""
HTTP routes for the filedrop API.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, File, UploadFile

from filedrop import accounts
from filedrop.config import Settings
from filedrop.db import Principal, RecordStore
from filedrop.dependencies import (
    get_current_principal,
    get_identity,
    get_pipeline,
    get_records,
    get_settings_dep,
)
from filedrop.errors import PayloadTooLarge, ValidationError
from filedrop.identity import IdentityProvider
from filedrop.pipeline import StagedWritePipeline
from filedrop.schemas import (
    ErrorResponse,
    FileItem,
    HealthResponse,
    ListFilesResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    SignupRequest,
    SignupResponse,
    UploadedFile,
    UploadResponse,
    UserProfile,
    UserSummary,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _errors(*status_codes: int) -> dict:
    return {code: {"model": ErrorResponse} for code in status_codes}


@router.post(
    "/auth/signup",
    response_model=SignupResponse,
    status_code=201,
    responses=_errors(400, 500),
)
def signup(
    payload: SignupRequest,
    identity: IdentityProvider = Depends(get_identity),
    records: RecordStore = Depends(get_records),
):
    principal = accounts.signup(
        identity,
        records,
        payload.email,
        payload.password,
        payload.display_name,
    )
    return SignupResponse(
        message="User created successfully",
        user=UserSummary(
            uid=principal.id,
            email=principal.email,
            displayName=principal.display_name,
        ),
    )


@router.post(
    "/auth/login", response_model=LoginResponse, responses=_errors(400, 401, 500)
)
def login(
    payload: LoginRequest,
    identity: IdentityProvider = Depends(get_identity),
    records: RecordStore = Depends(get_records),
):
    result = accounts.login(identity, records, payload.email, payload.password)
    return LoginResponse(
        message="Login successful",
        token=result.token,
        uid=result.principal.id,
        user=UserProfile(**result.principal.as_dict()),
    )


@router.post(
    "/upload", response_model=UploadResponse, responses=_errors(400, 401, 413, 500)
)
def upload_file(
    file: Optional[UploadFile] = File(None),
    principal: Principal = Depends(get_current_principal),
    pipeline: StagedWritePipeline = Depends(get_pipeline),
    settings: Settings = Depends(get_settings_dep),
):
    """
    Store the file, record its metadata and bump the user's upload count.
    """
    if file is None or not file.filename:
        raise ValidationError("No file uploaded")

    # Read one byte past the limit to detect oversize uploads without
    # buffering an arbitrarily large body.
    data = file.file.read(settings.max_upload_bytes + 1)
    if len(data) > settings.max_upload_bytes:
        limit_mb = settings.max_upload_bytes / (1024 * 1024)
        raise PayloadTooLarge(f"File exceeds the {limit_mb:g}MB limit")

    result = pipeline.run_upload(
        principal.id,
        data,
        file.filename,
        file.content_type or "application/octet-stream",
        len(data),
    )
    return UploadResponse(
        message="File uploaded successfully",
        file=UploadedFile(
            id=result.file_record_id,
            name=result.display_name,
            size=result.size_bytes,
            url=result.public_reference,
            type=result.content_type,
        ),
        warnings=[w.kind.value for w in result.warnings],
    )


@router.get("/files", response_model=ListFilesResponse, responses=_errors(401, 500))
def list_files(
    principal: Principal = Depends(get_current_principal),
    records: RecordStore = Depends(get_records),
):
    files = [
        FileItem(**record.as_dict())
        for record in records.list_file_records(principal.id)
    ]
    return ListFilesResponse(count=len(files), files=files)


@router.delete(
    "/files/{file_id}",
    response_model=MessageResponse,
    responses=_errors(401, 403, 404, 500),
)
def delete_file(
    file_id: str,
    principal: Principal = Depends(get_current_principal),
    pipeline: StagedWritePipeline = Depends(get_pipeline),
):
    result = pipeline.run_delete(principal.id, file_id)
    return MessageResponse(
        message="File deleted successfully",
        warnings=[w.kind.value for w in result.warnings],
    )


@router.get("/health", response_model=HealthResponse)
def health():
    return HealthResponse(
        status="OK",
        message="filedrop backend is running",
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
