"""
Error taxonomy shared by the pipeline, the auth gate and the HTTP layer.

Every error carries a stable ``kind`` string, an HTTP status code and a
user-facing message. Pipeline errors additionally carry the identifiers an
operator needs to reconcile a partial failure (orphaned object paths,
dangling record ids) and nothing else.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    VALIDATION = "ValidationError"
    AUTH = "AuthError"
    NOT_FOUND = "NotFoundError"
    FORBIDDEN = "ForbiddenError"
    OBJECT_WRITE_FAILED = "ObjectWriteFailed"
    OBJECT_DELETE_FAILED = "ObjectDeleteFailed"
    RECORD_CREATE_FAILED = "RecordCreateFailed"
    RECORD_DELETE_FAILED = "RecordDeleteFailed"
    COUNTER_UPDATE_FAILED = "CounterUpdateFailed"


class FileDropError(Exception):
    """Base class for all errors surfaced to API callers."""

    kind: ErrorKind = ErrorKind.VALIDATION
    status_code: int = 500
    default_message: str = "Request failed"

    def __init__(self, message: Optional[str] = None, **details: Any):
        self.message = message or self.default_message
        self.details = {k: v for k, v in details.items() if v is not None}
        super().__init__(self.message)

    def to_payload(self) -> dict:
        payload = {"error": self.message, "kind": self.kind.value}
        payload.update(self.details)
        return payload


class ValidationError(FileDropError):
    kind = ErrorKind.VALIDATION
    status_code = 400
    default_message = "Invalid request"


class PayloadTooLarge(ValidationError):
    status_code = 413
    default_message = "File too large"


class AuthError(FileDropError):
    kind = ErrorKind.AUTH
    status_code = 401
    default_message = "Authentication failed"


class NotFoundError(FileDropError):
    kind = ErrorKind.NOT_FOUND
    status_code = 404
    default_message = "File not found"


class ForbiddenError(FileDropError):
    kind = ErrorKind.FORBIDDEN
    status_code = 403
    default_message = "Unauthorized"


class StageError(FileDropError):
    """A pipeline stage failed after being attempted."""

    stage: str = ""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        cause: Optional[BaseException] = None,
        **details: Any,
    ):
        super().__init__(message, **details)
        self.cause = cause


class ObjectWriteFailed(StageError):
    kind = ErrorKind.OBJECT_WRITE_FAILED
    stage = "write-object"
    default_message = "Failed to upload file"


class ObjectDeleteFailed(StageError):
    kind = ErrorKind.OBJECT_DELETE_FAILED
    stage = "delete-object"
    default_message = "Failed to delete file"


class RecordCreateFailed(StageError):
    kind = ErrorKind.RECORD_CREATE_FAILED
    stage = "create-record"
    default_message = "Failed to save file metadata"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        orphaned_object_path: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(
            message, cause=cause, orphanedObjectPath=orphaned_object_path
        )
        self.orphaned_object_path = orphaned_object_path


class RecordDeleteFailed(StageError):
    kind = ErrorKind.RECORD_DELETE_FAILED
    stage = "delete-record"
    default_message = "Failed to delete file metadata"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        dangling_record_id: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message, cause=cause, danglingRecordId=dangling_record_id)
        self.dangling_record_id = dangling_record_id


class CounterUpdateFailed(StageError):
    """Advisory only: the upload count could not be adjusted."""

    kind = ErrorKind.COUNTER_UPDATE_FAILED
    stage = "adjust-counter"
    default_message = "Failed to update upload count"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        principal_id: Optional[str] = None,
        delta: int = 0,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message, cause=cause, principalId=principal_id, delta=delta)
        self.principal_id = principal_id
        self.delta = delta
