"""
Staged write pipeline for uploads and deletions.

The object store and the record store share no transaction, so each flow is
an ordered list of stages whose side effects are durable on their own:

    upload:  write-object -> create-record -> increment-counter
    delete:  delete-object -> delete-record -> decrement-counter

A FileRecord must never reference a missing object, so the object is written
before its record and deleted before its record. The upload count is an
advisory aggregate: failing to adjust it is reported as a warning on an
otherwise successful result and never undoes earlier stages.

Stages that already committed stay committed if the caller gives up midway;
callers retrying after a failure should re-read state first.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional

from werkzeug.utils import secure_filename

from filedrop.db import FileRecord, RecordStore
from filedrop.errors import (
    CounterUpdateFailed,
    ForbiddenError,
    NotFoundError,
    ObjectDeleteFailed,
    ObjectWriteFailed,
    RecordCreateFailed,
    RecordDeleteFailed,
    StageError,
    ValidationError,
)
from filedrop.storage import ObjectStore

logger = logging.getLogger(__name__)

UPLOAD_ROOT = "uploads"

STAGE_WRITE_OBJECT = "write-object"
STAGE_CREATE_RECORD = "create-record"
STAGE_INCREMENT_COUNTER = "increment-counter"
STAGE_DELETE_OBJECT = "delete-object"
STAGE_DELETE_RECORD = "delete-record"
STAGE_DECREMENT_COUNTER = "decrement-counter"


@dataclass
class UploadResult:
    file_record_id: str
    storage_path: str
    public_reference: str
    size_bytes: int
    content_type: str
    display_name: str
    committed_stages: list[str] = field(default_factory=list)
    warnings: list[StageError] = field(default_factory=list)


@dataclass
class DeleteResult:
    file_record_id: str
    storage_path: str
    object_was_present: bool = True
    committed_stages: list[str] = field(default_factory=list)
    warnings: list[StageError] = field(default_factory=list)


def build_storage_path(
    principal_id: str, file_name: str, now: Optional[float] = None
) -> str:
    """
    Path for a new object, namespaced by principal.

    The millisecond timestamp plus a random suffix keeps repeated uploads of
    the same name from overwriting each other.
    """
    millis = int((time.time() if now is None else now) * 1000)
    safe_name = secure_filename(file_name) or "file"
    return f"{UPLOAD_ROOT}/{principal_id}/{millis}_{uuid.uuid4().hex[:8]}_{safe_name}"


class StagedWritePipeline:
    def __init__(
        self,
        objects: ObjectStore,
        records: RecordStore,
        clock: Callable[[], float] = time.time,
    ):
        self.objects = objects
        self.records = records
        self.clock = clock

    def _adjust_counter(
        self, principal_id: str, delta: int, stage: str
    ) -> Optional[CounterUpdateFailed]:
        try:
            self.records.increment_upload_count(principal_id, delta)
        except Exception as e:
            logger.warning(
                "[%s] %s failed (upload count missed a %+d adjustment): %s",
                principal_id,
                stage,
                delta,
                e,
            )
            return CounterUpdateFailed(principal_id=principal_id, delta=delta, cause=e)
        return None

    def run_upload(
        self,
        principal_id: str,
        file_bytes: bytes,
        file_name: str,
        content_type: str,
        size_bytes: int,
    ) -> UploadResult:
        if not principal_id:
            raise ValidationError("Principal id is required")
        if not file_name:
            raise ValidationError("File name is required")
        content_type = content_type or "application/octet-stream"
        committed: list[str] = []

        storage_path = build_storage_path(principal_id, file_name, now=self.clock())
        logger.info(
            "[%s] Uploading %s (%.2f KB) to %s",
            principal_id,
            file_name,
            size_bytes / 1024,
            storage_path,
        )
        try:
            stored = self.objects.write(
                storage_path,
                file_bytes,
                content_type=content_type,
                uploader_principal_id=principal_id,
                original_name=file_name,
            )
        except Exception as e:
            logger.exception(
                "[%s] %s failed for %s", principal_id, STAGE_WRITE_OBJECT, storage_path
            )
            raise ObjectWriteFailed(cause=e) from e
        committed.append(STAGE_WRITE_OBJECT)
        logger.info("[%s] File uploaded to storage", principal_id)

        try:
            record = self.records.create_file_record(
                owner_principal_id=principal_id,
                display_name=file_name,
                storage_path=stored.path,
                size_bytes=size_bytes,
                content_type=content_type,
                public_reference=stored.public_reference,
            )
        except Exception as e:
            logger.exception(
                "[%s] %s failed for %s", principal_id, STAGE_CREATE_RECORD, stored.path
            )
            raise self._compensate_orphan(principal_id, stored.path, e) from e
        committed.append(STAGE_CREATE_RECORD)
        logger.info("[%s] Metadata saved as record %s", principal_id, record.id)

        warnings: list[StageError] = []
        counter_error = self._adjust_counter(principal_id, 1, STAGE_INCREMENT_COUNTER)
        if counter_error is None:
            committed.append(STAGE_INCREMENT_COUNTER)
        else:
            warnings.append(counter_error)

        logger.info("[%s] Upload complete: %s", principal_id, record.id)
        return UploadResult(
            file_record_id=record.id,
            storage_path=record.storage_path,
            public_reference=record.public_reference,
            size_bytes=record.size_bytes,
            content_type=record.content_type,
            display_name=record.display_name,
            committed_stages=committed,
            warnings=warnings,
        )

    def _compensate_orphan(
        self, principal_id: str, path: str, cause: Exception
    ) -> RecordCreateFailed:
        try:
            self.objects.delete(path)
        except Exception as e:
            logger.error(
                "[%s] Could not remove orphaned object %s: %s", principal_id, path, e
            )
            return RecordCreateFailed(orphaned_object_path=path, cause=cause)
        logger.info("[%s] Removed orphaned object %s", principal_id, path)
        return RecordCreateFailed(cause=cause)

    def load_owned_record(self, principal_id: str, file_id: str) -> FileRecord:
        record = self.records.get_file_record(file_id)
        if record is None:
            raise NotFoundError()
        if record.owner_principal_id != principal_id:
            logger.warning(
                "[%s] Refused access to file %s owned by another user",
                principal_id,
                file_id,
            )
            raise ForbiddenError()
        return record

    def run_delete(self, principal_id: str, file_id: str) -> DeleteResult:
        record = self.load_owned_record(principal_id, file_id)
        committed: list[str] = []

        try:
            object_was_present = self.objects.delete(record.storage_path)
        except Exception as e:
            logger.exception(
                "[%s] %s failed for %s",
                principal_id,
                STAGE_DELETE_OBJECT,
                record.storage_path,
            )
            raise ObjectDeleteFailed(cause=e) from e
        committed.append(STAGE_DELETE_OBJECT)
        if not object_was_present:
            logger.warning(
                "[%s] Object %s was already missing", principal_id, record.storage_path
            )

        try:
            self.records.delete_file_record(record.id)
        except Exception as e:
            # The object is gone; nothing left to restore.
            logger.exception(
                "[%s] %s failed; record %s now dangles",
                principal_id,
                STAGE_DELETE_RECORD,
                record.id,
            )
            raise RecordDeleteFailed(dangling_record_id=record.id, cause=e) from e
        committed.append(STAGE_DELETE_RECORD)

        warnings: list[StageError] = []
        counter_error = self._adjust_counter(principal_id, -1, STAGE_DECREMENT_COUNTER)
        if counter_error is None:
            committed.append(STAGE_DECREMENT_COUNTER)
        else:
            warnings.append(counter_error)

        logger.info("[%s] Deleted file %s", principal_id, record.id)
        return DeleteResult(
            file_record_id=record.id,
            storage_path=record.storage_path,
            object_was_present=object_was_present,
            committed_stages=committed,
            warnings=warnings,
        )
