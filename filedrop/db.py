"""
Record store abstraction for principals and file metadata.

Three implementations share the ``RecordStore`` interface: Cloud Firestore
(the managed platform), SQLAlchemy (any SQL URL, SQLite in tests) and an
in-memory store for development and tests. None of them offers a
transaction spanning both collections; the only compound primitive relied on
is the atomic increment of a principal's upload count.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterator, Optional, Protocol

from firebase_admin import firestore
from google.api_core import exceptions as google_exceptions
from google.cloud.firestore_v1 import SERVER_TIMESTAMP
from google.cloud.firestore_v1.base_query import FieldFilter
from sqlalchemy import (
    Column,
    Float,
    Integer,
    String,
    case,
    create_engine,
    select,
    update,
)
from sqlalchemy.orm import Session, declarative_base, sessionmaker

USERS_COLLECTION = "users"
FILES_COLLECTION = "files"


class RecordStore(Protocol):
    """Interface for metadata persistence."""

    def create_principal(
        self, principal_id: str, email: str, display_name: str
    ) -> "Principal":
        ...

    def get_principal(self, principal_id: str) -> Optional["Principal"]:
        ...

    def iter_principals(self) -> Iterator["Principal"]:
        ...

    def increment_upload_count(self, principal_id: str, delta: int) -> None:
        """
        Atomically add ``delta``, never going below zero; raises LookupError
        for unknown principals.
        """
        ...

    def set_upload_count(self, principal_id: str, count: int) -> None:
        ...

    def create_file_record(
        self,
        *,
        owner_principal_id: str,
        display_name: str,
        storage_path: str,
        size_bytes: int,
        content_type: str,
        public_reference: str,
    ) -> "FileRecord":
        ...

    def get_file_record(self, file_id: str) -> Optional["FileRecord"]:
        ...

    def delete_file_record(self, file_id: str) -> None:
        ...

    def list_file_records(self, owner_principal_id: str) -> list["FileRecord"]:
        """Records owned by the principal, newest first."""
        ...


@dataclass
class Principal:
    id: str
    email: str
    display_name: str
    upload_count: int = 0
    created_at: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        return {
            "uid": self.id,
            "email": self.email,
            "displayName": self.display_name,
            "uploads": self.upload_count,
        }


@dataclass
class FileRecord:
    id: str
    owner_principal_id: str
    display_name: str
    storage_path: str
    size_bytes: int
    content_type: str
    public_reference: str
    created_at: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.owner_principal_id,
            "fileName": self.display_name,
            "storagePath": self.storage_path,
            "fileSize": self.size_bytes,
            "mimeType": self.content_type,
            "publicUrl": self.public_reference,
            "uploadedAt": _isoformat(self.created_at),
        }


def _isoformat(ts: float) -> str:
    return (
        datetime.fromtimestamp(ts, tz=timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


class InMemoryRecordStore:
    """Simple in-memory record store for development and tests."""

    def __init__(self):
        self.principals: Dict[str, Principal] = {}
        self.files: Dict[str, FileRecord] = {}

    def create_principal(
        self, principal_id: str, email: str, display_name: str
    ) -> Principal:
        principal = Principal(id=principal_id, email=email, display_name=display_name)
        self.principals[principal_id] = principal
        return principal

    def get_principal(self, principal_id: str) -> Optional[Principal]:
        return self.principals.get(principal_id)

    def iter_principals(self) -> Iterator[Principal]:
        return iter(list(self.principals.values()))

    def increment_upload_count(self, principal_id: str, delta: int) -> None:
        principal = self.principals.get(principal_id)
        if principal is None:
            raise LookupError(principal_id)
        principal.upload_count = max(0, principal.upload_count + delta)

    def set_upload_count(self, principal_id: str, count: int) -> None:
        principal = self.principals.get(principal_id)
        if principal is None:
            raise LookupError(principal_id)
        principal.upload_count = count

    def create_file_record(
        self,
        *,
        owner_principal_id: str,
        display_name: str,
        storage_path: str,
        size_bytes: int,
        content_type: str,
        public_reference: str,
    ) -> FileRecord:
        record = FileRecord(
            id=uuid.uuid4().hex,
            owner_principal_id=owner_principal_id,
            display_name=display_name,
            storage_path=storage_path,
            size_bytes=size_bytes,
            content_type=content_type,
            public_reference=public_reference,
        )
        self.files[record.id] = record
        return record

    def get_file_record(self, file_id: str) -> Optional[FileRecord]:
        return self.files.get(file_id)

    def delete_file_record(self, file_id: str) -> None:
        self.files.pop(file_id, None)

    def list_file_records(self, owner_principal_id: str) -> list[FileRecord]:
        # Newest insertion first so equal timestamps keep upload order.
        owned = [
            r for r in reversed(list(self.files.values()))
            if r.owner_principal_id == owner_principal_id
        ]
        return sorted(owned, key=lambda r: r.created_at, reverse=True)

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.principals.clear()
        self.files.clear()


class FirestoreRecordStore:
    """
    Cloud Firestore implementation using the existing document layout:
    ``users/{uid}`` and ``files/{autoId}``.
    """

    def __init__(self, client=None, app=None):
        self.client = client or firestore.client(app)

    @staticmethod
    def _to_timestamp(value) -> float:
        if isinstance(value, datetime):
            return value.timestamp()
        return time.time()

    def _to_principal(self, snapshot) -> Principal:
        data = snapshot.to_dict() or {}
        return Principal(
            id=snapshot.id,
            email=data.get("email", ""),
            display_name=data.get("displayName", ""),
            upload_count=int(data.get("uploads", 0) or 0),
            created_at=self._to_timestamp(data.get("createdAt")),
        )

    def _to_file_record(self, snapshot) -> FileRecord:
        data = snapshot.to_dict() or {}
        return FileRecord(
            id=snapshot.id,
            owner_principal_id=data.get("userId", ""),
            display_name=data.get("fileName", ""),
            storage_path=data.get("storagePath", ""),
            size_bytes=int(data.get("fileSize", 0) or 0),
            content_type=data.get("mimeType", ""),
            public_reference=data.get("publicUrl", ""),
            created_at=self._to_timestamp(data.get("uploadedAt")),
        )

    def create_principal(
        self, principal_id: str, email: str, display_name: str
    ) -> Principal:
        self.client.collection(USERS_COLLECTION).document(principal_id).set(
            {
                "email": email,
                "displayName": display_name,
                "createdAt": SERVER_TIMESTAMP,
                "uploads": 0,
            }
        )
        return Principal(id=principal_id, email=email, display_name=display_name)

    def get_principal(self, principal_id: str) -> Optional[Principal]:
        snapshot = self.client.collection(USERS_COLLECTION).document(principal_id).get()
        if not snapshot.exists:
            return None
        return self._to_principal(snapshot)

    def iter_principals(self) -> Iterator[Principal]:
        for snapshot in self.client.collection(USERS_COLLECTION).stream():
            yield self._to_principal(snapshot)

    def increment_upload_count(self, principal_id: str, delta: int) -> None:
        doc_ref = self.client.collection(USERS_COLLECTION).document(principal_id)
        if delta >= 0:
            try:
                doc_ref.update({"uploads": firestore.Increment(delta)})
            except google_exceptions.NotFound as e:
                raise LookupError(principal_id) from e
            return

        # Decrements read the current value so the count stays non-negative.
        @firestore.transactional
        def _decrement(transaction):
            snapshot = doc_ref.get(transaction=transaction)
            if not snapshot.exists:
                raise LookupError(principal_id)
            current = int((snapshot.to_dict() or {}).get("uploads", 0) or 0)
            transaction.update(doc_ref, {"uploads": max(0, current + delta)})

        _decrement(self.client.transaction())

    def set_upload_count(self, principal_id: str, count: int) -> None:
        doc_ref = self.client.collection(USERS_COLLECTION).document(principal_id)
        try:
            doc_ref.update({"uploads": count})
        except google_exceptions.NotFound as e:
            raise LookupError(principal_id) from e

    def create_file_record(
        self,
        *,
        owner_principal_id: str,
        display_name: str,
        storage_path: str,
        size_bytes: int,
        content_type: str,
        public_reference: str,
    ) -> FileRecord:
        _, doc_ref = self.client.collection(FILES_COLLECTION).add(
            {
                "userId": owner_principal_id,
                "fileName": display_name,
                "storagePath": storage_path,
                "fileSize": size_bytes,
                "mimeType": content_type,
                "publicUrl": public_reference,
                "uploadedAt": SERVER_TIMESTAMP,
            }
        )
        return FileRecord(
            id=doc_ref.id,
            owner_principal_id=owner_principal_id,
            display_name=display_name,
            storage_path=storage_path,
            size_bytes=size_bytes,
            content_type=content_type,
            public_reference=public_reference,
        )

    def get_file_record(self, file_id: str) -> Optional[FileRecord]:
        snapshot = self.client.collection(FILES_COLLECTION).document(file_id).get()
        if not snapshot.exists:
            return None
        return self._to_file_record(snapshot)

    def delete_file_record(self, file_id: str) -> None:
        self.client.collection(FILES_COLLECTION).document(file_id).delete()

    def list_file_records(self, owner_principal_id: str) -> list[FileRecord]:
        # Requires a composite index on (userId ASC, uploadedAt DESC).
        query = (
            self.client.collection(FILES_COLLECTION)
            .where(filter=FieldFilter("userId", "==", owner_principal_id))
            .order_by("uploadedAt", direction=firestore.Query.DESCENDING)
        )
        return [self._to_file_record(snapshot) for snapshot in query.stream()]


class SqlRecordStore:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlRecordStore")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    @staticmethod
    def _to_principal(row: "PrincipalRow") -> Principal:
        return Principal(
            id=row.id,
            email=row.email,
            display_name=row.display_name,
            upload_count=row.upload_count,
            created_at=row.created_at,
        )

    @staticmethod
    def _to_file_record(row: "FileRow") -> FileRecord:
        return FileRecord(
            id=row.id,
            owner_principal_id=row.owner_principal_id,
            display_name=row.display_name,
            storage_path=row.storage_path,
            size_bytes=row.size_bytes,
            content_type=row.content_type,
            public_reference=row.public_reference,
            created_at=row.created_at,
        )

    def create_principal(
        self, principal_id: str, email: str, display_name: str
    ) -> Principal:
        with self.Session() as session:
            row = PrincipalRow(
                id=principal_id,
                email=email,
                display_name=display_name,
                upload_count=0,
                created_at=time.time(),
            )
            session.add(row)
            session.commit()
            return self._to_principal(row)

    def get_principal(self, principal_id: str) -> Optional[Principal]:
        with self.Session() as session:
            row = session.get(PrincipalRow, principal_id)
            return self._to_principal(row) if row else None

    def iter_principals(self) -> Iterator[Principal]:
        with self.Session() as session:
            rows = session.execute(select(PrincipalRow)).scalars().all()
            principals = [self._to_principal(row) for row in rows]
        return iter(principals)

    def _update_count(self, principal_id: str, value) -> None:
        with self.Session() as session:
            result = session.execute(
                update(PrincipalRow)
                .where(PrincipalRow.id == principal_id)
                .values(upload_count=value)
            )
            session.commit()
            if not result.rowcount:
                raise LookupError(principal_id)

    def increment_upload_count(self, principal_id: str, delta: int) -> None:
        # Single UPDATE so concurrent adjustments never lose each other.
        adjusted = PrincipalRow.upload_count + delta
        self._update_count(
            principal_id, case((adjusted < 0, 0), else_=adjusted)
        )

    def set_upload_count(self, principal_id: str, count: int) -> None:
        self._update_count(principal_id, count)

    def create_file_record(
        self,
        *,
        owner_principal_id: str,
        display_name: str,
        storage_path: str,
        size_bytes: int,
        content_type: str,
        public_reference: str,
    ) -> FileRecord:
        with self.Session() as session:
            row = FileRow(
                id=uuid.uuid4().hex,
                owner_principal_id=owner_principal_id,
                display_name=display_name,
                storage_path=storage_path,
                size_bytes=size_bytes,
                content_type=content_type,
                public_reference=public_reference,
                created_at=time.time(),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_file_record(row)

    def get_file_record(self, file_id: str) -> Optional[FileRecord]:
        with self.Session() as session:
            row = session.execute(
                select(FileRow).where(FileRow.id == file_id)
            ).scalar_one_or_none()
            return self._to_file_record(row) if row else None

    def delete_file_record(self, file_id: str) -> None:
        with self.Session() as session:
            row = session.execute(
                select(FileRow).where(FileRow.id == file_id)
            ).scalar_one_or_none()
            if row:
                session.delete(row)
                session.commit()

    def list_file_records(self, owner_principal_id: str) -> list[FileRecord]:
        with self.Session() as session:
            rows = (
                session.execute(
                    select(FileRow)
                    .where(FileRow.owner_principal_id == owner_principal_id)
                    .order_by(FileRow.created_at.desc(), FileRow.seq.desc())
                )
                .scalars()
                .all()
            )
            return [self._to_file_record(row) for row in rows]


Base = declarative_base()


class PrincipalRow(Base):
    __tablename__ = "principals"

    id = Column(String, primary_key=True)
    email = Column(String, nullable=False, unique=True)
    display_name = Column(String, nullable=False)
    upload_count = Column(Integer, nullable=False, default=0)
    created_at = Column(Float, nullable=False)


class FileRow(Base):
    __tablename__ = "files"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String, nullable=False, unique=True, index=True)
    owner_principal_id = Column(String, nullable=False, index=True)
    display_name = Column(String, nullable=False)
    storage_path = Column(String, nullable=False, unique=True)
    size_bytes = Column(Integer, nullable=False)
    content_type = Column(String, nullable=False)
    public_reference = Column(String, nullable=False)
    created_at = Column(Float, nullable=False)
