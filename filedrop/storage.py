"""
Object storage abstraction for Firebase Cloud Storage, S3-compatible stores
and in-memory testing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError
from firebase_admin import storage as firebase_storage
from google.api_core import exceptions as google_exceptions


@dataclass
class StoredObject:
    path: str
    size_bytes: int
    content_type: str
    uploader_principal_id: str
    public_reference: str


class ObjectStore(Protocol):
    """Defines the operations the pipeline needs from object storage."""

    def write(
        self,
        path: str,
        data: bytes,
        *,
        content_type: str,
        uploader_principal_id: str,
        original_name: str,
    ) -> StoredObject:
        ...

    def delete(self, path: str) -> bool:
        """Delete the object; returns False if it was already absent."""
        ...

    def exists(self, path: str) -> bool:
        ...


def _object_metadata(uploader_principal_id: str, original_name: str) -> dict:
    return {"uploadedBy": uploader_principal_id, "originalName": original_name}


@dataclass
class InMemoryObjectStore:
    """Test double for storage interactions."""

    base_url: str = "https://example.test/storage"
    objects: dict[str, bytes] = field(default_factory=dict)
    metadata: dict[str, dict] = field(default_factory=dict)

    def write(
        self,
        path: str,
        data: bytes,
        *,
        content_type: str,
        uploader_principal_id: str,
        original_name: str,
    ) -> StoredObject:
        self.objects[path] = bytes(data)
        self.metadata[path] = {
            "contentType": content_type,
            **_object_metadata(uploader_principal_id, original_name),
        }
        return StoredObject(
            path=path,
            size_bytes=len(data),
            content_type=content_type,
            uploader_principal_id=uploader_principal_id,
            public_reference=f"{self.base_url}/{path}",
        )

    def delete(self, path: str) -> bool:
        self.metadata.pop(path, None)
        return self.objects.pop(path, None) is not None

    def exists(self, path: str) -> bool:
        return path in self.objects

    def reset(self) -> None:
        """Clear all stored objects (useful in tests)."""
        self.objects.clear()
        self.metadata.clear()


class FirebaseObjectStore:
    """
    Cloud Storage bucket accessed through the Firebase Admin SDK.

    Objects are optionally made public after upload, in which case the public
    reference is the storage.googleapis.com URL for the blob.
    """

    def __init__(self, bucket_name: Optional[str] = None, *, make_public: bool = True, app=None):
        self._bucket = firebase_storage.bucket(bucket_name, app=app)
        self.make_public = make_public

    def write(
        self,
        path: str,
        data: bytes,
        *,
        content_type: str,
        uploader_principal_id: str,
        original_name: str,
    ) -> StoredObject:
        blob = self._bucket.blob(path)
        blob.metadata = _object_metadata(uploader_principal_id, original_name)
        blob.upload_from_string(data, content_type=content_type)
        if self.make_public:
            blob.make_public()
            public_reference = (
                f"https://storage.googleapis.com/{self._bucket.name}/{blob.name}"
            )
        else:
            public_reference = f"gs://{self._bucket.name}/{blob.name}"
        return StoredObject(
            path=blob.name,
            size_bytes=len(data),
            content_type=content_type,
            uploader_principal_id=uploader_principal_id,
            public_reference=public_reference,
        )

    def delete(self, path: str) -> bool:
        try:
            self._bucket.blob(path).delete()
        except google_exceptions.NotFound:
            return False
        return True

    def exists(self, path: str) -> bool:
        return self._bucket.blob(path).exists()


@dataclass
class S3ObjectStore:
    """
    S3-compatible storage client (AWS S3, MinIO, Tencent COS, ...).
    """

    bucket: str
    region: str
    endpoint: str
    access_key_id: str
    secret_access_key: str
    public_base_url: Optional[str] = None
    make_public: bool = True

    def __post_init__(self):
        # Virtual-hosted style addressing works for AWS and COS alike.
        config = Config(
            s3={"addressing_style": "virtual"},
            signature_version="s3v4",
        )
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint or None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id or None,
            aws_secret_access_key=self.secret_access_key or None,
            config=config,
        )

    def _public_reference(self, path: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/{path}"
        if self.endpoint:
            return f"{self.endpoint.rstrip('/')}/{self.bucket}/{path}"
        return f"https://{self.bucket}.s3.amazonaws.com/{path}"

    def write(
        self,
        path: str,
        data: bytes,
        *,
        content_type: str,
        uploader_principal_id: str,
        original_name: str,
    ) -> StoredObject:
        extra = {"ACL": "public-read"} if self.make_public else {}
        self._client.put_object(
            Bucket=self.bucket,
            Key=path,
            Body=data,
            ContentType=content_type,
            # S3 user metadata must be ASCII; the original name lives in the record.
            Metadata={"uploadedBy": uploader_principal_id},
            **extra,
        )
        return StoredObject(
            path=path,
            size_bytes=len(data),
            content_type=content_type,
            uploader_principal_id=uploader_principal_id,
            public_reference=self._public_reference(path),
        )

    def delete(self, path: str) -> bool:
        existed = self.exists(path)
        self._client.delete_object(Bucket=self.bucket, Key=path)
        return existed

    def exists(self, path: str) -> bool:
        try:
            self._client.head_object(Bucket=self.bucket, Key=path)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise
        return True
