"""
Pydantic schemas for the filedrop API.

Field names follow the camelCase JSON the existing clients already consume.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class SignupRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: Optional[str] = Field(default=None, max_length=320)
    password: Optional[str] = Field(default=None, max_length=4096)
    display_name: Optional[str] = Field(
        default=None, alias="displayName", max_length=256
    )


class LoginRequest(BaseModel):
    email: Optional[str] = Field(default=None, max_length=320)
    password: Optional[str] = Field(default=None, max_length=4096)


class UserSummary(BaseModel):
    uid: str
    email: str
    displayName: str


class UserProfile(UserSummary):
    uploads: int = 0


class SignupResponse(BaseModel):
    message: str
    user: UserSummary


class LoginResponse(BaseModel):
    message: str
    token: str
    uid: str
    user: UserProfile


class UploadedFile(BaseModel):
    id: str
    name: str
    size: int
    url: str
    type: str


class UploadResponse(BaseModel):
    message: str
    file: UploadedFile
    warnings: list[str] = Field(default_factory=list)


class FileItem(BaseModel):
    id: str
    userId: str
    fileName: str
    storagePath: str
    fileSize: int
    mimeType: str
    publicUrl: str
    uploadedAt: str


class ListFilesResponse(BaseModel):
    count: int
    files: list[FileItem]


class MessageResponse(BaseModel):
    message: str
    warnings: list[str] = Field(default_factory=list)


class HealthResponse(BaseModel):
    status: str
    message: str
    timestamp: str


class ErrorResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    error: str
    kind: str
