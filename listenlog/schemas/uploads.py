"""Pydantic schemas for the uploads API."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from listenlog.schemas.common import CamelModel


class UploadAcceptedResponse(CamelModel):
    upload_job_id: str
    total_files: int
    skipped_files: int
    errors: list[str] = Field(default_factory=list)
    message: str
    file_names: list[str] = Field(default_factory=list)


class CreateUploadJobRequest(CamelModel):
    file_count: int = Field(..., description="Number of files that will be queued")
    filename: str | None = Field(default=None, max_length=1024)


class CreateUploadJobResponse(CamelModel):
    upload_job_id: str
    user_id: int


class StoredFileResponse(CamelModel):
    file_path: str
    file_index: int


class QueueFileItem(CamelModel):
    filename: str = Field(..., min_length=1, max_length=1024)
    file_path: str = Field(..., min_length=1, max_length=2048)
    file_index: int = Field(..., ge=0)


class QueueFilesRequest(CamelModel):
    upload_job_id: str = Field(..., min_length=1, max_length=32)
    files: list[QueueFileItem]
    total_files: int | None = Field(default=None, ge=1)


class QueueFilesResponse(CamelModel):
    success: bool
    message: str


class UploadStatusResponse(CamelModel):
    id: str
    status: str
    filename: str
    total_files: int
    processed_files: int
    total_records: int
    error_message: str | None = None
    created_at: datetime
    updated_at: datetime
