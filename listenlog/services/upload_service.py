"""Accept history uploads and queue them for background processing."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from listenlog.config import UploadConfig
from listenlog.db import session_scope
from listenlog.errors import NotFoundError, PermissionDeniedError, ValidationAppError
from listenlog.logging import get_logger
from listenlog.logging_events import log_event
from listenlog.models import FileProcessingJob, JobStatus, UploadJob
from listenlog.services.storage import FileStorage
from listenlog.utils.upload_validation import validate_json_file
from listenlog.utils.zip_extract import ZipExtractionError, extract_history_files
from listenlog.utils.time import utcnow

SessionFactory = Callable[[], AbstractContextManager[Session]]
Notifier = Callable[[], None]


@dataclass(slots=True)
class UploadedFile:
    name: str
    content: bytes


@dataclass(slots=True)
class QueuedFile:
    """A file that already sits in storage and only needs a processing job."""

    filename: str
    file_path: str
    file_index: int


@dataclass(slots=True)
class UploadAccepted:
    upload_job_id: str
    total_files: int
    skipped_files: int
    errors: list[str]
    message: str
    file_names: list[str] = field(default_factory=list)


@dataclass(slots=True)
class UploadStatus:
    id: str
    status: str
    filename: str
    total_files: int
    processed_files: int
    total_records: int
    error_message: str | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class _PendingFile:
    name: str
    content: str | None = None
    path: str | None = None


def _to_status(record: UploadJob) -> UploadStatus:
    return UploadStatus(
        id=record.id,
        status=record.status,
        filename=record.filename,
        total_files=record.total_files,
        processed_files=record.processed_files,
        total_records=record.total_records,
        error_message=record.error_message,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


@dataclass(slots=True)
class UploadService:
    """Create upload jobs and the file processing jobs that feed the worker."""

    storage: FileStorage
    limits: UploadConfig
    max_retries: int = 3
    session_factory: SessionFactory = field(default=session_scope, repr=False)
    notifier: Notifier | None = field(default=None, repr=False)
    _logger: Any = field(default_factory=lambda: get_logger(__name__), init=False, repr=False)

    # ------------------------------------------------------------------
    # Direct JSON uploads
    # ------------------------------------------------------------------

    def upload_json_files(self, *, user_id: int, files: Sequence[UploadedFile]) -> UploadAccepted:
        """Validate raw JSON exports and queue the valid ones."""

        if not files:
            raise ValidationAppError("No files provided")

        errors: list[str] = []
        valid: list[_PendingFile] = []
        for upload in files:
            error = validate_json_file(
                upload.name, upload.content, max_bytes=self.limits.max_file_bytes
            )
            if error is not None:
                errors.append(error)
                log_event(
                    self._logger,
                    "upload.rejected_file",
                    component="service.upload",
                    status="error",
                    entity_id=str(user_id),
                    file_name=upload.name,
                    error=error,
                )
                continue
            valid.append(_PendingFile(name=upload.name, content=upload.content.decode("utf-8-sig")))

        if not valid:
            raise ValidationAppError(
                "No valid Spotify JSON files found",
                meta={"details": errors},
            )

        filename = valid[0].name if len(valid) == 1 else f"{len(valid)} JSON files"
        upload_job_id = self._create_jobs(user_id=user_id, filename=filename, files=valid)
        return UploadAccepted(
            upload_job_id=upload_job_id,
            total_files=len(valid),
            skipped_files=len(errors),
            errors=errors,
            message=f"Successfully queued {len(valid)} file(s) for processing",
            file_names=[item.name for item in valid],
        )

    # ------------------------------------------------------------------
    # Two-step uploads: create a job, store files, then queue them
    # ------------------------------------------------------------------

    def create_upload_job(
        self, *, user_id: int, file_count: int, filename: str | None = None
    ) -> str:
        if file_count <= 0:
            raise ValidationAppError("Invalid file count", meta={"fileCount": file_count})
        name = (filename or "").strip() or f"{file_count} JSON files"
        with self.session_factory() as session:
            record = UploadJob(
                id=uuid4().hex,
                user_id=user_id,
                filename=name,
                status=JobStatus.PENDING.value,
                total_files=file_count,
            )
            session.add(record)
            session.flush()
            upload_job_id = record.id
        log_event(
            self._logger,
            "service.call",
            component="service.upload",
            operation="create_job",
            status="ok",
            entity_id=upload_job_id,
            total_files=file_count,
        )
        return upload_job_id

    def store_file(
        self,
        *,
        user_id: int,
        upload_job_id: str,
        file_index: int,
        upload: UploadedFile,
    ) -> str:
        """Validate one file and keep it in storage until it is queued."""

        self._get_owned_job(user_id, upload_job_id, missing_message="Upload job not found")
        error = validate_json_file(upload.name, upload.content, max_bytes=self.limits.max_file_bytes)
        if error is not None:
            raise ValidationAppError(error)
        key = self.storage.build_key(
            user_id=user_id, upload_job_id=upload_job_id, file_index=file_index, name=upload.name
        )
        return self.storage.save(key, upload.content)

    def queue_files(
        self,
        *,
        user_id: int,
        upload_job_id: str,
        files: Sequence[QueuedFile],
        total_files: int,
    ) -> int:
        if not files:
            raise ValidationAppError("No files provided")
        for item in files:
            if not self.storage.owns_key(item.file_path, user_id=user_id):
                raise ValidationAppError("Invalid file path", meta={"filePath": item.file_path})
            if not self.storage.exists(item.file_path):
                raise ValidationAppError("Stored file not found", meta={"filePath": item.file_path})

        with self.session_factory() as session:
            record = session.get(UploadJob, upload_job_id)
            if record is None or record.user_id != user_id:
                raise NotFoundError("Upload job not found")
            for item in sorted(files, key=lambda entry: entry.file_index):
                session.add(
                    FileProcessingJob(
                        upload_job_id=upload_job_id,
                        user_id=user_id,
                        file_index=item.file_index,
                        total_files=total_files,
                        file_name=item.filename,
                        file_path=item.file_path,
                        status=JobStatus.PENDING.value,
                        max_retries=self.max_retries,
                    )
                )
            record.status = JobStatus.PROCESSING.value
            record.updated_at = utcnow()

        self._notify()
        log_event(
            self._logger,
            "upload.accepted",
            component="service.upload",
            status="ok",
            entity_id=upload_job_id,
            total_files=len(files),
            source="storage",
        )
        return len(files)

    # ------------------------------------------------------------------
    # ZIP uploads
    # ------------------------------------------------------------------

    def upload_zip(self, *, user_id: int, filename: str, data: bytes) -> UploadAccepted:
        if not filename.lower().endswith(".zip"):
            raise ValidationAppError("Only ZIP files are supported")
        try:
            extracted = extract_history_files(
                data,
                max_bytes=self.limits.max_zip_bytes,
                max_member_bytes=self.limits.max_file_bytes,
            )
        except ZipExtractionError as exc:
            meta = {"details": exc.details} if exc.details else None
            raise ValidationAppError(exc.message, meta=meta) from exc

        for error in extracted.errors:
            log_event(
                self._logger,
                "upload.rejected_file",
                component="service.upload",
                status="error",
                entity_id=str(user_id),
                source="zip",
                error=error,
            )

        upload_job_id = uuid4().hex
        pending: list[_PendingFile] = []
        try:
            for index, item in enumerate(extracted.files):
                key = self.storage.build_key(
                    user_id=user_id, upload_job_id=upload_job_id, file_index=index, name=item.name
                )
                self.storage.save(key, item.content)
                pending.append(_PendingFile(name=item.name, path=key))
            self._create_jobs(
                user_id=user_id,
                filename=filename,
                files=pending,
                upload_job_id=upload_job_id,
            )
        except Exception:
            for item in pending:
                if item.path:
                    self.storage.delete(item.path)
            raise

        return UploadAccepted(
            upload_job_id=upload_job_id,
            total_files=len(pending),
            skipped_files=len(extracted.errors),
            errors=list(extracted.errors),
            message=f"Successfully queued {len(pending)} file(s) for processing",
            file_names=[item.name for item in pending],
        )

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self, *, user_id: int, upload_job_id: str) -> UploadStatus:
        with self.session_factory() as session:
            record = self._get_owned_job(
                user_id, upload_job_id, missing_message="Upload job not found", session=session
            )
            return _to_status(record)

    def list_uploads(self, *, user_id: int, limit: int = 20) -> list[UploadStatus]:
        with self.session_factory() as session:
            records = (
                session.execute(
                    select(UploadJob)
                    .where(UploadJob.user_id == user_id)
                    .order_by(UploadJob.created_at.desc())
                    .limit(max(1, min(limit, 100)))
                )
                .scalars()
                .all()
            )
            return [_to_status(record) for record in records]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get_owned_job(
        self,
        user_id: int,
        upload_job_id: str,
        *,
        missing_message: str,
        session: Session | None = None,
    ) -> UploadJob:
        if session is None:
            with self.session_factory() as own_session:
                return self._get_owned_job(
                    user_id, upload_job_id, missing_message=missing_message, session=own_session
                )
        record = session.get(UploadJob, upload_job_id)
        if record is None:
            raise NotFoundError(missing_message)
        if record.user_id != user_id:
            raise PermissionDeniedError("Access denied")
        return record

    def _create_jobs(
        self,
        *,
        user_id: int,
        filename: str,
        files: Sequence[_PendingFile],
        upload_job_id: str | None = None,
    ) -> str:
        job_id = upload_job_id or uuid4().hex
        total = len(files)
        with self.session_factory() as session:
            session.add(
                UploadJob(
                    id=job_id,
                    user_id=user_id,
                    filename=filename,
                    status=JobStatus.PENDING.value,
                    total_files=total,
                    processed_files=0,
                    total_records=0,
                )
            )
            session.flush()
            for index, item in enumerate(files):
                session.add(
                    FileProcessingJob(
                        upload_job_id=job_id,
                        user_id=user_id,
                        file_index=index,
                        total_files=total,
                        file_name=item.name,
                        file_content=item.content,
                        file_path=item.path,
                        status=JobStatus.PENDING.value,
                        max_retries=self.max_retries,
                    )
                )
            session.flush()
            record = session.get(UploadJob, job_id)
            if record is not None:
                record.status = JobStatus.PROCESSING.value

        self._notify()
        log_event(
            self._logger,
            "upload.accepted",
            component="service.upload",
            status="ok",
            entity_id=job_id,
            total_files=total,
            source="inline" if files and files[0].content is not None else "storage",
        )
        return job_id

    def _notify(self) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier()
        except Exception:  # pragma: no cover - the poll loop picks the jobs up anyway
            self._logger.warning("Failed to wake the file processing worker", exc_info=True)


__all__ = [
    "QueuedFile",
    "UploadAccepted",
    "UploadService",
    "UploadStatus",
    "UploadedFile",
]
