"""Turn claimed file processing jobs into stored listens."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import case, exists, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from listenlog.db import session_scope
from listenlog.logging import get_logger
from listenlog.logging_events import log_event
from listenlog.models import FileProcessingJob, JobStatus, Listen, UploadJob
from listenlog.services.analytics_service import AnalyticsService
from listenlog.services.job_queue import ClaimedJob
from listenlog.services.storage import FileStorage
from listenlog.utils.history_parser import ListenRecord, chunked, parse_history
from listenlog.utils.time import utcnow

SessionFactory = Callable[[], AbstractContextManager[Session]]
PlayKey = tuple[Any, str | None, str | None, int]

logger = get_logger(__name__)


@dataclass(slots=True)
class ProcessOutcome:
    job_id: int
    upload_job_id: str
    parsed: int
    inserted: int
    upload_completed: bool


def _play_key(row: dict[str, Any]) -> PlayKey:
    return (row["ts"], row["track"], row["artist"], row["ms_played"])


@dataclass(slots=True)
class FileProcessor:
    """Parse a history file and append its listens to the owning user."""

    storage: FileStorage
    session_factory: SessionFactory = field(default=session_scope, repr=False)
    analytics: AnalyticsService | None = field(default=None, repr=False)
    insert_batch_size: int = 500

    def process(self, job: ClaimedJob) -> ProcessOutcome:
        try:
            text = self._load_content(job)
            parsed = parse_history(text)
            inserted = self._insert_records(job.user_id, parsed.records)
            completed = self._advance_upload(job.upload_job_id, inserted)
        except Exception as exc:
            message = getattr(exc, "message", None) or str(exc) or exc.__class__.__name__
            self._fail_upload(job.upload_job_id, message)
            log_event(
                logger,
                "worker.job",
                component="service.file_processor",
                status="error",
                job_id=job.id,
                upload_job_id=job.upload_job_id,
                error=message,
            )
            raise

        if job.file_path:
            self.storage.delete(job.file_path)

        log_event(
            logger,
            "worker.job",
            component="service.file_processor",
            status="ok",
            job_id=job.id,
            upload_job_id=job.upload_job_id,
            file_index=job.file_index,
            parsed=len(parsed.records),
            inserted=inserted,
            skipped=parsed.skipped,
            duplicates=parsed.duplicates,
        )

        if completed:
            self._refresh_analytics(job)

        return ProcessOutcome(
            job_id=job.id,
            upload_job_id=job.upload_job_id,
            parsed=len(parsed.records),
            inserted=inserted,
            upload_completed=completed,
        )

    def _load_content(self, job: ClaimedJob) -> str:
        if job.file_content is not None:
            return job.file_content
        if job.file_path:
            return self.storage.read_text(job.file_path)
        raise ValueError("File processing job has neither content nor a storage path")

    def _insert_records(self, user_id: int, records: Sequence[ListenRecord]) -> int:
        inserted = 0
        now = utcnow()
        for batch in chunked(records, self.insert_batch_size):
            rows = [{**record.as_row(), "user_id": user_id, "uploaded_at": now} for record in batch]
            inserted += self._insert_batch(user_id, rows)
        return inserted

    def _insert_batch(self, user_id: int, rows: list[dict[str, Any]]) -> int:
        with self.session_factory() as session:
            existing = self._existing_keys(session, user_id, rows)
            fresh = [row for row in rows if _play_key(row) not in existing]
            if not fresh:
                return 0
            try:
                session.execute(insert(Listen), fresh)
                return len(fresh)
            except IntegrityError:
                # Another writer stored some of these plays in the meantime.
                session.rollback()
                return self._insert_one_by_one(session, fresh)

    @staticmethod
    def _existing_keys(
        session: Session, user_id: int, rows: Sequence[dict[str, Any]]
    ) -> set[PlayKey]:
        timestamps = {row["ts"] for row in rows}
        stored = session.execute(
            select(Listen.ts, Listen.track, Listen.artist, Listen.ms_played).where(
                Listen.user_id == user_id,
                Listen.ts.in_(sorted(timestamps)),
            )
        ).all()
        return {tuple(row) for row in stored}  # type: ignore[misc]

    @staticmethod
    def _insert_one_by_one(session: Session, rows: Sequence[dict[str, Any]]) -> int:
        inserted = 0
        for row in rows:
            try:
                session.execute(insert(Listen), [row])
                session.commit()
            except IntegrityError:
                session.rollback()
                continue
            inserted += 1
        return inserted

    def _advance_upload(self, upload_job_id: str, inserted: int) -> bool:
        # A file that has used up its retries keeps the whole upload failed.
        has_failed_file = exists().where(
            FileProcessingJob.upload_job_id == upload_job_id,
            FileProcessingJob.status == JobStatus.FAILED.value,
        )
        with self.session_factory() as session:
            session.execute(
                update(UploadJob)
                .where(UploadJob.id == upload_job_id)
                .values(
                    processed_files=UploadJob.processed_files + 1,
                    total_records=UploadJob.total_records + inserted,
                    status=case(
                        (has_failed_file, JobStatus.FAILED.value),
                        (
                            UploadJob.processed_files + 1 >= UploadJob.total_files,
                            JobStatus.COMPLETED.value,
                        ),
                        else_=JobStatus.PROCESSING.value,
                    ),
                    error_message=case(
                        (has_failed_file, UploadJob.error_message),
                        else_=None,
                    ),
                    updated_at=utcnow(),
                )
            )
            status = session.execute(
                select(UploadJob.status).where(UploadJob.id == upload_job_id)
            ).scalar_one_or_none()
        return status == JobStatus.COMPLETED.value

    def _fail_upload(self, upload_job_id: str, message: str) -> None:
        with self.session_factory() as session:
            session.execute(
                update(UploadJob)
                .where(UploadJob.id == upload_job_id)
                .values(
                    status=JobStatus.FAILED.value,
                    error_message=message,
                    updated_at=utcnow(),
                )
            )

    def _refresh_analytics(self, job: ClaimedJob) -> None:
        try:
            if self.analytics is not None:
                self.analytics.invalidate(job.user_id)
        except Exception:  # pragma: no cover - refresh failures never fail an upload
            logger.exception("Analytics refresh failed for upload %s", job.upload_job_id)
            return
        log_event(
            logger,
            "analytics.refresh",
            component="service.file_processor",
            status="ok",
            upload_job_id=job.upload_job_id,
            entity_id=str(job.user_id),
        )


__all__ = ["FileProcessor", "ProcessOutcome"]
