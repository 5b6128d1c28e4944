"""Persistence helpers for the file processing job queue."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from listenlog.models import FileProcessingJob, JobStatus
from listenlog.utils.time import utcnow

STALE_FAILURE_MESSAGE = "Job stalled and exceeded max retries"


@dataclass(slots=True)
class ClaimedJob:
    """Snapshot of a claimed job handed to the processor outside the session."""

    id: int
    upload_job_id: str
    user_id: int
    file_index: int
    total_files: int
    file_name: str | None
    file_content: str | None
    file_path: str | None
    retry_count: int
    max_retries: int


def _snapshot(job: FileProcessingJob) -> ClaimedJob:
    return ClaimedJob(
        id=job.id,
        upload_job_id=job.upload_job_id,
        user_id=job.user_id,
        file_index=job.file_index,
        total_files=job.total_files,
        file_name=job.file_name,
        file_content=job.file_content,
        file_path=job.file_path,
        retry_count=job.retry_count,
        max_retries=job.max_retries,
    )


def claim_pending_jobs(session: Session, batch_size: int) -> list[ClaimedJob]:
    """Move up to ``batch_size`` oldest pending jobs to ``processing``.

    The status guard on the update keeps two workers from claiming the same
    row; a job another worker took in between is simply left out.
    """

    candidate_ids = (
        session.execute(
            select(FileProcessingJob.id)
            .where(FileProcessingJob.status == JobStatus.PENDING.value)
            .order_by(FileProcessingJob.created_at.asc(), FileProcessingJob.id.asc())
            .limit(max(1, batch_size))
        )
        .scalars()
        .all()
    )

    claimed: list[ClaimedJob] = []
    now = utcnow()
    for job_id in candidate_ids:
        result = session.execute(
            update(FileProcessingJob)
            .where(
                FileProcessingJob.id == job_id,
                FileProcessingJob.status == JobStatus.PENDING.value,
            )
            .values(status=JobStatus.PROCESSING.value, started_at=now)
        )
        if result.rowcount != 1:
            continue
        job = session.get(FileProcessingJob, job_id, populate_existing=True)
        if job is not None:
            claimed.append(_snapshot(job))
    return claimed


def mark_completed(session: Session, job_id: int) -> None:
    job = session.get(FileProcessingJob, job_id)
    if job is None:
        return
    job.status = JobStatus.COMPLETED.value
    job.completed_at = utcnow()
    job.error_message = None


def mark_failed(session: Session, job_id: int, error: str) -> str | None:
    """Record a failed attempt and return the resulting status.

    Jobs go back to ``pending`` while retries remain, otherwise ``failed``.
    """

    job = session.get(FileProcessingJob, job_id)
    if job is None:
        return None
    should_retry = job.retry_count < job.max_retries
    job.status = JobStatus.PENDING.value if should_retry else JobStatus.FAILED.value
    job.retry_count = job.retry_count + 1
    job.error_message = error
    job.started_at = None
    return job.status


def reset_stale_jobs(session: Session, *, older_than: timedelta) -> int:
    """Release jobs stuck in ``processing`` longer than ``older_than``."""

    threshold = utcnow() - older_than
    stale: Sequence[FileProcessingJob] = (
        session.execute(
            select(FileProcessingJob).where(
                FileProcessingJob.status == JobStatus.PROCESSING.value,
                FileProcessingJob.started_at.is_not(None),
                FileProcessingJob.started_at < threshold,
            )
        )
        .scalars()
        .all()
    )
    for job in stale:
        if job.retry_count >= job.max_retries:
            job.status = JobStatus.FAILED.value
            job.error_message = STALE_FAILURE_MESSAGE
        else:
            job.status = JobStatus.PENDING.value
        job.retry_count = job.retry_count + 1
        job.started_at = None
    return len(stale)


def queue_stats(session: Session) -> dict[str, int]:
    """Return job counts per status, including zero counts."""

    counts = {status.value: 0 for status in JobStatus}
    rows = session.execute(
        select(FileProcessingJob.status, func.count(FileProcessingJob.id)).group_by(
            FileProcessingJob.status
        )
    ).all()
    for status, count in rows:
        counts[str(status)] = int(count)
    return counts


__all__ = [
    "ClaimedJob",
    "STALE_FAILURE_MESSAGE",
    "claim_pending_jobs",
    "mark_completed",
    "mark_failed",
    "queue_stats",
    "reset_stale_jobs",
]
