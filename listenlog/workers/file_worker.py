"""Background worker that drains the file processing job queue."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import timedelta
import time

from sqlalchemy.orm import Session

from listenlog.config import AppConfig, WorkerConfig
from listenlog.db import session_scope
from listenlog.logging import get_logger
from listenlog.logging_events import log_event
from listenlog.services.file_processor import FileProcessor
from listenlog.services.job_queue import (
    ClaimedJob,
    claim_pending_jobs,
    mark_completed,
    mark_failed,
    reset_stale_jobs,
)

SessionFactory = Callable[[], AbstractContextManager[Session]]

logger = get_logger(__name__)


@dataclass(slots=True)
class TickSummary:
    """Counts produced by a single worker iteration."""

    claimed: int = 0
    completed: int = 0
    failed: int = 0
    retried: int = 0
    reset: int = 0

    @property
    def idle(self) -> bool:
        return not (self.claimed or self.reset)


class FileProcessingWorker:
    """Poll ``file_processing_jobs`` and feed claimed jobs to the processor."""

    def __init__(
        self,
        *,
        processor: FileProcessor,
        config: WorkerConfig,
        session_factory: SessionFactory = session_scope,
    ) -> None:
        self._processor = processor
        self._config = config
        self._session_factory = session_factory
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._stop_event = asyncio.Event()
        self._wake_event = asyncio.Event()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._last_stale_check: float | None = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the polling loop."""

        if self._task is not None and not self._task.done():
            return
        self._running = True
        self._loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()
        self._wake_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name="file-processing-worker")

    async def stop(self) -> None:
        """Stop the polling loop and wait for the current tick to finish."""

        if not self._running:
            return
        self._running = False
        self._stop_event.set()
        self._wake_event.set()
        if self._task is not None:
            try:
                await self._task
            finally:
                self._task = None

    def notify(self) -> None:
        """Wake the loop early after new jobs were queued; safe from any thread."""

        loop = self._loop
        if not self._running or loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._wake_event.set)

    async def _run(self) -> None:
        logger.info("FileProcessingWorker started")
        try:
            while self._running:
                try:
                    summary = await asyncio.to_thread(self.run_once)
                except Exception:  # pragma: no cover - a broken tick must not stop the loop
                    logger.exception("File processing tick failed")
                    summary = TickSummary()
                if summary.claimed >= self._config.batch_size and self._running:
                    continue
                self._wake_event.clear()
                try:
                    await asyncio.wait_for(
                        self._wake_event.wait(), timeout=self._config.poll_interval_s
                    )
                except asyncio.TimeoutError:
                    continue
        except asyncio.CancelledError:  # pragma: no cover - cooperative cancellation
            logger.debug("FileProcessingWorker task cancelled")
            raise
        finally:
            self._running = False
            logger.info("FileProcessingWorker stopped")

    def run_once(self, *, force_stale_check: bool = False) -> TickSummary:
        """Run one poll: release stale jobs when due, then process a batch."""

        summary = TickSummary()

        now = time.monotonic()
        due = (
            self._last_stale_check is None
            or now - self._last_stale_check >= self._config.stale_check_interval_s
        )
        if force_stale_check or due:
            self._last_stale_check = now
            with self._session_factory() as session:
                summary.reset = reset_stale_jobs(
                    session, older_than=timedelta(seconds=self._config.stale_after_s)
                )
            if summary.reset:
                log_event(
                    logger,
                    "worker.job",
                    component="worker.file_processing",
                    status="stale_reset",
                    count=summary.reset,
                )

        with self._session_factory() as session:
            jobs = claim_pending_jobs(session, self._config.batch_size)
        summary.claimed = len(jobs)

        for job in jobs:
            self._handle_job(job, summary)

        if not summary.idle:
            log_event(
                logger,
                "worker.tick",
                component="worker.file_processing",
                status="ok",
                claimed=summary.claimed,
                completed=summary.completed,
                failed=summary.failed,
                retried=summary.retried,
                reset=summary.reset,
            )
        return summary

    def _handle_job(self, job: ClaimedJob, summary: TickSummary) -> None:
        try:
            self._processor.process(job)
        except Exception as exc:
            message = getattr(exc, "message", None) or str(exc) or exc.__class__.__name__
            with self._session_factory() as session:
                status = mark_failed(session, job.id, message)
            if status == "pending":
                summary.retried += 1
            else:
                summary.failed += 1
            log_event(
                logger,
                "worker.job",
                component="worker.file_processing",
                status="error",
                job_id=job.id,
                upload_job_id=job.upload_job_id,
                attempt=job.retry_count + 1,
                next_status=status,
                error=message,
            )
            return

        with self._session_factory() as session:
            mark_completed(session, job.id)
        summary.completed += 1


def build_file_worker(config: AppConfig) -> FileProcessingWorker:
    from listenlog.dependencies import get_analytics_service, get_file_storage

    processor = FileProcessor(
        storage=get_file_storage(),
        analytics=get_analytics_service(),
        insert_batch_size=config.worker.insert_batch_size,
    )
    return FileProcessingWorker(processor=processor, config=config.worker)


async def _serve(worker: FileProcessingWorker) -> None:
    await worker.start()
    try:
        await asyncio.Event().wait()
    finally:
        await worker.stop()


def main() -> None:
    """Run the worker standalone until interrupted."""

    from listenlog.config import load_config
    from listenlog.db import init_db
    from listenlog.logging import configure_logging

    config = load_config()
    configure_logging(config.logging.level, config.logging.log_file)
    init_db()
    worker = build_file_worker(config)
    try:
        asyncio.run(_serve(worker))
    except KeyboardInterrupt:
        logger.info("FileProcessingWorker interrupted")


if __name__ == "__main__":
    main()


__all__ = ["FileProcessingWorker", "TickSummary", "build_file_worker"]
