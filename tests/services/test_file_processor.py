import json
from pathlib import Path

import pytest
from sqlalchemy import func, select

from listenlog.db import session_scope
from listenlog.models import JobStatus, Listen, UploadJob
from listenlog.services.analytics_cache import AnalyticsCache
from listenlog.services.analytics_service import AnalyticsService
from listenlog.services.file_processor import FileProcessor
from listenlog.services.job_queue import ClaimedJob
from listenlog.services.storage import FileStorage
from listenlog.utils.history_parser import HistoryParseError
from tests.helpers import extended_entry


def _upload(user_id: int, upload_id: str = "up-1", total_files: int = 1) -> str:
    with session_scope() as session:
        session.add(
            UploadJob(
                id=upload_id,
                user_id=user_id,
                filename="StreamingHistory0.json",
                status=JobStatus.PROCESSING.value,
                total_files=total_files,
            )
        )
    return upload_id


def _claimed(
    user_id: int,
    upload_id: str,
    *,
    content: str | None = None,
    path: str | None = None,
    index: int = 0,
    total: int = 1,
) -> ClaimedJob:
    return ClaimedJob(
        id=index + 1,
        upload_job_id=upload_id,
        user_id=user_id,
        file_index=index,
        total_files=total,
        file_name="StreamingHistory0.json",
        file_content=content,
        file_path=path,
        retry_count=0,
        max_retries=3,
    )


def _listen_count(user_id: int) -> int:
    with session_scope() as session:
        return session.execute(
            select(func.count(Listen.id)).where(Listen.user_id == user_id)
        ).scalar_one()


def _upload_row(upload_id: str) -> UploadJob:
    with session_scope() as session:
        record = session.get(UploadJob, upload_id)
        assert record is not None
        session.expunge(record)
        return record


@pytest.fixture()
def storage(tmp_path: Path) -> FileStorage:
    return FileStorage(tmp_path / "store")


def test_process_inserts_listens_and_completes_upload(create_user, storage) -> None:
    user_id = create_user()
    upload_id = _upload(user_id)
    text = json.dumps(
        [
            extended_entry(),
            extended_entry(ts="2024-03-01T12:10:00Z", track="Track B"),
        ]
    )

    outcome = FileProcessor(storage=storage).process(_claimed(user_id, upload_id, content=text))

    assert outcome.parsed == 2
    assert outcome.inserted == 2
    assert outcome.upload_completed is True
    assert _listen_count(user_id) == 2
    record = _upload_row(upload_id)
    assert record.status == JobStatus.COMPLETED.value
    assert record.processed_files == 1
    assert record.total_records == 2


def test_process_skips_listens_already_stored(create_user, storage) -> None:
    user_id = create_user()
    text = json.dumps([extended_entry()])
    processor = FileProcessor(storage=storage)

    processor.process(_claimed(user_id, _upload(user_id, "first"), content=text))
    second = processor.process(_claimed(user_id, _upload(user_id, "second"), content=text))

    assert second.inserted == 0
    assert _listen_count(user_id) == 1
    assert _upload_row("second").status == JobStatus.COMPLETED.value


def test_same_play_is_kept_for_different_users(create_user, storage) -> None:
    first_user = create_user()
    second_user = create_user()
    text = json.dumps([extended_entry()])
    processor = FileProcessor(storage=storage)

    processor.process(_claimed(first_user, _upload(first_user, "a"), content=text))
    processor.process(_claimed(second_user, _upload(second_user, "b"), content=text))

    assert _listen_count(first_user) == 1
    assert _listen_count(second_user) == 1


def test_multi_file_upload_completes_after_last_file(create_user, storage) -> None:
    user_id = create_user()
    upload_id = _upload(user_id, total_files=2)
    processor = FileProcessor(storage=storage)

    first = processor.process(
        _claimed(user_id, upload_id, content=json.dumps([extended_entry()]), index=0, total=2)
    )
    assert first.upload_completed is False
    assert _upload_row(upload_id).status == JobStatus.PROCESSING.value

    second = processor.process(
        _claimed(
            user_id,
            upload_id,
            content=json.dumps([extended_entry(ts="2024-04-01T00:00:00Z")]),
            index=1,
            total=2,
        )
    )
    assert second.upload_completed is True
    record = _upload_row(upload_id)
    assert record.processed_files == 2
    assert record.total_records == 2


def test_process_reads_and_removes_stored_file(create_user, storage) -> None:
    user_id = create_user()
    upload_id = _upload(user_id)
    key = storage.build_key(
        user_id=user_id, upload_job_id=upload_id, file_index=0, name="StreamingHistory0.json"
    )
    storage.save(key, json.dumps([extended_entry()]))

    FileProcessor(storage=storage).process(_claimed(user_id, upload_id, path=key))

    assert _listen_count(user_id) == 1
    assert not storage.exists(key)


def test_parse_failure_marks_upload_failed(create_user, storage) -> None:
    user_id = create_user()
    upload_id = _upload(user_id)

    with pytest.raises(HistoryParseError):
        FileProcessor(storage=storage).process(_claimed(user_id, upload_id, content="{}"))

    record = _upload_row(upload_id)
    assert record.status == JobStatus.FAILED.value
    assert record.error_message == "Expected an array of listening records in the JSON file."


def test_completed_upload_invalidates_cached_analytics(create_user, storage, log_events) -> None:
    user_id = create_user()
    cache = AnalyticsCache(max_items=10, ttl=60)
    cache.get_or_compute(user_id, "summary", None, lambda: "stale")
    analytics = AnalyticsService(cache=cache)
    events = log_events("listenlog.services.file_processor")

    FileProcessor(storage=storage, analytics=analytics).process(
        _claimed(user_id, _upload(user_id), content=json.dumps([extended_entry()]))
    )

    assert len(cache) == 0
    names = [name for name, _ in events]
    assert names == ["worker.job", "analytics.refresh"]
    assert events[0][1]["status"] == "ok"
    assert events[0][1]["inserted"] == 1
