from pathlib import Path
import zipfile

import pytest
from sqlalchemy import select

from listenlog.config import UploadConfig
from listenlog.db import session_scope
from listenlog.errors import NotFoundError, PermissionDeniedError, ValidationAppError
from listenlog.models import FileProcessingJob, JobStatus
from listenlog.services.storage import FileStorage
from listenlog.services.upload_service import QueuedFile, UploadedFile, UploadService
from tests.helpers import build_zip, extended_entry, history_payload

MEGABYTE = 1024 * 1024


class _Notifier:
    def __init__(self) -> None:
        self.calls = 0

    def __call__(self) -> None:
        self.calls += 1


@pytest.fixture()
def notifier() -> _Notifier:
    return _Notifier()


@pytest.fixture()
def storage(tmp_path: Path) -> FileStorage:
    return FileStorage(tmp_path / "store")


@pytest.fixture()
def service(storage: FileStorage, notifier: _Notifier) -> UploadService:
    limits = UploadConfig(max_file_bytes=MEGABYTE, max_zip_bytes=5 * MEGABYTE)
    return UploadService(storage=storage, limits=limits, max_retries=2, notifier=notifier)


def _jobs(upload_job_id: str) -> list[FileProcessingJob]:
    with session_scope() as session:
        jobs = (
            session.execute(
                select(FileProcessingJob)
                .where(FileProcessingJob.upload_job_id == upload_job_id)
                .order_by(FileProcessingJob.file_index)
            )
            .scalars()
            .all()
        )
        for job in jobs:
            session.expunge(job)
        return list(jobs)


def test_upload_json_files_queues_valid_files(create_user, service, notifier, log_events) -> None:
    user_id = create_user()
    events = log_events("listenlog.services.upload_service")

    accepted = service.upload_json_files(
        user_id=user_id,
        files=[
            UploadedFile("StreamingHistory0.json", history_payload(extended_entry())),
            UploadedFile("Playlist1.json", b"[]"),
        ],
    )

    assert accepted.total_files == 1
    assert accepted.skipped_files == 1
    assert accepted.errors == ["Playlist1.json: Not a recognized Spotify file format"]
    assert accepted.file_names == ["StreamingHistory0.json"]
    assert accepted.message == "Successfully queued 1 file(s) for processing"
    assert notifier.calls == 1

    jobs = _jobs(accepted.upload_job_id)
    assert len(jobs) == 1
    assert jobs[0].file_content is not None
    assert jobs[0].max_retries == 2
    assert jobs[0].status == JobStatus.PENDING.value

    status = service.get_status(user_id=user_id, upload_job_id=accepted.upload_job_id)
    assert status.status == JobStatus.PROCESSING.value
    assert status.filename == "StreamingHistory0.json"
    assert [name for name, _ in events] == ["upload.rejected_file", "upload.accepted"]
    assert events[0][1]["file_name"] == "Playlist1.json"


def test_upload_json_files_rejects_when_nothing_is_valid(create_user, service, notifier) -> None:
    user_id = create_user()

    with pytest.raises(ValidationAppError) as exc_info:
        service.upload_json_files(
            user_id=user_id, files=[UploadedFile("StreamingHistory0.json", b"not json")]
        )

    assert exc_info.value.message == "No valid Spotify JSON files found"
    assert exc_info.value.meta == {"details": ["StreamingHistory0.json: Invalid JSON format"]}
    assert notifier.calls == 0


def test_upload_json_files_requires_files(create_user, service) -> None:
    with pytest.raises(ValidationAppError):
        service.upload_json_files(user_id=create_user(), files=[])


def test_multiple_files_get_summary_filename(create_user, service) -> None:
    user_id = create_user()
    files = [
        UploadedFile(f"StreamingHistory{index}.json", history_payload(extended_entry()))
        for index in range(3)
    ]

    accepted = service.upload_json_files(user_id=user_id, files=files)

    status = service.get_status(user_id=user_id, upload_job_id=accepted.upload_job_id)
    assert status.filename == "3 JSON files"
    assert status.total_files == 3
    assert [job.file_index for job in _jobs(accepted.upload_job_id)] == [0, 1, 2]


def test_two_step_upload_flow(create_user, service, storage, notifier) -> None:
    user_id = create_user()
    upload_job_id = service.create_upload_job(user_id=user_id, file_count=2)
    keys = [
        service.store_file(
            user_id=user_id,
            upload_job_id=upload_job_id,
            file_index=index,
            upload=UploadedFile(f"StreamingHistory{index}.json", history_payload(extended_entry())),
        )
        for index in range(2)
    ]

    queued = service.queue_files(
        user_id=user_id,
        upload_job_id=upload_job_id,
        files=[
            QueuedFile(filename=f"StreamingHistory{index}.json", file_path=key, file_index=index)
            for index, key in enumerate(keys)
        ],
        total_files=2,
    )

    assert queued == 2
    assert all(storage.exists(key) for key in keys)
    jobs = _jobs(upload_job_id)
    assert [job.file_path for job in jobs] == keys
    assert all(job.file_content is None for job in jobs)
    assert notifier.calls == 1
    status = service.get_status(user_id=user_id, upload_job_id=upload_job_id)
    assert status.status == JobStatus.PROCESSING.value
    assert status.filename == "2 JSON files"


def test_create_upload_job_rejects_invalid_count(create_user, service) -> None:
    with pytest.raises(ValidationAppError) as exc_info:
        service.create_upload_job(user_id=create_user(), file_count=0)

    assert exc_info.value.message == "Invalid file count"


def test_queue_files_rejects_foreign_paths(create_user, service, storage) -> None:
    owner = create_user()
    intruder = create_user()
    upload_job_id = service.create_upload_job(user_id=owner, file_count=1)
    key = service.store_file(
        user_id=owner,
        upload_job_id=upload_job_id,
        file_index=0,
        upload=UploadedFile("StreamingHistory0.json", history_payload(extended_entry())),
    )
    intruder_job = service.create_upload_job(user_id=intruder, file_count=1)

    with pytest.raises(ValidationAppError) as exc_info:
        service.queue_files(
            user_id=intruder,
            upload_job_id=intruder_job,
            files=[QueuedFile(filename="StreamingHistory0.json", file_path=key, file_index=0)],
            total_files=1,
        )

    assert exc_info.value.message == "Invalid file path"


def test_queue_files_requires_stored_file(create_user, service) -> None:
    user_id = create_user()
    upload_job_id = service.create_upload_job(user_id=user_id, file_count=1)

    with pytest.raises(ValidationAppError) as exc_info:
        service.queue_files(
            user_id=user_id,
            upload_job_id=upload_job_id,
            files=[
                QueuedFile(
                    filename="StreamingHistory0.json",
                    file_path=f"{user_id}/{upload_job_id}/0_missing.json",
                    file_index=0,
                )
            ],
            total_files=1,
        )

    assert exc_info.value.message == "Stored file not found"


def test_queue_files_unknown_job(create_user, service, storage) -> None:
    user_id = create_user()
    key = f"{user_id}/nope/0_StreamingHistory0.json"
    storage.save(key, "[]")

    with pytest.raises(NotFoundError):
        service.queue_files(
            user_id=user_id,
            upload_job_id="nope",
            files=[QueuedFile(filename="StreamingHistory0.json", file_path=key, file_index=0)],
            total_files=1,
        )


def test_store_file_validates_content(create_user, service) -> None:
    user_id = create_user()
    upload_job_id = service.create_upload_job(user_id=user_id, file_count=1)

    with pytest.raises(ValidationAppError) as exc_info:
        service.store_file(
            user_id=user_id,
            upload_job_id=upload_job_id,
            file_index=0,
            upload=UploadedFile("StreamingHistory0.json", b""),
        )

    assert exc_info.value.message == "StreamingHistory0.json: File is empty"


def test_upload_zip_stores_members(create_user, service, storage) -> None:
    user_id = create_user()
    data = build_zip(
        {
            "MyData/StreamingHistory0.json": history_payload(extended_entry()),
            "MyData/Streaming_History_Audio_2024.json": history_payload(extended_entry()),
            "MyData/Identity.json": b"{}",
        }
    )

    accepted = service.upload_zip(user_id=user_id, filename="my_spotify_data.zip", data=data)

    assert accepted.total_files == 2
    jobs = _jobs(accepted.upload_job_id)
    assert all(job.file_path and storage.exists(job.file_path) for job in jobs)
    status = service.get_status(user_id=user_id, upload_job_id=accepted.upload_job_id)
    assert status.filename == "my_spotify_data.zip"


def test_upload_zip_skips_members_over_the_file_limit(create_user, service) -> None:
    user_id = create_user()
    oversized = b"[" + b" " * (2 * MEGABYTE) + b"]"
    data = build_zip(
        {
            "StreamingHistory0.json": oversized,
            "StreamingHistory1.json": history_payload(extended_entry()),
        },
        compression=zipfile.ZIP_DEFLATED,
    )

    accepted = service.upload_zip(user_id=user_id, filename="export.zip", data=data)

    assert accepted.total_files == 1
    assert accepted.file_names == ["StreamingHistory1.json"]
    assert accepted.skipped_files == 1
    assert accepted.errors == ["StreamingHistory0.json: File too large (2.0MB, max 1MB)"]


def test_upload_zip_with_no_usable_members_lists_reasons(create_user, service) -> None:
    data = build_zip(
        {"StreamingHistory0.json": b"[" + b" " * (2 * MEGABYTE) + b"]"},
        compression=zipfile.ZIP_DEFLATED,
    )

    with pytest.raises(ValidationAppError) as exc_info:
        service.upload_zip(user_id=create_user(), filename="export.zip", data=data)

    assert exc_info.value.message == "No valid Spotify JSON files found in the ZIP archive"
    assert exc_info.value.meta == {
        "details": ["StreamingHistory0.json: File too large (2.0MB, max 1MB)"]
    }


@pytest.mark.parametrize(
    ("filename", "data", "message"),
    [
        ("history.json", b"[]", "Only ZIP files are supported"),
        ("export.zip", b"garbage", "Failed to extract ZIP file"),
        ("export.zip", build_zip({"Playlist1.json": b"[]"}), "No Spotify JSON files found"),
    ],
)
def test_upload_zip_rejections(create_user, service, filename, data, message) -> None:
    with pytest.raises(ValidationAppError) as exc_info:
        service.upload_zip(user_id=create_user(), filename=filename, data=data)

    assert exc_info.value.message.startswith(message)


def test_status_is_scoped_to_owner(create_user, service) -> None:
    owner = create_user()
    other = create_user()
    upload_job_id = service.create_upload_job(user_id=owner, file_count=1)

    with pytest.raises(PermissionDeniedError):
        service.get_status(user_id=other, upload_job_id=upload_job_id)
    with pytest.raises(NotFoundError):
        service.get_status(user_id=owner, upload_job_id="missing")


def test_list_uploads_returns_only_own_jobs(create_user, service) -> None:
    owner = create_user()
    other = create_user()
    service.create_upload_job(user_id=owner, file_count=1, filename="mine.json")
    service.create_upload_job(user_id=other, file_count=1, filename="theirs.json")

    uploads = service.list_uploads(user_id=owner)

    assert [item.filename for item in uploads] == ["mine.json"]
