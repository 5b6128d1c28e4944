"""Upload endpoints feeding the file processing queue."""

from __future__ import annotations

from time import perf_counter
from typing import Any

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile, status

from listenlog.api._events import emit_api_event
from listenlog.dependencies import get_current_user, get_upload_service
from listenlog.errors import AppError, InternalServerError
from listenlog.schemas.common import ApiResponse, envelope
from listenlog.schemas.uploads import (
    CreateUploadJobRequest,
    CreateUploadJobResponse,
    QueueFilesRequest,
    QueueFilesResponse,
    StoredFileResponse,
    UploadAcceptedResponse,
    UploadStatusResponse,
)
from listenlog.services.auth_service import AuthenticatedUser
from listenlog.services.upload_service import QueuedFile, UploadedFile, UploadService

router = APIRouter(prefix="/api/uploads", tags=["Uploads"])


def _read_upload(upload: UploadFile, *, limit: int) -> UploadedFile:
    # One byte past the limit is enough for the size check to reject it.
    content = upload.file.read(limit + 1)
    return UploadedFile(name=upload.filename or "upload", content=content)


def _emit(
    request: Request,
    started: float,
    status_code: int,
    *,
    error: str | None = None,
    meta: dict[str, Any] | None = None,
) -> None:
    emit_api_event(
        request,
        component="api.uploads",
        status_code=status_code,
        status="ok" if error is None else "error",
        duration_ms=(perf_counter() - started) * 1000,
        error=error,
        meta=meta,
    )


def _call(request: Request, started: float, func, *args, **kwargs):
    try:
        return func(*args, **kwargs)
    except AppError as exc:
        _emit(request, started, exc.http_status, error=exc.code.value)
        raise
    except Exception as exc:
        _emit(request, started, status.HTTP_500_INTERNAL_SERVER_ERROR, error="unexpected_error")
        raise InternalServerError("Failed to process the upload request.") from exc


@router.get("", response_model=ApiResponse[list[UploadStatusResponse]])
def list_uploads(
    request: Request,
    limit: int = Query(20, ge=1, le=100),
    user: AuthenticatedUser = Depends(get_current_user),
    service: UploadService = Depends(get_upload_service),
) -> ApiResponse[list[UploadStatusResponse]]:
    started = perf_counter()
    records = _call(request, started, service.list_uploads, user_id=user.id, limit=limit)
    _emit(request, started, status.HTTP_200_OK, meta={"count": len(records)})
    return envelope([UploadStatusResponse.model_validate(record) for record in records])


@router.post("/json", response_model=ApiResponse[UploadAcceptedResponse])
def upload_json(
    request: Request,
    files: list[UploadFile] = File(...),
    user: AuthenticatedUser = Depends(get_current_user),
    service: UploadService = Depends(get_upload_service),
) -> ApiResponse[UploadAcceptedResponse]:
    started = perf_counter()
    limit = service.limits.max_file_bytes
    uploads = [_read_upload(item, limit=limit) for item in files]
    accepted = _call(request, started, service.upload_json_files, user_id=user.id, files=uploads)
    _emit(
        request,
        started,
        status.HTTP_200_OK,
        meta={"files": accepted.total_files, "skipped": accepted.skipped_files},
    )
    return envelope(UploadAcceptedResponse.model_validate(accepted))


@router.post("/json/create", response_model=ApiResponse[CreateUploadJobResponse])
def create_upload_job(
    payload: CreateUploadJobRequest,
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
    service: UploadService = Depends(get_upload_service),
) -> ApiResponse[CreateUploadJobResponse]:
    started = perf_counter()
    upload_job_id = _call(
        request,
        started,
        service.create_upload_job,
        user_id=user.id,
        file_count=payload.file_count,
        filename=payload.filename,
    )
    _emit(request, started, status.HTTP_200_OK)
    return envelope(CreateUploadJobResponse(upload_job_id=upload_job_id, user_id=user.id))


@router.post("/json/{upload_job_id}/files", response_model=ApiResponse[StoredFileResponse])
def store_upload_file(
    upload_job_id: str,
    request: Request,
    file: UploadFile = File(...),
    file_index: int = Form(..., alias="fileIndex", ge=0),
    user: AuthenticatedUser = Depends(get_current_user),
    service: UploadService = Depends(get_upload_service),
) -> ApiResponse[StoredFileResponse]:
    started = perf_counter()
    upload = _read_upload(file, limit=service.limits.max_file_bytes)
    key = _call(
        request,
        started,
        service.store_file,
        user_id=user.id,
        upload_job_id=upload_job_id,
        file_index=file_index,
        upload=upload,
    )
    _emit(request, started, status.HTTP_200_OK)
    return envelope(StoredFileResponse(file_path=key, file_index=file_index))


@router.post("/json/queue", response_model=ApiResponse[QueueFilesResponse])
def queue_files(
    payload: QueueFilesRequest,
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
    service: UploadService = Depends(get_upload_service),
) -> ApiResponse[QueueFilesResponse]:
    started = perf_counter()
    files = [
        QueuedFile(filename=item.filename, file_path=item.file_path, file_index=item.file_index)
        for item in payload.files
    ]
    count = _call(
        request,
        started,
        service.queue_files,
        user_id=user.id,
        upload_job_id=payload.upload_job_id,
        files=files,
        total_files=payload.total_files or len(files),
    )
    _emit(request, started, status.HTTP_200_OK, meta={"files": count})
    return envelope(
        QueueFilesResponse(success=True, message=f"Queued {count} files for processing")
    )


@router.post("/zip", response_model=ApiResponse[UploadAcceptedResponse])
def upload_zip(
    request: Request,
    file: UploadFile = File(...),
    user: AuthenticatedUser = Depends(get_current_user),
    service: UploadService = Depends(get_upload_service),
) -> ApiResponse[UploadAcceptedResponse]:
    started = perf_counter()
    upload = _read_upload(file, limit=service.limits.max_zip_bytes)
    accepted = _call(
        request,
        started,
        service.upload_zip,
        user_id=user.id,
        filename=upload.name,
        data=upload.content,
    )
    _emit(request, started, status.HTTP_200_OK, meta={"files": accepted.total_files})
    return envelope(UploadAcceptedResponse.model_validate(accepted))


@router.get("/{upload_job_id}/status", response_model=ApiResponse[UploadStatusResponse])
def upload_status(
    upload_job_id: str,
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
    service: UploadService = Depends(get_upload_service),
) -> ApiResponse[UploadStatusResponse]:
    started = perf_counter()
    record = _call(
        request, started, service.get_status, user_id=user.id, upload_job_id=upload_job_id
    )
    _emit(request, started, status.HTTP_200_OK)
    return envelope(UploadStatusResponse.model_validate(record))
