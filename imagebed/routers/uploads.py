"""Upload session endpoints.

Thin adapters over ``UploadStore`` actions: every route performs one action
and answers with the resulting snapshot (or the intake outcome). The store is
created in the application lifespan and read from ``app.state``.
"""

from __future__ import annotations

from fastapi import APIRouter, File, Request, UploadFile
from fastapi.responses import FileResponse, JSONResponse
from pydantic import ValidationError as PydanticValidationError

from imagebed.schemas.errors import ErrorDetail, ErrorResponse
from imagebed.schemas.uploads import ConfigUpdate, IntakeResponse, SnapshotResponse
from imagebed.upload.intake import detect_media_type
from imagebed.upload.models import CandidateFile
from imagebed.upload.store import UploadStore

router = APIRouter(prefix="/uploads", tags=["uploads"])

_NOT_FOUND = {404: {"description": "File not tracked", "model": ErrorResponse}}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _store(request: Request) -> UploadStore:
    return request.app.state.upload_store


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    """Build a JSON error response matching the project convention."""
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message)).model_dump(),
    )


def _snapshot(store: UploadStore) -> SnapshotResponse:
    return SnapshotResponse.from_snapshot(store.snapshot)


def _file_action(
    store: UploadStore, file_id: str, applied: bool, verb: str
) -> SnapshotResponse | JSONResponse:
    if applied:
        return _snapshot(store)
    upload = store.snapshot.get(file_id)
    if upload is None:
        return _error_response(404, "NOT_FOUND", f"No upload with id {file_id}")
    return _error_response(409, "INVALID_STATE", f"Cannot {verb} a file that is {upload.status}")


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


@router.get("", response_model=SnapshotResponse)
async def get_snapshot(request: Request) -> SnapshotResponse:
    return _snapshot(_store(request))


@router.post("/open", response_model=SnapshotResponse)
async def open_session(request: Request, force: bool = False) -> SnapshotResponse:
    """Open the upload dialog, loading image settings on first open (or when forced)."""
    store = _store(request)
    await store.open_dialog(force=force)
    return _snapshot(store)


@router.post("/close", response_model=SnapshotResponse)
async def close_session(request: Request) -> SnapshotResponse:
    store = _store(request)
    store.close_dialog()
    return _snapshot(store)


@router.post("/reset", response_model=SnapshotResponse)
async def reset_session(request: Request) -> SnapshotResponse:
    store = _store(request)
    store.reset()
    return _snapshot(store)


@router.delete("/error", response_model=SnapshotResponse)
async def clear_error(request: Request) -> SnapshotResponse:
    store = _store(request)
    store.clear_error()
    return _snapshot(store)


@router.patch(
    "/config",
    response_model=SnapshotResponse,
    responses={400: {"description": "Invalid configuration", "model": ErrorResponse}},
)
async def update_config(
    request: Request, update: ConfigUpdate
) -> SnapshotResponse | JSONResponse:
    store = _store(request)
    try:
        store.update_config(**update.model_dump(exclude_unset=True))
    except (PydanticValidationError, ValueError) as e:
        return _error_response(400, "INVALID_CONFIG", str(e))
    return _snapshot(store)


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------


@router.post("/files", response_model=IntakeResponse, status_code=201)
async def add_files(
    request: Request,
    files: list[UploadFile] = File(  # noqa: B008
        ..., description="Images to queue for upload."
    ),
) -> IntakeResponse:
    """Queue files for upload.

    Content types are sniffed from the bytes, not taken from the client.
    Rejected files are listed in ``rejections`` and in the snapshot's
    ``global_error``; accepted files are queued as pending.
    """
    candidates = [
        CandidateFile(name=f.filename or "upload", content=await f.read()) for f in files
    ]
    result = _store(request).add_files(candidates)
    return IntakeResponse.from_result(result)


@router.delete("/files", response_model=SnapshotResponse)
async def clear_files(request: Request) -> SnapshotResponse:
    store = _store(request)
    store.clear_files()
    return _snapshot(store)


@router.post("/clear-completed", response_model=SnapshotResponse)
async def clear_completed(request: Request) -> SnapshotResponse:
    store = _store(request)
    store.clear_completed()
    return _snapshot(store)


@router.delete("/files/{file_id}", response_model=SnapshotResponse, responses=_NOT_FOUND)
async def remove_file(request: Request, file_id: str) -> SnapshotResponse | JSONResponse:
    store = _store(request)
    if not store.remove_file(file_id):
        return _error_response(404, "NOT_FOUND", f"No upload with id {file_id}")
    return _snapshot(store)


@router.post("/files/{file_id}/retry", response_model=SnapshotResponse, responses=_NOT_FOUND)
async def retry_file(request: Request, file_id: str) -> SnapshotResponse | JSONResponse:
    store = _store(request)
    return _file_action(store, file_id, store.retry_file(file_id), "retry")


@router.post("/files/{file_id}/cancel", response_model=SnapshotResponse, responses=_NOT_FOUND)
async def cancel_file(request: Request, file_id: str) -> SnapshotResponse | JSONResponse:
    store = _store(request)
    return _file_action(store, file_id, store.cancel_file(file_id), "cancel")


@router.get("/files/{file_id}/preview", response_model=None, responses=_NOT_FOUND)
async def get_preview(request: Request, file_id: str) -> FileResponse | JSONResponse:
    upload = _store(request).snapshot.get(file_id)
    if upload is None:
        return _error_response(404, "NOT_FOUND", f"No upload with id {file_id}")
    if upload.preview is None or upload.preview.released:
        return _error_response(404, "NO_PREVIEW", f"No preview available for {upload.name}")
    return FileResponse(
        path=upload.preview.path,
        media_type=detect_media_type(upload.file) or "application/octet-stream",
        content_disposition_type="inline",
    )


@router.post("/retry-failed", response_model=SnapshotResponse)
async def retry_failed(request: Request) -> SnapshotResponse:
    store = _store(request)
    store.retry_all_failed()
    return _snapshot(store)


# ---------------------------------------------------------------------------
# Upload control
# ---------------------------------------------------------------------------


@router.post("/start", response_model=SnapshotResponse, status_code=202)
async def start_upload(request: Request) -> SnapshotResponse:
    """Start uploading pending files in the background."""
    store = _store(request)
    await store.start_upload(wait=False)
    return _snapshot(store)


@router.post("/pause", response_model=SnapshotResponse)
async def pause_upload(request: Request) -> SnapshotResponse:
    store = _store(request)
    store.pause_upload()
    return _snapshot(store)


@router.post("/resume", response_model=SnapshotResponse, status_code=202)
async def resume_upload(request: Request) -> SnapshotResponse:
    store = _store(request)
    await store.resume_upload(wait=False)
    return _snapshot(store)


@router.post("/cancel", response_model=SnapshotResponse)
async def cancel_all(request: Request) -> SnapshotResponse:
    store = _store(request)
    store.cancel_all_uploads()
    return _snapshot(store)
