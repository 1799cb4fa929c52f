from __future__ import annotations

from pydantic import BaseModel, Field

from imagebed.upload.config import UploadConfig
from imagebed.upload.errors import ValidationCode, ValidationError
from imagebed.upload.intake import IntakeResult
from imagebed.upload.models import (
    BatchStats,
    UploadFile,
    UploadResponse,
    UploadSnapshot,
    UploadStatus,
)


class UploadResultView(BaseModel):
    id: int | str
    url: str
    filename: str | None = None
    mime_type: str | None = None
    size: int | None = None
    thumbnail_url: str | None = None

    @classmethod
    def from_response(cls, response: UploadResponse) -> UploadResultView:
        return cls(
            id=response.id,
            url=response.url,
            filename=response.filename,
            mime_type=response.mime_type,
            size=response.size,
            thumbnail_url=response.thumbnail_url,
        )


class UploadFileView(BaseModel):
    """One queued file as shown in the upload dialog."""

    id: str
    name: str
    size: int
    media_type: str | None = None
    status: UploadStatus
    progress: int = Field(ge=0, le=100)
    error: str | None = None
    result: UploadResultView | None = None
    has_preview: bool = False

    @classmethod
    def from_upload(cls, upload: UploadFile) -> UploadFileView:
        return cls(
            id=upload.id,
            name=upload.name,
            size=upload.file.size,
            media_type=upload.file.media_type,
            status=upload.status,
            progress=upload.progress,
            error=upload.error,
            result=UploadResultView.from_response(upload.result) if upload.result else None,
            has_preview=upload.preview is not None and not upload.preview.released,
        )


class BatchStatsView(BaseModel):
    total_files: int
    completed_files: int
    failed_files: int
    overall_progress: int = Field(ge=0, le=100)

    @classmethod
    def from_stats(cls, stats: BatchStats) -> BatchStatsView:
        return cls(
            total_files=stats.total_files,
            completed_files=stats.completed_files,
            failed_files=stats.failed_files,
            overall_progress=stats.overall_progress,
        )


class UploadConfigView(BaseModel):
    max_size_mb: float
    allowed_mime_types: list[str]
    batch_limit: int
    compression_quality: int
    album_id: int | None = None
    is_public: bool | None = None
    storage_strategy_id: int | None = None

    @classmethod
    def from_config(cls, config: UploadConfig) -> UploadConfigView:
        data = config.model_dump()
        data["allowed_mime_types"] = sorted(config.allowed_mime_types)
        return cls.model_validate(data)


class SnapshotResponse(BaseModel):
    files: list[UploadFileView]
    stats: BatchStatsView
    config: UploadConfigView
    is_uploading: bool
    global_error: str | None = None
    settings_loaded: bool
    dialog_open: bool

    @classmethod
    def from_snapshot(cls, snapshot: UploadSnapshot) -> SnapshotResponse:
        return cls(
            files=[UploadFileView.from_upload(f) for f in snapshot.files],
            stats=BatchStatsView.from_stats(snapshot.stats),
            config=UploadConfigView.from_config(snapshot.config),
            is_uploading=snapshot.is_uploading,
            global_error=snapshot.global_error,
            settings_loaded=snapshot.settings_loaded,
            dialog_open=snapshot.dialog_open,
        )


class RejectionView(BaseModel):
    code: ValidationCode
    file: str | None = None
    message: str

    @classmethod
    def from_error(cls, error: ValidationError) -> RejectionView:
        return cls(code=error.code, file=error.file_name, message=error.message)


class IntakeResponse(BaseModel):
    """Outcome of adding files to the queue."""

    accepted: list[UploadFileView] = Field(default_factory=list)
    rejections: list[RejectionView] = Field(default_factory=list)
    error: str | None = None

    @classmethod
    def from_result(cls, result: IntakeResult) -> IntakeResponse:
        return cls(
            accepted=[UploadFileView.from_upload(f) for f in result.accepted],
            rejections=[RejectionView.from_error(r) for r in result.rejections],
            error=result.error_message,
        )


class ConfigUpdate(BaseModel):
    """Partial explicit override of the upload configuration."""

    max_size_mb: float | None = Field(default=None, gt=0)
    allowed_mime_types: list[str] | None = None
    batch_limit: int | None = Field(default=None, ge=1)
    compression_quality: int | None = Field(default=None, ge=1, le=100)
    album_id: int | None = None
    is_public: bool | None = None
    storage_strategy_id: int | None = None
