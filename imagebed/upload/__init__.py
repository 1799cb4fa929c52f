"""Batch image upload orchestration."""

from imagebed.upload.config import ConfigResolver, ImageSettings, UploadConfig
from imagebed.upload.errors import (
    StaleCallbackError,
    TransportError,
    UploadError,
    ValidationCode,
    ValidationError,
)
from imagebed.upload.intake import FileIntakeValidator, IntakeResult
from imagebed.upload.models import (
    BatchStats,
    CandidateFile,
    UploadFile,
    UploadResponse,
    UploadSnapshot,
    UploadStatus,
)
from imagebed.upload.previews import PreviewHandle, PreviewResourceManager
from imagebed.upload.scheduler import UploadQueueScheduler
from imagebed.upload.store import UploadStore
from imagebed.upload.transport import TransferChannel, Transport, UploadOptions

__all__ = [
    "BatchStats",
    "CandidateFile",
    "ConfigResolver",
    "FileIntakeValidator",
    "ImageSettings",
    "IntakeResult",
    "PreviewHandle",
    "PreviewResourceManager",
    "StaleCallbackError",
    "TransferChannel",
    "Transport",
    "TransportError",
    "UploadConfig",
    "UploadError",
    "UploadFile",
    "UploadOptions",
    "UploadQueueScheduler",
    "UploadResponse",
    "UploadSnapshot",
    "UploadStatus",
    "UploadStore",
    "ValidationCode",
    "ValidationError",
]
