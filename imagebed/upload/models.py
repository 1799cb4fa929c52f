"""Data models for tracked uploads.

``UploadFile`` and ``UploadSnapshot`` are frozen: every change produces a new
instance and the store swaps whole tuples, so observers never see a
half-applied update.
"""

from __future__ import annotations

import mimetypes
import uuid
from dataclasses import dataclass, field, replace
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

from imagebed.upload.errors import IllegalTransitionError

if TYPE_CHECKING:
    from imagebed.upload.config import UploadConfig
    from imagebed.upload.previews import PreviewHandle


class UploadStatus(StrEnum):
    """Lifecycle states of a tracked upload."""

    PENDING = "pending"
    UPLOADING = "uploading"
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"


# Allowed status changes. Anything else is rejected.
_TRANSITIONS: dict[UploadStatus, frozenset[UploadStatus]] = {
    UploadStatus.PENDING: frozenset({UploadStatus.UPLOADING}),
    UploadStatus.UPLOADING: frozenset(
        {UploadStatus.SUCCESS, UploadStatus.ERROR, UploadStatus.CANCELLED}
    ),
    UploadStatus.ERROR: frozenset({UploadStatus.PENDING}),
    UploadStatus.SUCCESS: frozenset(),
    UploadStatus.CANCELLED: frozenset(),
}


@dataclass(frozen=True)
class CandidateFile:
    """Binary content offered for upload, before intake."""

    name: str
    content: bytes = field(repr=False)
    media_type: str | None = None

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def suffix(self) -> str:
        return Path(self.name).suffix.lower()

    @classmethod
    def from_path(cls, path: Path) -> CandidateFile:
        media_type, _ = mimetypes.guess_type(path.name)
        return cls(name=path.name, content=path.read_bytes(), media_type=media_type)


@dataclass(frozen=True)
class UploadResponse:
    """What the image host returns for a stored image."""

    id: int | str
    url: str
    filename: str | None = None
    mime_type: str | None = None
    size: int | None = None
    thumbnail_url: str | None = None


@dataclass(frozen=True)
class UploadFile:
    """One tracked unit of upload work."""

    id: str
    file: CandidateFile
    status: UploadStatus = UploadStatus.PENDING
    progress: int = 0
    error: str | None = None
    result: UploadResponse | None = None
    preview: PreviewHandle | None = None

    @property
    def name(self) -> str:
        return self.file.name

    def transition(self, target: UploadStatus, **changes: object) -> UploadFile:
        """Return a copy moved to ``target``.

        Raises:
            IllegalTransitionError: ``target`` is not reachable from the current status.
        """
        if target not in _TRANSITIONS[self.status]:
            raise IllegalTransitionError(self.id, self.status, target)
        return replace(self, status=target, **changes)


def new_upload_file(candidate: CandidateFile, preview: PreviewHandle | None = None) -> UploadFile:
    """Create a pending entry with a fresh id."""
    return UploadFile(id=uuid.uuid4().hex, file=candidate, preview=preview)


@dataclass(frozen=True)
class BatchStats:
    """Aggregate counters derived from the file list."""

    total_files: int = 0
    completed_files: int = 0
    failed_files: int = 0
    overall_progress: int = 0


@dataclass(frozen=True)
class UploadSnapshot:
    """A consistent view of the store published to observers."""

    files: tuple[UploadFile, ...]
    stats: BatchStats
    config: UploadConfig
    is_uploading: bool = False
    global_error: str | None = None
    settings_loaded: bool = False
    dialog_open: bool = False

    def get(self, file_id: str) -> UploadFile | None:
        for f in self.files:
            if f.id == file_id:
                return f
        return None

    def count(self, status: UploadStatus) -> int:
        return sum(1 for f in self.files if f.status == status)
