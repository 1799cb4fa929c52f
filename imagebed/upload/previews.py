"""Ephemeral local previews for files waiting in the upload queue.

A preview is a temporary copy of the file's bytes under ``preview_dir`` that
the console can render before and during upload. Each ``PreviewHandle`` is
owned by exactly one ``UploadFile`` and is released deterministically when
that file leaves the store.
"""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path

from imagebed.settings import settings
from imagebed.upload.errors import ResourceAllocationWarning
from imagebed.upload.models import CandidateFile

logger = logging.getLogger(__name__)


class PreviewHandle:
    """Scoped guard over one preview file.

    ``release`` is idempotent: the underlying file is removed on the first
    call and every later call is a no-op.
    """

    __slots__ = ("_manager", "_path", "_released")

    def __init__(self, path: Path, manager: PreviewResourceManager | None = None) -> None:
        self._path = path
        self._manager = manager
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    @property
    def path(self) -> Path:
        if self._released:
            raise RuntimeError(f"Preview {self._path.name} has been released")
        return self._path

    def release(self) -> bool:
        """Remove the preview file. Returns False if it was already released."""
        if self._released:
            return False
        self._released = True
        try:
            self._path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove preview %s: %s", self._path, e)
        if self._manager is not None:
            self._manager._on_released(self)
        return True

    def __enter__(self) -> PreviewHandle:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()

    def __repr__(self) -> str:
        state = "released" if self._released else "live"
        return f"PreviewHandle({self._path.name!r}, {state})"


class PreviewResourceManager:
    """Allocates and releases preview handles, counting both."""

    def __init__(self, preview_dir: Path | str | None = None, max_bytes: int | None = None) -> None:
        self.preview_dir = Path(preview_dir if preview_dir is not None else settings.preview_dir)
        self.max_bytes = settings.preview_max_bytes if max_bytes is None else max_bytes
        self.allocated = 0
        self.revoked = 0
        self._live: set[PreviewHandle] = set()

    @property
    def outstanding(self) -> int:
        return len(self._live)

    def _allocate(self, file: CandidateFile) -> PreviewHandle:
        if file.size > self.max_bytes:
            raise ResourceAllocationWarning(
                f"{file.size / 1024 / 1024:.1f}MB exceeds the "
                f"{self.max_bytes / 1024 / 1024:.1f}MB preview limit"
            )
        try:
            self.preview_dir.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                dir=self.preview_dir,
                prefix="preview_",
                suffix=file.suffix or ".bin",
                delete=False,
            ) as tmp:
                tmp.write(file.content)
                path = Path(tmp.name)
        except OSError as e:
            raise ResourceAllocationWarning(f"cannot write preview: {e}") from e
        return PreviewHandle(path, self)

    def create_preview(self, file: CandidateFile) -> PreviewHandle | None:
        """Allocate a preview for ``file``; on any failure log and return None."""
        try:
            handle = self._allocate(file)
        except ResourceAllocationWarning as w:
            logger.warning("No preview for %s: %s", file.name, w)
            return None
        self.allocated += 1
        self._live.add(handle)
        return handle

    def revoke_preview(self, handle: PreviewHandle | None) -> None:
        """Release ``handle`` if it is still live."""
        if handle is not None:
            handle.release()

    def _on_released(self, handle: PreviewHandle) -> None:
        if handle in self._live:
            self._live.discard(handle)
            self.revoked += 1

    def close(self) -> None:
        """Release every outstanding preview."""
        if self._live:
            logger.info("Releasing %d outstanding previews", len(self._live))
        for handle in list(self._live):
            handle.release()
