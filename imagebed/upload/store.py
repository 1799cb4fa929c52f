"""Upload store: the composition root of the batch upload orchestrator.

The store owns the authoritative file list and configuration and exposes the
only entry points callers may use (``add_files``, ``start_upload``, ...).

Every public action runs inside ``_action()``: whatever it changes, observers
receive exactly one new ``UploadSnapshot`` when it returns, and the snapshot's
stats are always recomputed from its own file list. Scheduler events outside
an action (progress, completion) publish one snapshot each.

The file list is an immutable tuple that is replaced on every change, so a
snapshot handed to an observer never changes underneath it.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Iterator, Sequence
from contextlib import contextmanager
from typing import Any

from imagebed.settings import settings
from imagebed.upload.config import ConfigResolver, SettingsSource, UploadConfig
from imagebed.upload.errors import IllegalTransitionError, StaleCallbackError
from imagebed.upload.intake import FileIntakeValidator, IntakeResult
from imagebed.upload.models import (
    CandidateFile,
    UploadFile,
    UploadResponse,
    UploadSnapshot,
    UploadStatus,
)
from imagebed.upload.previews import PreviewResourceManager
from imagebed.upload.progress import apply_progress, compute_batch_stats
from imagebed.upload.scheduler import UploadQueueScheduler
from imagebed.upload.transport import Transport

logger = logging.getLogger(__name__)

Observer = Callable[[UploadSnapshot], None]
RefreshHook = Callable[[], Awaitable[None] | None]


class UploadStore:
    """Owns upload state and exposes the atomic actions."""

    def __init__(
        self,
        transport: Transport,
        *,
        settings_source: SettingsSource | None = None,
        previews: PreviewResourceManager | None = None,
        defaults: UploadConfig | None = None,
        concurrency: int | None = None,
        refresh: RefreshHook | None = None,
        batch_limit_ceiling: int | None = None,
    ) -> None:
        if batch_limit_ceiling is None:
            batch_limit_ceiling = settings.upload_batch_limit_ceiling
        self.resolver = ConfigResolver(
            defaults, settings_source, batch_limit_ceiling=batch_limit_ceiling
        )
        self.previews = previews or PreviewResourceManager()
        self.intake = FileIntakeValidator(self.previews)
        self.scheduler = UploadQueueScheduler(
            self, transport, concurrency or settings.upload_concurrency
        )
        self._refresh = refresh
        self._refresh_tasks: set[asyncio.Future[Any]] = set()
        self._observers: list[Observer] = []
        self._files: tuple[UploadFile, ...] = ()
        self._global_error: str | None = None
        self._dialog_open = False
        self._depth = 0
        self._snapshot = self._build()

    # ------------------------------------------------------------------
    # Snapshot & observers
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> UploadSnapshot:
        return self._snapshot

    @property
    def config(self) -> UploadConfig:
        return self.resolver.config

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register ``observer``; returns a callable that unregisters it."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _build(self) -> UploadSnapshot:
        return UploadSnapshot(
            files=self._files,
            stats=compute_batch_stats(self._files),
            config=self.resolver.config,
            is_uploading=self.scheduler.is_running,
            global_error=self._global_error,
            settings_loaded=self.resolver.settings_loaded,
            dialog_open=self._dialog_open,
        )

    def _publish(self) -> None:
        snapshot = self._snapshot
        for observer in list(self._observers):
            try:
                observer(snapshot)
            except Exception:
                logger.exception("Upload observer %r failed", observer)

    def _commit(self, files: Sequence[UploadFile] | None = None) -> None:
        if files is not None:
            self._files = tuple(files)
        self._snapshot = self._build()
        if self._depth == 0:
            self._publish()

    @contextmanager
    def _action(self) -> Iterator[None]:
        self._depth += 1
        try:
            yield
        finally:
            self._depth -= 1
            if self._depth == 0:
                self._snapshot = self._build()
                self._publish()

    def _index(self, file_id: str) -> int | None:
        for i, f in enumerate(self._files):
            if f.id == file_id:
                return i
        return None

    def _replaced(self, index: int, upload: UploadFile) -> tuple[UploadFile, ...]:
        return self._files[:index] + (upload,) + self._files[index + 1 :]

    def _has_work(self) -> bool:
        return any(
            f.status in (UploadStatus.PENDING, UploadStatus.UPLOADING) for f in self._files
        )

    def _release(self, files: Sequence[UploadFile]) -> None:
        for f in files:
            self.previews.revoke_preview(f.preview)

    # ------------------------------------------------------------------
    # File management
    # ------------------------------------------------------------------

    def add_files(self, candidates: Sequence[CandidateFile]) -> IntakeResult:
        """Screen ``candidates`` and queue the accepted ones as pending.

        Rejections are aggregated into ``global_error``; a batch that would
        overflow ``batch_limit`` is refused whole and leaves the list untouched.
        """
        with self._action():
            result = self.intake.screen(candidates, len(self._files), self.config)
            self._global_error = result.error_message
            if result.accepted:
                self._commit(self._files + tuple(result.accepted))
                logger.info(
                    "Queued %d of %d files (%d in queue)",
                    len(result.accepted),
                    len(candidates),
                    len(self._files),
                )
                if self.scheduler.is_running:
                    self.scheduler.wake()
        return result

    def remove_file(self, file_id: str) -> bool:
        with self._action():
            index = self._index(file_id)
            if index is None:
                return False
            upload = self._files[index]
            self._release([upload])
            self._commit(self._files[:index] + self._files[index + 1 :])
            if upload.status == UploadStatus.UPLOADING:
                self.scheduler.abort(file_id)
            self.scheduler.wake()
            return True

    def clear_files(self) -> None:
        with self._action():
            self._release(self._files)
            for f in self._files:
                if f.status == UploadStatus.UPLOADING:
                    self.scheduler.abort(f.id)
            self._global_error = None
            self._commit(())
            self.scheduler.wake()

    def clear_completed(self) -> int:
        """Drop successfully uploaded files; returns how many were removed."""
        with self._action():
            done = [f for f in self._files if f.status == UploadStatus.SUCCESS]
            if done:
                self._release(done)
                self._commit(tuple(f for f in self._files if f.status != UploadStatus.SUCCESS))
            return len(done)

    def retry_file(self, file_id: str) -> bool:
        """Put a failed file back to pending. No-op unless its status is ``error``."""
        with self._action():
            index = self._index(file_id)
            if index is None:
                return False
            try:
                upload = self._files[index].transition(
                    UploadStatus.PENDING, progress=0, error=None
                )
            except IllegalTransitionError as e:
                logger.debug("Ignoring retry: %s", e)
                return False
            self._commit(self._replaced(index, upload))
            if self.scheduler.is_running:
                self.scheduler.wake()
            return True

    def retry_all_failed(self) -> int:
        with self._action():
            count = 0
            files = list(self._files)
            for i, f in enumerate(files):
                if f.status == UploadStatus.ERROR:
                    files[i] = f.transition(UploadStatus.PENDING, progress=0, error=None)
                    count += 1
            if count:
                self._commit(files)
                if self.scheduler.is_running:
                    self.scheduler.wake()
            return count

    def cancel_file(self, file_id: str) -> bool:
        """Cancel one active upload. No-op unless its status is ``uploading``."""
        with self._action():
            index = self._index(file_id)
            if index is None:
                return False
            try:
                upload = self._files[index].transition(UploadStatus.CANCELLED)
            except IllegalTransitionError as e:
                logger.debug("Ignoring cancel: %s", e)
                return False
            self._commit(self._replaced(index, upload))
            self.scheduler.abort(file_id)
            self.scheduler.wake()
            logger.info("Cancelled %s", upload.name)
            return True

    # ------------------------------------------------------------------
    # Upload control
    # ------------------------------------------------------------------

    async def start_upload(self, *, wait: bool = True) -> None:
        """Start dispatching pending files.

        With ``wait`` the call returns once the batch has drained or the run
        was paused or cancelled; otherwise it returns right after the first
        slots have been filled.
        """
        with self._action():
            if self.scheduler.is_running:
                logger.debug("Upload already running")
                return
            if not self._has_work():
                logger.info("Nothing to upload")
                return
            self._global_error = None
            self.scheduler.launch()
            logger.info(
                "Upload started: %d pending, concurrency %d",
                sum(1 for f in self._files if f.status == UploadStatus.PENDING),
                self.scheduler.concurrency,
            )
        if wait:
            await self.scheduler.join()

    def pause_upload(self) -> None:
        """Stop new dispatch. Transfers already in flight are not aborted."""
        with self._action():
            if self.scheduler.is_running:
                self.scheduler.stop()
                logger.info("Upload paused")

    async def resume_upload(self, *, wait: bool = True) -> None:
        await self.start_upload(wait=wait)

    def cancel_all_uploads(self) -> None:
        """Stop dispatch and cancel every active upload; pending files stay pending."""
        with self._action():
            self.scheduler.stop()
            files = list(self._files)
            cancelled = 0
            for i, f in enumerate(files):
                if f.status == UploadStatus.UPLOADING:
                    files[i] = f.transition(UploadStatus.CANCELLED)
                    self.scheduler.abort(f.id)
                    cancelled += 1
            if cancelled:
                self._commit(files)
            logger.info("Cancelled %d active uploads", cancelled)

    # ------------------------------------------------------------------
    # Configuration & session
    # ------------------------------------------------------------------

    def update_config(self, **changes: Any) -> UploadConfig:
        with self._action():
            return self.resolver.override(**changes)

    async def open_dialog(self, force: bool = False) -> None:
        """Open an upload session, loading server settings once."""
        await self.resolver.load_settings(force=force)
        with self._action():
            self._dialog_open = True

    def close_dialog(self) -> None:
        with self._action():
            if self.scheduler.is_running:
                self.scheduler.stop()
                logger.info("Upload paused on dialog close")
            self._dialog_open = False

    def clear_error(self) -> None:
        with self._action():
            self._global_error = None

    def reset(self) -> None:
        """Drop every file and return to the default configuration."""
        with self._action():
            self.scheduler.stop()
            self.scheduler.abort_all()
            self._release(self._files)
            self._files = ()
            self._global_error = None
            self._dialog_open = False
            self.resolver.reset()
            logger.info("Upload state reset")

    async def aclose(self) -> None:
        """Cancel transfers and refresh hooks, release every preview."""
        await self.scheduler.shutdown()
        for task in list(self._refresh_tasks):
            task.cancel()
        self._release(self._files)
        self.previews.close()

    # ------------------------------------------------------------------
    # Scheduler callbacks
    # ------------------------------------------------------------------

    def _uploading(self, file_id: str) -> tuple[int, UploadFile]:
        index = self._index(file_id)
        if index is None:
            raise StaleCallbackError(f"{file_id} is no longer tracked")
        upload = self._files[index]
        if upload.status != UploadStatus.UPLOADING:
            raise StaleCallbackError(f"{file_id} is {upload.status}, not uploading")
        return index, upload

    def _mark_uploading(self, file_ids: Sequence[str]) -> list[UploadFile]:
        files = list(self._files)
        dispatched: list[UploadFile] = []
        wanted = set(file_ids)
        for i, f in enumerate(files):
            if f.id in wanted and f.status == UploadStatus.PENDING:
                files[i] = f.transition(UploadStatus.UPLOADING, progress=0)
                dispatched.append(files[i])
        if dispatched:
            self._commit(files)
        return dispatched

    def _record_started(self, file_id: str) -> None:
        _, upload = self._uploading(file_id)
        logger.debug("Transfer started: %s", upload.name)

    def _record_progress(self, file_id: str, percent: float) -> None:
        index, upload = self._uploading(file_id)
        updated = apply_progress(upload, percent)
        if updated is not upload:
            self._commit(self._replaced(index, updated))

    def _record_success(self, file_id: str, response: UploadResponse) -> None:
        index, upload = self._uploading(file_id)
        done = upload.transition(UploadStatus.SUCCESS, progress=100, result=response, error=None)
        self._commit(self._replaced(index, done))
        logger.info("Uploaded %s -> %s", upload.name, response.url)
        self._fire_refresh()

    def _record_failure(self, file_id: str, message: str) -> None:
        index, upload = self._uploading(file_id)
        failed = upload.transition(UploadStatus.ERROR, error=message, result=None)
        self._commit(self._replaced(index, failed))

    def _fire_refresh(self) -> None:
        if self._refresh is None:
            return
        try:
            pending = self._refresh()
        except Exception as e:
            logger.warning("Gallery refresh failed: %s", e)
            return
        if inspect.isawaitable(pending):
            task = asyncio.ensure_future(pending)
            self._refresh_tasks.add(task)
            task.add_done_callback(self._refresh_done)

    def _refresh_done(self, task: asyncio.Future[Any]) -> None:
        self._refresh_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Gallery refresh failed: %s", task.exception())
