"""Bounded-concurrency upload scheduler.

Dispatch loop:
1. While the run flag is set, fill free slots: the earliest-added ``pending``
   files are marked ``uploading`` and each gets its own transfer task, until
   ``concurrency`` files are uploading.
2. Wait for a change signal: a transfer finishing, or an action that frees a
   slot or adds work (cancel, retry, intake, resume).
3. Stop when the run flag is cleared or nothing is pending or uploading.

Dispatch is FIFO, completion is not: the fastest transfer finishes first.

Transfer tasks belong to the scheduler, not to one loop run, so pausing only
stops new dispatch; transfers already in flight keep reporting and are picked
up again by the next loop started on resume.

All state changes go through the store's ``_record_*`` / ``_mark_uploading``
methods. Events for files that already left ``uploading`` raise
``StaleCallbackError`` there and are dropped here.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from imagebed.upload.errors import StaleCallbackError, TransportError
from imagebed.upload.models import UploadFile, UploadResponse, UploadStatus
from imagebed.upload.transport import (
    TransferChannel,
    TransferEventKind,
    Transport,
    UploadOptions,
)

if TYPE_CHECKING:
    from imagebed.upload.store import UploadStore

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 3


@dataclass(frozen=True)
class _Outcome:
    response: UploadResponse | None = None
    error: str | None = None


class UploadQueueScheduler:
    """Drives pending files through the transport, at most ``concurrency`` at a time."""

    def __init__(
        self,
        store: UploadStore,
        transport: Transport,
        concurrency: int = DEFAULT_CONCURRENCY,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._store = store
        self._transport = transport
        self.concurrency = concurrency
        self._running = False
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._changed = asyncio.Event()
        self._loop_task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> int:
        """Transfer tasks that have not finished yet (including aborted ones unwinding)."""
        return sum(1 for t in self._tasks.values() if not t.done())

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def launch(self) -> asyncio.Task[None]:
        """Set the run flag, fill free slots now, and make sure the loop is alive.

        Must be called from within a running event loop.
        """
        self._running = True
        self._fill_slots()
        if self._loop_task is None or self._loop_task.done():
            self._loop_task = asyncio.create_task(self._dispatch_loop(), name="upload-dispatch")
        else:
            self.wake()
        return self._loop_task

    def stop(self) -> None:
        """Clear the run flag. In-flight transfers are left alone."""
        self._running = False
        self.wake()

    def wake(self) -> None:
        self._changed.set()

    def abort(self, file_id: str) -> None:
        """Best-effort local abort of one transfer; the remote side may still finish."""
        task = self._tasks.get(file_id)
        if task is not None and not task.done():
            task.cancel()

    def abort_all(self) -> None:
        for file_id in list(self._tasks):
            self.abort(file_id)

    async def join(self) -> None:
        """Wait until the current dispatch loop, if any, has exited."""
        task = self._loop_task
        if task is not None and not task.done():
            await asyncio.wait({task})

    async def shutdown(self) -> None:
        """Stop dispatching and cancel every transfer task."""
        self._running = False
        pending = [t for t in self._tasks.values() if not t.done()]
        if self._loop_task is not None and not self._loop_task.done():
            pending.append(self._loop_task)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()

    # ------------------------------------------------------------------
    # Dispatch loop
    # ------------------------------------------------------------------

    def _fill_slots(self) -> list[UploadFile]:
        snapshot = self._store.snapshot
        free = self.concurrency - snapshot.count(UploadStatus.UPLOADING)
        if free <= 0:
            return []

        picks = [f.id for f in snapshot.files if f.status == UploadStatus.PENDING][:free]
        if not picks:
            return []

        config = self._store.snapshot.config
        options = UploadOptions(
            album_id=config.album_id,
            is_public=config.is_public,
            storage_strategy_id=config.storage_strategy_id,
        )
        dispatched = self._store._mark_uploading(picks)
        for upload in dispatched:
            self._tasks[upload.id] = asyncio.create_task(
                self._transfer(upload, options), name=f"upload-{upload.id}"
            )
            logger.info("Dispatched %s (%d bytes)", upload.name, upload.file.size)
        return dispatched

    def _has_work(self) -> bool:
        snapshot = self._store.snapshot
        return bool(snapshot.count(UploadStatus.PENDING) or snapshot.count(UploadStatus.UPLOADING))

    async def _dispatch_loop(self) -> None:
        while self._running:
            self._changed.clear()
            self._fill_slots()
            if not self._has_work():
                break
            await self._changed.wait()

        if self._running:
            # Drained: nothing pending, nothing uploading.
            self._running = False
            stats = self._store.snapshot.stats
            logger.info(
                "Upload batch finished: %d/%d succeeded, %d failed",
                stats.completed_files,
                stats.total_files,
                stats.failed_files,
            )
            self._store._commit()

    # ------------------------------------------------------------------
    # Per-file transfer
    # ------------------------------------------------------------------

    async def _transfer(self, upload: UploadFile, options: UploadOptions) -> None:
        channel = TransferChannel()
        pump = asyncio.create_task(self._pump(upload.id, channel))
        try:
            try:
                outcome = await self._attempt(upload, options, channel)
            finally:
                channel.close()
            await pump
            self._finish(upload.id, outcome)
        except asyncio.CancelledError:
            logger.info("Transfer of %s aborted locally", upload.name)
            raise
        finally:
            if self._tasks.get(upload.id) is asyncio.current_task():
                del self._tasks[upload.id]
            self.wake()

    async def _attempt(
        self,
        upload: UploadFile,
        options: UploadOptions,
        channel: TransferChannel,
    ) -> _Outcome:
        try:
            response = await self._transport.upload(upload.file, options, channel)
        except TransportError as e:
            logger.warning("Upload failed for %s: %s", upload.name, e)
            return _Outcome(error=str(e) or "Upload failed")
        except Exception as e:
            logger.exception("Unexpected error uploading %s", upload.name)
            return _Outcome(error=f"Unexpected error: {e}")
        return _Outcome(response=response)

    async def _pump(self, file_id: str, channel: TransferChannel) -> None:
        async for event in channel.events():
            try:
                if event.kind == TransferEventKind.STARTED:
                    self._store._record_started(file_id)
                else:
                    self._store._record_progress(file_id, event.percent)
            except StaleCallbackError:
                logger.debug("Dropped stale %s event for %s", event.kind, file_id)
            except Exception:
                logger.exception("Dropped bad %s event for %s", event.kind, file_id)

    def _finish(self, file_id: str, outcome: _Outcome) -> None:
        try:
            if outcome.response is not None:
                self._store._record_success(file_id, outcome.response)
            else:
                self._store._record_failure(file_id, outcome.error or "Upload failed")
        except StaleCallbackError:
            logger.debug("Dropped stale completion for %s", file_id)
