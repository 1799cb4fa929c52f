"""Contract between the scheduler and whatever moves bytes to the image host.

A transport reports progress through a ``TransferChannel`` and finishes by
returning an ``UploadResponse`` or raising ``TransportError``. Timeouts are the
transport's business and surface as ordinary ``TransportError``s.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol

from imagebed.upload.models import CandidateFile, UploadResponse


@dataclass(frozen=True)
class UploadOptions:
    """Per-upload destination options taken from the active config."""

    album_id: int | None = None
    is_public: bool | None = None
    storage_strategy_id: int | None = None


class TransferEventKind(StrEnum):
    STARTED = "started"
    PROGRESS = "progress"


@dataclass(frozen=True)
class TransferEvent:
    kind: TransferEventKind
    percent: float = 0.0


class TransferChannel:
    """Ordered event channel from one transfer to the scheduler.

    Events emitted after ``close`` are dropped.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[TransferEvent | None] = asyncio.Queue()
        self._closed = False

    def started(self) -> None:
        self._put(TransferEvent(TransferEventKind.STARTED))

    def progress(self, percent: float) -> None:
        self._put(TransferEvent(TransferEventKind.PROGRESS, percent))

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)

    def _put(self, event: TransferEvent) -> None:
        if not self._closed:
            self._queue.put_nowait(event)

    async def events(self) -> AsyncIterator[TransferEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event


class Transport(Protocol):
    async def upload(
        self,
        file: CandidateFile,
        options: UploadOptions,
        channel: TransferChannel,
    ) -> UploadResponse: ...
