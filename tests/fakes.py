"""Test doubles and builders for the upload orchestrator tests.

``FakeTransport`` stands in for the image host: every upload blocks on a
per-file future that the test resolves with ``succeed`` / ``fail``, unless
the transport is in ``auto`` mode, where uploads finish on their own.
"""

from __future__ import annotations

import asyncio

from imagebed.upload.errors import TransportError
from imagebed.upload.models import CandidateFile, UploadResponse
from imagebed.upload.transport import TransferChannel, UploadOptions

# 1x1 PNG
PNG_BYTES = bytes.fromhex(
    "89504e470d0a1a0a0000000d4948445200000001000000010806000000"
    "1f15c4890000000d49444154789c6360000002000154a24f5d0000000049454e44ae426082"
)


def make_image(
    name: str = "photo.png", size: int | None = None, media_type: str = "image/png"
) -> CandidateFile:
    content = PNG_BYTES if size is None else b"\x00" * size
    return CandidateFile(name=name, content=content, media_type=media_type)


def make_images(count: int, prefix: str = "img") -> list[CandidateFile]:
    return [make_image(f"{prefix}{i}.png") for i in range(count)]


async def settle(turns: int = 25) -> None:
    """Let scheduled callbacks and tasks run."""
    for _ in range(turns):
        await asyncio.sleep(0)


class FakeTransport:
    """Controllable stand-in for ``ImageHostClient.upload``."""

    def __init__(self, auto: bool = False) -> None:
        self.auto = auto
        self.stubborn = False
        self.calls: list[str] = []
        self.options: dict[str, UploadOptions] = {}
        self.channels: dict[str, TransferChannel] = {}
        self.aborted: list[str] = []
        self.active = 0
        self.max_active = 0
        self._outcomes: dict[str, asyncio.Future[UploadResponse]] = {}

    def _future(self, name: str, fresh: bool = False) -> asyncio.Future[UploadResponse]:
        future = self._outcomes.get(name)
        if future is None or (fresh and future.done()):
            future = asyncio.get_running_loop().create_future()
            self._outcomes[name] = future
        return future

    def succeed(self, name: str) -> None:
        future = self._future(name)
        if not future.done():
            future.set_result(UploadResponse(id=name, url=f"https://img.test/{name}"))

    def fail(self, name: str, message: str = "HTTP 500: boom") -> None:
        future = self._future(name)
        if not future.done():
            future.set_exception(TransportError(message))

    def crash(self, name: str, exc: Exception) -> None:
        future = self._future(name)
        if not future.done():
            future.set_exception(exc)

    def progress(self, name: str, percent: float) -> None:
        self.channels[name].progress(percent)

    async def upload(
        self,
        file: CandidateFile,
        options: UploadOptions,
        channel: TransferChannel,
    ) -> UploadResponse:
        self.calls.append(file.name)
        self.options[file.name] = options
        self.channels[file.name] = channel
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        channel.started()
        try:
            if self.auto:
                for percent in (25, 50, 75):
                    await asyncio.sleep(0)
                    channel.progress(percent)
                return UploadResponse(id=file.name, url=f"https://img.test/{file.name}")
            try:
                return await self._future(file.name, fresh=True)
            except asyncio.CancelledError:
                self.aborted.append(file.name)
                if self.stubborn:
                    # Remote side finished anyway.
                    return UploadResponse(id=file.name, url=f"https://img.test/{file.name}")
                raise
        finally:
            self.active -= 1


