from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path

import pytest
from fakes import FakeTransport

from imagebed.upload.config import UploadConfig
from imagebed.upload.previews import PreviewResourceManager
from imagebed.upload.store import UploadStore


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def previews(tmp_path: Path) -> PreviewResourceManager:
    return PreviewResourceManager(tmp_path / "previews")


@pytest.fixture
def defaults() -> UploadConfig:
    return UploadConfig()


@pytest.fixture
async def store(
    transport: FakeTransport,
    previews: PreviewResourceManager,
    defaults: UploadConfig,
) -> AsyncIterator[UploadStore]:
    """Store wired to the fake transport with a concurrency of 3."""
    upload_store = UploadStore(
        transport,
        previews=previews,
        defaults=defaults,
        concurrency=3,
        batch_limit_ceiling=15,
    )
    yield upload_store
    await upload_store.aclose()
