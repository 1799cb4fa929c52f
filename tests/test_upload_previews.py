"""Tests for preview allocation and release (imagebed.upload.previews)."""

from __future__ import annotations

from pathlib import Path

import pytest
from fakes import PNG_BYTES, make_image

from imagebed.upload.previews import PreviewHandle, PreviewResourceManager


@pytest.fixture
def manager(tmp_path: Path) -> PreviewResourceManager:
    return PreviewResourceManager(tmp_path / "previews", max_bytes=1024)


def test_create_preview_writes_file(manager: PreviewResourceManager):
    handle = manager.create_preview(make_image("photo.png"))

    assert handle is not None
    assert handle.path.read_bytes() == PNG_BYTES
    assert handle.path.suffix == ".png"
    assert handle.path.parent == manager.preview_dir
    assert manager.allocated == 1
    assert manager.outstanding == 1


def test_oversized_file_gets_no_preview(manager: PreviewResourceManager):
    assert manager.create_preview(make_image("huge.png", size=2048)) is None
    assert manager.allocated == 0


def test_unwritable_dir_gets_no_preview(tmp_path: Path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x")
    manager = PreviewResourceManager(blocker / "previews")

    assert manager.create_preview(make_image()) is None
    assert manager.allocated == 0


def test_release_is_idempotent(manager: PreviewResourceManager):
    handle = manager.create_preview(make_image())
    path = handle.path

    assert handle.release() is True
    assert handle.release() is False
    assert not path.exists()
    assert manager.revoked == 1
    assert manager.outstanding == 0


def test_released_handle_has_no_path(manager: PreviewResourceManager):
    handle = manager.create_preview(make_image())
    manager.revoke_preview(handle)

    assert handle.released
    with pytest.raises(RuntimeError, match="released"):
        _ = handle.path


def test_revoke_none_is_noop(manager: PreviewResourceManager):
    manager.revoke_preview(None)
    assert manager.revoked == 0


def test_handle_as_context_manager(manager: PreviewResourceManager):
    with manager.create_preview(make_image()) as handle:
        path = handle.path
        assert path.exists()
    assert not path.exists()
    assert manager.revoked == 1


def test_release_tolerates_missing_file(manager: PreviewResourceManager):
    handle = manager.create_preview(make_image())
    handle.path.unlink()
    assert handle.release() is True
    assert manager.revoked == 1


def test_close_releases_everything(manager: PreviewResourceManager):
    handles = [manager.create_preview(make_image(f"p{i}.png")) for i in range(3)]
    manager.close()

    assert all(h.released for h in handles)
    assert manager.allocated == manager.revoked == 3
    assert list(manager.preview_dir.iterdir()) == []


def test_unmanaged_handle(tmp_path: Path):
    path = tmp_path / "loose.png"
    path.write_bytes(PNG_BYTES)
    handle = PreviewHandle(path)

    assert "live" in repr(handle)
    handle.release()
    assert "released" in repr(handle)
    assert not path.exists()
