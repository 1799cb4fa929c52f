"""Integration tests for the /api/v1/uploads endpoints.

Uses a standalone FastAPI app with only the uploads router mounted and an
``UploadStore`` backed by ``FakeTransport`` on ``app.state``. MIME sniffing
is mocked.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from unittest.mock import patch

import pytest
from fakes import PNG_BYTES, FakeTransport, settle
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from imagebed.routers.uploads import router as uploads_router
from imagebed.upload.store import UploadStore

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _sniff(buffer: bytes, mime: bool = True) -> str:
    return "image/png" if buffer.startswith(b"\x89PNG") else "text/plain"


def _png(name: str) -> tuple[str, tuple[str, bytes, str]]:
    return ("files", (name, PNG_BYTES, "image/png"))


async def _add(client: AsyncClient, count: int) -> list[str]:
    resp = await client.post(
        "/api/v1/uploads/files", files=[_png(f"img{i}.png") for i in range(count)]
    )
    assert resp.status_code == 201
    return [f["id"] for f in resp.json()["accepted"]]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _mock_magic():
    with patch("imagebed.upload.intake.magic") as mock_magic:
        mock_magic.from_buffer.side_effect = _sniff
        yield mock_magic


@pytest.fixture
def uploads_app(store: UploadStore) -> FastAPI:
    """Minimal FastAPI app with only the uploads router mounted."""
    application = FastAPI()
    application.include_router(uploads_router, prefix="/api/v1")
    application.state.upload_store = store
    return application


@pytest.fixture
async def client(uploads_app: FastAPI) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=uploads_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Snapshot & session
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_empty_snapshot(client: AsyncClient):
    resp = await client.get("/api/v1/uploads")

    assert resp.status_code == 200
    body = resp.json()
    assert body["files"] == []
    assert body["stats"] == {
        "total_files": 0,
        "completed_files": 0,
        "failed_files": 0,
        "overall_progress": 0,
    }
    assert body["config"]["batch_limit"] == 15
    assert body["config"]["allowed_mime_types"] == sorted(body["config"]["allowed_mime_types"])
    assert body["is_uploading"] is False


@pytest.mark.asyncio
async def test_open_and_close_session(client: AsyncClient):
    resp = await client.post("/api/v1/uploads/open")
    assert resp.json()["dialog_open"] is True
    assert resp.json()["settings_loaded"] is True

    resp = await client.post("/api/v1/uploads/close")
    assert resp.json()["dialog_open"] is False


# ---------------------------------------------------------------------------
# Intake
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_add_files_reports_rejections(client: AsyncClient):
    resp = await client.post(
        "/api/v1/uploads/files",
        files=[_png("photo.png"), ("files", ("notes.txt", b"hello", "image/png"))],
    )

    assert resp.status_code == 201
    body = resp.json()
    assert [f["name"] for f in body["accepted"]] == ["photo.png"]
    assert body["accepted"][0]["status"] == "pending"
    assert body["accepted"][0]["has_preview"] is True
    assert body["accepted"][0]["media_type"] == "image/png"
    assert body["rejections"] == [
        {
            "code": "unsupported-format",
            "file": "notes.txt",
            "message": body["rejections"][0]["message"],
        }
    ]
    assert body["error"].startswith("notes.txt: ")

    snapshot = (await client.get("/api/v1/uploads")).json()
    assert snapshot["global_error"] == body["error"]


@pytest.mark.asyncio
async def test_batch_limit(client: AsyncClient):
    await client.patch("/api/v1/uploads/config", json={"batch_limit": 2})

    resp = await client.post(
        "/api/v1/uploads/files", files=[_png(f"img{i}.png") for i in range(3)]
    )

    body = resp.json()
    assert body["accepted"] == []
    assert body["rejections"][0]["code"] == "batch-limit-exceeded"
    assert body["rejections"][0]["file"] is None


# ---------------------------------------------------------------------------
# File routes
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_remove_file(client: AsyncClient):
    file_id, other = await _add(client, 2)

    resp = await client.delete(f"/api/v1/uploads/files/{file_id}")

    assert resp.status_code == 200
    assert [f["id"] for f in resp.json()["files"]] == [other]


@pytest.mark.asyncio
async def test_unknown_file_is_404(client: AsyncClient):
    for method, path in [
        ("DELETE", "/api/v1/uploads/files/nope"),
        ("POST", "/api/v1/uploads/files/nope/retry"),
        ("POST", "/api/v1/uploads/files/nope/cancel"),
        ("GET", "/api/v1/uploads/files/nope/preview"),
    ]:
        resp = await client.request(method, path)
        assert resp.status_code == 404, path
        assert resp.json()["error"]["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_illegal_retry_is_409(client: AsyncClient):
    (file_id,) = await _add(client, 1)

    resp = await client.post(f"/api/v1/uploads/files/{file_id}/retry")

    assert resp.status_code == 409
    error = resp.json()["error"]
    assert error["code"] == "INVALID_STATE"
    assert "pending" in error["message"]


@pytest.mark.asyncio
async def test_preview(client: AsyncClient):
    (file_id,) = await _add(client, 1)

    resp = await client.get(f"/api/v1/uploads/files/{file_id}/preview")

    assert resp.status_code == 200
    assert resp.content == PNG_BYTES
    assert resp.headers["content-type"] == "image/png"


@pytest.mark.asyncio
async def test_clear_files(client: AsyncClient):
    await _add(client, 3)

    resp = await client.delete("/api/v1/uploads/files")

    assert resp.json()["files"] == []


# ---------------------------------------------------------------------------
# Upload control
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_start_pause_resume_cancel(client: AsyncClient, transport: FakeTransport):
    await _add(client, 5)

    resp = await client.post("/api/v1/uploads/start")
    assert resp.status_code == 202
    body = resp.json()
    assert body["is_uploading"] is True
    assert [f["status"] for f in body["files"]] == ["uploading"] * 3 + ["pending"] * 2

    resp = await client.post("/api/v1/uploads/pause")
    assert resp.json()["is_uploading"] is False

    resp = await client.post("/api/v1/uploads/resume")
    assert resp.status_code == 202
    assert resp.json()["is_uploading"] is True

    resp = await client.post("/api/v1/uploads/cancel")
    body = resp.json()
    assert body["is_uploading"] is False
    assert [f["status"] for f in body["files"]] == ["cancelled"] * 3 + ["pending"] * 2


@pytest.mark.asyncio
async def test_cancel_and_retry_file(client: AsyncClient, transport: FakeTransport):
    first, second = await _add(client, 2)
    await client.post("/api/v1/uploads/start")
    await settle()

    resp = await client.post(f"/api/v1/uploads/files/{first}/cancel")
    assert resp.status_code == 200
    assert resp.json()["files"][0]["status"] == "cancelled"

    transport.fail("img1.png", "HTTP 500: boom")
    await settle()
    snapshot = (await client.get("/api/v1/uploads")).json()
    assert snapshot["files"][1]["error"] == "HTTP 500: boom"
    assert snapshot["stats"]["failed_files"] == 1

    resp = await client.post(f"/api/v1/uploads/files/{second}/retry")
    assert resp.status_code == 200
    assert resp.json()["files"][1]["status"] == "pending"

    resp = await client.post("/api/v1/uploads/retry-failed")
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_clear_completed(client: AsyncClient, transport: FakeTransport):
    await _add(client, 2)
    await client.post("/api/v1/uploads/start")
    await settle()
    transport.succeed("img0.png")
    await settle()

    resp = await client.post("/api/v1/uploads/clear-completed")

    assert [f["name"] for f in resp.json()["files"]] == ["img1.png"]


# ---------------------------------------------------------------------------
# Config, errors, reset
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_update_config(client: AsyncClient):
    resp = await client.patch(
        "/api/v1/uploads/config",
        json={"album_id": 3, "is_public": True, "allowed_mime_types": ["png", "image/gif"]},
    )

    assert resp.status_code == 200
    config = resp.json()["config"]
    assert config["album_id"] == 3
    assert config["is_public"] is True
    assert config["allowed_mime_types"] == ["image/gif", "image/png"]


@pytest.mark.asyncio
async def test_update_config_rejects_out_of_range(client: AsyncClient):
    resp = await client.patch("/api/v1/uploads/config", json={"batch_limit": 0})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_update_config_rejects_invalid_merge(client: AsyncClient):
    resp = await client.patch("/api/v1/uploads/config", json={"max_size_mb": None})

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "INVALID_CONFIG"


@pytest.mark.asyncio
async def test_clear_error_and_reset(client: AsyncClient, store: UploadStore):
    await client.post(
        "/api/v1/uploads/files", files=[("files", ("notes.txt", b"hello", "text/plain"))]
    )
    resp = await client.delete("/api/v1/uploads/error")
    assert resp.json()["global_error"] is None

    await _add(client, 2)
    await client.patch("/api/v1/uploads/config", json={"album_id": 8})
    resp = await client.post("/api/v1/uploads/reset")

    body = resp.json()
    assert body["files"] == []
    assert body["config"]["album_id"] is None
    assert store.previews.outstanding == 0
