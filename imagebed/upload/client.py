"""HTTP client for the image host API.

Implements the three collaborators the upload store needs:

- ``upload``: multipart upload of one image, streamed in chunks so progress
  can be reported on the transfer channel.
- ``fetch_image_settings``: the image-processing settings snapshot.
- ``refresh_gallery``: best-effort ping after an upload succeeds.

Responses use the ``{"code": 0, "message": ..., "data": ...}`` envelope.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from imagebed.settings import Settings, settings
from imagebed.upload.config import ImageSettings
from imagebed.upload.errors import TransportError
from imagebed.upload.models import CandidateFile, UploadResponse
from imagebed.upload.transport import TransferChannel, UploadOptions

logger = logging.getLogger(__name__)

UPLOAD_PATH = "/images/upload"
IMAGE_SETTINGS_PATH = "/settings/image-processing"
CHUNK_SIZE = 64 * 1024


def _unwrap(response: httpx.Response) -> Any:
    """Return the ``data`` member of an API envelope.

    Raises:
        TransportError: Non-JSON body or a non-zero ``code``.
    """
    try:
        body = response.json()
    except ValueError as e:
        raise TransportError(f"Invalid JSON from image host: {e}") from e

    if isinstance(body, dict) and "code" in body:
        if body.get("code") not in (0, 200):
            raise TransportError(body.get("message") or f"Image host error code {body['code']}")
        return body.get("data")
    return body


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("message"):
        return f"HTTP {response.status_code}: {body['message']}"
    return f"HTTP {response.status_code}"


def _parse_upload_response(data: Any) -> UploadResponse:
    if isinstance(data, list):
        data = data[0] if data else None
    if not isinstance(data, dict) or "id" not in data or "url" not in data:
        raise TransportError("Image host response is missing id/url")
    return UploadResponse(
        id=data["id"],
        url=data["url"],
        filename=data.get("filename"),
        mime_type=data.get("mimeType") or data.get("mime_type"),
        size=data.get("size"),
        thumbnail_url=data.get("thumbnailUrl") or data.get("thumbnail_url"),
    )


async def _chunks(body: bytes, channel: TransferChannel) -> AsyncIterator[bytes]:
    total = len(body) or 1
    sent = 0
    for start in range(0, len(body), CHUNK_SIZE):
        chunk = body[start : start + CHUNK_SIZE]
        yield chunk
        sent += len(chunk)
        # Hold back 100 until the server has answered.
        channel.progress(min(99, sent * 100 // total))


class ImageHostClient:
    """Async image host API client built on httpx."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        config: Settings | None = None,
    ) -> None:
        cfg = config or settings
        self._owns_client = client is None
        if client is None:
            headers = {}
            if cfg.image_api_token:
                headers["Authorization"] = f"Bearer {cfg.image_api_token}"
            client = httpx.AsyncClient(
                base_url=cfg.image_api_base_url,
                headers=headers,
                timeout=cfg.image_api_timeout_seconds,
            )
        self._client = client
        self.upload_timeout = cfg.upload_timeout_seconds
        self.refresh_url = cfg.gallery_refresh_url

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def upload(
        self,
        file: CandidateFile,
        options: UploadOptions,
        channel: TransferChannel,
    ) -> UploadResponse:
        """Upload one image.

        Raises:
            TransportError: Network failure, timeout, HTTP error status, or an
                unusable response body.
        """
        form: dict[str, str] = {}
        if options.album_id is not None:
            form["albumId"] = str(options.album_id)
        if options.is_public is not None:
            form["isPublic"] = "true" if options.is_public else "false"
        if options.storage_strategy_id is not None:
            form["storageStrategyId"] = str(options.storage_strategy_id)

        # Encode once with httpx, then resend the body in chunks for progress.
        encoded = self._client.build_request(
            "POST",
            UPLOAD_PATH,
            data=form,
            files={"file": (file.name, file.content, file.media_type or "application/octet-stream")},
        )
        body = encoded.read()
        headers = {
            "Content-Type": encoded.headers["Content-Type"],
            "Content-Length": str(len(body)),
        }

        channel.started()
        try:
            response = await self._client.post(
                UPLOAD_PATH,
                content=_chunks(body, channel),
                headers=headers,
                timeout=self.upload_timeout,
            )
        except httpx.TimeoutException as e:
            raise TransportError(
                f"Upload timed out after {self.upload_timeout:g}s, check the network connection"
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(f"Network error: {e}") from e

        if response.is_error:
            raise TransportError(_error_message(response))

        result = _parse_upload_response(_unwrap(response))
        channel.progress(100)
        return result

    async def fetch_image_settings(self) -> ImageSettings | None:
        """Fetch image-processing settings; None when the host has none to offer."""
        try:
            response = await self._client.get(IMAGE_SETTINGS_PATH)
        except httpx.HTTPError as e:
            logger.warning("Could not reach image host for settings: %s", e)
            return None

        if response.is_error:
            logger.warning("Image settings request failed: %s", _error_message(response))
            return None

        try:
            data = _unwrap(response)
        except TransportError as e:
            logger.warning("Image settings response rejected: %s", e)
            return None
        if not data:
            return None

        try:
            return ImageSettings.model_validate(data)
        except PydanticValidationError as e:
            logger.warning("Malformed image settings: %s", e)
            return None

    async def refresh_gallery(self) -> None:
        if not self.refresh_url:
            return
        response = await self._client.post(self.refresh_url)
        response.raise_for_status()
