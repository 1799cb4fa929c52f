"""Upload configuration layers and their resolution.

Three layers feed the active ``UploadConfig``, highest priority first:

1. Live image-processing settings fetched from the image host.
2. Explicit overrides from ``UploadStore.update_config``.
3. Built-in defaults taken from the service settings.

``resolve_config`` is pure; ``ConfigResolver`` holds the layers and makes the
settings fetch happen once per session unless forced.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from imagebed.settings import Settings, settings

logger = logging.getLogger(__name__)


def _to_camel(name: str) -> str:
    """Convert snake_case to camelCase."""
    parts = name.split("_")
    return parts[0] + "".join(p.capitalize() for p in parts[1:])


def normalize_formats(formats: Iterable[str]) -> frozenset[str]:
    """Lower-case format names and qualify bare ones as ``image/<name>``."""
    result: set[str] = set()
    for fmt in formats:
        trimmed = fmt.strip().lower()
        if not trimmed:
            continue
        result.add(trimmed if "/" in trimmed else f"image/{trimmed}")
    return frozenset(result)


class UploadConfig(BaseModel):
    """The canonical configuration consumed by intake and scheduling."""

    model_config = ConfigDict(frozen=True)

    max_size_mb: float = Field(default=10, gt=0)
    allowed_mime_types: frozenset[str] = frozenset(
        {"image/jpeg", "image/jpg", "image/png", "image/webp", "image/gif"}
    )
    batch_limit: int = Field(default=15, ge=1)
    compression_quality: int = Field(default=85, ge=1, le=100)
    album_id: int | None = None
    is_public: bool | None = False
    storage_strategy_id: int | None = None

    @property
    def max_size_bytes(self) -> int:
        return int(self.max_size_mb * 1024 * 1024)


class ImageSettings(BaseModel):
    """Image-processing settings snapshot served by the image host.

    Accepts both the camelCase wire names and snake_case field names.
    """

    model_config = ConfigDict(populate_by_name=True, alias_generator=_to_camel, extra="ignore")

    upload_max_size_mb: float = Field(gt=0, alias="uploadMaxSizeMB")
    allowed_image_formats: str
    batch_upload_limit: int = Field(ge=1)
    compression_quality: int | None = Field(default=None, ge=1, le=100)

    def as_overrides(self, batch_limit_ceiling: int | None = None) -> dict[str, Any]:
        """Project onto ``UploadConfig`` fields."""
        batch_limit = self.batch_upload_limit
        if batch_limit_ceiling is not None:
            batch_limit = min(batch_limit, batch_limit_ceiling)
        overrides: dict[str, Any] = {
            "max_size_mb": self.upload_max_size_mb,
            "batch_limit": batch_limit,
        }
        formats = normalize_formats(self.allowed_image_formats.split(","))
        if formats:
            overrides["allowed_mime_types"] = formats
        if self.compression_quality is not None:
            overrides["compression_quality"] = self.compression_quality
        return overrides


SettingsSource = Callable[[], Awaitable[ImageSettings | None]]


def default_config(source: Settings | None = None) -> UploadConfig:
    """Build the built-in defaults layer from service settings."""
    cfg = source or settings
    return UploadConfig(
        max_size_mb=cfg.upload_max_size_mb,
        allowed_mime_types=normalize_formats(cfg.upload_allowed_format_list),
        batch_limit=cfg.upload_batch_limit,
        compression_quality=cfg.upload_compression_quality,
    )


def resolve_config(
    defaults: UploadConfig,
    overrides: dict[str, Any] | None = None,
    image_settings: ImageSettings | None = None,
    *,
    batch_limit_ceiling: int | None = None,
) -> UploadConfig:
    """Merge the three layers; server settings win over overrides, overrides over defaults."""
    merged = defaults.model_dump()
    if overrides:
        merged.update(overrides)
    if image_settings is not None:
        merged.update(image_settings.as_overrides(batch_limit_ceiling))
    return UploadConfig.model_validate(merged)


class ConfigResolver:
    """Holds the configuration layers and produces the active ``UploadConfig``."""

    def __init__(
        self,
        defaults: UploadConfig | None = None,
        source: SettingsSource | None = None,
        *,
        batch_limit_ceiling: int | None = None,
    ) -> None:
        self.defaults = defaults or default_config()
        self._source = source
        self._batch_limit_ceiling = batch_limit_ceiling
        self._overrides: dict[str, Any] = {}
        self._image_settings: ImageSettings | None = None
        self.settings_loaded = False
        self.config = self.resolve()

    def resolve(self) -> UploadConfig:
        return resolve_config(
            self.defaults,
            self._overrides,
            self._image_settings,
            batch_limit_ceiling=self._batch_limit_ceiling,
        )

    def override(self, **changes: Any) -> UploadConfig:
        """Record explicit overrides and recompute.

        Raises:
            pydantic.ValidationError: The merged configuration is invalid;
                the previous overrides are kept.
        """
        unknown = set(changes) - set(UploadConfig.model_fields)
        if unknown:
            raise ValueError(f"Unknown config fields: {', '.join(sorted(unknown))}")
        if "allowed_mime_types" in changes and changes["allowed_mime_types"] is not None:
            changes["allowed_mime_types"] = normalize_formats(changes["allowed_mime_types"])
        candidate = {**self._overrides, **changes}
        config = resolve_config(
            self.defaults,
            candidate,
            self._image_settings,
            batch_limit_ceiling=self._batch_limit_ceiling,
        )
        self._overrides = candidate
        self.config = config
        return config

    async def load_settings(self, force: bool = False) -> UploadConfig:
        """Fetch server settings once (or again when ``force``) and recompute.

        A missing source, an empty answer, or a failing fetch leaves the
        lower layers in charge; settings are still marked as loaded so the
        fetch is not retried on every dialog open.
        """
        if self.settings_loaded and not force:
            return self.config

        if self._source is None:
            logger.info("No settings source configured, using default upload config")
        else:
            try:
                fetched = await self._source()
            except Exception:
                logger.exception("Failed to load image settings, keeping current upload config")
            else:
                if fetched is None:
                    logger.warning("Image settings unavailable, using default upload config")
                else:
                    self._image_settings = fetched
                    logger.info(
                        "Loaded image settings: max %.1fMB, batch limit %d",
                        fetched.upload_max_size_mb,
                        fetched.batch_upload_limit,
                    )

        self.settings_loaded = True
        self.config = self.resolve()
        return self.config

    def reset(self) -> UploadConfig:
        """Drop overrides and fetched settings, back to defaults."""
        self._overrides = {}
        self._image_settings = None
        self.settings_loaded = False
        self.config = self.resolve()
        return self.config
