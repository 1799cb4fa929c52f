"""Intake screening for candidate files.

Checks, in order:
1. Batch limit: the whole batch is refused if it would overflow the queue.
2. Per file size against ``max_size_mb``.
3. Per file media type against ``allowed_mime_types``.

Only accepted candidates get a preview and become ``UploadFile`` entries.
"""

from __future__ import annotations

import logging
import mimetypes
from collections.abc import Sequence
from dataclasses import dataclass, field, replace

import magic

from imagebed.upload.config import UploadConfig
from imagebed.upload.errors import ValidationCode, ValidationError
from imagebed.upload.models import CandidateFile, UploadFile, new_upload_file
from imagebed.upload.previews import PreviewResourceManager

logger = logging.getLogger(__name__)


@dataclass
class IntakeResult:
    """Outcome of one ``add_files`` call."""

    accepted: list[UploadFile] = field(default_factory=list)
    rejections: list[ValidationError] = field(default_factory=list)

    @property
    def error_message(self) -> str | None:
        if not self.rejections:
            return None
        return "; ".join(r.describe() for r in self.rejections)


def detect_media_type(file: CandidateFile) -> str | None:
    """Declared type if present, else magic bytes, else the file extension."""
    if file.media_type:
        return file.media_type.strip().lower()

    if file.content:
        try:
            detected = magic.from_buffer(file.content[:2048], mime=True)
        except Exception:
            logger.exception("Failed to detect MIME type for %s", file.name)
        else:
            if detected and detected != "application/octet-stream":
                return detected.lower()

    guessed, _ = mimetypes.guess_type(file.name)
    return guessed.lower() if guessed else None


def check_file(file: CandidateFile, config: UploadConfig) -> ValidationError | None:
    if file.size > config.max_size_bytes:
        return ValidationError(
            ValidationCode.SIZE_EXCEEDED,
            f"File size {file.size / 1024 / 1024:.1f}MB exceeds the {config.max_size_mb:g}MB limit",
            file.name,
        )

    media_type = detect_media_type(file)
    if media_type not in config.allowed_mime_types:
        return ValidationError(
            ValidationCode.UNSUPPORTED_FORMAT,
            f"Unsupported format {media_type or 'unknown'}. "
            f"Supported: {', '.join(sorted(config.allowed_mime_types))}",
            file.name,
        )
    return None


class FileIntakeValidator:
    """Turns candidates into pending upload entries."""

    def __init__(self, previews: PreviewResourceManager) -> None:
        self.previews = previews

    def screen(
        self,
        candidates: Sequence[CandidateFile],
        queue_length: int,
        config: UploadConfig,
    ) -> IntakeResult:
        result = IntakeResult()

        if queue_length + len(candidates) > config.batch_limit:
            result.rejections.append(
                ValidationError(
                    ValidationCode.BATCH_LIMIT_EXCEEDED,
                    f"At most {config.batch_limit} files per batch; "
                    f"{queue_length} already queued, {len(candidates)} offered",
                )
            )
            logger.warning(
                "Rejected batch of %d files (queue %d, limit %d)",
                len(candidates),
                queue_length,
                config.batch_limit,
            )
            return result

        for candidate in candidates:
            # Accepted entries carry the detected type to the transport.
            candidate = replace(candidate, media_type=detect_media_type(candidate))
            rejection = check_file(candidate, config)
            if rejection is not None:
                result.rejections.append(rejection)
                logger.info("Rejected %s: %s", candidate.name, rejection.code)
                continue
            preview = self.previews.create_preview(candidate)
            result.accepted.append(new_upload_file(candidate, preview))

        return result
