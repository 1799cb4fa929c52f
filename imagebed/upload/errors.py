"""Exception taxonomy for the batch upload orchestrator.

Only ``ValidationError`` and ``TransportError`` ever reach a user: the former
as the aggregated intake banner, the latter as a per-file error message.
The remaining types are internal guards that the store drops after logging.
"""

from __future__ import annotations

from enum import StrEnum


class UploadError(Exception):
    """Base class for upload orchestration errors."""


class ValidationCode(StrEnum):
    """Reasons a candidate file (or a whole batch) is refused at intake."""

    SIZE_EXCEEDED = "size-exceeded"
    UNSUPPORTED_FORMAT = "unsupported-format"
    BATCH_LIMIT_EXCEEDED = "batch-limit-exceeded"


class ValidationError(UploadError):
    """A candidate was rejected at intake.

    ``file_name`` is ``None`` when the rejection applies to the whole batch.
    """

    def __init__(self, code: ValidationCode, message: str, file_name: str | None = None) -> None:
        self.code = code
        self.message = message
        self.file_name = file_name
        super().__init__(message)

    def describe(self) -> str:
        if self.file_name:
            return f"{self.file_name}: {self.message}"
        return self.message


class TransportError(UploadError):
    """A single file transfer failed (network, HTTP status, timeout, bad payload)."""


class StaleCallbackError(UploadError):
    """A transfer event arrived for a file that is no longer uploading."""


class IllegalTransitionError(UploadError):
    """A status change that the upload state machine does not allow."""

    def __init__(self, file_id: str, current: str, target: str) -> None:
        self.file_id = file_id
        self.current = current
        self.target = target
        super().__init__(f"Illegal transition for {file_id}: {current} -> {target}")


class ResourceAllocationWarning(Warning):
    """A preview resource could not be allocated; the upload proceeds without one."""
