"""Aggregate upload statistics.

Stats are always recomputed from the full file list, never patched, so the
summary cannot drift from the list it describes.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import replace

from imagebed.upload.models import BatchStats, UploadFile, UploadStatus


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero (for non-negative values)."""
    return math.floor(value + 0.5)


def overall_progress(files: Sequence[UploadFile]) -> int:
    if not files:
        return 0
    return round_half_up(sum(f.progress for f in files) / len(files))


def compute_batch_stats(files: Sequence[UploadFile]) -> BatchStats:
    return BatchStats(
        total_files=len(files),
        completed_files=sum(1 for f in files if f.status == UploadStatus.SUCCESS),
        failed_files=sum(1 for f in files if f.status == UploadStatus.ERROR),
        overall_progress=overall_progress(files),
    )


def apply_progress(file: UploadFile, percent: float) -> UploadFile:
    """Return ``file`` with its progress advanced to ``percent``.

    Values are clamped to 0..100 and never move backwards; non-finite
    values are ignored.
    """
    if not math.isfinite(percent):
        return file
    value = max(0, min(100, int(percent)))
    if value <= file.progress:
        return file
    return replace(file, progress=value)
