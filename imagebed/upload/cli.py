"""CLI entry point for batch image uploads.

Usage: python -m imagebed.upload /path/to/images/ [--album-id N] [--public]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from imagebed.upload.client import ImageHostClient
from imagebed.upload.models import CandidateFile, UploadStatus
from imagebed.upload.previews import PreviewResourceManager
from imagebed.upload.store import UploadStore

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".gif", ".bmp", ".tif", ".tiff"}


@dataclass
class UploadReport:
    total_files: int = 0
    uploaded: int = 0
    rejected: list[str] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)
    urls: list[tuple[str, str]] = field(default_factory=list)


def find_images(directory: Path) -> list[Path]:
    """Image files directly under ``directory``, sorted by name."""
    return sorted(
        p for p in directory.iterdir() if p.is_file() and p.suffix.lower() in IMAGE_EXTENSIONS
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Upload a directory of images to the image host.")
    parser.add_argument("directory", type=Path, help="Directory containing images.")
    parser.add_argument("--album-id", type=int, default=None, help="Target album id.")
    parser.add_argument(
        "--public", action="store_true", help="Make uploaded images public (default: private)."
    )
    parser.add_argument(
        "--strategy-id", type=int, default=None, help="Storage strategy id on the image host."
    )
    return parser.parse_args(argv)


async def upload_directory(
    paths: list[Path],
    store: UploadStore,
    album_id: int | None = None,
    is_public: bool = False,
    storage_strategy_id: int | None = None,
) -> UploadReport:
    """Push ``paths`` through ``store`` one batch at a time."""
    log = logging.getLogger(__name__)
    report = UploadReport(total_files=len(paths))

    await store.open_dialog()
    store.update_config(
        album_id=album_id, is_public=is_public, storage_strategy_id=storage_strategy_id
    )

    batch_size = store.config.batch_limit
    for start in range(0, len(paths), batch_size):
        batch = paths[start : start + batch_size]
        log.info("Batch %d: %d files", start // batch_size + 1, len(batch))

        result = store.add_files([CandidateFile.from_path(p) for p in batch])
        report.rejected.extend(r.describe() for r in result.rejections)

        await store.start_upload()

        for upload in store.snapshot.files:
            if upload.status == UploadStatus.SUCCESS and upload.result is not None:
                report.uploaded += 1
                report.urls.append((upload.name, upload.result.url))
            elif upload.status == UploadStatus.ERROR:
                report.failed.append((upload.name, upload.error or "Upload failed"))
        store.clear_files()

    store.close_dialog()
    return report


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the batch upload CLI."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    args = parse_args(argv)
    if not args.directory.is_dir():
        print(f"Error: '{args.directory}' is not a directory", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    paths = find_images(args.directory)
    if not paths:
        print(f"No images found in '{args.directory}'", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    report = asyncio.run(_run_upload(paths, args))

    print(f"\n{'=' * 60}")  # noqa: T201
    print("Upload Report")  # noqa: T201
    print(f"{'=' * 60}")  # noqa: T201
    print(f"Total files:  {report.total_files}")  # noqa: T201
    print(f"Uploaded:     {report.uploaded}")  # noqa: T201
    print(f"Rejected:     {len(report.rejected)}")  # noqa: T201
    print(f"Failed:       {len(report.failed)}")  # noqa: T201

    if report.urls:
        print("\nUploaded files:")  # noqa: T201
        for name, url in report.urls:
            print(f"  - {name}: {url}")  # noqa: T201
    if report.rejected:
        print("\nRejected:")  # noqa: T201
        for reason in report.rejected:
            print(f"  - {reason}")  # noqa: T201
    if report.failed:
        print("\nFailed files:")  # noqa: T201
        for name, error in report.failed:
            print(f"  - {name}: {error}")  # noqa: T201

    print(f"{'=' * 60}")  # noqa: T201

    if report.failed:
        sys.exit(2)


async def _run_upload(paths: list[Path], args: argparse.Namespace) -> UploadReport:
    client = ImageHostClient()
    preview_dir = tempfile.TemporaryDirectory(prefix="imagebed-previews-")
    store = UploadStore(
        client,
        settings_source=client.fetch_image_settings,
        previews=PreviewResourceManager(preview_dir.name),
    )
    try:
        return await upload_directory(
            paths,
            store,
            album_id=args.album_id,
            is_public=args.public,
            storage_strategy_id=args.strategy_id,
        )
    finally:
        await store.aclose()
        await client.aclose()
        preview_dir.cleanup()


if __name__ == "__main__":
    main()
