"""Command-line front end: collect images, build derivatives, write a zip."""

from __future__ import annotations

import argparse
import os
import sys
import threading
from collections.abc import Sequence
from pathlib import Path

from PySide6.QtCore import Qt

from image_bundler.image_engine import ImageBundlerError, ImageSession
from image_bundler.image_engine.models import VALID_ROTATIONS, ImageHandle
from image_bundler.logger import get_logger, setup_logger
from image_bundler.settings_manager import SettingsManager

logger = get_logger("main")


def _parse_rotation(value: str) -> tuple[str, int]:
    name, sep, deg = value.rpartition("=")
    if not sep or not name:
        raise argparse.ArgumentTypeError(f"expected NAME=DEGREES, got {value!r}")
    try:
        degrees = int(deg)
    except ValueError:
        raise argparse.ArgumentTypeError(f"degrees must be an integer: {deg!r}") from None
    if degrees not in VALID_ROTATIONS:
        raise argparse.ArgumentTypeError(f"degrees must be one of {VALID_ROTATIONS}")
    return name, degrees


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="image-bundler",
        description="Resize and rotate gif/jpg/png images and pack them into a zip archive.",
    )
    parser.add_argument(
        "paths",
        nargs="*",
        help="image files or directories (one level deep); defaults to the last directory used",
    )
    parser.add_argument("-o", "--output", required=True, help="archive to write ('.zip' is appended if missing)")
    parser.add_argument("--storage-dir", help="directory holding the derivative cache and settings")
    parser.add_argument("--max-side", type=int, help="bounding box side for exported images")
    parser.add_argument(
        "--rotate",
        action="append",
        default=[],
        type=_parse_rotation,
        metavar="NAME=DEGREES",
        help="rotate the image with this display name clockwise (repeatable)",
    )
    parser.add_argument("--sort", action="store_true", help="order archive entries by name")
    parser.add_argument("--log-level", help="Set log level")
    parser.add_argument("--log-cats", help="Set log categories")
    return parser


def _apply_logging_options(args: argparse.Namespace) -> None:
    if args.log_level:
        os.environ["IMAGE_BUNDLER_LOG_LEVEL"] = args.log_level
    if args.log_cats:
        os.environ["IMAGE_BUNDLER_LOG_CATS"] = args.log_cats
    setup_logger()


def _find_by_name(handles: Sequence[ImageHandle], name: str) -> ImageHandle | None:
    return next((h for h in handles if h.display_name == name), None)


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    _apply_logging_options(args)

    settings_path = Path(args.storage_dir) / "settings.json" if args.storage_dir else None
    settings = SettingsManager(settings_path)
    paths = list(args.paths)
    if not paths:
        if settings.last_directory is None:
            logger.error("no input paths given and no last directory remembered")
            return 2
        paths = [settings.last_directory]
        logger.info("using last directory: %s", paths[0])
    resize_box = (args.max_side, args.max_side) if args.max_side else settings.resize_box

    failures: list[tuple[ImageHandle, str]] = []
    failures_lock = threading.Lock()

    def _on_failed(handle: ImageHandle, reason: str) -> None:
        with failures_lock:
            failures.append((handle, reason))
        logger.warning("%s removed from the archive: %s", handle.display_name, reason)

    try:
        session = ImageSession(settings.db_path, thumbnail_box=settings.thumbnail_box, resize_box=resize_box)
    except ImageBundlerError as exc:
        logger.error("cannot open derivative cache: %s", exc)
        return 2

    session.build_failed.connect(_on_failed, Qt.ConnectionType.DirectConnection)
    try:
        session.start()
        added = session.add_paths(paths)
        logger.info("loaded %d image(s)", len(added))
        session.wait_idle()

        handles = session.handles()
        for name, degrees in args.rotate:
            handle = _find_by_name(handles, name)
            if handle is None:
                logger.warning("--rotate: no image named %s", name)
                continue
            session.rotate(handle, degrees)

        if args.sort:
            session.sort()
        if not session.handles():
            logger.error("no images to export")
            return 1

        def _progress(done: int, total: int) -> None:
            logger.info("Compressed %d/%d", done, total)

        out = session.export_archive(args.output, progress=_progress)
        if added:
            settings.set("last_directory", str(Path(added[0].path).parent))
        print(f"Successfully saved images to {out.resolve()}")
        return 0
    except (ImageBundlerError, OSError) as exc:
        logger.error("Unable to save images to %s: %s", args.output, exc)
        return 1
    finally:
        session.close()


if __name__ == "__main__":
    sys.exit(main())
