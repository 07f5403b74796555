"""Path normalization and image-file selection utilities.

This module centralizes the project's path rules:

- Use absolute paths when interacting with the filesystem.
- Use a stable, normalized key for DB storage (forward slashes + drive letter
  normalization on Windows).
- Decide which files are accepted source images (by extension only).

Keep this module free of Qt dependencies.
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

_DRIVE_PREFIX_LEN = 2

IMAGE_EXTENSIONS: tuple[str, ...] = ("gif", "jpg", "jpeg", "png")


def _normalize_drive_letter(path_str: str) -> str:
    # Normalize drive letter casing on Windows ("c:\\" -> "C:\\").
    if len(path_str) >= _DRIVE_PREFIX_LEN and path_str[1] == ":":
        return path_str[0].upper() + path_str[1:]
    return path_str


def abs_path(path: str | Path) -> Path:
    """Return an absolute path without requiring that it exists."""
    p = Path(path).expanduser()
    try:
        # strict=False avoids exceptions for non-existent paths.
        return p.resolve(strict=False)
    except OSError:
        return p.absolute()


def abs_path_str(path: str | Path) -> str:
    """Absolute, OS-native path string (Windows uses backslashes)."""
    return _normalize_drive_letter(str(abs_path(path)))


def db_key(path: str | Path) -> str:
    """Stable DB key for a filesystem path."""
    return _normalize_drive_letter(abs_path_str(path)).replace("\\", "/")


def get_extension(name: str | Path) -> str:
    """Text after the last dot of the file name, or "" when there is none."""
    base = Path(name).name
    if "." not in base:
        return ""
    return base.rsplit(".", 1)[1]


def is_supported_image(name: str | Path) -> bool:
    return get_extension(name).lower() in IMAGE_EXTENSIONS


def collect_image_files(paths: Iterable[str | Path], max_depth: int = 1) -> list[Path]:
    """Expand `paths` into a sorted list of accepted image files.

    Files are kept when their extension is accepted; directories are walked
    at most `max_depth` levels deep. Unreadable directories are skipped.
    """
    result: list[Path] = []

    def _walk(items: Iterable[Path], depth: int) -> None:
        for p in items:
            if p.is_file():
                if is_supported_image(p):
                    result.append(abs_path(p))
            elif p.is_dir() and depth < max_depth:
                try:
                    children = list(p.iterdir())
                except OSError:
                    continue
                _walk(children, depth + 1)

    _walk([Path(p).expanduser() for p in paths], 0)
    return sorted(result)
