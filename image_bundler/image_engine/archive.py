"""Zip export of the working set.

Each handle becomes `<archive stem>/<display name>`, encoded in the format
implied by the display name's extension from its rotated derivative.
"""

from __future__ import annotations

import contextlib
import zipfile
from collections.abc import Callable, Sequence
from pathlib import Path

from image_bundler.logger import get_logger
from image_bundler.path_utils import get_extension

from .fs_iface import ImageCodec
from .metrics import metrics
from .models import Derivative, ImageHandle

_logger = get_logger("archive")

ProgressFn = Callable[[int, int], None]


def ensure_zip_extension(path: str | Path) -> Path:
    p = Path(path)
    if p.suffix.lower() != ".zip":
        p = p.with_name(p.name + ".zip")
    return p


def write_archive(
    zip_path: str | Path,
    handles: Sequence[ImageHandle],
    render: Callable[[ImageHandle], Derivative],
    codec: ImageCodec,
    progress: ProgressFn | None = None,
) -> Path:
    """Write `handles` into a new zip at `zip_path` (".zip" appended if missing).

    Any failure removes the partially written archive and re-raises.
    """
    target = ensure_zip_extension(zip_path)
    folder = target.stem
    total = len(handles)
    _logger.info("writing %d image(s) to %s", total, target)
    try:
        with zipfile.ZipFile(target, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for i, handle in enumerate(handles, start=1):
                derivative = render(handle)
                fmt = get_extension(handle.display_name).lower()
                data = codec.encode(derivative.raster, fmt)
                zf.writestr(f"{folder}/{handle.display_name}", data)
                metrics.inc("archive.entries_written")
                _logger.debug("archived %s as %s (%dx%d)", handle.path, handle.display_name, *derivative.size)
                if progress is not None:
                    progress(i, total)
    except BaseException:
        with contextlib.suppress(OSError):
            target.unlink()
        raise
    return target
