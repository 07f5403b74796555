"""Image codec using pyvips.

Decodes encoded source bytes into RGB numpy arrays and encodes arrays back to
PNG/JPEG/GIF bytes. Array <-> vips conversion helpers are shared with the
transform engine.
"""

from __future__ import annotations

import contextlib
import os
from typing import Any

import numpy as np

from image_bundler.logger import get_logger

from .fs_iface import ImageCodec

_logger = get_logger("decoder")

RGB_CHANNELS = 3
_RGB_DIMS = 3

# Best-effort only; decoding will report import errors if any
_LIBVIPS_BIN = os.environ.get("LIBVIPS_BIN")
if _LIBVIPS_BIN and os.name == "nt":
    with contextlib.suppress(OSError):
        os.add_dll_directory(_LIBVIPS_BIN)

_SAVE_SUFFIX = {
    "png": ".png",
    "jpg": ".jpg[Q=90]",
    "jpeg": ".jpg[Q=90]",
    "gif": ".gif",
}

_pyvips: Any | None = None


def _get_pyvips_module() -> Any:
    global _pyvips
    if _pyvips is None:
        import pyvips  # type: ignore

        # Keep pyvips operation caches off; every image here is touched once.
        with contextlib.suppress(Exception):
            pyvips.cache_set_max(0)
            pyvips.cache_set_max_mem(0)
            pyvips.cache_set_max_files(0)
        _pyvips = pyvips
    return _pyvips


def vips_to_numpy(image: Any) -> np.ndarray:
    """Normalize a vips image to sRGB/uchar/3 bands and copy it into an array."""
    pyvips = _get_pyvips_module()
    with contextlib.suppress(pyvips.Error):
        image = image.colourspace("srgb")
    if image.hasalpha():
        image = image.flatten(background=[0, 0, 0])
    if image.bands > RGB_CHANNELS:
        image = image.extract_band(0, n=RGB_CHANNELS)
    elif image.bands < RGB_CHANNELS:
        image = pyvips.Image.bandjoin([image] * RGB_CHANNELS)
    if image.format != "uchar":
        image = image.cast("uchar")

    mem = image.write_to_memory()
    array = np.frombuffer(mem, dtype=np.uint8).reshape(image.height, image.width, image.bands)
    array = array.copy()
    if array.shape[2] != RGB_CHANNELS:
        raise RuntimeError(f"Unsupported band count after conversion: {array.shape[2]}")
    return array


def numpy_to_vips(rgb: np.ndarray) -> Any:
    pyvips = _get_pyvips_module()
    if rgb.ndim != _RGB_DIMS or rgb.shape[2] != RGB_CHANNELS:
        raise ValueError("expected RGB numpy array with shape (h, w, 3)")
    h, w, _ = rgb.shape
    if rgb.dtype != np.uint8:
        rgb = rgb.astype(np.uint8)
    # pyvips expects a contiguous bytes buffer in C order
    buf = np.ascontiguousarray(rgb).tobytes()
    img: Any = pyvips.Image.new_from_memory(buf, w, h, RGB_CHANNELS, "uchar")
    with contextlib.suppress(pyvips.Error):
        img = img.copy(interpretation="srgb")
    return img


class VipsCodec(ImageCodec):
    """pyvips-backed codec for the accepted raster formats."""

    def decode(self, data: bytes) -> np.ndarray:
        pyvips = _get_pyvips_module()
        if not data:
            raise ValueError("empty image data")
        try:
            image = pyvips.Image.new_from_buffer(data, "", access="sequential")
            return vips_to_numpy(image.copy_memory())
        except pyvips.Error as exc:
            _logger.debug("decode failed: %s", exc)
            raise ValueError(str(exc).strip()) from exc

    def encode(self, raster: np.ndarray, fmt: str) -> bytes:
        pyvips = _get_pyvips_module()
        suffix = _SAVE_SUFFIX.get(fmt.lower().lstrip("."))
        if suffix is None:
            raise ValueError(f"unsupported output format: {fmt}")
        try:
            out = numpy_to_vips(raster).write_to_buffer(suffix)
        except pyvips.Error as exc:
            raise ValueError(f"pyvips failed to encode {fmt}: {str(exc).strip()}") from exc
        # Normalize to bytes in case pyvips returns a memoryview-like object
        return out if isinstance(out, bytes) else bytes(out)

