"""Pure raster transforms: box fitting, quality scaling and quarter-turn rotation."""

from __future__ import annotations

import numpy as np

from .decoder import numpy_to_vips, vips_to_numpy
from .models import VALID_ROTATIONS


def fit_within_box(width: int, height: int, max_width: int, max_height: int) -> tuple[int, int]:
    """Largest size with the source's aspect ratio that fits the box.

    Sources that already fit are returned unchanged. Otherwise the binding
    side is clamped to its maximum and the other side scaled proportionally,
    truncated toward zero (never below 1).
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"invalid source size {width}x{height}")
    if max_width <= 0 or max_height <= 0:
        raise ValueError(f"invalid box size {max_width}x{max_height}")
    if width <= max_width and height <= max_height:
        return width, height
    # Integer cross-multiplication keeps the truncation exact.
    if width * max_height >= height * max_width:
        return max_width, max(1, height * max_width // width)
    return max(1, width * max_height // height), max_height


def scale_to(raster: np.ndarray, width: int, height: int) -> np.ndarray:
    """Resample `raster` to exactly `width` x `height` (lanczos3 via libvips)."""
    h, w = raster.shape[:2]
    if (w, h) == (width, height):
        return raster
    image = numpy_to_vips(raster).thumbnail_image(width, height=height, size="force")
    return vips_to_numpy(image)


def render_rotated(raster: np.ndarray, width: int, height: int, degrees: int) -> np.ndarray:
    """Scale to `width` x `height`, then rotate clockwise by `degrees`.

    For 90/270 the result is `height` x `width` wide.
    """
    if degrees not in VALID_ROTATIONS:
        raise ValueError(f"rotation must be one of {VALID_ROTATIONS}, got {degrees}")
    scaled = scale_to(raster, width, height)
    if degrees == 0:
        return scaled
    # np.rot90 turns counter-clockwise for positive k.
    return np.ascontiguousarray(np.rot90(scaled, k=-(degrees // 90)))
