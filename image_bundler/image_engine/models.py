from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np

from image_bundler.path_utils import db_key

VALID_ROTATIONS = (0, 90, 180, 270)


@dataclass(frozen=True)
class CacheEntry:
    """One row of the derivative store.

    `resized` is None until the image has been requested for export. When an
    entry is passed to `DerivativeStore.put`, a None blob means "leave the
    stored value alone".
    """

    path: str
    mtime_ms: int
    original_width: int
    original_height: int
    thumbnail: bytes | None = None
    resized: bytes | None = None
    created_at: float = 0.0

    @property
    def has_thumbnail(self) -> bool:
        return bool(self.thumbnail)

    @property
    def has_resized(self) -> bool:
        return bool(self.resized)


@dataclass(frozen=True)
class Derivative:
    """A generated raster (H x W x 3 uint8) and its pixel size."""

    raster: np.ndarray
    width: int
    height: int

    @classmethod
    def from_raster(cls, raster: np.ndarray) -> Derivative:
        h, w = raster.shape[:2]
        return cls(raster=raster, width=int(w), height=int(h))

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height


@dataclass
class ViewPreferences:
    """Per-session, user-editable state for a handle."""

    display_name: str
    rotation_degrees: int = 0
    # None until the first rotate, so the first rotate always materializes.
    applied_rotation_degrees: int | None = None
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)


class ImageHandle:
    """A file in the working set.

    The path is the identity (and the derivative store key) and never
    changes; everything the user can edit lives in `prefs`.
    """

    __slots__ = ("_path", "prefs")

    def __init__(self, path: str | Path, display_name: str | None = None):
        self._path = db_key(path)
        self.prefs = ViewPreferences(display_name=display_name or Path(self._path).name)

    @property
    def path(self) -> str:
        return self._path

    @property
    def display_name(self) -> str:
        return self.prefs.display_name

    @property
    def rotation_degrees(self) -> int:
        return self.prefs.rotation_degrees

    @property
    def applied_rotation_degrees(self) -> int | None:
        return self.prefs.applied_rotation_degrees

    def __repr__(self) -> str:
        return f"ImageHandle({self._path!r}, name={self.prefs.display_name!r}, rot={self.prefs.rotation_degrees})"
