"""DerivativeBuilder: produce, cache and reuse thumbnails and resized images.

The builder is the only component that decodes source files. It reads the
store first and falls back to the source only when a derivative is missing
(or its cached blob no longer decodes). Rotation is never persisted: rotated
output is always re-rendered from the cached resized base.
"""

from __future__ import annotations

from pathlib import Path

import numpy as np

from image_bundler.logger import get_logger
from image_bundler.path_utils import db_key, get_extension

from .db.derivative_store import DerivativeStore
from .decoder import VipsCodec
from .errors import SourceUnreadable
from .fs_iface import FileSystem, ImageCodec, LocalFileSystem
from .metrics import metrics
from .models import VALID_ROTATIONS, CacheEntry, Derivative, ImageHandle
from .transform import fit_within_box, render_rotated, scale_to

_logger = get_logger("builder")

THUMBNAIL_BOX = (100, 100)
RESIZE_BOX = (800, 800)


class DerivativeBuilder:
    def __init__(
        self,
        store: DerivativeStore,
        codec: ImageCodec | None = None,
        fs: FileSystem | None = None,
        thumbnail_box: tuple[int, int] = THUMBNAIL_BOX,
        resize_box: tuple[int, int] = RESIZE_BOX,
    ) -> None:
        self._store = store
        self._codec = codec if codec is not None else VipsCodec()
        self._fs = fs if fs is not None else LocalFileSystem()
        self.thumbnail_box = (int(thumbnail_box[0]), int(thumbnail_box[1]))
        self.resize_box = (int(resize_box[0]), int(resize_box[1]))

    @property
    def store(self) -> DerivativeStore:
        return self._store

    @property
    def codec(self) -> ImageCodec:
        return self._codec

    @property
    def fs(self) -> FileSystem:
        return self._fs

    # ---- helpers -------------------------------------------------------
    def _read_source(self, key: str) -> tuple[np.ndarray, int]:
        """Decode the source file; returns (raster, mtime_ms)."""
        try:
            # mtime first: if the file changes mid-read, the stored mtime is
            # older than the content and the next reconcile refreshes it.
            mtime_ms = self._fs.mtime_ms(key)
            data = self._fs.read_bytes(key)
        except OSError as exc:
            metrics.inc("builder.source_unreadable")
            raise SourceUnreadable(key, exc.strerror or str(exc)) from exc
        try:
            raster = self._codec.decode(data)
        except ValueError as exc:
            metrics.inc("builder.source_unreadable")
            raise SourceUnreadable(key, f"cannot decode image ({exc})") from exc
        metrics.inc("builder.source_reads")
        return raster, mtime_ms

    @staticmethod
    def _fit(raster: np.ndarray, box: tuple[int, int]) -> np.ndarray:
        h, w = raster.shape[:2]
        tw, th = fit_within_box(w, h, box[0], box[1])
        return scale_to(raster, tw, th)

    @staticmethod
    def _resized_format(key: str) -> str:
        # JPEG sources stay JPEG; everything else is stored losslessly.
        return "jpg" if get_extension(key).lower() in ("jpg", "jpeg") else "png"

    def _decode_cached(self, entry: CacheEntry, what: str, box: tuple[int, int]) -> Derivative | None:
        """Decode a stored blob; None when it must be rebuilt.

        A blob is rebuilt when it no longer decodes or when its size is not
        what `box` yields for the recorded original size (the box changed).
        """
        blob = entry.thumbnail if what == "thumbnail" else entry.resized
        try:
            cached = Derivative.from_raster(self._codec.decode(blob))
        except ValueError:
            _logger.warning("cached %s for %s does not decode; rebuilding", what, entry.path)
            metrics.inc(f"builder.corrupt_{what}")
            return None
        expected = fit_within_box(entry.original_width, entry.original_height, box[0], box[1])
        if cached.size != expected:
            _logger.debug("cached %s for %s is %dx%d, want %dx%d; rebuilding", what, entry.path, *cached.size, *expected)
            metrics.inc(f"builder.box_changed_{what}")
            return None
        return cached

    # ---- thumbnails ----------------------------------------------------
    def build_thumbnail(self, path: str | Path) -> Derivative:
        """Return the cached thumbnail, creating and storing it on first use."""
        key = db_key(path)
        entry = self._store.get(key)
        if entry is not None and entry.has_thumbnail:
            cached = self._decode_cached(entry, "thumbnail", self.thumbnail_box)
            if cached is not None:
                metrics.inc("builder.thumbnail_cache_hit")
                return cached

        with metrics.timed("builder.thumbnail_duration"):
            raster, mtime_ms = self._read_source(key)
            h, w = raster.shape[:2]
            thumb = self._fit(raster, self.thumbnail_box)
            png = self._codec.encode(thumb, "png")
            resized = None
            if entry is not None and entry.has_resized and mtime_ms > entry.mtime_ms:
                # The new mtime would otherwise vouch for a resized blob of the old content.
                resized = self._codec.encode(self._fit(raster, self.resize_box), self._resized_format(key))
            self._store.put(
                CacheEntry(
                    path=key,
                    mtime_ms=mtime_ms,
                    original_width=w,
                    original_height=h,
                    thumbnail=png,
                    resized=resized,
                )
            )
        metrics.inc("builder.thumbnail_built")
        _logger.debug("thumbnail built: %s orig=%dx%d thumb=%dx%d", key, w, h, thumb.shape[1], thumb.shape[0])
        return Derivative.from_raster(thumb)

    # ---- resized images ------------------------------------------------
    def get_resized_image(self, path: str | Path) -> Derivative:
        """Return the size-bounded working copy, deriving and storing it on first use."""
        key = db_key(path)
        entry = self._store.get(key)
        if entry is not None and entry.has_resized:
            cached = self._decode_cached(entry, "resized", self.resize_box)
            if cached is not None:
                metrics.inc("builder.resized_cache_hit")
                return cached

        with metrics.timed("builder.resized_duration"):
            raster, mtime_ms = self._read_source(key)
            h, w = raster.shape[:2]
            resized = self._fit(raster, self.resize_box)
            blob = self._codec.encode(resized, self._resized_format(key))

            if entry is None or not entry.has_thumbnail or mtime_ms > entry.mtime_ms:
                # No usable row yet (or the source moved on since the thumbnail):
                # write both derivatives from this decode so they agree with mtime.
                thumbnail = self._codec.encode(self._fit(raster, self.thumbnail_box), "png")
                new_entry = CacheEntry(key, mtime_ms, w, h, thumbnail=thumbnail, resized=blob)
            else:
                new_entry = CacheEntry(
                    key,
                    entry.mtime_ms,
                    entry.original_width,
                    entry.original_height,
                    thumbnail=None,
                    resized=blob,
                )
            self._store.put(new_entry)
        metrics.inc("builder.resized_built")
        _logger.debug("resized built: %s size=%dx%d", key, resized.shape[1], resized.shape[0])
        return Derivative.from_raster(resized)

    def refresh(self, path: str | Path) -> CacheEntry:
        """Regenerate the derivatives of an existing entry from the current source.

        The thumbnail is always rebuilt; the resized image only when the entry
        already had one. Both land in a single write with the new mtime.
        """
        key = db_key(path)
        entry = self._store.get(key)
        raster, mtime_ms = self._read_source(key)
        h, w = raster.shape[:2]
        thumbnail = self._codec.encode(self._fit(raster, self.thumbnail_box), "png")
        resized = None
        if entry is not None and entry.has_resized:
            resized = self._codec.encode(self._fit(raster, self.resize_box), self._resized_format(key))
        new_entry = CacheEntry(key, mtime_ms, w, h, thumbnail=thumbnail, resized=resized)
        self._store.put(new_entry)
        metrics.inc("builder.refreshed")
        _logger.debug("refreshed: %s resized=%s", key, resized is not None)
        return new_entry

    def original_dimensions(self, path: str | Path) -> tuple[int, int]:
        return self._store.dimensions(path)

    # ---- rotation ------------------------------------------------------
    def get_rotated_image(self, handle: ImageHandle) -> Derivative:
        """Resized base rendered at the handle's current rotation."""
        base = self.get_resized_image(handle.path)
        with handle.prefs.lock:
            degrees = handle.prefs.rotation_degrees
        raster = render_rotated(base.raster, base.width, base.height, degrees)
        return Derivative.from_raster(raster)

    def rotate(self, handle: ImageHandle, degrees: int) -> bool:
        """Set the handle's rotation; returns False when nothing changed."""
        if degrees not in VALID_ROTATIONS:
            raise ValueError(f"rotation must be one of {VALID_ROTATIONS}, got {degrees}")
        prefs = handle.prefs
        with prefs.lock:
            if degrees == prefs.applied_rotation_degrees:
                return False
            prefs.rotation_degrees = degrees
            prefs.applied_rotation_degrees = degrees
        _logger.debug("rotate: %s -> %d", handle.path, degrees)
        return True

    def rotate_left(self, handle: ImageHandle) -> int:
        with handle.prefs.lock:
            degrees = handle.prefs.rotation_degrees - 90
            if degrees < 0:
                degrees = 270
            self.rotate(handle, degrees)
            return handle.prefs.rotation_degrees

    def rotate_right(self, handle: ImageHandle) -> int:
        with handle.prefs.lock:
            self.rotate(handle, (handle.prefs.rotation_degrees + 90) % 360)
            return handle.prefs.rotation_degrees
