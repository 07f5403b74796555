"""Collaborator interfaces consumed by the derivative builder.

Both are injected so tests can count or fake disk and codec access.
"""

from __future__ import annotations

import os
import stat
from abc import ABC, abstractmethod

import numpy as np

from .meta_utils import to_mtime_ms_from_stat


class FileSystem(ABC):
    """Read-only view of the source files."""

    @abstractmethod
    def read_bytes(self, path: str) -> bytes:
        """Return the file content; raises OSError when it cannot be read."""
        raise NotImplementedError()

    @abstractmethod
    def mtime_ms(self, path: str) -> int:
        """Modification time in epoch milliseconds; raises OSError."""
        raise NotImplementedError()

    @abstractmethod
    def exists(self, path: str) -> bool:
        """True for a regular file, False when it is missing; other OSErrors propagate."""
        raise NotImplementedError()


class ImageCodec(ABC):
    """Raster decode/encode. Rasters are H x W x 3 uint8 arrays."""

    @abstractmethod
    def decode(self, data: bytes) -> np.ndarray:
        """Decode encoded image bytes; raises ValueError on undecodable data."""
        raise NotImplementedError()

    @abstractmethod
    def encode(self, raster: np.ndarray, fmt: str) -> bytes:
        """Encode to `fmt` ("png", "jpg", "jpeg" or "gif")."""
        raise NotImplementedError()


class LocalFileSystem(FileSystem):
    def read_bytes(self, path: str) -> bytes:
        with open(path, "rb") as f:
            return f.read()

    def mtime_ms(self, path: str) -> int:
        return to_mtime_ms_from_stat(os.stat(path))

    def exists(self, path: str) -> bool:
        try:
            st = os.stat(path)
        except (FileNotFoundError, NotADirectoryError):
            return False
        return stat.S_ISREG(st.st_mode)
