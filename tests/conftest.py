"""Pytest configuration.

Engine objects are QObjects with signals. A single `QCoreApplication` is
created for the whole session as early as possible and shut down at the end.
Signals are emitted from the build worker thread, so tests connect their
collectors with `Qt.ConnectionType.DirectConnection`.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any

import pytest

from image_bundler.image_engine.fs_iface import LocalFileSystem

_APP: Any | None = None


def pytest_configure(config) -> None:  # noqa: ARG001
    """Ensure a QCoreApplication exists before collecting/running tests."""
    try:
        from PySide6.QtCore import QCoreApplication
    except ImportError:
        return

    global _APP

    app = QCoreApplication.instance()
    # Keep a strong ref so it isn't GC'd mid-session.
    _APP = app if app is not None else QCoreApplication([])


def pytest_sessionfinish(session, exitstatus) -> None:  # noqa: ARG001
    try:
        from PySide6.QtCore import QCoreApplication
    except ImportError:
        return

    app = QCoreApplication.instance()
    if app is None:
        return
    app.quit()
    app.processEvents()


class CountingFileSystem(LocalFileSystem):
    """Local filesystem that records how often each source is read."""

    def __init__(self) -> None:
        self.reads: dict[str, int] = {}
        self._lock = threading.Lock()

    def read_bytes(self, path: str) -> bytes:
        with self._lock:
            self.reads[path] = self.reads.get(path, 0) + 1
        return super().read_bytes(path)

    def read_count(self, path: str | Path) -> int:
        from image_bundler.path_utils import db_key

        with self._lock:
            return self.reads.get(db_key(path), 0)


@pytest.fixture
def counting_fs() -> CountingFileSystem:
    return CountingFileSystem()


@pytest.fixture
def make_image(tmp_path: Path):
    """Factory writing a solid-colour image with Pillow; returns its path."""
    pil_image = pytest.importorskip("PIL.Image")

    def _make(name: str, size: tuple[int, int] = (1024, 768), color=(200, 30, 30), folder: Path | None = None):
        target_dir = folder or (tmp_path / "images")
        target_dir.mkdir(parents=True, exist_ok=True)
        path = target_dir / name
        img = pil_image.new("RGB", size, color)
        # Left half in a second colour so rotation and scaling are visible in pixels.
        img.paste((20, 20, 220), (0, 0, max(1, size[0] // 2), size[1]))
        img.save(path)
        return path

    return _make


@pytest.fixture
def store(tmp_path: Path):
    from image_bundler.image_engine.db.derivative_store import DerivativeStore

    s = DerivativeStore(tmp_path / "cache" / "derivatives.db")
    yield s
    s.close()
