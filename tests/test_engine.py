import io
import threading
import zipfile

import pytest
from PySide6.QtCore import Qt

from image_bundler.image_engine import ImageSession
from image_bundler.settings_manager import SettingsManager

pytest.importorskip("pyvips")
Image = pytest.importorskip("PIL.Image")


class Events:
    def __init__(self) -> None:
        self.completed = []
        self.failed = []
        self._lock = threading.Lock()

    def on_completed(self, handle) -> None:
        with self._lock:
            self.completed.append(handle)

    def on_failed(self, handle, reason) -> None:
        with self._lock:
            self.failed.append((handle, reason))


@pytest.fixture
def session(tmp_path):
    s = ImageSession(tmp_path / "cache" / "derivatives.db")
    events = Events()
    s.build_completed.connect(events.on_completed, Qt.ConnectionType.DirectConnection)
    s.build_failed.connect(events.on_failed, Qt.ConnectionType.DirectConnection)
    s.events = events
    yield s
    s.close()


def test_add_before_start_is_rejected(session, make_image):
    with pytest.raises(RuntimeError):
        session.add_to_working_set(make_image("a.png"))


def test_end_to_end_export(session, make_image, tmp_path):
    folder = tmp_path / "images"
    make_image("b.jpg", folder=folder)
    make_image("a.png", folder=folder)
    make_image("c.gif", size=(300, 200), folder=folder)

    session.start()
    added = session.add_paths([folder])
    assert [h.display_name for h in added] == ["a.png", "b.jpg", "c.gif"]
    assert session.wait_idle(timeout=30)
    assert len(session.events.completed) == 3
    assert session.events.failed == []

    a, b, c = added
    assert session.thumbnail(a).size == (100, 75)
    assert session.original_dimensions(b) == (1024, 768)
    assert session.rotate(b, 90) is True
    session.rename(c, "c.png")

    out = session.export_archive(tmp_path / "out")
    assert out.name == "out.zip"
    with zipfile.ZipFile(out) as zf:
        assert zf.namelist() == ["out/a.png", "out/b.jpg", "out/c.png"]
        sizes = {}
        formats = {}
        for name in zf.namelist():
            with Image.open(io.BytesIO(zf.read(name))) as img:
                sizes[name] = img.size
                formats[name] = img.format
    assert sizes == {"out/a.png": (800, 600), "out/b.jpg": (600, 800), "out/c.png": (300, 200)}
    assert formats == {"out/a.png": "PNG", "out/b.jpg": "JPEG", "out/c.png": "PNG"}


def test_unreadable_file_is_dropped_with_reason(session, make_image, tmp_path):
    good = make_image("good.png")
    bad = tmp_path / "images" / "bad.png"
    bad.write_bytes(b"\x89PNG but truncated")

    session.start()
    session.add_paths([good, bad])
    assert session.wait_idle(timeout=30)

    assert [h.display_name for h in session.handles()] == ["good.png"]
    assert len(session.events.failed) == 1
    handle, reason = session.events.failed[0]
    assert handle.display_name == "bad.png"
    assert reason.startswith("Unable to read ")


def test_duplicate_names_are_skipped(session, make_image, tmp_path):
    first = make_image("same.png", folder=tmp_path / "one")
    second = make_image("same.png", folder=tmp_path / "two")
    session.start()
    added = session.add_paths([first, second])
    assert len(added) == 1
    assert len(session.handles()) == 1
    session.wait_idle(timeout=30)


def test_start_reconciles_previous_session(tmp_path, make_image):
    db_path = tmp_path / "cache" / "derivatives.db"
    keep = make_image("keep.png")
    gone = make_image("gone.png")

    first = ImageSession(db_path)
    first.start()
    first.add_paths([keep, gone])
    assert first.wait_idle(timeout=30)
    first.close()

    gone.unlink()
    second = ImageSession(db_path)
    try:
        report = second.start()
        assert report.checked == 2
        assert len(report.removed) == 1
        assert report.removed[0].endswith("gone.png")
        assert second.store.exists(keep)
        assert not second.store.exists(gone)
    finally:
        second.close()


def test_from_settings_uses_configured_boxes(tmp_path, make_image):
    settings = SettingsManager(tmp_path / "home" / "settings.json")
    settings.set("resize_max_side", 400)
    s = ImageSession.from_settings(settings)
    try:
        assert s.store.db_path == tmp_path / "home" / "derivatives.db"
        s.start()
        h = s.add_to_working_set(make_image("a.png"))
        s.wait_idle(timeout=30)
        assert s.get_rotated_image(h).size == (400, 300)
        assert s.rotate_right(h) == 90
        assert s.get_rotated_image(h).size == (300, 400)
        assert s.rotate_left(h) == 0
    finally:
        s.close()
