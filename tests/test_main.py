import argparse
import io
import zipfile

import pytest

from image_bundler import main as cli
from image_bundler.settings_manager import SettingsManager


def test_parse_rotation():
    assert cli._parse_rotation("a.png=90") == ("a.png", 90)
    assert cli._parse_rotation("odd=name.jpg=270") == ("odd=name.jpg", 270)
    for bad in ("a.png", "=90", "a.png=45", "a.png=x"):
        with pytest.raises(argparse.ArgumentTypeError):
            cli._parse_rotation(bad)


def test_parser_requires_output():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["a.png"])


def test_no_images_returns_error(tmp_path):
    (tmp_path / "empty").mkdir()
    rc = cli.main([str(tmp_path / "empty"), "-o", str(tmp_path / "out"), "--storage-dir", str(tmp_path / "store")])
    assert rc == 1
    assert not (tmp_path / "out.zip").exists()


def test_cli_exports_rotated_sorted_archive(tmp_path, make_image, capsys):
    pytest.importorskip("pyvips")
    image_mod = pytest.importorskip("PIL.Image")
    folder = tmp_path / "images"
    make_image("b.png", folder=folder)
    make_image("a.jpg", folder=folder)
    storage = tmp_path / "store"

    rc = cli.main(
        [
            str(folder),
            "-o",
            str(tmp_path / "bundle"),
            "--storage-dir",
            str(storage),
            "--max-side",
            "400",
            "--rotate",
            "b.png=270",
            "--sort",
        ]
    )
    assert rc == 0
    assert "Successfully saved images to" in capsys.readouterr().out

    with zipfile.ZipFile(tmp_path / "bundle.zip") as zf:
        assert zf.namelist() == ["bundle/a.jpg", "bundle/b.png"]
        with image_mod.open(io.BytesIO(zf.read("bundle/b.png"))) as img:
            assert img.size == (300, 400)
        with image_mod.open(io.BytesIO(zf.read("bundle/a.jpg"))) as img:
            assert img.size == (400, 300)

    assert (storage / "derivatives.db").exists()
    assert SettingsManager(storage / "settings.json").last_directory == str(folder.resolve())


def test_without_paths_uses_last_directory(tmp_path, make_image):
    pytest.importorskip("pyvips")
    folder = tmp_path / "images"
    make_image("a.png", folder=folder)
    storage = tmp_path / "store"
    SettingsManager(storage / "settings.json").set("last_directory", str(folder))

    rc = cli.main(["-o", str(tmp_path / "again"), "--storage-dir", str(storage)])
    assert rc == 0
    with zipfile.ZipFile(tmp_path / "again.zip") as zf:
        assert zf.namelist() == ["again/a.png"]


def test_without_paths_or_last_directory_fails(tmp_path):
    rc = cli.main(["-o", str(tmp_path / "out"), "--storage-dir", str(tmp_path / "store")])
    assert rc == 2
    assert not (tmp_path / "out.zip").exists()
