"""Tests for the command-line entrypoint."""

from __future__ import annotations

from pathlib import Path

from typer.testing import CliRunner

from conftest import make_jpeg
from thyme.cli import app
from thyme.db import dispose_engine

runner = CliRunner()


def test_scan_and_thumbs(tmp_path: Path) -> None:
    db = tmp_path / "data" / "library.db"
    settings = tmp_path / "settings.yaml"
    settings.write_text("thumbnails:\n  big_size: 120\n  small_size: 40\n", encoding="utf-8")
    make_jpeg(tmp_path / "library" / "roll" / "a.jpg", size=(300, 200))
    make_jpeg(tmp_path / "library" / "roll" / "b.jpg", size=(300, 200))

    try:
        scan = runner.invoke(
            app, ["scan", str(tmp_path / "library"), "--db", str(db), "--settings", str(settings)]
        )
        thumbs = runner.invoke(
            app,
            ["thumbs", "--db", str(db), "--settings", str(settings), "-o", str(tmp_path / "out"), "-w", "2"],
        )
    finally:
        dispose_engine(db)

    assert scan.exit_code == 0, scan.output
    assert "2 new photos in 1 new sets" in scan.output
    assert thumbs.exit_code == 0, thumbs.output
    assert "2 photos processed, 0 with failures" in thumbs.output
    assert len(list((tmp_path / "out").iterdir())) == 4


def test_init_creates_database_and_thumbnail_root(tmp_path: Path) -> None:
    db = tmp_path / "data" / "library.db"
    settings = tmp_path / "settings.yaml"
    settings.write_text(f"thumbnails:\n  root: {tmp_path / 'thumbs'}\n", encoding="utf-8")

    try:
        result = runner.invoke(app, ["init", "--db", str(db), "--settings", str(settings)])
    finally:
        dispose_engine(db)

    assert result.exit_code == 0, result.output
    assert db.exists()
    assert (tmp_path / "thumbs").is_dir()


def test_unknown_backend_is_rejected(tmp_path: Path) -> None:
    result = runner.invoke(
        app, ["thumbs", "--db", str(tmp_path / "library.db"), "--backend", "gimp", "-o", str(tmp_path / "out")]
    )

    assert result.exit_code != 0
    assert not (tmp_path / "out").exists()


def test_pipeline_errors_exit_with_status_one(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("file", encoding="utf-8")
    db = tmp_path / "library.db"

    try:
        result = runner.invoke(app, ["thumbs", "--db", str(db), "-o", str(blocker / "thumbs")])
    finally:
        dispose_engine(db)

    assert result.exit_code == 1
