from __future__ import annotations

import zipfile
from pathlib import Path

from wmar_watch.util.debug_bundle import create_debug_bundle


def test_create_debug_bundle_includes_debug_and_log(tmp_path: Path) -> None:
    debug_dir = tmp_path / "debug"
    debug_dir.mkdir()
    (debug_dir / "step_01_goto_landing.png").write_bytes(b"png")
    (debug_dir / "wmar-noform-a1.html").write_text("<html/>", encoding="utf-8")

    log_file = tmp_path / "wmar.log"
    log_file.write_text("hello", encoding="utf-8")

    out = create_debug_bundle(
        debug_dir=str(debug_dir),
        log_file=str(log_file),
        out_dir=str(tmp_path),
        engine="firefox",
    )
    assert out.exists()
    assert out.suffix == ".zip"
    assert "_firefox_" in out.name

    with zipfile.ZipFile(out, "r") as z:
        names = set(z.namelist())
        assert "wmar.log" in names
        assert "debug/step_01_goto_landing.png" in names
        assert "debug/wmar-noform-a1.html" in names


def test_create_debug_bundle_tolerates_missing_inputs(tmp_path: Path) -> None:
    out = create_debug_bundle(
        debug_dir=str(tmp_path / "nope"),
        log_file=str(tmp_path / "nope.log"),
        out_dir=str(tmp_path / "out"),
    )
    with zipfile.ZipFile(out, "r") as z:
        assert z.namelist() == []


def test_create_debug_bundle_writes_summary_at_root(tmp_path: Path) -> None:
    out = create_debug_bundle(
        debug_dir=str(tmp_path / "debug"),
        log_file=str(tmp_path / "wmar.log"),
        out_dir=str(tmp_path),
        summary="[FAIL]\nError: Result page (/wmar/returnStatus) not reached within 70s",
    )
    with zipfile.ZipFile(out, "r") as z:
        assert z.namelist() == ["summary.txt"]
        assert z.read("summary.txt").decode("utf-8").endswith("within 70s\n")
