from __future__ import annotations

import time
import zipfile
from pathlib import Path


SUMMARY_NAME = "summary.txt"


def bundle_name(engine: str = "") -> str:
    eng = (engine or "").strip().lower()
    return f"wmar_debug{'_' + eng if eng else ''}_{time.strftime('%Y%m%d_%H%M%S')}.zip"


def create_debug_bundle(
    *,
    debug_dir: str,
    log_file: str,
    out_dir: str = "data",
    engine: str = "",
    summary: str = "",
) -> Path:
    """
    Zip the page dumps/screenshots of a failed run together with the log file, so a single
    attachment can travel with the failure notification.

    `summary` (error, engines tried, steps) is stored as `summary.txt` at the archive root.
    Never includes `.env`, config files or the state file (they hold or reveal shared secrets).
    """
    out_root = Path(out_dir)
    out_root.mkdir(parents=True, exist_ok=True)
    out_path = out_root / bundle_name(engine)

    dumps = Path(debug_dir)
    log = Path(log_file)

    with zipfile.ZipFile(out_path, "w", compression=zipfile.ZIP_DEFLATED) as z:
        if summary:
            z.writestr(SUMMARY_NAME, summary if summary.endswith("\n") else summary + "\n")

        if log.is_file():
            z.write(log, arcname=log.name)

        if dumps.is_dir():
            for p in sorted(dumps.rglob("*")):
                if not p.is_file():
                    continue
                try:
                    z.write(p, arcname=str(Path("debug") / p.relative_to(dumps)))
                except OSError:
                    # a dump can vanish while a browser is still shutting down
                    continue

    return out_path
