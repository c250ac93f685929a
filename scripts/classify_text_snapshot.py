#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path


def _ensure_src_on_path() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    src = repo_root / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))


def _read_text(path: str) -> str:
    p = Path(path)
    if not p.exists():
        raise SystemExit(f"File not found: {p}")
    return p.read_text(encoding="utf-8", errors="replace")


def main(argv: list[str] | None = None) -> int:
    _ensure_src_on_path()

    from wmar_watch.classify import classify
    from wmar_watch.models import ObservedStatus
    from wmar_watch.state import ChangeTracker, JsonFileStore, compare

    p = argparse.ArgumentParser(
        prog="classify_text_snapshot",
        description=(
            "Classify saved result-page text (data/debug/*.txt) into status + key line.\n"
            "Useful for checking the category rules against real captured pages (no Playwright, no secrets)."
        ),
    )
    p.add_argument("files", nargs="+", help="Debug .txt files captured from the result page")
    p.add_argument(
        "--state",
        default="",
        help="Optional state file; reports whether each snapshot would count as 'no change'.",
    )
    p.add_argument("--out", default="", help="Optional output JSON path (otherwise prints to stdout)")
    args = p.parse_args(argv)

    previous = ChangeTracker(state_store=JsonFileStore(args.state)).load_previous() if args.state else None

    rows = []
    for f in args.files:
        c = classify(_read_text(f))
        row = {"file": f, "status": c.category.value, "keyLine": c.key_line}
        if args.state:
            current = ObservedStatus(category=c.category, key_line=c.key_line)
            row["unchanged"] = bool(compare(current, previous))
        rows.append(row)

    out_json = json.dumps({"snapshots": rows}, indent=2, sort_keys=False)
    if args.out:
        Path(args.out).write_text(out_json, encoding="utf-8")
    else:
        print(out_json)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
