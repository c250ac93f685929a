from __future__ import annotations

import logging
import re
import time
from typing import Any, Callable, Optional

from playwright.sync_api import Frame, Page

from .selectors import WmarSelectors


logger = logging.getLogger(__name__)

FramePredicate = Callable[[Frame], bool]

DEFAULT_POLL_INTERVAL_MS = 300


def locate(
    page: Page,
    predicate: FramePredicate,
    *,
    timeout_ms: int,
    interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
    clock: Callable[[], float] = time.monotonic,
) -> Optional[Frame]:
    """
    Find the rendering context (top document or an embedded iframe) that currently hosts a UI
    region, by polling every attached frame until `predicate` holds.

    WMAR renders the same logical page either directly or inside an iframe depending on server-side
    state, so callers describe *what* they need instead of *where* it lives.

    - Scan order is `page.frames`: main frame first, then child frames in attachment order.
      The first satisfying frame wins.
    - Predicate errors (detached frames, navigation races) count as "not satisfied".
    - Returns None on timeout; it is up to the caller whether that is fatal.
    """
    deadline = clock() + max(timeout_ms, 0) / 1000
    while True:
        try:
            frames = list(page.frames)
        except Exception:
            frames = []

        for frame in frames:
            try:
                if predicate(frame):
                    return frame
            except Exception:
                continue

        if clock() >= deadline:
            return None
        page.wait_for_timeout(interval_ms)


def describe_frames(page: Page) -> list[str]:
    try:
        return [getattr(f, "url", "") or "" for f in page.frames]
    except Exception:
        return []


def _count(frame: Any, selector: str) -> int:
    try:
        return int(frame.locator(selector).count())
    except Exception:
        return 0


def has_min_inputs(n: int, *, selectors: Optional[WmarSelectors] = None) -> FramePredicate:
    sel = selectors or WmarSelectors()

    def _pred(frame: Frame) -> bool:
        return _count(frame, sel.input_like) >= n

    return _pred


def has_heading(*, selectors: Optional[WmarSelectors] = None) -> FramePredicate:
    sel = selectors or WmarSelectors()

    def _pred(frame: Frame) -> bool:
        return _count(frame, sel.heading) > 0

    return _pred


def has_continue_and_choice(*, selectors: Optional[WmarSelectors] = None) -> FramePredicate:
    sel = selectors or WmarSelectors()
    loose_continue = re.compile(r"continue", re.I)

    def _pred(frame: Frame) -> bool:
        if _count(frame, sel.choice_control) <= 0:
            return False
        try:
            return int(frame.get_by_role("button", name=loose_continue).count()) > 0
        except Exception:
            return False

    return _pred
