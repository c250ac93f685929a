from __future__ import annotations

import re
from typing import Optional

from .models import Classification, ObservedStatus, StatusCategory, now_ms


_TRAILING_WS_RE = re.compile(r"\s+\n")
_BLANK_RUN_RE = re.compile(r"\n{2,}")
_KEY_LINE_RE = re.compile(r"Your amended return [^\n.]+\.", re.I)

KEY_LINE_FALLBACK_CHARS = 200

# Order matters: the first matching pattern wins. "received" is checked first because it is the
# steady state for most of a return's life. This precedence is a heuristic from observed pages,
# not something the site documents.
CATEGORY_PATTERNS: tuple[tuple[re.Pattern[str], StatusCategory], ...] = (
    (re.compile(r"not yet been processed", re.I), StatusCategory.RECEIVED),
    (re.compile(r"adjusted", re.I), StatusCategory.ADJUSTED),
    (re.compile(r"completed", re.I), StatusCategory.COMPLETED),
    (re.compile(r"does not match our records", re.I), StatusCategory.NOT_FOUND),
)


def normalize_text(text: Optional[str]) -> str:
    t = _TRAILING_WS_RE.sub("\n", text or "")
    return _BLANK_RUN_RE.sub("\n\n", t)


def extract_key_line(normalized: str) -> str:
    m = _KEY_LINE_RE.search(normalized)
    if m:
        return m.group(0).strip()
    return normalized[:KEY_LINE_FALLBACK_CHARS].strip()


def categorize(normalized: str) -> StatusCategory:
    for pattern, category in CATEGORY_PATTERNS:
        if pattern.search(normalized):
            return category
    return StatusCategory.UNKNOWN


def classify(raw_text: Optional[str]) -> Classification:
    """
    Map the result page's text to a status category plus its representative sentence.
    Total: every input (including empty) yields exactly one category.
    """
    t = normalize_text(raw_text)
    return Classification(category=categorize(t), key_line=extract_key_line(t))


def observe(raw_text: Optional[str], *, observed_at_ms: Optional[int] = None) -> ObservedStatus:
    c = classify(raw_text)
    return ObservedStatus(
        category=c.category,
        key_line=c.key_line,
        raw_text=raw_text or "",
        observed_at_ms=observed_at_ms if observed_at_ms is not None else now_ms(),
    )
