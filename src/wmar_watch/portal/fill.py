from __future__ import annotations

import logging
import time
from typing import Mapping, Optional, Protocol, Sequence

from playwright.sync_api import Frame

from ..errors import FillError
from .selectors import FieldHint, WmarSelectors


logger = logging.getLogger(__name__)


class FillStrategy(Protocol):
    name: str

    def attempt(self, frame: Frame, fields: Mapping[str, str]) -> bool: ...


def _hints_for(selectors: WmarSelectors, fields: Mapping[str, str]) -> Optional[list[tuple[FieldHint, str]]]:
    out: list[tuple[FieldHint, str]] = []
    for name, value in fields.items():
        hint = selectors.fields.get(name)
        if hint is None:
            return None
        out.append((hint, value))
    return out


def _fill_when_all_visible(locators: list, values: list[str], *, timeout_ms: int) -> bool:
    """
    Wait until every locator is visible (sharing one deadline), then fill them.
    Partial visibility is a failure and nothing is filled; a fill that breaks midway clears the
    fields it already wrote before reporting failure.
    """
    deadline = time.monotonic() + timeout_ms / 1000
    for loc in locators:
        remaining = max(int((deadline - time.monotonic()) * 1000), 1)
        try:
            loc.wait_for(state="visible", timeout=remaining)
        except Exception:
            return False

    written: list = []
    for loc, value in zip(locators, values):
        try:
            loc.fill(value)
        except Exception:
            logger.debug("fill() failed on a visible field; clearing %d filled field(s).", len(written), exc_info=True)
            _clear(written)
            return False
        written.append(loc)
    return True


def _clear(locators: list) -> None:
    for loc in locators:
        try:
            loc.fill("")
        except Exception:
            logger.debug("Could not clear a partially filled field.", exc_info=True)


class LabelStrategy:
    """Fill by accessible label text ("Social Security number", "Date of birth", ...)."""

    name = "label"

    def __init__(self, *, selectors: Optional[WmarSelectors] = None, timeout_ms: int = 1_800) -> None:
        self.selectors = selectors or WmarSelectors()
        self.timeout_ms = timeout_ms

    def attempt(self, frame: Frame, fields: Mapping[str, str]) -> bool:
        hints = _hints_for(self.selectors, fields)
        if not hints:
            return False
        try:
            locators = [frame.get_by_label(h.label).first for h, _ in hints]
        except Exception:
            return False
        return _fill_when_all_visible(locators, [v for _, v in hints], timeout_ms=self.timeout_ms)


class AttributeStrategy:
    """Fill by id/name/aria-label substrings."""

    name = "attribute"

    def __init__(self, *, selectors: Optional[WmarSelectors] = None, timeout_ms: int = 1_500) -> None:
        self.selectors = selectors or WmarSelectors()
        self.timeout_ms = timeout_ms

    def attempt(self, frame: Frame, fields: Mapping[str, str]) -> bool:
        hints = _hints_for(self.selectors, fields)
        if not hints:
            return False
        try:
            locators = [frame.locator(h.css).first for h, _ in hints]
        except Exception:
            return False
        return _fill_when_all_visible(locators, [v for _, v in hints], timeout_ms=self.timeout_ms)


# Assign values by position to the input-like elements of the main region. Uses the native value
# setter so React/Angular-style controlled inputs see the change, then fires input/change/blur.
_ORDINAL_FILL_JS = """
(args) => {
  const root = document.querySelector('main') || document;
  const inputs = Array.from(root.querySelectorAll(args.selector));
  if (inputs.length < args.values.length) return false;
  args.values.forEach((value, i) => {
    const el = inputs[i];
    const proto = el instanceof HTMLTextAreaElement ? HTMLTextAreaElement.prototype : HTMLInputElement.prototype;
    const setter = Object.getOwnPropertyDescriptor(proto, 'value');
    if (setter && setter.set) setter.set.call(el, value); else el.value = value;
    el.dispatchEvent(new Event('input', { bubbles: true }));
    el.dispatchEvent(new Event('change', { bubbles: true }));
    el.dispatchEvent(new Event('blur'));
  });
  return true;
}
"""


class OrdinalStrategy:
    """Last resort: raw DOM assignment by document order."""

    name = "ordinal"

    def __init__(
        self,
        *,
        selectors: Optional[WmarSelectors] = None,
        timeout_ms: int = 2_000,
        interval_ms: int = 250,
    ) -> None:
        self.selectors = selectors or WmarSelectors()
        self.timeout_ms = timeout_ms
        self.interval_ms = interval_ms

    def attempt(self, frame: Frame, fields: Mapping[str, str]) -> bool:
        if not fields:
            return False
        args = {"selector": self.selectors.input_like, "values": list(fields.values())}
        deadline = time.monotonic() + self.timeout_ms / 1000
        while True:
            try:
                if frame.evaluate(_ORDINAL_FILL_JS, args):
                    return True
            except Exception:
                logger.debug("Ordinal fill script failed.", exc_info=True)
            if time.monotonic() >= deadline:
                return False
            try:
                frame.wait_for_timeout(self.interval_ms)
            except Exception:
                return False


def default_strategies(selectors: Optional[WmarSelectors] = None) -> list[FillStrategy]:
    sel = selectors or WmarSelectors()
    return [LabelStrategy(selectors=sel), AttributeStrategy(selectors=sel), OrdinalStrategy(selectors=sel)]


class FieldFiller:
    def __init__(self, strategies: Optional[Sequence[FillStrategy]] = None) -> None:
        self.strategies: list[FillStrategy] = list(strategies) if strategies is not None else default_strategies()

    def fill(self, frame: Frame, fields: Mapping[str, str]) -> str:
        """
        Try each strategy in order; returns the name of the one that filled the form.
        """
        attempted: list[str] = []
        for strategy in self.strategies:
            attempted.append(strategy.name)
            try:
                ok = strategy.attempt(frame, fields)
            except Exception:
                logger.debug("Fill strategy %s raised.", strategy.name, exc_info=True)
                ok = False
            if ok:
                logger.info("Filled %d fields (strategy=%s)", len(fields), strategy.name)
                return strategy.name
            logger.info("Fill strategy %s did not succeed; trying next.", strategy.name)
        raise FillError(f"Could not fill form fields (tried: {', '.join(attempted)})", attempted=attempted)
