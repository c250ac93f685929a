from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from playwright.sync_api import Browser, Frame, Page, Playwright, sync_playwright

from ..config import FlowConfig
from ..errors import FillError, FlowError, FormNotFoundError
from ..models import Credentials, StepRecord
from .fill import FieldFiller
from .frames import describe_frames, has_continue_and_choice, has_heading, has_min_inputs, locate
from .selectors import WmarSelectors


logger = logging.getLogger(__name__)

CREDENTIAL_ATTEMPTS = 3
# Later attempts usually follow a slow/partial render, so they get more patience.
FORM_TIMEOUTS_MS = (4_000, 8_000, 8_000)
YEAR_FORM_TIMEOUT_MS = 15_000
RESULT_URL_TIMEOUT_MS = 70_000
RESULT_FRAME_TIMEOUT_MS = 10_000
PAGE_DEFAULT_TIMEOUT_MS = 90_000

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/119 Safari/537.36"
)

_HIDE_WEBDRIVER_JS = """
(() => {
  try { Object.defineProperty(navigator, 'webdriver', { get: () => false }); } catch (_) {}
})();
"""

# Last-ditch year selection: label mentioning the year -> its control (for=, or nested radio),
# else the first radio on the page. Returns whether anything was checked.
_SELECT_YEAR_JS = """
(year) => {
  const lab = Array.from(document.querySelectorAll('label')).find(l => (l.textContent || '').includes(year));
  let el = null;
  if (lab) {
    const target = lab.getAttribute('for');
    el = target ? document.getElementById(target) : lab.querySelector('input[type=radio]');
  }
  el = el || document.querySelector('input[type=radio]');
  if (!el) return false;
  el.checked = true;
  if (typeof el.click === 'function') el.click();
  el.dispatchEvent(new Event('change', { bubbles: true }));
  return true;
}
"""


@dataclass(frozen=True)
class NavigationResult:
    engine: str
    submitted: bool
    url: str = ""
    heading: str = ""
    text: str = ""
    steps: tuple[str, ...] = ()
    screenshot_path: Optional[str] = None


class WmarClient:
    """
    Drives the WMAR flow: Landing -> Credentials -> (Year selection) -> Result.

    One browser session per `check()`; it is closed on every exit path.
    """

    def __init__(
        self,
        *,
        creds: Credentials,
        tax_year: str,
        flow: Optional[FlowConfig] = None,
        debug_dir: str = "data/debug",
        selectors: Optional[WmarSelectors] = None,
        filler: Optional[FieldFiller] = None,
        step_debug: bool = False,
    ) -> None:
        self.creds = creds
        self.tax_year = str(tax_year)
        self.flow = flow or FlowConfig()
        self.debug_dir = debug_dir
        self.selectors = selectors or WmarSelectors()
        self.filler = filler or FieldFiller()
        self._step_debug_enabled = bool(step_debug)

    def check(self, *, engine: str = "chromium") -> NavigationResult:
        Path(self.debug_dir).mkdir(parents=True, exist_ok=True)
        steps = StepRecord()

        with sync_playwright() as p:
            browser = self._launch(p, engine)
            try:
                ctx = browser.new_context(
                    locale="en-US",
                    timezone_id="America/Los_Angeles",
                    user_agent=USER_AGENT,
                    ignore_https_errors=True,
                    viewport={"width": 1280, "height": 900},
                )
                try:
                    ctx.add_init_script(_HIDE_WEBDRIVER_JS)
                    page = ctx.new_page()
                    page.set_default_timeout(PAGE_DEFAULT_TIMEOUT_MS)
                    try:
                        return self._run_flow(page, steps, engine=engine)
                    except FlowError as e:
                        self._capture_failure(page)
                        if not e.steps:
                            e.steps = steps.as_tuple()
                        raise
                    except Exception as e:
                        self._capture_failure(page)
                        raise FlowError(f"{type(e).__name__}: {e}", steps=steps.as_tuple()) from e
                finally:
                    ctx.close()
            finally:
                browser.close()

    def _launch(self, p: Playwright, engine: str) -> Browser:
        headless = not self.flow.headful
        slow_mo = 200 if self.flow.headful else 0

        if engine == "firefox":
            return p.firefox.launch(headless=headless, slow_mo=slow_mo)
        if engine != "chromium":
            raise ValueError(f"Unsupported browser engine: {engine!r}")

        args = ["--disable-blink-features=AutomationControlled"]
        try:
            return p.chromium.launch(headless=headless, slow_mo=slow_mo, args=args)
        except Exception as e:
            msg = str(e)
            if "Executable doesn't exist" not in msg:
                raise
            logger.warning("Playwright Chromium executable missing; falling back to system browser channel. (%s)", msg)
            try:
                return p.chromium.launch(headless=headless, slow_mo=slow_mo, args=args, channel="chrome")
            except Exception:
                return p.chromium.launch(headless=headless, slow_mo=slow_mo, args=args, channel="msedge")

    def _run_flow(self, page: Page, steps: StepRecord, *, engine: str) -> NavigationResult:
        self._landing(page, steps)

        not_found = 0
        last_fill_error: Optional[FillError] = None
        for attempt in range(1, CREDENTIAL_ATTEMPTS + 1):
            frame = self._open_shared_secrets(page, steps, attempt=attempt)
            if frame is None:
                not_found += 1
                self._save_debug(page, name_prefix=f"wmar-noform-a{attempt}")
                continue

            self._step(page, steps, "fill-form")
            try:
                self.filler.fill(frame, self.creds.as_fields())
            except FillError as e:
                last_fill_error = e
                logger.warning("Attempt %d: %s", attempt, e)
                self._save_debug(page, name_prefix=f"wmar-nofill-a{attempt}")
                continue

            self._pause(page, self.flow.verify_ms)

            if not self.flow.submit:
                self._step(page, steps, "stop-after-fill")
                logger.info("Submit disabled; stopping after filling the form.")
                return NavigationResult(engine=engine, submitted=False, url=page.url, steps=steps.as_tuple())

            self._submit(page, frame, steps)
            self._recover_service_unavailable(page, steps)

            if self.selectors.select_year_path in page.url:
                self._select_year(page, steps)

            return self._read_result(page, steps, engine=engine)

        self._save_debug(page, name_prefix="wmar-noform-final")
        if last_fill_error is None:
            raise FormNotFoundError("Could not find form after retries", steps=steps.as_tuple())
        raise FormNotFoundError(
            f"Form found but never filled after {CREDENTIAL_ATTEMPTS} attempts "
            f"(not found {not_found}x; last fill error: {last_fill_error})",
            steps=steps.as_tuple(),
        )

    def _landing(self, page: Page, steps: StepRecord) -> None:
        self._step(page, steps, "goto:landing")
        page.goto(self.flow.entry_url, wait_until="networkidle")
        self._slow(page)

        # Some entry points already land on the workflow; the link is optional.
        try:
            link = page.get_by_role("link", name=self.selectors.landing_link_name).first
            if link.is_visible():
                link.click()
                page.wait_for_load_state("networkidle")
                self._step(page, steps, "landing-link")
        except Exception:
            logger.debug("Landing link not followed.", exc_info=True)

    def _open_shared_secrets(self, page: Page, steps: StepRecord, *, attempt: int) -> Optional[Frame]:
        self._step(page, steps, f"goto:sharedSecrets (attempt {attempt})")
        wait_until = "domcontentloaded" if attempt == 1 else "networkidle"
        try:
            page.goto(self.flow.shared_secrets_url, wait_until=wait_until)
        except Exception as e:
            logger.warning("Attempt %d: loading the shared-secrets page failed (%s)", attempt, e)
            return None
        self._slow(page)

        timeout_ms = FORM_TIMEOUTS_MS[min(attempt, len(FORM_TIMEOUTS_MS)) - 1]
        frame = locate(
            page,
            has_min_inputs(self.selectors.min_form_inputs, selectors=self.selectors),
            timeout_ms=timeout_ms,
        )
        if frame is None:
            logger.warning(
                "Attempt %d: shared-secrets form not found within %.1fs (frames=%s)",
                attempt,
                timeout_ms / 1000,
                " | ".join(describe_frames(page)),
            )
        return frame

    def _submit(self, page: Page, frame: Frame, steps: StepRecord) -> None:
        self._step(page, steps, "submit")
        clicked = False
        try:
            btn = frame.get_by_role("button", name=self.selectors.submit_button_name).first
            if btn.is_visible():
                btn.click()
                clicked = True
        except Exception:
            logger.debug("Accessible submit button not usable; trying fallback.", exc_info=True)

        if not clicked:
            try:
                frame.locator(self.selectors.submit_fallback).first.click(force=True, timeout=10_000)
            except Exception as e:
                self._save_debug(page, name_prefix="wmar-nosubmit")
                raise FlowError("Could not submit the shared-secrets form", steps=steps.as_tuple()) from e

        self._slow(page)
        self._pause(page, self.flow.pause_before_year_ms)
        try:
            page.wait_for_load_state("domcontentloaded")
        except Exception:
            pass

    def _recover_service_unavailable(self, page: Page, steps: StepRecord) -> None:
        if self.selectors.service_unavailable_path not in page.url:
            return
        self._step(page, steps, "serviceUnavailable:retry once")

        def _has_go_back(frame: Frame) -> bool:
            return frame.get_by_role("button", name=self.selectors.go_back_button_name).first.is_visible()

        frame = locate(page, _has_go_back, timeout_ms=3_000)
        if frame is None:
            logger.warning("Service unavailable page without a usable 'go back' button.")
            return
        try:
            frame.get_by_role("button", name=self.selectors.go_back_button_name).first.click()
            page.wait_for_load_state("domcontentloaded")
        except Exception:
            logger.debug("Go-back click failed.", exc_info=True)

    def _select_year(self, page: Page, steps: StepRecord) -> None:
        self._step(page, steps, "year-select")
        frame = locate(page, has_continue_and_choice(selectors=self.selectors), timeout_ms=YEAR_FORM_TIMEOUT_MS)
        if frame is None:
            logger.warning("Year selection controls not detected in any frame; using the top document.")
            frame = page.main_frame

        method = self._pick_year(frame, self.tax_year)
        if method is None:
            self._save_debug(page, name_prefix="wmar-noyear")
            raise FlowError(f"Could not select tax year {self.tax_year}", steps=steps.as_tuple())
        self._step(page, steps, f"year-selected:{method}")

        self._click_continue(frame)
        self._pause(page, self.flow.pause_after_year_ms)

    def _pick_year(self, frame: Frame, year: str) -> Optional[str]:
        try:
            lab = frame.get_by_text(re.compile(rf"^{re.escape(year)}$")).first
            if lab.is_visible():
                lab.click()
                return "text"
        except Exception:
            pass

        try:
            radio = frame.get_by_role("radio", name=re.compile(re.escape(year))).first
            if radio.is_visible():
                try:
                    radio.click()
                except Exception:
                    pass
                try:
                    radio.check(force=True)
                except Exception:
                    pass
                return "radio"
        except Exception:
            pass

        try:
            if frame.evaluate(_SELECT_YEAR_JS, year):
                return "script"
        except Exception:
            logger.debug("Year selection script failed.", exc_info=True)
        return None

    def _click_continue(self, frame: Frame) -> None:
        try:
            cont = frame.get_by_role("button", name=self.selectors.continue_button_name).first
            if cont.is_visible():
                cont.click()
                return
        except Exception:
            pass
        try:
            (
                frame.locator(self.selectors.continue_fallback)
                .filter(has_text=self.selectors.continue_text)
                .first.click(force=True, timeout=10_000)
            )
        except Exception:
            # The result-page wait that follows is the hard check.
            logger.warning("Could not click Continue after selecting the tax year.")

    def _read_result(self, page: Page, steps: StepRecord, *, engine: str) -> NavigationResult:
        self._step(page, steps, "wait:returnStatus")
        result_path = self.selectors.result_path
        try:
            page.wait_for_url(lambda url: result_path in url, timeout=RESULT_URL_TIMEOUT_MS)
        except Exception as e:
            raise FlowError(
                f"Result page ({result_path}) not reached within {RESULT_URL_TIMEOUT_MS // 1000}s",
                steps=steps.as_tuple(),
            ) from e

        frame = locate(page, has_heading(selectors=self.selectors), timeout_ms=RESULT_FRAME_TIMEOUT_MS)
        if frame is None:
            frame = page.main_frame

        heading = self._inner_text(frame, self.selectors.heading)
        text = self._inner_text(frame, self.selectors.main_region) or self._inner_text(frame, "body")

        shot: Optional[str] = None
        if self.flow.result_screenshot:
            shot = self._screenshot(page, f"wmar-result-{int(time.time() * 1000)}.png")

        self._step(page, steps, "result")
        return NavigationResult(
            engine=engine,
            submitted=True,
            url=page.url,
            heading=heading,
            text=text,
            steps=steps.as_tuple(),
            screenshot_path=shot,
        )

    def _inner_text(self, frame: Frame, selector: str) -> str:
        try:
            return frame.locator(selector).first.inner_text(timeout=5_000) or ""
        except Exception:
            return ""

    def _slow(self, page: Page) -> None:
        self._pause(page, self.flow.slow_flow_ms)

    def _pause(self, page: Page, ms: int) -> None:
        if ms and ms > 0:
            page.wait_for_timeout(ms)

    def _screenshot(self, page: Page, name: str) -> Optional[str]:
        path = Path(self.debug_dir) / name
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            page.screenshot(path=str(path), full_page=True)
            return str(path)
        except Exception:
            logger.debug("Failed to save screenshot %s", path, exc_info=True)
            return None

    def _capture_failure(self, page: Page) -> None:
        self._save_debug(page, name_prefix=f"wmar-failure-{int(time.time() * 1000)}")

    def _save_debug(self, page: Page, *, name_prefix: str) -> None:
        try:
            out_dir = Path(self.debug_dir)
            out_dir.mkdir(parents=True, exist_ok=True)
            (out_dir / f"{name_prefix}.html").write_text(page.content(), encoding="utf-8")
            page.screenshot(path=str(out_dir / f"{name_prefix}.png"), full_page=True)
            try:
                (out_dir / f"{name_prefix}.txt").write_text(page.inner_text("body"), encoding="utf-8")
            except Exception:
                pass
            logger.info("Saved debug artifacts %s (frames=%s)", name_prefix, " | ".join(describe_frames(page)))
        except Exception:
            logger.debug("Failed to save debug artifacts.", exc_info=True)

    def _step(self, page: Page, steps: StepRecord, name: str) -> None:
        n = steps.add(name)
        try:
            logger.info("Step %02d %s (url=%s)", n, name, getattr(page, "url", ""))
        except Exception:
            pass

        if not self._step_debug_enabled:
            return

        safe = re.sub(r"[^a-zA-Z0-9_-]+", "_", name).strip("_")[:60] or "step"
        self._screenshot(page, f"step_{n:02d}_{safe}.png")
