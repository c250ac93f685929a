from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Protocol, Sequence

from .classify import observe
from .config import AppConfig
from .mailer import Mailer
from .models import Credentials, ObservedStatus
from .portal.client import NavigationResult, WmarClient
from .report import build_failure_report, build_status_report, steps_of
from .state import ChangeTracker, build_tracker, compare
from .util.debug_bundle import create_debug_bundle


logger = logging.getLogger(__name__)


class Navigator(Protocol):
    def check(self, *, engine: str = "chromium") -> NavigationResult: ...


NavigatorFactory = Callable[[Credentials, AppConfig], Navigator]


class Notifier(Protocol):
    def send(self, subject: str, body: str, attachments: Sequence[str] = ()) -> bool: ...


def _default_navigator_factory(step_debug: bool) -> NavigatorFactory:
    def _factory(creds: Credentials, cfg: AppConfig) -> Navigator:
        return WmarClient(
            creds=creds,
            tax_year=cfg.irs.tax_year,
            flow=cfg.flow,
            debug_dir=cfg.debug_dir,
            step_debug=step_debug,
        )

    return _factory


@dataclass(frozen=True)
class RunOutcome:
    exit_code: int
    engine: str = ""
    status: Optional[ObservedStatus] = None
    note: str = ""
    submitted: bool = True
    error: Optional[BaseException] = None


class CheckRunner:
    """
    One scheduled check: navigate (retrying the whole flow once per fallback engine), classify,
    track changes, notify.
    """

    def __init__(
        self,
        cfg: AppConfig,
        *,
        navigator_factory: Optional[NavigatorFactory] = None,
        notifier: Optional[Notifier] = None,
        tracker: Optional[ChangeTracker] = None,
        step_debug: bool = False,
    ) -> None:
        self.cfg = cfg
        self.navigator_factory = navigator_factory or _default_navigator_factory(step_debug)
        self.notifier: Notifier = notifier or Mailer(cfg.mail)
        self.tracker = tracker or build_tracker(
            state_path=cfg.state.state_path,
            history_path=cfg.state.history_path,
            history_limit=cfg.state.history_limit,
        )

    def run(self) -> RunOutcome:
        # Raises ValueError on malformed shared secrets, before any browser is launched.
        creds = self.cfg.irs.credentials()
        previous = self.tracker.load_previous()

        t0 = time.time()
        engines = list(self.cfg.flow.engines)
        tried: list[str] = []
        last_error: Optional[BaseException] = None
        result: Optional[NavigationResult] = None

        for engine in engines:
            tried.append(engine)
            navigator = self.navigator_factory(creds, self.cfg)
            try:
                result = navigator.check(engine=engine)
                break
            except Exception as e:
                last_error = e
                logger.error("Check failed (engine=%s): %s", engine, e)
                steps = steps_of(e)
                if steps:
                    logger.info("Steps: %s", " > ".join(steps))
                if len(tried) < len(engines):
                    logger.warning("Retrying the whole flow with %s", engines[len(tried)])

        if result is None:
            return self._fail(last_error or RuntimeError("no browser engine configured"), tried)

        logger.info("Navigation complete (engine=%s seconds=%.2f)", result.engine, time.time() - t0)
        logger.info("SUCCESS :: %s", " > ".join(result.steps))

        if not result.submitted:
            return RunOutcome(exit_code=0, engine=result.engine, submitted=False)

        status = observe(result.text)
        persist_error: Optional[BaseException] = None
        try:
            note = self.tracker.record(status, previous)
        except OSError as e:
            # Still notify; the next run compares against the older state.
            persist_error = e
            logger.error("Failed to persist state: %s", e, exc_info=True)
            note = compare(status, previous) if self.tracker.enabled else ""
        logger.info("Status: %s%s", status.category.value, f" ({note})" if note else "")

        report = build_status_report(
            subject=self.cfg.mail.subject,
            status=status,
            note=note,
            heading=result.heading,
            attachments=[result.screenshot_path] if result.screenshot_path else (),
        )
        try:
            self.notifier.send(report.subject, report.body, report.attachments)
        except Exception as e:
            logger.error("Failed to send status notification.", exc_info=True)
            return RunOutcome(exit_code=1, engine=result.engine, status=status, note=note, error=e)

        if persist_error is not None:
            return RunOutcome(exit_code=1, engine=result.engine, status=status, note=note, error=persist_error)
        return RunOutcome(exit_code=0, engine=result.engine, status=status, note=note)

    def _fail(self, error: BaseException, tried: Sequence[str]) -> RunOutcome:
        summary = build_failure_report(
            subject=self.cfg.mail.subject, error=error, steps=steps_of(error), engines=tried
        ).body
        attachments: list[str] = []
        try:
            bundle = create_debug_bundle(
                debug_dir=self.cfg.debug_dir,
                log_file=self.cfg.logging.file_path or "data/wmar.log",
                out_dir=str(Path(self.cfg.debug_dir).parent),
                engine=tried[-1] if tried else "",
                summary=summary,
            )
            logger.error("Wrote debug bundle: %s", bundle)
            attachments.append(str(bundle))
        except Exception:
            logger.debug("Failed to create debug bundle.", exc_info=True)

        report = build_failure_report(
            subject=self.cfg.mail.subject,
            error=error,
            steps=steps_of(error),
            attachments=attachments,
            engines=tried,
        )
        try:
            self.notifier.send(report.subject, report.body, report.attachments)
        except Exception:
            logger.error("Failed to send failure notification.", exc_info=True)
        return RunOutcome(exit_code=1, engine=tried[-1] if tried else "", error=error)
