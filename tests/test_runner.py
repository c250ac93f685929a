from __future__ import annotations

import zipfile
from pathlib import Path
from typing import Optional

import pytest

from wmar_watch.config import AppConfig, FlowConfig, IrsConfig, LoggingConfig, MailConfig
from wmar_watch.errors import FlowError, FormNotFoundError
from wmar_watch.models import StatusCategory
from wmar_watch.portal.client import NavigationResult
from wmar_watch.runner import CheckRunner
from wmar_watch.state import NO_CHANGE_NOTE, ChangeTracker, HistoryLog, MemoryStore


LINE = "Your amended return has not yet been processed."


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, tuple[str, ...]]] = []

    def send(self, subject: str, body: str, attachments=()) -> bool:
        self.sent.append((subject, body, tuple(attachments)))
        return True


class ScriptedNavigator:
    """Returns/raises per engine, recording the order engines were tried."""

    def __init__(self, outcomes: dict, calls: list[str]) -> None:
        self.outcomes = outcomes
        self.calls = calls

    def check(self, *, engine: str = "chromium") -> NavigationResult:
        self.calls.append(engine)
        outcome = self.outcomes[engine]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def _cfg(tmp_path: Path, *, ssn: str = "123-45-6789", engines: Optional[list[str]] = None) -> AppConfig:
    return AppConfig(
        irs=IrsConfig(ssn=ssn, dob="01/02/1980", zip="94110"),
        flow=FlowConfig(engines=engines or ["chromium", "firefox"]),
        mail=MailConfig(subject="WMAR daily"),
        logging=LoggingConfig(file_path=str(tmp_path / "wmar.log")),
        debug_dir=str(tmp_path / "debug"),
    )


def _result(engine: str, text: str = LINE, *, submitted: bool = True) -> NavigationResult:
    return NavigationResult(
        engine=engine,
        submitted=submitted,
        url="https://sa.www4.irs.gov/wmar/returnStatus",
        heading="Amended Return Status",
        text=text,
        steps=("goto:landing", "result"),
    )


def _runner(tmp_path: Path, outcomes: dict, calls: list[str], *, state: Optional[MemoryStore] = None, **cfg_kw):
    notifier = RecordingNotifier()
    history = HistoryLog(MemoryStore(), limit=365)
    tracker = ChangeTracker(state_store=state, history=history)
    runner = CheckRunner(
        _cfg(tmp_path, **cfg_kw),
        navigator_factory=lambda creds, cfg: ScriptedNavigator(outcomes, calls),
        notifier=notifier,
        tracker=tracker,
    )
    return runner, notifier, history


def test_success_reports_status(tmp_path: Path) -> None:
    calls: list[str] = []
    runner, notifier, history = _runner(tmp_path, {"chromium": _result("chromium")}, calls, state=MemoryStore())
    outcome = runner.run()

    assert outcome.exit_code == 0
    assert outcome.status is not None and outcome.status.category is StatusCategory.RECEIVED
    assert outcome.note == ""
    assert calls == ["chromium"]
    subject, body, _ = notifier.sent[0]
    assert subject == "WMAR daily"
    assert body.startswith("Status: received\n\n" + LINE)
    assert len(history.entries()) == 1


def test_unchanged_status_adds_note_and_rewrites_timestamp(tmp_path: Path) -> None:
    state = MemoryStore({"status": "received", "keyLine": LINE, "observedAtEpochMillis": 1})
    runner, notifier, _ = _runner(tmp_path, {"chromium": _result("chromium")}, [], state=state)
    outcome = runner.run()

    assert outcome.note == NO_CHANGE_NOTE
    assert NO_CHANGE_NOTE in notifier.sent[0][1]
    assert state.value["status"] == "received"
    assert state.value["keyLine"] == LINE
    assert state.value["observedAtEpochMillis"] > 1


def test_falls_back_to_second_engine(tmp_path: Path) -> None:
    calls: list[str] = []
    outcomes = {
        "chromium": FormNotFoundError("Could not find form after retries", steps=("goto:landing",)),
        "firefox": _result("firefox", "Your amended return was completed."),
    }
    runner, notifier, _ = _runner(tmp_path, outcomes, calls, state=MemoryStore())
    outcome = runner.run()

    assert outcome.exit_code == 0
    assert outcome.engine == "firefox"
    assert calls == ["chromium", "firefox"]
    assert notifier.sent[0][1].startswith("Status: completed")


def test_all_engines_fail_sends_failure_and_keeps_state(tmp_path: Path) -> None:
    state = MemoryStore({"status": "received", "keyLine": LINE, "observedAtEpochMillis": 1})
    (tmp_path / "debug").mkdir()
    (tmp_path / "debug" / "wmar-noform-final.html").write_text("<html/>", encoding="utf-8")
    outcomes = {
        "chromium": FlowError("Result page not reached", steps=("goto:landing", "submit")),
        "firefox": FlowError("Could not select tax year 2023", steps=("goto:landing", "year-select")),
    }
    runner, notifier, history = _runner(tmp_path, outcomes, [], state=state)
    outcome = runner.run()

    assert outcome.exit_code == 1
    assert isinstance(outcome.error, FlowError)
    assert state.saves == 0
    assert history.entries() == []

    subject, body, attachments = notifier.sent[0]
    assert subject == "WMAR daily"
    assert body.startswith("[FAIL]")
    assert "Could not select tax year 2023" in body
    assert "goto:landing > year-select" in body
    assert len(attachments) == 1
    with zipfile.ZipFile(attachments[0]) as z:
        assert "debug/wmar-noform-final.html" in z.namelist()


def test_invalid_ssn_fails_before_navigation(tmp_path: Path) -> None:
    calls: list[str] = []
    runner, notifier, _ = _runner(tmp_path, {"chromium": _result("chromium")}, calls, ssn="1234")
    with pytest.raises(ValueError):
        runner.run()
    assert calls == []
    assert notifier.sent == []


def test_fill_only_run_does_not_touch_state_or_notify(tmp_path: Path) -> None:
    state = MemoryStore()
    outcomes = {"chromium": _result("chromium", "", submitted=False)}
    runner, notifier, history = _runner(tmp_path, outcomes, [], state=state)
    outcome = runner.run()

    assert outcome.exit_code == 0
    assert outcome.submitted is False
    assert state.saves == 0
    assert history.entries() == []
    assert notifier.sent == []


def test_notification_failure_is_reported_in_exit_code(tmp_path: Path) -> None:
    class BrokenNotifier(RecordingNotifier):
        def send(self, subject, body, attachments=()) -> bool:
            raise OSError("SMTP down")

    runner = CheckRunner(
        _cfg(tmp_path, engines=["chromium"]),
        navigator_factory=lambda creds, cfg: ScriptedNavigator({"chromium": _result("chromium")}, []),
        notifier=BrokenNotifier(),
        tracker=ChangeTracker(state_store=MemoryStore()),
    )
    outcome = runner.run()
    assert outcome.exit_code == 1
    assert outcome.status is not None


def test_state_write_failure_still_notifies(tmp_path: Path) -> None:
    class ReadOnlyStore(MemoryStore):
        def save(self, obj) -> None:
            raise OSError(30, "Read-only file system")

    state = ReadOnlyStore({"status": "received", "keyLine": LINE, "observedAtEpochMillis": 1})
    runner, notifier, history = _runner(tmp_path, {"chromium": _result("chromium")}, [], state=state)
    outcome = runner.run()

    assert outcome.exit_code == 1
    assert isinstance(outcome.error, OSError)
    assert outcome.note == NO_CHANGE_NOTE
    assert len(notifier.sent) == 1
    assert notifier.sent[0][1].startswith("Status: received")
    assert state.value["observedAtEpochMillis"] == 1


def test_failure_bundle_carries_run_summary(tmp_path: Path) -> None:
    outcomes = {"chromium": FlowError("Could not submit the shared-secrets form", steps=("goto:landing", "submit"))}
    runner, notifier, _ = _runner(tmp_path, outcomes, [], engines=["chromium"])
    runner.run()

    attachments = notifier.sent[0][2]
    with zipfile.ZipFile(attachments[0]) as z:
        summary = z.read("summary.txt").decode("utf-8")
    assert summary.startswith("[FAIL]\nError: Could not submit the shared-secrets form")
    assert "Engines tried: chromium" in summary
    assert "goto:landing > submit" in summary
