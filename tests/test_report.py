from __future__ import annotations

from email.message import EmailMessage
from pathlib import Path

import pytest

from wmar_watch import mailer as mailer_mod
from wmar_watch.config import MailConfig
from wmar_watch.errors import FlowError
from wmar_watch.mailer import Mailer
from wmar_watch.models import ObservedStatus, StatusCategory
from wmar_watch.report import build_failure_report, build_status_report
from wmar_watch.state import NO_CHANGE_NOTE


LINE = "Your amended return has not yet been processed."


def test_status_report_layout() -> None:
    status = ObservedStatus(category=StatusCategory.RECEIVED, key_line=LINE, raw_text="Heading\n" + LINE)
    report = build_status_report(subject="S", status=status, note=NO_CHANGE_NOTE, heading="Heading")
    assert report.subject == "S"
    assert report.body.splitlines()[:4] == ["Status: received", NO_CHANGE_NOTE, "", LINE]
    assert report.body.endswith("---\nRaw:\nHeading\n" + LINE)


def test_status_report_uses_heading_when_key_line_empty() -> None:
    status = ObservedStatus(category=StatusCategory.UNKNOWN, key_line="", raw_text="")
    report = build_status_report(subject="S", status=status, heading="Amended Return Status")
    assert report.body.splitlines()[:3] == ["Status: unknown", "", "Amended Return Status"]


def test_failure_report_contains_steps_and_error() -> None:
    err = FlowError("Could not find form after retries", steps=("goto:landing", "goto:sharedSecrets (attempt 1)"))
    report = build_failure_report(subject="S", error=err, steps=err.steps, attachments=["x.zip"], engines=["chromium", "firefox"])
    assert report.body.startswith("[FAIL]")
    assert "Could not find form after retries" in report.body
    assert "goto:landing > goto:sharedSecrets (attempt 1)" in report.body
    assert "chromium, firefox" in report.body
    assert report.attachments == ("x.zip",)


def _cfg() -> MailConfig:
    return MailConfig(sender="me@gmail.com", recipient="you@example.com", app_password="pw")


def test_mailer_disabled_without_credentials() -> None:
    assert Mailer(MailConfig()).send("S", "body") is False


def test_mailer_builds_message_with_attachments(tmp_path: Path) -> None:
    shot = tmp_path / "wmar-result.png"
    shot.write_bytes(b"\x89PNG")
    msg = Mailer(_cfg()).build_message("S", "body", [str(shot), str(tmp_path / "missing.zip")])
    assert isinstance(msg, EmailMessage)
    assert msg["Subject"] == "S"
    names = [part.get_filename() for part in msg.iter_attachments()]
    assert names == ["wmar-result.png"]


def test_mailer_sends_over_smtp_ssl(monkeypatch: pytest.MonkeyPatch) -> None:
    sent: list = []

    class FakeSMTP:
        def __init__(self, host, port, timeout=None, context=None) -> None:
            sent.append(("connect", host, port))

        def __enter__(self) -> "FakeSMTP":
            return self

        def __exit__(self, *exc) -> None:
            return None

        def login(self, user, password) -> None:
            sent.append(("login", user))

        def send_message(self, msg) -> None:
            sent.append(("send", msg["To"]))

    monkeypatch.setattr(mailer_mod.smtplib, "SMTP_SSL", FakeSMTP)
    assert Mailer(_cfg()).send("S", "body") is True
    assert sent == [("connect", "smtp.gmail.com", 465), ("login", "me@gmail.com"), ("send", "you@example.com")]
