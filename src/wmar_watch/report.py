from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence

from .models import ObservedStatus


@dataclass(frozen=True)
class Report:
    subject: str
    body: str
    attachments: tuple[str, ...] = field(default_factory=tuple)


def build_status_report(
    *,
    subject: str,
    status: ObservedStatus,
    note: str = "",
    heading: str = "",
    attachments: Sequence[str] = (),
) -> Report:
    """
    Body layout:

        Status: received
        No change since the last check.

        Your amended return has not yet been processed.

        ---
        Raw:
        <full page text>
    """
    lines = [f"Status: {status.category.value}"]
    if note:
        lines.append(note)
    if status.key_line:
        lines += ["", status.key_line]
    elif heading:
        lines += ["", heading]
    lines.append("\n---\nRaw:\n" + status.raw_text)
    return Report(subject=subject, body="\n".join(lines), attachments=tuple(attachments))


def build_failure_report(
    *,
    subject: str,
    error: BaseException,
    steps: Sequence[str] = (),
    attachments: Sequence[str] = (),
    engines: Sequence[str] = (),
) -> Report:
    lines = ["[FAIL]", f"Error: {error}"]
    if engines:
        lines.append(f"Engines tried: {', '.join(engines)}")
    if steps:
        lines += ["", "Steps:", " > ".join(steps)]
    if attachments:
        lines += ["", "See attached artifacts."]
    return Report(subject=subject, body="\n".join(lines), attachments=tuple(attachments))


def steps_of(error: Optional[BaseException]) -> tuple[str, ...]:
    return tuple(getattr(error, "steps", ()) or ())
