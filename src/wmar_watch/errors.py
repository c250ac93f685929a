from __future__ import annotations

from typing import Optional, Sequence


class FillError(RuntimeError):
    """
    Raised when no fill strategy could populate the shared-secrets form.
    """

    def __init__(self, message: str, *, attempted: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.attempted = tuple(attempted)


class FlowError(RuntimeError):
    """
    A mandatory checkpoint of the WMAR flow failed (form never located, year not selectable,
    result page never reached). Carries the steps taken so far for diagnostics.
    """

    def __init__(self, message: str, *, steps: Optional[Sequence[str]] = None) -> None:
        super().__init__(message)
        self.steps: tuple[str, ...] = tuple(steps or ())


class FormNotFoundError(FlowError):
    """
    Raised when every attempt failed to locate or to fill the shared-secrets form.
    """
