from __future__ import annotations

import re
import time
from enum import Enum
from typing import Iterator, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


_NON_DIGIT_RE = re.compile(r"\D")


def format_ssn(raw: Optional[str]) -> str:
    """
    Canonicalize an SSN to `DDD-DD-DDDD`. Any punctuation/whitespace is ignored:
    - "123456789"
    - "123-45-6789"
    - " 123 45 6789 "
    """
    digits = _NON_DIGIT_RE.sub("", raw or "")
    if len(digits) != 9:
        raise ValueError("SSN must have 9 digits")
    return f"{digits[:3]}-{digits[3:5]}-{digits[5:]}"


def now_ms() -> int:
    return int(time.time() * 1000)


class Credentials(BaseModel):
    """
    Shared secrets for the WMAR identity form.
    """

    model_config = ConfigDict(frozen=True)

    ssn: str = Field(repr=False)
    date_of_birth: str = Field(default="", repr=False)
    zip: str = ""

    @field_validator("ssn", mode="before")
    @classmethod
    def _canonical_ssn(cls, value: object) -> str:
        return format_ssn(str(value) if value is not None else "")

    @field_validator("date_of_birth", "zip", mode="before")
    @classmethod
    def _trim(cls, value: object) -> str:
        return str(value or "").strip()

    def as_fields(self) -> dict[str, str]:
        # Logical field names understood by the field filler.
        return {"ssn": self.ssn, "dob": self.date_of_birth, "zip": self.zip}


class StatusCategory(str, Enum):
    RECEIVED = "received"
    ADJUSTED = "adjusted"
    COMPLETED = "completed"
    NOT_FOUND = "not-found"
    UNKNOWN = "unknown"


class Classification(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: StatusCategory
    key_line: str


class ObservedStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: StatusCategory
    key_line: str
    raw_text: str = ""
    observed_at_ms: int = Field(default_factory=now_ms)


class PersistedState(BaseModel):
    """
    The part of an observation written to the state file.

    On disk: `{"status": ..., "keyLine": ..., "observedAtEpochMillis": ...}`.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    category: StatusCategory = Field(alias="status")
    key_line: str = Field(default="", alias="keyLine")
    observed_at_ms: int = Field(default=0, alias="observedAtEpochMillis")

    @model_validator(mode="before")
    @classmethod
    def _migrate_legacy_keys(cls, data: object) -> object:
        # Older state files stored the timestamp under `ts`.
        if isinstance(data, dict) and "ts" in data and "observedAtEpochMillis" not in data:
            out = {k: v for k, v in data.items() if k != "ts"}
            out["observedAtEpochMillis"] = data["ts"]
            return out
        return data

    @classmethod
    def from_observed(cls, observed: ObservedStatus) -> "PersistedState":
        return cls(
            category=observed.category,
            key_line=observed.key_line,
            observed_at_ms=observed.observed_at_ms,
        )

    def to_json_obj(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# History rows share the persisted shape.
HistoryEntry = PersistedState


class StepRecord:
    """
    Append-only, ordered list of the steps a run went through.
    """

    def __init__(self) -> None:
        self._steps: list[str] = []

    def add(self, name: str) -> int:
        self._steps.append(name)
        return len(self._steps)

    def as_tuple(self) -> tuple[str, ...]:
        return tuple(self._steps)

    def __iter__(self) -> Iterator[str]:
        return iter(tuple(self._steps))

    def __len__(self) -> int:
        return len(self._steps)

    def __str__(self) -> str:
        return " > ".join(self._steps)
