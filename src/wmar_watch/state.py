from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol, Union

from pydantic import ValidationError

from .models import HistoryEntry, ObservedStatus, PersistedState


logger = logging.getLogger(__name__)

NO_CHANGE_NOTE = "No change since the last check."
DEFAULT_HISTORY_LIMIT = 365


class KeyValueStore(Protocol):
    def load(self) -> Optional[object]: ...

    def save(self, obj: object) -> None: ...


class MemoryStore:
    """
    In-process store (tests, dry runs).
    """

    def __init__(self, initial: Optional[object] = None) -> None:
        self.value = initial
        self.saves = 0

    def load(self) -> Optional[object]:
        return self.value

    def save(self, obj: object) -> None:
        self.value = json.loads(json.dumps(obj))
        self.saves += 1


class JsonFileStore:
    """
    A single JSON document on disk, overwritten wholesale on each save.

    Missing file -> `None`. Unreadable/corrupt file -> moved aside to `<name>.corrupt-<stamp>` and
    treated as missing, so one bad write never blocks future runs.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def load(self) -> Optional[object]:
        if not self.path.exists():
            return None
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except Exception as e:
            logger.warning("State file %s is unreadable; treating it as absent. (%s)", self.path, e)
            self._quarantine()
            return None

    def save(self, obj: object) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(json.dumps(obj, indent=2), encoding="utf-8")
        tmp.replace(self.path)

    def _quarantine(self) -> None:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        try:
            self.path.replace(self.path.with_name(self.path.name + f".corrupt-{stamp}"))
        except Exception:
            logger.debug("Failed to quarantine path=%s", self.path, exc_info=True)


class HistoryLog:
    """
    Bounded audit trail of past observations; the oldest rows are evicted first.
    Never consulted for control decisions.
    """

    def __init__(self, store: KeyValueStore, *, limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        if limit < 1:
            raise ValueError("history limit must be >= 1")
        self.store = store
        self.limit = limit

    def entries(self) -> list[HistoryEntry]:
        raw = self.store.load()
        if not isinstance(raw, list):
            if raw is not None:
                logger.warning("History content is not a list; starting empty.")
            return []
        out: list[HistoryEntry] = []
        for row in raw:
            try:
                out.append(HistoryEntry.model_validate(row))
            except ValidationError:
                logger.debug("Skipping malformed history row: %r", row)
        return out

    def append(self, entry: HistoryEntry) -> list[HistoryEntry]:
        rows = self.entries()
        rows.append(entry)
        rows = rows[-self.limit:]
        self.store.save([r.to_json_obj() for r in rows])
        return rows


def compare(current: ObservedStatus, previous: Optional[PersistedState]) -> str:
    """
    The no-change note iff the previous observation has exactly the same category and key line.
    """
    if previous is None:
        return ""
    if previous.category == current.category and previous.key_line == current.key_line:
        return NO_CHANGE_NOTE
    return ""


class ChangeTracker:
    """
    Owns the persisted last-observation record and the history log.

    `state_store=None` disables change tracking (no note, no state write); history still records
    when a history log is configured.
    """

    def __init__(
        self,
        *,
        state_store: Optional[KeyValueStore] = None,
        history: Optional[HistoryLog] = None,
    ) -> None:
        self.state_store = state_store
        self.history = history

    @property
    def enabled(self) -> bool:
        return self.state_store is not None

    def load_previous(self) -> Optional[PersistedState]:
        if self.state_store is None:
            return None
        raw = self.state_store.load()
        if raw is None:
            return None
        try:
            return PersistedState.model_validate(raw)
        except ValidationError as e:
            logger.warning("Ignoring invalid persisted state (%s)", e.error_count())
            return None

    def record(self, current: ObservedStatus, previous: Optional[PersistedState]) -> str:
        """
        Compare against the previous observation, then overwrite the persisted state and append to
        history. Only call this for a successful run.
        """
        note = compare(current, previous) if self.enabled else ""
        snapshot = PersistedState.from_observed(current)

        if self.state_store is not None:
            self.state_store.save(snapshot.to_json_obj())

        if self.history is not None:
            try:
                self.history.append(snapshot)
            except Exception:
                # Audit only; losing one row must not fail an otherwise good run.
                logger.warning("Failed to append history entry.", exc_info=True)

        return note


def build_tracker(*, state_path: str, history_path: str, history_limit: int) -> ChangeTracker:
    state_store = JsonFileStore(state_path) if state_path else None
    history = HistoryLog(JsonFileStore(history_path), limit=history_limit) if history_path else None
    return ChangeTracker(state_store=state_store, history=history)
