"""
Needs Repository

Persistence contract for raw inputs, structured signals, current need state
and the audit log, plus two backends:

- InMemoryNeedsRepository: process-local, used by tests and the server's
  "memory" backend
- JsonFileNeedsRepository: a single JSON document at ~/.needs/needs_store.json,
  replaced atomically on every write

NeedState and AuditEntry are written together through commit_evaluation();
a failure leaves neither written.
"""

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..common.config import STORE_PATH
from ..common.errors import RepositoryError
from ..common.schemas.need_records import (
    AuditEntry,
    NeedState,
    RawInput,
    StructuredSignal,
    as_utc,
)

logger = logging.getLogger("needs.engine.repository")

NeedKey = Tuple[str, str]

STORE_SCHEMA_VERSION = "1.0"


class NeedsRepository(ABC):
    """Storage used by the engine. Implementations must be thread-safe."""

    @abstractmethod
    def find_raw_input_by_hash(self, dedupe_hash: str) -> Optional[RawInput]:
        ...

    @abstractmethod
    def get_raw_input(self, raw_input_id: str) -> Optional[RawInput]:
        ...

    @abstractmethod
    def insert_raw_input(self, raw_input: RawInput) -> None:
        ...

    @abstractmethod
    def insert_structured_signal(self, signal: StructuredSignal) -> None:
        ...

    @abstractmethod
    def list_signals_for_need(
        self,
        sector_id: str,
        capability_id: str,
        from_inclusive: datetime,
        to_inclusive: datetime,
    ) -> List[StructuredSignal]:
        ...

    @abstractmethod
    def get_need_state(self, sector_id: str, capability_id: str) -> Optional[NeedState]:
        ...

    @abstractmethod
    def upsert_need_state(self, state: NeedState) -> None:
        ...

    @abstractmethod
    def append_audit(self, entry: AuditEntry) -> None:
        ...

    @abstractmethod
    def list_audit(
        self,
        sector_id: str,
        capability_id: str,
        limit: Optional[int] = None,
    ) -> List[AuditEntry]:
        """Audit entries for one need, oldest first (the last `limit` if given)"""
        ...

    @abstractmethod
    def commit_evaluation(self, state: NeedState, entry: AuditEntry) -> None:
        """Upsert state and append audit as one unit; raises RepositoryError."""
        ...

    @abstractmethod
    def list_need_states(self, sector_id: Optional[str] = None) -> List[NeedState]:
        ...


class InMemoryNeedsRepository(NeedsRepository):
    """Dict-backed repository guarded by a single re-entrant lock"""

    def __init__(self):
        self._lock = threading.RLock()
        self._raw_inputs: Dict[str, RawInput] = {}
        self._raw_by_hash: Dict[str, str] = {}
        self._signals: Dict[NeedKey, List[StructuredSignal]] = {}
        self._unresolved_signals: List[StructuredSignal] = []
        self._states: Dict[NeedKey, NeedState] = {}
        self._audit: Dict[NeedKey, List[AuditEntry]] = {}

    # ------------------------------------------------------------------
    # Raw inputs
    # ------------------------------------------------------------------

    def find_raw_input_by_hash(self, dedupe_hash: str) -> Optional[RawInput]:
        with self._lock:
            raw_id = self._raw_by_hash.get(dedupe_hash)
            return self._raw_inputs.get(raw_id) if raw_id else None

    def get_raw_input(self, raw_input_id: str) -> Optional[RawInput]:
        with self._lock:
            return self._raw_inputs.get(raw_input_id)

    def insert_raw_input(self, raw_input: RawInput) -> None:
        with self._lock:
            if raw_input.dedupe_hash in self._raw_by_hash:
                raise RepositoryError(
                    f"Duplicate raw input hash {raw_input.dedupe_hash[:12]}",
                    raw_input_id=raw_input.id,
                )
            self._raw_inputs[raw_input.id] = raw_input
            self._raw_by_hash[raw_input.dedupe_hash] = raw_input.id
            self._persist(rollback=lambda: self._forget_raw_input(raw_input))

    def _forget_raw_input(self, raw_input: RawInput) -> None:
        self._raw_inputs.pop(raw_input.id, None)
        self._raw_by_hash.pop(raw_input.dedupe_hash, None)

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def insert_structured_signal(self, signal: StructuredSignal) -> None:
        with self._lock:
            if signal.unresolved:
                bucket = self._unresolved_signals
            else:
                bucket = self._signals.setdefault(signal.need_key, [])
            bucket.append(signal)
            self._persist(rollback=lambda: bucket.remove(signal))

    def list_signals_for_need(
        self,
        sector_id: str,
        capability_id: str,
        from_inclusive: datetime,
        to_inclusive: datetime,
    ) -> List[StructuredSignal]:
        start, end = as_utc(from_inclusive), as_utc(to_inclusive)
        with self._lock:
            signals = list(self._signals.get((sector_id, capability_id), []))
        in_window = [s for s in signals if start <= as_utc(s.timestamp) <= end]
        return sorted(in_window, key=lambda s: as_utc(s.timestamp))

    # ------------------------------------------------------------------
    # State and audit
    # ------------------------------------------------------------------

    def get_need_state(self, sector_id: str, capability_id: str) -> Optional[NeedState]:
        with self._lock:
            state = self._states.get((sector_id, capability_id))
            return state.model_copy(deep=True) if state else None

    def list_need_states(self, sector_id: Optional[str] = None) -> List[NeedState]:
        with self._lock:
            states = [s.model_copy(deep=True) for s in self._states.values()]
        if sector_id is not None:
            states = [s for s in states if s.sector_id == sector_id]
        return sorted(states, key=lambda s: (s.sector_id, s.capability_id))

    def upsert_need_state(self, state: NeedState) -> None:
        key = (state.sector_id, state.capability_id)
        with self._lock:
            previous = self._states.get(key)
            self._states[key] = state.model_copy(deep=True)
            self._persist(rollback=lambda: self._restore_state(key, previous))

    def append_audit(self, entry: AuditEntry) -> None:
        key = (entry.sector_id, entry.capability_id)
        with self._lock:
            entries = self._audit.setdefault(key, [])
            entries.append(entry)
            self._persist(rollback=entries.pop)

    def list_audit(
        self,
        sector_id: str,
        capability_id: str,
        limit: Optional[int] = None,
    ) -> List[AuditEntry]:
        with self._lock:
            entries = list(self._audit.get((sector_id, capability_id), []))
        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        return entries

    def commit_evaluation(self, state: NeedState, entry: AuditEntry) -> None:
        if (state.sector_id, state.capability_id) != (entry.sector_id, entry.capability_id):
            raise RepositoryError(
                "Audit entry does not belong to the committed need",
                sector_id=state.sector_id,
                capability_id=state.capability_id,
            )
        key = (state.sector_id, state.capability_id)
        with self._lock:
            previous = self._states.get(key)
            entries = self._audit.setdefault(key, [])
            self._states[key] = state.model_copy(deep=True)
            entries.append(entry)

            def rollback():
                entries.pop()
                self._restore_state(key, previous)

            self._persist(rollback=rollback, sector_id=state.sector_id, capability_id=state.capability_id)

    def _restore_state(self, key: NeedKey, previous: Optional[NeedState]) -> None:
        if previous is None:
            self._states.pop(key, None)
        else:
            self._states[key] = previous

    def _persist(self, rollback, **context) -> None:
        """Hook for durable backends; called with the lock held after a change."""
        return None


class JsonFileNeedsRepository(InMemoryNeedsRepository):
    """
    Repository persisted as one JSON document.

    Each write serializes the whole store to a temporary file and replaces
    the target with os.replace(). If that fails the in-memory change is rolled
    back and RepositoryError is raised, so memory and disk never diverge.
    """

    def __init__(self, store_path: Optional[Path] = None):
        super().__init__()
        self._store_path = Path(store_path) if store_path else STORE_PATH
        self._load_store()

    @property
    def store_path(self) -> Path:
        return self._store_path

    def _load_store(self) -> None:
        """Load store from disk"""
        if not self._store_path.exists():
            return

        try:
            with open(self._store_path) as f:
                data = json.load(f)

            for item in data.get("raw_inputs", []):
                raw = RawInput.model_validate(item)
                self._raw_inputs[raw.id] = raw
                self._raw_by_hash[raw.dedupe_hash] = raw.id
            for item in data.get("signals", []):
                signal = StructuredSignal.model_validate(item)
                if signal.unresolved:
                    self._unresolved_signals.append(signal)
                else:
                    self._signals.setdefault(signal.need_key, []).append(signal)
            for item in data.get("need_states", []):
                state = NeedState.model_validate(item)
                self._states[(state.sector_id, state.capability_id)] = state
            for item in data.get("audit", []):
                entry = AuditEntry.model_validate(item)
                self._audit.setdefault((entry.sector_id, entry.capability_id), []).append(entry)
        except (json.JSONDecodeError, IOError, ValueError) as e:
            raise RepositoryError(f"Failed to load store {self._store_path}: {e}") from e

        logger.info(
            "Loaded store %s (%d raw inputs, %d needs)",
            self._store_path,
            len(self._raw_inputs),
            len(self._states),
        )

    def _snapshot(self) -> dict:
        signals = list(self._unresolved_signals)
        for bucket in self._signals.values():
            signals.extend(bucket)
        audit = []
        for entries in self._audit.values():
            audit.extend(entries)
        return {
            "schema_version": STORE_SCHEMA_VERSION,
            "raw_inputs": [r.model_dump(mode="json") for r in self._raw_inputs.values()],
            "signals": [s.model_dump(mode="json") for s in signals],
            "need_states": [s.model_dump(mode="json") for s in self._states.values()],
            "audit": [a.model_dump(mode="json") for a in audit],
        }

    def _persist(self, rollback, **context) -> None:
        tmp_path = self._store_path.with_name(self._store_path.name + ".tmp")
        try:
            data = self._snapshot()
            self._store_path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w") as f:
                json.dump(data, f, indent=2, default=str)
            os.replace(tmp_path, self._store_path)
        except (OSError, TypeError, ValueError) as e:
            rollback()
            logger.warning("Store write failed, change rolled back: %s", e)
            raise RepositoryError(f"Failed to write store {self._store_path}: {e}", **context) from e
