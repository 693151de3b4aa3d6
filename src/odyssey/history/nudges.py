# src/odyssey/history/nudges.py
"""
Append-only log of nudges that were actually delivered.

Persisted as one JSON list under `odyssey_nudge_history`. Every write prunes
records older than the retention horizon (7 days by default), so the list
never grows without bound. If the stored list cannot be read, new records are
held in memory and merged into it on the first successful read instead of
being written over it.

- log_nudge() to append (and prune)
- recent() for the last N days, newest first
- today() for the context bus, oldest first
- sent_within() for spacing checks
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import List, Optional

import pydantic

from odyssey.core.clock import Clock, SystemClock, date_key
from odyssey.core.errors import StoreError
from odyssey.store.kv import NUDGE_HISTORY_KEY, KeyValueStore

logger = logging.getLogger(__name__)


class NudgeRecord(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(frozen=True)

    id: uuid.UUID = pydantic.Field(default_factory=uuid.uuid4)
    message: str
    timestamp: datetime


_records_adapter = pydantic.TypeAdapter(List[NudgeRecord])


class NudgeHistory:
    def __init__(
        self,
        store: KeyValueStore,
        *,
        clock: Optional[Clock] = None,
        retention_days: int = 7,
    ) -> None:
        self.store = store
        self.clock = clock or SystemClock()
        self.retention = timedelta(days=retention_days)
        self._records: Optional[List[NudgeRecord]] = None
        self._pending: List[NudgeRecord] = []

    def log_nudge(self, message: str, at: Optional[datetime] = None) -> NudgeRecord:
        at = at or self.clock.now()
        record = NudgeRecord(message=message, timestamp=at)
        if not self._sync():
            # never write a list we could not read; merge once the store is back
            self._pending.append(record)
            logger.warning("nudge history unreadable; keeping %d record(s) in memory", len(self._pending))
            return record
        self._save(self._pruned(self._records) + [record])
        return record

    def recent(self, days: int = 7) -> List[NudgeRecord]:
        cutoff = self.clock.now() - timedelta(days=days)
        hits = [r for r in self._load() if r.timestamp >= cutoff]
        return sorted(hits, key=lambda r: r.timestamp, reverse=True)

    def today(self, now: Optional[datetime] = None) -> List[NudgeRecord]:
        key = date_key(now or self.clock.now())
        hits = [r for r in self._load() if date_key(r.timestamp) == key]
        return sorted(hits, key=lambda r: r.timestamp)

    def sent_within(self, minutes: float) -> bool:
        now = self.clock.now()
        cutoff = now - timedelta(minutes=minutes)
        return any(cutoff <= r.timestamp <= now for r in self._load())

    def clear_all(self) -> None:
        self._pending.clear()
        self._save([])

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------
    def _load(self) -> List[NudgeRecord]:
        self._sync()
        return list(self._records or []) + list(self._pending)

    def _sync(self) -> bool:
        """Read the stored list once. Returns False while the store is unreadable."""
        if self._records is not None:
            return True
        try:
            raw = self.store.get(NUDGE_HISTORY_KEY)
        except StoreError:
            logger.warning("could not read nudge history; using in-memory records", exc_info=True)
            return False
        records: List[NudgeRecord] = []
        if raw:
            try:
                records = _records_adapter.validate_json(raw)
            except pydantic.ValidationError:
                logger.warning("stored nudge history is unreadable; starting empty")
        self._records = records
        if self._pending:
            logger.info("merging %d nudge record(s) kept while the store was unreadable", len(self._pending))
            pending, self._pending = self._pending, []
            self._save(self._pruned(records) + pending)
        return True

    def _pruned(self, records: List[NudgeRecord]) -> List[NudgeRecord]:
        cutoff = self.clock.now() - self.retention
        kept = [r for r in records if r.timestamp >= cutoff]
        if len(kept) < len(records):
            logger.debug("nudge history: pruned %d record(s) older than %s", len(records) - len(kept), cutoff)
        return kept

    def _save(self, records: List[NudgeRecord]) -> None:
        self._records = list(records)
        try:
            self.store.set(NUDGE_HISTORY_KEY, _records_adapter.dump_json(records).decode("utf-8"))
        except StoreError:
            logger.warning("could not persist nudge history; keeping it in memory", exc_info=True)
