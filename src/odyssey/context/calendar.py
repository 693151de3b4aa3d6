# src/odyssey/context/calendar.py
"""
Read-only view over the user's calendar.

The decision core never creates or edits events; it only asks "what overlaps
[start, end]?". Events are owned by whatever app writes the
`odyssey_calendar_events` key (a JSON list of CalendarEvent documents).
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable, List, Optional, Protocol

import pydantic

from odyssey.core.errors import SnapshotError, StoreError
from odyssey.store.kv import CALENDAR_EVENTS_KEY, KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_EVENT_DURATION = timedelta(minutes=30)


class EventCategory(str, Enum):
    WELLNESS = "Wellness"
    MAINTENANCE = "Maintenance"
    TRAINING = "Training"
    RACE = "Race"
    SOCIAL = "Social"
    WEATHER = "Weather"
    OTHER = "Other"


class CalendarEvent(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(frozen=True)

    id: uuid.UUID = pydantic.Field(default_factory=uuid.uuid4)
    title: str
    notes: str = ""
    start: datetime
    end: Optional[datetime] = None
    all_day: bool = False
    category: EventCategory = EventCategory.WELLNESS
    completed: bool = False

    @pydantic.model_validator(mode="after")
    def _end_not_before_start(self) -> "CalendarEvent":
        if self.end is not None and self.end < self.start:
            raise ValueError("event end must not be before its start")
        return self

    @property
    def effective_end(self) -> datetime:
        """Explicit end if set; otherwise one day for all-day events, else 30 minutes."""
        if self.end is not None:
            return self.end
        if self.all_day:
            return self.start + timedelta(days=1)
        return self.start + DEFAULT_EVENT_DURATION

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.effective_end >= start and self.start <= end


class CalendarWindowQuery(Protocol):
    def events_overlapping(self, start: datetime, end: datetime) -> List[CalendarEvent]:
        ...


def _select(events: Iterable[CalendarEvent], start: datetime, end: datetime) -> List[CalendarEvent]:
    hits = [e for e in events if not e.completed and e.overlaps(start, end)]
    return sorted(hits, key=lambda e: e.start)


class StaticCalendar:
    """In-memory calendar; handy for tests and replays."""

    def __init__(self, events: Optional[Iterable[CalendarEvent]] = None) -> None:
        self.events: List[CalendarEvent] = list(events or [])

    def events_overlapping(self, start: datetime, end: datetime) -> List[CalendarEvent]:
        return _select(self.events, start, end)


class StoredCalendar:
    """
    Calendar backed by the shared key-value store.

    A store failure or an unreadable document means the snapshot can't be
    trusted, so both surface as SnapshotError and the caller skips the cycle.
    """

    _adapter = pydantic.TypeAdapter(List[CalendarEvent])

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    def load_events(self) -> List[CalendarEvent]:
        try:
            raw = self.store.get(CALENDAR_EVENTS_KEY)
        except StoreError as exc:
            raise SnapshotError(f"calendar read failed: {exc}") from exc
        if not raw:
            return []
        try:
            return self._adapter.validate_json(raw)
        except pydantic.ValidationError as exc:
            raise SnapshotError(f"calendar document is invalid: {exc}") from exc

    def events_overlapping(self, start: datetime, end: datetime) -> List[CalendarEvent]:
        events = _select(self.load_events(), start, end)
        logger.debug("calendar: %d event(s) overlap %s .. %s", len(events), start, end)
        return events
