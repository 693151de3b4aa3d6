# tests/context/test_calendar_query.py
from __future__ import annotations

from datetime import datetime, timedelta

import pydantic
import pytest

from odyssey.context.calendar import (
    CalendarEvent,
    EventCategory,
    StaticCalendar,
    StoredCalendar,
)
from odyssey.core.errors import SnapshotError
from odyssey.store.kv import CALENDAR_EVENTS_KEY

NOW = datetime(2025, 10, 20, 15, 0)


def _ev(title, start, **kw):
    return CalendarEvent(title=title, start=start, **kw)


def test_effective_end_rules():
    start = datetime(2025, 10, 20, 9, 0)
    assert _ev("a", start).effective_end == start + timedelta(minutes=30)
    assert _ev("b", start, all_day=True).effective_end == start + timedelta(days=1)
    explicit = start + timedelta(hours=2)
    assert _ev("c", start, end=explicit).effective_end == explicit


def test_end_before_start_is_rejected():
    with pytest.raises(pydantic.ValidationError):
        _ev("bad", NOW, end=NOW - timedelta(minutes=1))


def test_overlap_window_ordering_and_completed():
    cal = StaticCalendar(
        [
            _ev("later", NOW + timedelta(hours=2)),
            _ev("ongoing", NOW - timedelta(hours=4), end=NOW + timedelta(minutes=10)),
            _ev("too early", NOW - timedelta(hours=5)),
            _ev("too late", NOW + timedelta(hours=4)),
            _ev("done", NOW, completed=True),
            _ev("edge start", NOW - timedelta(hours=3, minutes=30)),  # ends exactly at now-3h
        ]
    )
    hits = cal.events_overlapping(NOW - timedelta(hours=3), NOW + timedelta(hours=3))
    assert [e.title for e in hits] == ["ongoing", "edge start", "later"]


def test_stored_calendar_reads_json(store):
    events = [
        _ev("Run", NOW + timedelta(hours=1), category=EventCategory.TRAINING),
        _ev("Lunch", NOW - timedelta(hours=2), category=EventCategory.SOCIAL),
    ]
    payload = pydantic.TypeAdapter(list[CalendarEvent]).dump_json(events).decode("utf-8")
    store.set(CALENDAR_EVENTS_KEY, payload)

    hits = StoredCalendar(store).events_overlapping(NOW - timedelta(hours=3), NOW + timedelta(hours=3))
    assert [e.title for e in hits] == ["Lunch", "Run"]
    assert hits[1].category is EventCategory.TRAINING


def test_stored_calendar_empty(store):
    assert StoredCalendar(store).events_overlapping(NOW, NOW) == []


def test_stored_calendar_failures_are_snapshot_errors(store, broken_store):
    store.set(CALENDAR_EVENTS_KEY, "{not json")
    with pytest.raises(SnapshotError):
        StoredCalendar(store).events_overlapping(NOW, NOW)
    with pytest.raises(SnapshotError):
        StoredCalendar(broken_store).events_overlapping(NOW, NOW)
