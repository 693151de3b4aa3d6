# src/odyssey/core/clock.py
from __future__ import annotations

from datetime import datetime
from typing import Protocol


class Clock(Protocol):
    """Anything that can tell the current local wall-clock time."""

    def now(self) -> datetime:
        ...


class SystemClock:
    """Naive local time, which is what the hydration day and window are keyed on."""

    def now(self) -> datetime:
        return datetime.now()


def date_key(moment: datetime) -> str:
    """Local calendar date used to scope a hydration day, e.g. ``2025-10-20``."""
    return moment.strftime("%Y-%m-%d")
