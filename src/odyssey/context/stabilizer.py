# src/odyssey/context/stabilizer.py
"""
Debounces the raw activity stream into a stable activity signal.

Raw acoustic classification is bursty. We only accept a new stable label once
we've seen `threshold` (default 7) identical non-UNKNOWN labels in a row since
the last reset. UNKNOWN resets the streak to "no streak"; a different label
starts a new streak at 1 (no partial credit).

The stabilizer also keeps a bounded buffer of everything it observed, which the
context bus reads for "activity in the last 3 hours". It never triggers nudges.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Deque, List, Optional

from odyssey.context.activity import ActivityEvent, ActivityLabel

logger = logging.getLogger(__name__)

DEFAULT_STREAK_THRESHOLD = 7


@dataclass(frozen=True)
class StableActivity:
    label: ActivityLabel
    since: datetime


class ActivityStabilizer:
    def __init__(
        self,
        *,
        threshold: int = DEFAULT_STREAK_THRESHOLD,
        max_buffer_events: int = 2000,
    ) -> None:
        if threshold < 1:
            raise ValueError("threshold must be >= 1")
        self.threshold = threshold
        self._streak_label: ActivityLabel = ActivityLabel.UNKNOWN
        self._streak_count: int = 0
        self._last_stable: Optional[StableActivity] = None
        self._buffer: Deque[ActivityEvent] = deque(maxlen=max_buffer_events)

    @property
    def streak(self) -> tuple[ActivityLabel, int]:
        return self._streak_label, self._streak_count

    def current(self) -> Optional[StableActivity]:
        return self._last_stable

    def observe(self, label: ActivityLabel, timestamp: datetime) -> Optional[StableActivity]:
        """
        Fold one raw label into the streak state.

        Returns the new StableActivity on a transition, else None.
        """
        self._buffer.append(ActivityEvent(label=label, occurred_at=timestamp))

        if label == ActivityLabel.UNKNOWN:
            self._streak_label = ActivityLabel.UNKNOWN
            self._streak_count = 0
            return None

        if label == self._streak_label:
            self._streak_count += 1
        else:
            self._streak_label = label
            self._streak_count = 1

        last_label = self._last_stable.label if self._last_stable else ActivityLabel.UNKNOWN
        if self._streak_count >= self.threshold and label != last_label:
            self._last_stable = StableActivity(label=label, since=timestamp)
            logger.info(
                "stable activity -> %s at %s (streak=%d)",
                label.value,
                timestamp.isoformat(),
                self._streak_count,
            )
            return self._last_stable

        return None

    def recent(self, now: datetime, hours: float = 3.0) -> List[ActivityEvent]:
        """Observed events in [now - hours, now], oldest first."""
        cutoff = now - timedelta(hours=hours)
        return [e for e in self._buffer if cutoff <= e.occurred_at <= now]
