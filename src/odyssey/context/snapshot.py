# src/odyssey/context/snapshot.py
"""
ContextBusBuilder: one consistent, read-only view of everything the reasoner
is allowed to see at `now`.

    ledger     -> today's HydrationState + window -> pacing
    stabilizer -> activity in the trailing lookback
    calendar   -> events overlapping [now - back, now + ahead]
    history    -> nudges already sent today

Each tick builds its own snapshot; a snapshot is never reused across ticks.
If any of the reads fails the whole snapshot fails (SnapshotError) and the
scheduler simply skips that cycle.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Tuple

from odyssey.context.activity import ActivityEvent
from odyssey.context.calendar import CalendarEvent, CalendarWindowQuery
from odyssey.context.stabilizer import ActivityStabilizer, StableActivity
from odyssey.core.errors import SnapshotError
from odyssey.history.nudges import NudgeHistory, NudgeRecord
from odyssey.hydration.ledger import HydrationLedger, HydrationState, HydrationWindow
from odyssey.hydration.pacing import PacingResult, compute_pacing

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContextSnapshot:
    now: datetime
    hydration: HydrationState
    window: HydrationWindow
    pacing: PacingResult
    recent_activity: Tuple[ActivityEvent, ...] = ()
    calendar_window: Tuple[CalendarEvent, ...] = ()
    recent_nudges: Tuple[NudgeRecord, ...] = ()
    stable_activity: Optional[StableActivity] = None


class ContextBusBuilder:
    def __init__(
        self,
        *,
        ledger: HydrationLedger,
        calendar: CalendarWindowQuery,
        history: NudgeHistory,
        stabilizer: ActivityStabilizer,
        activity_lookback_hours: float = 3.0,
        calendar_lookback_hours: float = 3.0,
        calendar_lookahead_hours: float = 3.0,
    ) -> None:
        self.ledger = ledger
        self.calendar = calendar
        self.history = history
        self.stabilizer = stabilizer
        self.activity_lookback_hours = activity_lookback_hours
        self.calendar_lookback = timedelta(hours=calendar_lookback_hours)
        self.calendar_lookahead = timedelta(hours=calendar_lookahead_hours)

    def build(self, now: datetime) -> ContextSnapshot:
        try:
            hydration = self.ledger.load_today()
            window = self.ledger.get_window()
            pacing = compute_pacing(hydration, window, now)
            activity = self.stabilizer.recent(now, hours=self.activity_lookback_hours)
            events = self.calendar.events_overlapping(
                now - self.calendar_lookback, now + self.calendar_lookahead
            )
            nudges = self.history.today(now)
        except SnapshotError:
            raise
        except Exception as exc:
            raise SnapshotError(f"could not build context snapshot: {exc}") from exc

        snapshot = ContextSnapshot(
            now=now,
            hydration=hydration,
            window=window,
            pacing=pacing,
            recent_activity=tuple(activity),
            calendar_window=tuple(events),
            recent_nudges=tuple(nudges),
            stable_activity=self.stabilizer.current(),
        )
        logger.debug(
            "snapshot @ %s: total=%d expected=%d gap=%d activity=%d calendar=%d nudges=%d",
            now.isoformat(),
            pacing.actual_intake_ml,
            pacing.expected_intake_ml,
            pacing.gap_ml,
            len(snapshot.recent_activity),
            len(snapshot.calendar_window),
            len(snapshot.recent_nudges),
        )
        return snapshot
