# src/odyssey/hydration/pacing.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import math

from odyssey.hydration.ledger import HydrationState, HydrationWindow


@dataclass(frozen=True)
class PacingResult:
    """
    Expected-vs-actual intake at a moment in the hydration window.

    gap_ml = actual - expected; negative means behind schedule.
    """

    time_progress: float
    expected_intake_ml: int
    actual_intake_ml: int
    gap_ml: int

    @property
    def time_progress_pct(self) -> int:
        return int(self.time_progress * 100)

    @property
    def behind(self) -> bool:
        return self.gap_ml < 0


def time_progress(window: HydrationWindow, now: datetime) -> float:
    """
    Fraction of the window elapsed at `now`, at minute resolution.

    Clamped to [0, 1]: nothing is expected before the window opens and the
    full goal is expected once it closes.
    """
    minute_of_day = now.hour * 60 + now.minute
    elapsed = max(0, minute_of_day - window.start_hour * 60)
    total = window.total_minutes
    if total <= 0:
        return 1.0 if elapsed > 0 else 0.0
    return min(1.0, elapsed / total)


def compute_pacing(state: HydrationState, window: HydrationWindow, now: datetime) -> PacingResult:
    progress = time_progress(window, now)
    expected = math.floor(state.daily_goal_ml * progress)
    actual = state.total_ml
    return PacingResult(
        time_progress=progress,
        expected_intake_ml=expected,
        actual_intake_ml=actual,
        gap_ml=actual - expected,
    )
