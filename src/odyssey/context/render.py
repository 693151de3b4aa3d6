# src/odyssey/context/render.py
"""
Render a ContextSnapshot into the plain-text "context bus" the reasoner reads.

Sections, in order:

    CURRENT TIME
    HYDRATION STATE TODAY
    EVENTS LAST 3 HOURS
    CALENDAR ±3 HOURS
    NUDGES TODAY

Empty sections render a single "• none" line so the model never has to guess
whether a section was dropped.
"""

from __future__ import annotations

from datetime import datetime
from typing import List

from odyssey.context.calendar import CalendarEvent
from odyssey.context.snapshot import ContextSnapshot

NONE_LINE = "• none"


# ---------------------------------------------------------------------------
# formatting helpers
# ---------------------------------------------------------------------------

def _clock(moment: datetime) -> str:
    return moment.strftime("%H:%M")


def format_hour(hour: int) -> str:
    return f"{hour:02d}:00"


def format_last_drink(snapshot: ContextSnapshot) -> str:
    """
    "no drinks yet today", "N minutes ago" under an hour, else "Hh Mm ago".
    """
    last = snapshot.hydration.last_drink_at
    if last is None:
        return "no drinks yet today"
    minutes_ago = max(0, int((snapshot.now - last).total_seconds() // 60))
    if minutes_ago < 60:
        return f"{minutes_ago} minutes ago"
    return f"{minutes_ago // 60}h {minutes_ago % 60}m ago"


def _format_calendar_event(event: CalendarEvent) -> str:
    if event.all_day:
        return f"• {event.title} (all day {event.start.strftime('%b %d')})"
    start = event.start.strftime("%b %d %H:%M")
    return f"• {event.title} @ {start}-{_clock(event.effective_end)}"


def _bullets(lines: List[str]) -> str:
    return "\n".join(lines) if lines else NONE_LINE


# ---------------------------------------------------------------------------
# public
# ---------------------------------------------------------------------------

def render_context_bus(
    snapshot: ContextSnapshot,
    *,
    max_activity_lines: int = 10,
    max_calendar_lines: int = 8,
) -> str:
    now = snapshot.now
    state = snapshot.hydration
    pacing = snapshot.pacing
    window = snapshot.window

    entry_lines = [
        f"• {_clock(e.timestamp)} - {e.amount_ml} ml" for e in state.sorted_entries()
    ]

    # most recent N, still shown oldest first
    activity = list(snapshot.recent_activity)[-max_activity_lines:] if max_activity_lines > 0 else []
    activity_lines = [f"• {_clock(e.occurred_at)} - {e.label.value}" for e in activity]

    calendar_lines = [
        _format_calendar_event(e) for e in snapshot.calendar_window[:max_calendar_lines]
    ]
    nudge_lines = [f"• {_clock(n.timestamp)} - {n.message}" for n in snapshot.recent_nudges]

    gap = pacing.gap_ml
    sign = "+" if gap >= 0 else ""
    direction = "ahead" if gap >= 0 else "behind"

    stable = snapshot.stable_activity
    stable_line = (
        f"- Stable activity: {stable.label.value} since {_clock(stable.since)}"
        if stable is not None
        else "- Stable activity: none yet"
    )

    return "\n".join(
        [
            f"CURRENT TIME: {now.strftime('%a %b %d %Y %H:%M')}",
            "(Use this to distinguish past vs future events.)",
            "",
            "HYDRATION STATE TODAY:",
            f"- Goal: {state.daily_goal_ml} ml",
            f"- Total intake so far: {state.total_ml} ml (remaining {state.remaining_ml} ml)",
            f"- Last drink: {format_last_drink(snapshot)}",
            f"- Time progress: {pacing.time_progress_pct}% of hydration window "
            f"({format_hour(window.start_hour)} - {format_hour(window.end_hour)})",
            f"- Expected intake by now: ~{pacing.expected_intake_ml} ml",
            f"- Progress gap: {sign}{gap} ml ({direction} schedule)",
            "- Entries:",
            _bullets(entry_lines),
            "",
            "EVENTS LAST 3 HOURS (label + timestamp):",
            stable_line,
            _bullets(activity_lines),
            "",
            "CALENDAR ±3 HOURS (past & upcoming, ongoing or nearby):",
            _bullets(calendar_lines),
            "",
            "NUDGES TODAY (time + content):",
            _bullets(nudge_lines),
        ]
    )
