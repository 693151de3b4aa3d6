# src/odyssey/components/rules.py
"""
Deterministic nudge rules, usable without any language model.

    faucet   -> nudge when behind pace at all and the last nudge was at least
                20 minutes ago (a natural break at the sink)
    keyboard -> nudge when typing has been sustained for 30 minutes, the last
                nudge was at least 45 minutes ago and the deficit is over 200 ml
    anything else -> no nudge

The busy guard is the scheduler's busy veto, which applies to every reasoner.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional, Tuple

from odyssey.components.prompts import NO_NUDGE, SEND_NUDGE
from odyssey.components.reasoner import ReasonerOutcome, clean_message
from odyssey.context.activity import ActivityLabel
from odyssey.context.snapshot import ContextSnapshot

logger = logging.getLogger(__name__)

BREAK_PROMPT_SPACING = timedelta(minutes=20)
FOCUS_PROMPT_SPACING = timedelta(minutes=45)
SUSTAINED_FOCUS = timedelta(minutes=30)
FOCUS_MIN_DEFICIT_ML = 200


def rule_suggestion_ml(deficit_ml: int) -> int:
    return 300 if deficit_ml >= 400 else 200


class RuleBasedReasoner:
    def __init__(
        self,
        *,
        max_chars: int = 140,
        break_spacing: timedelta = BREAK_PROMPT_SPACING,
        focus_spacing: timedelta = FOCUS_PROMPT_SPACING,
        sustained_focus: timedelta = SUSTAINED_FOCUS,
        focus_min_deficit_ml: int = FOCUS_MIN_DEFICIT_ML,
    ) -> None:
        self.max_chars = max_chars
        self.break_spacing = break_spacing
        self.focus_spacing = focus_spacing
        self.sustained_focus = sustained_focus
        self.focus_min_deficit_ml = focus_min_deficit_ml

    def close(self) -> None:
        pass

    async def run(self, snapshot: ContextSnapshot, trigger: Optional[str] = None) -> ReasonerOutcome:
        return self.evaluate(snapshot, trigger)

    def evaluate(self, snapshot: ContextSnapshot, trigger: Optional[str] = None) -> ReasonerOutcome:
        deficit = max(-snapshot.pacing.gap_ml, 0)
        since_prompt = self._since_last_prompt(snapshot)
        label, since = self._current_activity(snapshot, trigger)

        if label == ActivityLabel.FAUCET:
            if deficit <= 0:
                return self._skip("faucet in use but on pace")
            if since_prompt is not None and since_prompt < self.break_spacing:
                return self._skip(f"faucet in use but last nudge {_minutes(since_prompt)} min ago")
            return self._send(snapshot, deficit, f"faucet in use, {deficit} ml behind")

        if label == ActivityLabel.KEYBOARD:
            if since is None or snapshot.now - since < self.sustained_focus:
                return self._skip("typing, but not for long enough")
            if since_prompt is not None and since_prompt < self.focus_spacing:
                return self._skip(f"typing, last nudge {_minutes(since_prompt)} min ago")
            if deficit <= self.focus_min_deficit_ml:
                return self._skip(f"typing, only {deficit} ml behind")
            return self._send(snapshot, deficit, f"typing for {_minutes(snapshot.now - since)} min, {deficit} ml behind")

        return self._skip(f"no rule for activity {label.value if label else 'none'}")

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------
    @staticmethod
    def _since_last_prompt(snapshot: ContextSnapshot) -> Optional[timedelta]:
        last = snapshot.hydration.last_prompt_at
        if last is None:
            return None
        return snapshot.now - last

    @staticmethod
    def _current_activity(
        snapshot: ContextSnapshot, trigger: Optional[str]
    ) -> Tuple[Optional[ActivityLabel], Optional[datetime]]:
        stable = snapshot.stable_activity
        if trigger is None:
            if stable is None:
                return None, None
            return stable.label, stable.since
        try:
            label = ActivityLabel(trigger)
        except ValueError:
            return ActivityLabel.UNKNOWN, None
        # a trigger only carries a start time when it matches the stable activity
        since = stable.since if stable is not None and stable.label == label else None
        return label, since

    def _send(self, snapshot: ContextSnapshot, deficit: int, thinking: str) -> ReasonerOutcome:
        state = snapshot.hydration
        text = (
            f"💧 Hydration check: you've had {state.total_ml} / {state.daily_goal_ml} ml. "
            f"Try sipping ~{rule_suggestion_ml(deficit)} ml now."
        )
        message = clean_message(text, self.max_chars)
        if message is None:
            return ReasonerOutcome(decision=SEND_NUDGE, thinking=thinking, failure="generated message rejected")
        logger.info("rules: SEND_NUDGE (%s)", thinking)
        return ReasonerOutcome(decision=SEND_NUDGE, thinking=thinking, message=message)

    @staticmethod
    def _skip(thinking: str) -> ReasonerOutcome:
        logger.info("rules: NO_NUDGE (%s)", thinking)
        return ReasonerOutcome(decision=NO_NUDGE, thinking=thinking)


def _minutes(delta: timedelta) -> int:
    return int(delta.total_seconds() // 60)
