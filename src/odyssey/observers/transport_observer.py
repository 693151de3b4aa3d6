# src/odyssey/observers/transport_observer.py
"""
TransportObserver

Sits between the sensor link and the decision core:

    raw link string
      -> TransportMessage variant
      -> (activity only) classify -> stabilizer
      -> (optional) stable transition in `trigger_labels` -> scheduler activity path

Everything parsed is kept in a bounded `detected` list for display/debugging.
The stabilizer itself never triggers nudges; handing a transition to the
scheduler is this observer's (opt-in) job, and the scheduler can still say no.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Deque, Iterable, Optional, Set

from odyssey.context.activity import ActivityLabel, classify
from odyssey.context.stabilizer import ActivityStabilizer, StableActivity
from odyssey.context.transport import ActivityMessage, TransportMessage, parse_transport_message
from odyssey.managers.scheduler import NudgeScheduler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetectedMessage:
    message: TransportMessage
    received_at: datetime


class TransportObserver:
    def __init__(
        self,
        *,
        stabilizer: ActivityStabilizer,
        scheduler: Optional[NudgeScheduler] = None,
        trigger_labels: Iterable[str] = ("faucet",),
        max_detected: int = 500,
        on_transition: Optional[Callable[[StableActivity], None]] = None,
    ) -> None:
        self.stabilizer = stabilizer
        self.scheduler = scheduler
        self.trigger_labels: Set[ActivityLabel] = {classify(t) for t in trigger_labels} - {
            ActivityLabel.UNKNOWN
        }
        self.on_transition = on_transition
        self.detected: Deque[DetectedMessage] = deque(maxlen=max_detected)
        self._pending: Set[asyncio.Task] = set()

    def handle_message(self, raw: str, at: datetime) -> Optional[StableActivity]:
        """
        Process one link message. Returns the new StableActivity if this
        message completed a transition.
        """
        message = parse_transport_message(raw)
        self.detected.append(DetectedMessage(message=message, received_at=at))

        if not isinstance(message, ActivityMessage):
            logger.debug("transport: %s (%r)", message.name, raw)
            return None

        label = classify(message.label_text)
        transition = self.stabilizer.observe(label, at)
        if transition is None:
            return None

        if self.on_transition is not None:
            self.on_transition(transition)
        if transition.label in self.trigger_labels:
            self._hand_to_scheduler(transition)
        return transition

    async def drain(self) -> None:
        """Wait for any activity-path requests still running."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------
    def _hand_to_scheduler(self, transition: StableActivity) -> None:
        if self.scheduler is None or not self.scheduler.activity_nudges_enabled:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("transport: no running loop, dropping activity trigger %s", transition.label.value)
            return
        task = loop.create_task(
            self.scheduler.request_activity_nudge(transition.label.value, at=transition.since)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
