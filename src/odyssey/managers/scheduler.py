# src/odyssey/managers/scheduler.py
"""
NudgeScheduler: the periodic control loop.

Every `period_seconds`:

    tick
      -> build a fresh ContextSnapshot          (BUILDING)
      -> two-stage reasoning                   (REASONING, serialized)
      -> hard vetoes (busy, stale snapshot)
      -> record prompt + log nudge + emit      (COMMITTING, serialized)

Ticks run as independent tasks so a slow reasoning call never delays the
timer. Snapshot building may overlap, but reasoning and commit go through one
lock shared by every tick and by the activity-triggered path, so there is at
most one exchange with the reasoning service and one commit at a time.

A tick whose snapshot was built before another tick committed is vetoed: its
view of "nudges today" and "last prompt" is out of date.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Awaitable, Callable, Deque, Optional, Set

from odyssey.components.reasoner import Reasoner
from odyssey.context.snapshot import ContextBusBuilder, ContextSnapshot
from odyssey.core.clock import Clock, SystemClock
from odyssey.core.errors import SnapshotError
from odyssey.history.nudges import NudgeHistory
from odyssey.hydration.ledger import HydrationLedger
from odyssey.managers.sinks import MessageSink

logger = logging.getLogger(__name__)


class SchedulerPhase(str, Enum):
    IDLE = "idle"
    BUILDING = "building"
    REASONING = "reasoning"
    COMMITTING = "committing"


@dataclass(frozen=True)
class TickResult:
    at: datetime
    committed: bool = False
    message: Optional[str] = None
    reason: str = ""


class NudgeScheduler:
    def __init__(
        self,
        *,
        builder: ContextBusBuilder,
        reasoner: Reasoner,
        ledger: HydrationLedger,
        history: NudgeHistory,
        sink: MessageSink,
        clock: Optional[Clock] = None,
        period_seconds: float = 60.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        activity_nudges_enabled: bool = False,
        activity_min_spacing: timedelta = timedelta(minutes=10),
    ) -> None:
        if period_seconds <= 0:
            raise ValueError("period_seconds must be positive")
        self.builder = builder
        self.reasoner = reasoner
        self.ledger = ledger
        self.history = history
        self.sink = sink
        self.clock = clock or SystemClock()
        self.period_seconds = period_seconds
        self.sleep = sleep
        self.activity_nudges_enabled = activity_nudges_enabled
        self.activity_min_spacing = activity_min_spacing

        self.phase = SchedulerPhase.IDLE
        self.results: Deque[TickResult] = deque(maxlen=100)
        self._busy = False
        self._commit_seq = 0
        self._lock: Optional[asyncio.Lock] = None
        self._tasks: Set[asyncio.Task] = set()
        self._runner: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------
    def set_busy(self, busy: bool) -> None:
        """While busy, nothing is committed (reasoning may still run)."""
        self._busy = busy
        logger.info("scheduler: busy=%s", busy)

    @property
    def busy(self) -> bool:
        return self._busy

    async def tick(self) -> TickResult:
        now = self.clock.now()
        seq = self._commit_seq
        snapshot = self._build(now)
        if snapshot is None:
            return self._record(TickResult(at=now, reason="snapshot_failed"))
        return await self._reason_and_commit(snapshot, seq, trigger=None)

    async def request_activity_nudge(self, label: str, at: Optional[datetime] = None) -> TickResult:
        """
        Advisory path for a stable activity transition (e.g. faucet).

        Suppressed without any reasoning call while the last prompt is within
        `activity_min_spacing`.
        """
        now = at or self.clock.now()
        if not self.activity_nudges_enabled:
            return self._record(TickResult(at=now, reason="activity_disabled"))

        last = self.ledger.load_today().last_prompt_at
        if last is not None and now - last < self.activity_min_spacing:
            logger.info(
                "scheduler: activity nudge for %s suppressed, last prompt %s",
                label,
                last.strftime("%H:%M"),
            )
            return self._record(TickResult(at=now, reason="cooldown"))

        seq = self._commit_seq
        snapshot = self._build(now)
        if snapshot is None:
            return self._record(TickResult(at=now, reason="snapshot_failed"))
        return await self._reason_and_commit(snapshot, seq, trigger=label)

    async def run(self, max_ticks: Optional[int] = None) -> None:
        """
        Fire a tick every period until cancelled (or `max_ticks` fired), then
        wait for the ticks still in flight.
        """
        fired = 0
        logger.info("scheduler: starting, period=%.1fs", self.period_seconds)
        try:
            while max_ticks is None or fired < max_ticks:
                self._spawn_tick()
                fired += 1
                if max_ticks is not None and fired >= max_ticks:
                    break
                await self.sleep(self.period_seconds)
        finally:
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            logger.info("scheduler: stopped after %d tick(s)", fired)

    def start(self) -> asyncio.Task:
        if self._runner is None or self._runner.done():
            self._runner = asyncio.create_task(self.run())
        return self._runner

    async def stop(self) -> None:
        runner, self._runner = self._runner, None
        if runner is None:
            return
        runner.cancel()
        try:
            await runner
        except asyncio.CancelledError:
            pass

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------
    def _get_lock(self) -> asyncio.Lock:
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    def _spawn_tick(self) -> None:
        task = asyncio.create_task(self._safe_tick())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _safe_tick(self) -> Optional[TickResult]:
        try:
            return await self.tick()
        except Exception:
            logger.exception("scheduler: tick failed")
            return None

    def _record(self, result: TickResult) -> TickResult:
        self.results.append(result)
        return result

    def _build(self, now: datetime) -> Optional[ContextSnapshot]:
        self.phase = SchedulerPhase.BUILDING
        try:
            return self.builder.build(now)
        except SnapshotError as exc:
            logger.warning("scheduler: skipping cycle, %s", exc)
            self.phase = SchedulerPhase.IDLE
            return None

    async def _reason_and_commit(
        self,
        snapshot: ContextSnapshot,
        seq: int,
        trigger: Optional[str],
    ) -> TickResult:
        now = snapshot.now
        async with self._get_lock():
            try:
                if self._commit_seq != seq:
                    logger.info("scheduler: snapshot from %s is stale, skipping", now.strftime("%H:%M:%S"))
                    return self._record(TickResult(at=now, reason="stale_snapshot"))

                self.phase = SchedulerPhase.REASONING
                outcome = await self.reasoner.run(snapshot, trigger=trigger)
                if not outcome.should_send:
                    reason = "no_nudge" if outcome.decision != "SEND_NUDGE" else "message_rejected"
                    return self._record(TickResult(at=now, reason=reason))

                if self._busy:
                    logger.info("scheduler: user busy, vetoing nudge %r", outcome.message)
                    return self._record(TickResult(at=now, reason="busy"))

                self.phase = SchedulerPhase.COMMITTING
                self._commit(outcome.message, now)
                return self._record(TickResult(at=now, committed=True, message=outcome.message, reason="sent"))
            finally:
                self.phase = SchedulerPhase.IDLE

    def _commit(self, message: str, at: datetime) -> None:
        self.ledger.record_prompt_sent(at)
        self.history.log_nudge(message, at)
        self._commit_seq += 1
        logger.info("scheduler: committed nudge at %s: %s", at.strftime("%H:%M"), message)
        try:
            self.sink.emit(message, at)
        except Exception:
            logger.exception("scheduler: message sink failed; nudge stays recorded")
