# tests/managers/test_scheduler.py
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import List, Optional

import pytest

from odyssey.components.reasoner import ReasonerOutcome
from odyssey.context.calendar import StaticCalendar
from odyssey.context.snapshot import ContextBusBuilder
from odyssey.context.stabilizer import ActivityStabilizer
from odyssey.managers.scheduler import NudgeScheduler, SchedulerPhase
from odyssey.managers.sinks import CallbackSink


class FakeReasoner:
    """
    Stands in for TwoStageReasoner. Returns a scripted outcome and records
    every call; `gate` lets a test hold a run open.
    """

    def __init__(self, message: Optional[str] = "Drink 250 ml now.", gate: Optional[asyncio.Event] = None):
        self.message = message
        self.gate = gate
        self.calls: List[dict] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.scheduler: Optional[NudgeScheduler] = None

    async def run(self, snapshot, trigger=None):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        self.calls.append(
            {
                "now": snapshot.now,
                "trigger": trigger,
                "phase": self.scheduler.phase if self.scheduler else None,
            }
        )
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.message is None:
                return ReasonerOutcome(decision="NO_NUDGE")
            return ReasonerOutcome(decision="SEND_NUDGE", thinking="behind", message=self.message)
        finally:
            self.in_flight -= 1


class ExplodingCalendar:
    def events_overlapping(self, start, end):
        raise RuntimeError("calendar unavailable")


class RecordingSleep:
    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        await asyncio.sleep(0)


@pytest.fixture
def delivered():
    return []


def _make(ledger, history, clock, delivered, reasoner, *, calendar=None, **kw):
    builder = ContextBusBuilder(
        ledger=ledger,
        calendar=calendar or StaticCalendar(),
        history=history,
        stabilizer=ActivityStabilizer(),
    )
    sched = NudgeScheduler(
        builder=builder,
        reasoner=reasoner,
        ledger=ledger,
        history=history,
        sink=CallbackSink(lambda message, at: delivered.append((message, at))),
        clock=clock,
        **kw,
    )
    reasoner.scheduler = sched
    return sched


def test_tick_commits_nudge(ledger, history, clock, delivered):
    reasoner = FakeReasoner()
    sched = _make(ledger, history, clock, delivered, reasoner)

    result = asyncio.run(sched.tick())

    now = clock.now()
    assert result.committed and result.reason == "sent"
    assert ledger.load_today().last_prompt_at == now
    assert [r.message for r in history.today(now)] == ["Drink 250 ml now."]
    assert delivered == [("Drink 250 ml now.", now)]
    assert reasoner.calls[0]["phase"] is SchedulerPhase.REASONING
    assert sched.phase is SchedulerPhase.IDLE


def test_no_nudge_records_nothing(ledger, history, clock, delivered):
    sched = _make(ledger, history, clock, delivered, FakeReasoner(message=None))

    result = asyncio.run(sched.tick())

    assert not result.committed
    assert result.reason == "no_nudge"
    assert ledger.load_today().last_prompt_at is None
    assert history.recent() == []
    assert delivered == []


def test_busy_vetoes_commit(ledger, history, clock, delivered):
    reasoner = FakeReasoner()
    sched = _make(ledger, history, clock, delivered, reasoner)
    sched.set_busy(True)

    result = asyncio.run(sched.tick())

    assert result.reason == "busy"
    assert len(reasoner.calls) == 1
    assert delivered == []
    assert history.recent() == []


def test_snapshot_failure_skips_cycle(ledger, history, clock, delivered):
    reasoner = FakeReasoner()
    sched = _make(ledger, history, clock, delivered, reasoner, calendar=ExplodingCalendar())

    result = asyncio.run(sched.tick())

    assert result.reason == "snapshot_failed"
    assert reasoner.calls == []
    assert sched.phase is SchedulerPhase.IDLE


def test_sink_failure_is_contained(ledger, history, clock):
    def _broken_sink(message, at):
        raise OSError("notification service down")

    builder = ContextBusBuilder(
        ledger=ledger, calendar=StaticCalendar(), history=history, stabilizer=ActivityStabilizer()
    )
    sched = NudgeScheduler(
        builder=builder,
        reasoner=FakeReasoner(),
        ledger=ledger,
        history=history,
        sink=CallbackSink(_broken_sink),
        clock=clock,
    )

    result = asyncio.run(sched.tick())
    assert result.committed
    assert len(history.recent()) == 1


def test_overlapping_ticks_are_serialized_and_stale_one_vetoed(ledger, history, clock, delivered):
    async def scenario():
        gate = asyncio.Event()
        reasoner = FakeReasoner(gate=gate)
        sched = _make(ledger, history, clock, delivered, reasoner)

        first = asyncio.create_task(sched.tick())
        second = asyncio.create_task(sched.tick())
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        gate.set()
        return reasoner, await first, await second

    reasoner, first, second = asyncio.run(scenario())

    assert first.committed
    assert second.reason == "stale_snapshot"
    assert len(reasoner.calls) == 1
    assert reasoner.max_in_flight == 1
    assert len(delivered) == 1


def test_activity_path_disabled_by_default(ledger, history, clock, delivered):
    reasoner = FakeReasoner()
    sched = _make(ledger, history, clock, delivered, reasoner)

    result = asyncio.run(sched.request_activity_nudge("faucet"))

    assert result.reason == "activity_disabled"
    assert reasoner.calls == []


def test_activity_path_respects_spacing(ledger, history, clock, delivered):
    reasoner = FakeReasoner()
    sched = _make(ledger, history, clock, delivered, reasoner, activity_nudges_enabled=True)
    ledger.record_prompt_sent(clock.now() - timedelta(minutes=5))

    result = asyncio.run(sched.request_activity_nudge("faucet"))

    assert result.reason == "cooldown"
    assert not result.committed
    assert reasoner.calls == []
    assert delivered == []


def test_activity_path_runs_after_spacing(ledger, history, clock, delivered):
    reasoner = FakeReasoner()
    sched = _make(ledger, history, clock, delivered, reasoner, activity_nudges_enabled=True)
    ledger.record_prompt_sent(clock.now() - timedelta(minutes=15))

    result = asyncio.run(sched.request_activity_nudge("faucet"))

    assert result.committed
    assert reasoner.calls[0]["trigger"] == "faucet"


def test_run_fires_ticks_every_period(ledger, history, clock, delivered):
    reasoner = FakeReasoner(message=None)
    sleep = RecordingSleep()
    sched = _make(ledger, history, clock, delivered, reasoner, period_seconds=60, sleep=sleep)

    asyncio.run(sched.run(max_ticks=3))

    assert sleep.calls == [60, 60]
    assert len(reasoner.calls) == 3
    assert len(sched.results) == 3


def test_start_and_stop(ledger, history, clock, delivered):
    reasoner = FakeReasoner(message=None)
    sched = _make(ledger, history, clock, delivered, reasoner, period_seconds=0.01)

    async def scenario():
        task = sched.start()
        await asyncio.sleep(0.05)
        await sched.stop()
        return task

    task = asyncio.run(scenario())
    assert task.done()
    assert len(reasoner.calls) >= 1


def test_rejects_non_positive_period(ledger, history, clock, delivered):
    with pytest.raises(ValueError):
        _make(ledger, history, clock, delivered, FakeReasoner(), period_seconds=0)
