# tests/observers/test_transport_observer.py
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

from odyssey.context.activity import ActivityLabel
from odyssey.context.stabilizer import ActivityStabilizer
from odyssey.context.transport import ActivityMessage, WakeWordMessage
from odyssey.managers.scheduler import TickResult
from odyssey.observers.transport_observer import TransportObserver

T0 = datetime(2025, 10, 20, 12, 0)


class FakeScheduler:
    def __init__(self, enabled=True):
        self.activity_nudges_enabled = enabled
        self.requests = []

    async def request_activity_nudge(self, label, at=None):
        self.requests.append((label, at))
        return TickResult(at=at, reason="cooldown")


def _feed(obs, raw, n, start=T0):
    out = []
    for i in range(n):
        out.append(obs.handle_message(raw, start + timedelta(seconds=i)))
    return out


def test_keeps_every_detected_message():
    obs = TransportObserver(stabilizer=ActivityStabilizer())
    obs.handle_message("MATCH: alexa", T0)
    obs.handle_message("ACT: keyboard", T0)

    kinds = [type(d.message) for d in obs.detected]
    assert kinds == [WakeWordMessage, ActivityMessage]


def test_activity_messages_drive_stabilizer():
    stab = ActivityStabilizer()
    transitions = []
    obs = TransportObserver(stabilizer=stab, on_transition=transitions.append)

    results = _feed(obs, "ACT: keyboard", 7)

    assert results[-1].label is ActivityLabel.KEYBOARD
    assert [t.label for t in transitions] == [ActivityLabel.KEYBOARD]
    assert len(stab.recent(T0 + timedelta(minutes=1))) == 7


def test_non_activity_messages_do_not_touch_stabilizer():
    stab = ActivityStabilizer()
    obs = TransportObserver(stabilizer=stab)
    _feed(obs, "EVENT: something", 10)
    assert stab.recent(T0 + timedelta(minutes=1)) == []


def test_trigger_label_transition_goes_to_scheduler():
    async def scenario():
        sched = FakeScheduler()
        obs = TransportObserver(stabilizer=ActivityStabilizer(), scheduler=sched, trigger_labels=["faucet"])
        _feed(obs, "ACT: keyboard", 7)
        _feed(obs, "MATCH: nn0:faucet", 7, start=T0 + timedelta(minutes=1))
        await obs.drain()
        return sched

    sched = asyncio.run(scenario())
    assert sched.requests == [("faucet", T0 + timedelta(minutes=1, seconds=6))]


def test_disabled_scheduler_gets_nothing():
    async def scenario():
        sched = FakeScheduler(enabled=False)
        obs = TransportObserver(stabilizer=ActivityStabilizer(), scheduler=sched)
        _feed(obs, "ACT: faucet", 7)
        await obs.drain()
        return sched

    assert asyncio.run(scenario()).requests == []


def test_no_running_loop_drops_trigger():
    sched = FakeScheduler()
    obs = TransportObserver(stabilizer=ActivityStabilizer(), scheduler=sched)
    results = _feed(obs, "ACT: faucet", 7)
    assert results[-1].label is ActivityLabel.FAUCET
    assert sched.requests == []
