# tests/components/test_reasoner.py
from __future__ import annotations

import asyncio
import time
from datetime import datetime

import pytest

from odyssey.components.reasoner import DecisionResult, TwoStageReasoner, clean_message
from odyssey.context.calendar import StaticCalendar
from odyssey.context.snapshot import ContextBusBuilder
from odyssey.context.stabilizer import ActivityStabilizer
from odyssey.core.errors import MalformedResponse, ReasoningFailure


class FakeService:
    """Scripted ReasoningService that records what it was asked."""

    def __init__(self, decision=None, message="Drink 300 ml of water now.", decide_delay=0.0):
        self.decision = decision
        self.message = message
        self.decide_delay = decide_delay
        self.decide_prompts = []
        self.generate_prompts = []

    def decide(self, prompt_text):
        self.decide_prompts.append(prompt_text)
        if self.decide_delay:
            time.sleep(self.decide_delay)
        if isinstance(self.decision, Exception):
            raise self.decision
        return self.decision

    def generate(self, prompt_text):
        self.generate_prompts.append(prompt_text)
        if isinstance(self.message, Exception):
            raise self.message
        return self.message


@pytest.fixture
def evening_snapshot(ledger, history, clock):
    # goal 2000, 500 ml at 08:30, now 18:00 -> well behind
    clock.set(datetime(2025, 10, 20, 18, 0))
    ledger.log(500, at=datetime(2025, 10, 20, 8, 30))
    builder = ContextBusBuilder(
        ledger=ledger, calendar=StaticCalendar(), history=history, stabilizer=ActivityStabilizer()
    )
    return builder.build(clock.now())


def _run(reasoner, snapshot, **kw):
    try:
        return asyncio.run(reasoner.run(snapshot, **kw))
    finally:
        reasoner.close()


SEND = DecisionResult(decision="SEND_NUDGE", thinking="928 ml behind, no meetings soon.")
NO = DecisionResult(decision="NO_NUDGE", thinking="User is in a meeting.")


@pytest.mark.parametrize(
    "decision",
    [
        NO,
        None,
        "SEND_NUDGE",
        ReasoningFailure("connection refused"),
        MalformedResponse("no tag"),
        RuntimeError("unexpected"),
    ],
)
def test_stage_one_fails_closed(evening_snapshot, decision):
    svc = FakeService(decision=decision)
    outcome = _run(TwoStageReasoner(svc), evening_snapshot)

    assert outcome.decision == "NO_NUDGE"
    assert outcome.message is None
    assert not outcome.should_send
    assert len(svc.decide_prompts) == 1
    assert svc.generate_prompts == []


def test_stage_one_timeout_fails_closed(evening_snapshot):
    svc = FakeService(decision=SEND, decide_delay=0.5)
    outcome = _run(TwoStageReasoner(svc, timeout_seconds=0.05), evening_snapshot)

    assert outcome.decision == "NO_NUDGE"
    assert "timed out" in outcome.failure
    assert svc.generate_prompts == []


def test_end_to_end_send(evening_snapshot):
    svc = FakeService(decision=SEND, message='  "Drink 300 ml of water now."  ')
    outcome = _run(TwoStageReasoner(svc), evening_snapshot)

    assert outcome.should_send
    assert outcome.message == "Drink 300 ml of water now."
    assert len(outcome.message) <= 140
    assert "?" not in outcome.message

    decide_prompt = svc.decide_prompts[0]
    assert "Progress gap: -928 ml (behind schedule)" in decide_prompt

    generate_prompt = svc.generate_prompts[0]
    assert SEND.thinking in generate_prompt
    assert "Progress gap: -928 ml" in generate_prompt
    assert "about 300 ml" in generate_prompt


@pytest.mark.parametrize(
    "message",
    [
        "",
        "   ",
        "Thirsty? Grab a glass.",
        "x" * 141,
        None,
        ReasoningFailure("stage 2 down"),
    ],
)
def test_bad_generation_is_dropped(evening_snapshot, message):
    svc = FakeService(decision=SEND, message=message)
    outcome = _run(TwoStageReasoner(svc), evening_snapshot)

    assert outcome.decision == "SEND_NUDGE"
    assert outcome.message is None
    assert not outcome.should_send
    assert outcome.failure


def test_trigger_reaches_stage_one(evening_snapshot):
    svc = FakeService(decision=NO)
    _run(TwoStageReasoner(svc), evening_snapshot, trigger="faucet")
    assert "'faucet'" in svc.decide_prompts[0]


def test_clean_message():
    assert clean_message("  'Sip 200 ml.' ") == "Sip 200 ml."
    assert clean_message("x" * 140) == "x" * 140
    assert clean_message("x" * 141) is None
    assert clean_message("Water?") is None
    assert clean_message('""') is None
