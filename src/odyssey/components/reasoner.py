# src/odyssey/components/reasoner.py
"""
Two-stage nudge reasoning.

    snapshot -> context bus text
      -> stage 1 (decide):   SEND_NUDGE / NO_NUDGE + short analysis
      -> stage 2 (generate): one short imperative message (only after SEND_NUDGE)

Fail-closed: a timeout, a backend error, a malformed decision or anything that
is not exactly SEND_NUDGE ends the run with NO_NUDGE and stage 2 never runs.
A bad stage-2 message is dropped; no partial message ever leaves this module.

Every backend call runs on one dedicated worker thread, so at most one
exchange with the reasoning service is in flight.
"""

from __future__ import annotations

import asyncio
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Literal, Optional, Protocol

import dspy
import pydantic

from odyssey.components.prompts import (
    NO_NUDGE,
    SEND_NUDGE,
    build_decision_prompt,
    build_generation_prompt,
)
from odyssey.context.render import render_context_bus
from odyssey.context.snapshot import ContextSnapshot
from odyssey.core.errors import MalformedResponse, ReasoningFailure, ReasoningTimeout

logger = logging.getLogger(__name__)

Decision = Literal["SEND_NUDGE", "NO_NUDGE"]


class DecisionResult(pydantic.BaseModel):
    decision: Decision
    thinking: str = ""


@dataclass(frozen=True)
class ReasonerOutcome:
    decision: str
    thinking: str = ""
    message: Optional[str] = None
    failure: Optional[str] = None

    @property
    def should_send(self) -> bool:
        return self.decision == SEND_NUDGE and self.message is not None


class ReasoningService(Protocol):
    def decide(self, prompt_text: str) -> DecisionResult:
        ...

    def generate(self, prompt_text: str) -> str:
        ...


class Reasoner(Protocol):
    """Anything the scheduler can ask for a nudge decision."""

    async def run(self, snapshot: ContextSnapshot, trigger: Optional[str] = None) -> ReasonerOutcome:
        ...

    def close(self) -> None:
        ...


# ---------------------------------------------------------------------------
# strict tag protocol (text backends)
# ---------------------------------------------------------------------------

_DECISION_TAG = re.compile(r"\[decision:\s*([A-Za-z_]+)\s*\]")
_THINKING_TAG = re.compile(r"\[thinking:\s*(.*?)\]", re.DOTALL)


def parse_decision_text(text: str) -> DecisionResult:
    """
    Parse a "[thinking: ...] [decision: X]" reply.

    Exactly one distinct decision value is accepted. No tag, an unknown value,
    or conflicting tags raise MalformedResponse; we never guess from loose
    wording like "send a nudge".
    """
    if not text or not text.strip():
        raise MalformedResponse("empty decision response")

    values = {m.strip() for m in _DECISION_TAG.findall(text)}
    if not values:
        raise MalformedResponse("no [decision: ...] tag in response")
    if len(values) > 1:
        raise MalformedResponse(f"conflicting decision tags: {sorted(values)}")

    value = values.pop()
    if value not in (SEND_NUDGE, NO_NUDGE):
        raise MalformedResponse(f"unknown decision value {value!r}")

    m = _THINKING_TAG.search(text)
    thinking = m.group(1).strip() if m else ""
    return DecisionResult(decision=value, thinking=thinking)


# ---------------------------------------------------------------------------
# dspy backends
# ---------------------------------------------------------------------------

class DecideNudgeSignature(dspy.Signature):
    """
Decide whether to send the user a hydration nudge right now.

Follow the rubric and output format given in the prompt. Only answer SEND_NUDGE
when the moment is clearly appropriate; when in doubt, answer NO_NUDGE.
"""
    prompt: str = dspy.InputField(description="Decision rubric followed by the current context bus.")
    decision: Decision = dspy.OutputField(description="SEND_NUDGE or NO_NUDGE")


class GenerateNudgeSignature(dspy.Signature):
    """
Write one short hydration nudge that follows every requirement in the prompt.
"""
    prompt: str = dspy.InputField(description="Message requirements, stage-1 reasoning and context.")
    nudge: str = dspy.OutputField(description="The nudge text only, no quotes or preamble.")


class DspyReasoningService:
    """Structured backend: dspy enforces the decision type for us."""

    def __init__(self) -> None:
        self.decide_step = dspy.ChainOfThought(DecideNudgeSignature)
        self.generate_step = dspy.Predict(GenerateNudgeSignature)

    def decide(self, prompt_text: str) -> DecisionResult:
        try:
            res = self.decide_step(prompt=prompt_text)
        except ValueError as exc:
            # dspy adapters raise ValueError-derived parse errors
            raise MalformedResponse(str(exc)) from exc
        except Exception as exc:
            raise ReasoningFailure(str(exc)) from exc
        try:
            return DecisionResult(
                decision=res.decision,
                thinking=getattr(res, "reasoning", "") or "",
            )
        except pydantic.ValidationError as exc:
            raise MalformedResponse(str(exc)) from exc

    def generate(self, prompt_text: str) -> str:
        try:
            res = self.generate_step(prompt=prompt_text)
        except Exception as exc:
            raise ReasoningFailure(str(exc)) from exc
        return str(res.nudge or "")


class TaggedTextReasoningService:
    """
    Raw-completion backend: send the prompt as-is, parse the reply ourselves.

    Uses the LM passed in, or whatever dspy.configure() set up.
    """

    def __init__(self, lm: Optional[Any] = None) -> None:
        self.lm = lm

    def _complete(self, prompt_text: str) -> str:
        lm = self.lm or dspy.settings.lm
        if lm is None:
            raise ReasoningFailure("no language model configured")
        try:
            outputs = lm(prompt_text)
        except Exception as exc:
            raise ReasoningFailure(str(exc)) from exc
        if not outputs:
            return ""
        first = outputs[0]
        if isinstance(first, dict):
            first = first.get("text", "")
        return str(first or "")

    def decide(self, prompt_text: str) -> DecisionResult:
        return parse_decision_text(self._complete(prompt_text))

    def generate(self, prompt_text: str) -> str:
        return self._complete(prompt_text)


# ---------------------------------------------------------------------------
# two-stage reasoner
# ---------------------------------------------------------------------------

def clean_message(text: Optional[str], max_chars: int = 140) -> Optional[str]:
    """
    Trim whitespace and wrapping quotes. Returns None when the text is empty,
    longer than `max_chars`, or contains a question.
    """
    if text is None:
        return None
    cleaned = text.strip()
    if len(cleaned) >= 2 and cleaned[0] == cleaned[-1] and cleaned[0] in "\"'":
        cleaned = cleaned[1:-1].strip()
    if not cleaned:
        return None
    if len(cleaned) > max_chars:
        logger.info("reasoner: dropping message over %d chars (%d)", max_chars, len(cleaned))
        return None
    if "?" in cleaned:
        logger.info("reasoner: dropping message containing a question")
        return None
    return cleaned


class TwoStageReasoner:
    def __init__(
        self,
        service: ReasoningService,
        *,
        timeout_seconds: float = 30.0,
        max_chars: int = 140,
        suggest_threshold_ml: int = -200,
        max_activity_lines: int = 10,
        max_calendar_lines: int = 8,
    ) -> None:
        self.service = service
        self.timeout_seconds = timeout_seconds
        self.max_chars = max_chars
        self.suggest_threshold_ml = suggest_threshold_ml
        self.max_activity_lines = max_activity_lines
        self.max_calendar_lines = max_calendar_lines
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="odyssey-reasoner")

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    async def _call(self, fn: Callable[[str], Any], prompt_text: str, stage: str) -> Any:
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self._executor, fn, prompt_text)
        try:
            return await asyncio.wait_for(future, timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise ReasoningTimeout(f"{stage} timed out after {self.timeout_seconds}s") from exc

    async def run(self, snapshot: ContextSnapshot, trigger: Optional[str] = None) -> ReasonerOutcome:
        context_text = render_context_bus(
            snapshot,
            max_activity_lines=self.max_activity_lines,
            max_calendar_lines=self.max_calendar_lines,
        )

        # stage 1
        decision_prompt = build_decision_prompt(context_text, snapshot.window, trigger=trigger)
        logger.debug("stage 1 prompt:\n%s", decision_prompt)
        try:
            result = await self._call(self.service.decide, decision_prompt, "decide")
        except (ReasoningFailure, MalformedResponse) as exc:
            logger.warning("stage 1 failed (%s); treating as NO_NUDGE", exc)
            return ReasonerOutcome(decision=NO_NUDGE, failure=str(exc))
        except Exception as exc:
            logger.exception("stage 1 raised unexpectedly; treating as NO_NUDGE")
            return ReasonerOutcome(decision=NO_NUDGE, failure=str(exc))

        if not isinstance(result, DecisionResult) or result.decision != SEND_NUDGE:
            thinking = getattr(result, "thinking", "") or ""
            logger.info("decision: NO_NUDGE (%s)", thinking or "no reasoning given")
            return ReasonerOutcome(decision=NO_NUDGE, thinking=thinking)

        logger.info("decision: SEND_NUDGE (%s)", result.thinking)

        # stage 2
        generation_prompt = build_generation_prompt(
            thinking=result.thinking,
            context_text=context_text,
            gap_ml=snapshot.pacing.gap_ml,
            max_chars=self.max_chars,
            suggest_threshold_ml=self.suggest_threshold_ml,
        )
        logger.debug("stage 2 prompt:\n%s", generation_prompt)
        try:
            raw = await self._call(self.service.generate, generation_prompt, "generate")
        except (ReasoningFailure, MalformedResponse) as exc:
            logger.warning("stage 2 failed (%s); dropping nudge", exc)
            return ReasonerOutcome(decision=SEND_NUDGE, thinking=result.thinking, failure=str(exc))
        except Exception as exc:
            logger.exception("stage 2 raised unexpectedly; dropping nudge")
            return ReasonerOutcome(decision=SEND_NUDGE, thinking=result.thinking, failure=str(exc))

        message = clean_message(raw if isinstance(raw, str) else None, self.max_chars)
        if message is None:
            return ReasonerOutcome(
                decision=SEND_NUDGE,
                thinking=result.thinking,
                failure="generated message rejected",
            )

        logger.info("stage 2 generated nudge: %s", message)
        return ReasonerOutcome(decision=SEND_NUDGE, thinking=result.thinking, message=message)
