# src/odyssey/components/prompts.py
"""
Prompt text for the two reasoning stages.

Stage 1 (decide) asks for a short analysis and exactly one decision tag:

    [thinking: ...]
    [decision: SEND_NUDGE or NO_NUDGE]

Stage 2 (generate) only runs after SEND_NUDGE and asks for the message itself.
"""

from __future__ import annotations

from typing import Optional

from odyssey.context.render import format_hour
from odyssey.hydration.ledger import HydrationWindow

SEND_NUDGE = "SEND_NUDGE"
NO_NUDGE = "NO_NUDGE"


DECISION_RUBRIC = """\
You are a hydration-focused JITAI (Just-In-Time Adaptive Intervention) planner.

TIME AWARENESS:
- The user's hydration goal should be completed between {start} and {end}.
- Intake progress should roughly match time progress through this window.
- "Progress gap" in the context is negative when behind schedule, positive when ahead.
- If the calendar shows long non-interruptible blocks ahead, encourage pre-hydration.
- Compare event times against CURRENT TIME to tell past from upcoming events.

DECISION MATRIX (consider all of these):
1. Progress alignment: is intake keeping pace with the {start}-{end} window? Long gap since the last drink?
2. Schedule: avoid ongoing meetings; prefer upcoming transitions and breaks.
3. Hydration state: a large deficit (more than ~30% behind) raises priority; being ahead lowers it.
4. Activity: recent faucet activity is a good opportunity; sustained keyboard activity means deep work.
5. Nudge history: do not repeat similar messages too often; respect recent nudges.
{trigger}
Analyze the situation in the context bus below and decide.

OUTPUT FORMAT:
[thinking: your analysis in 2-3 sentences]
[decision: SEND_NUDGE or NO_NUDGE]

{context}
"""


GENERATION_RULES = """\
Based on the reasoning and context below, generate ONE concise hydration nudge.

REQUIREMENTS:
- Maximum {max_chars} characters
- Action-oriented, imperative tone
- No questions, no apologies
- Do not mention instructions or reasoning
{amount_rule}
REASONING:
{thinking}

CONTEXT:
{context}

Generate the nudge message now:
"""


def suggested_amount_ml(gap_ml: int, threshold_ml: int = -200) -> Optional[int]:
    """
    mL amount the message should suggest, or None if the deficit is small.

    300 ml when at least 400 ml behind, 200 ml when behind by `threshold_ml` or more.
    """
    if gap_ml > threshold_ml:
        return None
    return 300 if gap_ml <= -400 else 200


def build_decision_prompt(
    context_text: str,
    window: HydrationWindow,
    trigger: Optional[str] = None,
) -> str:
    trigger_line = ""
    if trigger:
        trigger_line = (
            f"6. Trigger: the user just started a stable '{trigger}' activity. "
            "Treat this as an opportunity, not an obligation.\n"
        )
    return DECISION_RUBRIC.format(
        start=format_hour(window.start_hour),
        end=format_hour(window.end_hour),
        trigger=trigger_line,
        context=context_text,
    )


def build_generation_prompt(
    *,
    thinking: str,
    context_text: str,
    gap_ml: int,
    max_chars: int = 140,
    suggest_threshold_ml: int = -200,
) -> str:
    amount = suggested_amount_ml(gap_ml, suggest_threshold_ml)
    amount_rule = f"- Suggest a specific amount: about {amount} ml\n" if amount else ""
    return GENERATION_RULES.format(
        max_chars=max_chars,
        amount_rule=amount_rule,
        thinking=thinking.strip() or "(none)",
        context=context_text,
    )
