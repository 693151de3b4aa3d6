# src/odyssey/context/activity.py
"""
Activity classifier adapter.

The sensor side hands us opaque string labels ("keyboard", "ACT: faucet",
"activity_background", ...). We map them onto a small closed set of semantic
states; everything we don't recognise is UNKNOWN. This never raises.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class ActivityLabel(str, Enum):
    KEYBOARD = "keyboard"
    FAUCET = "faucet"
    BACKGROUND = "background"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ActivityEvent:
    label: ActivityLabel
    occurred_at: datetime


_EVENT_NAME_PREFIX = "activity_"

_LABELS = {
    "keyboard": ActivityLabel.KEYBOARD,
    "faucet": ActivityLabel.FAUCET,
    "background": ActivityLabel.BACKGROUND,
}


def classify(raw_label: str) -> ActivityLabel:
    """
    Map a raw label to an ActivityLabel.

    Accepts bare labels ("Keyboard"), transport event names
    ("activity_faucet") and is case/whitespace insensitive.
    """
    if not isinstance(raw_label, str):
        return ActivityLabel.UNKNOWN
    key = raw_label.strip().lower()
    if key.startswith(_EVENT_NAME_PREFIX):
        key = key[len(_EVENT_NAME_PREFIX):]
    return _LABELS.get(key, ActivityLabel.UNKNOWN)
