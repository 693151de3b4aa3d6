# src/odyssey/context/transport.py
"""
Closed set of message kinds the sensor link delivers.

The link sends short prefixed strings:

    "ACT: keyboard"          -> ActivityMessage
    "MATCH: nn0:faucet ..."  -> ActivityMessage (classifier match on an activity class)
    "MATCH: alexa"           -> WakeWordMessage
    "EVENT: ..."             -> NdpEventMessage
    "CMD: ..."               -> CommandMessage
    "TEST: ..."              -> TestMessage
    anything else            -> GenericMessage

Only ActivityMessage feeds the classifier adapter; the rest are kept for
display/debugging. GenericMessage carries a str -> str map, never arbitrary
values, so every variant stays serialisable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Union


@dataclass(frozen=True)
class ActivityMessage:
    label_text: str
    name: str = "activity"


@dataclass(frozen=True)
class WakeWordMessage:
    text: str
    name: str = "alexa_wake_word"


@dataclass(frozen=True)
class NdpEventMessage:
    text: str
    name: str = "ndp_event"


@dataclass(frozen=True)
class CommandMessage:
    text: str
    name: str = "command"


@dataclass(frozen=True)
class TestMessage:
    text: str
    name: str = "test_message"

    # not a pytest test class
    __test__ = False


@dataclass(frozen=True)
class GenericMessage:
    name: str
    arguments: Dict[str, str] = field(default_factory=dict)


TransportMessage = Union[
    ActivityMessage,
    WakeWordMessage,
    NdpEventMessage,
    CommandMessage,
    TestMessage,
    GenericMessage,
]

_ACTIVITY_MATCHES = ("nn0:keyboard", "nn0:faucet")


def _strip_prefix(message: str, prefix: str) -> str:
    return message[len(prefix):].strip()


def parse_transport_message(message: str) -> TransportMessage:
    """Turn one raw link string into its variant. Never raises."""
    raw = (message or "").strip()

    if raw.startswith("ACT:"):
        return ActivityMessage(label_text=_strip_prefix(raw, "ACT:").lower())

    if raw.startswith("MATCH:"):
        lowered = raw.lower()
        for token in _ACTIVITY_MATCHES:
            if token in lowered:
                return ActivityMessage(label_text=token.split(":", 1)[1])
        return WakeWordMessage(text=_strip_prefix(raw, "MATCH:"))

    if raw.startswith("EVENT:"):
        return NdpEventMessage(text=_strip_prefix(raw, "EVENT:"))
    if raw.startswith("CMD:"):
        return CommandMessage(text=_strip_prefix(raw, "CMD:"))
    if raw.startswith("TEST:"):
        return TestMessage(text=_strip_prefix(raw, "TEST:"))

    return GenericMessage(name="ble_message", arguments={"message": raw})
