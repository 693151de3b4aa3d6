# tests/context/test_activity_classifier.py
from __future__ import annotations

import pytest

from odyssey.context.activity import ActivityLabel, classify


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("keyboard", ActivityLabel.KEYBOARD),
        ("  Faucet ", ActivityLabel.FAUCET),
        ("BACKGROUND", ActivityLabel.BACKGROUND),
        ("activity_faucet", ActivityLabel.FAUCET),
        ("activity_keyboard", ActivityLabel.KEYBOARD),
    ],
)
def test_known_labels(raw, expected):
    assert classify(raw) is expected


@pytest.mark.parametrize("raw", ["", "dog_bark", "keyboard faucet", "alexa_wake_word", None, 42])
def test_everything_else_is_unknown(raw):
    assert classify(raw) is ActivityLabel.UNKNOWN
