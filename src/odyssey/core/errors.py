# src/odyssey/core/errors.py
"""
Error types shared across the decision core.

None of these are fatal to the process. The worst outcome of any of them is a
missed nudge cycle, which the next scheduler tick retries on its own.
"""

from __future__ import annotations


class StoreError(RuntimeError):
    """Durable store read/write failed (transient IO)."""


class InvariantViolation(ValueError):
    """Caller asked the ledger for something the data model forbids."""


class SnapshotError(RuntimeError):
    """A sub-read failed while building a context snapshot."""


class ReasoningFailure(RuntimeError):
    """The reasoning service was unreachable or errored."""


class ReasoningTimeout(ReasoningFailure):
    """The reasoning service did not answer within the stage timeout."""


class MalformedResponse(ValueError):
    """The reasoning service answered, but not in the agreed protocol."""
