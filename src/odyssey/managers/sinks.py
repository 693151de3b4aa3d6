# src/odyssey/managers/sinks.py
"""
Where committed nudges go once the scheduler has recorded them.

The scheduler only knows the MessageSink protocol; delivery (notification,
chat window, CSV log) is somebody else's problem.
"""

from __future__ import annotations

import csv
import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Protocol, Sequence

logger = logging.getLogger(__name__)


class MessageSink(Protocol):
    def emit(self, message: str, at: datetime) -> None:
        ...


class LoggingSink:
    def emit(self, message: str, at: datetime) -> None:
        logger.info("NUDGE @ %s: %s", at.strftime("%H:%M"), message)


class CallbackSink:
    def __init__(self, callback: Callable[[str, datetime], None]) -> None:
        self.callback = callback

    def emit(self, message: str, at: datetime) -> None:
        self.callback(message, at)


class FanOutSink:
    """Emit to several sinks; one failing sink does not starve the others."""

    def __init__(self, sinks: Sequence[MessageSink]) -> None:
        self.sinks: List[MessageSink] = list(sinks)

    def emit(self, message: str, at: datetime) -> None:
        for sink in self.sinks:
            try:
                sink.emit(message, at)
            except Exception:
                logger.exception("sink %s failed", type(sink).__name__)


class CsvNudgeSink:
    """
    Append delivered nudges to a CSV with a fixed schema.
    """

    fieldnames = ["timestamp", "message"]

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._header_written = self.path.exists() and self.path.stat().st_size > 0

    def emit(self, message: str, at: datetime) -> None:
        with self.path.open("a", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=self.fieldnames)
            if not self._header_written:
                writer.writeheader()
                self._header_written = True
            writer.writerow({"timestamp": at.isoformat(), "message": message})
