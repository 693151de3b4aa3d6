# src/odyssey/observers/csv_replay.py
from __future__ import annotations

import asyncio
import csv
import inspect
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, List, Optional

logger = logging.getLogger(__name__)

_TIMESTAMP_FORMATS = ("%Y%m%d_%H%M%S", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S")


@dataclass
class CsvReplayConfig:
    csv_path: str = "dev/replay/transport_log.csv"
    # how to pace replay:
    # - "interval": sleep interval_seconds between rows
    # - "asap": no sleep, emit as fast as possible
    mode: str = "asap"
    interval_seconds: float = 1.0


class CsvReplayObserver:
    """
    Replays recorded link traffic (`timestamp,message` rows) and feeds each
    row to a handler, usually TransportObserver.handle_message.
    """

    def __init__(
        self,
        config: Optional[CsvReplayConfig] = None,
        *,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ) -> None:
        self.config = config or CsvReplayConfig()
        self.sleep = sleep

    async def run(self, handler: Callable[[str, datetime], Any]) -> int:
        rows = self._load_rows(self.config.csv_path)
        logger.info("csv replay starting with %d rows from %s", len(rows), self.config.csv_path)

        replayed = 0
        for row in rows:
            message = (row.get("message") or "").strip()
            if not message:
                continue
            result = handler(message, self._parse_timestamp(row.get("timestamp")))
            if inspect.isawaitable(result):
                await result
            replayed += 1

            if self.config.mode != "asap":
                # unknown mode -> treat like interval
                await self.sleep(self.config.interval_seconds)

        logger.info("csv replay finished, %d message(s) replayed", replayed)
        return replayed

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------
    def _load_rows(self, path_str: str) -> List[dict]:
        text = Path(path_str).read_text(encoding="utf-8")
        return list(csv.DictReader(text.splitlines()))

    def _parse_timestamp(self, raw: Optional[str]) -> datetime:
        value = (raw or "").strip()
        for fmt in _TIMESTAMP_FORMATS:
            try:
                return datetime.strptime(value, fmt)
            except ValueError:
                continue
        if value:
            logger.warning("csv replay: unparseable timestamp %r, using now", value)
        return datetime.now()
