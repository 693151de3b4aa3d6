# src/odyssey/main.py
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, TextIO

import dspy
from dotenv import load_dotenv

import odyssey.config.loader as config_loader
from odyssey.components.reasoner import (
    DspyReasoningService,
    Reasoner,
    TaggedTextReasoningService,
    TwoStageReasoner,
)
from odyssey.components.rules import RuleBasedReasoner
from odyssey.context.calendar import StoredCalendar
from odyssey.context.snapshot import ContextBusBuilder
from odyssey.context.stabilizer import ActivityStabilizer
from odyssey.core.clock import Clock, SystemClock
from odyssey.history.nudges import NudgeHistory
from odyssey.hydration.ledger import HydrationLedger, make_window
from odyssey.managers.scheduler import NudgeScheduler
from odyssey.managers.sinks import CsvNudgeSink, FanOutSink, LoggingSink, MessageSink
from odyssey.observers.csv_replay import CsvReplayConfig, CsvReplayObserver
from odyssey.observers.transport_observer import TransportObserver
from odyssey.store.kv import KeyValueStore, open_default_store

logger = logging.getLogger(__name__)


class ReplayClock:
    """Clock that follows the timestamps of the replayed rows."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.current = start or datetime.now()

    def now(self) -> datetime:
        return self.current

    def advance_to(self, moment: datetime) -> None:
        if moment > self.current:
            self.current = moment


class App:
    """Every long-lived service, built once and wired explicitly."""

    def __init__(
        self,
        *,
        settings: Dict[str, Any],
        store: KeyValueStore,
        clock: Clock,
        reasoner: Reasoner,
        sink: MessageSink,
        period_seconds: float,
        activity_nudges: bool,
    ) -> None:
        sched_cfg = settings["scheduler"]
        stab_cfg = settings["stabilizer"]
        hyd_cfg = settings["hydration"]
        ctx_cfg = settings["context"]
        nudge_cfg = settings["nudge"]

        self.clock = clock
        self.ledger = HydrationLedger(
            store,
            clock=clock,
            default_goal_ml=int(hyd_cfg["default_goal_ml"]),
            default_window=make_window(
                int(hyd_cfg["default_window"]["start_hour"]),
                int(hyd_cfg["default_window"]["end_hour"]),
            ),
        )
        self.history = NudgeHistory(store, clock=clock, retention_days=int(nudge_cfg["retention_days"]))
        self.stabilizer = ActivityStabilizer(
            threshold=int(stab_cfg["streak_threshold"]),
            max_buffer_events=int(stab_cfg["max_buffer_events"]),
        )
        self.builder = ContextBusBuilder(
            ledger=self.ledger,
            calendar=StoredCalendar(store),
            history=self.history,
            stabilizer=self.stabilizer,
            activity_lookback_hours=float(ctx_cfg["activity_lookback_hours"]),
            calendar_lookback_hours=float(ctx_cfg["calendar_lookback_hours"]),
            calendar_lookahead_hours=float(ctx_cfg["calendar_lookahead_hours"]),
        )
        self.reasoner = reasoner
        self.scheduler = NudgeScheduler(
            builder=self.builder,
            reasoner=self.reasoner,
            ledger=self.ledger,
            history=self.history,
            sink=sink,
            clock=clock,
            period_seconds=period_seconds,
            activity_nudges_enabled=activity_nudges,
            activity_min_spacing=timedelta(minutes=float(sched_cfg["activity_min_spacing_minutes"])),
        )
        self.observer = TransportObserver(
            stabilizer=self.stabilizer,
            scheduler=self.scheduler,
            trigger_labels=sched_cfg.get("activity_trigger_labels") or [],
        )

    def close(self) -> None:
        self.reasoner.close()


def _build_reasoner(backend: str, settings: Dict[str, Any]) -> Reasoner:
    sched_cfg = settings["scheduler"]
    ctx_cfg = settings["context"]
    nudge_cfg = settings["nudge"]

    if backend == "rules":
        return RuleBasedReasoner(max_chars=int(nudge_cfg["max_chars"]))

    service = TaggedTextReasoningService() if backend == "tagged" else DspyReasoningService()
    return TwoStageReasoner(
        service,
        timeout_seconds=float(sched_cfg["reasoning_timeout_seconds"]),
        max_chars=int(nudge_cfg["max_chars"]),
        suggest_threshold_ml=int(nudge_cfg["suggest_amount_below_gap_ml"]),
        max_activity_lines=int(ctx_cfg["max_activity_lines"]),
        max_calendar_lines=int(ctx_cfg["max_calendar_lines"]),
    )


def _build_sink(output_csv: Optional[str]) -> MessageSink:
    sinks: List[MessageSink] = [LoggingSink()]
    if output_csv:
        sinks.append(CsvNudgeSink(Path(output_csv)))
    return FanOutSink(sinks)


def _start_stdin_pump(
    stream: TextIO,
    loop: asyncio.AbstractEventLoop,
    queue: "asyncio.Queue[Optional[str]]",
) -> threading.Thread:
    """
    Read `stream` on a daemon thread and hand each line to the event loop.

    A blocked readline() cannot be interrupted, so the thread is never joined:
    the loop just stops listening and the thread dies with the process.
    """

    def pump() -> None:
        try:
            for line in stream:
                loop.call_soon_threadsafe(queue.put_nowait, line)
            loop.call_soon_threadsafe(queue.put_nowait, None)
        except RuntimeError:
            # event loop already closed; nobody is listening any more
            return

    thread = threading.Thread(target=pump, name="odyssey-stdin", daemon=True)
    thread.start()
    return thread


async def _read_stdin(observer: TransportObserver, clock: Clock, stream: TextIO) -> None:
    """Feed link messages typed/piped on `stream` to the observer (one per line)."""
    queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
    _start_stdin_pump(stream, asyncio.get_running_loop(), queue)
    while True:
        line = await queue.get()
        if line is None:
            logger.info("stdin closed; no more link messages")
            return
        line = line.strip()
        if line:
            observer.handle_message(line, clock.now())


async def _run_live_mode(app: App, max_ticks: Optional[int], stdin: Optional[TextIO] = None) -> None:
    reader: Optional[asyncio.Task] = None
    if stdin is not None:
        reader = asyncio.create_task(_read_stdin(app.observer, app.clock, stdin))
    try:
        await app.scheduler.run(max_ticks=max_ticks)
    finally:
        if reader is not None:
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)
        await app.observer.drain()


async def _run_replay_mode(
    app: App,
    clock: ReplayClock,
    csv_path: str,
    period_seconds: float,
    max_ticks: Optional[int],
) -> None:
    ticks = 0
    next_tick_at: Optional[datetime] = None
    period = timedelta(seconds=period_seconds)

    async def handle_row(message: str, at: datetime) -> None:
        nonlocal ticks, next_tick_at
        if next_tick_at is None:
            next_tick_at = at
        # catch the simulated timer up to this row
        while next_tick_at <= at and (max_ticks is None or ticks < max_ticks):
            clock.advance_to(next_tick_at)
            await app.scheduler.tick()
            ticks += 1
            next_tick_at += period
        clock.advance_to(at)
        app.observer.handle_message(message, at)
        await app.observer.drain()

    observer = CsvReplayObserver(CsvReplayConfig(csv_path=csv_path, mode="asap"))
    await observer.run(handle_row)
    logger.info("replay done: %d tick(s) over %s", ticks, csv_path)


async def main() -> None:
    parser = argparse.ArgumentParser(description="Run the odyssey hydration nudge loop.")
    parser.add_argument("--mode", choices=["live", "replay"], default="live", help="Which source to use.")
    parser.add_argument("--csv-path", default="dev/replay/transport_log.csv", help="CSV to replay in replay mode.")
    parser.add_argument("--period-seconds", type=float, default=None, help="Seconds between ticks.")
    parser.add_argument("--max-ticks", type=int, default=None, help="Run at most this many ticks.")
    parser.add_argument("--lm", default=None, help="Language model identifier for dspy (e.g. 'openai/gpt-4o-mini').")
    parser.add_argument(
        "--backend",
        choices=["dspy", "tagged", "rules"],
        default="dspy",
        help=(
            "'dspy' for structured decisions, 'tagged' for raw [decision: ...] replies, "
            "'rules' for the deterministic faucet/keyboard rules (no LM)."
        ),
    )
    parser.add_argument("--activity-nudges", action="store_true", help="Enable the activity-triggered path.")
    parser.add_argument("--stdin", action="store_true", help="In live mode, read link messages from stdin.")
    parser.add_argument("--output-csv", default=None, help="If set, append delivered nudges to this CSV.")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()

    load_dotenv()
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings = config_loader.get_settings()
    lm_cfg = settings["lm"]
    sched_cfg = settings["scheduler"]

    if args.backend != "rules":
        # configure DSPy LM
        model = args.lm or lm_cfg["model"]
        dspy.configure(
            lm=dspy.LM(
                model,
                api_key=os.getenv("OPENAI_API_KEY"),
                temperature=float(lm_cfg["temperature"]),
                max_tokens=int(lm_cfg["max_tokens"]),
            )
        )
        logger.info("configured dspy LM: %s", model)

    period = args.period_seconds or float(sched_cfg["period_seconds"])
    activity_nudges = args.activity_nudges or bool(sched_cfg["activity_nudges_enabled"])

    clock: Clock = ReplayClock() if args.mode == "replay" else SystemClock()
    app = App(
        settings=settings,
        store=open_default_store(),
        clock=clock,
        reasoner=_build_reasoner(args.backend, settings),
        sink=_build_sink(args.output_csv),
        period_seconds=period,
        activity_nudges=activity_nudges,
    )

    try:
        if args.mode == "live":
            logger.info("starting in live mode")
            await _run_live_mode(app, args.max_ticks, sys.stdin if args.stdin else None)
        else:
            logger.info("starting in replay mode (%s)", args.csv_path)
            await _run_replay_mode(app, clock, args.csv_path, period, args.max_ticks)
    finally:
        app.close()


def cli() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    cli()

# Example usage:
#   python -m odyssey.main --mode live --period-seconds 60 --output-csv dev/nudges.csv
#   python -m odyssey.main --mode replay --csv-path dev/replay/transport_log.csv --backend tagged --log-level DEBUG
