# src/odyssey/hydration/ledger.py
"""
Per-day hydration ledger.

One HydrationState per local calendar day, keyed by `date_key`. Every
mutation is read-modify-persist against the key-value store. If the store
fails we log and keep going on the in-memory state. A day that could not be
read is never written back blindly: changes made meanwhile are replayed on top
of the stored day once a read succeeds.

Crossing midnight makes the cached day stale; the next access lazily starts a
fresh, empty day with the default goal.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Callable, List, Optional, Tuple

import pydantic

from odyssey.core.clock import Clock, SystemClock, date_key
from odyssey.core.errors import InvariantViolation, StoreError
from odyssey.store.kv import HYDRATION_STORAGE_KEY, HYDRATION_WINDOW_KEY, KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_DAILY_GOAL_ML = 2000


class HydrationEntry(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(frozen=True)

    id: uuid.UUID = pydantic.Field(default_factory=uuid.uuid4)
    amount_ml: int = pydantic.Field(gt=0)
    timestamp: datetime


class HydrationState(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(frozen=True)

    date_key: str
    entries: Tuple[HydrationEntry, ...] = ()
    daily_goal_ml: int = DEFAULT_DAILY_GOAL_ML
    last_prompt_at: Optional[datetime] = None

    @property
    def total_ml(self) -> int:
        return sum(e.amount_ml for e in self.entries)

    @property
    def remaining_ml(self) -> int:
        return max(self.daily_goal_ml - self.total_ml, 0)

    @property
    def last_drink_at(self) -> Optional[datetime]:
        if not self.entries:
            return None
        return max(e.timestamp for e in self.entries)

    def sorted_entries(self) -> Tuple[HydrationEntry, ...]:
        return tuple(sorted(self.entries, key=lambda e: e.timestamp))


class HydrationWindow(pydantic.BaseModel):
    """Hours of the day over which the daily goal should be spread."""

    model_config = pydantic.ConfigDict(frozen=True)

    start_hour: int = 8
    end_hour: int = 22

    @pydantic.model_validator(mode="after")
    def _check_hours(self) -> "HydrationWindow":
        for hour in (self.start_hour, self.end_hour):
            if not 0 <= hour <= 23:
                raise ValueError(f"window hours must be within 0-23, got {hour}")
        if self.start_hour >= self.end_hour:
            raise ValueError(
                f"window start ({self.start_hour}) must be before end ({self.end_hour})"
            )
        return self

    @property
    def total_minutes(self) -> int:
        return (self.end_hour - self.start_hour) * 60


DEFAULT_WINDOW = HydrationWindow(start_hour=8, end_hour=22)


def make_window(start_hour: int, end_hour: int) -> HydrationWindow:
    """Build a window, surfacing bad hours as InvariantViolation."""
    try:
        return HydrationWindow(start_hour=start_hour, end_hour=end_hour)
    except pydantic.ValidationError as exc:
        raise InvariantViolation(str(exc)) from exc


class HydrationLedger:
    def __init__(
        self,
        store: KeyValueStore,
        *,
        clock: Optional[Clock] = None,
        default_goal_ml: int = DEFAULT_DAILY_GOAL_ML,
        default_window: HydrationWindow = DEFAULT_WINDOW,
    ) -> None:
        if default_goal_ml <= 0:
            raise InvariantViolation("default goal must be positive")
        self.store = store
        self.clock = clock or SystemClock()
        self.default_goal_ml = default_goal_ml
        self.default_window = default_window
        self._state: Optional[HydrationState] = None
        self._window: Optional[HydrationWindow] = None
        # False while the stored document could not be read. Changes made in
        # that state are queued and replayed on top of the stored day once a
        # read succeeds, so nothing is written over data we never saw.
        self._synced = False
        self._pending: List[Callable[[HydrationState], HydrationState]] = []

    # ------------------------------------------------------------------
    # day state
    # ------------------------------------------------------------------
    def load_today(self) -> HydrationState:
        today = date_key(self.clock.now())

        if self._state is not None and self._state.date_key == today and self._synced:
            return self._state

        if self._state is not None and self._state.date_key != today and self._pending:
            logger.warning(
                "dropping %d unsaved hydration change(s) for %s", len(self._pending), self._state.date_key
            )
            self._pending.clear()

        readable, stored = self._read_stored_state()
        if not readable:
            self._synced = False
            if self._state is None or self._state.date_key != today:
                self._state = self._fresh(today)
            return self._state

        self._synced = True
        if stored is not None and stored.date_key == today:
            state = stored
        else:
            logger.info("starting fresh hydration day %s", today)
            state = self._fresh(today)

        if self._pending or state is not stored:
            for op in self._pending:
                state = op(state)
            if self._pending:
                logger.info("replaying %d hydration change(s) made while the store was unreadable", len(self._pending))
            self._pending.clear()
            return self._save(state)

        self._state = state
        return state

    def log(self, amount_ml: int, at: Optional[datetime] = None) -> HydrationState:
        if amount_ml <= 0:
            raise InvariantViolation(f"intake amount must be positive, got {amount_ml}")
        try:
            entry = HydrationEntry(amount_ml=amount_ml, timestamp=at or self.clock.now())
        except pydantic.ValidationError as exc:
            raise InvariantViolation(f"invalid intake amount {amount_ml!r}: {exc}") from exc
        state = self._apply(lambda s: s.model_copy(update={"entries": s.entries + (entry,)}))
        logger.info("logged %d ml (total today %d ml)", entry.amount_ml, state.total_ml)
        return state

    def set_goal(self, goal_ml: int) -> HydrationState:
        if goal_ml <= 0:
            raise InvariantViolation(f"daily goal must be positive, got {goal_ml}")
        return self._apply(lambda s: s.model_copy(update={"daily_goal_ml": goal_ml}))

    def record_prompt_sent(self, at: Optional[datetime] = None) -> HydrationState:
        sent_at = at or self.clock.now()
        return self._apply(lambda s: s.model_copy(update={"last_prompt_at": sent_at}))

    def reset_prompt_cooldown(self) -> HydrationState:
        return self._apply(lambda s: s.model_copy(update={"last_prompt_at": None}))

    def reset_today(self) -> HydrationState:
        return self._apply(lambda s: self._fresh(s.date_key))

    # ------------------------------------------------------------------
    # window configuration
    # ------------------------------------------------------------------
    def get_window(self) -> HydrationWindow:
        if self._window is not None:
            return self._window
        window = self.default_window
        try:
            raw = self.store.get(HYDRATION_WINDOW_KEY)
        except StoreError:
            logger.warning("could not read hydration window; using default", exc_info=True)
            return window
        if raw:
            try:
                cfg = pydantic.TypeAdapter(dict).validate_json(raw)
                window = HydrationWindow(start_hour=cfg["start"], end_hour=cfg["end"])
            except (pydantic.ValidationError, KeyError, TypeError):
                logger.warning("stored hydration window %r is invalid; using default", raw)
        self._window = window
        return window

    def set_window(self, start_hour: int, end_hour: int) -> HydrationWindow:
        window = make_window(start_hour, end_hour)
        self._window = window
        payload = pydantic.TypeAdapter(dict).dump_json({"start": start_hour, "end": end_hour})
        try:
            self.store.set(HYDRATION_WINDOW_KEY, payload.decode("utf-8"))
        except StoreError:
            logger.warning("could not persist hydration window; keeping it in memory", exc_info=True)
        return window

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------
    def _fresh(self, key: str) -> HydrationState:
        return HydrationState(date_key=key, daily_goal_ml=self.default_goal_ml)

    def _apply(self, op: Callable[[HydrationState], HydrationState]) -> HydrationState:
        state = op(self.load_today())
        if self._synced:
            return self._save(state)
        self._pending.append(op)
        self._state = state
        logger.warning("hydration store unreadable; change kept in memory until it recovers")
        return state

    def _read_stored_state(self) -> Tuple[bool, Optional[HydrationState]]:
        """Return (readable, state). A missing or corrupt document is readable."""
        try:
            raw = self.store.get(HYDRATION_STORAGE_KEY)
        except StoreError:
            logger.warning("could not read hydration state; using in-memory state", exc_info=True)
            return False, None
        if not raw:
            return True, None
        try:
            return True, HydrationState.model_validate_json(raw)
        except pydantic.ValidationError:
            logger.warning("stored hydration state is unreadable; starting over")
            return True, None

    def _save(self, state: HydrationState) -> HydrationState:
        self._state = state
        try:
            self.store.set(HYDRATION_STORAGE_KEY, state.model_dump_json())
        except StoreError:
            logger.warning("could not persist hydration state; keeping it in memory", exc_info=True)
        return state
