"""
Countdown Engine - live "time remaining" until unlock

Three states per target:
    NO_LOCK   target == 0
    COUNTING  target in the future
    UNLOCKED  target <= now, or the ledger says so (sticky for the same target)

Design:
- Ticks come from a PeriodicTask (asyncio task + sleep loop), not a UI hook
- Ticking stops by itself once UNLOCKED, nothing left to decrement
- set_target() cancels the previous task before starting a new one,
  so there is never more than one timer per engine
- Client clock only, except that a ledger "unlocked" flag ends the countdown early
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .rules import VAULT_RULES

logger = logging.getLogger("piggybank.countdown")


class CountdownState(str, Enum):
    NO_LOCK = "no_lock"
    COUNTING = "counting"
    UNLOCKED = "unlocked"


@dataclass(frozen=True)
class CountdownReading:
    state: CountdownState
    target: int
    remaining: int       # seconds, never negative
    days: int = 0
    hours: int = 0
    minutes: int = 0
    seconds: int = 0
    text: str = ""


def split_duration(remaining: int) -> tuple[int, int, int, int]:
    """Seconds -> (days, hours, minutes, seconds). Negative input clamps to zero."""
    remaining = max(0, int(remaining))
    days = remaining // 86400
    hours = (remaining % 86400) // 3600
    minutes = (remaining % 3600) // 60
    seconds = remaining % 60
    return days, hours, minutes, seconds


def format_duration(remaining: int) -> str:
    """90061 -> '1d 1h 1m 1s'. All four parts are always shown."""
    days, hours, minutes, seconds = split_duration(remaining)
    return f"{days}d {hours}h {minutes}m {seconds}s"


def read_countdown(target: int, now: int) -> CountdownReading:
    if not target:
        return CountdownReading(
            state=CountdownState.NO_LOCK, target=0, remaining=0,
            text=VAULT_RULES.NO_LOCK_TEXT,
        )

    remaining = target - now
    if remaining <= 0:
        return CountdownReading(
            state=CountdownState.UNLOCKED, target=target, remaining=0,
            text=VAULT_RULES.UNLOCKED_TEXT,
        )

    days, hours, minutes, seconds = split_duration(remaining)
    return CountdownReading(
        state=CountdownState.COUNTING,
        target=target,
        remaining=remaining,
        days=days,
        hours=hours,
        minutes=minutes,
        seconds=seconds,
        text=format_duration(remaining),
    )


# ============================================================
# PERIODIC TASK
# ============================================================

class PeriodicTask:
    """
    Calls tick() every `interval` seconds on the running event loop.

    tick() returning False ends the loop. Exceptions from tick() are logged
    and the loop keeps going.

    Usage:
        task = PeriodicTask(1.0, engine_tick, name="countdown")
        task.start()   # must be called from inside a running loop
        ...
        task.stop()
    """

    def __init__(self, interval: float, tick: Callable[[], Optional[bool]], name: str = "periodic"):
        self.interval = interval
        self.name = name
        self._tick = tick
        self._task: Optional[asyncio.Task] = None
        self.tick_count: int = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        # A task left behind by a loop that already shut down has nothing to cancel.
        if task.get_loop().is_closed():
            return
        task.cancel()

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.tick_count += 1
            try:
                keep_going = self._tick()
            except Exception as e:
                logger.warning(f"{self.name}: tick failed: {e}", exc_info=True)
                continue
            if keep_going is False:
                logger.debug(f"{self.name}: finished after {self.tick_count} ticks")
                return


# ============================================================
# COUNTDOWN ENGINE
# ============================================================

class CountdownEngine:
    """
    Live countdown to an unlock timestamp.

    Usage:
        engine = CountdownEngine(on_tick=push_to_ui)
        engine.set_target(vault.unlock_time)   # inside the event loop
        engine.reading.text                    # "0d 23h 59m 58s"
        engine.stop()                          # on shutdown
    """

    def __init__(
        self,
        interval: float = VAULT_RULES.TICK_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
        on_tick: Optional[Callable[[CountdownReading], None]] = None,
    ):
        self._clock = clock
        self._on_tick = on_tick
        self._target: int = 0
        self._unlocked_latch: bool = False
        self._reading: CountdownReading = read_countdown(0, self._now())
        self._task = PeriodicTask(interval, self._tick, name="countdown")

    @property
    def target(self) -> int:
        return self._target

    @property
    def reading(self) -> CountdownReading:
        """Latest reading; resampled on access so it is correct even without ticks."""
        self._reading = self._sample()
        return self._reading

    @property
    def ticking(self) -> bool:
        return self._task.running

    def set_target(self, target: int, unlocked: bool = False) -> CountdownReading:
        """
        Replace the unlock target. Cancels the running timer first.

        unlocked=True marks the target as reached regardless of the local clock,
        for when the ledger already reports the vault unlocked.
        """
        target = int(target or 0)
        if target == self._target and self._task.running and not unlocked:
            return self._reading

        self._task.stop()
        if target != self._target:
            logger.debug(f"Countdown target {self._target} -> {target}")
            self._target = target
            self._unlocked_latch = False
        if unlocked and target:
            self._unlocked_latch = True
        self._reading = self._sample()
        self._emit(self._reading)

        if self._reading.state is CountdownState.COUNTING:
            self._start_ticking()
        return self._reading

    def stop(self) -> None:
        self._task.stop()

    def _start_ticking(self) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("Countdown: no running event loop, readings are on-demand only")
            return
        self._task.start()

    def _now(self) -> int:
        return int(self._clock())

    def _sample(self) -> CountdownReading:
        if self._unlocked_latch:
            return read_countdown(self._target, self._target)
        reading = read_countdown(self._target, self._now())
        if reading.state is CountdownState.UNLOCKED:
            self._unlocked_latch = True
        return reading

    def _tick(self) -> bool:
        previous = self._reading.state
        self._reading = self._sample()
        if previous is CountdownState.COUNTING and self._reading.state is CountdownState.UNLOCKED:
            logger.info(f"Countdown reached unlock time {self._target}")
        self._emit(self._reading)
        return self._reading.state is CountdownState.COUNTING

    def _emit(self, reading: CountdownReading) -> None:
        if self._on_tick is None:
            return
        try:
            self._on_tick(reading)
        except Exception as e:
            logger.warning(f"Countdown listener failed: {e}")
