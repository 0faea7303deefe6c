"""
World clock for a night shift.

In-game time is whole minutes since midnight; a night runs from
`start_time_minutes` to `end_time_minutes` (which may pass 24:00).
Real time is fed in through update(delta_seconds) on every tick.

The clock also decides when the night is over (time up, or every call
handled) and fires the scenario-ended callbacks exactly once.
"""

from __future__ import annotations

import logging
from typing import Callable

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60


def format_time(time_minutes: int) -> str:
    """Minutes since midnight as HH:MM, wrapping past 24:00."""
    adjusted = time_minutes % MINUTES_PER_DAY
    return f"{adjusted // 60:02d}:{adjusted % 60:02d}"


def parse_time(text: str) -> int:
    """HH:MM as minutes since midnight. Malformed input gives 0."""
    if not text:
        return 0
    parts = text.strip().split(":")
    if len(parts) != 2:
        logger.warning(f"Invalid time format: {text!r}")
        return 0
    try:
        hours, minutes = int(parts[0]), int(parts[1])
    except ValueError:
        logger.warning(f"Could not parse time: {text!r}")
        return 0
    return hours * 60 + minutes


class WorldClock:
    """
    Night clock and end-of-night tracker.

    Args:
        start_time_minutes: Minute the night begins
        end_time_minutes: Minute the night is over
        real_seconds_per_game_minute: Wall seconds per in-game minute
        ending_resolver: Called to produce the ending id once the night is over
    """

    def __init__(
        self,
        start_time_minutes: int = 0,
        end_time_minutes: int = 360,
        real_seconds_per_game_minute: float = 1.0,
        ending_resolver: Callable[[], str] | None = None,
    ):
        if real_seconds_per_game_minute <= 0:
            raise ValueError("real_seconds_per_game_minute must be positive")
        self.start_time_minutes = start_time_minutes
        self.end_time_minutes = end_time_minutes
        self.real_seconds_per_game_minute = real_seconds_per_game_minute
        self._ending_resolver = ending_resolver

        self._current = start_time_minutes
        self._accumulated = 0.0
        self._running = False
        self._paused = False
        self._calls_complete = False
        self._ended_with: str | None = None
        self._end_callbacks: list[Callable[[str], None]] = []
        self._time_callbacks: list[Callable[[int], None]] = []

    # ─── Properties ──────────────────────────────────────────────

    @property
    def current_time_minutes(self) -> int:
        return self._current

    @property
    def formatted_time(self) -> str:
        return format_time(self._current)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def is_time_up(self) -> bool:
        return self._current >= self.end_time_minutes

    @property
    def remaining_minutes(self) -> int:
        return max(0, self.end_time_minutes - self._current)

    @property
    def is_night_over(self) -> bool:
        return self.is_time_up or self._calls_complete

    @property
    def has_ended(self) -> bool:
        return self._ended_with is not None

    @property
    def ending_id(self) -> str | None:
        return self._ended_with

    # ─── Control ─────────────────────────────────────────────────

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._paused = False
        self._accumulated = 0.0
        logger.info(f"Clock started at {self.formatted_time}")

    def pause(self) -> None:
        if self._running and not self._paused:
            self._paused = True

    def resume(self) -> None:
        if self._running and self._paused:
            self._paused = False

    def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        self._paused = False
        logger.info(f"Clock stopped at {self.formatted_time}")

    def set_time(self, time_minutes: int) -> None:
        """Jump to a minute (used when restoring a save)."""
        previous = self._current
        self._current = time_minutes
        self._accumulated = 0.0
        if previous != time_minutes:
            self._notify_time()

    def advance_time(self, minutes: int) -> None:
        if minutes <= 0:
            return
        self._current += minutes
        self._notify_time()

    def update(self, delta_seconds: float) -> int:
        """
        Feed real time into the clock.

        Returns the number of in-game minutes that elapsed. Stops the
        clock when time runs out.
        """
        if not self._running or self._paused or self.is_time_up:
            return 0

        elapsed = 0
        self._accumulated += delta_seconds
        while self._accumulated >= self.real_seconds_per_game_minute:
            self._accumulated -= self.real_seconds_per_game_minute
            self._current += 1
            elapsed += 1
            self._notify_time()
            if self.is_time_up:
                logger.info(f"Time up at {self.formatted_time}")
                self.stop()
                break
        return elapsed

    def on_time_changed(self, callback: Callable[[int], None]) -> None:
        if callback not in self._time_callbacks:
            self._time_callbacks.append(callback)

    # ─── Ending ──────────────────────────────────────────────────

    def mark_all_calls_complete(self) -> None:
        self._calls_complete = True

    def set_ending_resolver(self, resolver: Callable[[], str]) -> None:
        self._ending_resolver = resolver

    def on_scenario_ended(self, callback: Callable[[str], None]) -> None:
        if callback not in self._end_callbacks:
            self._end_callbacks.append(callback)

    def check_ending_conditions(self) -> str | None:
        """
        Ending id if the night is over, else None.

        Once the scenario has ended, the recorded ending is returned
        without resolving again.
        """
        if self._ended_with is not None:
            return self._ended_with
        if not self.is_night_over or self._ending_resolver is None:
            return None
        return self._ending_resolver()

    def end_scenario(self, ending_id: str) -> bool:
        """Record the ending and notify listeners. Only the first call counts."""
        if self._ended_with is not None:
            logger.debug(f"Scenario already ended with '{self._ended_with}'")
            return False
        self._ended_with = ending_id
        self.stop()
        logger.info(f"Scenario ended: {ending_id}")
        for callback in list(self._end_callbacks):
            callback(ending_id)
        return True

    def _notify_time(self) -> None:
        for callback in list(self._time_callbacks):
            callback(self._current)
