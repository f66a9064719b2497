"""
tenancy_sdk.tier1_runtime.clock
────────────────────────────────
Mockable time source. Record timestamps, membership join dates, invitation
expiry and the monthly job window all read the time from here, so tests can
freeze it.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable


class Clock:
    """Mockable clock. Pass *now_fn* to control time in tests."""

    def __init__(self, now_fn: Callable[[], datetime] | None = None) -> None:
        self._now_fn = now_fn or (lambda: datetime.now(tz=timezone.utc))

    def now(self) -> datetime:
        """Return the current UTC datetime."""
        return self._now_fn()

    def timestamp(self) -> float:
        """Return the current Unix timestamp (float seconds)."""
        return self.now().timestamp()

    def month_start(self) -> datetime:
        """Midnight UTC on the first day of the current month."""
        return self.now().replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    def freeze(self, dt: datetime) -> "Clock":
        """Return a new Clock frozen at the given datetime."""
        return Clock(now_fn=lambda: dt)


class SteppingClock(Clock):
    """Frozen clock that advances by *step* seconds on every read."""

    def __init__(self, start: datetime, step: float = 1.0) -> None:
        self._current = start.timestamp()
        self._step = step
        super().__init__(now_fn=self._tick)

    def _tick(self) -> datetime:
        value = datetime.fromtimestamp(self._current, tz=timezone.utc)
        self._current += self._step
        return value


# ── Module-level singleton ─────────────────────────────────────────────────

_clock = Clock()


def get_clock() -> Clock:
    """Return the global clock instance."""
    return _clock


def set_clock(clock: Clock) -> None:
    """Replace the global clock (use in tests)."""
    global _clock
    _clock = clock


def now() -> datetime:
    """Return the current UTC datetime."""
    return _clock.now()


__all__ = ["Clock", "SteppingClock", "get_clock", "set_clock", "now"]
