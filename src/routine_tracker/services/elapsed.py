"""Live elapsed-time display derived from a persisted start instant."""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

_SECONDS_PER_MINUTE = 60
_SECONDS_PER_HOUR = 3600


class TimerStatus(str, Enum):
    """Display state of an elapsed timer."""

    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"


def utc_now() -> datetime:
    """Return the current UTC instant."""
    return datetime.now(tz=UTC)


def format_elapsed(seconds: int) -> str:
    """Format a live timer value as ``Nh Mmin`` or ``M:SS``."""
    seconds = max(0, int(seconds))
    hours = seconds // _SECONDS_PER_HOUR
    minutes = (seconds % _SECONDS_PER_HOUR) // _SECONDS_PER_MINUTE
    secs = seconds % _SECONDS_PER_MINUTE
    if hours > 0:
        return f"{hours}h {minutes}min"
    return f"{minutes}:{secs:02d}"


def format_duration(seconds: int) -> str:
    """Format a recorded duration for summaries."""
    seconds = max(0, int(seconds))
    if seconds < _SECONDS_PER_MINUTE:
        return f"{seconds}s"
    hours = seconds // _SECONDS_PER_HOUR
    minutes = (seconds % _SECONDS_PER_HOUR) // _SECONDS_PER_MINUTE
    secs = seconds % _SECONDS_PER_MINUTE
    if hours > 0:
        return f"{hours}h {minutes}min"
    return f"{minutes}min {secs}s" if secs > 0 else f"{minutes}min"


@dataclass
class ElapsedTimer:
    """Derives elapsed seconds as ``now - started_at`` on every read and tick.

    Nothing is accumulated between ticks, so a timer armed with the same
    ``started_at`` after a reload, or after the process was suspended, shows
    the correct value on its first tick. Pausing only freezes the display;
    ``started_at`` is left untouched and resuming jumps back to the real
    elapsed time.
    """

    clock: Callable[[], datetime] = utc_now
    tick_interval_seconds: float = 1.0
    on_tick: Callable[[int], None] | None = None
    started_at: datetime | None = None
    status: TimerStatus = TimerStatus.IDLE
    _frozen_seconds: int = field(default=0, init=False, repr=False)
    _task: asyncio.Task | None = field(default=None, init=False, repr=False)

    @property
    def elapsed_seconds(self) -> int:
        """Return whole elapsed seconds, rounded down and never negative."""
        if self.started_at is None:
            return 0
        if self.status is TimerStatus.PAUSED:
            return self._frozen_seconds
        return self._compute()

    @property
    def display(self) -> str:
        """Return the formatted live value."""
        return format_elapsed(self.elapsed_seconds)

    def arm(self, started_at: datetime) -> int:
        """Start displaying time elapsed since ``started_at``."""
        self._stop_ticking()
        self.started_at = started_at
        self.status = TimerStatus.RUNNING
        seconds = self.tick()
        self._start_ticking()
        return seconds

    def disarm(self) -> None:
        """Stop ticking and forget the start instant."""
        self._stop_ticking()
        self.started_at = None
        self.status = TimerStatus.IDLE
        self._frozen_seconds = 0

    def pause(self) -> None:
        """Freeze the display without touching ``started_at``."""
        if self.status is not TimerStatus.RUNNING:
            return
        self._frozen_seconds = self._compute()
        self.status = TimerStatus.PAUSED
        self._stop_ticking()

    def resume(self) -> None:
        """Resume the display from the real elapsed time."""
        if self.status is not TimerStatus.PAUSED:
            return
        self.status = TimerStatus.RUNNING
        self.tick()
        self._start_ticking()

    def tick(self) -> int:
        """Recompute the elapsed seconds and notify the listener."""
        seconds = self.elapsed_seconds
        if self.on_tick is not None and self.status is TimerStatus.RUNNING:
            self.on_tick(seconds)
        return seconds

    async def run(self) -> None:
        """Tick at a fixed cadence until paused or disarmed."""
        while self.status is TimerStatus.RUNNING:
            await asyncio.sleep(self.tick_interval_seconds)
            if self.status is not TimerStatus.RUNNING:
                break
            self.tick()

    def _compute(self) -> int:
        if self.started_at is None:
            return 0
        delta = (self.clock() - self.started_at).total_seconds()
        return max(0, int(delta))

    def _start_ticking(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No event loop: values are still derived on every read.
            return
        self._task = loop.create_task(self.run())

    def _stop_ticking(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
