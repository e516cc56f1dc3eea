"""Tests for the elapsed-time engine."""

import asyncio
from datetime import timedelta

from routine_tracker.services.elapsed import (
    ElapsedTimer,
    TimerStatus,
    format_duration,
    format_elapsed,
)
from tests.conftest import FakeClock


def test_format_elapsed() -> None:
    assert format_elapsed(0) == "0:00"
    assert format_elapsed(59) == "0:59"
    assert format_elapsed(2700) == "45:00"
    assert format_elapsed(3599) == "59:59"
    assert format_elapsed(3600) == "1h 0min"
    assert format_elapsed(5459) == "1h 30min"


def test_format_duration() -> None:
    assert format_duration(45) == "45s"
    assert format_duration(2700) == "45min"
    assert format_duration(2705) == "45min 5s"
    assert format_duration(3660) == "1h 1min"


def test_elapsed_is_derived_from_start_instant() -> None:
    clock = FakeClock()
    timer = ElapsedTimer(clock=clock)
    timer.arm(clock.now - timedelta(minutes=10))

    # Simulates the host being suspended: no ticks happen in between.
    clock.advance(3 * 3600)

    assert timer.elapsed_seconds == 3 * 3600 + 600
    assert timer.display == "3h 10min"


def test_restarted_timer_matches_running_one() -> None:
    clock = FakeClock()
    started_at = clock.now - timedelta(minutes=5)
    before_reload = ElapsedTimer(clock=clock)
    before_reload.arm(started_at)
    clock.advance(125)

    after_reload = ElapsedTimer(clock=clock)
    first_tick = after_reload.arm(started_at)

    assert first_tick == before_reload.elapsed_seconds == 425


def test_elapsed_rounds_down_and_never_negative() -> None:
    clock = FakeClock()
    timer = ElapsedTimer(clock=clock)

    timer.arm(clock.now - timedelta(seconds=59, milliseconds=900))
    assert timer.elapsed_seconds == 59

    timer.arm(clock.now + timedelta(seconds=30))
    assert timer.elapsed_seconds == 0


def test_pause_freezes_display_only() -> None:
    clock = FakeClock()
    started_at = clock.now - timedelta(seconds=60)
    timer = ElapsedTimer(clock=clock)
    timer.arm(started_at)

    timer.pause()
    clock.advance(30)

    assert timer.status is TimerStatus.PAUSED
    assert timer.elapsed_seconds == 60
    assert timer.started_at == started_at

    timer.resume()

    assert timer.status is TimerStatus.RUNNING
    assert timer.elapsed_seconds == 90


def test_idle_timer_reports_zero() -> None:
    timer = ElapsedTimer(clock=FakeClock())

    assert timer.status is TimerStatus.IDLE
    assert timer.elapsed_seconds == 0
    assert timer.display == "0:00"


def test_run_ticks_until_disarmed() -> None:
    clock = FakeClock()
    ticks: list[int] = []
    timer = ElapsedTimer(clock=clock, tick_interval_seconds=0.01, on_tick=ticks.append)

    async def scenario() -> None:
        timer.arm(clock.now - timedelta(minutes=2))
        await asyncio.sleep(0.05)
        clock.advance(1)
        await asyncio.sleep(0.1)
        timer.disarm()

    asyncio.run(scenario())

    assert len(ticks) >= 3
    assert ticks[0] == 120
    assert ticks[-1] == 121
    assert timer.status is TimerStatus.IDLE
