from __future__ import annotations

import asyncio

import pytest

from auto_reset import AUTO_RESET_INTERVAL, AutoResetScheduler


def test_default_interval_is_three_minutes():
    assert AUTO_RESET_INTERVAL == 180


def test_expiry_runs_callback_once_and_forgets_device(fake_loop):
    scheduler = AutoResetScheduler(loop=fake_loop)
    fired = []

    scheduler.trigger(1, lambda: fired.append(fake_loop.time()))
    assert scheduler.pending(1)

    fake_loop.advance(AUTO_RESET_INTERVAL)
    assert fired == [AUTO_RESET_INTERVAL]
    assert not scheduler.pending(1)
    assert len(scheduler) == 0


def test_retrigger_replaces_pending_timer(fake_loop):
    scheduler = AutoResetScheduler(loop=fake_loop)
    fired = []

    scheduler.trigger(1, lambda: fired.append(("first", fake_loop.time())))
    fake_loop.advance(60)
    scheduler.trigger(1, lambda: fired.append(("second", fake_loop.time())))

    assert len(fake_loop.active) == 1
    fake_loop.advance(1000)
    assert fired == [("second", 60 + AUTO_RESET_INTERVAL)]


def test_devices_are_independent(fake_loop):
    scheduler = AutoResetScheduler(loop=fake_loop, interval=10)
    fired = []

    scheduler.trigger(1, lambda: fired.append(1))
    fake_loop.advance(5)
    scheduler.trigger(2, lambda: fired.append(2))
    fake_loop.advance(5)

    assert fired == [1]
    assert scheduler.pending(2)


def test_cancel_all_never_runs_callbacks(fake_loop):
    scheduler = AutoResetScheduler(loop=fake_loop)
    fired = []
    scheduler.trigger(1, lambda: fired.append(1))
    scheduler.trigger(2, lambda: fired.append(2))

    scheduler.cancel_all()
    fake_loop.advance(1000)

    assert fired == []
    assert len(scheduler) == 0


def test_cancel_reports_whether_a_timer_was_pending(fake_loop):
    scheduler = AutoResetScheduler(loop=fake_loop)
    scheduler.trigger(1, lambda: None)

    assert scheduler.cancel(1) is True
    assert scheduler.cancel(1) is False


def test_failing_callback_is_logged_and_cleared(fake_loop, caplog):
    scheduler = AutoResetScheduler(loop=fake_loop)

    def boom():
        raise RuntimeError("publish failed")

    scheduler.trigger(0x123456, boom)
    fake_loop.advance(AUTO_RESET_INTERVAL)

    assert not scheduler.pending(0x123456)
    assert "123456" in caplog.text


@pytest.mark.asyncio
async def test_uses_running_loop_by_default():
    scheduler = AutoResetScheduler(interval=0.01)
    done = asyncio.Event()

    scheduler.trigger(7, done.set)
    await asyncio.wait_for(done.wait(), timeout=1)

    assert not scheduler.pending(7)
