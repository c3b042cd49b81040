import asyncio
import datetime as dt

from examiner.engine.clock import DeadlineClock

from tests.fakes import T0, FakeNow, wait_until


def test_untimed_clock_never_fires():
    async def _run():
        now = FakeNow()
        fired = []

        async def on_timeout():
            fired.append(now())

        clock = DeadlineClock(T0, None, on_timeout=on_timeout, now=now)
        clock.start()
        assert not clock.running
        now.advance(10 * 3600)
        assert clock.deadline is None
        assert clock.remaining() is None
        assert clock.remaining_seconds() is None
        assert not clock.expired()
        assert await clock.poll() is False
        assert fired == []

    asyncio.run(_run())


def test_zero_minutes_means_untimed():
    clock = DeadlineClock(T0, 0, now=FakeNow())
    assert clock.deadline is None


def test_clock_fires_at_deadline_and_not_before():
    async def _run():
        now = FakeNow()
        fired = []

        async def on_timeout():
            fired.append(now())

        clock = DeadlineClock(T0, 1, on_timeout=on_timeout, now=now)
        assert clock.deadline == T0 + dt.timedelta(minutes=1)
        now.advance(59.5)
        assert clock.remaining_seconds() == 0
        assert await clock.poll() is False
        assert fired == []

        now.advance(0.5)
        assert await clock.poll() is True
        assert fired == [T0 + dt.timedelta(seconds=60)]

        now.advance(120)
        assert await clock.poll() is False
        assert len(fired) == 1

    asyncio.run(_run())


def test_remaining_is_derived_from_start_and_clamped():
    now = FakeNow(T0 + dt.timedelta(seconds=30))
    clock = DeadlineClock(T0, 2, now=now)
    assert clock.remaining_seconds() == 90
    now.advance(0.4)
    assert clock.remaining_seconds() == 89
    now.advance(3600)
    assert clock.remaining() == dt.timedelta(0)
    assert clock.remaining_seconds() == 0
    assert clock.expired()


def test_naive_start_is_treated_as_utc():
    naive = T0.replace(tzinfo=None)
    clock = DeadlineClock(naive, 5, now=FakeNow())
    assert clock.remaining_seconds() == 300


def test_running_clock_fires_exactly_once():
    async def _run():
        now = FakeNow()
        fired = []

        async def on_timeout():
            fired.append(1)

        clock = DeadlineClock(T0, 1, on_timeout=on_timeout, now=now, tick_s=0.005)
        clock.start()
        clock.start()
        assert clock.running
        await asyncio.sleep(0.02)
        assert fired == []

        now.advance(61)
        assert await wait_until(lambda: clock.fired)
        await asyncio.sleep(0.02)
        assert fired == [1]
        assert not clock.running
        clock.start()
        assert not clock.running

    asyncio.run(_run())


def test_stop_cancels_the_countdown():
    async def _run():
        now = FakeNow()
        fired = []

        async def on_timeout():
            fired.append(1)

        clock = DeadlineClock(T0, 1, on_timeout=on_timeout, now=now, tick_s=0.005)
        clock.start()
        clock.stop()
        now.advance(120)
        await asyncio.sleep(0.03)
        assert fired == []
        assert not clock.fired

    asyncio.run(_run())


def test_start_delay_postpones_first_check():
    async def _run():
        now = FakeNow(T0 + dt.timedelta(minutes=5))
        fired = []

        async def on_timeout():
            fired.append(1)

        clock = DeadlineClock(T0, 1, on_timeout=on_timeout, now=now, tick_s=0.005)
        clock.start(delay=0.1)
        await asyncio.sleep(0.02)
        assert fired == []
        assert await wait_until(lambda: bool(fired))
        clock.stop()

    asyncio.run(_run())
