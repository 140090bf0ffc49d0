"""Tests for the watch state machine and the asyncio actor around it."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from src.monitor.models import TriggerKind, WatchConfig, WatchStatus
from src.monitor.watch import Watch, WatchEvent, WatchState, WatchTimeoutError
from tests.conftest import T0, FakeClock, RecordingExpiry, wait_until


def _state(trigger: TriggerKind, interval: float = 10.0, **status) -> WatchState:
    return WatchState(WatchConfig(trigger=trigger, interval=interval), WatchStatus(**status), T0)


def _at(seconds: float):
    return T0 + timedelta(seconds=seconds)


# ── WatchState ───────────────────────────────────────────────────────────────

class TestWatchStateInit:
    def test_fresh_watch_due_one_interval_after_creation(self) -> None:
        state = _state(TriggerKind.POST)
        assert state.last_seen is None
        assert state.due == _at(10)
        assert state.initial_delay(T0) == 10.0

    def test_loaded_last_seen_sets_due(self) -> None:
        state = _state(TriggerKind.POST, last_seen=_at(-4))
        assert state.due == _at(6)
        assert state.initial_delay(T0) == 6.0

    def test_overdue_watch_has_negative_delay(self) -> None:
        state = _state(TriggerKind.MANUAL, last_seen=_at(-25))
        assert state.initial_delay(T0) == -15.0

    def test_missed_reports_start_at_zero(self) -> None:
        state = _state(TriggerKind.POST, last_seen=_at(-100), interval_mean=12.0)
        snap = state.snapshot()
        assert snap.missed_reports == 0
        assert snap.interval_mean == 12.0

    def test_unset_interval_defaults_to_thirty_seconds(self) -> None:
        state = WatchState(WatchConfig(trigger=TriggerKind.POST, interval=0), WatchStatus(), T0)
        assert state.due == _at(30)


class TestWatchStateExpire:
    @pytest.mark.parametrize("trigger", [TriggerKind.POST, TriggerKind.MANUAL])
    def test_missed_reports_count_each_expiry(self, trigger: TriggerKind) -> None:
        state = _state(trigger)
        for n in range(1, 6):
            state.expire(_at(10 * n))
            snap = state.snapshot()
            assert snap.missed_reports == n
            assert snap.due == _at(10 * n + 10)
            assert snap.last_seen is None

    def test_periodic_expiry_is_the_signal(self) -> None:
        state = _state(TriggerKind.PERIODIC)
        for n in range(1, 6):
            state.expire(_at(10 * n))
            snap = state.snapshot()
            assert snap.last_seen == _at(10 * n)
            assert snap.missed_reports == 0
            assert snap.due == _at(10 * n + 10)

    def test_periodic_expiry_leaves_statistics_alone(self) -> None:
        state = _state(TriggerKind.PERIODIC, interval_mean=10.0, interval_stddev=1.0)
        state.expire(_at(10))
        state.expire(_at(20))
        snap = state.snapshot()
        assert (snap.interval_mean, snap.interval_stddev) == (10.0, 1.0)


class TestWatchStateKick:
    def test_first_kick_only_sets_baseline(self) -> None:
        state = _state(TriggerKind.POST)
        state.kick(_at(3))
        snap = state.snapshot()
        assert snap.last_seen == _at(3)
        assert snap.interval_mean == 0.0
        assert snap.interval_stddev == 0.0
        assert snap.due == _at(13)

    def test_kick_resets_missed_reports_and_due(self) -> None:
        state = _state(TriggerKind.MANUAL)
        for n in range(1, 4):
            state.expire(_at(10 * n))
        assert state.missed_reports == 3
        state.kick(_at(34))
        snap = state.snapshot()
        assert snap.missed_reports == 0
        assert snap.due == _at(44)

    def test_kick_feeds_measured_gap_to_estimator(self) -> None:
        state = _state(TriggerKind.POST, interval=60, last_seen=_at(-30))
        state.kick(T0)
        assert state.snapshot().interval_mean == pytest.approx(4.5)
        state.kick(_at(30))
        assert state.snapshot().interval_mean == pytest.approx(8.325)

    def test_snapshot_does_not_mutate(self) -> None:
        state = _state(TriggerKind.POST, last_seen=_at(-5))
        first = state.snapshot()
        assert state.snapshot() == first


# ── Watch actor ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestWatchActor:
    async def test_query_returns_initial_status(self, clock: FakeClock) -> None:
        watch = Watch("backup", WatchConfig(TriggerKind.POST, 60.0), now_provider=clock)
        watch.start()
        try:
            status = await watch.query()
            assert status.last_seen is None
            assert status.due == clock.now + timedelta(seconds=60)
            assert status.missed_reports == 0
        finally:
            await watch.stop()

    async def test_kick_updates_last_seen_and_due(self, clock: FakeClock) -> None:
        watch = Watch("backup", WatchConfig(TriggerKind.POST, 60.0), now_provider=clock)
        watch.start()
        try:
            clock.advance(5)
            await watch.kick()
            status = await watch.query()
            assert status.last_seen == clock.now
            assert status.due == clock.now + timedelta(seconds=60)
        finally:
            await watch.stop()

    async def test_missed_reports_grow_then_kick_resets(self, clock: FakeClock) -> None:
        expiry = RecordingExpiry()
        watch = Watch(
            "chores", WatchConfig(TriggerKind.MANUAL, 0.05), expiry=expiry, now_provider=clock,
        )
        watch.start()
        try:
            async def missed_three() -> bool:
                return (await watch.query()).missed_reports >= 3

            await wait_until(missed_three)
            assert [c[1].missed_reports for c in expiry.calls[:3]] == [1, 2, 3]
            assert all(endpoint == "chores" for endpoint, _ in expiry.calls)

            clock.advance(1)
            await watch.kick()
            status = await watch.query()
            assert status.missed_reports == 0
            assert status.due == clock.now + timedelta(seconds=0.05)
        finally:
            await watch.stop()

    async def test_periodic_watch_never_misses(self, clock: FakeClock) -> None:
        expiry = RecordingExpiry()
        watch = Watch("tick", WatchConfig(TriggerKind.PERIODIC, 0.05), expiry=expiry, now_provider=clock)
        watch.start()
        try:
            async def fired_twice() -> bool:
                return len(expiry.calls) >= 2

            await wait_until(fired_twice)
            status = await watch.query()
            assert status.missed_reports == 0
            assert status.last_seen == clock.now
            assert all(call[1].missed_reports == 0 for call in expiry.calls)
        finally:
            await watch.stop()

    async def test_overdue_saved_status_expires_immediately(self, clock: FakeClock) -> None:
        saved = WatchStatus(last_seen=clock.now - timedelta(hours=2))
        watch = Watch("backup", WatchConfig(TriggerKind.POST, 3600.0), saved, now_provider=clock)
        watch.start()
        try:
            async def missed_one() -> bool:
                return (await watch.query()).missed_reports == 1

            await wait_until(missed_one, timeout=1.0)
            status = await watch.query()
            assert status.due == clock.now + timedelta(hours=1)
        finally:
            await watch.stop()

    async def test_kicks_keep_a_short_watch_from_expiring(self, clock: FakeClock) -> None:
        expiry = RecordingExpiry()
        watch = Watch("backup", WatchConfig(TriggerKind.POST, 0.2), expiry=expiry, now_provider=clock)
        watch.start()
        try:
            for _ in range(5):
                await asyncio.sleep(0.05)
                await watch.kick()
            assert expiry.calls == []
            assert (await watch.query()).missed_reports == 0
        finally:
            await watch.stop()

    async def test_failing_expiry_handler_does_not_kill_actor(self, clock: FakeClock) -> None:
        class Exploding:
            calls = 0

            def invoke(self, endpoint, status):
                Exploding.calls += 1
                raise RuntimeError("boom")

        watch = Watch("backup", WatchConfig(TriggerKind.POST, 0.03), expiry=Exploding(), now_provider=clock)
        watch.start()
        try:
            async def missed_two() -> bool:
                return (await watch.query()).missed_reports >= 2

            await wait_until(missed_two)
            assert Exploding.calls >= 2
        finally:
            await watch.stop()

    async def test_unstarted_watch_times_out(self) -> None:
        watch = Watch("idle", WatchConfig(TriggerKind.POST, 60.0), reply_timeout=0.05)
        with pytest.raises(WatchTimeoutError):
            await watch.query()
        with pytest.raises(WatchTimeoutError):
            await watch.kick()

    async def test_send_routes_events(self, clock: FakeClock) -> None:
        watch = Watch("backup", WatchConfig(TriggerKind.POST, 60.0), now_provider=clock)
        watch.start()
        try:
            assert await watch.send(WatchEvent.KICK) is None
            status = await watch.send(WatchEvent.QUERY)
            assert status.last_seen == clock.now
        finally:
            await watch.stop()

    async def test_start_twice_is_an_error(self) -> None:
        watch = Watch("backup", WatchConfig(TriggerKind.POST, 60.0))
        watch.start()
        try:
            with pytest.raises(RuntimeError):
                watch.start()
        finally:
            await watch.stop()
