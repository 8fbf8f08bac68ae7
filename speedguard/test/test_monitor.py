import asyncio
import math
import threading
from unittest.mock import MagicMock

import pytest
import redis
from conftest import FakeNotifier

from speedguard.models import (
    AppLifecycleState, LocationSample, MonitorStatus, PermissionStatus, ProviderUnavailableError,
    SampleAction,
)
from speedguard.monitor import SpeedMonitor, exceeds_threshold
from speedguard.providers import RedisStreamLocationProvider

FG = AppLifecycleState.FOREGROUND
BG = AppLifecycleState.BACKGROUND


def kmh_sample(kmh):
    return LocationSample(speed_mps=kmh / 3.6)


async def _process(monitor, *pairs):
    await monitor.start()
    outcomes = [await monitor.on_sample(sample, state) for sample, state in pairs]
    await monitor.wait_idle()
    return outcomes


def test_threshold_is_strict():
    assert exceeds_threshold(30.0) is False
    assert exceeds_threshold(30.1) is True
    assert exceeds_threshold(0.0) is False


def test_negative_speed_reports_zero(monitor, events):
    [outcome] = asyncio.run(_process(monitor, (LocationSample(speed_mps=-2.0), FG)))
    assert outcome.speed_kmh == 0.0
    assert events.received == [("liveUpdate", {"speedKmh": 0.0})]


def test_speed_converted_to_kmh(monitor, events):
    [outcome] = asyncio.run(_process(monitor, (LocationSample(speed_mps=10.0), FG)))
    assert outcome.speed_kmh == pytest.approx(36.0)
    assert events.received[0][1]["speedKmh"] == pytest.approx(36.0)


@pytest.mark.parametrize("kmh", [0.0, 12.0, 30.0, 30.1, 140.0])
def test_foreground_always_live_update(monitor, notifier, events, kmh):
    [outcome] = asyncio.run(_process(monitor, (kmh_sample(kmh), FG)))
    assert outcome.action is SampleAction.LIVE_UPDATE
    assert len(events.received) == 1
    assert events.received[0][0] == "liveUpdate"
    assert notifier.delivered == []


def test_background_just_above_threshold_alerts_once(monitor, notifier, events):
    [outcome] = asyncio.run(_process(monitor, (kmh_sample(30.1), BG)))
    assert outcome.action is SampleAction.BACKGROUND_ALERT
    assert outcome.speed_kmh == pytest.approx(30.1)
    assert len(notifier.delivered) == 1
    title, body = notifier.delivered[0]
    assert title == "Speed alert"
    assert "30.1 km/h" in body
    assert len(events.received) == 1
    name, payload = events.received[0]
    assert name == "backgroundAlert"
    assert payload["speedKmh"] == pytest.approx(30.1)


@pytest.mark.parametrize("mps", [0.0, -5.0, 8.0])
def test_background_below_threshold_does_nothing(monitor, notifier, events, mps):
    [outcome] = asyncio.run(_process(monitor, (LocationSample(speed_mps=mps), BG)))
    assert outcome.action is SampleAction.BELOW_THRESHOLD
    assert outcome.deliveries == []
    assert notifier.delivered == []
    assert events.received == []


def test_sustained_speeding_alerts_every_sample(monitor, notifier, events):
    outcomes = asyncio.run(_process(
        monitor,
        (kmh_sample(50.0), BG),
        (kmh_sample(55.0), BG),
    ))
    # Intended: no cooldown between consecutive alerts
    assert [o.action for o in outcomes] == [SampleAction.BACKGROUND_ALERT] * 2
    assert len(notifier.delivered) == 2
    assert [name for name, _ in events.received] == ["backgroundAlert", "backgroundAlert"]


def test_start_twice_subscribes_once(monitor, provider):
    async def run():
        first = await monitor.start()
        session = monitor.session
        second = await monitor.start()
        return first, second, session

    first, second, session = asyncio.run(run())
    assert first is second is MonitorStatus.TRACKING
    assert len(provider.subscriptions) == 1
    assert monitor.session is session
    assert provider.permission_requests == 1


def test_concurrent_starts_subscribe_once(monitor, provider):
    async def run():
        await asyncio.gather(monitor.start(), monitor.start(), monitor.start())

    asyncio.run(run())
    assert len(provider.subscriptions) == 1


def test_stop_when_stopped_is_noop(monitor, provider):
    status = asyncio.run(monitor.stop())
    assert status is MonitorStatus.STOPPED
    assert monitor.session is None
    assert provider.subscriptions == {}


def test_stop_releases_subscription(monitor, provider):
    async def run():
        await monitor.start()
        await monitor.stop()
        return await monitor.stop()

    assert asyncio.run(run()) is MonitorStatus.STOPPED
    assert provider.subscriptions == {}
    assert monitor.session is None


def test_sample_after_stop_is_ignored(monitor, notifier, events):
    async def run():
        await monitor.start()
        await monitor.stop()
        return await monitor.on_sample(kmh_sample(90.0), BG)

    outcome = asyncio.run(run())
    assert outcome.action is SampleAction.NOT_TRACKING
    assert notifier.delivered == []
    assert events.received == []


def test_provider_samples_use_current_lifecycle(monitor, provider, lifecycle, notifier, events):
    async def run():
        await monitor.start()
        await provider.push(kmh_sample(45.0))
        lifecycle.set_state("background")
        await provider.push(kmh_sample(45.0))
        await monitor.wait_idle()

    asyncio.run(run())
    assert [name for name, _ in events.received] == ["liveUpdate", "backgroundAlert"]
    assert len(notifier.delivered) == 1


def test_permission_denied_is_observable(provider, lifecycle, notifier, events):
    provider.permission = PermissionStatus.DENIED
    monitor = SpeedMonitor(provider, lifecycle, notifier, events)

    status = asyncio.run(monitor.start())
    assert status is MonitorStatus.PERMISSION_DENIED
    assert monitor.status is MonitorStatus.PERMISSION_DENIED
    assert provider.subscriptions == {}


def test_permission_revoked_halts_tracking(monitor, provider):
    async def run():
        await monitor.start()
        await monitor.permission_revoked()
        denied = monitor.status
        provider.permission = PermissionStatus.GRANTED
        return denied, await monitor.start()

    denied, restarted = asyncio.run(run())
    assert denied is MonitorStatus.PERMISSION_DENIED
    assert restarted is MonitorStatus.TRACKING
    assert len(provider.subscriptions) == 1


def test_failed_notification_is_not_retried(provider, lifecycle, events):
    notifier = FakeNotifier(fail=True)
    monitor = SpeedMonitor(provider, lifecycle, notifier, events)

    async def run():
        await monitor.start()
        outcome = await monitor.on_sample(kmh_sample(70.0), BG)
        await monitor.wait_idle()
        return outcome

    outcome = asyncio.run(run())
    notify_task, event_task = outcome.deliveries
    assert isinstance(notify_task.exception(), ConnectionError)
    assert event_task.result().delivered
    assert monitor.status is MonitorStatus.TRACKING
    assert [name for name, _ in events.received] == ["backgroundAlert"]


@pytest.mark.parametrize("mps", [math.nan, math.inf, -math.inf])
def test_non_finite_speed_reports_zero(monitor, notifier, events, mps):
    [outcome] = asyncio.run(_process(monitor, (LocationSample(speed_mps=mps), BG)))
    assert outcome.speed_kmh == 0.0
    assert outcome.action is SampleAction.BELOW_THRESHOLD
    assert notifier.delivered == []


def test_lifecycle_read_off_the_event_loop(monitor, provider, lifecycle):
    async def run():
        await monitor.start()
        await provider.push(kmh_sample(10.0))
        return threading.get_ident()

    loop_thread = asyncio.run(run())
    assert len(lifecycle.reader_threads) == 1
    assert lifecycle.reader_threads[0] != loop_thread


def test_start_with_unavailable_provider(provider, lifecycle, notifier, events):
    async def unavailable():
        raise ProviderUnavailableError("down")

    provider.request_permission = unavailable
    monitor = SpeedMonitor(provider, lifecycle, notifier, events)

    assert asyncio.run(monitor.start()) is MonitorStatus.PROVIDER_UNAVAILABLE
    assert monitor.session is None
    assert provider.subscriptions == {}


def test_start_with_redis_down_does_not_raise(lifecycle, notifier, events):
    r = MagicMock()
    r.get.side_effect = redis.exceptions.ConnectionError("down")
    monitor = SpeedMonitor(RedisStreamLocationProvider(r), lifecycle, notifier, events)

    assert asyncio.run(monitor.start()) is MonitorStatus.PROVIDER_UNAVAILABLE
    r.xreadgroup.assert_not_called()


def test_dead_location_feed_leaves_tracking(lifecycle, notifier, events):
    r = MagicMock()
    r.get.return_value = None
    r.xgroup_create.side_effect = ConnectionError("socket closed")
    monitor = SpeedMonitor(RedisStreamLocationProvider(r), lifecycle, notifier, events)

    async def run():
        assert await monitor.start() is MonitorStatus.TRACKING
        for _ in range(200):
            if monitor.status is not MonitorStatus.TRACKING:
                break
            await asyncio.sleep(0.01)
        status = monitor.status
        # the monitor can be started again afterwards
        r.xgroup_create.side_effect = None
        r.xreadgroup.return_value = []
        restarted = await monitor.start()
        await monitor.stop()
        return status, restarted

    status, restarted = asyncio.run(run())
    assert status is MonitorStatus.PROVIDER_UNAVAILABLE
    assert restarted is MonitorStatus.TRACKING
    assert monitor.session is None
