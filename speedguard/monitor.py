# speedguard/monitor.py
import asyncio
from typing import Optional, Set

from speedguard.logging_config import get_logger
from speedguard.models import (
    AppLifecycleState, LocationSample, MonitorSession, MonitorStatus, PermissionStatus,
    ProviderUnavailableError, SampleAction, SampleOutcome, SpeedAlertEvent, SubscriptionHandle,
    TrackingPolicy, speed_kmh,
)
from speedguard.utils.variables import (
    BACKGROUND_ALERT_EVENT, LIVE_UPDATE_EVENT, SPEED_THRESHOLD_KMH,
)

logger = get_logger("monitor", "monitor.log")


def exceeds_threshold(kmh: float) -> bool:
    return kmh > SPEED_THRESHOLD_KMH


class SpeedMonitor:
    """
    Turns location samples into live updates (foreground) or speed alerts
    (background, strictly above SPEED_THRESHOLD_KMH).

    start/stop/on_sample/permission_revoked share one asyncio.Lock, so the
    session is only ever mutated by one of them at a time; the one exception is
    a subscription task dying on its own, handled by a done-callback on the
    loop thread. Outbound sends are scheduled as tasks and never awaited or
    retried here.
    """

    def __init__(self, provider, lifecycle, notifier, events, policy: Optional[TrackingPolicy] = None):
        self.provider = provider
        self.lifecycle = lifecycle
        self.notifier = notifier
        self.events = events
        self.policy = policy or TrackingPolicy()

        self._lock = asyncio.Lock()
        self._session: Optional[MonitorSession] = None
        self._status = MonitorStatus.STOPPED
        self._inflight: Set[asyncio.Task] = set()

    @property
    def status(self) -> MonitorStatus:
        return self._status

    @property
    def session(self) -> Optional[MonitorSession]:
        return self._session

    # =====================================================================
    # Session lifecycle
    # =====================================================================
    async def start(self) -> MonitorStatus:
        async with self._lock:
            if self._session is not None:
                logger.info(f"[start] Already tracking (session {self._session.id})")
                return self._status

            try:
                permission = await self.provider.request_permission()
            except ProviderUnavailableError as e:
                self._status = MonitorStatus.PROVIDER_UNAVAILABLE
                logger.error(f"[start] Location provider unavailable: {e}")
                return self._status

            if permission is not PermissionStatus.GRANTED:
                self._status = MonitorStatus.PERMISSION_DENIED
                logger.warning("[start] Location permission denied; not tracking")
                return self._status

            handle = await self.provider.subscribe(self.handle_sample, self.policy)
            self._session = MonitorSession(subscription=handle)
            if handle.task is not None:
                handle.task.add_done_callback(lambda t: self._subscription_ended(handle, t))
            self._status = MonitorStatus.TRACKING
            logger.info(f"[start] Tracking started, session {self._session.id}")
            return self._status

    async def stop(self) -> MonitorStatus:
        async with self._lock:
            await self._end_session()
            self._status = MonitorStatus.STOPPED
            return self._status

    async def permission_revoked(self) -> MonitorStatus:
        async with self._lock:
            await self._end_session()
            self._status = MonitorStatus.PERMISSION_DENIED
            logger.warning("[permission_revoked] Location permission revoked; tracking halted")
            return self._status

    async def _end_session(self) -> None:
        if self._session is None:
            return
        session, self._session = self._session, None
        await self.provider.unsubscribe(session.subscription)
        logger.info(f"Tracking stopped, session {session.id}")

    def _subscription_ended(self, handle: SubscriptionHandle, task: asyncio.Task) -> None:
        # Only a subscription that dies while still owned by the live session matters
        if task.cancelled() or self._session is None or self._session.subscription is not handle:
            return
        exc = task.exception()
        logger.error(f"[subscription] Location feed {handle.id} ended unexpectedly: {exc!r}")
        self._session = None
        self._status = MonitorStatus.PROVIDER_UNAVAILABLE

    # =====================================================================
    # Sample handling
    # =====================================================================
    async def handle_sample(self, sample: LocationSample) -> SampleOutcome:
        """Provider callback: reads the lifecycle state at arrival time."""
        state = await asyncio.get_running_loop().run_in_executor(None, self.lifecycle.current_state)
        return await self.on_sample(sample, state)

    async def on_sample(self, sample: LocationSample, lifecycle_state: AppLifecycleState) -> SampleOutcome:
        async with self._lock:
            kmh = speed_kmh(sample.speed_mps)

            if self._session is None:
                # Late sample racing a stop()
                logger.debug(f"[on_sample] Not tracking; ignoring {kmh:.1f} km/h")
                return SampleOutcome(kmh, SampleAction.NOT_TRACKING)

            if lifecycle_state is AppLifecycleState.FOREGROUND:
                task = self._dispatch(LIVE_UPDATE_EVENT, self.events.emit(LIVE_UPDATE_EVENT, {"speedKmh": kmh}))
                return SampleOutcome(kmh, SampleAction.LIVE_UPDATE, [task])

            if not exceeds_threshold(kmh):
                return SampleOutcome(kmh, SampleAction.BELOW_THRESHOLD)

            # No cooldown: every qualifying sample alerts
            alert = SpeedAlertEvent(speed_kmh=kmh)
            logger.info(f"[on_sample] Background speed {kmh:.1f} km/h > {SPEED_THRESHOLD_KMH} km/h, alerting")
            tasks = [
                self._dispatch("notification", self.notifier.deliver(alert.title, alert.body)),
                self._dispatch(BACKGROUND_ALERT_EVENT,
                               self.events.emit(BACKGROUND_ALERT_EVENT, {"speedKmh": alert.speed_kmh})),
            ]
            return SampleOutcome(kmh, SampleAction.BACKGROUND_ALERT, tasks)

    def _dispatch(self, label: str, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._inflight.add(task)

        def _done(t: asyncio.Task) -> None:
            self._inflight.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.error(f"[{label}] delivery failed: {exc!r}")
            elif not t.result().delivered:
                logger.debug(f"[{label}] not delivered: {t.result().detail}")

        task.add_done_callback(_done)
        return task

    async def wait_idle(self) -> None:
        """Wait for every in-flight delivery to finish (failures are already logged)."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
