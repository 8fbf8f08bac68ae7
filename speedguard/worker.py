# speedguard/worker.py
import asyncio

import redis

from speedguard.alerts import EmailNotificationSink, RedisNotificationSink
from speedguard.config import (
    DESIRED_ACCURACY, DISTANCE_FILTER_M, NOTIFICATION_BACKEND, REDIS_URL,
)
from speedguard.events import RedisEventChannel
from speedguard.lifecycle import RedisLifecycle
from speedguard.logging_config import get_logger
from speedguard.models import TrackingPolicy
from speedguard.monitor import SpeedMonitor
from speedguard.providers import RedisStreamLocationProvider

logger = get_logger("worker", "worker.log")


def build_notifier(redis_client, backend: str = NOTIFICATION_BACKEND):
    if backend == "email":
        return EmailNotificationSink()
    if backend != "redis":
        logger.warning(f"Unknown NOTIFICATION_BACKEND={backend!r}, using redis")
    return RedisNotificationSink(redis_client)


def build_monitor(redis_client) -> SpeedMonitor:
    """Wire a SpeedMonitor to the Redis-backed collaborators."""
    return SpeedMonitor(
        provider=RedisStreamLocationProvider(redis_client),
        lifecycle=RedisLifecycle(redis_client),
        notifier=build_notifier(redis_client),
        events=RedisEventChannel(redis_client),
        policy=TrackingPolicy(accuracy=DESIRED_ACCURACY, distance_filter_m=DISTANCE_FILTER_M),
    )


# ---------- Main Worker Loop ----------
async def worker():
    r = redis.from_url(REDIS_URL, decode_responses=False)
    monitor = build_monitor(r)

    status = await monitor.start()
    logger.info(f"Worker started, monitor status={status.value}")

    try:
        # Samples are consumed by the provider task; just stay alive
        await asyncio.Event().wait()
    finally:
        await monitor.stop()
        await monitor.wait_idle()
        logger.info("Worker stopped")


if __name__ == "__main__":
    logger.info("Worker starting up...")
    asyncio.run(worker())
