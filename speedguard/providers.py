# speedguard/providers.py
import asyncio
import json
from typing import Awaitable, Callable, Optional

import redis

from speedguard.config import (
    LOCATION_CONSUMER, LOCATION_GROUP, LOCATION_STREAM, PERMISSION_KEY,
)
from speedguard.geo import haversine_m
from speedguard.logging_config import get_logger
from speedguard.models import (
    InvalidSampleError, LocationSample, PermissionStatus, ProviderUnavailableError,
    SubscriptionHandle, TrackingPolicy,
)

logger = get_logger("provider", "provider.log")

SampleCallback = Callable[[LocationSample], Awaitable[None]]


class DistanceFilter:
    """
    Suppresses samples that moved less than `distance_filter_m` from the last
    delivered one. Samples without coordinates always pass.
    """

    def __init__(self, distance_filter_m: float):
        self.distance_filter_m = distance_filter_m
        self._last: Optional[LocationSample] = None

    def accept(self, sample: LocationSample) -> bool:
        if self.distance_filter_m <= 0 or not sample.has_position:
            return True
        if self._last is not None:
            moved = haversine_m(
                self._last.latitude, self._last.longitude,
                sample.latitude, sample.longitude,
            )
            if moved < self.distance_filter_m:
                return False
        self._last = sample
        return True


class RedisStreamLocationProvider:
    """
    Reads location payloads from a Redis stream through a consumer group.
    Blocking redis calls run in the default executor.

    Each subscription first drains this consumer's pending entries (records
    delivered to an earlier session but never acked), then follows new ones.
    """

    def __init__(
        self,
        redis_client,
        stream: str = LOCATION_STREAM,
        group: str = LOCATION_GROUP,
        consumer: str = LOCATION_CONSUMER,
        permission_key: str = PERMISSION_KEY,
        block_ms: int = 5000,
        batch: int = 100,
        error_pause: float = 1.0,
    ):
        self.r = redis_client
        self.stream = stream
        self.group = group
        self.consumer = consumer
        self.permission_key = permission_key
        self.block_ms = block_ms
        self.batch = batch
        self.error_pause = error_pause

    # ---------- Permission ----------
    async def request_permission(self) -> PermissionStatus:
        try:
            raw = await asyncio.get_running_loop().run_in_executor(None, self.r.get, self.permission_key)
        except redis.exceptions.RedisError as e:
            logger.exception(f"Could not read location permission: {e}")
            raise ProviderUnavailableError(str(e)) from e
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        # No answer recorded yet counts as granted
        if raw is None or raw.strip().lower() == PermissionStatus.GRANTED.value:
            return PermissionStatus.GRANTED
        logger.warning(f"Location permission is {raw!r}")
        return PermissionStatus.DENIED

    # ---------- Consumer group ----------
    def init_group(self) -> None:
        try:
            # Only NEW samples matter; create stream if missing
            self.r.xgroup_create(self.stream, self.group, id="$", mkstream=True)
            logger.info("Consumer group created.")
        except redis.exceptions.ResponseError as e:
            if "BUSYGROUP" in str(e):
                logger.info("Consumer group already exists.")
            else:
                raise

    def _discard(self, _id) -> None:
        self.r.xack(self.stream, self.group, _id)
        self.r.xdel(self.stream, _id)

    async def _ack(self, _id) -> None:
        # An ack must land even if the subscription is being cancelled
        await asyncio.shield(asyncio.get_running_loop().run_in_executor(None, self._discard, _id))

    async def process_records(self, records, callback: SampleCallback, distance_filter: DistanceFilter) -> int:
        """Hand every decodable record to `callback`; returns the number delivered."""
        delivered = 0
        for _id, fields in records:
            try:
                payload = json.loads(fields[b"data"])
                sample = LocationSample.from_payload(payload)
            except (KeyError, TypeError, ValueError, InvalidSampleError) as e:
                # malformed message — ack & delete to avoid poison-pill
                logger.warning(f"Dropping malformed record {_id}: {e}")
                await self._ack(_id)
                continue

            if distance_filter.accept(sample):
                try:
                    await callback(sample)
                except Exception as e:
                    # DO NOT ack on processing failure; the next session re-reads it as pending
                    logger.exception(f"Error processing record {_id}: {e}")
                    continue
                delivered += 1
            await self._ack(_id)
        return delivered

    async def _consume(self, callback: SampleCallback, policy: TrackingPolicy) -> None:
        loop = asyncio.get_running_loop()
        distance_filter = DistanceFilter(policy.distance_filter_m)
        group_ready = False
        # "0" replays our pending entries, ">" follows new ones
        cursor = "0"

        logger.info(f"Listening on stream {self.stream} accuracy={policy.accuracy}")
        while True:
            try:
                if not group_ready:
                    await loop.run_in_executor(None, self.init_group)
                    group_ready = True

                msgs = await loop.run_in_executor(
                    None,
                    self.r.xreadgroup,
                    self.group,
                    self.consumer,
                    {self.stream: cursor},
                    self.batch,
                    None if cursor != ">" else self.block_ms,
                )
                last_id = None
                for _, records in msgs or []:
                    if records:
                        last_id = records[-1][0]
                    await self.process_records(records, callback, distance_filter)

                if cursor != ">":
                    if last_id is None:
                        logger.info("Pending entries drained, following new samples")
                        cursor = ">"
                    else:
                        cursor = last_id
            except redis.exceptions.RedisError as e:
                logger.exception(f"Stream read failed: {e}")
                await asyncio.sleep(self.error_pause)

    async def subscribe(self, callback: SampleCallback, policy: TrackingPolicy) -> SubscriptionHandle:
        handle = SubscriptionHandle()
        handle.task = asyncio.create_task(self._consume(callback, policy), name=f"location-{handle.id}")
        logger.info(f"Subscribed {handle.id} to {self.stream}")
        return handle

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        if handle.task is not None and not handle.task.done():
            handle.task.cancel()
            await asyncio.wait([handle.task])
        logger.info(f"Unsubscribed {handle.id}")
