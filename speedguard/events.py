# speedguard/events.py
import asyncio
import json

from speedguard.config import EVENT_CHANNEL
from speedguard.logging_config import get_logger
from speedguard.models import DeliveryResult

logger = get_logger("events", "events.log")


def encode_event(event_name: str, payload: dict) -> str:
    return json.dumps({"event": event_name, **payload}, ensure_ascii=False)


class RedisEventChannel:
    """
    Best-effort pub/sub towards the UI layer. Redis does not queue
    for absent subscribers, so a publish with no receivers is dropped.
    """

    def __init__(self, redis_client, channel: str = EVENT_CHANNEL):
        self.r = redis_client
        self.channel = channel

    async def emit(self, event_name: str, payload: dict) -> DeliveryResult:
        message = encode_event(event_name, payload)
        receivers = await asyncio.get_running_loop().run_in_executor(
            None, self.r.publish, self.channel, message
        )
        if not receivers:
            logger.debug(f"No listener on {self.channel}; {event_name} dropped")
            return DeliveryResult(delivered=False, detail="no listener")
        logger.debug(f"{event_name} -> {receivers} listener(s)")
        return DeliveryResult(delivered=True, detail=f"{receivers} listener(s)")

