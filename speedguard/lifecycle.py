# speedguard/lifecycle.py
import redis

from speedguard.config import LIFECYCLE_KEY
from speedguard.logging_config import get_logger
from speedguard.models import AppLifecycleState, InvalidLifecycleStateError

logger = get_logger("lifecycle", "lifecycle.log")


class RedisLifecycle:
    """
    Lifecycle state stored under a Redis key so the API process
    and the worker agree on it. A missing, garbled or unreachable key reads
    as foreground, which never raises an alert.

    Both methods block on Redis; async callers run them in an executor.
    """

    def __init__(self, redis_client, key: str = LIFECYCLE_KEY):
        self.r = redis_client
        self.key = key

    def current_state(self) -> AppLifecycleState:
        try:
            raw = self.r.get(self.key)
        except redis.exceptions.RedisError as e:
            logger.error(f"Lifecycle lookup failed, assuming foreground: {e}")
            return AppLifecycleState.FOREGROUND
        if raw is None:
            return AppLifecycleState.FOREGROUND
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        try:
            return AppLifecycleState.parse(raw)
        except InvalidLifecycleStateError:
            logger.warning(f"Unreadable lifecycle value {raw!r} under {self.key}, assuming foreground")
            return AppLifecycleState.FOREGROUND

    def set_state(self, state) -> AppLifecycleState:
        parsed = AppLifecycleState.parse(state)
        self.r.set(self.key, parsed.value)
        logger.info(f"Lifecycle -> {parsed.value}")
        return parsed
