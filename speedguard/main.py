from contextlib import asynccontextmanager

import redis
import uvicorn
from fastapi import FastAPI

from speedguard.config import AUTOSTART, REDIS_URL
from speedguard.lifecycle import RedisLifecycle
from speedguard.logging_config import get_logger
from speedguard.webhook import router
from speedguard.worker import build_monitor

logger = get_logger("main", "main.log")


@asynccontextmanager
async def lifespan(app: FastAPI):
    r = redis.from_url(REDIS_URL, decode_responses=False)
    app.state.redis = r
    app.state.lifecycle = RedisLifecycle(r)
    app.state.monitor = build_monitor(r)

    if AUTOSTART:
        status = await app.state.monitor.start()
        logger.info(f"Monitor autostarted, status={status.value}")
    try:
        yield
    finally:
        await app.state.monitor.stop()
        await app.state.monitor.wait_idle()


app = FastAPI(title="SpeedGuard", lifespan=lifespan)
app.include_router(router)

if __name__=="__main__":
    uvicorn.run("speedguard.main:app", host="0.0.0.0", port=8000, reload=False)
