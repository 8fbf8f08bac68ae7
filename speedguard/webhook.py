import asyncio
import json
import time

from fastapi import APIRouter, HTTPException, Request

from speedguard.config import LOCATION_STREAM, PERMISSION_KEY
from speedguard.logging_config import get_logger
from speedguard.models import (
    InvalidLifecycleStateError, InvalidSampleError, LocationSample, MonitorStatus, PermissionStatus,
)

router = APIRouter()
logger = get_logger("webhook", "webhook.log")


def _status_body(monitor) -> dict:
    session = monitor.session
    return {
        "status": monitor.status.value,
        "session": session.id if session else None,
        "started_at": session.started_at.isoformat() if session else None,
    }


# ---------------------------------------------------
#                LOCATION SAMPLES
# ---------------------------------------------------
@router.post("/location")
async def location_hook(payload: dict, request: Request):
    try:
        sample = LocationSample.from_payload(payload)
    except InvalidSampleError as e:
        raise HTTPException(status_code=400, detail=str(e))

    json_str = json.dumps(sample.to_payload(), ensure_ascii=False)

    # Push to Redis inside executor (non-blocking)
    r = request.app.state.redis
    await asyncio.get_running_loop().run_in_executor(
        None,
        r.xadd,
        LOCATION_STREAM,
        {"ts": time.time(), "data": json_str},
    )

    logger.info(f"Sample stored speed={sample.speed_mps} m/s")
    return {"ok": True}


# ---------------------------------------------------
#          HOST LIFECYCLE / PERMISSION
# ---------------------------------------------------
@router.post("/lifecycle")
async def lifecycle_hook(payload: dict, request: Request):
    try:
        state = await asyncio.get_running_loop().run_in_executor(
            None, request.app.state.lifecycle.set_state, payload.get("state")
        )
    except InvalidLifecycleStateError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"ok": True, "state": state.value}


@router.post("/permission")
async def permission_hook(payload: dict, request: Request):
    try:
        permission = PermissionStatus(str(payload.get("status", "")).lower())
    except ValueError:
        raise HTTPException(status_code=400, detail="status must be 'granted' or 'denied'")

    r = request.app.state.redis
    await asyncio.get_running_loop().run_in_executor(None, r.set, PERMISSION_KEY, permission.value)

    monitor = request.app.state.monitor
    if permission is PermissionStatus.DENIED:
        await monitor.permission_revoked()
    elif monitor.status is MonitorStatus.PERMISSION_DENIED:
        await monitor.start()

    logger.info(f"Location permission {permission.value}, monitor={monitor.status.value}")
    return {"ok": True, **_status_body(monitor)}


# ---------------------------------------------------
#                MONITOR CONTROL
# ---------------------------------------------------
@router.post("/monitor/start")
async def start_monitor(request: Request):
    monitor = request.app.state.monitor
    await monitor.start()
    return _status_body(monitor)


@router.post("/monitor/stop")
async def stop_monitor(request: Request):
    monitor = request.app.state.monitor
    await monitor.stop()
    return _status_body(monitor)


@router.get("/monitor/status")
async def monitor_status(request: Request):
    return _status_body(request.app.state.monitor)
