import asyncio
import datetime as dt
import enum
import math
import uuid
from dataclasses import dataclass, field
from typing import Any, List, Optional

from speedguard.utils.variables import ALERT_TITLE, MPS_TO_KMH


class SpeedGuardError(Exception):
    pass


class InvalidSampleError(SpeedGuardError):
    pass


class InvalidLifecycleStateError(SpeedGuardError):
    pass


class ProviderUnavailableError(SpeedGuardError):
    pass


def to_dt(v):
    if isinstance(v, dt.datetime):
        # ensure tz-aware
        return v if v.tzinfo else v.replace(tzinfo=dt.timezone.utc)

    if isinstance(v, (int, float)):
        return dt.datetime.fromtimestamp(v, tz=dt.timezone.utc)

    if isinstance(v, str):
        dt_obj = dt.datetime.fromisoformat(v)
        return dt_obj if dt_obj.tzinfo else dt_obj.replace(tzinfo=dt.timezone.utc)

    return None


def speed_kmh(speed_mps: float) -> float:
    """Negative or non-finite speeds mean "unknown" and are clamped to zero before conversion."""
    if not math.isfinite(speed_mps) or speed_mps < 0:
        return 0.0
    return speed_mps * MPS_TO_KMH


class AppLifecycleState(enum.Enum):
    FOREGROUND = "foreground"
    BACKGROUND = "background"

    @classmethod
    def parse(cls, value: Any) -> "AppLifecycleState":
        if isinstance(value, cls):
            return value
        name = str(value or "").strip().lower()
        if name in ("foreground", "resumed"):
            return cls.FOREGROUND
        if name in ("background", "paused", "inactive", "detached"):
            return cls.BACKGROUND
        raise InvalidLifecycleStateError(f"unknown lifecycle state: {value!r}")


class MonitorStatus(enum.Enum):
    STOPPED = "stopped"
    TRACKING = "tracking"
    PERMISSION_DENIED = "permission_denied"
    PROVIDER_UNAVAILABLE = "provider_unavailable"


class PermissionStatus(enum.Enum):
    GRANTED = "granted"
    DENIED = "denied"


class SampleAction(enum.Enum):
    LIVE_UPDATE = "live_update"
    BACKGROUND_ALERT = "background_alert"
    BELOW_THRESHOLD = "below_threshold"
    NOT_TRACKING = "not_tracking"


@dataclass(frozen=True)
class LocationSample:
    speed_mps: float
    timestamp: Optional[dt.datetime] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    horizontal_accuracy: Optional[float] = None

    @classmethod
    def from_payload(cls, payload: dict) -> "LocationSample":
        """
        Build a sample from a JSON location payload.
        `speed` is metres per second; everything else is optional.
        """
        if not isinstance(payload, dict):
            raise InvalidSampleError("location payload must be an object")
        raw_speed = payload.get("speed")
        if raw_speed is None:
            raise InvalidSampleError("missing speed")
        try:
            speed = float(raw_speed)
            if not math.isfinite(speed):
                raise InvalidSampleError(f"non-finite speed: {raw_speed!r}")
            lat = payload.get("latitude")
            lon = payload.get("longitude")
            acc = payload.get("accuracy")
            return cls(
                speed_mps=speed,
                timestamp=to_dt(payload.get("timestamp")),
                latitude=float(lat) if lat is not None else None,
                longitude=float(lon) if lon is not None else None,
                horizontal_accuracy=float(acc) if acc is not None else None,
            )
        except (TypeError, ValueError) as e:
            raise InvalidSampleError(f"malformed location payload: {e}") from e

    @property
    def has_position(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def to_payload(self) -> dict:
        return {
            "speed": self.speed_mps,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "accuracy": self.horizontal_accuracy,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


@dataclass(frozen=True)
class SpeedAlertEvent:
    speed_kmh: float

    @property
    def title(self) -> str:
        return ALERT_TITLE

    @property
    def body(self) -> str:
        return f"You are moving at {self.speed_kmh:.1f} km/h"


@dataclass(frozen=True)
class TrackingPolicy:
    accuracy: str = "best_for_navigation"
    distance_filter_m: float = 0.0


@dataclass
class SubscriptionHandle:
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    task: Optional[asyncio.Task] = None


@dataclass
class MonitorSession:
    subscription: SubscriptionHandle
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    started_at: dt.datetime = field(default_factory=lambda: dt.datetime.now(dt.timezone.utc))


@dataclass(frozen=True)
class DeliveryResult:
    delivered: bool
    detail: str = ""


@dataclass
class SampleOutcome:
    speed_kmh: float
    action: SampleAction
    deliveries: List[asyncio.Task] = field(default_factory=list)
