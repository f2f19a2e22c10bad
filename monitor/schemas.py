"""
monitor/schemas.py

Pydantic data models for the monitoring pipeline.
- TelemetrySample: one reading from the wearable sensor channel
- DangerZone / Location: geofence inputs
- Alert: one live safety condition, identified by its stable id
- NotificationConfig: feedback channel toggles and cooldowns
- GeofenceResult / ThresholdResult: evaluator outputs
"""

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from monitor.constants import CRITICAL_COOLDOWN_MS, WARNING_COOLDOWN_MS


class AlertLevel(str, Enum):
    """Alert severity, ordered info < warning < critical."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY: dict[AlertLevel, int] = {
    AlertLevel.INFO: 1,
    AlertLevel.WARNING: 2,
    AlertLevel.CRITICAL: 3,
}


class AlertType(str, Enum):
    DANGER_ZONE = "danger_zone"
    TEMPERATURE = "temperature"
    PRESSURE = "pressure"
    LOCATION = "location"
    DATA_STALE = "data_stale"


class ProximityBand(str, Enum):
    """Geofence classification, most severe first."""

    INSIDE = "inside"
    CRITICAL_PROXIMITY = "critical_proximity"
    APPROACHING = "approaching"
    NEAR = "near"
    SAFE = "safe"
    NO_ZONES = "no_zones"


class SensorStatus(str, Enum):
    UNKNOWN = "unknown"
    LOW = "low"
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"
    HIGH = "high"


class Trend(str, Enum):
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


class TelemetrySample(BaseModel):
    """A single sensor reading. Coordinates are NaN when the device sent none."""

    model_config = {"frozen": True}

    timestamp: datetime
    latitude: float = math.nan
    longitude: float = math.nan
    temperature: Optional[float] = None  # °C
    pressure: Optional[float] = None  # hPa
    entry_id: Optional[int] = None
    status: Optional[str] = None
    reported_distance: Optional[float] = None  # meters, as computed on-device

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def has_position(self) -> bool:
        """False for the NaN sentinel or the (0, 0) sentinel."""
        if math.isnan(self.latitude) or math.isnan(self.longitude):
            return False
        return not (self.latitude == 0 and self.longitude == 0)


class Location(BaseModel):
    """A plain coordinate pair, e.g. the phone's own GPS fix."""

    model_config = {"frozen": True}

    latitude: float
    longitude: float


class DangerZone(BaseModel):
    """Circular danger zone owned by the external zone store."""

    model_config = {"frozen": True}

    id: int
    latitude: float
    longitude: float
    radius: float = Field(gt=0)  # meters
    name: Optional[str] = None
    category: Optional[str] = None
    color: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or f"Zone {self.id}"


class Alert(BaseModel):
    """One live alert. Ids are stable per alert kind, not per occurrence."""

    model_config = {"frozen": True}

    id: str
    type: AlertType
    level: AlertLevel
    message: str
    timestamp: datetime
    distance: Optional[float] = None
    value: Optional[float] = None
    threshold: Optional[float] = None


class NotificationConfig(BaseModel):
    """Feedback channel toggles and per-level cooldowns."""

    enable_haptics: bool = True
    enable_audio: bool = True
    enable_visual: bool = True
    critical_cooldown_ms: int = Field(default=CRITICAL_COOLDOWN_MS, ge=0)
    warning_cooldown_ms: int = Field(default=WARNING_COOLDOWN_MS, ge=0)


class CacheEntry(BaseModel):
    """Single cache slot; fetched_at is a monotonic clock reading in seconds."""

    model_config = {"frozen": True}

    data: TelemetrySample
    fetched_at: float


class CacheStatus(BaseModel):
    has_cached_data: bool
    cache_age_s: float
    is_call_in_progress: bool


class GeofenceResult(BaseModel):
    """
    Outcome of evaluating one point against the zone set.

    distance is the minimum distance among the zones scanned; zone is the
    zone that determined the band, or the closest zone when safe.
    """

    band: ProximityBand
    level: Optional[AlertLevel] = None
    distance: float = 0.0
    zone: Optional[DangerZone] = None
    status: str = ""


class ThresholdResult(BaseModel):
    status: SensorStatus
    level: Optional[AlertLevel] = None
