"""
tests/fixtures.py

Shared test data and helper functions for constructing test inputs.
All tests must use these fixtures instead of hardcoding test values.
"""

import math
from datetime import datetime, timedelta, timezone
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

from monitor.constants import EARTH_RADIUS_M
from monitor.schemas import (
    Alert,
    AlertLevel,
    AlertType,
    DangerZone,
    Location,
    TelemetrySample,
)

# ── Reference time and place ────────────────────────────────

TEST_NOW: datetime = datetime(2024, 6, 15, 13, 30, 0, tzinfo=timezone.utc)
ZONE_LAT: float = 10.0
ZONE_LNG: float = 10.0
BASE_URL: str = "https://api.thingspeak.com"
CHANNEL_ID: str = "2986447"


def point_at_distance(
    meters: float,
    lat: float = ZONE_LAT,
    lng: float = ZONE_LNG,
) -> Location:
    """Return the point `meters` due north of (lat, lng)."""
    return Location(
        latitude=lat + math.degrees(meters / EARTH_RADIUS_M),
        longitude=lng,
    )


def build_zone(
    zone_id: int = 1,
    latitude: float = ZONE_LAT,
    longitude: float = ZONE_LNG,
    radius: float = 100.0,
    name: Optional[str] = "Quarry",
) -> DangerZone:
    """Build a DangerZone with sensible defaults for testing."""
    return DangerZone(
        id=zone_id,
        latitude=latitude,
        longitude=longitude,
        radius=radius,
        name=name,
        category="hazard",
        color="#F44336",
    )


def build_sample(
    timestamp: Optional[datetime] = None,
    latitude: float = math.nan,
    longitude: float = math.nan,
    temperature: Optional[float] = None,
    pressure: Optional[float] = None,
    location: Optional[Location] = None,
) -> TelemetrySample:
    """Build a TelemetrySample; by default fresh, without position or readings."""
    if location is not None:
        latitude, longitude = location.latitude, location.longitude
    return TelemetrySample(
        timestamp=timestamp or TEST_NOW - timedelta(seconds=10),
        latitude=latitude,
        longitude=longitude,
        temperature=temperature,
        pressure=pressure,
        entry_id=42,
    )


def build_alert(
    alert_id: str = "danger_zone",
    level: AlertLevel = AlertLevel.CRITICAL,
    distance: Optional[float] = None,
    timestamp: Optional[datetime] = None,
    message: str = "Inside Quarry",
) -> Alert:
    """Build an Alert with sensible defaults for testing."""
    return Alert(
        id=alert_id,
        type=AlertType(alert_id) if alert_id in {t.value for t in AlertType} else AlertType.DANGER_ZONE,
        level=level,
        message=message,
        timestamp=timestamp or TEST_NOW,
        distance=distance,
    )


def build_record(
    created_at: str = "2024-06-15T13:29:50Z",
    entry_id: int = 42,
    field1: Optional[str] = "10.0",
    field2: Optional[str] = "10.0",
    field3: Optional[str] = "0",
    field4: Optional[str] = "OK",
    field5: Optional[str] = "36.6",
    field6: Optional[str] = "1012",
) -> dict:
    """Build a raw channel feed record as returned by the read endpoint."""
    return {
        "created_at": created_at,
        "entry_id": entry_id,
        "field1": field1,
        "field2": field2,
        "field3": field3,
        "field4": field4,
        "field5": field5,
        "field6": field6,
    }


def build_client_mock(sample: Optional[TelemetrySample] = None, error: Optional[Exception] = None) -> MagicMock:
    """Build a TelemetryClient stand-in whose fetch returns sample or raises error."""
    client = MagicMock()
    client.fetch = AsyncMock(return_value=sample, side_effect=error)
    client.invalidate = MagicMock()
    return client


def build_dispatcher_mock() -> MagicMock:
    """Build a NotificationDispatcher stand-in recording trigger calls."""
    dispatcher = MagicMock()
    dispatcher.trigger = AsyncMock(return_value=True)
    dispatcher.clear_cooldowns = MagicMock()
    return dispatcher


class FakeClock:
    """Manually advanced monotonic clock, in seconds."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
