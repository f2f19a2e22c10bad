"""
monitor/services/geofence.py

Danger zone proximity classification.
- haversine_distance: great-circle distance in meters
- evaluate_zones: priority-ordered band match over all zones
- render_status: human readable status line for a GeofenceResult

Uses constants from monitor/constants.py; no magic numbers allowed.
"""

import math
from typing import Optional, Sequence

from monitor.constants import (
    EARTH_RADIUS_M,
    ZONE_CRITICAL_MARGIN_M,
    ZONE_INFO_MARGIN_M,
    ZONE_WARNING_MARGIN_M,
)
from monitor.schemas import (
    AlertLevel,
    DangerZone,
    GeofenceResult,
    Location,
    ProximityBand,
)

# Band → alert level. Order of this table is the match priority.
_BAND_LEVELS: dict[ProximityBand, Optional[AlertLevel]] = {
    ProximityBand.INSIDE: AlertLevel.CRITICAL,
    ProximityBand.CRITICAL_PROXIMITY: AlertLevel.CRITICAL,
    ProximityBand.APPROACHING: AlertLevel.WARNING,
    ProximityBand.NEAR: AlertLevel.INFO,
    ProximityBand.SAFE: None,
    ProximityBand.NO_ZONES: None,
}

_BAND_RANK: dict[ProximityBand, int] = {
    ProximityBand.INSIDE: 4,
    ProximityBand.CRITICAL_PROXIMITY: 3,
    ProximityBand.APPROACHING: 2,
    ProximityBand.NEAR: 1,
    ProximityBand.SAFE: 0,
    ProximityBand.NO_ZONES: 0,
}


def haversine_distance(
    lat1: float,
    lng1: float,
    lat2: float,
    lng2: float,
) -> float:
    """
    Calculate the great-circle distance between two points in meters.

    Uses the Haversine formula with Earth radius = 6,371,000 meters.
    """
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lng2 - lng1)
    a = (
        math.sin(dphi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    )
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))


def classify_distance(distance: float, radius: float) -> ProximityBand:
    """Classify a distance from a single zone's center against its bands."""
    if distance <= radius:
        return ProximityBand.INSIDE
    if distance <= radius + ZONE_CRITICAL_MARGIN_M:
        return ProximityBand.CRITICAL_PROXIMITY
    if distance <= radius + ZONE_WARNING_MARGIN_M:
        return ProximityBand.APPROACHING
    if distance <= radius + ZONE_INFO_MARGIN_M:
        return ProximityBand.NEAR
    return ProximityBand.SAFE


def evaluate_zones(point: Location, zones: Sequence[DangerZone]) -> GeofenceResult:
    """
    Classify a point against a set of circular danger zones.

    Every zone is classified independently. A later zone may only replace
    the current band with a strictly more severe one, and the first zone
    found to enclose the point ends the scan.
    """
    if not zones:
        result = GeofenceResult(band=ProximityBand.NO_ZONES, distance=0.0)
        return result.model_copy(update={"status": render_status(result)})

    closest_zone: Optional[DangerZone] = None
    closest_distance = math.inf
    band = ProximityBand.SAFE
    band_zone: Optional[DangerZone] = None

    for zone in zones:
        distance = haversine_distance(
            point.latitude, point.longitude, zone.latitude, zone.longitude
        )
        if distance < closest_distance:
            closest_distance = distance
            closest_zone = zone

        zone_band = classify_distance(distance, zone.radius)
        if _BAND_RANK[zone_band] > _BAND_RANK[band]:
            band = zone_band
            band_zone = zone
        if band is ProximityBand.INSIDE:
            break

    result = GeofenceResult(
        band=band,
        level=_BAND_LEVELS[band],
        distance=closest_distance,
        zone=band_zone or closest_zone,
    )
    return result.model_copy(update={"status": render_status(result)})


def render_status(result: GeofenceResult) -> str:
    """Render the status line shown to the user for a geofence result."""
    if result.band is ProximityBand.NO_ZONES:
        return "Safe, no zones configured"

    name = result.zone.display_name if result.zone else "unknown zone"
    if result.band is ProximityBand.INSIDE:
        return f"Inside {name}"
    if result.band is ProximityBand.CRITICAL_PROXIMITY:
        return f"Critical proximity to {name}"
    if result.band is ProximityBand.APPROACHING:
        return f"Approaching {name}"
    if result.band is ProximityBand.NEAR:
        return f"Near {name}"
    return f"Safe (closest zone: {name}, {result.distance / 1000:.1f}km away)"


class GeofenceEvaluator:
    """Callable wrapper so the orchestrator can take the evaluator as a collaborator."""

    def evaluate(self, point: Location, zones: Sequence[DangerZone]) -> GeofenceResult:
        return evaluate_zones(point, zones)
