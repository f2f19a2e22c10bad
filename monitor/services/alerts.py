"""
monitor/services/alerts.py

Alert orchestration for one monitored device.
On each tick: fetch telemetry, run the geofence, temperature, pressure and
staleness rules, merge the results into one alert per id, notify only on
new or escalated alerts, and return the alerts most severe first.

A tick never aborts: a missing sample, an unresolvable location or a
failing rule only removes that rule's contribution for the tick.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Optional, Sequence

import structlog

from monitor.constants import DATA_STALE_AFTER_S
from monitor.errors import EvaluationSkipped, FetchError
from monitor.schemas import (
    Alert,
    AlertLevel,
    AlertType,
    DangerZone,
    Location,
    SensorStatus,
    TelemetrySample,
)
from monitor.services.geofence import GeofenceEvaluator
from monitor.services.notification import NotificationDispatcher
from monitor.services.telemetry import TelemetryClient
from monitor.services.thresholds import TemperatureThresholds, ThresholdEvaluator

logger = structlog.get_logger(__name__)

DANGER_ZONE_ALERT_ID = "danger_zone"
TEMPERATURE_ALERT_ID = "temperature"
PRESSURE_ALERT_ID = "pressure"
DATA_STALE_ALERT_ID = "data_stale"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def sort_alerts(alerts: Iterable[Alert]) -> list[Alert]:
    """Most severe first; within a level, most recent first."""
    return sorted(
        alerts,
        key=lambda alert: (-alert.level.severity, -alert.timestamp.timestamp()),
    )


class AlertManager:
    """
    Turns periodic telemetry into a deduplicated, prioritized alert list.

    Holds the previous tick's alerts keyed by id; a notification is sent
    only when an id appears or its level changes between ticks.
    """

    def __init__(
        self,
        client: TelemetryClient,
        dispatcher: NotificationDispatcher,
        geofence: Optional[GeofenceEvaluator] = None,
        thresholds: Optional[ThresholdEvaluator] = None,
        stale_after: timedelta = timedelta(seconds=DATA_STALE_AFTER_S),
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._client = client
        self._dispatcher = dispatcher
        self._geofence = geofence or GeofenceEvaluator()
        self._thresholds = thresholds or ThresholdEvaluator()
        self._stale_after = stale_after
        self._now = now
        self._active: dict[str, Alert] = {}

    async def tick(
        self,
        zones: Sequence[DangerZone],
        fallback_location: Optional[Location] = None,
    ) -> list[Alert]:
        """Run one evaluation cycle and return the current alerts."""
        now = self._now()
        sample = await self._fetch_sample()

        candidates = (
            self._guarded("geofence", self._zone_alert, sample, zones, fallback_location, now),
            self._guarded("temperature", self._temperature_alert, sample, now),
            self._guarded("pressure", self._pressure_alert, sample, now),
            self._guarded("staleness", self._stale_alert, sample, now),
        )
        current: dict[str, Alert] = {}
        for alert in candidates:
            if alert is not None:
                current[alert.id] = alert

        previous = self._active
        for alert in current.values():
            prior = previous.get(alert.id)
            if prior is None or prior.level is not alert.level:
                await self._notify(alert, prior)

        ordered = sort_alerts(current.values())
        self._active = current

        logger.info(
            "tick_complete",
            alert_ids=[alert.id for alert in ordered],
            worst_level=ordered[0].level.value if ordered else None,
            has_sample=sample is not None,
        )
        return ordered

    def active_alerts(self) -> list[Alert]:
        return sort_alerts(self._active.values())

    def worst_level(self) -> Optional[AlertLevel]:
        alerts = self.active_alerts()
        return alerts[0].level if alerts else None

    def clear_all(self) -> None:
        """Forget every active alert and reset notification cooldowns."""
        self._active.clear()
        self._dispatcher.clear_cooldowns()
        logger.info("alerts_cleared")

    def prepare_refresh(self) -> None:
        """Manual refresh: drop cached telemetry and notification cooldowns."""
        self._client.invalidate()
        self._dispatcher.clear_cooldowns()

    def update_conditions(
        self,
        temperature: Optional[TemperatureThresholds] = None,
        stale_after: Optional[timedelta] = None,
    ) -> None:
        if temperature is not None:
            self._thresholds.temperature_thresholds = temperature
        if stale_after is not None:
            self._stale_after = stale_after
        logger.info(
            "alert_conditions_updated",
            temperature=temperature.model_dump() if temperature else None,
            stale_after_s=stale_after.total_seconds() if stale_after else None,
        )

    # ── Telemetry and notification ───────────────────────────

    async def _fetch_sample(self) -> Optional[TelemetrySample]:
        try:
            return await self._client.fetch()
        except FetchError as exc:
            logger.warning("tick_without_telemetry", error=str(exc))
        except Exception as exc:
            logger.error("tick_telemetry_unexpected_error", error=str(exc))
        return None

    async def _notify(self, alert: Alert, prior: Optional[Alert]) -> None:
        logger.info(
            "alert_transition",
            alert_id=alert.id,
            from_level=prior.level.value if prior else None,
            to_level=alert.level.value,
        )
        try:
            await self._dispatcher.trigger(alert)
        except Exception as exc:
            logger.error("notification_dispatch_failed", alert_id=alert.id, error=str(exc))

    def _guarded(self, rule: str, func: Callable[..., Optional[Alert]], *args: Any) -> Optional[Alert]:
        try:
            return func(*args)
        except Exception as exc:
            logger.error("evaluator_failed", evaluator=rule, error=str(exc))
            return None

    # ── Rules ────────────────────────────────────────────────

    def _resolve_location(
        self,
        sample: Optional[TelemetrySample],
        fallback_location: Optional[Location],
    ) -> Location:
        if sample is not None and sample.has_position:
            return Location(latitude=sample.latitude, longitude=sample.longitude)
        if fallback_location is not None:
            return fallback_location
        raise EvaluationSkipped("no sensor position and no device fallback location")

    def _zone_alert(
        self,
        sample: Optional[TelemetrySample],
        zones: Sequence[DangerZone],
        fallback_location: Optional[Location],
        now: datetime,
    ) -> Optional[Alert]:
        try:
            point = self._resolve_location(sample, fallback_location)
        except EvaluationSkipped as exc:
            logger.debug("geofence_skipped", reason=str(exc))
            return None

        result = self._geofence.evaluate(point, zones)
        if result.level is None:
            return None
        return Alert(
            id=DANGER_ZONE_ALERT_ID,
            type=AlertType.DANGER_ZONE,
            level=result.level,
            message=result.status,
            timestamp=now,
            distance=result.distance,
        )

    def _temperature_alert(self, sample: Optional[TelemetrySample], now: datetime) -> Optional[Alert]:
        if sample is None or sample.temperature is None:
            return None

        result = self._thresholds.classify_temperature(sample.temperature)
        if result.level is None:
            return None

        bands = self._thresholds.temperature_thresholds
        threshold = None
        if result.status is SensorStatus.CRITICAL:
            threshold = bands.critical_min
        elif result.status is SensorStatus.LOW:
            threshold = bands.low_max

        return Alert(
            id=TEMPERATURE_ALERT_ID,
            type=AlertType.TEMPERATURE,
            level=result.level,
            message=f"{result.level.value.upper()}: Foot temperature {sample.temperature:.1f}°C",
            timestamp=now,
            value=sample.temperature,
            threshold=threshold,
        )

    def _pressure_alert(self, sample: Optional[TelemetrySample], now: datetime) -> Optional[Alert]:
        if sample is None:
            return None

        result = self._thresholds.classify_pressure(sample.pressure)
        logger.debug("pressure_classified", status=result.status.value, pressure=sample.pressure)
        if result.level is None or sample.pressure is None:
            return None
        return Alert(
            id=PRESSURE_ALERT_ID,
            type=AlertType.PRESSURE,
            level=result.level,
            message=f"{result.level.value.upper()}: Pressure {sample.pressure:.0f} hPa",
            timestamp=now,
            value=sample.pressure,
        )

    def _stale_alert(self, sample: Optional[TelemetrySample], now: datetime) -> Optional[Alert]:
        if sample is None:
            return None

        age = now - sample.timestamp
        if age <= self._stale_after:
            return None
        return Alert(
            id=DATA_STALE_ALERT_ID,
            type=AlertType.DATA_STALE,
            level=AlertLevel.WARNING,
            message="WARNING: Sensor data is outdated",
            timestamp=now,
            value=age.total_seconds(),
        )
