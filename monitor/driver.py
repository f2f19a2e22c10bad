"""
monitor/driver.py

Periodic driver that owns the tick cadence.
The poll interval follows the worst active alert level, at most one tick
runs at a time, and a tick requested while another is running is dropped.
UI layers subscribe to the alert list instead of polling themselves.
"""

import asyncio
from typing import Callable, Optional, Sequence

import structlog

from monitor.constants import (
    POLL_INTERVAL_CRITICAL_S,
    POLL_INTERVAL_NORMAL_S,
    POLL_INTERVAL_WARNING_S,
)
from monitor.schemas import Alert, AlertLevel, DangerZone, Location
from monitor.services.alerts import AlertManager
from monitor.services.zone_store import ZoneStore

logger = structlog.get_logger(__name__)

AlertListener = Callable[[list[Alert]], None]


def interval_for(alerts: Sequence[Alert]) -> float:
    """Poll faster while critical or warning alerts are active."""
    levels = {alert.level for alert in alerts}
    if AlertLevel.CRITICAL in levels:
        return POLL_INTERVAL_CRITICAL_S
    if AlertLevel.WARNING in levels:
        return POLL_INTERVAL_WARNING_S
    return POLL_INTERVAL_NORMAL_S


class PollingDriver:
    """Runs AlertManager.tick() on a cadence and fans results out to listeners."""

    def __init__(
        self,
        manager: AlertManager,
        zone_store: ZoneStore,
        fallback_location: Optional[Location] = None,
    ) -> None:
        self._manager = manager
        self._zone_store = zone_store
        self.fallback_location = fallback_location
        self._zones: list[DangerZone] = []
        self._last_alerts: list[Alert] = []
        self._listeners: list[AlertListener] = []
        self._tick_in_progress = False
        self._stopped = asyncio.Event()

    @property
    def zones(self) -> list[DangerZone]:
        return list(self._zones)

    @property
    def last_alerts(self) -> list[Alert]:
        return list(self._last_alerts)

    @property
    def tick_in_progress(self) -> bool:
        return self._tick_in_progress

    def subscribe(self, listener: AlertListener) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set_fallback_location(self, location: Optional[Location]) -> None:
        self.fallback_location = location

    def reload_zones(self) -> list[DangerZone]:
        """Re-read zones from the store, e.g. after the zone editor saved."""
        self._zones = self._zone_store.get_zones()
        logger.info("zones_reloaded", count=len(self._zones))
        return self.zones

    async def request_tick(self) -> Optional[list[Alert]]:
        """Run one tick, or return None if a tick is already running."""
        if self._tick_in_progress:
            logger.info("tick_dropped", reason="tick_in_progress")
            return None

        self._tick_in_progress = True
        try:
            alerts = await self._manager.tick(self._zones, self.fallback_location)
        finally:
            self._tick_in_progress = False

        self._last_alerts = alerts
        self._publish(alerts)
        return alerts

    async def refresh(self) -> Optional[list[Alert]]:
        """Pull-to-refresh: reload zones, drop caches and cooldowns, then tick."""
        self.reload_zones()
        self._manager.prepare_refresh()
        return await self.request_tick()

    async def run(self) -> None:
        """Tick until stop() is called, sleeping interval_for(last alerts) between ticks."""
        self.reload_zones()
        logger.info("driver_started", zone_count=len(self._zones))

        while not self._stopped.is_set():
            try:
                await self.request_tick()
            except Exception as exc:
                logger.error("tick_failed", error=str(exc))

            interval = interval_for(self._last_alerts)
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=interval)
            except (asyncio.TimeoutError, TimeoutError):
                pass

        # reset so the driver can run again
        self._stopped.clear()
        logger.info("driver_stopped")

    def stop(self) -> None:
        self._stopped.set()

    def _publish(self, alerts: list[Alert]) -> None:
        for listener in list(self._listeners):
            try:
                listener(list(alerts))
            except Exception as exc:
                logger.warning("alert_listener_failed", error=str(exc))
