"""
monitor/main.py

Composition root for the monitoring pipeline.
Builds one explicitly owned pipeline from settings and manages its
lifecycle; hosts pass the resulting Pipeline to their UI and driver.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncGenerator, Optional

import structlog

from config import Settings, settings as default_settings
from monitor.driver import PollingDriver
from monitor.schemas import Location, NotificationConfig
from monitor.services.alerts import AlertManager
from monitor.services.notification import (
    Audio,
    Haptics,
    LogSink,
    NotificationDispatcher,
    Visual,
)
from monitor.services.telemetry import TelemetryClient
from monitor.services.zone_store import ZoneStore

logger = structlog.get_logger(__name__)


def configure_logging(level: str = "INFO", json: bool = False) -> None:
    """Configure structlog for the host process. Call once at startup."""
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"unknown log level: {level!r}")

    renderer = (
        structlog.processors.JSONRenderer()
        if json
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        cache_logger_on_first_use=True,
    )


@dataclass
class Pipeline:
    """Every stateful component of one monitored device."""

    client: TelemetryClient
    dispatcher: NotificationDispatcher
    manager: AlertManager
    zone_store: ZoneStore
    driver: PollingDriver

    async def aclose(self) -> None:
        self.driver.stop()
        await self.dispatcher.aclose()
        await self.client.aclose()


def build_pipeline(
    config: Settings = default_settings,
    haptics: Optional[Haptics] = None,
    audio: Optional[Audio] = None,
    visual: Optional[Visual] = None,
    fallback_location: Optional[Location] = None,
) -> Pipeline:
    """Wire the pipeline components from settings and host effect sinks."""
    client = TelemetryClient(
        channel_id=config.telemetry_channel_id,
        read_api_key=config.telemetry_read_api_key,
        base_url=config.telemetry_base_url,
        cache_ttl_s=config.telemetry_cache_ttl_s,
        min_interval_s=config.telemetry_min_interval_s,
        inflight_wait_s=config.telemetry_inflight_wait_s,
        request_timeout_s=config.telemetry_request_timeout_s,
        history_timeout_s=config.telemetry_history_timeout_s,
        history_results=config.history_default_results,
    )
    dispatcher = NotificationDispatcher(
        config=NotificationConfig(
            enable_haptics=config.enable_haptics,
            enable_audio=config.enable_audio,
            enable_visual=config.enable_visual,
            critical_cooldown_ms=config.critical_cooldown_ms,
            warning_cooldown_ms=config.warning_cooldown_ms,
        ),
        haptics=haptics,
        audio=audio,
        visual=visual,
    )
    manager = AlertManager(client=client, dispatcher=dispatcher)
    zone_store = ZoneStore.from_file(config.zone_store_path)
    driver = PollingDriver(manager, zone_store, fallback_location=fallback_location)
    return Pipeline(
        client=client,
        dispatcher=dispatcher,
        manager=manager,
        zone_store=zone_store,
        driver=driver,
    )


@asynccontextmanager
async def open_pipeline(
    config: Settings = default_settings,
    haptics: Optional[Haptics] = None,
    audio: Optional[Audio] = None,
    visual: Optional[Visual] = None,
    fallback_location: Optional[Location] = None,
) -> AsyncGenerator[Pipeline, None]:
    """Manage pipeline lifecycle: build on entry, release resources on exit."""
    pipeline = build_pipeline(config, haptics, audio, visual, fallback_location)
    logger.info("pipeline_starting", channel_id=config.telemetry_channel_id)
    try:
        yield pipeline
    finally:
        await pipeline.aclose()
        logger.info("pipeline_stopped")


async def run(config: Settings = default_settings) -> None:
    """Run the driver with log-only feedback sinks until cancelled."""
    sink = LogSink()
    async with open_pipeline(config, haptics=sink, audio=sink, visual=sink) as pipeline:
        await pipeline.driver.run()


def main() -> None:
    configure_logging(default_settings.log_level, json=default_settings.log_json)
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("monitor_interrupted")


if __name__ == "__main__":
    main()
