"""
tests/test_alerts.py

Unit tests for monitor/services/alerts.py.
Covers alert merging, edge-triggered notification, staleness, location
fallback, ordering and failure isolation. The telemetry client and the
dispatcher are mocked.
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from monitor.errors import FetchError
from monitor.schemas import AlertLevel, AlertType, Location
from monitor.services.alerts import AlertManager, sort_alerts
from monitor.services.notification import NotificationDispatcher
from monitor.services.thresholds import ThresholdEvaluator, classify_pressure_bands
from tests.fixtures import (
    TEST_NOW,
    FakeClock,
    build_alert,
    build_client_mock,
    build_dispatcher_mock,
    build_sample,
    build_zone,
    point_at_distance,
)


def build_manager(client, dispatcher=None, **kwargs) -> AlertManager:
    return AlertManager(
        client=client,
        dispatcher=dispatcher or build_dispatcher_mock(),
        now=lambda: TEST_NOW,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_stale_sample_without_zones_yields_single_stale_alert() -> None:
    sample = build_sample(timestamp=TEST_NOW - timedelta(minutes=6))
    manager = build_manager(build_client_mock(sample))

    alerts = await manager.tick([], None)

    assert len(alerts) == 1
    assert alerts[0].id == "data_stale"
    assert alerts[0].type is AlertType.DATA_STALE
    assert alerts[0].level is AlertLevel.WARNING


@pytest.mark.asyncio
async def test_fresh_sample_is_not_stale() -> None:
    sample = build_sample(timestamp=TEST_NOW - timedelta(minutes=5))
    manager = build_manager(build_client_mock(sample))

    assert await manager.tick([], None) == []


@pytest.mark.asyncio
async def test_sample_inside_zone_raises_critical_zone_alert() -> None:
    sample = build_sample(location=point_at_distance(40))
    dispatcher = build_dispatcher_mock()
    manager = build_manager(build_client_mock(sample), dispatcher)

    alerts = await manager.tick([build_zone(radius=100)], None)

    assert [a.id for a in alerts] == ["danger_zone"]
    alert = alerts[0]
    assert alert.level is AlertLevel.CRITICAL
    assert "inside" in alert.message.lower()
    assert alert.distance == pytest.approx(40, abs=0.01)
    assert alert.timestamp == TEST_NOW
    dispatcher.trigger.assert_awaited_once_with(alert)


@pytest.mark.asyncio
async def test_repeated_tick_notifies_once() -> None:
    sample = build_sample(location=point_at_distance(40), temperature=39.0)
    dispatcher = build_dispatcher_mock()
    manager = build_manager(build_client_mock(sample), dispatcher)
    zones = [build_zone(radius=100)]

    first = await manager.tick(zones, None)
    second = await manager.tick(zones, None)

    assert first == second
    assert dispatcher.trigger.await_count == 2  # one per alert id, first tick only


@pytest.mark.asyncio
async def test_repeated_tick_with_real_dispatcher_is_edge_suppressed() -> None:
    """The second tick is suppressed before the cooldown is consulted."""
    sample = build_sample(location=point_at_distance(40))
    dispatcher = NotificationDispatcher(clock=FakeClock())
    dispatcher.should_trigger = MagicMock(wraps=dispatcher.should_trigger)
    manager = build_manager(build_client_mock(sample), dispatcher)

    await manager.tick([build_zone()], None)
    await manager.tick([build_zone()], None)
    await dispatcher.aclose()

    dispatcher.should_trigger.assert_called_once()


@pytest.mark.asyncio
async def test_level_change_notifies_again() -> None:
    client = build_client_mock(build_sample(location=point_at_distance(190)))
    dispatcher = build_dispatcher_mock()
    manager = build_manager(client, dispatcher)
    zones = [build_zone(radius=100)]

    warning = await manager.tick(zones, None)
    client.fetch.return_value = build_sample(location=point_at_distance(140))
    critical = await manager.tick(zones, None)
    client.fetch.return_value = build_sample(location=point_at_distance(190))
    await manager.tick(zones, None)

    assert warning[0].level is AlertLevel.WARNING
    assert critical[0].level is AlertLevel.CRITICAL
    assert dispatcher.trigger.await_count == 3


@pytest.mark.asyncio
async def test_cleared_condition_notifies_when_it_returns() -> None:
    client = build_client_mock(build_sample(location=point_at_distance(40)))
    dispatcher = build_dispatcher_mock()
    manager = build_manager(client, dispatcher)
    zones = [build_zone(radius=100)]

    await manager.tick(zones, None)
    client.fetch.return_value = build_sample(location=point_at_distance(5000))
    cleared = await manager.tick(zones, None)
    client.fetch.return_value = build_sample(location=point_at_distance(40))
    await manager.tick(zones, None)

    assert cleared == []
    assert dispatcher.trigger.await_count == 2


@pytest.mark.asyncio
async def test_fetch_failure_still_evaluates_fallback_location() -> None:
    client = build_client_mock(error=FetchError("offline"))
    dispatcher = build_dispatcher_mock()
    manager = build_manager(client, dispatcher)

    alerts = await manager.tick([build_zone(radius=100)], point_at_distance(140))

    assert [a.id for a in alerts] == ["danger_zone"]
    assert alerts[0].level is AlertLevel.CRITICAL


@pytest.mark.asyncio
async def test_unexpected_client_error_does_not_abort_tick() -> None:
    client = build_client_mock(error=RuntimeError("bug"))
    manager = build_manager(client)

    alerts = await manager.tick([build_zone()], point_at_distance(0))

    assert [a.id for a in alerts] == ["danger_zone"]


@pytest.mark.asyncio
async def test_sentinel_position_falls_back_to_device_location() -> None:
    sample = build_sample(latitude=0.0, longitude=0.0)
    manager = build_manager(build_client_mock(sample))

    alerts = await manager.tick([build_zone(radius=100)], point_at_distance(290))

    assert alerts[0].id == "danger_zone"
    assert alerts[0].level is AlertLevel.INFO


@pytest.mark.asyncio
async def test_sample_position_preferred_over_fallback() -> None:
    sample = build_sample(location=point_at_distance(5000))
    manager = build_manager(build_client_mock(sample))

    alerts = await manager.tick([build_zone(radius=100)], point_at_distance(0))

    assert alerts == []


@pytest.mark.asyncio
async def test_no_location_skips_geofence_only() -> None:
    sample = build_sample(temperature=38.0)
    manager = build_manager(build_client_mock(sample))

    alerts = await manager.tick([build_zone()], None)

    assert [a.id for a in alerts] == ["temperature"]


@pytest.mark.asyncio
async def test_temperature_alert_fields() -> None:
    sample = build_sample(temperature=39.04)
    manager = build_manager(build_client_mock(sample))

    alerts = await manager.tick([], None)

    alert = alerts[0]
    assert alert.id == "temperature"
    assert alert.type is AlertType.TEMPERATURE
    assert alert.level is AlertLevel.CRITICAL
    assert alert.value == 39.04
    assert alert.threshold == 38.6
    assert alert.message == "CRITICAL: Foot temperature 39.0°C"


@pytest.mark.asyncio
async def test_low_temperature_alert_threshold() -> None:
    manager = build_manager(build_client_mock(build_sample(temperature=33.0)))

    alerts = await manager.tick([], None)

    assert alerts[0].level is AlertLevel.INFO
    assert alerts[0].threshold == 34.9


@pytest.mark.asyncio
async def test_normal_temperature_has_no_alert() -> None:
    manager = build_manager(build_client_mock(build_sample(temperature=36.6)))

    assert await manager.tick([], None) == []


@pytest.mark.asyncio
async def test_alerts_sorted_by_severity() -> None:
    sample = build_sample(
        timestamp=TEST_NOW - timedelta(minutes=10),
        location=point_at_distance(40),
        temperature=33.0,
    )
    manager = build_manager(build_client_mock(sample))

    alerts = await manager.tick([build_zone(radius=100)], None)

    assert [a.id for a in alerts] == ["danger_zone", "data_stale", "temperature"]
    assert [a.level for a in alerts] == [
        AlertLevel.CRITICAL,
        AlertLevel.WARNING,
        AlertLevel.INFO,
    ]


def test_sort_alerts_ties_by_recency() -> None:
    older = build_alert(alert_id="temperature", level=AlertLevel.WARNING, timestamp=TEST_NOW - timedelta(seconds=5))
    newer = build_alert(alert_id="data_stale", level=AlertLevel.WARNING, timestamp=TEST_NOW)
    critical = build_alert(alert_id="danger_zone", level=AlertLevel.CRITICAL, timestamp=TEST_NOW - timedelta(hours=1))

    assert [a.id for a in sort_alerts([older, newer, critical])] == [
        "danger_zone",
        "data_stale",
        "temperature",
    ]


@pytest.mark.asyncio
async def test_failing_geofence_evaluator_does_not_abort_tick() -> None:
    geofence = MagicMock()
    geofence.evaluate.side_effect = RuntimeError("bad zone")
    sample = build_sample(location=point_at_distance(0), temperature=39.0)
    manager = build_manager(build_client_mock(sample), geofence=geofence)

    alerts = await manager.tick([build_zone()], None)

    assert [a.id for a in alerts] == ["temperature"]


@pytest.mark.asyncio
async def test_failing_dispatcher_does_not_abort_tick() -> None:
    dispatcher = build_dispatcher_mock()
    dispatcher.trigger = AsyncMock(side_effect=RuntimeError("sink crashed"))
    sample = build_sample(location=point_at_distance(0), temperature=39.0)
    manager = build_manager(build_client_mock(sample), dispatcher)

    alerts = await manager.tick([build_zone()], None)

    assert {a.id for a in alerts} == {"danger_zone", "temperature"}
    assert dispatcher.trigger.await_count == 2


@pytest.mark.asyncio
async def test_default_pressure_rule_is_never_surfaced() -> None:
    manager = build_manager(build_client_mock(build_sample(pressure=400.0)))

    assert await manager.tick([], None) == []


@pytest.mark.asyncio
async def test_plugged_pressure_rule_is_surfaced() -> None:
    manager = build_manager(
        build_client_mock(build_sample(pressure=400.0)),
        thresholds=ThresholdEvaluator(pressure_rule=classify_pressure_bands),
    )

    alerts = await manager.tick([], None)

    assert [a.id for a in alerts] == ["pressure"]
    assert alerts[0].level is AlertLevel.CRITICAL


@pytest.mark.asyncio
async def test_active_alerts_and_worst_level() -> None:
    sample = build_sample(location=point_at_distance(190), temperature=33.0)
    manager = build_manager(build_client_mock(sample))

    assert manager.worst_level() is None
    await manager.tick([build_zone(radius=100)], None)

    assert manager.worst_level() is AlertLevel.WARNING
    assert [a.id for a in manager.active_alerts()] == ["danger_zone", "temperature"]


@pytest.mark.asyncio
async def test_clear_all_resets_edges_and_cooldowns() -> None:
    sample = build_sample(location=point_at_distance(0))
    dispatcher = build_dispatcher_mock()
    manager = build_manager(build_client_mock(sample), dispatcher)

    await manager.tick([build_zone()], None)
    manager.clear_all()
    assert manager.active_alerts() == []
    await manager.tick([build_zone()], None)

    dispatcher.clear_cooldowns.assert_called_once()
    assert dispatcher.trigger.await_count == 2


def test_prepare_refresh_invalidates_cache_and_cooldowns() -> None:
    client = build_client_mock()
    dispatcher = build_dispatcher_mock()
    manager = build_manager(client, dispatcher)

    manager.prepare_refresh()

    client.invalidate.assert_called_once()
    dispatcher.clear_cooldowns.assert_called_once()


@pytest.mark.asyncio
async def test_update_conditions_changes_stale_threshold() -> None:
    sample = build_sample(timestamp=TEST_NOW - timedelta(minutes=2))
    manager = build_manager(build_client_mock(sample))

    assert await manager.tick([], None) == []
    manager.update_conditions(stale_after=timedelta(minutes=1))
    alerts = await manager.tick([], None)

    assert [a.id for a in alerts] == ["data_stale"]


@pytest.mark.asyncio
async def test_missing_sample_skips_sensor_rules() -> None:
    manager = build_manager(build_client_mock(error=FetchError("offline")))

    assert await manager.tick([build_zone()], None) == []


@pytest.mark.asyncio
async def test_fallback_location_model_accepted() -> None:
    manager = build_manager(build_client_mock(error=FetchError("offline")))
    fallback = Location(latitude=10.0, longitude=10.0)

    alerts = await manager.tick([build_zone()], fallback)

    assert alerts[0].message == "Inside Quarry"


@pytest.mark.asyncio
async def test_unacknowledged_dialog_does_not_stall_ticks() -> None:
    acknowledged = asyncio.Event()

    async def wait_for_acknowledgement(message: str) -> None:
        await acknowledged.wait()

    visual = MagicMock()
    visual.alert_dialog = AsyncMock(side_effect=wait_for_acknowledgement)
    dispatcher = NotificationDispatcher(visual=visual, clock=FakeClock())
    client = build_client_mock(build_sample(location=point_at_distance(10)))
    manager = build_manager(client, dispatcher)

    first = await asyncio.wait_for(manager.tick([build_zone()], None), timeout=1.0)
    second = await asyncio.wait_for(manager.tick([build_zone()], None), timeout=1.0)
    await asyncio.wait_for(dispatcher.aclose(), timeout=3.0)

    assert first[0].level is AlertLevel.CRITICAL
    assert second == first
    visual.alert_dialog.assert_awaited_once()
