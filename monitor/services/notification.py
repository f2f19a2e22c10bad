"""
monitor/services/notification.py

Cooldown-gated notification dispatch for new or escalated alerts.
Feedback is delivered through three host-provided effect sinks
(haptics, audio, visual). A missing, disabled or failing sink is a
logged no-op, never an error.
"""

import asyncio
import time
from enum import Enum
from typing import Any, Callable, Optional, Protocol

import structlog

from monitor.constants import (
    CRITICAL_EXTRA_PULSE_DISTANCE_M,
    CRITICAL_EXTRA_PULSE_OFFSETS_MS,
    WARNING_EXTRA_PULSE_DISTANCE_M,
    WARNING_EXTRA_PULSE_OFFSETS_MS,
)
from monitor.schemas import Alert, AlertLevel, NotificationConfig

logger = structlog.get_logger(__name__)


class HapticIntensity(str, Enum):
    LIGHT = "light"
    MEDIUM = "medium"
    HEAVY = "heavy"


class AudioCue(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    SUBTLE = "subtle"


class Haptics(Protocol):
    async def pulse(self, intensity: HapticIntensity) -> None: ...


class Audio(Protocol):
    async def play(self, cue: AudioCue) -> None: ...


class Visual(Protocol):
    async def alert_dialog(self, message: str) -> None: ...


_HAPTIC_INTENSITY: dict[AlertLevel, HapticIntensity] = {
    AlertLevel.CRITICAL: HapticIntensity.HEAVY,
    AlertLevel.WARNING: HapticIntensity.MEDIUM,
    AlertLevel.INFO: HapticIntensity.LIGHT,
}

_AUDIO_CUE: dict[AlertLevel, AudioCue] = {
    AlertLevel.CRITICAL: AudioCue.CRITICAL,
    AlertLevel.WARNING: AudioCue.WARNING,
    AlertLevel.INFO: AudioCue.SUBTLE,
}


class LogSink:
    """Effect sink for headless hosts: every feedback call becomes a log line."""

    async def pulse(self, intensity: HapticIntensity) -> None:
        logger.info("haptic_pulse", intensity=intensity.value)

    async def play(self, cue: AudioCue) -> None:
        logger.info("audio_cue", cue=cue.value)

    async def alert_dialog(self, message: str) -> None:
        logger.warning("critical_alert_dialog", message=message)


class NotificationDispatcher:
    """
    Delivers haptic, audio and visual feedback for an alert.

    Keeps the last dispatch time per alert id; an alert is suppressed while
    its level's cooldown has not elapsed. Info alerts share the warning
    cooldown. Follow-up haptic pulses and critical dialogs run as detached
    tasks so they never hold up the caller.
    """

    def __init__(
        self,
        config: Optional[NotificationConfig] = None,
        haptics: Optional[Haptics] = None,
        audio: Optional[Audio] = None,
        visual: Optional[Visual] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or NotificationConfig()
        self._haptics = haptics
        self._audio = audio
        self._visual = visual
        self._clock = clock
        self._last_trigger: dict[str, float] = {}
        self._pending: set[asyncio.Task] = set()
        self._dialogs: set[asyncio.Task] = set()

    @property
    def config(self) -> NotificationConfig:
        return self._config

    def update_config(self, **changes: Any) -> NotificationConfig:
        """Merge changes into the current config, validating the result."""
        self._config = NotificationConfig.model_validate(
            {**self._config.model_dump(), **changes}
        )
        logger.info("notification_config_updated", **changes)
        return self._config

    def cooldown_ms(self, level: AlertLevel) -> int:
        if level is AlertLevel.CRITICAL:
            return self._config.critical_cooldown_ms
        return self._config.warning_cooldown_ms

    def should_trigger(self, alert_id: str, level: AlertLevel) -> bool:
        """Check the cooldown for alert_id and record the dispatch if allowed."""
        now = self._clock()
        last = self._last_trigger.get(alert_id)
        if last is not None and (now - last) * 1000 < self.cooldown_ms(level):
            return False
        self._last_trigger[alert_id] = max(now, last) if last is not None else now
        return True

    def clear_cooldowns(self) -> None:
        self._last_trigger.clear()
        logger.info("notification_cooldowns_cleared")

    async def trigger(self, alert: Alert) -> bool:
        """
        Dispatch feedback for one alert.

        Returns True if feedback was dispatched, False if the alert was
        suppressed by its cooldown.
        """
        if not self.should_trigger(alert.id, alert.level):
            logger.debug(
                "notification_suppressed",
                alert_id=alert.id,
                level=alert.level.value,
                cooldown_ms=self.cooldown_ms(alert.level),
            )
            return False

        logger.info(
            "notification_triggered",
            alert_id=alert.id,
            level=alert.level.value,
            message=alert.message,
            distance=alert.distance,
        )

        await self._haptic_feedback(alert.level, alert.distance)

        if self._config.enable_audio:
            await self._call_sink("audio", self._audio, "play", _AUDIO_CUE[alert.level])

        if alert.level is AlertLevel.CRITICAL and self._config.enable_visual:
            # acknowledgement dialogs can stay open indefinitely
            task = asyncio.ensure_future(
                self._call_sink("visual", self._visual, "alert_dialog", alert.message)
            )
            self._dialogs.add(task)
            task.add_done_callback(self._dialogs.discard)

        return True

    async def aclose(self) -> None:
        """Wait for scheduled follow-up pulses and dismiss open dialogs."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        self._pending.clear()

        if self._dialogs:
            # let queued dialogs reach their sink before dismissing them
            await asyncio.sleep(0)
            dialogs = list(self._dialogs)
            for task in dialogs:
                task.cancel()
            await asyncio.gather(*dialogs, return_exceptions=True)
        self._dialogs.clear()

    # ── Internal helpers ─────────────────────────────────────

    async def _haptic_feedback(self, level: AlertLevel, distance: Optional[float]) -> None:
        if not self._config.enable_haptics:
            return

        intensity = _HAPTIC_INTENSITY[level]
        await self._call_sink("haptics", self._haptics, "pulse", intensity)

        if distance is None:
            return
        if level is AlertLevel.CRITICAL and distance <= CRITICAL_EXTRA_PULSE_DISTANCE_M:
            self._schedule_pulses(CRITICAL_EXTRA_PULSE_OFFSETS_MS, intensity)
        elif level is AlertLevel.WARNING and distance <= WARNING_EXTRA_PULSE_DISTANCE_M:
            self._schedule_pulses(WARNING_EXTRA_PULSE_OFFSETS_MS, intensity)

    def _schedule_pulses(self, offsets_ms: tuple[int, ...], intensity: HapticIntensity) -> None:
        for offset_ms in offsets_ms:
            task = asyncio.ensure_future(self._delayed_pulse(offset_ms / 1000, intensity))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _delayed_pulse(self, delay_s: float, intensity: HapticIntensity) -> None:
        await asyncio.sleep(delay_s)
        await self._call_sink("haptics", self._haptics, "pulse", intensity)

    async def _call_sink(self, channel: str, sink: Any, method: str, *args: Any) -> None:
        if sink is None:
            logger.debug("feedback_sink_unavailable", channel=channel)
            return
        try:
            await getattr(sink, method)(*args)
        except Exception as exc:
            logger.warning("feedback_sink_failed", channel=channel, error=str(exc))
