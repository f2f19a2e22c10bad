"""
monitor/services/thresholds.py

Scalar sensor classification rules.
- classify_temperature: foot temperature bands
- classify_pressure: current pressure policy (always normal)
- classify_pressure_bands: banded pressure rule, kept ready to plug in
- sensor_trend: up/down/stable from consecutive readings

Band order matters: low, then critical, then warning, then normal.
"""

from typing import Callable, Optional, Sequence

from pydantic import BaseModel

from monitor.constants import (
    PRESSURE_NORMAL_MAX,
    PRESSURE_NORMAL_MIN,
    PRESSURE_WARNING_MAX,
    PRESSURE_WARNING_MIN,
    TEMPERATURE_CRITICAL_MIN,
    TEMPERATURE_LOW_MAX,
    TEMPERATURE_NORMAL_MAX,
    TEMPERATURE_NORMAL_MIN,
    TEMPERATURE_WARNING_MAX,
    TEMPERATURE_WARNING_MIN,
)
from monitor.schemas import AlertLevel, SensorStatus, ThresholdResult, Trend

SensorRule = Callable[[Optional[float]], ThresholdResult]


class TemperatureThresholds(BaseModel):
    """Temperature band edges in °C. Gaps between bands classify unknown."""

    model_config = {"frozen": True}

    low_max: float = TEMPERATURE_LOW_MAX
    normal_min: float = TEMPERATURE_NORMAL_MIN
    normal_max: float = TEMPERATURE_NORMAL_MAX
    warning_min: float = TEMPERATURE_WARNING_MIN
    warning_max: float = TEMPERATURE_WARNING_MAX
    critical_min: float = TEMPERATURE_CRITICAL_MIN


DEFAULT_TEMPERATURE_THRESHOLDS = TemperatureThresholds()


def classify_temperature(
    value: Optional[float],
    thresholds: TemperatureThresholds = DEFAULT_TEMPERATURE_THRESHOLDS,
) -> ThresholdResult:
    """Classify a foot temperature reading in °C."""
    if value is None:
        return ThresholdResult(status=SensorStatus.UNKNOWN)
    if value <= thresholds.low_max:
        return ThresholdResult(status=SensorStatus.LOW, level=AlertLevel.INFO)
    if value >= thresholds.critical_min:
        return ThresholdResult(status=SensorStatus.CRITICAL, level=AlertLevel.CRITICAL)
    if thresholds.warning_min <= value <= thresholds.warning_max:
        return ThresholdResult(status=SensorStatus.WARNING, level=AlertLevel.WARNING)
    if thresholds.normal_min <= value <= thresholds.normal_max:
        return ThresholdResult(status=SensorStatus.NORMAL)
    return ThresholdResult(status=SensorStatus.UNKNOWN)


def classify_pressure(value: Optional[float]) -> ThresholdResult:
    """Pressure alerts are disabled: every reading classifies normal."""
    return ThresholdResult(status=SensorStatus.NORMAL)


def classify_pressure_bands(value: Optional[float]) -> ThresholdResult:
    """Banded pressure rule in hPa; plug into ThresholdEvaluator to enable."""
    if value is None:
        return ThresholdResult(status=SensorStatus.UNKNOWN)
    if PRESSURE_NORMAL_MIN <= value <= PRESSURE_NORMAL_MAX:
        return ThresholdResult(status=SensorStatus.NORMAL)
    if PRESSURE_WARNING_MIN <= value <= PRESSURE_WARNING_MAX:
        status = SensorStatus.LOW if value < PRESSURE_NORMAL_MIN else SensorStatus.HIGH
        return ThresholdResult(status=status, level=AlertLevel.WARNING)
    return ThresholdResult(status=SensorStatus.CRITICAL, level=AlertLevel.CRITICAL)


def sensor_trend(values: Sequence[float]) -> Trend:
    """Compare the latest reading against the one before it."""
    if len(values) < 2:
        return Trend.STABLE
    if values[-1] > values[-2]:
        return Trend.UP
    if values[-1] < values[-2]:
        return Trend.DOWN
    return Trend.STABLE


class ThresholdEvaluator:
    """
    Holds the active temperature and pressure rules.

    The pressure rule is swappable so banded pressure alerts can be
    re-enabled without changing the alert manager.
    """

    def __init__(
        self,
        temperature_thresholds: TemperatureThresholds = DEFAULT_TEMPERATURE_THRESHOLDS,
        pressure_rule: SensorRule = classify_pressure,
    ) -> None:
        self.temperature_thresholds = temperature_thresholds
        self.pressure_rule = pressure_rule

    def classify_temperature(self, value: Optional[float]) -> ThresholdResult:
        return classify_temperature(value, self.temperature_thresholds)

    def classify_pressure(self, value: Optional[float]) -> ThresholdResult:
        return self.pressure_rule(value)
