"""
monitor/constants.py

Safety threshold constants used by the evaluators, the alert manager,
the notification dispatcher and the polling driver.
All numeric rule values must be referenced from this module.
"""

# ── Geodesy ──────────────────────────────────────────────────
EARTH_RADIUS_M: int = 6_371_000

# ── Danger zone proximity bands (meters beyond zone radius) ──
ZONE_CRITICAL_MARGIN_M: float = 50.0
ZONE_WARNING_MARGIN_M: float = 100.0
ZONE_INFO_MARGIN_M: float = 200.0

# ── Foot temperature bands (°C) ──────────────────────────────
TEMPERATURE_LOW_MAX: float = 34.9
TEMPERATURE_NORMAL_MIN: float = 35.0
TEMPERATURE_NORMAL_MAX: float = 37.5
TEMPERATURE_WARNING_MIN: float = 37.6
TEMPERATURE_WARNING_MAX: float = 38.5
TEMPERATURE_CRITICAL_MIN: float = 38.6

# ── Pressure bands (hPa), used only by the optional band rule ─
PRESSURE_NORMAL_MIN: float = 800.0
PRESSURE_NORMAL_MAX: float = 1050.0
PRESSURE_WARNING_MIN: float = 750.0
PRESSURE_WARNING_MAX: float = 1100.0

# ── Staleness ────────────────────────────────────────────────
DATA_STALE_AFTER_S: int = 5 * 60

# ── Telemetry fetch cache ────────────────────────────────────
CACHE_TTL_S: float = 30.0
MIN_FETCH_INTERVAL_S: float = 3.0
INFLIGHT_WAIT_TIMEOUT_S: float = 5.0
REQUEST_TIMEOUT_S: float = 10.0
HISTORY_TIMEOUT_S: float = 15.0
HISTORY_DEFAULT_RESULTS: int = 100

# ── Notification cooldowns (milliseconds) ────────────────────
CRITICAL_COOLDOWN_MS: int = 5000
WARNING_COOLDOWN_MS: int = 10000

# ── Haptic schedules ─────────────────────────────────────────
CRITICAL_EXTRA_PULSE_DISTANCE_M: float = 50.0
CRITICAL_EXTRA_PULSE_OFFSETS_MS: tuple[int, ...] = (200, 400, 600)
WARNING_EXTRA_PULSE_DISTANCE_M: float = 100.0
WARNING_EXTRA_PULSE_OFFSETS_MS: tuple[int, ...] = (300,)

# ── Polling cadence (seconds) ────────────────────────────────
POLL_INTERVAL_CRITICAL_S: float = 5.0
POLL_INTERVAL_WARNING_S: float = 8.0
POLL_INTERVAL_NORMAL_S: float = 10.0

# ── Zone store ───────────────────────────────────────────────
ZONE_STORE_KEY: str = "@danger_zones"
