"""
monitor/errors.py

Error taxonomy for the monitoring pipeline.
Stale data is not an error: it is reported as a data_stale alert.
"""


class MonitorError(Exception):
    """Base class for all pipeline errors."""


class FetchError(MonitorError):
    """Telemetry could not be fetched or parsed and no cached sample exists."""


class ZoneStoreCorrupt(MonitorError):
    """The persisted danger zone list is malformed."""


class EvaluationSkipped(MonitorError):
    """No location could be resolved for geofence evaluation this tick."""
