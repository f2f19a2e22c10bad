"""
config.py

Centralized configuration management using pydantic-settings.
Only the composition root (monitor/main.py) reads these settings;
services receive explicit values through their constructors.
"""

from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class Settings(BaseSettings):
    """Application-wide settings loaded from environment and .env file."""

    # Telemetry endpoint (ThingSpeak channel)
    telemetry_base_url: str = "https://api.thingspeak.com"
    telemetry_channel_id: str = ""
    telemetry_read_api_key: str = ""
    telemetry_request_timeout_s: float = 10.0
    telemetry_history_timeout_s: float = 15.0

    # Fetch cache and rate limiting
    telemetry_cache_ttl_s: float = 30.0
    telemetry_min_interval_s: float = 3.0
    telemetry_inflight_wait_s: float = 5.0
    history_default_results: int = 100

    # Zone store
    zone_store_path: str = "danger_zones.json"

    # Notification feedback
    enable_haptics: bool = True
    enable_audio: bool = True
    enable_visual: bool = True
    critical_cooldown_ms: int = 5000
    warning_cooldown_ms: int = 10000

    # Logging
    log_level: LogLevel = "INFO"
    log_json: bool = False

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, value: object) -> object:
        return value.upper() if isinstance(value, str) else value


settings = Settings()
