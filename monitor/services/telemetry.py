"""
monitor/services/telemetry.py

Rate-limited, caching client for the sensor channel's read endpoints.
- fetch: latest reading, served from a single TTL cache slot when fresh,
  coalesced across concurrent callers, and backed by stale cache on failure
- fetch_history: uncached list of recent readings
- invalidate: drop the cache and the minimum-interval guard

Network access goes through one httpx.AsyncClient owned by this instance.
"""

import asyncio
import math
import time
from typing import Any, Callable, Optional

import httpx
import structlog

from monitor.constants import (
    CACHE_TTL_S,
    HISTORY_DEFAULT_RESULTS,
    HISTORY_TIMEOUT_S,
    INFLIGHT_WAIT_TIMEOUT_S,
    MIN_FETCH_INTERVAL_S,
    REQUEST_TIMEOUT_S,
)
from monitor.errors import FetchError
from monitor.schemas import CacheEntry, CacheStatus, TelemetrySample

logger = structlog.get_logger(__name__)

DEFAULT_BASE_URL = "https://api.thingspeak.com"


def _to_float(value: Any) -> Optional[float]:
    """Parse a numeric field; missing, blank or non-numeric values are absent."""
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number):
        return None
    return number


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_record(record: Any) -> TelemetrySample:
    """
    Build a TelemetrySample from one channel feed record.

    Field mapping: field1 latitude, field2 longitude, field3 on-device
    distance, field4 status, field5 temperature, field6 pressure.
    Raises ValueError when the record has no usable timestamp.
    """
    if not isinstance(record, dict):
        raise ValueError(f"expected a JSON object, got {type(record).__name__}")

    latitude = _to_float(record.get("field1"))
    longitude = _to_float(record.get("field2"))
    status = record.get("field4")

    return TelemetrySample(
        timestamp=record.get("created_at"),
        latitude=math.nan if latitude is None else latitude,
        longitude=math.nan if longitude is None else longitude,
        reported_distance=_to_float(record.get("field3")),
        status=str(status) if status is not None else None,
        temperature=_to_float(record.get("field5")),
        pressure=_to_float(record.get("field6")),
        entry_id=_to_int(record.get("entry_id")),
    )


class TelemetryClient:
    """
    Fetcher for one device channel.

    All state (cache slot, last network call, in-flight future) belongs to
    this instance; it is meant to be driven from a single event loop.
    """

    def __init__(
        self,
        channel_id: str,
        read_api_key: str = "",
        base_url: str = DEFAULT_BASE_URL,
        *,
        cache_ttl_s: float = CACHE_TTL_S,
        min_interval_s: float = MIN_FETCH_INTERVAL_S,
        inflight_wait_s: float = INFLIGHT_WAIT_TIMEOUT_S,
        request_timeout_s: float = REQUEST_TIMEOUT_S,
        history_timeout_s: float = HISTORY_TIMEOUT_S,
        history_results: int = HISTORY_DEFAULT_RESULTS,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._channel_id = channel_id
        self._read_api_key = read_api_key
        self._cache_ttl_s = cache_ttl_s
        self._min_interval_s = min_interval_s
        self._inflight_wait_s = inflight_wait_s
        self._request_timeout_s = request_timeout_s
        self._history_timeout_s = history_timeout_s
        self._history_results = history_results
        self._clock = clock

        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(base_url=base_url)

        self._cache: Optional[CacheEntry] = None
        self._last_call_at: Optional[float] = None
        self._in_flight: Optional[asyncio.Future] = None

    # ── Public interface ─────────────────────────────────────

    async def fetch(self, force_refresh: bool = False) -> TelemetrySample:
        """
        Return the latest sample.

        Serves the cache while it is younger than the TTL unless
        force_refresh is set. On network failure a cached sample of any
        age is returned; FetchError is raised only when nothing is cached.
        """
        if not force_refresh and self._cache_is_fresh():
            logger.debug("telemetry_cache_hit", cache_age_s=self._cache_age())
            return self._cache.data

        if self._in_flight is not None:
            return await self._await_in_flight()

        in_flight = asyncio.get_running_loop().create_future()
        self._in_flight = in_flight
        sample: Optional[TelemetrySample] = None
        try:
            sample = await self._fetch_from_network()
            return sample
        except FetchError as exc:
            if self._cache is None:
                logger.error("telemetry_fetch_failed", error=str(exc), cached=False)
                raise
            logger.warning(
                "telemetry_fetch_failed",
                error=str(exc),
                cached=True,
                cache_age_s=self._cache_age(),
            )
            sample = self._cache.data
            return sample
        finally:
            self._in_flight = None
            if not in_flight.done():
                in_flight.set_result(sample)

    async def fetch_history(self, results: Optional[int] = None) -> list[TelemetrySample]:
        """Fetch the most recent `results` readings, oldest first. Never cached."""
        if results is None:
            results = self._history_results
        if results < 1:
            raise ValueError("results must be a positive integer")

        try:
            payload = await self._get_json(
                self._path("feeds.json"),
                params={"results": results},
                timeout=self._history_timeout_s,
            )
        except httpx.HTTPError as exc:
            logger.error("telemetry_history_failed", results=results, error=str(exc))
            raise FetchError(f"history request failed: {exc}") from exc
        except ValueError as exc:
            logger.error("telemetry_history_failed", results=results, error=str(exc))
            raise FetchError(f"history response is not JSON: {exc}") from exc

        feeds = payload.get("feeds") if isinstance(payload, dict) else None
        samples: list[TelemetrySample] = []
        skipped = 0
        for record in feeds or []:
            try:
                samples.append(parse_record(record))
            except ValueError:
                skipped += 1

        if skipped:
            logger.warning("telemetry_history_records_skipped", skipped=skipped)
        logger.info("telemetry_history_fetched", requested=results, received=len(samples))
        return samples

    def invalidate(self) -> None:
        """Clear the cache slot and reset the minimum-interval guard."""
        self._cache = None
        self._last_call_at = None
        logger.info("telemetry_cache_cleared")

    def cache_status(self) -> CacheStatus:
        return CacheStatus(
            has_cached_data=self._cache is not None,
            cache_age_s=self._cache_age() if self._cache is not None else 0.0,
            is_call_in_progress=self._in_flight is not None,
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    # ── Internal helpers ─────────────────────────────────────

    def _path(self, resource: str) -> str:
        return f"/channels/{self._channel_id}/{resource}"

    def _cache_age(self) -> float:
        return max(0.0, self._clock() - self._cache.fetched_at)

    def _cache_is_fresh(self) -> bool:
        return self._cache is not None and self._cache_age() < self._cache_ttl_s

    async def _await_in_flight(self) -> TelemetrySample:
        """Wait for the running request instead of issuing a second one."""
        logger.debug("telemetry_call_in_progress_waiting")
        sample: Optional[TelemetrySample] = None
        try:
            sample = await asyncio.wait_for(
                asyncio.shield(self._in_flight), timeout=self._inflight_wait_s
            )
        except (asyncio.TimeoutError, TimeoutError):
            logger.warning("telemetry_inflight_wait_timeout", timeout_s=self._inflight_wait_s)

        if sample is not None:
            return sample
        if self._cache is not None:
            return self._cache.data
        raise FetchError("in-flight telemetry request produced no sample")

    async def _fetch_from_network(self) -> TelemetrySample:
        if self._last_call_at is not None:
            wait_s = self._min_interval_s - (self._clock() - self._last_call_at)
            if wait_s > 0:
                logger.debug("telemetry_rate_limit_wait", wait_s=round(wait_s, 3))
                await asyncio.sleep(wait_s)

        self._last_call_at = self._clock()
        try:
            record = await self._get_json(
                self._path("feeds/last.json"),
                timeout=self._request_timeout_s,
            )
            sample = parse_record(record)
        except httpx.HTTPError as exc:
            raise FetchError(f"telemetry request failed: {exc}") from exc
        except ValueError as exc:
            raise FetchError(f"telemetry record could not be parsed: {exc}") from exc

        fetched_at = self._clock()
        if self._cache is not None:
            fetched_at = max(fetched_at, self._cache.fetched_at)
        self._cache = CacheEntry(data=sample, fetched_at=fetched_at)

        logger.info(
            "telemetry_fetched",
            entry_id=sample.entry_id,
            has_position=sample.has_position,
            temperature=sample.temperature,
        )
        return sample

    async def _get_json(
        self,
        path: str,
        params: Optional[dict] = None,
        timeout: float = REQUEST_TIMEOUT_S,
    ) -> Any:
        query = dict(params or {})
        if self._read_api_key:
            query["api_key"] = self._read_api_key
        response = await self._client.get(
            path,
            params=query,
            headers={"Cache-Control": "no-cache"},
            timeout=timeout,
        )
        response.raise_for_status()
        return response.json()
