"""
monitor/services/zone_store.py

Read-only access to the persisted danger zone list.
Zones are stored as a JSON array string under a single key of a
key-value mapping. The pipeline never writes zones; a malformed list
is logged and treated as empty.
"""

import json
from pathlib import Path
from typing import Iterator, Mapping, Optional

import structlog
from pydantic import ValidationError

from monitor.constants import ZONE_STORE_KEY
from monitor.errors import ZoneStoreCorrupt
from monitor.schemas import DangerZone

logger = structlog.get_logger(__name__)


def parse_zones(raw: str) -> list[DangerZone]:
    """
    Parse a stored zone list.

    Raises ZoneStoreCorrupt if raw is not a JSON array. Individual entries
    that fail validation (e.g. a non-positive radius) are skipped.
    """
    try:
        entries = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise ZoneStoreCorrupt(f"zone list is not valid JSON: {exc}") from exc
    if not isinstance(entries, list):
        raise ZoneStoreCorrupt(f"zone list must be a JSON array, got {type(entries).__name__}")

    zones: list[DangerZone] = []
    for index, entry in enumerate(entries):
        try:
            zones.append(DangerZone.model_validate(entry))
        except ValidationError as exc:
            logger.warning(
                "zone_entry_invalid",
                index=index,
                error_count=exc.error_count(),
            )
    return zones


class JsonFileBackend(Mapping[str, Optional[str]]):
    """
    Key-value view of a JSON object file, read on every access so edits
    made by the zone editor are picked up.

    A missing file is empty; an unreadable or malformed file is logged
    and also treated as empty. Non-string values are re-encoded as JSON.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def _load(self) -> dict[str, Optional[str]]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("zone_store_file_unreadable", path=str(self.path), error=str(exc))
            return {}
        if not isinstance(data, dict):
            logger.warning("zone_store_file_unreadable", path=str(self.path), error="not a JSON object")
            return {}
        return {
            k: v if isinstance(v, str) or v is None else json.dumps(v)
            for k, v in data.items()
        }

    def __getitem__(self, key: str) -> Optional[str]:
        return self._load()[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._load())

    def __len__(self) -> int:
        return len(self._load())


class ZoneStore:
    """Loads danger zones from a key-value backend."""

    def __init__(self, backend: Mapping[str, Optional[str]], key: str = ZONE_STORE_KEY) -> None:
        self._backend = backend
        self._key = key

    @classmethod
    def from_file(cls, path: str | Path, key: str = ZONE_STORE_KEY) -> "ZoneStore":
        """Open a JSON object file as the key-value backend; re-read on every load."""
        return cls(JsonFileBackend(path), key=key)

    def get_zones(self) -> list[DangerZone]:
        """Return the stored zones, or an empty list if none or corrupt."""
        raw = self._backend.get(self._key)
        if raw is None:
            return []
        try:
            zones = parse_zones(raw)
        except ZoneStoreCorrupt as exc:
            logger.warning("zone_store_corrupt", key=self._key, error=str(exc))
            return []
        logger.debug("zones_loaded", count=len(zones))
        return zones
