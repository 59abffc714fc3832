"""Location lookups against a local MaxMind City database."""
from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

import geoip2.database
import structlog
from geoip2.errors import AddressNotFoundError
from maxminddb import InvalidDatabaseError

from geoip_pipeline.errors import ConfigError, ResolutionError
from geoip_pipeline.geo.resolver import GeoResolver
from geoip_pipeline.models import Coordinates

LOGGER = structlog.get_logger(__name__)


class MaxMindResolver(GeoResolver):
    """Reads coordinates from a GeoLite2/GeoIP2 City database held in memory."""

    name = "maxmind"

    def __init__(self, reader: geoip2.database.Reader, *, path: Optional[Path] = None) -> None:
        self._reader = reader
        self._path = path

    @classmethod
    def open(cls, path: Union[str, Path]) -> "MaxMindResolver":
        """Open the database file, failing fast when it is missing or corrupt."""
        db_path = Path(path)
        if not db_path.is_file():
            raise ConfigError(f"MaxMind database not found: {db_path}")
        try:
            reader = geoip2.database.Reader(str(db_path))
        except (InvalidDatabaseError, OSError, ValueError) as exc:
            raise ConfigError(f"Cannot open MaxMind database {db_path}: {exc}") from exc
        LOGGER.info("geoip_db_loaded", path=str(db_path), database_type=reader.metadata().database_type)
        return cls(reader, path=db_path)

    async def resolve(self, ip: str) -> Coordinates:
        try:
            city = self._reader.city(ip)
        except AddressNotFoundError as exc:
            raise ResolutionError(f"No location for {ip}") from exc
        except (ValueError, TypeError) as exc:
            # ValueError for malformed addresses, TypeError for a non-City database
            raise ResolutionError(f"Cannot look up {ip}: {exc}") from exc
        latitude = city.location.latitude
        longitude = city.location.longitude
        if latitude is None:
            raise ResolutionError(f"No latitude for {ip}")
        if longitude is None:
            raise ResolutionError(f"No longitude for {ip}")
        return Coordinates(latitude=latitude, longitude=longitude)

    async def close(self) -> None:
        self._reader.close()
