"""Time-series writer façade over the InfluxDB client."""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Optional
from urllib.parse import urlparse

import requests
import structlog
from influxdb import InfluxDBClient
from influxdb.exceptions import InfluxDBClientError, InfluxDBServerError

from geoip_pipeline.errors import ConfigError, StorageError
from geoip_pipeline.models import EnrichedRecord

if TYPE_CHECKING:
    from geoip_pipeline.config import PipelineConfig

LOGGER = structlog.get_logger(__name__)

DEFAULT_MEASUREMENT = "ssh-auth"

__all__ = ["RecordWriter", "build_point", "create_influx_client"]


def build_point(
    record: EnrichedRecord,
    *,
    measurement: str = DEFAULT_MEASUREMENT,
    token_tag: str = "geohash",
) -> Dict[str, Any]:
    """Return the point for a record, stamping it with the current time when unset."""
    timestamp = record.timestamp or datetime.now(timezone.utc)
    return {
        "measurement": measurement,
        "time": timestamp.isoformat(),
        "tags": {
            "username": record.username,
            token_tag: record.spatial_token,
        },
        "fields": {
            "ip": record.ip,
            "success": record.success,
        },
    }


def create_influx_client(
    url: str,
    *,
    database: str,
    username: Optional[str] = None,
    password: Optional[str] = None,
) -> InfluxDBClient:
    """Build an InfluxDB 1.x client from an ``http(s)://host:port[/path]`` URL."""
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise ConfigError(f"Invalid InfluxDB URL {url!r}")
    ssl = parsed.scheme == "https"
    try:
        port = parsed.port or (443 if ssl else 8086)
    except ValueError as exc:
        raise ConfigError(f"Invalid InfluxDB URL {url!r}: {exc}") from exc
    return InfluxDBClient(
        host=parsed.hostname,
        port=port,
        username=username or "root",
        password=password or "root",
        database=database,
        ssl=ssl,
        verify_ssl=ssl,
        path=parsed.path.strip("/"),
        # a single attempt per write; 0 would mean retry forever
        retries=1,
    )


class RecordWriter:
    """Persists enriched records, one point per record."""

    def __init__(
        self,
        client: InfluxDBClient,
        *,
        measurement: str = DEFAULT_MEASUREMENT,
        token_tag: str = "geohash",
        retention_policy: Optional[str] = None,
    ) -> None:
        self._client = client
        self._measurement = measurement
        self._token_tag = token_tag
        self._retention_policy = retention_policy

    @classmethod
    def from_config(cls, config: "PipelineConfig", *, token_tag: str) -> "RecordWriter":
        client = create_influx_client(
            config.influx_url,
            database=config.influx_database,
            username=config.influx_username,
            password=config.influx_password,
        )
        return cls(
            client,
            measurement=config.measurement,
            token_tag=token_tag,
            retention_policy=config.retention_policy,
        )

    @property
    def retention_policy(self) -> Optional[str]:
        return self._retention_policy

    async def write(self, record: EnrichedRecord, retention_policy: Optional[str] = None) -> None:
        """Write a single record.

        ``retention_policy`` is forwarded unmodified; when omitted the writer's
        default is used. Any backend failure is raised as ``StorageError``.
        """
        point = build_point(record, measurement=self._measurement, token_tag=self._token_tag)
        policy = retention_policy if retention_policy is not None else self._retention_policy
        try:
            await asyncio.to_thread(self._client.write_points, [point], retention_policy=policy)
        except (InfluxDBClientError, InfluxDBServerError, requests.RequestException) as exc:
            raise StorageError(f"Failed to write point for {record.ip}: {exc}") from exc
        LOGGER.debug(
            "record_written",
            measurement=self._measurement,
            token=record.spatial_token,
            retention_policy=policy,
        )

    async def close(self) -> None:
        await asyncio.to_thread(self._client.close)
