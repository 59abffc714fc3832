"""Process-wide collaborators shared by every connection."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from geoip_pipeline.geo.resolver import GeoResolver
from geoip_pipeline.observability.metrics import MetricsRegistry
from geoip_pipeline.spatial.encoder import SpatialEncoder
from geoip_pipeline.storage.writers import RecordWriter


@dataclass(frozen=True)
class PipelineContext:
    """Built once at startup and never mutated by connection tasks."""

    resolver: GeoResolver
    encoder: SpatialEncoder
    writer: RecordWriter
    retention_policy: Optional[str] = None
    decode_policy: str = "skip"
    metrics: MetricsRegistry = field(default_factory=MetricsRegistry)

    async def close(self) -> None:
        await self.resolver.close()
        await self.writer.close()
