"""Resolve-IP-to-coordinates capability and its startup factory."""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from geoip_pipeline.errors import ConfigError
from geoip_pipeline.models import Coordinates

if TYPE_CHECKING:
    from geoip_pipeline.config import PipelineConfig

MAXMIND = "maxmind"
IPSTACK = "ipstack"
BACKENDS = (MAXMIND, IPSTACK)


class GeoResolver(ABC):
    """Looks up the location of an IP address.

    Implementations are shared by every connection and must tolerate
    concurrent calls.
    """

    name: str = "resolver"

    @abstractmethod
    async def resolve(self, ip: str) -> Coordinates:
        """Return the coordinates for ``ip``.

        Raises ``ResolutionError`` when the address is unparseable, has no
        known location, or the backend fails.
        """

    async def close(self) -> None:
        """Release backend resources."""


def create_resolver(config: "PipelineConfig") -> GeoResolver:
    """Build the single resolver selected by configuration."""
    if config.geoip_backend == MAXMIND:
        from geoip_pipeline.geo.maxmind import MaxMindResolver

        return MaxMindResolver.open(config.maxmind_path)
    if config.geoip_backend == IPSTACK:
        from geoip_pipeline.geo.ipstack import IpStackResolver

        return IpStackResolver(access_key=config.ipstack_access_key, base_url=config.ipstack_url)
    raise ConfigError(f"Unknown geoip backend {config.geoip_backend!r}")
