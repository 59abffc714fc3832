"""Location lookups through the ipstack HTTP API."""
from __future__ import annotations

import ipaddress
from typing import Optional

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from geoip_pipeline.errors import ConfigError, ResolutionError
from geoip_pipeline.geo.resolver import GeoResolver
from geoip_pipeline.models import Coordinates

DEFAULT_BASE_URL = "http://api.ipstack.com"


class IpStackError(BaseModel):
    model_config = ConfigDict(extra="ignore")

    code: Optional[int] = None
    type: Optional[str] = None
    info: Optional[str] = None


class IpStackRecord(BaseModel):
    """Subset of the ipstack standard lookup response."""

    model_config = ConfigDict(extra="ignore")

    ip: Optional[str] = None
    type: Optional[str] = None
    continent_code: Optional[str] = None
    country_code: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    success: bool = True
    error: Optional[IpStackError] = None


class IpStackResolver(GeoResolver):
    """Issues one GET per lookup, authenticated with an access key."""

    name = "ipstack"

    def __init__(
        self,
        *,
        access_key: Optional[str],
        base_url: str = DEFAULT_BASE_URL,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ) -> None:
        if not access_key:
            raise ConfigError("An ipstack access key is required")
        self._access_key = access_key
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def request(self, ip: str) -> IpStackRecord:
        try:
            response = await self._client.get(f"{self._base_url}/{ip}", params={"access_key": self._access_key})
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ResolutionError(f"ipstack request for {ip} failed: {exc}") from exc
        try:
            return IpStackRecord.model_validate_json(response.content)
        except ValidationError as exc:
            raise ResolutionError(f"Malformed ipstack response for {ip}") from exc

    async def resolve(self, ip: str) -> Coordinates:
        try:
            ipaddress.ip_address(ip)
        except ValueError as exc:
            raise ResolutionError(f"Invalid IP address {ip!r}") from exc
        record = await self.request(ip)
        if not record.success or record.error is not None:
            detail = record.error.info or record.error.type if record.error else "unknown error"
            raise ResolutionError(f"ipstack rejected {ip}: {detail}")
        if record.latitude is None or record.longitude is None:
            raise ResolutionError(f"No location for {ip}")
        return Coordinates(latitude=record.latitude, longitude=record.longitude)

    async def close(self) -> None:
        await self._client.aclose()
