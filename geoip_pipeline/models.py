"""Data carried through the ingestion pipeline."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from geoip_pipeline.errors import DecodeError

NO_MATCH_IP = "**NO MATCH**"


class InboundEvent(BaseModel):
    """One authentication attempt as emitted by the log shipper."""

    model_config = ConfigDict(frozen=True, extra="ignore", coerce_numbers_to_str=True)

    username: str = Field(..., description="Login name used in the attempt")
    ip: str = Field(..., description="Source address, or the no-match sentinel")
    port: str = Field(..., description="Source port as reported by the shipper")

    @property
    def has_ip(self) -> bool:
        """Return False when the shipper could not associate an IP with the line."""
        return self.ip != NO_MATCH_IP


@dataclass(frozen=True)
class Coordinates:
    """Represents a resolved coordinate pair."""

    latitude: float
    longitude: float


@dataclass(frozen=True)
class EnrichedRecord:
    """An event ready to be persisted as a single time-series point."""

    spatial_token: str
    username: str
    ip: str
    timestamp: Optional[datetime] = None
    success: bool = False

    @classmethod
    def from_event(cls, event: InboundEvent, spatial_token: str) -> "EnrichedRecord":
        return cls(spatial_token=spatial_token, username=event.username, ip=event.ip)


def decode_event(line: Union[bytes, str]) -> InboundEvent:
    """Parse one wire line into an event, raising ``DecodeError`` when malformed."""
    try:
        return InboundEvent.model_validate_json(line)
    except ValidationError as exc:
        raise DecodeError(f"Malformed event: {exc.error_count()} error(s), first: {exc.errors()[0]['msg']}") from exc
