"""Process-wide choice of spatial encoding algorithm and precision."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Tuple

from geoip_pipeline.errors import ConfigError, EncodingError
from geoip_pipeline.models import Coordinates
from geoip_pipeline.spatial import geohash, s2cell

GEOHASH = "geohash"
S2 = "s2"

# algorithm -> (encode function, precision validator, point tag name)
_ALGORITHMS: Dict[str, Tuple[Callable[[float, float, int], str], Callable[[int], int], str]] = {
    GEOHASH: (geohash.encode, geohash.validate_precision, "geohash"),
    S2: (s2cell.encode, s2cell.validate_level, "s2_cell"),
}

ALGORITHMS = tuple(_ALGORITHMS)


@dataclass(frozen=True)
class SpatialEncoder:
    """Turns coordinates into a spatial token with a fixed algorithm and precision."""

    algorithm: str
    precision: int

    @classmethod
    def create(cls, algorithm: str, precision: int) -> "SpatialEncoder":
        """Validate the pair once at startup.

        An unknown algorithm or a precision outside the algorithm's range is a
        configuration error; it is never clamped per record.
        """
        if algorithm not in _ALGORITHMS:
            raise ConfigError(f"Unknown spatial algorithm {algorithm!r}, expected one of {', '.join(ALGORITHMS)}")
        _, validate, _ = _ALGORITHMS[algorithm]
        try:
            validate(precision)
        except EncodingError as exc:
            raise ConfigError(str(exc)) from exc
        return cls(algorithm=algorithm, precision=precision)

    @property
    def tag_key(self) -> str:
        """Name of the point tag holding the token."""
        return _ALGORITHMS[self.algorithm][2]

    def encode(self, coordinates: Coordinates) -> str:
        encode, _, _ = _ALGORITHMS[self.algorithm]
        return encode(coordinates.latitude, coordinates.longitude, self.precision)
