"""S2 cell tokens for the hierarchical encoding."""
from __future__ import annotations

import s2sphere

from geoip_pipeline.errors import EncodingError
from geoip_pipeline.spatial.geohash import validate_coordinates

MIN_LEVEL = 0
MAX_LEVEL = s2sphere.CellId.MAX_LEVEL


def validate_level(level: int) -> int:
    if isinstance(level, bool) or not isinstance(level, int):
        raise EncodingError(f"S2 level must be an integer, got {level!r}")
    if not MIN_LEVEL <= level <= MAX_LEVEL:
        raise EncodingError(f"S2 level must be between {MIN_LEVEL} and {MAX_LEVEL}, got {level}")
    return level


def cell_id(latitude: float, longitude: float, level: int) -> s2sphere.CellId:
    """Return the cell at ``level`` containing the point.

    The leaf cell is computed first and walked up to its ancestor, so the
    result is never finer than the requested level.
    """
    validate_level(level)
    validate_coordinates(latitude, longitude)
    leaf = s2sphere.CellId.from_lat_lng(s2sphere.LatLng.from_degrees(latitude, longitude))
    if leaf.level() > level:
        return leaf.parent(level)
    return leaf


def encode(latitude: float, longitude: float, level: int) -> str:
    return cell_id(latitude, longitude, level).to_token()
