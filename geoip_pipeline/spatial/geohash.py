"""Geohash encoding by recursive bisection of the latitude/longitude box."""
from __future__ import annotations

from typing import Tuple

from geoip_pipeline.errors import EncodingError

BASE32 = "0123456789bcdefghjkmnpqrstuvwxyz"
MIN_PRECISION = 1
MAX_PRECISION = 12

_DECODE_MAP = {char: index for index, char in enumerate(BASE32)}


def validate_precision(precision: int) -> int:
    if isinstance(precision, bool) or not isinstance(precision, int):
        raise EncodingError(f"Geohash precision must be an integer, got {precision!r}")
    if not MIN_PRECISION <= precision <= MAX_PRECISION:
        raise EncodingError(
            f"Geohash precision must be between {MIN_PRECISION} and {MAX_PRECISION}, got {precision}"
        )
    return precision


def validate_coordinates(latitude: float, longitude: float) -> None:
    if not -90.0 <= latitude <= 90.0:
        raise EncodingError(f"Latitude out of range: {latitude}")
    if not -180.0 <= longitude <= 180.0:
        raise EncodingError(f"Longitude out of range: {longitude}")


def encode(latitude: float, longitude: float, precision: int) -> str:
    """Return the geohash of exactly ``precision`` characters containing the point.

    Bits alternate between longitude (first) and latitude; every five bits
    select one character of the base-32 alphabet.
    """
    validate_precision(precision)
    validate_coordinates(latitude, longitude)

    lat_range = [-90.0, 90.0]
    lon_range = [-180.0, 180.0]
    chars = []
    bits = 0
    value = 0
    use_longitude = True
    while len(chars) < precision:
        interval, coordinate = (lon_range, longitude) if use_longitude else (lat_range, latitude)
        middle = (interval[0] + interval[1]) / 2
        if coordinate >= middle:
            value = (value << 1) | 1
            interval[0] = middle
        else:
            value <<= 1
            interval[1] = middle
        use_longitude = not use_longitude
        bits += 1
        if bits == 5:
            chars.append(BASE32[value])
            bits = 0
            value = 0
    return "".join(chars)


def decode_bbox(token: str) -> Tuple[float, float, float, float]:
    """Return ``(min_lat, min_lon, max_lat, max_lon)`` for a geohash."""
    if not token:
        raise EncodingError("Cannot decode an empty geohash")
    lat_range = [-90.0, 90.0]
    lon_range = [-180.0, 180.0]
    use_longitude = True
    for char in token.lower():
        try:
            value = _DECODE_MAP[char]
        except KeyError:
            raise EncodingError(f"Invalid geohash character {char!r} in {token!r}") from None
        for shift in range(4, -1, -1):
            interval = lon_range if use_longitude else lat_range
            middle = (interval[0] + interval[1]) / 2
            if (value >> shift) & 1:
                interval[0] = middle
            else:
                interval[1] = middle
            use_longitude = not use_longitude
    return lat_range[0], lon_range[0], lat_range[1], lon_range[1]


def decode(token: str) -> Tuple[float, float]:
    """Return the centre ``(latitude, longitude)`` of the geohash cell."""
    min_lat, min_lon, max_lat, max_lon = decode_bbox(token)
    return (min_lat + max_lat) / 2, (min_lon + max_lon) / 2
