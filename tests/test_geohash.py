import pytest

from geoip_pipeline.errors import EncodingError
from geoip_pipeline.spatial import geohash


def test_encode_san_francisco():
    assert geohash.encode(37.7749, -122.4194, 5) == "9q8yy"


def test_encode_reference_point():
    assert geohash.encode(57.64911, 10.40744, 6) == "u4pruy"


def test_token_length_matches_precision():
    for precision in range(1, 13):
        assert len(geohash.encode(-33.8688, 151.2093, precision)) == precision


def test_coarser_token_is_prefix_of_finer():
    fine = geohash.encode(48.8566, 2.3522, 12)
    for precision in range(1, 12):
        assert fine.startswith(geohash.encode(48.8566, 2.3522, precision))


def test_decode_bbox_contains_point():
    min_lat, min_lon, max_lat, max_lon = geohash.decode_bbox(geohash.encode(37.7749, -122.4194, 7))
    assert min_lat <= 37.7749 <= max_lat
    assert min_lon <= -122.4194 <= max_lon


def test_decode_centre_is_close():
    latitude, longitude = geohash.decode("9q8yy")
    assert latitude == pytest.approx(37.7749, abs=0.05)
    assert longitude == pytest.approx(-122.4194, abs=0.05)


@pytest.mark.parametrize("precision", [0, 13, -1])
def test_invalid_precision(precision):
    with pytest.raises(EncodingError):
        geohash.encode(0.0, 0.0, precision)


@pytest.mark.parametrize("latitude,longitude", [(90.5, 0.0), (-91.0, 0.0), (0.0, 180.1), (float("nan"), 0.0)])
def test_out_of_range_coordinates(latitude, longitude):
    with pytest.raises(EncodingError):
        geohash.encode(latitude, longitude, 5)


def test_decode_rejects_invalid_characters():
    with pytest.raises(EncodingError):
        geohash.decode_bbox("9qa")
