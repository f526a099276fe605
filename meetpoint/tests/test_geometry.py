import random

import pytest

from meetpoint.errors import InvalidParticipant
from meetpoint.geometry import centroid, degree_distance, geodesic_meters, step_toward
from meetpoint.models import GeoPoint, Participant


def test_centroid_is_arithmetic_mean():
    mid = centroid([GeoPoint(25.03, 121.56), GeoPoint(25.04, 121.55), GeoPoint(25.02, 121.57)])
    assert mid.lat == pytest.approx(25.03)
    assert mid.lng == pytest.approx(121.56)


def test_centroid_stays_inside_bounding_box():
    rng = random.Random(7)
    for _ in range(200):
        n = rng.randint(2, 12)
        points = [GeoPoint(rng.uniform(-90, 90), rng.uniform(-180, 180)) for _ in range(n)]
        mid = centroid(points)
        assert min(p.lat for p in points) <= mid.lat <= max(p.lat for p in points)
        assert min(p.lng for p in points) <= mid.lng <= max(p.lng for p in points)


def test_centroid_requires_points():
    with pytest.raises(ValueError):
        centroid([])


def test_step_toward_moves_fixed_distance():
    origin = GeoPoint(25.0, 121.0)
    moved = step_toward(origin, GeoPoint(25.03, 121.04), 0.005)
    assert degree_distance(origin, moved) == pytest.approx(0.005)
    # 3-4-5 triangle
    assert moved.lat == pytest.approx(25.003)
    assert moved.lng == pytest.approx(121.004)


def test_step_toward_same_point_is_noop():
    p = GeoPoint(1.0, 2.0)
    assert step_toward(p, p, 0.005) == p


def test_geodesic_meters_roughly_matches_degrees():
    # 0.01 degrees of latitude is about 1.1 km
    assert geodesic_meters(GeoPoint(25.0, 121.0), GeoPoint(25.01, 121.0)) == pytest.approx(1107, rel=0.01)


def test_participant_defaults_mode_and_allows_missing_location():
    p = Participant.from_dict({'id': 'u1', 'lat': None, 'lng': 121.5, 'travelMode': ''})
    assert p.travel_mode == 'driving'
    assert not p.located
    assert p.display_name == 'u1'


@pytest.mark.parametrize('record', [
    {'id': 1, 'lat': 91, 'lng': 0},
    {'id': 1, 'lat': 0, 'lng': -180.5},
    {'id': 1, 'lat': 'north', 'lng': 0},
    {'id': 1, 'lat': 0, 'lng': 0, 'travelMode': 'teleport'},
    'not-a-record',
])
def test_participant_rejects_bad_records(record):
    with pytest.raises(InvalidParticipant):
        Participant.from_dict(record)


def test_geopoint_from_dict_validates():
    assert GeoPoint.from_dict({'lat': '25.1', 'lng': 121}) == GeoPoint(25.1, 121.0)
    with pytest.raises(InvalidParticipant):
        GeoPoint.from_dict({'lat': 25.1})
