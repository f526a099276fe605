import math
import threading

import pytest

from meetpoint.cache import ResultCache
from meetpoint.engine import MeetingPointEngine
from meetpoint.errors import ProviderUnavailable
from meetpoint.routing import RoutingAdapter

METERS_PER_DEGREE = 111_000
SPEEDS_MPS = {'driving': 10.0, 'transit': 7.0, 'bicycling': 5.0, 'walking': 1.4}
PLACE_OFFSETS = [(0.0, 0.0), (0.003, 0.0), (0.0, -0.004), (-0.002, 0.002), (0.004, 0.004)]

TAIPEI = [
    {'id': 1, 'lat': 25.03, 'lng': 121.56, 'travelMode': 'driving', 'name': 'Amy'},
    {'id': 2, 'lat': 25.04, 'lng': 121.55, 'travelMode': 'driving', 'name': 'Ben'},
    {'id': 3, 'lat': 25.02, 'lng': 121.57, 'travelMode': 'driving', 'name': 'Chen'},
]


def _key(point):
    return (round(point.lat, 6), round(point.lng, 6))


class FakeMapsService:
    """Deterministic stand-in for GoogleMapsService.

    Travel time = planar distance / per-mode speed + one minute. Switches:
      unresolved_modes         modes that never resolve
      unresolved_origins       {(lat, lng): {modes}} that never resolve from that origin
      blocked_destinations     {(lat, lng)} no mode reaches
      places                   explicit places list (None -> generated around the query)
      unavailable              every call raises ProviderUnavailable
    """

    def __init__(self):
        self.calls = []
        self.unresolved_modes = set()
        self.unresolved_origins = {}
        self.blocked_destinations = set()
        self.places = None
        self.unavailable = False
        self._lock = threading.Lock()

    def _record(self, name, **info):
        with self._lock:
            self.calls.append((name, info))
        if self.unavailable:
            raise ProviderUnavailable()

    def calls_named(self, name):
        return [info for call, info in self.calls if call == name]

    def _cell(self, origin, destination, mode):
        if mode in self.unresolved_modes:
            return None
        if mode in self.unresolved_origins.get(_key(origin), set()):
            return None
        if _key(destination) in self.blocked_destinations:
            return None
        meters = math.hypot(destination.lat - origin.lat, destination.lng - origin.lng) * METERS_PER_DEGREE
        return {
            'duration_seconds': int(meters / SPEEDS_MPS[mode]) + 60,
            'distance_meters': int(meters),
        }

    def geocode_address(self, address):
        self._record('geocode', address=address)
        if address == 'nowhere':
            return None
        return {'formatted_address': f"{address}, Taipei", 'lat': 25.03, 'lng': 121.56}

    def reverse_geocode(self, point):
        self._record('reverse_geocode', point=point)
        return f"Near {point.lat:.4f},{point.lng:.4f}"

    def distance_matrix(self, origins, destinations, mode):
        self._record('distance_matrix', origins=len(origins), destinations=len(destinations), mode=mode)
        return [[self._cell(o, d, mode) for d in destinations] for o in origins]

    def directions(self, origin, destination, mode):
        self._record('directions', mode=mode)
        cell = self._cell(origin, destination, mode)
        if cell is None:
            return None
        return {
            'overview_polyline': f"poly-{mode}",
            'points': [origin.to_dict(), destination.to_dict()],
            'duration_seconds': cell['duration_seconds'],
            'distance_meters': cell['distance_meters'],
        }

    def places_nearby(self, location, radius=1000, place_type='cafe'):
        self._record('places_nearby', location=location, radius=radius, place_type=place_type)
        if self.places is not None:
            return [dict(p) for p in self.places]
        return [
            {
                'place_id': f"place-{i}",
                'name': f"{place_type.title()} {i}",
                'formatted_address': f"{i} Test Road",
                'lat': location.lat + dlat,
                'lng': location.lng + dlng,
                'rating': 4.0,
                'types': [place_type],
            }
            for i, (dlat, dlng) in enumerate(PLACE_OFFSETS)
        ]


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def fake_maps():
    return FakeMapsService()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def routing(fake_maps):
    adapter = RoutingAdapter(fake_maps, max_workers=4)
    yield adapter
    adapter.cleanup()


@pytest.fixture
def cache(clock):
    return ResultCache(default_ttl=300, clock=clock)


@pytest.fixture
def engine(routing, cache):
    return MeetingPointEngine(routing, cache=cache)


@pytest.fixture
def taipei():
    return [dict(p) for p in TAIPEI]
