import asyncio
import time

from meetpoint.models import GeoPoint, Participant
from meetpoint.routing import RoutingAdapter

HOME = GeoPoint(25.03, 121.56)
CAFE = GeoPoint(25.035, 121.565)


def test_travel_time_resolves_with_requested_mode(routing):
    leg = routing.travel_time(HOME, CAFE, 'walking')
    assert leg.mode == 'walking'
    assert not leg.fallback_used
    assert leg.duration_seconds > 60


def test_transit_falls_back_to_driving(routing, fake_maps):
    fake_maps.unresolved_modes = {'transit'}
    leg = routing.travel_time(HOME, CAFE, 'transit')
    assert leg.mode == 'driving'
    assert leg.fallback_used
    modes = [c['mode'] for c in fake_maps.calls_named('distance_matrix')]
    assert modes == ['transit', 'driving']


def test_other_modes_do_not_fall_back(routing, fake_maps):
    fake_maps.unresolved_modes = {'walking', 'bicycling'}
    assert routing.travel_time(HOME, CAFE, 'walking') is None
    assert routing.travel_time(HOME, CAFE, 'bicycling') is None
    assert len(fake_maps.calls_named('distance_matrix')) == 2


def test_fallback_can_still_fail(routing, fake_maps):
    fake_maps.unresolved_modes = {'transit', 'driving'}
    assert routing.travel_time(HOME, CAFE, 'transit') is None


def test_matrix_retries_only_unresolved_transit_cells(routing, fake_maps):
    origins = [GeoPoint(25.03, 121.56), GeoPoint(25.04, 121.55)]
    destinations = [GeoPoint(25.031, 121.561), GeoPoint(25.05, 121.58)]
    fake_maps.unresolved_origins = {(25.04, 121.55): {'transit'}}

    matrix = routing.travel_time_matrix(origins, destinations, 'transit')

    assert [leg.mode for leg in matrix[0]] == ['transit', 'transit']
    assert [leg.mode for leg in matrix[1]] == ['driving', 'driving']
    assert all(leg.fallback_used for leg in matrix[1])
    retry = fake_maps.calls_named('distance_matrix')[1]
    assert retry == {'origins': 1, 'destinations': 2, 'mode': 'driving'}


def test_matrix_row_falls_back_only_when_nothing_resolved(routing, fake_maps):
    destinations = [CAFE, GeoPoint(25.5, 121.9)]
    fake_maps.blocked_destinations = {(25.5, 121.9)}
    row = routing.matrix_row(HOME, destinations, 'transit')
    # one cell resolved, so no driving retry
    assert row[0].mode == 'transit'
    assert row[1] is None
    assert len(fake_maps.calls_named('distance_matrix')) == 1


def test_matrix_row_retries_whole_row_with_driving(routing, fake_maps):
    fake_maps.unresolved_origins = {(25.03, 121.56): {'transit'}}
    row = routing.matrix_row(HOME, [CAFE, GeoPoint(25.02, 121.57)], 'transit')
    assert [leg.mode for leg in row] == ['driving', 'driving']
    assert routing.stats['provider_calls'] == 2


def test_matrix_row_walking_has_no_fallback(routing, fake_maps):
    fake_maps.unresolved_modes = {'walking'}
    assert routing.matrix_row(HOME, [CAFE], 'walking') == [None]


def test_route_fallback(routing, fake_maps):
    fake_maps.unresolved_modes = {'transit'}
    route = routing.route(HOME, CAFE, 'transit')
    assert route['mode'] == 'driving'
    assert route['fallback_used']
    assert route['overview_polyline'] == 'poly-driving'


def test_nearby_places_dedupes_and_skips_incomplete(routing, fake_maps):
    fake_maps.places = [
        {'place_id': 'a', 'name': 'A', 'lat': 25.031, 'lng': 121.561},
        {'place_id': 'a', 'name': 'A again', 'lat': 25.031, 'lng': 121.561},
        {'place_id': None, 'name': 'No id', 'lat': 25.0, 'lng': 121.0},
        {'place_id': 'c', 'name': '', 'lat': 25.0, 'lng': 121.0},
        {'place_id': 'd', 'name': 'No location', 'lat': None, 'lng': None},
        {'place_id': 'b', 'name': 'B', 'lat': 25.032, 'lng': 121.562, 'formatted_address': '2 Road'},
    ]
    candidates = routing.nearby_places(HOME, 1000, 'cafe')
    assert [c.place_id for c in candidates] == ['a', 'b']
    assert candidates[1].address == '2 Road'
    assert candidates[0].distance_from_origin_m > 0


def test_fan_out_keeps_participant_order_regardless_of_completion():
    class SlowFirstProvider:
        """Earlier origins answer later, so completion order is reversed."""

        def distance_matrix(self, origins, destinations, mode):
            time.sleep(0.05 * (3 - origins[0].lat))
            return [[{'duration_seconds': int(origins[0].lat * 100), 'distance_meters': 1}]]

    adapter = RoutingAdapter(SlowFirstProvider(), max_workers=4)
    participants = [Participant(id=i, lat=float(i), lng=0.0) for i in range(3)]
    try:
        fan = asyncio.run(adapter.travel_times_to_point_async(participants, GeoPoint(0, 0)))
    finally:
        adapter.cleanup()
    assert [leg.duration_seconds for leg in fan.results] == [0, 100, 200]
    assert fan.unavailable == 0


def test_fan_out_isolates_unavailable_cells(routing, fake_maps):
    fake_maps.unavailable = True
    participants = [Participant(id=1, lat=25.03, lng=121.56), Participant(id=2, lat=25.04, lng=121.55)]
    fan = asyncio.run(routing.matrix_rows_async(participants, [CAFE, HOME]))
    assert fan.unavailable == 2
    assert fan.results == [[None, None], [None, None]]


def test_stats_count_logical_queries(routing):
    routing.travel_time(HOME, CAFE, 'driving')
    routing.travel_time(HOME, CAFE, 'driving')
    routing.nearby_places(HOME, 1000, 'cafe')
    stats = routing.stats
    assert stats['travel_time'] == 2
    assert stats['places'] == 1
    routing.reset_stats()
    assert routing.stats == {}
