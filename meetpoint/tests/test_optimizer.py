import asyncio

import pytest

from meetpoint.engine import prepare_participants
from meetpoint.errors import NoResolvableLocation, ProviderUnavailable
from meetpoint.geometry import centroid
from meetpoint.models import GeoPoint, Participant
from meetpoint.optimizer import MAX_ITERATIONS, TravelTimeOptimizer
from meetpoint.routing import RoutingAdapter


def _optimize(routing, participants, objective, **kwargs):
    optimizer = TravelTimeOptimizer(routing, **kwargs)
    return asyncio.run(optimizer.optimize(participants, objective))


SPREAD = [
    {'id': 'a', 'lat': 25.00, 'lng': 121.50, 'travelMode': 'driving'},
    {'id': 'b', 'lat': 25.10, 'lng': 121.50, 'travelMode': 'walking'},
    {'id': 'c', 'lat': 25.05, 'lng': 121.60, 'travelMode': 'bicycling'},
    {'id': 'd', 'lat': 25.02, 'lng': 121.58, 'travelMode': 'driving'},
]


@pytest.mark.parametrize('objective', ['minimize_total', 'minimize_max'])
def test_query_count_is_bounded(routing, objective):
    participants = prepare_participants(SPREAD)
    _optimize(routing, participants, objective)
    assert routing.stats['travel_time'] <= MAX_ITERATIONS * len(participants)


def test_taipei_scenario_converges_and_improves_on_centroid(routing, taipei):
    participants = prepare_participants(taipei)
    outcome = _optimize(routing, participants, 'minimize_max')
    assert 1 <= outcome.iterations <= 5
    assert outcome.seed == centroid([p.point for p in participants])
    assert outcome.best_max <= outcome.seed_max


def test_best_location_never_worse_than_seed(routing):
    participants = prepare_participants(SPREAD)
    outcome = _optimize(routing, participants, 'minimize_max')
    assert outcome.best_max <= outcome.seed_max
    improved = [step for step in outcome.trace if step['improved']]
    assert improved[0]['iteration'] == 1
    last = improved[-1]
    assert outcome.best_location == GeoPoint(last['lat'], last['lng'])


def test_moves_toward_slowest_participant(routing):
    # the walker is by far the slowest, so every step heads toward them
    participants = prepare_participants([
        {'id': 'car', 'lat': 25.00, 'lng': 121.50, 'travelMode': 'driving'},
        {'id': 'walker', 'lat': 25.10, 'lng': 121.50, 'travelMode': 'walking'},
    ])
    outcome = _optimize(routing, participants, 'minimize_max')
    lats = [step['lat'] for step in outcome.trace]
    assert all(step['slowestParticipantId'] == 'walker' for step in outcome.trace)
    assert lats == sorted(lats)
    assert outcome.best_location.lat > outcome.seed.lat


def test_converges_when_participants_are_close(routing):
    participants = prepare_participants([
        {'id': 1, 'lat': 25.030, 'lng': 121.560},
        {'id': 2, 'lat': 25.031, 'lng': 121.561},
    ])
    outcome = _optimize(routing, participants, 'minimize_total')
    assert outcome.converged
    assert outcome.stop_reason == 'converged'
    assert outcome.iterations == 1
    assert routing.stats['travel_time'] == 2


def test_objectives_use_separate_trackers(routing):
    participants = prepare_participants(SPREAD)
    outcome = _optimize(routing, participants, 'minimize_total')
    totals = [step['totalSeconds'] for step in outcome.trace]
    maxes = [step['maxSeconds'] for step in outcome.trace]
    assert outcome.best_total == min(totals)
    assert outcome.best_max == min(maxes)


def test_ties_keep_earlier_point():
    class FlatProvider:
        def distance_matrix(self, origins, destinations, mode):
            return [[{'duration_seconds': 600, 'distance_meters': 5000}]]

    adapter = RoutingAdapter(FlatProvider(), max_workers=2)
    try:
        participants = prepare_participants(SPREAD)
        outcome = _optimize(adapter, participants, 'minimize_max')
    finally:
        adapter.cleanup()
    assert outcome.best_location == outcome.seed
    assert outcome.iterations == MAX_ITERATIONS


def test_unresolved_first_iteration_raises(routing, fake_maps):
    fake_maps.unresolved_modes = {'walking'}
    participants = prepare_participants(SPREAD)
    with pytest.raises(NoResolvableLocation):
        _optimize(routing, participants, 'minimize_total')
    # stopped after the first round of queries
    assert routing.stats['travel_time'] == len(participants)


def test_unresolved_later_iteration_keeps_best_so_far(routing, fake_maps):
    participants = [
        Participant(id=1, lat=25.00, lng=121.50),
        Participant(id=2, lat=25.10, lng=121.50),
    ]
    seed = centroid([p.point for p in participants])
    # anything reached after the first step is unreachable
    original = fake_maps._cell

    def cell(origin, destination, mode):
        if destination != seed:
            return None
        return original(origin, destination, mode)

    fake_maps._cell = cell
    outcome = _optimize(routing, participants, 'minimize_max')
    assert outcome.best_location == seed
    assert outcome.stop_reason == 'unresolved'
    assert outcome.iterations == 1


def test_provider_down_raises_unavailable(routing, fake_maps):
    fake_maps.unavailable = True
    with pytest.raises(ProviderUnavailable):
        _optimize(routing, prepare_participants(SPREAD), 'minimize_max')
