"""
Meeting-point engine: the three operations exposed to route handlers.

    compute_geometric_midpoint       centroid + address + nearby suggestions
    compute_time_optimized_midpoint  centroid -> optimizer -> venue ranking
    compute_routes_to_point          directions from everyone to a target

Every operation is cache-first. Failures are raised as ``MidpointError``
subclasses and nothing is cached for them.
"""

import asyncio
import logging
from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .cache import (
    DEFAULT_TTLS,
    NAMESPACE_MIDPOINT,
    NAMESPACE_ROUTES,
    NAMESPACE_TIME_MIDPOINT,
    ResultCache,
    fingerprint,
    normalize_locations,
)
from .errors import InsufficientLocations, InvalidParticipant, ProviderUnavailable
from .geometry import centroid
from .maps_service import GoogleMapsService
from .models import OBJECTIVE_TOTAL, OBJECTIVES, GeoPoint, Participant, TravelLeg
from .optimizer import MAX_ITERATIONS, STEP_DEGREES, TravelTimeOptimizer
from .routing import RoutingAdapter
from .venues import (
    MAX_CANDIDATES,
    VENUE_CATEGORY,
    VENUE_SEARCH_RADIUS_M,
    VenueScorer,
    format_distance,
    format_minutes,
)

logger = logging.getLogger(__name__)

UNKNOWN_ADDRESS = 'Unknown location'
SUGGESTION_CATEGORY = 'restaurant'
SUGGESTION_RADIUS_M = 1500
SUGGESTION_COUNT = 3
ALTERNATIVES_COUNT = 3
IDENTITY_FIELDS = ('participantId', 'name')


def _run(coro):
    """Run a coroutine to completion on a private event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _anonymize(result: Dict, slots: Dict[str, List[int]], trace_slots: Sequence[int] = ()) -> Dict:
    """Cacheable form of ``result``.

    The cache key only covers locations and modes, so caller ids and names are
    stripped. Each per-participant entry is remembered by its position in the
    canonical participant order and relabelled from the request on a hit.
    """
    stored = dict(result)
    for field_name in slots:
        stored[field_name] = [
            {k: v for k, v in entry.items() if k not in IDENTITY_FIELDS} for entry in result[field_name]
        ]
    if trace_slots:
        optimization = dict(stored['optimization'])
        optimization['trace'] = [
            {k: v for k, v in step.items() if k != 'slowestParticipantId'} for step in optimization['trace']
        ]
        stored['optimization'] = optimization
    return {'result': stored, 'slots': slots, 'traceSlots': list(trace_slots)}


def _personalize(entry: Dict, located: Sequence[Participant]) -> Dict:
    result = dict(entry['result'])
    for field_name, slots in entry['slots'].items():
        result[field_name] = [
            {'participantId': located[slot].id, 'name': located[slot].display_name, **item}
            for slot, item in zip(slots, result[field_name])
        ]
    if entry['traceSlots']:
        optimization = dict(result['optimization'])
        optimization['trace'] = [
            {**step, 'slowestParticipantId': located[slot].id}
            for slot, step in zip(entry['traceSlots'], optimization['trace'])
        ]
        result['optimization'] = optimization
    return result


def prepare_participants(records: Iterable[Any]) -> List[Participant]:
    """Parse caller records, keep the geolocated ones and order them canonically.

    Raises InsufficientLocations when fewer than two have a location.
    """
    if records is None:
        records = []
    if not isinstance(records, (list, tuple)):
        raise InvalidParticipant('participants must be a list')
    parsed = [Participant.from_dict(r) for r in records]
    located = [p for p in parsed if p.located]
    if len(located) < 2:
        raise InsufficientLocations()
    return sorted(located, key=lambda p: (p.lat, p.lng, p.travel_mode, str(p.id)))


class MeetingPointEngine:

    def __init__(
        self,
        routing: RoutingAdapter,
        cache: Optional[ResultCache] = None,
        ttls: Optional[Dict[str, int]] = None,
        venue_category: str = VENUE_CATEGORY,
        venue_radius_m: int = VENUE_SEARCH_RADIUS_M,
        max_candidates: int = MAX_CANDIDATES,
        max_iterations: int = MAX_ITERATIONS,
        step_degrees: float = STEP_DEGREES,
    ):
        self.routing = routing
        self.cache = cache if cache is not None else ResultCache()
        self.ttls = {**DEFAULT_TTLS, **(ttls or {})}
        self.optimizer = TravelTimeOptimizer(routing, max_iterations=max_iterations, step_degrees=step_degrees)
        self.scorer = VenueScorer(
            routing, radius_m=venue_radius_m, category=venue_category, max_candidates=max_candidates
        )

    @classmethod
    def from_settings(cls, settings) -> 'MeetingPointEngine':
        maps_service = GoogleMapsService(settings.google_maps_api_key, timeout=settings.maps_timeout_seconds)
        routing = RoutingAdapter(maps_service, max_workers=settings.maps_max_workers)
        cache = ResultCache(default_ttl=settings.midpoint_cache_ttl, max_entries=settings.cache_max_entries)
        cache.start_sweeper(settings.cache_sweep_interval)
        return cls(
            routing,
            cache=cache,
            ttls={
                NAMESPACE_MIDPOINT: settings.midpoint_cache_ttl,
                NAMESPACE_TIME_MIDPOINT: settings.time_midpoint_cache_ttl,
                NAMESPACE_ROUTES: settings.routes_cache_ttl,
            },
            venue_category=settings.venue_category,
            venue_radius_m=settings.venue_search_radius,
        )

    def cleanup(self):
        self.cache.stop_sweeper()
        self.routing.cleanup()

    def _cached(self, key: str, located: Sequence[Participant]) -> Optional[Dict]:
        cached = self.cache.get(key)
        if cached is None:
            logger.info(f"Cache miss for {key.split(':', 1)[0]}")
            return None
        logger.info(f"Returning cached result for {key.split(':', 1)[0]}")
        return {**_personalize(cached, located), 'cached': True}

    def _store(self, namespace: str, key: str, result: Dict, slots: Dict[str, List[int]], trace_slots=()) -> None:
        self.cache.set(key, _anonymize(result, slots, trace_slots), self.ttls.get(namespace))

    # --- Public synchronous API ---
    def geocode_address(self, address: str) -> Optional[Dict]:
        return self.routing.geocode_address(address)

    def compute_geometric_midpoint(self, participants: Sequence[Any], scope: Optional[str] = None) -> Dict:
        return _run(self.compute_geometric_midpoint_async(participants, scope=scope))

    def compute_time_optimized_midpoint(
        self,
        participants: Sequence[Any],
        objective: str = OBJECTIVE_TOTAL,
        force_recalculate: bool = False,
        scope: Optional[str] = None,
    ) -> Dict:
        return _run(self.compute_time_optimized_midpoint_async(
            participants, objective=objective, force_recalculate=force_recalculate, scope=scope
        ))

    def compute_routes_to_point(self, participants: Sequence[Any], target: Any, scope: Optional[str] = None) -> Dict:
        return _run(self.compute_routes_to_point_async(participants, target, scope=scope))

    # --- Geometric midpoint ---
    async def compute_geometric_midpoint_async(self, participants: Sequence[Any], scope: Optional[str] = None) -> Dict:
        located = prepare_participants(participants)
        key = fingerprint(NAMESPACE_MIDPOINT, {'scope': scope, 'locations': normalize_locations(located)})
        cached = self._cached(key, located)
        if cached is not None:
            return cached

        midpoint = centroid([p.point for p in located])
        logger.info(f"Geometric midpoint of {len(located)} participants: {midpoint.lat:.6f}, {midpoint.lng:.6f}")

        # One matrix request per travel mode, all destined for the midpoint
        by_mode: Dict[str, List[int]] = OrderedDict()
        for idx, p in enumerate(located):
            by_mode.setdefault(p.travel_mode, []).append(idx)

        tasks = [self.routing.reverse_geocode_async(midpoint)]
        tasks += [
            self.routing.travel_time_matrix_async([located[i].point for i in idxs], [midpoint], mode)
            for mode, idxs in by_mode.items()
        ]
        tasks.append(self.routing.nearby_places_async(midpoint, SUGGESTION_RADIUS_M, SUGGESTION_CATEGORY))
        results = await asyncio.gather(*tasks, return_exceptions=True)

        provider_available = True
        for item in results:
            if isinstance(item, ProviderUnavailable):
                provider_available = False
            elif isinstance(item, Exception):
                raise item

        address = results[0] if isinstance(results[0], str) and results[0] else UNKNOWN_ADDRESS

        legs: List[Optional[TravelLeg]] = [None] * len(located)
        for (mode, idxs), matrix in zip(by_mode.items(), results[1:-1]):
            if isinstance(matrix, Exception):
                continue
            for row_pos, idx in enumerate(idxs):
                legs[idx] = matrix[row_pos][0]

        places = results[-1] if not isinstance(results[-1], Exception) else []
        if not provider_available:
            logger.warning("Maps service unavailable, continuing with basic midpoint data")
            places = []

        result = {
            'midpoint': midpoint.to_dict(),
            'address': address,
            'suggestedVenues': [c.to_dict() for c in places[:SUGGESTION_COUNT]],
            'perParticipantTravelTimes': [self._travel_time_entry(p, leg) for p, leg in zip(located, legs)],
            'participantCount': len(located),
            'providerAvailable': provider_available,
            'cached': False,
        }
        if provider_available:
            self._store(
                NAMESPACE_MIDPOINT, key, result, {'perParticipantTravelTimes': list(range(len(located)))}
            )
        return result

    @staticmethod
    def _travel_time_entry(participant: Participant, leg: Optional[TravelLeg]) -> Dict:
        if leg is None:
            return {
                'participantId': participant.id,
                'name': participant.display_name,
                'travelMode': participant.travel_mode,
                'durationSeconds': None,
                'durationText': None,
                'distanceMeters': None,
                'distanceText': None,
                'fallbackUsed': False,
            }
        return {
            'participantId': participant.id,
            'name': participant.display_name,
            'travelMode': participant.travel_mode,
            'durationSeconds': leg.duration_seconds,
            'durationText': format_minutes(leg.duration_seconds),
            'distanceMeters': leg.distance_meters,
            'distanceText': format_distance(leg.distance_meters),
            'fallbackUsed': leg.fallback_used,
        }

    # --- Time-optimized midpoint ---
    async def compute_time_optimized_midpoint_async(
        self,
        participants: Sequence[Any],
        objective: str = OBJECTIVE_TOTAL,
        force_recalculate: bool = False,
        scope: Optional[str] = None,
    ) -> Dict:
        objective = objective or OBJECTIVE_TOTAL
        if objective not in OBJECTIVES:
            raise InvalidParticipant(f"objective must be one of {', '.join(OBJECTIVES)}")
        located = prepare_participants(participants)

        key = fingerprint(NAMESPACE_TIME_MIDPOINT, {
            'scope': scope,
            'objective': objective,
            'category': self.scorer.category,
            'radius': self.scorer.radius_m,
            'locations': normalize_locations(located),
        })
        if force_recalculate:
            logger.info("Skipping cache due to forceRecalculate flag")
        else:
            cached = self._cached(key, located)
            if cached is not None:
                return cached

        outcome = await self.optimizer.optimize(located, objective)
        ranking = await self.scorer.rank(located, outcome.best_location, objective)
        best = ranking.result

        result = {
            'venue': best.chosen_venue.to_dict(),
            'metric': {'total': best.total_time, 'max': best.max_time},
            'perParticipantTimes': best.per_participant_times,
            'candidatesConsidered': best.candidates_considered,
            'alternatives': [
                {
                    **scored.candidate.to_dict(),
                    'metric': {'total': scored.total_time, 'max': scored.max_time},
                }
                for scored in ranking.ranked[1:1 + ALTERNATIVES_COUNT]
            ],
            'optimization': outcome.to_dict(),
            'objective': objective,
            'cached': False,
        }
        self._store(
            NAMESPACE_TIME_MIDPOINT,
            key,
            result,
            {'perParticipantTimes': list(range(len(located)))},
            trace_slots=outcome.slowest_indices,
        )
        return result

    # --- Routes to a point ---
    async def compute_routes_to_point_async(
        self,
        participants: Sequence[Any],
        target: Any,
        scope: Optional[str] = None,
    ) -> Dict:
        target_point = target if isinstance(target, GeoPoint) else GeoPoint.from_dict(target, 'target')
        located = prepare_participants(participants)
        key = fingerprint(NAMESPACE_ROUTES, {
            'scope': scope,
            'target': target_point.to_dict(),
            'locations': normalize_locations(located),
        })
        cached = self._cached(key, located)
        if cached is not None:
            return cached

        fan = await self.routing.routes_async(located, target_point)
        if fan.unavailable == len(located):
            raise ProviderUnavailable()

        routes = []
        route_slots = []
        for slot, (p, route) in enumerate(zip(located, fan.results)):
            if not route:
                logger.warning(f"No route for participant {p.display_name} ({p.travel_mode})")
                continue
            routes.append({
                'participantId': p.id,
                'name': p.display_name,
                'travelMode': p.travel_mode,
                'resolvedMode': route['mode'],
                'fallbackUsed': route['fallback_used'],
                'polyline': route['overview_polyline'],
                'points': route['points'],
                'durationSeconds': route['duration_seconds'],
                'distanceMeters': route['distance_meters'],
            })
            route_slots.append(slot)

        result = {'routes': routes, 'target': target_point.to_dict(), 'cached': False}
        self._store(NAMESPACE_ROUTES, key, result, {'routes': route_slots})
        return result
