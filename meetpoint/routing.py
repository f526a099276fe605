"""
Routing provider adapter.

Everything the engine asks of the maps provider goes through ``RoutingAdapter``.
It owns the transit -> driving fallback so no call site has to re-implement
it, runs blocking provider calls on a thread pool for async fan-out, and keeps
per-kind query counters.
"""

import asyncio
import concurrent.futures
import logging
import threading
from collections import Counter
from typing import Dict, List, NamedTuple, Optional, Sequence

from .errors import ProviderUnavailable
from .geometry import geodesic_meters
from .models import Candidate, GeoPoint, Participant, TravelLeg

logger = logging.getLogger(__name__)

FALLBACK_MODES = {'transit': 'driving'}


class FanOut(NamedTuple):
    """Per-participant results in participant order, plus how many failed
    because the provider was unreachable."""
    results: list
    unavailable: int


class RoutingAdapter:
    """Engine-facing wrapper around a maps provider (normally ``GoogleMapsService``).

    The provider must offer ``reverse_geocode``, ``directions``,
    ``distance_matrix``, ``places_nearby`` and ``geocode_address``.
    """

    def __init__(self, provider, max_workers: int = 10):
        self.provider = provider
        self.executor = concurrent.futures.ThreadPoolExecutor(max_workers=max_workers)
        self._stats = Counter()
        self._stats_lock = threading.Lock()

    def cleanup(self):
        """Clean up resources"""
        self.executor.shutdown(wait=True)

    # --- Accounting ---
    def _count(self, kind: str, n: int = 1) -> None:
        with self._stats_lock:
            self._stats[kind] += n

    @property
    def stats(self) -> Dict[str, int]:
        with self._stats_lock:
            return dict(self._stats)

    def reset_stats(self) -> None:
        with self._stats_lock:
            self._stats.clear()

    # --- Provider calls with fallback ---
    def geocode_address(self, address: str) -> Optional[Dict]:
        self._count('geocode')
        self._count('provider_calls')
        return self.provider.geocode_address(address)

    def reverse_geocode(self, point: GeoPoint) -> Optional[str]:
        self._count('reverse_geocode')
        self._count('provider_calls')
        return self.provider.reverse_geocode(point)

    def _single_leg(self, origin: GeoPoint, destination: GeoPoint, mode: str) -> Optional[Dict]:
        self._count('provider_calls')
        matrix = self.provider.distance_matrix([origin], [destination], mode)
        return matrix[0][0] if matrix and matrix[0] else None

    def travel_time(self, origin: GeoPoint, destination: GeoPoint, mode: str) -> Optional[TravelLeg]:
        """Travel time for one pair; transit falls back to driving once."""
        self._count('travel_time')
        cell = self._single_leg(origin, destination, mode)
        if cell is not None:
            return TravelLeg(cell['duration_seconds'], cell['distance_meters'], mode)

        fallback = FALLBACK_MODES.get(mode)
        if fallback is None:
            return None
        logger.info(f"{mode} unresolved for {origin.as_latlng()} -> {destination.as_latlng()}, retrying with {fallback}")
        cell = self._single_leg(origin, destination, fallback)
        if cell is None:
            return None
        return TravelLeg(cell['duration_seconds'], cell['distance_meters'], fallback, fallback_used=True)

    def travel_time_matrix(
        self,
        origins: Sequence[GeoPoint],
        destinations: Sequence[GeoPoint],
        mode: str,
    ) -> List[List[Optional[TravelLeg]]]:
        """Full matrix for one mode. Unresolved transit cells are retried with
        driving in a single follow-up request covering only the affected
        origins and destinations."""
        self._count('matrix')
        self._count('provider_calls')
        raw = self.provider.distance_matrix(list(origins), list(destinations), mode)
        matrix: List[List[Optional[TravelLeg]]] = [
            [TravelLeg(c['duration_seconds'], c['distance_meters'], mode) if c else None for c in row]
            for row in raw
        ]

        fallback = FALLBACK_MODES.get(mode)
        missing = [(i, j) for i, row in enumerate(matrix) for j, cell in enumerate(row) if cell is None]
        if fallback is None or not missing:
            return matrix

        row_idx = sorted({i for i, _ in missing})
        col_idx = sorted({j for _, j in missing})
        logger.info(f"{len(missing)} {mode} cells unresolved, retrying with {fallback}")
        self._count('provider_calls')
        retry = self.provider.distance_matrix(
            [origins[i] for i in row_idx], [destinations[j] for j in col_idx], fallback
        )
        for i, j in missing:
            cell = retry[row_idx.index(i)][col_idx.index(j)]
            if cell:
                matrix[i][j] = TravelLeg(
                    cell['duration_seconds'], cell['distance_meters'], fallback, fallback_used=True
                )
        return matrix

    def matrix_row(self, origin: GeoPoint, destinations: Sequence[GeoPoint], mode: str) -> List[Optional[TravelLeg]]:
        """One origin to many destinations. If nothing resolved under transit,
        the whole row is requested again with driving."""
        self._count('matrix_row')
        self._count('provider_calls')
        raw = self.provider.distance_matrix([origin], list(destinations), mode)[0]
        if any(raw):
            return [TravelLeg(c['duration_seconds'], c['distance_meters'], mode) if c else None for c in raw]

        fallback = FALLBACK_MODES.get(mode)
        if fallback is None:
            return [None] * len(destinations)
        logger.info(f"No {mode} route from {origin.as_latlng()} to any destination, falling back to {fallback}")
        self._count('provider_calls')
        raw = self.provider.distance_matrix([origin], list(destinations), fallback)[0]
        return [
            TravelLeg(c['duration_seconds'], c['distance_meters'], fallback, fallback_used=True) if c else None
            for c in raw
        ]

    def route(self, origin: GeoPoint, destination: GeoPoint, mode: str) -> Optional[Dict]:
        """Directions with polyline; transit falls back to driving once."""
        self._count('route')
        self._count('provider_calls')
        result = self.provider.directions(origin, destination, mode)
        if result:
            return {**result, 'mode': mode, 'fallback_used': False}

        fallback = FALLBACK_MODES.get(mode)
        if fallback is None:
            return None
        self._count('provider_calls')
        result = self.provider.directions(origin, destination, fallback)
        if not result:
            return None
        return {**result, 'mode': fallback, 'fallback_used': True}

    def nearby_places(self, point: GeoPoint, radius_m: int, category: str) -> List[Candidate]:
        """Venues around ``point``, deduplicated by place id, in provider order.
        Results missing an id, name or location are skipped."""
        self._count('places')
        self._count('provider_calls')
        seen = set()
        candidates: List[Candidate] = []
        for place in self.provider.places_nearby(point, radius=radius_m, place_type=category):
            place_id = place.get('place_id')
            if not place_id or not place.get('name') or place.get('lat') is None or place.get('lng') is None:
                continue
            if place_id in seen:
                continue
            seen.add(place_id)
            venue_point = GeoPoint(place['lat'], place['lng'])
            candidates.append(Candidate(
                place_id=place_id,
                name=place['name'],
                point=venue_point,
                address=place.get('formatted_address') or '',
                rating=place.get('rating'),
                types=list(place.get('types') or []),
                distance_from_origin_m=geodesic_meters(point, venue_point),
            ))
        return candidates

    # Async wrapper methods for parallel execution
    async def _run(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, fn, *args)

    async def reverse_geocode_async(self, point: GeoPoint) -> Optional[str]:
        return await self._run(self.reverse_geocode, point)

    async def travel_time_async(self, origin: GeoPoint, destination: GeoPoint, mode: str) -> Optional[TravelLeg]:
        return await self._run(self.travel_time, origin, destination, mode)

    async def travel_time_matrix_async(self, origins, destinations, mode: str) -> List[List[Optional[TravelLeg]]]:
        return await self._run(self.travel_time_matrix, origins, destinations, mode)

    async def matrix_row_async(self, origin: GeoPoint, destinations, mode: str) -> List[Optional[TravelLeg]]:
        return await self._run(self.matrix_row, origin, destinations, mode)

    async def route_async(self, origin: GeoPoint, destination: GeoPoint, mode: str) -> Optional[Dict]:
        return await self._run(self.route, origin, destination, mode)

    async def nearby_places_async(self, point: GeoPoint, radius_m: int, category: str) -> List[Candidate]:
        return await self._run(self.nearby_places, point, radius_m, category)

    # --- Fan-out helpers (results keep participant order) ---
    async def _gather(self, coros) -> FanOut:
        raw = await asyncio.gather(*coros, return_exceptions=True)
        results = []
        unavailable = 0
        for item in raw:
            if isinstance(item, ProviderUnavailable):
                unavailable += 1
                results.append(None)
            elif isinstance(item, Exception):
                logger.warning(f"Routing query failed: {item!r}")
                results.append(None)
            else:
                results.append(item)
        return FanOut(results, unavailable)

    async def travel_times_to_point_async(self, participants: Sequence[Participant], point: GeoPoint) -> FanOut:
        """One travel-time query per participant to ``point``, all in flight at once."""
        return await self._gather(
            self.travel_time_async(p.point, point, p.travel_mode) for p in participants
        )

    async def matrix_rows_async(self, participants: Sequence[Participant], destinations: Sequence[GeoPoint]) -> FanOut:
        """One distance-matrix row per participant; a failed row becomes all None."""
        fan = await self._gather(
            self.matrix_row_async(p.point, destinations, p.travel_mode) for p in participants
        )
        rows = [row if row is not None else [None] * len(destinations) for row in fan.results]
        return FanOut(rows, fan.unavailable)

    async def routes_async(self, participants: Sequence[Participant], target: GeoPoint) -> FanOut:
        return await self._gather(
            self.route_async(p.point, target, p.travel_mode) for p in participants
        )
