"""Find real venues near the optimized point and rank them by travel time."""

import logging
from typing import Any, Dict, List, NamedTuple, Sequence

from .errors import NoCandidates, NoValidRoutes, ProviderUnavailable
from .models import Candidate, GeoPoint, OptimizationResult, Participant, ScoredCandidate
from .routing import RoutingAdapter

logger = logging.getLogger(__name__)

VENUE_SEARCH_RADIUS_M = 1000
VENUE_CATEGORY = 'cafe'
MAX_CANDIDATES = 20


class VenueRanking(NamedTuple):
    result: OptimizationResult
    ranked: List[ScoredCandidate]
    invalid_count: int


def format_minutes(seconds: int) -> str:
    minutes = max(1, round(seconds / 60))
    if minutes < 60:
        return f"{minutes} min{'s' if minutes != 1 else ''}"
    hours, rem = divmod(minutes, 60)
    return f"{hours} hour{'s' if hours != 1 else ''} {rem} min{'s' if rem != 1 else ''}"


def format_distance(meters: int) -> str:
    if meters < 1000:
        return f"{meters} m"
    return f"{meters / 1000:.1f} km"


def participant_times(participants: Sequence[Participant], scored: ScoredCandidate) -> List[Dict[str, Any]]:
    return [
        {
            'participantId': p.id,
            'name': p.display_name,
            'travelMode': p.travel_mode,
            'resolvedMode': scored.modes[i],
            'fallbackUsed': scored.fallbacks[i],
            'travelTimeSeconds': scored.travel_times[i],
            'distanceMeters': scored.distances[i],
        }
        for i, p in enumerate(participants)
    ]


class VenueScorer:

    def __init__(
        self,
        routing: RoutingAdapter,
        radius_m: int = VENUE_SEARCH_RADIUS_M,
        category: str = VENUE_CATEGORY,
        max_candidates: int = MAX_CANDIDATES,
    ):
        self.routing = routing
        self.radius_m = radius_m
        self.category = category
        self.max_candidates = max_candidates

    async def find_candidates(self, location: GeoPoint) -> List[Candidate]:
        candidates = await self.routing.nearby_places_async(location, self.radius_m, self.category)
        candidates = candidates[: self.max_candidates]
        logger.info(f"Found {len(candidates)} {self.category} candidates near optimized point")
        return candidates

    def score_candidates(
        self,
        participants: Sequence[Participant],
        candidates: Sequence[Candidate],
        rows: Sequence[Sequence[Any]],
    ) -> List[ScoredCandidate]:
        """Aggregate the participant x candidate matrix. Only candidates reached
        by every participant are returned, in candidate order."""
        scored: List[ScoredCandidate] = []
        for j, candidate in enumerate(candidates):
            legs = [rows[i][j] for i in range(len(participants))]
            if any(leg is None for leg in legs):
                missing = [participants[i].id for i, leg in enumerate(legs) if leg is None]
                logger.debug(f"Invalid route set for candidate {candidate.name}: unresolved for {missing}")
                continue
            times = [leg.duration_seconds for leg in legs]
            scored.append(ScoredCandidate(
                candidate=candidate,
                travel_times=times,
                distances=[leg.distance_meters for leg in legs],
                modes=[leg.mode for leg in legs],
                fallbacks=[leg.fallback_used for leg in legs],
                total_time=sum(times),
                max_time=max(times),
            ))
        return scored

    async def rank(self, participants: Sequence[Participant], location: GeoPoint, objective: str) -> VenueRanking:
        """Search, score and rank venues around ``location``.

        Raises NoCandidates when the search is empty and NoValidRoutes when no
        venue is reachable by everyone.
        """
        candidates = await self.find_candidates(location)
        if not candidates:
            raise NoCandidates()

        destinations = [c.point for c in candidates]
        logger.info(
            f"Calculating travel times for {len(participants)} participants to {len(candidates)} destinations"
        )
        fan = await self.routing.matrix_rows_async(participants, destinations)
        scored = self.score_candidates(participants, candidates, fan.results)
        invalid_count = len(candidates) - len(scored)
        logger.info(f"Valid candidates: {len(scored)}, invalid: {invalid_count}")

        if not scored:
            if fan.unavailable == len(participants):
                raise ProviderUnavailable()
            logger.error(f"No valid routes found; checked {len(candidates)} candidates")
            raise NoValidRoutes()

        # sorted() is stable, so ties keep places-search order
        ranked = sorted(scored, key=lambda s: s.score(objective))
        best = ranked[0]
        logger.info(
            f"Best venue: {best.candidate.name} total={round(best.total_time / 60)} min "
            f"max={round(best.max_time / 60)} min"
        )
        result = OptimizationResult(
            chosen_venue=best.candidate,
            total_time=best.total_time,
            max_time=best.max_time,
            per_participant_times=participant_times(participants, best),
            candidates_considered=len(candidates),
        )
        return VenueRanking(result, ranked, invalid_count)
