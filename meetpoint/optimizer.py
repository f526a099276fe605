"""
Travel-time optimizer: hill-climb from the centroid toward whoever is
currently slowest.

Each iteration asks for one travel time per participant (concurrently) and
then takes a fixed step toward the slowest participant. The number of paid
queries is bounded by ``max_iterations * len(participants)``.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .errors import NoResolvableLocation, ProviderUnavailable
from .geometry import centroid, degree_distance, step_toward
from .models import OBJECTIVE_MAX, GeoPoint, Participant
from .routing import RoutingAdapter

logger = logging.getLogger(__name__)

MAX_ITERATIONS = 5
STEP_DEGREES = 0.005  # approximately 500 meters


@dataclass
class OptimizerOutcome:
    best_location: GeoPoint
    best_total: float
    best_max: float
    seed: GeoPoint
    seed_total: Optional[int] = None
    seed_max: Optional[int] = None
    iterations: int = 0
    converged: bool = False
    stop_reason: str = 'max_iterations'
    trace: List[Dict[str, Any]] = field(default_factory=list)
    # position of each step's slowest participant in the input order
    slowest_indices: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'bestLocation': self.best_location.to_dict(),
            'seed': self.seed.to_dict(),
            'seedMetric': {'total': self.seed_total, 'max': self.seed_max},
            'iterations': self.iterations,
            'converged': self.converged,
            'stopReason': self.stop_reason,
            'trace': list(self.trace),
        }


class TravelTimeOptimizer:

    def __init__(
        self,
        routing: RoutingAdapter,
        max_iterations: int = MAX_ITERATIONS,
        step_degrees: float = STEP_DEGREES,
    ):
        self.routing = routing
        self.max_iterations = max_iterations
        self.step_degrees = step_degrees

    async def optimize(self, participants: Sequence[Participant], objective: str) -> OptimizerOutcome:
        """Return the best point found for ``objective``.

        Raises NoResolvableLocation (or ProviderUnavailable when the service
        could not be reached) if no iteration resolved every participant.
        """
        seed = centroid([p.point for p in participants])
        current = seed
        logger.info(f"Starting optimization from centroid {current.lat:.6f}, {current.lng:.6f} ({objective})")

        # Kept apart: totals and maxima are different quantities
        best_total = math.inf
        best_max = math.inf
        best_location: Optional[GeoPoint] = None
        outcome_kwargs: Dict[str, Any] = {}
        trace: List[Dict[str, Any]] = []
        slowest_indices: List[int] = []
        stop_reason = 'max_iterations'
        converged = False
        last_unavailable = 0

        for iteration in range(self.max_iterations):
            fan = await self.routing.travel_times_to_point_async(participants, current)
            legs = fan.results
            if any(leg is None for leg in legs):
                failed = [participants[i].id for i, leg in enumerate(legs) if leg is None]
                logger.info(f"Iteration {iteration + 1}: unresolved travel time for participants {failed}, stopping")
                stop_reason = 'unresolved'
                last_unavailable = fan.unavailable if len(failed) == fan.unavailable else 0
                break

            times = [leg.duration_seconds for leg in legs]
            total_time = sum(times)
            max_time = max(times)
            slowest_idx = times.index(max_time)
            slowest = participants[slowest_idx]

            if iteration == 0:
                outcome_kwargs = {'seed_total': total_time, 'seed_max': max_time}

            improved_total = total_time < best_total
            improved_max = max_time < best_max
            if improved_total:
                best_total = total_time
            if improved_max:
                best_max = max_time
            improved = improved_max if objective == OBJECTIVE_MAX else improved_total
            if improved:
                best_location = current

            trace.append({
                'iteration': iteration + 1,
                'lat': current.lat,
                'lng': current.lng,
                'totalSeconds': total_time,
                'maxSeconds': max_time,
                'slowestParticipantId': slowest.id,
                'improved': improved,
            })
            slowest_indices.append(slowest_idx)
            logger.info(
                f"Iteration {iteration + 1}: point={current.lat:.6f},{current.lng:.6f} "
                f"total={round(total_time / 60)} min max={round(max_time / 60)} min "
                f"slowest={slowest.display_name}{' (new best)' if improved else ''}"
            )

            if degree_distance(current, slowest.point) < self.step_degrees:
                logger.info("Converged: distance to slowest participant below step size")
                converged = True
                stop_reason = 'converged'
                break

            current = step_toward(current, slowest.point, self.step_degrees)

        if best_location is None:
            if last_unavailable:
                raise ProviderUnavailable()
            raise NoResolvableLocation()

        outcome = OptimizerOutcome(
            best_location=best_location,
            best_total=best_total,
            best_max=best_max,
            seed=seed,
            iterations=len(trace),
            converged=converged,
            stop_reason=stop_reason,
            trace=trace,
            slowest_indices=slowest_indices,
            **outcome_kwargs,
        )
        logger.info(f"Optimization complete. Best location: {best_location.lat:.6f}, {best_location.lng:.6f}")
        return outcome
