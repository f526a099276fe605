"""
Value types passed between the meeting-point engine components.
Plain dataclasses; the JSON payloads returned to callers are built from these
with the ``to_dict`` helpers.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import InvalidParticipant


TRAVEL_MODES = ('driving', 'walking', 'transit', 'bicycling')
DEFAULT_TRAVEL_MODE = 'driving'

OBJECTIVE_TOTAL = 'minimize_total'
OBJECTIVE_MAX = 'minimize_max'
OBJECTIVES = (OBJECTIVE_TOTAL, OBJECTIVE_MAX)


@dataclass(frozen=True)
class GeoPoint:
    lat: float
    lng: float

    def as_latlng(self) -> str:
        """Format as the ``"lat,lng"`` string the Maps APIs accept."""
        return f"{self.lat},{self.lng}"

    def to_dict(self) -> Dict[str, float]:
        return {'lat': self.lat, 'lng': self.lng}

    @classmethod
    def from_dict(cls, data: Any, label: str = 'point') -> 'GeoPoint':
        if not isinstance(data, dict) or 'lat' not in data or 'lng' not in data:
            raise InvalidParticipant(f"{label} must have lat and lng properties")
        lat = _coerce_coordinate(data['lat'], f"{label}.lat")
        lng = _coerce_coordinate(data['lng'], f"{label}.lng")
        _check_range(lat, lng, label)
        return cls(lat, lng)


@dataclass(frozen=True)
class Participant:
    id: Any
    lat: Optional[float]
    lng: Optional[float]
    travel_mode: str = DEFAULT_TRAVEL_MODE
    name: Optional[str] = None

    @property
    def located(self) -> bool:
        return self.lat is not None and self.lng is not None

    @property
    def point(self) -> GeoPoint:
        return GeoPoint(self.lat, self.lng)

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        return str(self.id) if self.id is not None else 'Unknown'

    @classmethod
    def from_dict(cls, data: Any) -> 'Participant':
        """Build a participant from a caller record ``{id, lat, lng, travelMode}``.

        ``lat``/``lng`` may be missing or null (participant has not shared a
        location yet); anything present must be a valid coordinate.
        """
        if isinstance(data, Participant):
            return data
        if not isinstance(data, dict):
            raise InvalidParticipant('participant must be an object')

        pid = data.get('id')
        raw_lat, raw_lng = data.get('lat'), data.get('lng')
        lat = _coerce_coordinate(raw_lat, 'lat') if raw_lat is not None else None
        lng = _coerce_coordinate(raw_lng, 'lng') if raw_lng is not None else None
        if lat is not None and lng is not None:
            _check_range(lat, lng, f"participant {pid}")

        mode = data.get('travelMode', data.get('travel_mode')) or DEFAULT_TRAVEL_MODE
        mode = str(mode).lower()
        if mode not in TRAVEL_MODES:
            raise InvalidParticipant(
                f"participant {pid}: travelMode must be one of {', '.join(TRAVEL_MODES)}"
            )

        name = data.get('name') or data.get('username') or data.get('nickname')
        return cls(id=pid, lat=lat, lng=lng, travel_mode=mode, name=name)


@dataclass(frozen=True)
class TravelLeg:
    """A resolved travel-time query. ``mode`` is the mode that actually resolved."""
    duration_seconds: int
    distance_meters: int
    mode: str
    fallback_used: bool = False


@dataclass
class Candidate:
    place_id: str
    name: str
    point: GeoPoint
    address: str = ''
    rating: Optional[float] = None
    types: List[str] = field(default_factory=list)
    distance_from_origin_m: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'placeId': self.place_id,
            'name': self.name,
            'lat': self.point.lat,
            'lng': self.point.lng,
            'address': self.address,
            'rating': self.rating,
            'types': list(self.types),
            'distanceFromOptimumMeters': (
                round(self.distance_from_origin_m, 1)
                if self.distance_from_origin_m is not None else None
            ),
        }


@dataclass
class ScoredCandidate:
    candidate: Candidate
    travel_times: List[int]
    distances: List[int]
    modes: List[str]
    fallbacks: List[bool]
    total_time: int
    max_time: int

    def score(self, objective: str) -> int:
        return self.total_time if objective == OBJECTIVE_TOTAL else self.max_time


@dataclass
class OptimizationResult:
    chosen_venue: Candidate
    total_time: int
    max_time: int
    per_participant_times: List[Dict[str, Any]]
    candidates_considered: int


def _coerce_coordinate(value: Any, label: str) -> float:
    if isinstance(value, bool):
        raise InvalidParticipant(f"{label} must be a number")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise InvalidParticipant(f"{label} must be a number")


def _check_range(lat: float, lng: float, label: str) -> None:
    if not -90.0 <= lat <= 90.0:
        raise InvalidParticipant(f"{label}: lat must be within [-90, 90]")
    if not -180.0 <= lng <= 180.0:
        raise InvalidParticipant(f"{label}: lng must be within [-180, 180]")
