"""Meeting-point optimization engine and its JSON API."""

from .engine import MeetingPointEngine
from .errors import (
    InsufficientLocations,
    InvalidParticipant,
    MidpointError,
    NoCandidates,
    NoResolvableLocation,
    NoValidRoutes,
    ProviderUnavailable,
)

__all__ = [
    'MeetingPointEngine',
    'MidpointError',
    'InsufficientLocations',
    'InvalidParticipant',
    'NoCandidates',
    'NoResolvableLocation',
    'NoValidRoutes',
    'ProviderUnavailable',
]
