"""Typed failures of the meeting-point engine.

Only whole-computation failures are raised to callers. Per-cell routing
failures are absorbed inside the engine.
"""


class MidpointError(Exception):
    """Base class; ``code`` and ``http_status`` feed the JSON error response."""

    code = 'INTERNAL_ERROR'
    http_status = 500
    default_message = 'Failed to calculate midpoint'

    def __init__(self, message: str = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_dict(self) -> dict:
        return {'code': self.code, 'message': self.message}


class InvalidParticipant(MidpointError, ValueError):
    code = 'VALIDATION_ERROR'
    http_status = 422
    default_message = 'Invalid participant data'


class InsufficientLocations(MidpointError):
    code = 'INSUFFICIENT_LOCATIONS'
    http_status = 400
    default_message = 'At least 2 participants must have set their locations'


class ProviderUnresolved(MidpointError):
    """A single routing cell had no route. Recovered locally, never surfaced alone."""

    code = 'PROVIDER_UNRESOLVED'
    http_status = 502
    default_message = 'No route could be computed for this pair'


class NoResolvableLocation(MidpointError):
    code = 'NO_RESOLVABLE_LOCATION'
    http_status = 502
    default_message = 'Could not resolve travel times for every participant'


class NoCandidates(MidpointError):
    code = 'NO_CANDIDATES'
    http_status = 404
    default_message = 'No suitable meeting venue was found near the optimized location'


class NoValidRoutes(MidpointError):
    code = 'NO_VALID_ROUTES'
    http_status = 422
    default_message = (
        'Could not compute routes from every participant to any candidate venue. '
        'The distance may be too large or a travel mode may not be available there; '
        'try changing travel modes or checking participant locations.'
    )


class ProviderUnavailable(MidpointError):
    code = 'PROVIDER_UNAVAILABLE'
    http_status = 503
    default_message = 'The maps service is currently unreachable'


class ProviderNotConfigured(MidpointError):
    code = 'MAPS_NOT_CONFIGURED'
    http_status = 500
    default_message = 'Google Maps API key not configured'
