import math
from typing import Sequence

from geopy.distance import geodesic

from .models import GeoPoint


def centroid(points: Sequence[GeoPoint]) -> GeoPoint:
    """Arithmetic mean of latitudes and longitudes. Seeds the travel-time search."""
    if not points:
        raise ValueError("centroid requires at least one point")
    n = len(points)
    return GeoPoint(
        lat=sum(p.lat for p in points) / n,
        lng=sum(p.lng for p in points) / n,
    )


def degree_distance(a: GeoPoint, b: GeoPoint) -> float:
    """Planar distance in degrees."""
    return math.hypot(b.lat - a.lat, b.lng - a.lng)


def step_toward(origin: GeoPoint, target: GeoPoint, step: float) -> GeoPoint:
    """Move ``step`` degrees from ``origin`` along the unit vector toward ``target``."""
    dist = degree_distance(origin, target)
    if dist == 0:
        return origin
    return GeoPoint(
        lat=origin.lat + (target.lat - origin.lat) / dist * step,
        lng=origin.lng + (target.lng - origin.lng) / dist * step,
    )


def geodesic_meters(a: GeoPoint, b: GeoPoint) -> float:
    return geodesic((a.lat, a.lng), (b.lat, b.lng)).meters
