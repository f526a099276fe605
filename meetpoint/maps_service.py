import datetime as _dt
import logging
from typing import Dict, List, Optional, Sequence

import googlemaps
from googlemaps import convert
from googlemaps.exceptions import ApiError, HTTPError, Timeout, TransportError

from .errors import ProviderUnavailable
from .models import GeoPoint


logger = logging.getLogger(__name__)

# --- Module-level constants ---
DISTANCE_MATRIX_MAX_DEST = 25   # conservative chunk size for DM requests


class GoogleMapsService:
    """Service for interacting with Google Maps APIs.

    Provider statuses that mean "no route / nothing found" come back as None
    (or an empty list); an unreachable service raises ProviderUnavailable.
    """

    def __init__(self, api_key: str, timeout: int = 10, client: Optional[googlemaps.Client] = None):
        if client is None:
            if not api_key or api_key == "your_api_key_here":
                raise ValueError("Valid Google Maps API key is required")
            client = googlemaps.Client(key=api_key, timeout=timeout)
        self.client = client

    def _call(self, name: str, fn, *args, **kwargs):
        """Run one client call. ApiError -> None, transport failure -> ProviderUnavailable."""
        try:
            return fn(*args, **kwargs)
        except (Timeout, HTTPError, TransportError) as e:
            logger.error(f"{name}: maps service unreachable: {e}")
            raise ProviderUnavailable(f"Maps service unreachable during {name}") from e
        except ApiError as e:
            logger.warning(f"{name}: API returned status {e.status}: {e.message}")
            return None

    @staticmethod
    def _departure_time(mode: str):
        # Transit schedules need a departure time to produce durations
        return _dt.datetime.now() if mode == 'transit' else None

    def geocode_address(self, address: str) -> Optional[Dict]:
        """
        Geocode an address using Google Maps Geocoding API
        Returns formatted address and coordinates
        """
        result = self._call('geocode', self.client.geocode, address)
        if result:
            location = result[0]
            return {
                'formatted_address': location['formatted_address'],
                'lat': location['geometry']['location']['lat'],
                'lng': location['geometry']['location']['lng']
            }
        return None

    def reverse_geocode(self, point: GeoPoint) -> Optional[str]:
        """Formatted address of the first reverse-geocoding result, or None."""
        result = self._call('reverse_geocode', self.client.reverse_geocode, (point.lat, point.lng))
        if result:
            return result[0].get('formatted_address')
        return None

    def directions(self, origin: GeoPoint, destination: GeoPoint, mode: str) -> Optional[Dict]:
        """
        Fastest route between two points for the given mode.
        Returns duration/distance summed over legs plus the overview polyline and
        its decoded points.
        """
        directions_result = self._call(
            'directions',
            self.client.directions,
            origin=origin.as_latlng(),
            destination=destination.as_latlng(),
            mode=mode,
            departure_time=self._departure_time(mode),
            alternatives=False,
        )
        if not directions_result:
            return None

        route = directions_result[0]
        total_distance = 0
        total_duration = 0
        for leg in route.get('legs', []):
            if 'distance' in leg and 'value' in leg['distance']:
                total_distance += leg['distance']['value']
            if 'duration' in leg and 'value' in leg['duration']:
                total_duration += leg['duration']['value']

        overview_polyline = route.get('overview_polyline', {}).get('points')
        return {
            'overview_polyline': overview_polyline,
            'points': convert.decode_polyline(overview_polyline) if overview_polyline else [],
            'distance_meters': total_distance,
            'duration_seconds': total_duration,
        }

    def distance_matrix(
        self,
        origins: Sequence[GeoPoint],
        destinations: Sequence[GeoPoint],
        mode: str,
    ) -> List[List[Optional[Dict]]]:
        """Batch durations using Distance Matrix API. Returns a rows x cols matrix
        where rows = len(origins) and cols = len(destinations). Cells are
        ``{'duration_seconds', 'distance_meters'}`` or None.
        Chunks destinations to respect API limits.
        """
        rows = len(origins)
        cols = len(destinations)
        matrix: List[List[Optional[Dict]]] = [[None for _ in range(cols)] for _ in range(rows)]
        if not rows or not cols:
            return matrix

        origin_strs = [o.as_latlng() for o in origins]
        for start in range(0, cols, DISTANCE_MATRIX_MAX_DEST):
            end = min(start + DISTANCE_MATRIX_MAX_DEST, cols)
            dest_strs = [d.as_latlng() for d in destinations[start:end]]
            dm = self._call(
                'distance_matrix',
                self.client.distance_matrix,
                origins=origin_strs,
                destinations=dest_strs,
                mode=mode,
                departure_time=self._departure_time(mode),
            )
            if not dm or 'rows' not in dm:
                continue
            for i, row in enumerate(dm.get('rows', [])[:rows]):
                for j, el in enumerate(row.get('elements', [])[: end - start]):
                    if not el or el.get('status') != 'OK':
                        continue
                    dur = el.get('duration', {}).get('value')
                    dist = el.get('distance', {}).get('value')
                    if dur is not None:
                        matrix[i][start + j] = {
                            'duration_seconds': dur,
                            'distance_meters': dist if dist is not None else 0,
                        }
        return matrix

    def places_nearby(self, location: GeoPoint, radius: int = 1000, place_type: str = "cafe") -> List[Dict]:
        """
        Find places nearby a given location
        """
        places_result = self._call(
            'places_nearby',
            self.client.places_nearby,
            location=(location.lat, location.lng),
            radius=radius,
            type=place_type,
        )
        if not places_result:
            return []

        places = []
        for place in places_result.get('results', []):
            geometry_location = (place.get('geometry') or {}).get('location') or {}
            places.append({
                'place_id': place.get('place_id'),
                'name': place.get('name'),
                'formatted_address': place.get('vicinity') or place.get('formatted_address', ''),
                'lat': geometry_location.get('lat'),
                'lng': geometry_location.get('lng'),
                'rating': place.get('rating'),
                'types': place.get('types', []),
            })
        return places
