"""Driving distance between two points, measured with Mapbox Directions."""
import logging

import requests

from exceptions import RoutingError

logger = logging.getLogger(__name__)

DIRECTIONS_URL = 'https://api.mapbox.com/directions/v5/mapbox/driving/{origin};{destination}'


def get_route_info(origin, destination, token, timeout=10):
    """Return ``{'distance_km': .., 'duration_minutes': ..}``.

    ``origin`` and ``destination`` are ``(lng, lat)`` pairs.
    """
    if not token:
        raise RoutingError('Mapbox access token is not configured')

    url = DIRECTIONS_URL.format(
        origin=f'{origin[0]},{origin[1]}',
        destination=f'{destination[0]},{destination[1]}',
    )
    try:
        response = requests.get(
            url,
            params={'access_token': token, 'overview': 'simplified'},
            timeout=timeout,
        )
    except requests.RequestException as e:
        logger.error('Mapbox connection error: %s', e)
        raise RoutingError('Could not reach the routing service') from e

    if response.status_code >= 400:
        raise RoutingError(f'Mapbox API error: {response.status_code} {response.reason}')

    try:
        routes = response.json().get('routes') or []
    except ValueError as e:
        logger.error('Mapbox returned a non-JSON body: %s', e)
        raise RoutingError('Invalid response from the routing service') from e

    if not routes:
        raise RoutingError('No route found between the specified locations')

    route = routes[0]
    return {
        'distance_km': round(route['distance'] / 1000, 1),
        'duration_minutes': round(route['duration'] / 60),
    }
