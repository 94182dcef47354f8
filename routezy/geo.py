# routezy/routezy/geo.py
"""
Geographic helpers for the delivery core.

Provides the proximity evaluator that gates the TRANSIT -> DELIVERY
transition, the interpolation used by the simulated driver feed, and an
optional OSRM lookup for road distance when a shipment carries none.
"""

from __future__ import annotations

import logging
import math
from typing import Dict, Optional, Tuple

import requests

from . import config
from .models import Coordinate

logger = logging.getLogger(__name__)

# Module-level cache for OSRM results keyed by rounded coordinates
_osrm_cache: Dict[Tuple[float, float, float, float], float] = {}


def haversine_distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance between two lat/lng pairs, in meters.

    The intermediate haversine term is clamped to [0, 1] so rounding on
    identical or antipodal points can never push sqrt/asin out of domain.

    Args:
        lat1, lon1: First point, decimal degrees
        lat2, lon2: Second point, decimal degrees

    Returns:
        Distance along the Earth surface (mean radius from config)

    Example:
        >>> haversine_distance_m(19.0760, 72.8777, 19.1136, 72.8697)
        4264.6  # ~4.3 km, warehouse district to Andheri East
    """
    lon1, lat1, lon2, lat2 = map(math.radians, [lon1, lat1, lon2, lat2])

    dlon = lon2 - lon1
    dlat = lat2 - lat1
    a = math.sin(dlat / 2)**2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2)**2
    a = min(1.0, max(0.0, a))
    c = 2 * math.asin(math.sqrt(a))

    return c * config.EARTH_RADIUS_M


def distance_meters(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance in meters between two coordinates."""
    return haversine_distance_m(a.lat, a.lng, b.lat, b.lng)


def is_within_threshold(a: Coordinate, b: Coordinate, threshold_m: float) -> bool:
    """True when ``a`` lies within ``threshold_m`` meters of ``b`` (inclusive)."""
    return distance_meters(a, b) <= threshold_m


def step_toward(current: Coordinate, target: Coordinate, fraction: float) -> Coordinate:
    """
    Move ``fraction`` of the way from ``current`` to ``target``.

    Linear in degrees, which is fine over the few kilometres of a city
    delivery leg.
    """
    if not 0.0 <= fraction <= 1.0:
        raise ValueError(f"fraction must be within [0, 1], got {fraction}")
    return Coordinate(
        current.lat + (target.lat - current.lat) * fraction,
        current.lng + (target.lng - current.lng) * fraction,
    )


def _route_key(a: Coordinate, b: Coordinate) -> Tuple[float, float, float, float]:
    # 5 decimals is roughly 1 m
    return (round(a.lat, 5), round(a.lng, 5), round(b.lat, 5), round(b.lng, 5))


def _cached_route(a: Coordinate, b: Coordinate) -> Optional[float]:
    """Look up a cached leg in either direction."""
    for key in (_route_key(a, b), _route_key(b, a)):
        if key in _osrm_cache:
            return _osrm_cache[key]
    return None


def _remember_route(a: Coordinate, b: Coordinate, distance_km: float) -> None:
    if len(_osrm_cache) >= config.OSRM_CACHE_SIZE:
        evict = max(1, config.OSRM_CACHE_SIZE // 10)
        for key in list(_osrm_cache)[:evict]:
            del _osrm_cache[key]
    _osrm_cache[_route_key(a, b)] = distance_km


def osrm_route_km(a: Coordinate, b: Coordinate) -> Optional[float]:
    """
    Ask OSRM for the driving distance of one leg.

    Args:
        a: Leg origin
        b: Leg destination

    Returns:
        Road distance in km, or None when OSRM is unreachable or has no route
    """
    cached = _cached_route(a, b)
    if cached is not None:
        return cached

    # OSRM takes lng,lat pairs
    leg = f"{a.lng},{a.lat};{b.lng},{b.lat}"
    try:
        response = requests.get(
            f"{config.OSRM_SERVER_URL}/route/v1/driving/{leg}",
            params={"overview": "false"},
            timeout=config.OSRM_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
        payload = response.json()
    except requests.exceptions.Timeout:
        logger.warning(f"OSRM timed out for leg {leg}")
        return None
    except requests.exceptions.RequestException as e:
        logger.warning(f"OSRM unreachable: {e}")
        return None
    except ValueError as e:
        logger.warning(f"OSRM sent a non-JSON body: {e}")
        return None

    routes = payload.get("routes") or []
    if payload.get("code") != "Ok" or not routes:
        logger.warning(f"OSRM found no route for leg {leg}: {payload.get('code')}")
        return None

    try:
        distance_km = float(routes[0]["distance"]) / 1000
    except (KeyError, TypeError, ValueError) as e:
        logger.warning(f"OSRM route without a usable distance: {e}")
        return None

    _remember_route(a, b, distance_km)
    return distance_km


def road_distance_km(a: Coordinate, b: Coordinate) -> float:
    """
    Distance between two points using the configured method.

    Uses OSRM road distance when enabled, falling back to Haversine with
    a road multiplier when OSRM is disabled or fails.
    """
    straight_km = distance_meters(a, b) / 1000

    if config.USE_ROAD_DISTANCE:
        result = osrm_route_km(a, b)
        if result is not None:
            return result
        logger.debug("Falling back to Haversine distance with multiplier")

    return straight_km * config.HAVERSINE_FALLBACK_MULTIPLIER


def clear_osrm_cache() -> int:
    """
    Clear the OSRM route cache.

    Returns:
        Number of cached entries that were cleared
    """
    count = len(_osrm_cache)
    _osrm_cache.clear()
    return count
