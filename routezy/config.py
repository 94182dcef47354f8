# routezy/routezy/config.py
"""
Configuration parameters for the Routezy delivery core.

This module centralizes all tunable parameters, making it easy to:
- Adjust the geofence and OTP rules that gate a delivery
- Tune the simulated driver feed used in demos
- Point the backend client at a different hosted project

Library code reads these as ``config.NAME`` at call time, so dashboards can
override them at runtime (e.g. from a sidebar slider).
"""

import os
from typing import Dict, Final

# =============================================================================
# GEOFENCE AND GEOMETRY
# =============================================================================

EARTH_RADIUS_M: Final[float] = 6_371_000.0
"""Mean Earth radius in meters used by the haversine formula."""

GEOFENCE_RADIUS_M: float = 500.0
"""
Radius (meters) around the drop coordinate inside which the driver may
mark themselves as arrived. Outside it, arrive() is rejected.
"""

# =============================================================================
# OTP RULES
# =============================================================================

OTP_LENGTH: Final[int] = 4
"""Number of numeric digits in a pickup or delivery OTP."""

OTP_MAX_ATTEMPTS: int = 5
"""
Consecutive mismatches allowed per shipment/phase before verification locks.
Set to 0 to disable throttling entirely.
"""

OTP_LOCKOUT_BASE_SECONDS: float = 30.0
"""Initial lockout after OTP_MAX_ATTEMPTS mismatches. Doubles per extra miss."""

OTP_LOCKOUT_MAX_SECONDS: float = 15 * 60.0
"""Upper bound on a single lockout window."""

# =============================================================================
# SIMULATED POSITION FEED
# =============================================================================

SIMULATION_STEP_FRACTION: float = 0.15
"""Fraction of the remaining distance covered per simulated tick."""

SIMULATION_SNAP_DISTANCE_M: float = 50.0
"""Once within this distance the simulated driver snaps onto the target."""

SIMULATION_TICK_SECONDS: float = 2.0
"""Wall-clock spacing between simulated fixes (used for timestamps)."""

SIMULATION_JITTER_DEG: float = 0.0
"""Max random jitter (degrees) added to each simulated fix. 0 disables it."""

# =============================================================================
# CARBON ESTIMATION
# =============================================================================

CARBON_SAVED_KG_PER_KM: float = 0.15
"""Flat kg of CO2 credited per delivered km (route-optimization credit)."""

ROUTE_OPTIMIZATION_FACTOR: float = 0.3
"""Share of baseline emissions saved by an optimized route (30%)."""

EMISSION_FACTORS: Dict[str, float] = {
    "DIESEL": 2.68,
    "PETROL": 2.31,
    "CNG": 1.93,
    "LPG": 1.51,
    "ELECTRIC": 0.0,
    "HYBRID": 1.85,
}
"""kg of CO2 emitted per litre of fuel burned."""

VEHICLE_EFFICIENCY_L_PER_100KM: Dict[str, float] = {
    "BIKE": 3.0,
    "THREE_WHEELER": 6.0,
    "MINI_TRUCK": 10.0,
    "TRUCK": 15.0,
    "LARGE_TRUCK": 25.0,
}
"""Average fuel burn per vehicle class, litres per 100 km."""

DEFAULT_EFFICIENCY_L_PER_100KM: float = 12.0
"""Fuel burn assumed for vehicle classes missing from the table above."""

# =============================================================================
# ROAD DISTANCE (OSRM) CONFIGURATION
# =============================================================================

USE_ROAD_DISTANCE: bool = False
"""
Enable real road distance via OSRM when a shipment has no stored distance.
When False, uses Haversine (great-circle) distance.
"""

OSRM_SERVER_URL: str = "https://router.project-osrm.org"
"""OSRM server URL (public demo is rate-limited; use a local instance in prod)."""

OSRM_TIMEOUT_SECONDS: float = 5.0
"""Timeout for OSRM API requests."""

OSRM_CACHE_SIZE: int = 1000
"""Maximum number of route results to cache."""

HAVERSINE_FALLBACK_MULTIPLIER: float = 1.4
"""
Multiplier applied to Haversine distance when OSRM is off or fails.
Typical city roads are 1.3-1.5x longer than straight-line distance.
"""

# =============================================================================
# HOSTED BACKEND
# =============================================================================

BACKEND_URL: str = os.environ.get("ROUTEZY_BACKEND_URL", "http://localhost:54321")
"""Base URL of the hosted backend (REST tables live under /rest/v1)."""

BACKEND_API_KEY: str = os.environ.get("ROUTEZY_BACKEND_KEY", "")
"""Anon/service key sent as both ``apikey`` and bearer token."""

BACKEND_TIMEOUT_SECONDS: float = 10.0
"""Timeout for backend requests. A timeout surfaces as a NetworkFailure."""

INVOICE_DEFAULT_AMOUNT: float = 250.0
"""Invoice amount used when a shipment has no estimated cost."""

INVOICE_TAX_RATE: float = 0.18
"""Tax applied on top of the invoice amount."""
