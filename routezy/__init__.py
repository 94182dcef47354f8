# routezy/routezy/__init__.py

from .models import (
    Coordinate,
    Shipment,
    ShipmentStatus,
    DeliveryPhase,
    DeliverySession,
    DriverStats,
    PositionUpdate,
    StatusUpdate,
    DeliveryResult,
    CheckInData,
    CheckOutSummary,
)
from .errors import (
    RoutezyError,
    InvalidTransitionError,
    OutOfRangeError,
    NetworkFailure,
    ShipmentNotFoundError,
    SessionActiveError,
    NoActiveSessionError,
    InvalidReadingError,
)
from .config import (
    GEOFENCE_RADIUS_M,
    OTP_LENGTH,
    CARBON_SAVED_KG_PER_KM,
)
from .geo import haversine_distance_m, distance_meters, is_within_threshold
from .otp import OtpVerifier, OtpResult, OtpFailure, AttemptThrottle, validate_format
from .emissions import CarbonCalculator, FlatRateCalculator, OptimizationCalculator
from .position import PositionSource, LiveGpsSource, SimulatedSource, ReplaySource
from .backend import DeliveryBackend, InMemoryBackend, RestBackend
from .session import DriverSessionStore
from .lifecycle import DeliveryStateMachine

__version__ = "1.0.0"
__author__ = "Routezy Team"

__all__ = [
    # Models
    "Coordinate",
    "Shipment",
    "ShipmentStatus",
    "DeliveryPhase",
    "DeliverySession",
    "DriverStats",
    "PositionUpdate",
    "StatusUpdate",
    "DeliveryResult",
    "CheckInData",
    "CheckOutSummary",
    # Errors
    "RoutezyError",
    "InvalidTransitionError",
    "OutOfRangeError",
    "NetworkFailure",
    "ShipmentNotFoundError",
    "SessionActiveError",
    "NoActiveSessionError",
    "InvalidReadingError",
    # Core
    "DeliveryStateMachine",
    "DriverSessionStore",
    "OtpVerifier",
    "OtpResult",
    "OtpFailure",
    "AttemptThrottle",
    "CarbonCalculator",
    "FlatRateCalculator",
    "OptimizationCalculator",
    "PositionSource",
    "LiveGpsSource",
    "SimulatedSource",
    "ReplaySource",
    "DeliveryBackend",
    "InMemoryBackend",
    "RestBackend",
    # Functions
    "haversine_distance_m",
    "distance_meters",
    "is_within_threshold",
    "validate_format",
    # Config
    "GEOFENCE_RADIUS_M",
    "OTP_LENGTH",
    "CARBON_SAVED_KG_PER_KM",
]
