# routezy/routezy/errors.py
"""
Exception taxonomy for the delivery core.

Every failure here is locally recoverable: the caller surfaces the message
and lets the driver retry. OTP mismatches are not exceptions; they come back
as ``OtpResult`` values from the verifier.
"""

from __future__ import annotations

from typing import Optional


class RoutezyError(Exception):
    """Base class for all delivery-core errors."""


class InvalidTransitionError(RoutezyError):
    """Raised when a phase change would go backwards or skip a phase."""

    def __init__(self, current: object, requested: object) -> None:
        self.current = current
        self.requested = requested
        super().__init__(f"Illegal transition {current} -> {requested}")


class OutOfRangeError(RoutezyError):
    """Raised when arrive() is attempted outside the drop geofence."""

    def __init__(self, distance_m: float, radius_m: float) -> None:
        self.distance_m = distance_m
        self.radius_m = radius_m
        super().__init__(
            f"Driver is {distance_m:.0f}m from drop; must be within {radius_m:.0f}m"
        )


class NetworkFailure(RoutezyError):
    """A backend round-trip failed. The transition was not applied."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        self.cause = cause
        super().__init__(message)


class ShipmentNotFoundError(RoutezyError):
    """The backend has no shipment with the requested id."""


class SessionActiveError(RoutezyError):
    """A live delivery session blocks the requested operation."""


class NoActiveSessionError(RoutezyError):
    """The operation needs a delivery session but none is assigned."""


class InvalidReadingError(RoutezyError, ValueError):
    """Odometer or fuel reading rejected during check-in/check-out."""
