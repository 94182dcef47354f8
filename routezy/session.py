# routezy/routezy/session.py
"""
Session/store layer for a single driver's app instance.

The store holds the current DeliverySession and the driver's running stats.
It is an explicit object handed to the state machine, never a module-level
global, so every test and every dashboard tab can own a fresh one.

Mutation entry points are called by DeliveryStateMachine; the UI reads the
store and re-renders from it via ``subscribe``.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional

from . import config
from .errors import (
    InvalidReadingError,
    InvalidTransitionError,
    NoActiveSessionError,
    SessionActiveError,
)
from .models import (
    CheckInData,
    CheckOutSummary,
    Coordinate,
    DeliveryPhase,
    DeliveryResult,
    DeliverySession,
    DriverStats,
    PositionUpdate,
    Shipment,
)

logger = logging.getLogger(__name__)

Listener = Callable[["DriverSessionStore"], None]


def _validate_readings(odometer: float, fuel_level: float) -> None:
    if odometer is None or odometer < 0:
        raise InvalidReadingError("Please enter a valid odometer reading")
    if fuel_level is None or not 0 <= fuel_level <= 100:
        raise InvalidReadingError("Please enter a valid fuel level (0-100%)")


class DriverSessionStore:
    """
    Holds the active delivery and the driver's accumulated statistics.

    Attributes:
        current_session: The live or just-finished delivery, if any
        driver_stats: Totals mutated only by complete_delivery()
        is_online: Set by check_in(), cleared by check_out()
        check_in_data: Readings captured at the start of the shift
        last_trip_summary: Summary produced by the last check_out()
        completed_results: Backend results of every completed delivery
    """

    def __init__(self, stats: Optional[DriverStats] = None) -> None:
        self.current_session: Optional[DeliverySession] = None
        self.driver_stats: DriverStats = stats if stats is not None else DriverStats()
        self.is_online: bool = False
        self.check_in_data: Optional[CheckInData] = None
        self.last_trip_summary: Optional[CheckOutSummary] = None
        self.completed_results: List[DeliveryResult] = []
        self._listeners: List[Listener] = []

    # -------------------------------------------------------------------------
    # Observers
    # -------------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a callback run after every mutation. Returns an unsubscribe."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    # -------------------------------------------------------------------------
    # Session lifecycle
    # -------------------------------------------------------------------------

    def require_session(self) -> DeliverySession:
        if self.current_session is None:
            raise NoActiveSessionError("No shipment is assigned to this driver")
        return self.current_session

    @property
    def has_live_session(self) -> bool:
        return self.current_session is not None and not self.current_session.phase.is_terminal

    def assign_shipment(self, shipment: Shipment, start_position: Optional[Coordinate] = None) -> DeliverySession:
        """
        Create a PICKUP session for a newly assigned shipment.

        A finished (COMPLETED/CANCELLED) session is replaced silently.

        Raises:
            SessionActiveError: If a delivery is still in progress
        """
        if self.has_live_session:
            raise SessionActiveError(
                f"Finish or cancel {self.current_session.shipment.tracking_code} first"
            )
        session = DeliverySession(
            shipment=shipment,
            driver_position=start_position if start_position is not None else shipment.pickup,
        )
        session.track.append(session.driver_position)
        self.current_session = session
        logger.info(f"Assigned shipment {shipment.tracking_code}")
        self._notify()
        return session

    def advance_phase(self, to_phase: DeliveryPhase) -> DeliverySession:
        """
        Move the session one step forward, or sideways into CANCELLED.

        Clears the OTP buffer and any pending/error state.

        Raises:
            NoActiveSessionError: If nothing is assigned
            InvalidTransitionError: If the move skips or reverses a phase
        """
        session = self.require_session()
        current = session.phase
        allowed = current.next_phase() == to_phase or (
            to_phase == DeliveryPhase.CANCELLED and not current.is_terminal
        )
        if not allowed:
            raise InvalidTransitionError(current.value, to_phase.value)

        session.phase = to_phase
        session.otp_attempt = ""
        session.pending = False
        session.last_error = None
        logger.info(f"{session.shipment.tracking_code}: {current.value} -> {to_phase.value}")
        self._notify()
        return session

    def reset_session(self) -> Optional[DeliverySession]:
        """
        Dismiss the current session and return it.

        Discarding a live session is an abandonment: stats are untouched and
        the caller is responsible for releasing the shipment.
        """
        session = self.current_session
        if session is not None and not session.phase.is_terminal:
            logger.warning(f"Discarding live session {session.shipment.tracking_code} ({session.phase.value})")
        self.current_session = None
        self._notify()
        return session

    # -------------------------------------------------------------------------
    # In-phase mutations
    # -------------------------------------------------------------------------

    def set_otp_attempt(self, value: str) -> str:
        """Update the OTP buffer from digit entry; non-digits are dropped."""
        session = self.require_session()
        session.otp_attempt = "".join(ch for ch in value if ch.isdigit())[:config.OTP_LENGTH]
        session.last_error = None
        self._notify()
        return session.otp_attempt

    def set_pending(self, pending: bool) -> None:
        self.require_session().pending = pending
        self._notify()

    def record_failure(self, message: str, phase: Optional[DeliveryPhase] = None) -> None:
        """Store a recoverable error; counts an OTP miss when ``phase`` is given."""
        session = self.require_session()
        session.last_error = message
        session.pending = False
        session.otp_attempt = ""
        if phase is not None:
            session.failed_attempts[phase] = session.failed_attempts_in(phase) + 1
        self._notify()

    def apply_position(self, update: PositionUpdate) -> None:
        session = self.require_session()
        session.driver_position = update.coordinate
        session.last_sequence = update.sequence
        session.last_timestamp = update.timestamp
        session.track.append(update.coordinate)
        self._notify()

    def attach_proof(self, proof_ref: str) -> None:
        self.require_session().proof_image = proof_ref
        self._notify()

    def complete_delivery(self, carbon_saved: float, result: Optional[DeliveryResult] = None) -> DriverStats:
        """
        Credit a completed delivery to the driver's stats.

        Raises:
            InvalidTransitionError: If the session has not reached COMPLETED
            ValueError: If ``carbon_saved`` is negative
        """
        session = self.require_session()
        if session.phase != DeliveryPhase.COMPLETED:
            raise InvalidTransitionError(session.phase.value, "stats credit")
        if session.carbon_saved is not None:
            logger.debug("Delivery already credited; ignoring")
            return self.driver_stats
        if carbon_saved < 0:
            raise ValueError(f"carbon_saved must be >= 0, got {carbon_saved}")

        session.carbon_saved = carbon_saved
        self.driver_stats.total_deliveries += 1
        self.driver_stats.total_carbon_saved += carbon_saved
        if result is not None:
            self.completed_results.append(result)
        self._notify()
        return self.driver_stats

    # -------------------------------------------------------------------------
    # Shift check-in / check-out
    # -------------------------------------------------------------------------

    def check_in(self, data: CheckInData) -> None:
        """
        Go online with the starting vehicle readings.

        Raises:
            SessionActiveError: If the driver is already online
            InvalidReadingError: If a reading is out of range
        """
        if self.is_online:
            raise SessionActiveError("Driver is already online")
        _validate_readings(data.odometer_reading, data.fuel_level)
        self.check_in_data = data
        self.is_online = True
        logger.info(f"Checked in at {data.odometer_reading:.0f} km, {data.fuel_level:.0f}% fuel")
        self._notify()

    def check_out(self, odometer_reading: float, fuel_level: float) -> CheckOutSummary:
        """
        Go offline and compute the trip summary.

        Raises:
            SessionActiveError: If a delivery is still in progress
            NoActiveSessionError: If the driver never checked in
            InvalidReadingError: If the odometer went backwards or fuel is out of range
        """
        if self.has_live_session:
            raise SessionActiveError("Complete the active delivery before going offline")
        if not self.is_online or self.check_in_data is None:
            raise NoActiveSessionError("Driver is not checked in")
        _validate_readings(odometer_reading, fuel_level)

        check_in = self.check_in_data
        if odometer_reading < check_in.odometer_reading:
            raise InvalidReadingError(
                f"Odometer must be at least {check_in.odometer_reading:.0f} km"
            )

        km_driven = odometer_reading - check_in.odometer_reading
        fuel_used = check_in.fuel_level - fuel_level
        summary = CheckOutSummary(
            check_in=check_in,
            check_out_odometer=odometer_reading,
            check_out_fuel=fuel_level,
            km_driven=km_driven,
            fuel_used=fuel_used,
            avg_fuel_efficiency=km_driven / fuel_used if fuel_used > 0 else 0.0,
        )

        self.last_trip_summary = summary
        self.check_in_data = None
        self.is_online = False
        logger.info(f"Checked out after {km_driven:.1f} km using {fuel_used:.1f}% fuel")
        self._notify()
        return summary
