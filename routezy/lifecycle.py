# routezy/routezy/lifecycle.py
"""
Delivery lifecycle state machine.

Governs one shipment from assignment to completion:

    PICKUP --pickup OTP--> TRANSIT --inside geofence--> DELIVERY --delivery OTP--> COMPLETED

Any live phase may also be cancelled (terminal CANCELLED). Guards are
enforced here, independent of whatever UI sits on top:

- OTP checks go through the OtpVerifier; a rejected code leaves the phase
  alone and is returned as a value for the UI to display.
- arrive() raises OutOfRangeError unless the latest applied position is
  within the geofence radius of the drop coordinate.
- Backend round-trips set the session's ``pending`` flag. If one fails the
  flag is cleared, ``last_error`` is set, the phase does not move and the
  error (NetworkFailure, ShipmentNotFoundError) propagates to the caller.
"""

from __future__ import annotations

import logging
from typing import Optional

from . import config, geo
from .backend import DeliveryBackend
from .emissions import CarbonCalculator, FlatRateCalculator
from .errors import InvalidTransitionError, NetworkFailure, OutOfRangeError, RoutezyError
from .models import (
    Coordinate,
    DeliveryPhase,
    DeliverySession,
    PositionUpdate,
    Shipment,
    ShipmentStatus,
    StatusUpdate,
)
from .otp import OtpFailure, OtpResult, OtpVerifier
from .position import PositionSource
from .session import DriverSessionStore

logger = logging.getLogger(__name__)


class DeliveryStateMachine:
    """
    Drives a DeliverySession through its phases.

    Args:
        store: Session store holding the current session and driver stats
        backend: Persistence layer for status updates and live location
        verifier: OTP verifier; defaults to one reading shipments from ``backend``
        carbon_calculator: Emissions strategy used at completion
        geofence_radius_m: Arrival radius; defaults to config.GEOFENCE_RADIUS_M
        position_source: Feed started toward the drop once pickup is verified
    """

    def __init__(
        self,
        store: DriverSessionStore,
        backend: DeliveryBackend,
        verifier: Optional[OtpVerifier] = None,
        carbon_calculator: Optional[CarbonCalculator] = None,
        geofence_radius_m: Optional[float] = None,
        position_source: Optional[PositionSource] = None
    ) -> None:
        self.store = store
        self.backend = backend
        self.verifier = verifier if verifier is not None else OtpVerifier(backend.fetch_shipment)
        self.carbon_calculator = carbon_calculator if carbon_calculator is not None else FlatRateCalculator()
        self._geofence_radius_m = geofence_radius_m
        self.position_source = position_source

    # -------------------------------------------------------------------------
    # Read-only views
    # -------------------------------------------------------------------------

    @property
    def session(self) -> DeliverySession:
        return self.store.require_session()

    @property
    def phase(self) -> DeliveryPhase:
        return self.session.phase

    @property
    def geofence_radius_m(self) -> float:
        if self._geofence_radius_m is not None:
            return self._geofence_radius_m
        return config.GEOFENCE_RADIUS_M

    @property
    def distance_to_drop(self) -> float:
        """Meters between the latest applied position and the drop point."""
        session = self.session
        position = session.driver_position or session.shipment.pickup
        return geo.distance_meters(position, session.shipment.drop)

    @property
    def is_near_drop(self) -> bool:
        return self.distance_to_drop <= self.geofence_radius_m

    @property
    def can_arrive(self) -> bool:
        """What a UI should bind the "I've arrived" button's enabled state to."""
        return self.phase == DeliveryPhase.TRANSIT and self.is_near_drop

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def assign(self, shipment: Shipment, start_position: Optional[Coordinate] = None) -> DeliverySession:
        """
        Start a new session in PICKUP for ``shipment``.

        The position feed is rewound to the session's starting point so a
        reused feed never carries the previous delivery's position over.

        Raises:
            SessionActiveError: If a delivery is still in progress
        """
        session = self.store.assign_shipment(shipment, start_position)
        if self.position_source is not None:
            self.position_source.reset(session.driver_position)
        return session

    def _verify(self, phase: DeliveryPhase, candidate: str) -> OtpResult:
        session = self.session
        if session.phase != phase:
            logger.debug(
                f"Ignoring {phase.value} OTP for {session.shipment.tracking_code}; "
                f"session is in {session.phase.value}"
            )
            return OtpResult(
                False,
                f"No {phase.value.lower()} code expected while {session.phase.value.lower()}",
                OtpFailure.WRONG_PHASE,
            )

        self.store.set_pending(True)
        try:
            result = self.verifier.verify(session.shipment.shipment_id, phase, candidate)
        except RoutezyError as e:
            self.store.record_failure(str(e))
            raise

        if not result.valid:
            counted = phase if result.reason == OtpFailure.MISMATCH else None
            self.store.record_failure(result.message, counted)
        return result

    def verify_pickup_otp(self, candidate: str) -> OtpResult:
        """
        PICKUP -> TRANSIT when ``candidate`` matches the pickup OTP.

        On success the shipment is reported IN_TRANSIT and the position feed
        starts toward the drop coordinate.

        Raises:
            NetworkFailure: If verification or the status report failed
            ShipmentNotFoundError: If the backend no longer has the shipment
        """
        result = self._verify(DeliveryPhase.PICKUP, candidate)
        if not result.valid:
            return result

        shipment = self.session.shipment
        try:
            self.backend.report_pickup(shipment.shipment_id)
        except RoutezyError as e:
            self.store.record_failure(str(e))
            raise

        self.store.advance_phase(DeliveryPhase.TRANSIT)
        if self.position_source is not None:
            self.position_source.start(shipment.drop)
        return result

    def arrive(self) -> DeliverySession:
        """
        TRANSIT -> DELIVERY, only inside the geofence.

        Raises:
            InvalidTransitionError: If the session is not in TRANSIT
            OutOfRangeError: If the driver is farther than the geofence radius
        """
        session = self.session
        if session.phase != DeliveryPhase.TRANSIT:
            raise InvalidTransitionError(session.phase.value, DeliveryPhase.DELIVERY.value)

        distance = self.distance_to_drop
        if distance > self.geofence_radius_m:
            raise OutOfRangeError(distance, self.geofence_radius_m)

        return self.store.advance_phase(DeliveryPhase.DELIVERY)

    def attach_proof(self, proof_ref: str) -> None:
        """Attach a proof-of-delivery reference. Optional, never gating."""
        session = self.session
        if session.phase != DeliveryPhase.DELIVERY:
            raise InvalidTransitionError(session.phase.value, "attach proof")
        self.store.attach_proof(proof_ref)

    def _delivery_distance_km(self, shipment: Shipment) -> float:
        if shipment.distance_km is not None:
            return shipment.distance_km
        return geo.road_distance_km(shipment.pickup, shipment.drop)

    def verify_delivery_otp(self, candidate: str) -> OtpResult:
        """
        DELIVERY -> COMPLETED when ``candidate`` matches the delivery OTP.

        Computes carbon saved, persists DELIVERED with the proof reference,
        then credits the driver's stats.

        Raises:
            NetworkFailure: If verification or the completion call failed
            ShipmentNotFoundError: If the backend no longer has the shipment
        """
        result = self._verify(DeliveryPhase.DELIVERY, candidate)
        if not result.valid:
            return result

        session = self.session
        shipment = session.shipment
        distance_km = self._delivery_distance_km(shipment)
        carbon_saved = self.carbon_calculator.carbon_saved(
            distance_km, shipment.fuel_type, shipment.vehicle_type
        )
        update = StatusUpdate(
            shipment_id=shipment.shipment_id,
            status=ShipmentStatus.DELIVERED,
            carbon_saved=carbon_saved,
            distance_km=distance_km,
            proof_ref=session.proof_image,
        )

        try:
            delivery = self.backend.complete_delivery(update)
        except RoutezyError as e:
            self.store.record_failure(str(e))
            raise
        if not delivery.success:
            self.store.record_failure(delivery.message)
            raise NetworkFailure(delivery.message)

        self.store.advance_phase(DeliveryPhase.COMPLETED)
        self.store.complete_delivery(carbon_saved, delivery)
        if self.position_source is not None:
            self.position_source.stop()
        logger.info(f"Delivered {shipment.tracking_code}, saved {carbon_saved:.2f} kg CO2")
        return result

    def cancel(self, reason: str = "") -> DeliverySession:
        """
        Abandon a live delivery (terminal CANCELLED).

        The shipment is released back to PENDING and the driver's stats are
        untouched.

        Raises:
            InvalidTransitionError: If the session already finished
            NetworkFailure: If the release could not be persisted
            ShipmentNotFoundError: If the backend no longer has the shipment
        """
        session = self.session
        if session.phase.is_terminal:
            raise InvalidTransitionError(session.phase.value, DeliveryPhase.CANCELLED.value)

        try:
            self.backend.release_shipment(session.shipment.shipment_id)
        except RoutezyError as e:
            self.store.record_failure(str(e))
            raise

        if self.position_source is not None:
            self.position_source.stop()
        logger.info(f"Cancelled {session.shipment.tracking_code}: {reason or 'no reason given'}")
        return self.store.advance_phase(DeliveryPhase.CANCELLED)

    def dismiss(self) -> Optional[DeliverySession]:
        """Clear a finished session so the next shipment can be assigned."""
        session = self.session
        if not session.phase.is_terminal:
            raise InvalidTransitionError(session.phase.value, "dismissed")
        return self.store.reset_session()

    # -------------------------------------------------------------------------
    # Position tracking
    # -------------------------------------------------------------------------

    def push_position(self, update: PositionUpdate) -> bool:
        """
        Apply a position fix if it is newer than the last one applied.

        Returns:
            True if applied, False if stale or the session is finished
        """
        session = self.session
        if session.phase.is_terminal:
            return False
        if update.sequence <= session.last_sequence or update.timestamp < session.last_timestamp:
            logger.debug(
                f"Discarding stale fix #{update.sequence} (last applied #{session.last_sequence})"
            )
            return False

        self.store.apply_position(update)

        if session.phase in (DeliveryPhase.TRANSIT, DeliveryPhase.DELIVERY):
            try:
                self.backend.update_driver_location(session.shipment.shipment_id, update.coordinate)
            except NetworkFailure as e:
                logger.warning(f"Live location not published: {e}")
        return True

    def tick(self) -> Optional[PositionUpdate]:
        """Pull one fix from the position source and apply it."""
        if self.position_source is None or self.store.current_session is None:
            return None
        update = self.position_source.next_update()
        if update is None or not self.push_position(update):
            return None
        return update
