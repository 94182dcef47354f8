# routezy/routezy/models.py
"""
Core domain models for the Routezy delivery core.

This module defines the fundamental data structures used by the state machine:
- Shipment: The externally-owned delivery record (read-only to the core)
- DeliverySession: One driver's progress through a single shipment
- DriverStats: Running totals for the driver's app session
- PositionUpdate: A single fix from a GPS, simulated or replayed feed
- CheckInData / CheckOutSummary: The go-online / go-offline vehicle readings
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple


class ShipmentStatus(Enum):
    """Lifecycle states of a shipment as stored by the backend."""
    PENDING = "PENDING"            # Booked, not yet handed to a driver
    PICKUP_READY = "PICKUP_READY"  # Driver assigned, waiting at pickup
    IN_TRANSIT = "IN_TRANSIT"      # Pickup OTP accepted
    DELIVERED = "DELIVERED"        # Delivery OTP accepted
    CANCELLED = "CANCELLED"


class DeliveryPhase(Enum):
    """
    States of the driver-side delivery state machine.

    The happy path only moves forward:
    PICKUP -> TRANSIT -> DELIVERY -> COMPLETED

    CANCELLED is a terminal side exit reachable from any live phase.
    """
    PICKUP = "PICKUP"
    TRANSIT = "TRANSIT"
    DELIVERY = "DELIVERY"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    @property
    def rank(self) -> int:
        """Position on the happy path; CANCELLED sorts after everything."""
        return _PHASE_RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self in (DeliveryPhase.COMPLETED, DeliveryPhase.CANCELLED)

    def next_phase(self) -> Optional["DeliveryPhase"]:
        """The single phase this one may advance to, or None if terminal."""
        return _NEXT_PHASE.get(self)


_PHASE_RANK: Dict[DeliveryPhase, int] = {
    DeliveryPhase.PICKUP: 0,
    DeliveryPhase.TRANSIT: 1,
    DeliveryPhase.DELIVERY: 2,
    DeliveryPhase.COMPLETED: 3,
    DeliveryPhase.CANCELLED: 4,
}

_NEXT_PHASE: Dict[DeliveryPhase, DeliveryPhase] = {
    DeliveryPhase.PICKUP: DeliveryPhase.TRANSIT,
    DeliveryPhase.TRANSIT: DeliveryPhase.DELIVERY,
    DeliveryPhase.DELIVERY: DeliveryPhase.COMPLETED,
}


@dataclass(frozen=True)
class Coordinate:
    """A (latitude, longitude) pair in decimal degrees."""
    lat: float
    lng: float

    def as_tuple(self) -> Tuple[float, float]:
        return (self.lat, self.lng)

    def __repr__(self) -> str:
        return f"Coordinate({self.lat:.5f}, {self.lng:.5f})"


@dataclass(frozen=True)
class Shipment:
    """
    A shipment as provided by the external persistence layer.

    The core never mutates a Shipment. Status changes are reported upward
    as StatusUpdate requests and the backend persists them.

    Attributes:
        shipment_id: Backend primary key
        tracking_code: Human-facing code, e.g. RTZ-240110-AB12CD
        pickup / drop: Coordinates of the pickup and drop points
        pickup_otp: Code given by the sender, checked at pickup
        delivery_otp: Code read back by the receiver at the door
        distance_km: Route length if the booking flow computed one
        fuel_type / vehicle_type: Inputs for the emissions estimator
    """
    shipment_id: str
    tracking_code: str
    pickup: Coordinate
    drop: Coordinate
    pickup_otp: str
    delivery_otp: str
    pickup_address: str = ""
    drop_address: str = ""
    receiver_name: str = ""
    receiver_phone: str = ""
    status: ShipmentStatus = ShipmentStatus.PICKUP_READY
    distance_km: Optional[float] = None
    fuel_type: str = "DIESEL"
    vehicle_type: str = "TRUCK"
    estimated_cost: Optional[float] = None

    def __repr__(self) -> str:
        return f"Shipment({self.tracking_code}, {self.status.value})"


@dataclass(frozen=True)
class PositionUpdate:
    """
    One position fix pushed into a session.

    ``sequence`` is monotonic per feed; the state machine discards any
    update whose sequence or timestamp is not newer than the last one applied.
    """
    lat: float
    lng: float
    timestamp: float
    sequence: int

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(self.lat, self.lng)


@dataclass
class DriverStats:
    """Running totals for the driver's app session (not durable)."""
    total_deliveries: int = 0
    total_carbon_saved: float = 0.0

    def __post_init__(self) -> None:
        if self.total_deliveries < 0:
            raise ValueError("total_deliveries must be >= 0")
        if self.total_carbon_saved < 0:
            raise ValueError("total_carbon_saved must be >= 0")


@dataclass
class DeliverySession:
    """
    State of one active delivery, owned by the session store.

    Attributes:
        shipment: The shipment being handled (borrowed, not owned)
        phase: Current state machine phase
        driver_position: Last applied position
        otp_attempt: Transient OTP buffer, cleared on every phase change
        proof_image: Optional proof-of-delivery reference (DELIVERY phase)

    Dynamic State:
        failed_attempts: OTP mismatches per phase, for UX messaging
        last_sequence / last_timestamp: Ordering guard for position updates
        pending: True while a backend round-trip is outstanding
        last_error: Message of the most recent recoverable failure
        carbon_saved: Set when the session reaches COMPLETED
    """
    shipment: Shipment
    phase: DeliveryPhase = DeliveryPhase.PICKUP
    driver_position: Optional[Coordinate] = None
    otp_attempt: str = ""
    proof_image: Optional[str] = None

    failed_attempts: Dict[DeliveryPhase, int] = field(default_factory=dict)
    last_sequence: int = -1
    last_timestamp: float = float("-inf")
    pending: bool = False
    last_error: Optional[str] = None
    carbon_saved: Optional[float] = None
    started_at: float = field(default_factory=time.time)
    track: List[Coordinate] = field(default_factory=list)

    def failed_attempts_in(self, phase: DeliveryPhase) -> int:
        return self.failed_attempts.get(phase, 0)

    def __repr__(self) -> str:
        return f"DeliverySession({self.shipment.tracking_code}, {self.phase.value})"


@dataclass(frozen=True)
class StatusUpdate:
    """A status change the core asks the persistence layer to apply."""
    shipment_id: str
    status: ShipmentStatus
    carbon_saved: Optional[float] = None
    distance_km: Optional[float] = None
    proof_ref: Optional[str] = None


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of a delivery completion round-trip."""
    success: bool
    message: str
    carbon_saved: float = 0.0
    invoice_id: Optional[str] = None


@dataclass(frozen=True)
class CheckInData:
    """Vehicle readings captured when the driver goes online."""
    odometer_reading: float
    fuel_level: float
    selfie_ref: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class CheckOutSummary:
    """
    Trip summary computed when the driver goes offline.

    avg_fuel_efficiency is km per percent of tank used; 0 when no fuel was used.
    """
    check_in: CheckInData
    check_out_odometer: float
    check_out_fuel: float
    km_driven: float
    fuel_used: float
    avg_fuel_efficiency: float
    timestamp: datetime = field(default_factory=datetime.now)
