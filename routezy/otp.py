# routezy/routezy/otp.py
"""
OTP verification for pickup and delivery handoffs.

Verification is a pure check: it answers valid/invalid and never moves the
delivery forward. Phase advancement is the state machine's job.

Mismatches are counted per (shipment, phase) by an AttemptThrottle. After
``config.OTP_MAX_ATTEMPTS`` consecutive misses the code is locked for a
backoff window that doubles with every further miss.
"""

from __future__ import annotations

import hmac
import logging
import random
import string
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from . import config
from .errors import ShipmentNotFoundError
from .models import DeliveryPhase, Shipment

logger = logging.getLogger(__name__)

ShipmentLookup = Callable[[str], Shipment]
Clock = Callable[[], float]


class OtpFailure(Enum):
    """Why a candidate OTP was rejected."""
    INVALID_FORMAT = "INVALID_FORMAT"
    MISMATCH = "MISMATCH"
    LOCKED_OUT = "LOCKED_OUT"
    UNKNOWN_SHIPMENT = "UNKNOWN_SHIPMENT"
    WRONG_PHASE = "WRONG_PHASE"  # session is not waiting for this code


@dataclass(frozen=True)
class OtpResult:
    """Outcome of a single verification. ``reason`` is None when valid."""
    valid: bool
    message: str
    reason: Optional[OtpFailure] = None
    retry_after: float = 0.0

    def __bool__(self) -> bool:
        return self.valid


def validate_format(candidate: object) -> bool:
    """True if ``candidate`` is exactly OTP_LENGTH ASCII digits."""
    return (
        isinstance(candidate, str)
        and len(candidate) == config.OTP_LENGTH
        and all(ch in string.digits for ch in candidate)
    )


def generate_otp(rng: Optional[random.Random] = None) -> str:
    """Generate a 4-digit OTP in 1000-9999 (never a leading zero)."""
    rng = rng or random.SystemRandom()
    low = 10 ** (config.OTP_LENGTH - 1)
    return str(rng.randint(low, 10 ** config.OTP_LENGTH - 1))


def generate_tracking_code(
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None
) -> str:
    """Generate a tracking code like ``RTZ-240110-AB12CD``."""
    now = now or datetime.now()
    rng = rng or random.SystemRandom()
    suffix = "".join(rng.choice(string.ascii_uppercase + string.digits) for _ in range(6))
    return f"RTZ-{now.strftime('%y%m%d')}-{suffix}"


class AttemptThrottle:
    """
    Counts consecutive OTP mismatches and enforces lockout windows.

    Attributes:
        max_attempts: Misses allowed before locking (0 disables throttling)
        base_lockout: First lockout window in seconds
        max_lockout: Cap on any single lockout window
    """

    def __init__(
        self,
        max_attempts: Optional[int] = None,
        base_lockout: Optional[float] = None,
        max_lockout: Optional[float] = None,
        clock: Clock = time.monotonic
    ) -> None:
        self.max_attempts = config.OTP_MAX_ATTEMPTS if max_attempts is None else max_attempts
        self.base_lockout = config.OTP_LOCKOUT_BASE_SECONDS if base_lockout is None else base_lockout
        self.max_lockout = config.OTP_LOCKOUT_MAX_SECONDS if max_lockout is None else max_lockout
        self._clock = clock
        self._failures: Dict[Tuple[str, DeliveryPhase], int] = {}
        self._locked_until: Dict[Tuple[str, DeliveryPhase], float] = {}

    @property
    def enabled(self) -> bool:
        return self.max_attempts > 0

    def failures(self, shipment_id: str, phase: DeliveryPhase) -> int:
        return self._failures.get((shipment_id, phase), 0)

    def retry_after(self, shipment_id: str, phase: DeliveryPhase) -> float:
        """Seconds until verification unlocks; 0 when not locked."""
        until = self._locked_until.get((shipment_id, phase))
        if until is None:
            return 0.0
        return max(0.0, until - self._clock())

    def record_failure(self, shipment_id: str, phase: DeliveryPhase) -> float:
        """
        Count a mismatch and lock if the limit is reached.

        Returns:
            The lockout window started by this failure, or 0
        """
        key = (shipment_id, phase)
        count = self._failures.get(key, 0) + 1
        self._failures[key] = count

        if not self.enabled or count < self.max_attempts:
            return 0.0

        window = min(self.base_lockout * 2 ** (count - self.max_attempts), self.max_lockout)
        self._locked_until[key] = self._clock() + window
        logger.warning(
            f"OTP locked for shipment {shipment_id} ({phase.value}) "
            f"after {count} misses; retry in {window:.0f}s"
        )
        return window

    def reset(self, shipment_id: str, phase: DeliveryPhase) -> None:
        key = (shipment_id, phase)
        self._failures.pop(key, None)
        self._locked_until.pop(key, None)


class OtpVerifier:
    """
    Validates 4-digit codes against the expected value on the shipment record.

    Args:
        lookup: Callable returning the Shipment for an id (usually the
            backend's fetch_shipment). May raise ShipmentNotFoundError.
        throttle: Optional AttemptThrottle; a default one is created
    """

    def __init__(self, lookup: ShipmentLookup, throttle: Optional[AttemptThrottle] = None) -> None:
        self._lookup = lookup
        self.throttle = throttle if throttle is not None else AttemptThrottle()

    @staticmethod
    def _expected_otp(shipment: Shipment, phase: DeliveryPhase) -> str:
        if phase == DeliveryPhase.PICKUP:
            return shipment.pickup_otp
        if phase == DeliveryPhase.DELIVERY:
            return shipment.delivery_otp
        raise ValueError(f"No OTP is checked in phase {phase.value}")

    def verify(self, shipment_id: str, phase: DeliveryPhase, candidate: str) -> OtpResult:
        """
        Check ``candidate`` against the shipment's OTP for ``phase``.

        Format is checked first, without consulting the expected value or
        the throttle. A locked code is rejected before comparing.

        Raises:
            ValueError: If ``phase`` has no OTP (TRANSIT, COMPLETED, ...)
        """
        if phase not in (DeliveryPhase.PICKUP, DeliveryPhase.DELIVERY):
            raise ValueError(f"No OTP is checked in phase {phase.value}")

        if not validate_format(candidate):
            return OtpResult(False, "Invalid OTP format", OtpFailure.INVALID_FORMAT)

        wait = self.throttle.retry_after(shipment_id, phase)
        if wait > 0:
            return OtpResult(
                False,
                f"Too many attempts. Try again in {wait:.0f}s.",
                OtpFailure.LOCKED_OUT,
                retry_after=wait,
            )

        try:
            shipment = self._lookup(shipment_id)
        except ShipmentNotFoundError:
            return OtpResult(False, "Shipment not found", OtpFailure.UNKNOWN_SHIPMENT)

        expected = self._expected_otp(shipment, phase)
        if not hmac.compare_digest(candidate.encode(), expected.encode()):
            window = self.throttle.record_failure(shipment_id, phase)
            return OtpResult(
                False,
                "Incorrect OTP. Please try again.",
                OtpFailure.MISMATCH,
                retry_after=window,
            )

        self.throttle.reset(shipment_id, phase)
        if phase == DeliveryPhase.PICKUP:
            return OtpResult(True, "Pickup verified successfully")
        return OtpResult(True, "Delivery OTP verified")
