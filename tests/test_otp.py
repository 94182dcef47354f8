"""
Tests for OTP verification and throttling.
"""

import random
import unittest
from datetime import datetime

from routezy.errors import ShipmentNotFoundError
from routezy.models import Coordinate, DeliveryPhase, Shipment
from routezy.otp import (
    AttemptThrottle,
    OtpFailure,
    OtpVerifier,
    generate_otp,
    generate_tracking_code,
    validate_format,
)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def make_shipment():
    return Shipment(
        shipment_id="shp-001",
        tracking_code="RTZ-260110-MUM001",
        pickup=Coordinate(19.0760, 72.8777),
        drop=Coordinate(19.1136, 72.8697),
        pickup_otp="1234",
        delivery_otp="5678",
    )


class CountingLookup:
    """Shipment lookup that records how often it was consulted."""

    def __init__(self, shipments):
        self.shipments = {s.shipment_id: s for s in shipments}
        self.calls = 0

    def __call__(self, shipment_id):
        self.calls += 1
        if shipment_id not in self.shipments:
            raise ShipmentNotFoundError(shipment_id)
        return self.shipments[shipment_id]


class TestFormat(unittest.TestCase):
    """Test OTP format rules."""

    def test_valid(self):
        """Test four digits are accepted."""
        self.assertTrue(validate_format("0042"))

    def test_invalid(self):
        """Test wrong length, letters and non-strings are rejected."""
        for candidate in ["123", "12345", "12a4", "", " 123", None, 1234]:
            self.assertFalse(validate_format(candidate), candidate)

    def test_generate_otp(self):
        """Test generated codes are valid and never start with zero."""
        rng = random.Random(7)
        for _ in range(50):
            code = generate_otp(rng)
            self.assertTrue(validate_format(code))
            self.assertNotEqual(code[0], "0")

    def test_tracking_code(self):
        """Test tracking code layout."""
        code = generate_tracking_code(datetime(2026, 1, 10), random.Random(1))
        self.assertTrue(code.startswith("RTZ-260110-"))
        self.assertEqual(len(code), len("RTZ-260110-") + 6)


class TestOtpVerifier(unittest.TestCase):
    """Test OtpVerifier class."""

    def setUp(self):
        """Set up test fixtures."""
        self.clock = FakeClock()
        self.lookup = CountingLookup([make_shipment()])
        self.throttle = AttemptThrottle(max_attempts=3, base_lockout=30.0, max_lockout=100.0, clock=self.clock)
        self.verifier = OtpVerifier(self.lookup, self.throttle)

    def test_pickup_correct(self):
        """Test the configured pickup code verifies."""
        result = self.verifier.verify("shp-001", DeliveryPhase.PICKUP, "1234")
        self.assertTrue(result.valid)
        self.assertIsNone(result.reason)

    def test_pickup_wrong(self):
        """Test a wrong pickup code is a mismatch."""
        result = self.verifier.verify("shp-001", DeliveryPhase.PICKUP, "0000")
        self.assertFalse(result.valid)
        self.assertEqual(result.reason, OtpFailure.MISMATCH)

    def test_codes_are_phase_specific(self):
        """Test the delivery code does not open pickup and vice versa."""
        self.assertFalse(self.verifier.verify("shp-001", DeliveryPhase.PICKUP, "5678"))
        self.assertFalse(self.verifier.verify("shp-001", DeliveryPhase.DELIVERY, "1234"))
        self.assertTrue(self.verifier.verify("shp-001", DeliveryPhase.DELIVERY, "5678"))

    def test_format_rejected_without_lookup(self):
        """Test malformed codes fail before the expected value is read."""
        for candidate in ["12a4", "123"]:
            result = self.verifier.verify("shp-001", DeliveryPhase.PICKUP, candidate)
            self.assertEqual(result.reason, OtpFailure.INVALID_FORMAT)
        self.assertEqual(self.lookup.calls, 0)
        self.assertEqual(self.throttle.failures("shp-001", DeliveryPhase.PICKUP), 0)

    def test_unknown_shipment(self):
        """Test a missing shipment is reported, not raised."""
        result = self.verifier.verify("nope", DeliveryPhase.PICKUP, "1234")
        self.assertEqual(result.reason, OtpFailure.UNKNOWN_SHIPMENT)

    def test_phase_without_otp(self):
        """Test TRANSIT has no OTP to check."""
        with self.assertRaises(ValueError):
            self.verifier.verify("shp-001", DeliveryPhase.TRANSIT, "1234")

    def test_lockout_after_max_attempts(self):
        """Test the correct code is refused while locked, then accepted."""
        for _ in range(2):
            self.assertEqual(self.verifier.verify("shp-001", DeliveryPhase.PICKUP, "0000").retry_after, 0.0)
        third = self.verifier.verify("shp-001", DeliveryPhase.PICKUP, "0000")
        self.assertEqual(third.retry_after, 30.0)

        locked = self.verifier.verify("shp-001", DeliveryPhase.PICKUP, "1234")
        self.assertEqual(locked.reason, OtpFailure.LOCKED_OUT)
        self.assertGreater(locked.retry_after, 0)

        # Delivery code has its own counter
        self.assertTrue(self.verifier.verify("shp-001", DeliveryPhase.DELIVERY, "5678"))

        self.clock.now += 30.0
        self.assertTrue(self.verifier.verify("shp-001", DeliveryPhase.PICKUP, "1234"))
        self.assertEqual(self.throttle.failures("shp-001", DeliveryPhase.PICKUP), 0)


class TestAttemptThrottle(unittest.TestCase):
    """Test AttemptThrottle backoff."""

    def test_backoff_doubles_and_caps(self):
        """Test windows double per extra miss up to the cap."""
        clock = FakeClock()
        throttle = AttemptThrottle(max_attempts=2, base_lockout=30.0, max_lockout=100.0, clock=clock)
        windows = [throttle.record_failure("s", DeliveryPhase.PICKUP) for _ in range(5)]
        self.assertEqual(windows, [0.0, 30.0, 60.0, 100.0, 100.0])

    def test_disabled(self):
        """Test max_attempts=0 never locks."""
        throttle = AttemptThrottle(max_attempts=0, clock=FakeClock())
        for _ in range(20):
            self.assertEqual(throttle.record_failure("s", DeliveryPhase.PICKUP), 0.0)
        self.assertEqual(throttle.retry_after("s", DeliveryPhase.PICKUP), 0.0)
        self.assertFalse(throttle.enabled)


if __name__ == '__main__':
    unittest.main()
