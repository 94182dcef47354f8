"""
Tests for the driver session store.
"""

import unittest

from routezy.errors import (
    InvalidReadingError,
    InvalidTransitionError,
    NoActiveSessionError,
    SessionActiveError,
)
from routezy.models import CheckInData, Coordinate, DeliveryPhase, DriverStats, PositionUpdate, Shipment
from routezy.session import DriverSessionStore


def make_shipment(shipment_id="shp-001"):
    return Shipment(
        shipment_id=shipment_id,
        tracking_code=f"RTZ-260110-{shipment_id.upper()}",
        pickup=Coordinate(19.0760, 72.8777),
        drop=Coordinate(19.1136, 72.8697),
        pickup_otp="1234",
        delivery_otp="5678",
    )


class TestSessionLifecycle(unittest.TestCase):
    """Test assignment and phase changes."""

    def setUp(self):
        """Set up test fixtures."""
        self.store = DriverSessionStore()

    def test_assign_starts_at_pickup(self):
        """Test a new session starts in PICKUP at the pickup point."""
        session = self.store.assign_shipment(make_shipment())
        self.assertEqual(session.phase, DeliveryPhase.PICKUP)
        self.assertEqual(session.driver_position, session.shipment.pickup)
        self.assertEqual(session.track, [session.shipment.pickup])

    def test_assign_blocked_by_live_session(self):
        """Test a second shipment waits for the first to finish."""
        self.store.assign_shipment(make_shipment())
        with self.assertRaises(SessionActiveError):
            self.store.assign_shipment(make_shipment("shp-002"))

    def test_require_session(self):
        """Test operations without a session raise."""
        with self.assertRaises(NoActiveSessionError):
            self.store.require_session()
        with self.assertRaises(NoActiveSessionError):
            self.store.advance_phase(DeliveryPhase.TRANSIT)

    def test_only_single_forward_steps(self):
        """Test skipping or reversing phases is illegal."""
        self.store.assign_shipment(make_shipment())
        with self.assertRaises(InvalidTransitionError):
            self.store.advance_phase(DeliveryPhase.DELIVERY)

        self.store.set_otp_attempt("12")
        self.store.advance_phase(DeliveryPhase.TRANSIT)
        self.assertEqual(self.store.current_session.otp_attempt, "")

        with self.assertRaises(InvalidTransitionError):
            self.store.advance_phase(DeliveryPhase.PICKUP)
        with self.assertRaises(InvalidTransitionError):
            self.store.advance_phase(DeliveryPhase.TRANSIT)

    def test_cancel_from_any_live_phase(self):
        """Test CANCELLED is reachable from a live phase but not a terminal one."""
        self.store.assign_shipment(make_shipment())
        self.store.advance_phase(DeliveryPhase.CANCELLED)
        self.assertFalse(self.store.has_live_session)
        with self.assertRaises(InvalidTransitionError):
            self.store.advance_phase(DeliveryPhase.CANCELLED)

        # A finished session is replaced by the next assignment
        self.store.assign_shipment(make_shipment("shp-002"))
        self.assertEqual(self.store.current_session.shipment.shipment_id, "shp-002")

    def test_otp_buffer_keeps_digits(self):
        """Test the buffer drops non-digits and truncates to four."""
        self.store.assign_shipment(make_shipment())
        self.assertEqual(self.store.set_otp_attempt("1a2-3 45"), "1234")

    def test_record_failure(self):
        """Test failures store the message and count per phase."""
        self.store.assign_shipment(make_shipment())
        self.store.set_pending(True)
        self.store.record_failure("Incorrect OTP. Please try again.", DeliveryPhase.PICKUP)

        session = self.store.current_session
        self.assertFalse(session.pending)
        self.assertEqual(session.last_error, "Incorrect OTP. Please try again.")
        self.assertEqual(session.failed_attempts_in(DeliveryPhase.PICKUP), 1)
        self.assertEqual(session.failed_attempts_in(DeliveryPhase.DELIVERY), 0)

    def test_apply_position(self):
        """Test applied fixes move the driver and extend the track."""
        self.store.assign_shipment(make_shipment())
        self.store.apply_position(PositionUpdate(19.09, 72.87, 5.0, 0))
        session = self.store.current_session
        self.assertEqual(session.driver_position, Coordinate(19.09, 72.87))
        self.assertEqual((session.last_sequence, session.last_timestamp), (0, 5.0))
        self.assertEqual(len(session.track), 2)

    def test_listeners(self):
        """Test subscribers are notified until they unsubscribe."""
        seen = []
        unsubscribe = self.store.subscribe(lambda store: seen.append(store.current_session))
        self.store.assign_shipment(make_shipment())
        unsubscribe()
        self.store.set_otp_attempt("1")
        self.assertEqual(len(seen), 1)


class TestStats(unittest.TestCase):
    """Test stats crediting."""

    def setUp(self):
        """Set up a session already at COMPLETED."""
        self.store = DriverSessionStore()
        self.store.assign_shipment(make_shipment())
        for phase in (DeliveryPhase.TRANSIT, DeliveryPhase.DELIVERY, DeliveryPhase.COMPLETED):
            self.store.advance_phase(phase)

    def test_credit_once(self):
        """Test a completed session is credited exactly once."""
        self.store.complete_delivery(1.88)
        self.store.complete_delivery(1.88)
        self.assertEqual(self.store.driver_stats.total_deliveries, 1)
        self.assertAlmostEqual(self.store.driver_stats.total_carbon_saved, 1.88)

    def test_negative_carbon(self):
        """Test negative credits are rejected."""
        with self.assertRaises(ValueError):
            self.store.complete_delivery(-0.5)
        self.assertEqual(self.store.driver_stats.total_deliveries, 0)

    def test_credit_requires_completed(self):
        """Test a live session cannot be credited."""
        store = DriverSessionStore()
        store.assign_shipment(make_shipment())
        with self.assertRaises(InvalidTransitionError):
            store.complete_delivery(1.0)

    def test_stats_validation(self):
        """Test stats can't start negative."""
        with self.assertRaises(ValueError):
            DriverStats(total_deliveries=-1)


class TestCheckInOut(unittest.TestCase):
    """Test shift check-in and check-out."""

    def setUp(self):
        """Set up test fixtures."""
        self.store = DriverSessionStore()

    def test_trip_summary(self):
        """Test check-out computes distance, fuel and efficiency."""
        self.store.check_in(CheckInData(odometer_reading=12000.0, fuel_level=80.0))
        self.assertTrue(self.store.is_online)

        summary = self.store.check_out(12150.0, 50.0)
        self.assertEqual(summary.km_driven, 150.0)
        self.assertEqual(summary.fuel_used, 30.0)
        self.assertEqual(summary.avg_fuel_efficiency, 5.0)
        self.assertFalse(self.store.is_online)
        self.assertIs(self.store.last_trip_summary, summary)

    def test_no_fuel_used(self):
        """Test efficiency is zero when fuel did not drop."""
        self.store.check_in(CheckInData(odometer_reading=100.0, fuel_level=50.0))
        self.assertEqual(self.store.check_out(110.0, 60.0).avg_fuel_efficiency, 0.0)

    def test_invalid_readings(self):
        """Test bad readings are rejected."""
        with self.assertRaises(InvalidReadingError):
            self.store.check_in(CheckInData(odometer_reading=-1.0, fuel_level=50.0))
        with self.assertRaises(InvalidReadingError):
            self.store.check_in(CheckInData(odometer_reading=10.0, fuel_level=101.0))

        self.store.check_in(CheckInData(odometer_reading=500.0, fuel_level=50.0))
        with self.assertRaises(SessionActiveError):
            self.store.check_in(CheckInData(odometer_reading=500.0, fuel_level=50.0))
        with self.assertRaises(InvalidReadingError):
            self.store.check_out(499.0, 40.0)
        self.assertTrue(self.store.is_online)

    def test_check_out_rules(self):
        """Test check-out needs a check-in and no live delivery."""
        with self.assertRaises(NoActiveSessionError):
            self.store.check_out(100.0, 50.0)

        self.store.check_in(CheckInData(odometer_reading=100.0, fuel_level=50.0))
        self.store.assign_shipment(make_shipment())
        with self.assertRaises(SessionActiveError):
            self.store.check_out(110.0, 40.0)


if __name__ == '__main__':
    unittest.main()
