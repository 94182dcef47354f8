"""
Tests for the command-line runner.
"""

import io
import unittest
from contextlib import redirect_stdout
from unittest import mock

import main
from routezy.position import ReplaySource, SimulatedSource


class TestRunDelivery(unittest.TestCase):
    """Test scripted deliveries."""

    def setUp(self):
        """Set up test fixtures."""
        self.shipment = main.SCENARIOS["mumbai"]["shipment"]

    def run_quiet(self, **kwargs):
        source = kwargs.pop("source", None) or SimulatedSource(self.shipment.pickup, start_time=0.0)
        out = io.StringIO()
        with redirect_stdout(out):
            code = main.run_delivery(self.shipment, source, max_ticks=200, **kwargs)
        return code, out.getvalue()

    def test_simulated_delivery(self):
        """Test the default scenario completes and prints the summary."""
        code, output = self.run_quiet(pickup_otp="1234", delivery_otp="5678")
        self.assertEqual(code, 0)
        self.assertIn("DELIVERY SUMMARY", output)
        self.assertIn("1.88 kg", output)

    def test_replay_delivery(self):
        """Test the bundled track completes the delivery."""
        source = ReplaySource.from_csv(main.SCENARIOS["mumbai"]["track"])
        code, _ = self.run_quiet(source=source, pickup_otp="1234", delivery_otp="5678")
        self.assertEqual(code, 0)

    def test_wrong_delivery_otp(self):
        """Test a rejected code exits with 2."""
        code, output = self.run_quiet(pickup_otp="1234", delivery_otp="0000")
        self.assertEqual(code, 2)
        self.assertIn("Incorrect OTP", output)

    def test_never_reaches_drop(self):
        """Test giving up before the geofence exits with 2."""
        out = io.StringIO()
        with redirect_stdout(out):
            code = main.run_delivery(
                self.shipment, SimulatedSource(self.shipment.pickup, start_time=0.0),
                pickup_otp="1234", delivery_otp="5678", max_ticks=2,
            )
        self.assertEqual(code, 2)
        self.assertIn("must be within", out.getvalue())

    def test_flaky_backend_is_retried(self):
        """Test transient failures are retried to completion."""
        code, output = self.run_quiet(pickup_otp="1234", delivery_otp="5678", flaky=2, retries=3)
        self.assertEqual(code, 0)
        self.assertIn("attempt 1", output)


class TestMain(unittest.TestCase):
    """Test argument handling."""

    def test_unknown_scenario(self):
        """Test an unknown scenario is an input error."""
        with mock.patch("sys.argv", ["main.py", "--scenario", "atlantis"]), redirect_stdout(io.StringIO()):
            self.assertEqual(main.main(), 1)

    def test_list_scenarios(self):
        """Test listing scenarios exits cleanly."""
        out = io.StringIO()
        with mock.patch("sys.argv", ["main.py", "--list-scenarios"]), redirect_stdout(out):
            self.assertEqual(main.main(), 0)
        self.assertIn("short_hop", out.getvalue())


if __name__ == '__main__':
    unittest.main()
