#!/usr/bin/env python3
# routezy/main.py
"""
Command-Line Interface for the Routezy driver delivery flow.

Runs one scripted delivery end to end against the in-memory backend:
check-in, pickup OTP, drive to the drop, arrive, delivery OTP, check-out.
Handy for demos and for smoke-testing the state machine without the UI.

Usage:
    python main.py                              # Simulated drive, Mumbai scenario
    python main.py --source replay              # Replay data/mumbai_track.csv
    python main.py --delivery-otp 0000          # Watch a rejected OTP
    python main.py --flaky 2                    # Fail the first 2 backend calls
    python main.py --verbose                    # Print every applied fix

Exit Codes:
    0: Delivery completed
    1: Bad input (unknown scenario, missing track file)
    2: Delivery did not complete (OTP rejected, never reached the drop, backend down)
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from typing import Any, Callable, Dict, Optional

from routezy import config
from routezy.backend import InMemoryBackend
from routezy.errors import NetworkFailure, OutOfRangeError
from routezy.lifecycle import DeliveryStateMachine
from routezy.models import CheckInData, Coordinate, DeliveryPhase, Shipment
from routezy.position import PositionSource, ReplaySource, SimulatedSource
from routezy.session import DriverSessionStore

DATA_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "data")


# Available scenarios
SCENARIOS: Dict[str, Dict[str, Any]] = {
    "mumbai": {
        "shipment": Shipment(
            shipment_id="shp-001",
            tracking_code="RTZ-260110-MUM001",
            pickup=Coordinate(19.0760, 72.8777),
            drop=Coordinate(19.1136, 72.8697),
            pickup_otp="1234",
            delivery_otp="5678",
            pickup_address="Kurla West, Mumbai",
            drop_address="Andheri East, Mumbai",
            receiver_name="Priya Sharma",
            receiver_phone="+91 98200 00000",
            distance_km=12.5,
        ),
        "track": os.path.join(DATA_DIR, "mumbai_track.csv"),
        "description": "Kurla to Andheri, 12.5 km booked route",
    },
    "short_hop": {
        "shipment": Shipment(
            shipment_id="shp-002",
            tracking_code="RTZ-260110-HOP002",
            pickup=Coordinate(19.0760, 72.8777),
            drop=Coordinate(19.0790, 72.8777),
            pickup_otp="4321",
            delivery_otp="8765",
            pickup_address="Kurla West, Mumbai",
            drop_address="Kurla West, Mumbai",
            receiver_name="Arjun Mehta",
            vehicle_type="BIKE",
        ),
        "track": None,
        "description": "Drop inside the geofence from the start, no stored distance",
    },
}

AVAILABLE_SOURCES = ["simulated", "replay"]


def print_header() -> None:
    """Print the CLI header."""
    print("\n" + "=" * 60)
    print("  ROUTEZY - Driver Delivery Flow")
    print("  Pickup OTP -> Transit -> Geofenced Arrival -> Delivery OTP")
    print("=" * 60 + "\n")


def print_summary(store: DriverSessionStore, machine: DeliveryStateMachine) -> None:
    """
    Print the finished session and the driver's running totals.

    Args:
        store: Session store after the run
        machine: State machine that drove the run
    """
    session = store.current_session
    stats = store.driver_stats

    rows = [
        ("Tracking Code", session.shipment.tracking_code),
        ("Final Phase", session.phase.value),
        ("Fixes Applied", str(len(session.track) - 1)),
        ("Distance To Drop", f"{machine.distance_to_drop:.0f} m"),
        ("Proof Attached", "yes" if session.proof_image else "no"),
        ("Carbon Saved", f"{session.carbon_saved or 0.0:.2f} kg"),
        ("Total Deliveries", str(stats.total_deliveries)),
        ("Total Carbon Saved", f"{stats.total_carbon_saved:.2f} kg"),
    ]
    if store.completed_results:
        rows.append(("Invoice", store.completed_results[-1].invoice_id or "N/A"))

    summary = store.last_trip_summary
    if summary is not None:
        rows.append(("Km Driven", f"{summary.km_driven:.1f} km"))
        rows.append(("Fuel Used", f"{summary.fuel_used:.1f} %"))
        rows.append(("Avg Efficiency", f"{summary.avg_fuel_efficiency:.2f} km/%"))

    print("\n" + "=" * 60)
    print("  DELIVERY SUMMARY")
    print("=" * 60 + "\n")
    for label, value in rows:
        print(f"| {label:<22} | {value:^31} |")
    print("\n" + "=" * 60 + "\n")


def with_retries(action: Callable[[], Any], label: str, retries: int) -> Any:
    """
    Run ``action``, retrying on NetworkFailure like a driver tapping again.

    Raises:
        NetworkFailure: If every attempt failed
    """
    for attempt in range(1, retries + 2):
        try:
            return action()
        except NetworkFailure as e:
            print(f"WARN: {label} failed (attempt {attempt}): {e}")
            if attempt > retries:
                raise
    return None


def build_source(
    source_kind: str,
    shipment: Shipment,
    track_file: Optional[str]
) -> Optional[PositionSource]:
    """
    Build the position feed for the run.

    Returns:
        A PositionSource, or None if the track file is missing or invalid
    """
    if source_kind == "simulated":
        return SimulatedSource(shipment.pickup, start_time=time.time())

    if not track_file:
        print("ERROR: Replay needs a track file (use --track-file)")
        return None
    try:
        return ReplaySource.from_csv(track_file)
    except (FileNotFoundError, ValueError) as e:
        print(f"ERROR: {e}")
        return None


def run_delivery(
    shipment: Shipment,
    source: PositionSource,
    pickup_otp: str,
    delivery_otp: str,
    max_ticks: int,
    retries: int = 3,
    flaky: int = 0,
    with_proof: bool = False,
    verbose: bool = False
) -> int:
    """
    Drive one shipment through the full lifecycle.

    Returns:
        Exit code (0 if the delivery completed, 2 otherwise)
    """
    backend = InMemoryBackend([shipment])
    store = DriverSessionStore()
    machine = DeliveryStateMachine(store, backend, position_source=source)

    store.check_in(CheckInData(odometer_reading=12000.0, fuel_level=80.0))
    machine.assign(shipment)
    print(f"Assigned {shipment.tracking_code}: {shipment.pickup_address} -> {shipment.drop_address}")

    if flaky:
        backend.fail_next(flaky)

    try:
        result = with_retries(lambda: machine.verify_pickup_otp(pickup_otp), "Pickup OTP", retries)
        print(f"[PICKUP] {result.message}")
        if not result.valid:
            return 2

        ticks = 0
        while not machine.can_arrive and ticks < max_ticks:
            ticks += 1
            update = machine.tick()
            if update is not None and verbose:
                print(f"  fix #{update.sequence:>3}  ({update.lat:.5f}, {update.lng:.5f})  "
                      f"{machine.distance_to_drop:>7.0f} m to drop")
            if update is None and not source.active:
                break

        print(f"[TRANSIT] {machine.distance_to_drop:.0f} m from drop after {ticks} ticks")
        machine.arrive()
        print("[DELIVERY] Arrived at drop location")

        if with_proof:
            ref = with_retries(
                lambda: backend.upload_proof(shipment.shipment_id, b"\xff\xd8proof\xff\xd9"),
                "Proof upload", retries,
            )
            machine.attach_proof(ref)
            print(f"[DELIVERY] Proof attached: {ref}")

        result = with_retries(lambda: machine.verify_delivery_otp(delivery_otp), "Delivery OTP", retries)
        print(f"[DELIVERY] {result.message}")
        if not result.valid:
            return 2
    except OutOfRangeError as e:
        print(f"ERROR: {e}")
        return 2
    except NetworkFailure as e:
        print(f"ERROR: Backend unavailable: {e}")
        return 2

    km_driven = shipment.distance_km if shipment.distance_km is not None else machine.distance_to_drop / 1000
    store.check_out(12000.0 + km_driven, 78.0)
    print_summary(store, machine)
    return 0 if store.current_session.phase == DeliveryPhase.COMPLETED else 2


def main() -> int:
    """
    Main entry point for the CLI.

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    parser = argparse.ArgumentParser(
        description="Routezy driver delivery flow CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                               # Default: mumbai, simulated feed
  python main.py --source replay               # Replay the recorded track
  python main.py --scenario short_hop          # Drop already inside the geofence
  python main.py --list-scenarios              # Show available scenarios
        """
    )

    parser.add_argument(
        "--scenario", "-s",
        type=str,
        default="mumbai",
        help=f"Scenario to run (default: mumbai). Options: {', '.join(SCENARIOS.keys())}"
    )

    parser.add_argument(
        "--source",
        choices=AVAILABLE_SOURCES,
        default="simulated",
        help="Position feed driving the transit phase (default: simulated)"
    )

    parser.add_argument(
        "--track-file",
        type=str,
        default=None,
        help="CSV with lat,lng,timestamp[,sequence] for --source replay"
    )

    parser.add_argument("--pickup-otp", type=str, default=None, help="OTP typed at pickup")
    parser.add_argument("--delivery-otp", type=str, default=None, help="OTP typed at the door")

    parser.add_argument(
        "--max-ticks",
        type=int,
        default=200,
        help="Give up driving after this many fixes (default: 200)"
    )

    parser.add_argument(
        "--geofence",
        type=float,
        default=None,
        help=f"Arrival radius in meters (default: {config.GEOFENCE_RADIUS_M:.0f})"
    )

    parser.add_argument(
        "--flaky",
        type=int,
        default=0,
        help="Fail the first N backend calls to exercise retries"
    )

    parser.add_argument(
        "--retries",
        type=int,
        default=3,
        help="Retries per step after a network failure (default: 3)"
    )

    parser.add_argument(
        "--with-proof",
        action="store_true",
        help="Upload a placeholder proof-of-delivery image before the delivery OTP"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show every applied position fix and debug logging"
    )

    parser.add_argument(
        "--list-scenarios",
        action="store_true",
        help="List available scenarios and exit"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    # List scenarios mode
    if args.list_scenarios:
        print("\nAvailable Scenarios:")
        print("-" * 50)
        for name, info in SCENARIOS.items():
            track = info["track"]
            replay = "replay OK" if track and os.path.exists(track) else "simulated only"
            print(f"  {name:12} [{replay}] - {info['description']}")
        return 0

    if args.scenario not in SCENARIOS:
        print(f"ERROR: Unknown scenario '{args.scenario}'")
        print(f"Available scenarios: {', '.join(SCENARIOS.keys())}")
        return 1

    if args.geofence is not None:
        if args.geofence <= 0:
            print("ERROR: --geofence must be positive")
            return 1
        config.GEOFENCE_RADIUS_M = args.geofence

    print_header()

    scenario = SCENARIOS[args.scenario]
    shipment: Shipment = scenario["shipment"]
    source = build_source(args.source, shipment, args.track_file or scenario["track"])
    if source is None:
        return 1

    print(f"Scenario '{args.scenario}' with {args.source} feed, geofence {config.GEOFENCE_RADIUS_M:.0f} m")
    print("-" * 40)

    return run_delivery(
        shipment,
        source,
        pickup_otp=args.pickup_otp or shipment.pickup_otp,
        delivery_otp=args.delivery_otp or shipment.delivery_otp,
        max_ticks=args.max_ticks,
        retries=max(0, args.retries),
        flaky=max(0, args.flaky),
        with_proof=args.with_proof,
        verbose=args.verbose,
    )


if __name__ == "__main__":
    sys.exit(main())
