# routezy/routezy/backend.py
"""
Backend interface for the delivery core.

Persistence, storage and invoicing live in the hosted backend. The core only
reads shipments and asks for status changes through a DeliveryBackend:

- **InMemoryBackend**: dict-backed, for tests, the CLI and the dashboards.
  It can be told to fail the next N calls to exercise retry paths.
- **RestBackend**: talks to the hosted project's REST tables over HTTP.

Every transport problem surfaces as ``NetworkFailure`` so the state machine
can leave the phase untouched and let the driver retry.
"""

from __future__ import annotations

import logging
import random
import time
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

import requests

from . import config
from .errors import NetworkFailure, ShipmentNotFoundError
from .models import Coordinate, DeliveryResult, Shipment, ShipmentStatus, StatusUpdate

logger = logging.getLogger(__name__)

PROOF_BUCKET = "proof-of-delivery"


def _invoice_number(now: Optional[datetime] = None) -> str:
    """Invoice numbers look like INV-202601-0042."""
    now = now or datetime.now()
    return f"INV-{now.strftime('%Y%m')}-{random.randint(0, 9999):04d}"


class DeliveryBackend(ABC):
    """Operations the delivery core needs from the persistence layer."""

    @abstractmethod
    def fetch_shipment(self, shipment_id: str) -> Shipment:
        """Return the shipment or raise ShipmentNotFoundError."""

    @abstractmethod
    def report_pickup(self, shipment_id: str) -> StatusUpdate:
        """Persist IN_TRANSIT after the pickup OTP was accepted."""

    @abstractmethod
    def complete_delivery(self, update: StatusUpdate) -> DeliveryResult:
        """Persist DELIVERED (with carbon and proof) and raise the invoice."""

    @abstractmethod
    def release_shipment(self, shipment_id: str) -> StatusUpdate:
        """Hand an abandoned shipment back to the PENDING pool."""

    @abstractmethod
    def update_driver_location(self, shipment_id: str, position: Coordinate) -> None:
        """Publish the driver's latest position for live tracking."""

    @abstractmethod
    def upload_proof(self, shipment_id: str, image: bytes, extension: str = "jpg") -> str:
        """Store a proof-of-delivery image and return its reference."""


class InMemoryBackend(DeliveryBackend):
    """
    Dict-backed backend.

    Attributes:
        status_updates: Every StatusUpdate applied, in order
        locations: (shipment_id, position) pairs published
        invoices: Invoice rows created on completion
        proofs: Uploaded proof images keyed by reference
    """

    def __init__(self, shipments: Iterable[Shipment] = ()) -> None:
        self._shipments: Dict[str, Shipment] = {s.shipment_id: s for s in shipments}
        self.status_updates: List[StatusUpdate] = []
        self.locations: List[Tuple[str, Coordinate]] = []
        self.invoices: List[Dict[str, Any]] = []
        self.proofs: Dict[str, bytes] = {}
        self._failures_pending = 0
        self._fail_operation: Optional[str] = None

    def add_shipment(self, shipment: Shipment) -> None:
        self._shipments[shipment.shipment_id] = shipment

    def fail_next(self, count: int = 1, operation: Optional[str] = None) -> None:
        """
        Make the next ``count`` calls raise NetworkFailure.

        With ``operation`` (e.g. "complete_delivery") only calls to that
        method are failed; others pass through.
        """
        self._failures_pending = count
        self._fail_operation = operation

    def _maybe_fail(self, operation: str) -> None:
        if self._failures_pending <= 0:
            return
        if self._fail_operation is not None and self._fail_operation != operation:
            return
        self._failures_pending -= 1
        raise NetworkFailure(f"Simulated network failure during {operation}")

    def _get(self, shipment_id: str) -> Shipment:
        try:
            return self._shipments[shipment_id]
        except KeyError:
            raise ShipmentNotFoundError(f"Shipment not found: {shipment_id}") from None

    def _apply(self, update: StatusUpdate) -> StatusUpdate:
        shipment = self._get(update.shipment_id)
        changes: Dict[str, Any] = {"status": update.status}
        if update.distance_km is not None:
            changes["distance_km"] = update.distance_km
        self._shipments[update.shipment_id] = replace(shipment, **changes)
        self.status_updates.append(update)
        return update

    def fetch_shipment(self, shipment_id: str) -> Shipment:
        self._maybe_fail("fetch_shipment")
        return self._get(shipment_id)

    def report_pickup(self, shipment_id: str) -> StatusUpdate:
        self._maybe_fail("report_pickup")
        return self._apply(StatusUpdate(shipment_id, ShipmentStatus.IN_TRANSIT))

    def complete_delivery(self, update: StatusUpdate) -> DeliveryResult:
        self._maybe_fail("complete_delivery")
        shipment = self._get(update.shipment_id)
        self._apply(update)

        amount = shipment.estimated_cost if shipment.estimated_cost is not None else config.INVOICE_DEFAULT_AMOUNT
        tax = amount * config.INVOICE_TAX_RATE
        invoice = {
            "invoice_number": _invoice_number(),
            "shipment_id": update.shipment_id,
            "amount": amount,
            "tax_amount": tax,
            "total_amount": amount + tax,
        }
        self.invoices.append(invoice)

        return DeliveryResult(
            success=True,
            message="Delivery completed successfully!",
            carbon_saved=update.carbon_saved or 0.0,
            invoice_id=invoice["invoice_number"],
        )

    def release_shipment(self, shipment_id: str) -> StatusUpdate:
        self._maybe_fail("release_shipment")
        return self._apply(StatusUpdate(shipment_id, ShipmentStatus.PENDING))

    def update_driver_location(self, shipment_id: str, position: Coordinate) -> None:
        self._maybe_fail("update_driver_location")
        self.locations.append((shipment_id, position))

    def upload_proof(self, shipment_id: str, image: bytes, extension: str = "jpg") -> str:
        self._maybe_fail("upload_proof")
        ref = f"memory://{PROOF_BUCKET}/{shipment_id}-{int(time.time() * 1000)}.{extension}"
        self.proofs[ref] = image
        return ref


def shipment_from_row(row: Dict[str, Any]) -> Shipment:
    """
    Build a Shipment from a ``shipments`` table row.

    Raises:
        ValueError: If the row lacks coordinates or has an unknown status
    """
    for key in ("pickup_lat", "pickup_lng", "delivery_lat", "delivery_lng"):
        if row.get(key) is None:
            raise ValueError(f"Shipment {row.get('id')} has no {key}")

    return Shipment(
        shipment_id=str(row["id"]),
        tracking_code=row["tracking_id"],
        pickup=Coordinate(float(row["pickup_lat"]), float(row["pickup_lng"])),
        drop=Coordinate(float(row["delivery_lat"]), float(row["delivery_lng"])),
        pickup_otp=row["pickup_otp"],
        delivery_otp=row["delivery_otp"],
        pickup_address=row.get("pickup_address") or "",
        drop_address=row.get("delivery_address") or "",
        receiver_name=row.get("receiver_name") or "",
        receiver_phone=row.get("receiver_phone") or "",
        status=ShipmentStatus(row.get("status") or ShipmentStatus.PENDING.value),
        distance_km=row.get("distance_km"),
        vehicle_type=row.get("vehicle_type") or "TRUCK",
        estimated_cost=row.get("estimated_cost"),
    )


class RestBackend(DeliveryBackend):
    """
    HTTP client for the hosted backend's REST tables and storage.

    Args:
        base_url: Project URL; defaults to config.BACKEND_URL
        api_key: Project key; defaults to config.BACKEND_API_KEY
        timeout: Per-request timeout in seconds
        session: Optional pre-built requests.Session (for pooling or tests)
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None
    ) -> None:
        self.base_url = (base_url or config.BACKEND_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else config.BACKEND_API_KEY
        self.timeout = timeout if timeout is not None else config.BACKEND_TIMEOUT_SECONDS
        self.session = session or requests.Session()
        self.session.headers.update({
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        })

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, str]] = None,
        json: Optional[Any] = None,
        data: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(
                method, url, params=params, json=json, data=data,
                headers=headers, timeout=self.timeout,
            )
            response.raise_for_status()
            if not response.content:
                return None
            return response.json()
        except requests.exceptions.Timeout as e:
            logger.warning(f"Backend {method} {path} timed out")
            raise NetworkFailure("Request timed out. Please retry.", e) from e
        except requests.exceptions.RequestException as e:
            logger.warning(f"Backend {method} {path} failed: {e}")
            raise NetworkFailure(f"Backend request failed: {e}", e) from e
        except ValueError as e:
            logger.warning(f"Backend {method} {path} returned invalid JSON: {e}")
            raise NetworkFailure("Backend returned an invalid response", e) from e

    def _patch_shipment(self, shipment_id: str, body: Dict[str, Any]) -> List[Dict[str, Any]]:
        rows = self._request(
            "PATCH", "/rest/v1/shipments",
            params={"id": f"eq.{shipment_id}"}, json=body,
        )
        if not rows:
            raise ShipmentNotFoundError(f"Shipment not found: {shipment_id}")
        return rows

    def fetch_shipment(self, shipment_id: str) -> Shipment:
        rows = self._request(
            "GET", "/rest/v1/shipments",
            params={"id": f"eq.{shipment_id}", "select": "*"},
        )
        if not rows:
            raise ShipmentNotFoundError(f"Shipment not found: {shipment_id}")
        try:
            return shipment_from_row(rows[0])
        except (KeyError, ValueError, TypeError) as e:
            raise NetworkFailure(f"Unexpected shipment payload: {e}", e) from e

    def report_pickup(self, shipment_id: str) -> StatusUpdate:
        self._patch_shipment(shipment_id, {
            "status": ShipmentStatus.IN_TRANSIT.value,
            "picked_up_at": datetime.now(timezone.utc).isoformat(),
        })
        return StatusUpdate(shipment_id, ShipmentStatus.IN_TRANSIT)

    def complete_delivery(self, update: StatusUpdate) -> DeliveryResult:
        rows = self._patch_shipment(update.shipment_id, {
            "status": ShipmentStatus.DELIVERED.value,
            "delivered_at": datetime.now(timezone.utc).isoformat(),
            "proof_of_delivery_url": update.proof_ref,
            "carbon_score": update.carbon_saved,
            "distance_km": update.distance_km,
        })
        row = rows[0]
        amount = row.get("estimated_cost")
        if amount is None:
            amount = config.INVOICE_DEFAULT_AMOUNT
        tax = amount * config.INVOICE_TAX_RATE

        # The delivery already succeeded; a missing invoice is a back-office fix.
        invoice_id: Optional[str] = None
        try:
            invoices = self._request("POST", "/rest/v1/invoices", json={
                "invoice_number": _invoice_number(),
                "shipment_id": update.shipment_id,
                "sender_id": row.get("sender_id"),
                "amount": amount,
                "tax_amount": tax,
                "total_amount": amount + tax,
            })
            if invoices:
                invoice_id = invoices[0].get("id")
        except NetworkFailure as e:
            logger.error(f"Error creating invoice for {update.shipment_id}: {e}")

        return DeliveryResult(
            success=True,
            message="Delivery completed successfully!",
            carbon_saved=update.carbon_saved or 0.0,
            invoice_id=invoice_id,
        )

    def release_shipment(self, shipment_id: str) -> StatusUpdate:
        self._patch_shipment(shipment_id, {
            "status": ShipmentStatus.PENDING.value,
            "driver_id": None,
        })
        return StatusUpdate(shipment_id, ShipmentStatus.PENDING)

    def update_driver_location(self, shipment_id: str, position: Coordinate) -> None:
        self._patch_shipment(shipment_id, {"driver_lat": position.lat, "driver_lng": position.lng})

    def upload_proof(self, shipment_id: str, image: bytes, extension: str = "jpg") -> str:
        name = f"{shipment_id}-{int(time.time() * 1000)}.{extension}"
        self._request(
            "POST", f"/storage/v1/object/{PROOF_BUCKET}/{name}",
            data=image, headers={"Content-Type": f"image/{extension}"},
        )
        return f"{self.base_url}/storage/v1/object/public/{PROOF_BUCKET}/{name}"
