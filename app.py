# routezy/app.py
"""
Routezy - Driver Dashboard
======================================

Streamlit front end for a single driver's delivery flow.

Features:
- Go online / offline with odometer and fuel readings
- Pickup and delivery OTP entry
- "I've arrived" enabled only inside the drop geofence
- Proof-of-delivery upload
- Live pydeck map and position table
"""

import streamlit as st
import pandas as pd
import pydeck as pdk
import os
import sys
import time
from typing import Dict, List, Optional

# Ensure routezy is importable
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from routezy import config
from routezy.backend import InMemoryBackend
from routezy.errors import (
    InvalidReadingError,
    InvalidTransitionError,
    NetworkFailure,
    NoActiveSessionError,
    OutOfRangeError,
    SessionActiveError,
    ShipmentNotFoundError,
)
from routezy.geo import distance_meters
from routezy.lifecycle import DeliveryStateMachine
from routezy.models import CheckInData, Coordinate, DeliveryPhase, Shipment
from routezy.position import SimulatedSource
from routezy.session import DriverSessionStore

# =============================================================================
# PAGE CONFIG
# =============================================================================

st.set_page_config(
    page_title="Routezy Driver",
    page_icon="🚚",
    layout="wide",
    initial_sidebar_state="expanded"
)

# =============================================================================
# CUSTOM STYLING
# =============================================================================

st.markdown("""
<style>
    .block-container { padding: 1.5rem 2.5rem 3rem 2.5rem; }

    /* Phase banner */
    .phase-card {
        background: #0f766e;
        border-left: 8px solid #f59e0b;
        border-radius: 10px;
        padding: 1rem 1.5rem;
        color: #f8fafc;
    }
    .phase-card.cancelled { background: #9f1239; border-left-color: #fda4af; }

    .phase-label { font-size: 0.8rem; letter-spacing: 0.12em; text-transform: uppercase; color: #ccfbf1; }
    .phase-value { font-size: 1.9rem; font-weight: 700; line-height: 1.2; }

    .section-header {
        font-size: 1.3rem;
        font-weight: 650;
        color: #134e4a;
        margin: 1.5rem 0 0.75rem 0;
        border-bottom: 2px dashed #5eead4;
    }

    .stButton > button { width: 100%; border-radius: 8px; font-weight: 600; min-height: 3rem; }
</style>
""", unsafe_allow_html=True)

# =============================================================================
# DEMO DATA
# =============================================================================

DEMO_SHIPMENTS: List[Shipment] = [
    Shipment(
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
    Shipment(
        shipment_id="shp-002",
        tracking_code="RTZ-260110-BKC002",
        pickup=Coordinate(19.0660, 72.8680),
        drop=Coordinate(19.0596, 72.8295),
        pickup_otp="2468",
        delivery_otp="1357",
        pickup_address="Bandra Kurla Complex, Mumbai",
        drop_address="Bandra West, Mumbai",
        receiver_name="Rahul Verma",
        receiver_phone="+91 98300 00000",
        vehicle_type="MINI_TRUCK",
    ),
]

PHASE_STEPS: List[DeliveryPhase] = [
    DeliveryPhase.PICKUP,
    DeliveryPhase.TRANSIT,
    DeliveryPhase.DELIVERY,
    DeliveryPhase.COMPLETED,
]

# =============================================================================
# SESSION OBJECTS
# =============================================================================


def get_store() -> DriverSessionStore:
    """One store per browser session, kept across reruns."""
    if "store" not in st.session_state:
        st.session_state["store"] = DriverSessionStore()
    return st.session_state["store"]


def get_backend() -> InMemoryBackend:
    if "backend" not in st.session_state:
        st.session_state["backend"] = InMemoryBackend(DEMO_SHIPMENTS)
    return st.session_state["backend"]


def get_machine() -> DeliveryStateMachine:
    if "machine" not in st.session_state:
        st.session_state["machine"] = DeliveryStateMachine(
            get_store(),
            get_backend(),
            position_source=SimulatedSource(DEMO_SHIPMENTS[0].pickup, start_time=time.time()),
        )
    return st.session_state["machine"]


def report(action, success: Optional[str] = None) -> None:
    """Run a UI action and surface core errors instead of crashing the page."""
    try:
        action()
        if success:
            st.session_state["flash"] = ("success", success)
    except OutOfRangeError as e:
        st.session_state["flash"] = ("warning", str(e))
    except NetworkFailure as e:
        st.session_state["flash"] = ("error", f"{e} Tap again to retry.")
    except ShipmentNotFoundError as e:
        st.session_state["flash"] = ("error", f"Shipment no longer available: {e}")
    except (InvalidTransitionError, InvalidReadingError, SessionActiveError, NoActiveSessionError) as e:
        st.session_state["flash"] = ("error", str(e))


def show_flash() -> None:
    flash = st.session_state.pop("flash", None)
    if flash is None:
        return
    kind, message = flash
    getattr(st, kind)(message)


# =============================================================================
# SIDEBAR
# =============================================================================

def render_sidebar() -> None:
    """Render check-in/out, settings and driver stats."""
    store = get_store()

    st.sidebar.markdown("## 🚚 Driver")
    st.sidebar.markdown("---")

    if not store.is_online:
        st.sidebar.markdown("### Go Online")
        with st.sidebar.form("check_in"):
            odometer = st.number_input("Odometer (km)", min_value=0.0, value=12000.0, step=1.0)
            fuel = st.slider("Fuel level (%)", 0, 100, 80)
            if st.form_submit_button("Check In"):
                report(
                    lambda: store.check_in(CheckInData(odometer_reading=odometer, fuel_level=float(fuel))),
                    "You're online. Waiting for shipments.",
                )
                st.rerun()
    else:
        check_in = store.check_in_data
        st.sidebar.success(
            f"Online since {check_in.timestamp:%H:%M} "
            f"({check_in.odometer_reading:.0f} km, {check_in.fuel_level:.0f}% fuel)"
        )
        st.sidebar.markdown("### Go Offline")
        with st.sidebar.form("check_out"):
            odometer = st.number_input(
                "Odometer (km)", min_value=0.0,
                value=float(check_in.odometer_reading), step=1.0,
            )
            fuel = st.slider("Fuel level (%)", 0, 100, int(check_in.fuel_level))
            if st.form_submit_button("Check Out"):
                report(lambda: store.check_out(odometer, float(fuel)), "You're offline.")
                st.rerun()

    summary = store.last_trip_summary
    if summary is not None:
        st.sidebar.markdown("### Last Trip")
        st.sidebar.write(
            f"{summary.km_driven:.1f} km driven, {summary.fuel_used:.1f}% fuel used, "
            f"{summary.avg_fuel_efficiency:.2f} km per %"
        )

    st.sidebar.markdown("---")
    st.sidebar.markdown("### ⚙️ Parameters")
    config.GEOFENCE_RADIUS_M = float(st.sidebar.slider(
        "Arrival geofence (m)",
        min_value=100,
        max_value=2000,
        value=int(config.GEOFENCE_RADIUS_M),
        step=50,
        help="The arrive button unlocks within this distance of the drop"
    ))

    st.sidebar.markdown("---")
    st.sidebar.markdown("### 🌱 Today")
    stats = store.driver_stats
    col1, col2 = st.sidebar.columns(2)
    col1.metric("Deliveries", stats.total_deliveries)
    col2.metric("CO₂ saved", f"{stats.total_carbon_saved:.2f} kg")


# =============================================================================
# PHASE PANELS
# =============================================================================

def render_phase_banner(phase: DeliveryPhase) -> None:
    css = "phase-card cancelled" if phase == DeliveryPhase.CANCELLED else "phase-card"
    st.markdown(f"""
    <div class="{css}">
        <div class="phase-label">Current step</div>
        <div class="phase-value">{phase.value.title()}</div>
    </div>
    """, unsafe_allow_html=True)

    if phase != DeliveryPhase.CANCELLED:
        st.progress(phase.rank / (len(PHASE_STEPS) - 1))


def render_assignment() -> None:
    """Pick the next shipment from the demo pool."""
    backend = get_backend()
    machine = get_machine()

    st.markdown('<div class="section-header">📦 Available Shipments</div>', unsafe_allow_html=True)
    labels: Dict[str, Shipment] = {
        f"{s.tracking_code}: {s.pickup_address} → {s.drop_address}": s for s in DEMO_SHIPMENTS
    }
    choice = st.selectbox("Shipment", list(labels.keys()))
    if st.button("Accept shipment"):
        # Reset the demo record so a delivered shipment can be run again
        shipment = labels[choice]
        backend.add_shipment(shipment)
        report(lambda: machine.assign(shipment), f"Head to {shipment.pickup_address}")
        st.rerun()


def render_otp_form(phase: DeliveryPhase) -> None:
    machine = get_machine()
    store = get_store()
    session = store.current_session

    label = "Sender's pickup code" if phase == DeliveryPhase.PICKUP else "Receiver's delivery code"
    with st.form(f"otp_{phase.value}", clear_on_submit=True):
        entered = st.text_input(label, max_chars=config.OTP_LENGTH, type="password")
        submitted = st.form_submit_button("Verify", disabled=session.pending)

    if submitted:
        store.set_otp_attempt(entered)
        verify = machine.verify_pickup_otp if phase == DeliveryPhase.PICKUP else machine.verify_delivery_otp

        def run() -> None:
            result = verify(entered)
            st.session_state["flash"] = ("success" if result.valid else "error", result.message)

        report(run)
        st.rerun()

    misses = session.failed_attempts_in(phase)
    if misses:
        st.caption(f"{misses} incorrect attempt(s) for this code")


def render_transit() -> None:
    machine = get_machine()

    distance = machine.distance_to_drop
    col1, col2 = st.columns(2)
    col1.metric("Distance to drop", f"{distance:,.0f} m")
    col2.metric("Geofence", f"{machine.geofence_radius_m:,.0f} m")

    col1, col2, col3 = st.columns(3)
    with col1:
        if st.button("▶️ Simulate one tick"):
            report(machine.tick)
            st.rerun()
    with col2:
        if st.button("⏩ Drive to drop"):
            def drive() -> None:
                for _ in range(200):
                    if machine.can_arrive or machine.tick() is None:
                        break
            report(drive)
            st.rerun()
    with col3:
        if st.button("📍 I've arrived", disabled=not machine.can_arrive):
            report(machine.arrive, "Arrived. Ask the receiver for their code.")
            st.rerun()


def render_delivery() -> None:
    machine = get_machine()
    backend = get_backend()
    session = get_store().current_session

    uploaded = st.file_uploader("Proof of delivery (optional)", type=["jpg", "jpeg", "png"])
    if uploaded is not None and session.proof_image is None:
        extension = os.path.splitext(uploaded.name)[1].lstrip(".").lower() or "jpg"

        def attach() -> None:
            ref = backend.upload_proof(session.shipment.shipment_id, uploaded.getvalue(), extension)
            machine.attach_proof(ref)

        report(attach, "Proof attached")
    if session.proof_image:
        st.caption(f"Proof: {session.proof_image}")

    render_otp_form(DeliveryPhase.DELIVERY)


def render_finished(phase: DeliveryPhase) -> None:
    machine = get_machine()
    store = get_store()
    session = store.current_session

    if phase == DeliveryPhase.COMPLETED:
        if st.session_state.get("celebrated") != session.shipment.tracking_code:
            st.balloons()
            st.session_state["celebrated"] = session.shipment.tracking_code
        st.success(f"Delivered! You saved {session.carbon_saved or 0.0:.2f} kg of CO₂.")
        if store.completed_results and store.completed_results[-1].invoice_id:
            st.caption(f"Invoice {store.completed_results[-1].invoice_id}")
    else:
        st.info("Delivery cancelled. The shipment went back to the pool.")

    if st.button("Next delivery"):
        report(machine.dismiss)
        st.rerun()


# =============================================================================
# MAP AND TRACK
# =============================================================================

def build_map(shipment: Shipment, track: List[Coordinate], radius_m: float) -> pdk.Deck:
    """Pickup, drop with its geofence, the driver and the path so far."""
    points = [
        {"position": [shipment.pickup.lng, shipment.pickup.lat], "label": "Pickup", "color": [59, 130, 246]},
        {"position": [shipment.drop.lng, shipment.drop.lat], "label": "Drop", "color": [245, 87, 108]},
    ]
    driver = track[-1] if track else shipment.pickup
    layers = [
        pdk.Layer(
            "ScatterplotLayer",
            [{"position": [shipment.drop.lng, shipment.drop.lat], "label": "Geofence"}],
            get_position="position",
            get_fill_color=[16, 185, 129, 40],
            get_line_color=[16, 185, 129],
            get_radius=radius_m,
            stroked=True,
            line_width_min_pixels=1,
        ),
        pdk.Layer(
            "PathLayer",
            [{"path": [[c.lng, c.lat] for c in track], "label": "Track"}],
            get_path="path",
            get_color=[100, 116, 139],
            width_min_pixels=3,
        ),
        pdk.Layer(
            "ScatterplotLayer",
            points,
            get_position="position",
            get_fill_color="color",
            get_radius=80,
            pickable=True,
        ),
        pdk.Layer(
            "ScatterplotLayer",
            [{"position": [driver.lng, driver.lat], "label": "You"}],
            get_position="position",
            get_fill_color=[17, 24, 39],
            get_radius=60,
            pickable=True,
        ),
    ]
    view_state = pdk.ViewState(
        latitude=(shipment.pickup.lat + shipment.drop.lat) / 2,
        longitude=(shipment.pickup.lng + shipment.drop.lng) / 2,
        zoom=12,
    )
    return pdk.Deck(layers=layers, initial_view_state=view_state, tooltip={"text": "{label}"})


def track_frame(track: List[Coordinate], drop: Coordinate) -> pd.DataFrame:
    df = pd.DataFrame([{"lat": c.lat, "lng": c.lng} for c in track])
    if df.empty:
        return df
    df["to_drop_m"] = [round(distance_meters(c, drop)) for c in track]
    df.index.name = "fix"
    return df


# =============================================================================
# MAIN APPLICATION
# =============================================================================

def main():
    """Main application entry point."""

    st.markdown("""
    <div style="text-align: center; padding: 1rem 0 2rem 0;">
        <h1 style="font-size: 3rem; font-weight: 800; background: linear-gradient(135deg, #11998e 0%, #38ef7d 100%); -webkit-background-clip: text; -webkit-text-fill-color: transparent; margin-bottom: 0.5rem;">
            Routezy Driver
        </h1>
        <p style="font-size: 1.2rem; color: #666; max-width: 700px; margin: 0 auto;">
            Pickup, drive, deliver. Every step verified.
        </p>
    </div>
    """, unsafe_allow_html=True)

    render_sidebar()
    show_flash()

    store = get_store()
    if not store.is_online:
        st.info("👈 Check in from the sidebar to start receiving shipments.")
        return

    session = store.current_session
    if session is None:
        render_assignment()
        return

    shipment = session.shipment
    phase = session.phase

    col1, col2 = st.columns([1, 2])
    with col1:
        render_phase_banner(phase)
        st.markdown(f"**{shipment.tracking_code}**")
        st.write(f"📍 {shipment.pickup_address} → {shipment.drop_address}")
        if shipment.receiver_name:
            st.write(f"👤 {shipment.receiver_name} {shipment.receiver_phone}")
        if session.last_error:
            st.error(session.last_error)

    with col2:
        if phase == DeliveryPhase.PICKUP:
            render_otp_form(DeliveryPhase.PICKUP)
        elif phase == DeliveryPhase.TRANSIT:
            render_transit()
        elif phase == DeliveryPhase.DELIVERY:
            render_delivery()
        else:
            render_finished(phase)

        if not phase.is_terminal:
            with st.expander("Can't complete this delivery?"):
                reason = st.text_input("Reason")
                if st.button("Cancel delivery"):
                    report(lambda: get_machine().cancel(reason), "Delivery cancelled")
                    st.rerun()

    st.markdown('<div class="section-header">🗺️ Route</div>', unsafe_allow_html=True)
    st.pydeck_chart(build_map(shipment, session.track, config.GEOFENCE_RADIUS_M))

    with st.expander("Position fixes", expanded=False):
        st.dataframe(track_frame(session.track, shipment.drop), use_container_width=True)


if __name__ == "__main__":
    main()
