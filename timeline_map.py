# routezy/timeline_map.py
"""Streamlit map: tick-by-tick replay of one simulated delivery.

Run:
    streamlit run timeline_map.py

Drives the demo shipment through pickup, transit, arrival and delivery with the
simulated feed, records every tick, then lets you scrub through them on a map.
"""

from __future__ import annotations

from typing import Dict, List

import pandas as pd
import pydeck as pdk
import streamlit as st

from routezy import config
from routezy.backend import InMemoryBackend
from routezy.lifecycle import DeliveryStateMachine
from routezy.models import Coordinate, DeliveryPhase, Shipment
from routezy.position import SimulatedSource
from routezy.session import DriverSessionStore

# -----------------------------------------------------------------------------
# Hard-coded scenario: Kurla to Andheri, Mumbai (about 4.3 km straight line)
# -----------------------------------------------------------------------------
SHIPMENT = Shipment(
    shipment_id="shp-001",
    tracking_code="RTZ-260110-MUM001",
    pickup=Coordinate(19.0760, 72.8777),
    drop=Coordinate(19.1136, 72.8697),
    pickup_otp="1234",
    delivery_otp="5678",
    pickup_address="Kurla West, Mumbai",
    drop_address="Andheri East, Mumbai",
    distance_km=12.5,
)

PHASE_COLORS: Dict[str, List[int]] = {
    "PICKUP": [59, 130, 246],
    "TRANSIT": [251, 191, 36],
    "DELIVERY": [16, 185, 129],
    "COMPLETED": [16, 185, 129],
}


# -----------------------------------------------------------------------------
# Trace engine
# -----------------------------------------------------------------------------

def snapshot(machine: DeliveryStateMachine, tick: int, event: str) -> Dict:
    session = machine.session
    position = session.driver_position
    return {
        "tick": tick,
        "phase": session.phase.value,
        "lat": position.lat,
        "lng": position.lng,
        "to_drop_m": round(machine.distance_to_drop),
        "can_arrive": machine.can_arrive,
        "event": event,
        "carbon_saved": session.carbon_saved,
    }


def run_with_trace(step_fraction: float, geofence_m: float) -> List[Dict]:
    backend = InMemoryBackend([SHIPMENT])
    source = SimulatedSource(SHIPMENT.pickup, step_fraction=step_fraction, start_time=0.0)
    machine = DeliveryStateMachine(
        DriverSessionStore(), backend,
        geofence_radius_m=geofence_m, position_source=source,
    )

    machine.assign(SHIPMENT)
    timeline: List[Dict] = [snapshot(machine, 0, "Shipment assigned")]

    machine.verify_pickup_otp(SHIPMENT.pickup_otp)
    timeline.append(snapshot(machine, 0, "Pickup OTP verified"))

    tick = 0
    while not machine.can_arrive and tick < 100:
        tick += 1
        if machine.tick() is None:
            break
        timeline.append(snapshot(machine, tick, ""))

    machine.arrive()
    timeline.append(snapshot(machine, tick, "Arrived inside geofence"))

    machine.verify_delivery_otp(SHIPMENT.delivery_otp)
    timeline.append(snapshot(machine, tick, "Delivery OTP verified"))
    return timeline


@st.cache_data(show_spinner=False)
def get_timeline(step_fraction: float, geofence_m: float) -> List[Dict]:
    return run_with_trace(step_fraction, geofence_m)


# -----------------------------------------------------------------------------
# Map helpers
# -----------------------------------------------------------------------------

def stop_layer(geofence_m: float) -> List[pdk.Layer]:
    data = [
        {"position": [SHIPMENT.pickup.lng, SHIPMENT.pickup.lat], "label": "Pickup", "color": [59, 130, 246]},
        {"position": [SHIPMENT.drop.lng, SHIPMENT.drop.lat], "label": "Drop", "color": [245, 87, 108]},
    ]
    return [
        pdk.Layer(
            "ScatterplotLayer",
            [{"position": [SHIPMENT.drop.lng, SHIPMENT.drop.lat], "label": "Geofence"}],
            get_position="position",
            get_fill_color=[16, 185, 129, 40],
            get_radius=geofence_m,
        ),
        pdk.Layer(
            "ScatterplotLayer",
            data,
            get_position="position",
            get_fill_color="color",
            get_radius=70,
            opacity=0.8,
            pickable=True,
        ),
    ]


def driver_layer(steps: List[Dict]) -> List[pdk.Layer]:
    current = steps[-1]
    return [
        pdk.Layer(
            "PathLayer",
            [{"path": [[s["lng"], s["lat"]] for s in steps], "label": "Track"}],
            get_path="path",
            get_color=[100, 116, 139],
            width_min_pixels=3,
        ),
        pdk.Layer(
            "ScatterplotLayer",
            [{
                "position": [current["lng"], current["lat"]],
                "label": f"Driver ({current['phase']})",
                "color": PHASE_COLORS.get(current["phase"], [148, 163, 184]),
            }],
            get_position="position",
            get_fill_color="color",
            get_radius=90,
            pickable=True,
            stroked=True,
            line_width_min_pixels=1,
        ),
    ]


# -----------------------------------------------------------------------------
# UI
# -----------------------------------------------------------------------------

st.set_page_config(page_title="Delivery Timeline", page_icon="🗺️", layout="wide")
st.title("🗺️ Delivery Timeline on a Map")
st.write("**Demo:** one shipment across Mumbai. Watch the arrive button unlock at the geofence.")

col1, col2 = st.columns(2)
with col1:
    step_fraction = st.slider(
        "Step per tick", 0.05, 0.5, config.SIMULATION_STEP_FRACTION, 0.05,
        help="Share of the remaining distance covered on each tick",
    )
with col2:
    geofence_m = float(st.slider("Geofence (m)", 100, 2000, int(config.GEOFENCE_RADIUS_M), 50))

timeline = get_timeline(step_fraction, geofence_m)
if not timeline:
    st.error("No timeline produced.")
    st.stop()

idx = st.slider("Step", 0, len(timeline) - 1, 0, help="Scrub through the recorded delivery")
current = timeline[idx]

col1, col2 = st.columns([1, 1])
with col1:
    st.markdown(f"**Tick:** {current['tick']}  ·  **Phase:** {current['phase']}")
    st.markdown(f"**Event:** {current['event'] or '(position fix)'}")
with col2:
    arrive = "unlocked" if current["can_arrive"] else "locked"
    carbon = f"{current['carbon_saved']:.2f} kg" if current["carbon_saved"] is not None else "—"
    st.markdown(
        f"<div style='padding:0.75rem; background:#0f172a; color:#e2e8f0; border-radius:12px;'>"
        f"<b>Distance to drop:</b> {current['to_drop_m']:,} m<br>"
        f"<b>Arrive button:</b> {arrive}<br>"
        f"<b>CO₂ saved:</b> {carbon}"
        f"</div>",
        unsafe_allow_html=True,
    )

view_state = pdk.ViewState(
    latitude=(SHIPMENT.pickup.lat + SHIPMENT.drop.lat) / 2,
    longitude=(SHIPMENT.pickup.lng + SHIPMENT.drop.lng) / 2,
    zoom=13,
)
layers = stop_layer(geofence_m) + driver_layer(timeline[: idx + 1])
st.pydeck_chart(pdk.Deck(layers=layers, initial_view_state=view_state, tooltip={"text": "{label}"}))

st.markdown("---")
st.markdown("#### Timeline Table")
df = pd.DataFrame(timeline)[["tick", "phase", "to_drop_m", "can_arrive", "event"]]
st.dataframe(df, use_container_width=True, hide_index=True)

if any(step["phase"] == DeliveryPhase.COMPLETED.value for step in timeline):
    st.caption(f"Delivered in {timeline[-1]['tick']} ticks of {config.SIMULATION_TICK_SECONDS:.0f}s.")
