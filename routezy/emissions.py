# routezy/routezy/emissions.py
"""
Emissions estimator used at delivery completion.

The delivery core is one caller of this module: when a session reaches
COMPLETED it asks a CarbonCalculator how many kg of CO2 the optimized route
saved. Two calculators are provided:

1. **FlatRateCalculator**: a fixed credit per delivered km (0.15 kg/km).
   This is what the driver app has always credited.

2. **OptimizationCalculator**: distance x fuel burn x emission factor x the
   share saved by route optimization.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from . import config


def _round2(value: float) -> float:
    return round(value, 2)


def emission_factor(fuel_type: str) -> float:
    """kg CO2 per litre for a fuel type. Unknown fuels count as diesel."""
    return config.EMISSION_FACTORS.get(fuel_type.upper(), config.EMISSION_FACTORS["DIESEL"])


def co2_from_fuel(fuel_liters: float, fuel_type: str) -> float:
    """
    Calculate CO2 emissions from fuel consumption.

    Args:
        fuel_liters: Litres of fuel burned
        fuel_type: One of the EMISSION_FACTORS keys (case-insensitive)

    Returns:
        kg of CO2, rounded to 2 decimals
    """
    return _round2(fuel_liters * emission_factor(fuel_type))


def estimate_fuel_from_distance(
    distance_km: float,
    vehicle_type: str,
    default_efficiency: float = None
) -> float:
    """
    Estimate fuel burned over a distance when no fuel log exists.

    Args:
        distance_km: Distance driven
        vehicle_type: Vehicle class key, e.g. 'TRUCK'
        default_efficiency: L/100km for unknown classes

    Returns:
        Estimated litres, rounded to 2 decimals
    """
    if distance_km < 0:
        raise ValueError(f"distance_km must be >= 0, got {distance_km}")
    if default_efficiency is None:
        default_efficiency = config.DEFAULT_EFFICIENCY_L_PER_100KM
    efficiency = config.VEHICLE_EFFICIENCY_L_PER_100KM.get(vehicle_type.upper(), default_efficiency)
    return _round2(distance_km * efficiency / 100)


def co2_savings(
    distance_km: float,
    fuel_type: str,
    optimization_factor: float = None,
    vehicle_type: str = "TRUCK"
) -> float:
    """CO2 saved by an optimized route versus the standard one."""
    if optimization_factor is None:
        optimization_factor = config.ROUTE_OPTIMIZATION_FACTOR
    standard = co2_from_fuel(estimate_fuel_from_distance(distance_km, vehicle_type), fuel_type)
    return _round2(standard * optimization_factor)


def ev_savings(distance_km: float) -> float:
    """What a diesel truck would have emitted over the same distance."""
    return co2_from_fuel(estimate_fuel_from_distance(distance_km, "TRUCK"), "DIESEL")


class CarbonCalculator(ABC):
    """Strategy the state machine calls once per completed delivery."""

    @abstractmethod
    def carbon_saved(self, distance_km: float, fuel_type: str = "DIESEL",
                     vehicle_type: str = "TRUCK") -> float:
        """Return kg of CO2 saved for a delivery of ``distance_km``."""


class FlatRateCalculator(CarbonCalculator):
    """Credits a fixed amount of CO2 per delivered km."""

    def __init__(self, kg_per_km: float = None) -> None:
        self.kg_per_km = config.CARBON_SAVED_KG_PER_KM if kg_per_km is None else kg_per_km
        if self.kg_per_km < 0:
            raise ValueError("kg_per_km must be >= 0")

    def carbon_saved(self, distance_km: float, fuel_type: str = "DIESEL",
                     vehicle_type: str = "TRUCK") -> float:
        if distance_km < 0:
            raise ValueError(f"distance_km must be >= 0, got {distance_km}")
        return _round2(distance_km * self.kg_per_km)


class OptimizationCalculator(CarbonCalculator):
    """Derives the credit from fuel burn, emission factor and optimization share."""

    def __init__(self, optimization_factor: float = None) -> None:
        self.optimization_factor = (
            config.ROUTE_OPTIMIZATION_FACTOR if optimization_factor is None else optimization_factor
        )

    def carbon_saved(self, distance_km: float, fuel_type: str = "DIESEL",
                     vehicle_type: str = "TRUCK") -> float:
        return co2_savings(distance_km, fuel_type, self.optimization_factor, vehicle_type)
