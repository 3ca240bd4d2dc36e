"""
Canonical Vehicle Data Models

Pydantic models for the one vehicle-data schema every provider payload is
normalized into. The cache entry (VehicleHistory) stores this shape as JSON
and the live Vehicle row mirrors it column for column.
"""

import enum
from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class VehicleCategory(str, enum.Enum):
    """Vehicle category tag carried alongside every record."""

    CAR = "car"
    BIKE = "bike"
    VAN = "van"


# Fuel type vocabulary produced by the normalizer
FUEL_PETROL = "Petrol"
FUEL_DIESEL = "Diesel"
FUEL_ELECTRIC = "Electric"
FUEL_HYBRID = "Hybrid"
FUEL_PETROL_HYBRID = "Petrol Hybrid"
FUEL_DIESEL_HYBRID = "Diesel Hybrid"
FUEL_PLUGIN_HYBRID = "Plug-in Hybrid"
FUEL_PETROL_PLUGIN_HYBRID = "Petrol Plug-in Hybrid"
FUEL_DIESEL_PLUGIN_HYBRID = "Diesel Plug-in Hybrid"

# Transmission vocabulary
TRANSMISSION_AUTOMATIC = "automatic"
TRANSMISSION_MANUAL = "manual"
TRANSMISSION_SEMI_AUTOMATIC = "semi-automatic"

# Only populated for pure electric vehicles
ELECTRIC_FIELDS = (
    "electric_range",
    "battery_capacity",
    "charging_time",
    "home_charging_speed",
    "rapid_charging_speed",
    "electric_motor_power",
    "electric_motor_torque",
    "charging_port_type",
)

# Price-sensitive, never synthesized
VALUATION_FIELDS = (
    "estimated_value",
    "private_price",
    "dealer_price",
    "part_exchange_price",
)


class MotTest(BaseModel):
    """A single past MOT inspection event."""

    model_config = ConfigDict(from_attributes=True)

    test_date: Optional[date] = None
    expiry_date: Optional[date] = None
    result: Optional[str] = None
    odometer_value: Optional[int] = None
    odometer_unit: str = "mi"
    test_number: Optional[str] = None
    defects: List[Dict[str, Any]] = Field(default_factory=list)


class WriteOffDetails(BaseModel):
    """Insurance write-off summary."""

    model_config = ConfigDict(from_attributes=True)

    category: str = Field(default="none", description="A/B/C/D/S/N, 'unknown' or 'none'")
    loss_date: Optional[date] = None
    status: Optional[str] = None
    insurer_name: Optional[str] = None
    claim_number: Optional[str] = None
    damage_locations: List[str] = Field(default_factory=list)


class CanonicalVehicleData(BaseModel):
    """
    Canonical vehicle-data record.

    All fields are optional: a record is built up from whichever provider
    sub-calls succeeded, cached data, and fallback synthesis.
    """

    model_config = ConfigDict(from_attributes=True)

    # Identity
    make: Optional[str] = None
    model: Optional[str] = None
    variant: Optional[str] = None
    year: Optional[int] = None
    color: Optional[str] = None
    fuel_type: Optional[str] = None
    transmission: Optional[str] = None
    body_type: Optional[str] = None
    doors: Optional[int] = None
    seats: Optional[int] = None
    engine_size: Optional[float] = Field(default=None, description="Litres")

    # Running costs
    urban_mpg: Optional[float] = None
    extra_urban_mpg: Optional[float] = None
    combined_mpg: Optional[float] = None
    co2_emissions: Optional[int] = None
    insurance_group: Optional[int] = None
    annual_tax: Optional[float] = None
    emission_class: Optional[str] = None

    # Performance
    power: Optional[int] = Field(default=None, description="bhp")
    torque: Optional[float] = Field(default=None, description="Nm")
    acceleration: Optional[float] = Field(default=None, description="0-60 mph in seconds")
    top_speed: Optional[int] = Field(default=None, description="mph")

    # Electric drivetrain
    electric_range: Optional[int] = None
    battery_capacity: Optional[float] = None
    charging_time: Optional[float] = None
    home_charging_speed: Optional[float] = None
    rapid_charging_speed: Optional[float] = None
    electric_motor_power: Optional[float] = None
    electric_motor_torque: Optional[float] = None
    charging_port_type: Optional[str] = None

    # Inspection
    mot_status: Optional[str] = None
    mot_due_date: Optional[date] = None
    mot_history: List[MotTest] = Field(default_factory=list)

    # Ownership / write-off
    previous_keepers: Optional[int] = None
    exported: Optional[bool] = None
    scrapped: Optional[bool] = None
    is_written_off: Optional[bool] = None
    write_off_category: Optional[str] = None
    write_off_details: Optional[WriteOffDetails] = None

    # Valuation
    estimated_value: Optional[int] = None
    private_price: Optional[int] = None
    dealer_price: Optional[int] = None
    part_exchange_price: Optional[int] = None

    @property
    def is_pure_electric(self) -> bool:
        return self.fuel_type == FUEL_ELECTRIC


CANONICAL_FIELDS = tuple(CanonicalVehicleData.model_fields.keys())


def is_missing(value: Any) -> bool:
    """None, blank strings and empty lists count as missing; 0 and False do not."""
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    if isinstance(value, (list, dict)) and not value:
        return True
    return False


def merge_records(
    base: CanonicalVehicleData,
    overlay: CanonicalVehicleData
) -> CanonicalVehicleData:
    """
    Overlay non-missing values onto a base record.

    Used to combine what the live vehicle already holds with freshly
    normalized provider data: fresh values win, gaps keep existing values.
    """
    merged = base.model_dump()
    for field_name, value in overlay.model_dump().items():
        if not is_missing(value):
            merged[field_name] = value
    return CanonicalVehicleData.model_validate(merged)
