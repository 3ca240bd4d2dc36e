"""
Field-level projection between the live Vehicle row and CanonicalVehicleData.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from vehicle_completion.models.canonical import (
    CANONICAL_FIELDS,
    CanonicalVehicleData,
    ELECTRIC_FIELDS,
    is_missing,
)
from vehicle_completion.models.vehicle import Vehicle
from vehicle_completion.models.vehicle_history import VehicleHistory

_JSON_FIELDS = ("mot_history", "write_off_details")


def snapshot_from_vehicle(vehicle: Vehicle) -> CanonicalVehicleData:
    """Canonical view of what the vehicle row currently holds."""
    values: Dict[str, Any] = {name: getattr(vehicle, name, None) for name in CANONICAL_FIELDS}
    values["mot_history"] = values.get("mot_history") or []
    return CanonicalVehicleData.model_validate(values)


def build_running_costs(record: CanonicalVehicleData) -> dict:
    return {
        "fuel_economy": {
            "urban": record.urban_mpg,
            "extra_urban": record.extra_urban_mpg,
            "combined": record.combined_mpg,
        },
        "co2_emissions": record.co2_emissions,
        "insurance_group": record.insurance_group,
        "annual_tax": record.annual_tax,
    }


def apply_record(
    vehicle: Vehicle,
    record: CanonicalVehicleData,
    history_entry: Optional[VehicleHistory] = None,
    check_status: str = "verified"
) -> Vehicle:
    """
    Write a canonical record onto the vehicle row.

    Missing values never overwrite existing data, except electric drivetrain
    fields, which are always written so a non-electric record clears them.
    Does not flush or commit.
    """
    dumped = record.model_dump(mode="json", include=set(_JSON_FIELDS))

    for name in CANONICAL_FIELDS:
        value = getattr(record, name)
        if name in ELECTRIC_FIELDS:
            setattr(vehicle, name, value)
            continue
        if is_missing(value):
            continue
        if name in _JSON_FIELDS:
            value = dumped[name]
        setattr(vehicle, name, value)

    vehicle.running_costs = build_running_costs(record)

    if history_entry is not None:
        vehicle.history_check_id = history_entry.id
        vehicle.history_check_date = history_entry.checked_at
    vehicle.history_check_status = check_status
    vehicle.updated_at = datetime.now(timezone.utc)
    return vehicle
