"""
Fallback Synthesizer

Deterministic substitutes for data the provider could not supply, at two
levels:

- field level: default_for_field() gives a reasonable value for one missing
  critical field from the vehicle category and what is already known
- endpoint level: payload_from_cache() / generated_payload() rebuild a
  provider-shaped payload for a failed sub-call

Valuation figures are price-sensitive and are never synthesized at either
level.
"""

import re
from typing import Any, Dict, Optional

from vehicle_completion.models.canonical import (
    CanonicalVehicleData,
    FUEL_DIESEL,
    FUEL_ELECTRIC,
    TRANSMISSION_AUTOMATIC,
    TRANSMISSION_MANUAL,
    VALUATION_FIELDS,
    VehicleCategory,
)

DEFAULT_BODY_TYPES = {
    VehicleCategory.CAR: "Hatchback",
    VehicleCategory.BIKE: "Standard",
    VehicleCategory.VAN: "Panel Van",
}

_VRM_AGE_IDENTIFIER = re.compile(r"^[A-Z]{2}(\d{2})[A-Z]{3}$")


def year_from_vrm(vrm: Optional[str]) -> Optional[int]:
    """
    Registration year from a current-format UK plate (AB12CDE).

    March plates carry the year (12 -> 2012), September plates carry year
    + 50 (62 -> 2012). Older formats return None.
    """
    if not vrm:
        return None
    match = _VRM_AGE_IDENTIFIER.match(vrm.replace(" ", "").upper())
    if not match:
        return None
    age = int(match.group(1))
    if 1 <= age <= 49:
        return 2000 + age
    if 50 <= age <= 99:
        return 1950 + age
    return None


def _body(known: CanonicalVehicleData) -> str:
    return (known.body_type or "").lower()


class FallbackSynthesizer:
    """Stateless source of fallback values and payloads."""

    def default_for_field(
        self,
        field: str,
        category: VehicleCategory,
        known: CanonicalVehicleData
    ) -> Any:
        """
        Default for a single missing field.

        Args:
            field: Canonical field name
            category: Vehicle category tag
            known: Record as populated so far

        Returns:
            Fallback value, or None when the field must not be guessed
        """
        if field in VALUATION_FIELDS:
            return None

        electric = known.fuel_type == FUEL_ELECTRIC

        if field == "annual_tax":
            return self.default_annual_tax(category, known)
        if field == "co2_emissions":
            return 0 if electric else 120
        if field == "combined_mpg":
            return None if electric else 35.0
        if field == "engine_size":
            if electric:
                return None
            return 0.125 if category == VehicleCategory.BIKE else 1.6
        if field == "variant":
            return known.fuel_type or "Standard"
        if field == "transmission":
            return TRANSMISSION_AUTOMATIC if electric else TRANSMISSION_MANUAL
        if field == "body_type":
            return self.default_body_type(category, known)
        if field == "doors":
            return self.default_doors(category, known)
        if field == "seats":
            return self.default_seats(category, known)
        if field == "insurance_group" and category == VehicleCategory.BIKE:
            return self.bike_insurance_group(known.engine_size)

        # make, model, year, fuel_type and anything else: never fabricated
        return None

    @staticmethod
    def default_annual_tax(category: VehicleCategory, known: CanonicalVehicleData) -> float:
        if category == VehicleCategory.VAN:
            return 290.0 if (known.year or 0) >= 2019 else 250.0
        if known.fuel_type == FUEL_ELECTRIC:
            return 195.0 if (known.year or 0) >= 2017 else 0.0
        if known.fuel_type == FUEL_DIESEL:
            return 180.0
        return 165.0

    @staticmethod
    def default_body_type(category: VehicleCategory, known: CanonicalVehicleData) -> str:
        if category == VehicleCategory.BIKE and known.engine_size is not None:
            if known.engine_size <= 0.125:
                return "Scooter"
            if known.engine_size >= 0.6:
                return "Touring"
        return DEFAULT_BODY_TYPES[category]

    def default_doors(self, category: VehicleCategory, known: CanonicalVehicleData) -> int:
        if category == VehicleCategory.BIKE:
            return 0
        body = _body(known) or self.default_body_type(category, known).lower()
        if category == VehicleCategory.VAN:
            return 3 if body == "panel van" else 4
        if "coupe" in body:
            return 2
        return 4

    def default_seats(self, category: VehicleCategory, known: CanonicalVehicleData) -> int:
        body = _body(known) or self.default_body_type(category, known).lower()
        if category == VehicleCategory.BIKE:
            return 2 if body == "scooter" else 1
        if category == VehicleCategory.VAN:
            return 7 if "crew" in body else 3
        if "mpv" in body or "7 seat" in body:
            return 7
        if "roadster" in body or "2 seat" in body:
            return 2
        return 5

    @staticmethod
    def bike_insurance_group(engine_size: Optional[float]) -> Optional[int]:
        if engine_size is None:
            return None
        if engine_size <= 0.125:
            return 1
        if engine_size <= 0.6:
            return 8
        return 17

    def category_enhancements(
        self,
        category: VehicleCategory,
        record: CanonicalVehicleData
    ) -> Dict[str, Any]:
        """
        Category rules applied to every completed record, missing or not.

        Bikes have no doors and get an insurance group estimate from engine
        size when the provider supplied none.
        """
        updates: Dict[str, Any] = {}
        if category == VehicleCategory.BIKE:
            if record.doors != 0:
                updates["doors"] = 0
            if record.insurance_group is None:
                group = self.bike_insurance_group(record.engine_size)
                if group is not None:
                    updates["insurance_group"] = group
        return updates

    # ------------------------------------------------------------------
    # Endpoint-level fallbacks
    # ------------------------------------------------------------------

    def payload_from_cache(self, endpoint: str, cached: CanonicalVehicleData) -> Optional[dict]:
        """
        Rebuild a provider-shaped payload for `endpoint` from a cache entry.

        The result round-trips through the normalizer's field rules.
        Valuation is never served from cache.
        """
        if endpoint == "vehicleSpecs":
            if cached.make is None and cached.model is None:
                return None
            payload = {
                "ModelData": {
                    "Make": cached.make,
                    "Model": cached.model,
                    "ModelVariant": cached.variant,
                    "FuelType": cached.fuel_type,
                },
                "VehicleIdentification": {"YearOfManufacture": cached.year},
                "SmmtDetails": {
                    "Transmission": cached.transmission,
                    "BodyStyle": cached.body_type,
                    "NumberOfDoors": cached.doors,
                    "NumberOfSeats": cached.seats,
                    "EngineCapacity": cached.engine_size,
                    "UrbanColdMpg": cached.urban_mpg,
                    "ExtraUrbanMpg": cached.extra_urban_mpg,
                    "CombinedMpg": cached.combined_mpg,
                    "Co2": cached.co2_emissions,
                    "InsuranceGroup": cached.insurance_group,
                    "EmissionClass": cached.emission_class,
                    "PowerBhp": cached.power,
                    "TorqueNm": cached.torque,
                },
                "VehicleExciseDutyDetails": {
                    "VedRate": {"Standard": {"TwelveMonths": cached.annual_tax}},
                },
                "Performance": {
                    "Statistics": {
                        "ZeroToSixtyMph": cached.acceleration,
                        "MaxSpeedMph": cached.top_speed,
                    },
                },
                "_fallback": "cache",
            }
            if cached.fuel_type == FUEL_ELECTRIC:
                payload["PowerSource"] = {"ElectricDetails": {
                    "RangeFigures": {"RangeTestCycles": [{"CombinedRangeMiles": cached.electric_range}]},
                    "BatteryDetailsList": [{"CapacityKwh": cached.battery_capacity}],
                    "MotorDetailsList": [{
                        "PowerKw": cached.electric_motor_power,
                        "MaxTorqueNm": cached.electric_motor_torque,
                    }],
                }}
            return payload

        if endpoint == "vehicleHistory":
            if cached.write_off_category is None and cached.previous_keepers is None and cached.color is None:
                return None
            details = cached.write_off_details
            return {
                "VehicleRegistration": {"Colour": cached.color},
                "VehicleHistory": {
                    "NumberOfPreviousKeepers": cached.previous_keepers,
                    "Exported": cached.exported,
                    "Scrapped": cached.scrapped,
                    "writeOffRecord": bool(cached.is_written_off),
                    "writeoff": {
                        "category": cached.write_off_category,
                        "status": details.status if details else None,
                        "lossdate": details.loss_date.isoformat() if details and details.loss_date else None,
                        "insurername": details.insurer_name if details else None,
                        "claimnumber": details.claim_number if details else None,
                        "damagelocations": details.damage_locations if details else [],
                    } if cached.is_written_off else None,
                },
                "_fallback": "cache",
            }

        if endpoint == "motHistory":
            if cached.mot_status is None and not cached.mot_history:
                return None
            return {
                "mot": {
                    "motStatus": cached.mot_status,
                    "motDueDate": cached.mot_due_date.isoformat() if cached.mot_due_date else None,
                },
                "motHistory": [
                    {
                        "completedDate": test.test_date.isoformat() if test.test_date else None,
                        "expiryDate": test.expiry_date.isoformat() if test.expiry_date else None,
                        "testResult": test.result,
                        "odometerValue": test.odometer_value,
                        "odometerUnit": test.odometer_unit,
                        "motTestNumber": test.test_number,
                        "defects": test.defects,
                    }
                    for test in cached.mot_history
                ],
                "_fallback": "cache",
            }

        return None

    def generated_payload(self, endpoint: str, vrm: str) -> Optional[dict]:
        """
        Last-resort payload for a failed sub-call with no cache entry.

        Only the registration year can be derived honestly (from the plate's
        age identifier); every other endpoint yields None.
        """
        if endpoint != "vehicleSpecs":
            return None
        year = year_from_vrm(vrm)
        if year is None:
            return None
        return {
            "VehicleIdentification": {"YearOfManufacture": year},
            "_fallback": "generated",
        }
