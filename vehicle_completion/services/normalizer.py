"""
Provider Payload Normalizer

Turns the heterogeneous CheckCarDetails payloads into one CanonicalVehicleData
record and canonicalizes enumerations (fuel type, transmission, write-off
category) to a fixed vocabulary.

Field sourcing is driven by FIELD_RULES: each canonical field lists the
(endpoint, path) locations to try in priority order plus an optional
transform. A provider moving a field is a table change, not a code change.

Everything in this module is pure. normalize_record() is idempotent:
normalizing an already-canonical record returns an equal record.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import structlog
from dateutil import parser as date_parser

from vehicle_completion.models.canonical import (
    CanonicalVehicleData,
    ELECTRIC_FIELDS,
    FUEL_DIESEL,
    FUEL_DIESEL_HYBRID,
    FUEL_DIESEL_PLUGIN_HYBRID,
    FUEL_ELECTRIC,
    FUEL_HYBRID,
    FUEL_PETROL,
    FUEL_PETROL_HYBRID,
    FUEL_PETROL_PLUGIN_HYBRID,
    FUEL_PLUGIN_HYBRID,
    MotTest,
    TRANSMISSION_AUTOMATIC,
    TRANSMISSION_MANUAL,
    TRANSMISSION_SEMI_AUTOMATIC,
    WriteOffDetails,
    is_missing,
)

logger = structlog.get_logger(__name__)

PathStep = Union[str, int]
Source = Tuple[str, Tuple[PathStep, ...]]

SPECS = "vehicleSpecs"
HISTORY = "vehicleHistory"
MOT = "motHistory"
VALUATION = "valuation"

WRITE_OFF_CATEGORIES = ("A", "B", "C", "D", "S", "N")


# ---------------------------------------------------------------------------
# Scalar coercion
# ---------------------------------------------------------------------------

def _to_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(float(str(value).replace(",", "").strip()))
    except (TypeError, ValueError):
        return None


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(str(value).replace(",", "").strip())
    except (TypeError, ValueError):
        return None


def _to_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _to_bool(value: Any) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "yes", "y", "1"):
        return True
    if text in ("false", "no", "n", "0"):
        return False
    return None


def _to_date(value: Any) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date_parser.parse(str(value)).date()
    except (ValueError, OverflowError):
        return None


# ---------------------------------------------------------------------------
# Enumeration canonicalization
# ---------------------------------------------------------------------------

def normalize_fuel_type(fuel_type: Optional[str]) -> Optional[str]:
    """
    Collapse provider fuel strings into the canonical vocabulary.

    Plug-in hybrid is checked before hybrid and hybrid before electric, so
    "HYBRID ELECTRIC" or "PETROL/ELECTRIC" never become pure Electric.
    Unrecognized strings are returned capitalized.
    """
    if is_missing(fuel_type):
        return None

    text = fuel_type.strip().lower()
    is_petrol = "petrol" in text or "gasoline" in text
    is_diesel = "diesel" in text
    is_electric = "electric" in text or re.search(r"\b(b?ev)\b", text) is not None

    if "plug-in" in text or "plugin" in text or "phev" in text:
        if is_petrol:
            return FUEL_PETROL_PLUGIN_HYBRID
        if is_diesel:
            return FUEL_DIESEL_PLUGIN_HYBRID
        return FUEL_PLUGIN_HYBRID

    if "hybrid" in text or ((is_petrol or is_diesel) and is_electric):
        if is_petrol:
            return FUEL_PETROL_HYBRID
        if is_diesel:
            return FUEL_DIESEL_HYBRID
        return FUEL_HYBRID

    if is_petrol:
        return FUEL_PETROL
    if is_diesel:
        return FUEL_DIESEL
    if is_electric:
        return FUEL_ELECTRIC

    stripped = fuel_type.strip()
    return stripped[:1].upper() + stripped[1:].lower()


def normalize_transmission(transmission: Optional[str]) -> Optional[str]:
    """Map gearbox descriptions to automatic / manual / semi-automatic."""
    if is_missing(transmission):
        return None

    text = transmission.strip().lower()
    # Semi-automatic must be tested before the "auto" substring
    if "semi" in text or "dual clutch" in text or "dual-clutch" in text or re.search(r"\b(dct|dsg)\b", text):
        return TRANSMISSION_SEMI_AUTOMATIC
    if "auto" in text or "cvt" in text or "tiptronic" in text:
        return TRANSMISSION_AUTOMATIC
    if "manual" in text:
        return TRANSMISSION_MANUAL
    return None


_MODEL_TRIM_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"\s+TYPE\s+[A-Z]\b",
        r"\s+I-VTEC\b",
        r"\s+R-DESIGN\b",
        r"\s+D\s+AUTO\b",
        r"\s+XDRIVE\w*",
        r"\s+SDRIVE\w*",
        r"\s+M\s+SPORT\b",
        r"\s+EDITION\b",
        r"\s+MHEV\b",
        r"\s+(SEMI-AUTO|AUTOMATIC|AUTO|MANUAL)\b",
        r"\s+TOURING\b",
        r"\s+SALOON\b",
        r"\s+HATCHBACK\b",
        r"\s+ESTATE\b",
    )
]


def clean_model_name(model: Optional[str]) -> Optional[str]:
    """
    Strip trim and variant tokens so only the base model name remains.

    "CIVIC TYPE S I-VTEC" -> "CIVIC", "530d xDrive M Sport Edition MHEV Auto"
    -> "530d". Patterns are reapplied until nothing changes.
    """
    if is_missing(model):
        return None

    original = " ".join(model.split())
    cleaned = original
    while True:
        previous = cleaned
        for pattern in _MODEL_TRIM_PATTERNS:
            cleaned = pattern.sub("", cleaned)
        cleaned = cleaned.strip()
        if cleaned == previous:
            break

    if not cleaned:
        return original
    if cleaned != original:
        logger.debug("model_name_cleaned", raw=original, cleaned=cleaned)
    return cleaned


_WRITE_OFF_STATUS = re.compile(r"\bCAT(?:EGORY)?\s*([ABCDSN])\b", re.IGNORECASE)


def extract_write_off_category(
    category: Optional[str] = None,
    status: Optional[str] = None
) -> str:
    """
    Read a write-off category code (A/B/C/D/S/N).

    Tries the explicit category first, then free-text insurer status such
    as "CAT S" or "Category N Damage". Returns "unknown" when a write-off
    exists but no code can be read, and passes "none"/"unknown" through.
    """
    for text in (category, status):
        if is_missing(text):
            continue
        value = text.strip()
        if value.upper() in WRITE_OFF_CATEGORIES:
            return value.upper()
        if value.lower() in ("none", "unknown"):
            return value.lower()
        match = _WRITE_OFF_STATUS.search(value)
        if match:
            return match.group(1).upper()
    return "unknown"


def normalize_engine_size(value: Any) -> Optional[float]:
    """
    Engine size in litres. Values of 50 and above are taken as cc.

    One decimal from a litre up (1598cc -> 1.6); sub-litre engines keep cc
    precision (125cc -> 0.125) so the bike rules can tell 125cc from 150cc.
    """
    size = _to_float(value)
    if size is None or size <= 0:
        return None
    if size >= 50:
        size = size / 1000
    return round(size, 1) if size >= 1 else round(size, 3)


# ---------------------------------------------------------------------------
# Electric drivetrain transforms (input: ChargePortDetailsList)
# ---------------------------------------------------------------------------

def _port_power(port_type: str) -> Callable[[Any], Optional[float]]:
    def transform(ports: Any) -> Optional[float]:
        for port in ports or []:
            if isinstance(port, Mapping) and port.get("PortType") == port_type:
                return _to_float(port.get("MaxChargePowerKw"))
        return None
    return transform


def _port_types(ports: Any) -> Optional[str]:
    names = [
        str(port["PortType"])
        for port in ports or []
        if isinstance(port, Mapping) and port.get("PortType")
    ]
    return " / ".join(names) or None


def _fast_charge_hours(ports: Any) -> Optional[float]:
    """10-80% time on the first >=40kW charger, in hours."""
    if not ports or not isinstance(ports[0], Mapping):
        return None
    times = _dig(ports[0], ("ChargeTimes", "AverageChargeTimes10To80Percent")) or []
    for entry in times:
        if not isinstance(entry, Mapping):
            continue
        kw = _to_float(entry.get("ChargePortKw"))
        minutes = _to_float(entry.get("TimeInMinutes"))
        if kw is not None and kw >= 40 and minutes is not None:
            return round(minutes / 60, 2)
    return None


# ---------------------------------------------------------------------------
# Field mapping table
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FieldRule:
    """
    Where a canonical field comes from.

    Attributes:
        field: Canonical field name
        sources: (endpoint, path) pairs tried in order; first non-missing wins
        transform: Applied to the raw value found
        default_if_present: Used when the endpoint answered but carried no value
    """
    field: str
    sources: Tuple[Source, ...]
    transform: Optional[Callable[[Any], Any]] = None
    default_if_present: Any = None


_EV = ("PowerSource", "ElectricDetails")

FIELD_RULES: Tuple[FieldRule, ...] = (
    # Identity
    FieldRule("make", ((SPECS, ("ModelData", "Make")),), _to_str),
    FieldRule("model", ((SPECS, ("ModelData", "Model")),), clean_model_name),
    FieldRule("variant", (
        (SPECS, ("SmmtDetails", "Variant")),
        (SPECS, ("ModelData", "ModelVariant")),
    ), _to_str),
    FieldRule("year", (
        (SPECS, ("VehicleIdentification", "YearOfManufacture")),
        (HISTORY, ("VehicleRegistration", "YearOfManufacture")),
    ), _to_int),
    FieldRule("fuel_type", (
        (SPECS, ("ModelData", "FuelType")),
        (SPECS, ("VehicleIdentification", "DvlaFuelType")),
        (HISTORY, ("VehicleRegistration", "FuelType")),
    ), normalize_fuel_type),
    FieldRule("transmission", (
        (SPECS, ("SmmtDetails", "Transmission")),
        (SPECS, ("Transmission", "TransmissionType")),
        (HISTORY, ("VehicleRegistration", "Transmission")),
    ), normalize_transmission),
    FieldRule("body_type", (
        (SPECS, ("SmmtDetails", "BodyStyle")),
        (SPECS, ("BodyDetails", "BodyStyle")),
    ), _to_str),
    FieldRule("doors", (
        (SPECS, ("SmmtDetails", "NumberOfDoors")),
        (SPECS, ("BodyDetails", "NumberOfDoors")),
    ), _to_int),
    FieldRule("seats", (
        (SPECS, ("SmmtDetails", "NumberOfSeats")),
        (SPECS, ("BodyDetails", "NumberOfSeats")),
        (SPECS, ("DvlaTechnicalDetails", "SeatCountIncludingDriver")),
    ), _to_int),
    FieldRule("engine_size", (
        (SPECS, ("SmmtDetails", "EngineCapacity")),
        (SPECS, ("DvlaTechnicalDetails", "EngineCapacityCc")),
        (SPECS, ("PowerSource", "IceDetails", "EngineCapacityCc")),
        (HISTORY, ("VehicleRegistration", "EngineCapacity")),
    ), normalize_engine_size),
    FieldRule("color", (
        (HISTORY, ("VehicleRegistration", "Colour")),
        (MOT, ("mot", "primaryColour")),
    ), _to_str),

    # Running costs
    FieldRule("urban_mpg", (
        (SPECS, ("SmmtDetails", "UrbanColdMpg")),
        (SPECS, ("SmmtDetails", "FuelConsumptionUrbanMpg")),
        (SPECS, ("Performance", "FuelEconomy", "UrbanColdMpg")),
        (SPECS, ("FuelConsumption", "Urban", "Mpg")),
    ), _to_float),
    FieldRule("extra_urban_mpg", (
        (SPECS, ("SmmtDetails", "ExtraUrbanMpg")),
        (SPECS, ("SmmtDetails", "FuelConsumptionExtraUrbanMpg")),
        (SPECS, ("Performance", "FuelEconomy", "ExtraUrbanMpg")),
        (SPECS, ("FuelConsumption", "ExtraUrban", "Mpg")),
    ), _to_float),
    FieldRule("combined_mpg", (
        (SPECS, ("SmmtDetails", "CombinedMpg")),
        (SPECS, ("SmmtDetails", "FuelConsumptionCombinedMpg")),
        (SPECS, ("Performance", "FuelEconomy", "CombinedMpg")),
        (SPECS, ("FuelConsumption", "Combined", "Mpg")),
    ), _to_float),
    FieldRule("co2_emissions", (
        (SPECS, ("SmmtDetails", "Co2")),
        (SPECS, ("Emissions", "ManufacturerCo2")),
        (SPECS, ("VehicleExciseDutyDetails", "DvlaCo2")),
    ), _to_int),
    FieldRule("insurance_group", (
        (SPECS, ("SmmtDetails", "InsuranceGroup")),
        (SPECS, ("Insurance", "InsuranceGroup")),
    ), _to_int),
    FieldRule("annual_tax", (
        (SPECS, ("VehicleExciseDutyDetails", "VedRate", "Standard", "TwelveMonths")),
    ), _to_float),
    FieldRule("emission_class", (
        (SPECS, ("SmmtDetails", "EmissionClass")),
        (SPECS, ("Emissions", "EmissionClass")),
        (SPECS, ("VehicleIdentification", "EmissionClass")),
    ), _to_str),

    # Performance
    FieldRule("power", (
        (SPECS, ("Performance", "Power", "Bhp")),
        (SPECS, ("SmmtDetails", "PowerBhp")),
    ), _to_int),
    FieldRule("torque", (
        (SPECS, ("Performance", "Torque", "Nm")),
        (SPECS, ("SmmtDetails", "TorqueNm")),
    ), _to_float),
    FieldRule("acceleration", ((SPECS, ("Performance", "Statistics", "ZeroToSixtyMph")),), _to_float),
    FieldRule("top_speed", ((SPECS, ("Performance", "Statistics", "MaxSpeedMph")),), _to_int),

    # Electric drivetrain
    FieldRule("electric_range", (
        (SPECS, _EV + ("RangeFigures", "RangeTestCycles", 0, "CombinedRangeMiles")),
    ), _to_int),
    FieldRule("battery_capacity", ((SPECS, _EV + ("BatteryDetailsList", 0, "CapacityKwh")),), _to_float),
    FieldRule("home_charging_speed", ((SPECS, _EV + ("ChargePortDetailsList",)),), _port_power("Type 2")),
    FieldRule("rapid_charging_speed", ((SPECS, _EV + ("ChargePortDetailsList",)),), _port_power("CCS")),
    FieldRule("electric_motor_power", ((SPECS, _EV + ("MotorDetailsList", 0, "PowerKw")),), _to_float),
    FieldRule("electric_motor_torque", ((SPECS, _EV + ("MotorDetailsList", 0, "MaxTorqueNm")),), _to_float),
    FieldRule("charging_port_type", ((SPECS, _EV + ("ChargePortDetailsList",)),), _port_types),
    FieldRule("charging_time", ((SPECS, _EV + ("ChargePortDetailsList",)),), _fast_charge_hours),

    # Inspection
    FieldRule("mot_status", ((MOT, ("mot", "motStatus")),), _to_str),
    FieldRule("mot_due_date", (
        (MOT, ("mot", "motDueDate")),
        (MOT, ("mot", "motExpiryDate")),
    ), _to_date),

    # Ownership
    FieldRule("previous_keepers", ((HISTORY, ("VehicleHistory", "NumberOfPreviousKeepers")),), _to_int, 0),
    FieldRule("exported", ((HISTORY, ("VehicleHistory", "Exported")),), _to_bool, False),
    FieldRule("scrapped", ((HISTORY, ("VehicleHistory", "Scrapped")),), _to_bool, False),

    # Valuation
    FieldRule("estimated_value", ((VALUATION, ("ValuationList", "PrivateClean")),), _to_int),
    FieldRule("private_price", ((VALUATION, ("ValuationList", "PrivateClean")),), _to_int),
    FieldRule("dealer_price", ((VALUATION, ("ValuationList", "DealerForecourt")),), _to_int),
    FieldRule("part_exchange_price", ((VALUATION, ("ValuationList", "PartExchange")),), _to_int),
)


def _dig(payload: Any, path: Sequence[PathStep]) -> Any:
    """Follow a path of dict keys and list indexes; None when any step is absent."""
    current = payload
    for step in path:
        if isinstance(step, int):
            if not isinstance(current, (list, tuple)) or len(current) <= step:
                return None
            current = current[step]
        else:
            if not isinstance(current, Mapping):
                return None
            current = current.get(step)
        if current is None:
            return None
    return current


def _resolve(rule: FieldRule, payloads: Mapping[str, Optional[dict]]) -> Any:
    endpoint_present = False
    for endpoint, path in rule.sources:
        payload = payloads.get(endpoint)
        if payload is None:
            continue
        endpoint_present = True
        raw = _dig(payload, path)
        if is_missing(raw):
            continue
        value = rule.transform(raw) if rule.transform else raw
        if not is_missing(value):
            return value
    if endpoint_present:
        return rule.default_if_present
    return None


# ---------------------------------------------------------------------------
# Composite sections
# ---------------------------------------------------------------------------

def _parse_mot_tests(mot_payload: Optional[dict]) -> List[MotTest]:
    tests = []
    for raw in (mot_payload or {}).get("motHistory") or []:
        if not isinstance(raw, Mapping):
            continue
        unit = _to_str(raw.get("odometerUnit"))
        tests.append(MotTest(
            test_date=_to_date(raw.get("completedDate") or raw.get("testDate")),
            expiry_date=_to_date(raw.get("expiryDate")),
            result=_to_str(raw.get("testResult") or raw.get("result")),
            odometer_value=_to_int(raw.get("odometerValue")),
            odometer_unit=unit.lower() if unit else "mi",
            test_number=_to_str(raw.get("motTestNumber") or raw.get("testNumber")),
            defects=[d for d in raw.get("defects") or [] if isinstance(d, Mapping)],
        ))
    return tests


def _parse_write_off(history_payload: Optional[dict]) -> Dict[str, Any]:
    """is_written_off / write_off_category / write_off_details for a history payload."""
    if history_payload is None:
        return {}

    history = history_payload.get("VehicleHistory") or {}
    record = history.get("writeoff")
    if isinstance(record, list):
        record = record[0] if record else None

    if not history.get("writeOffRecord") or not isinstance(record, Mapping):
        return {
            "is_written_off": False,
            "write_off_category": "none",
            "write_off_details": WriteOffDetails(category="none"),
        }

    category = extract_write_off_category(record.get("category"), record.get("status"))
    details = WriteOffDetails(
        category=category,
        loss_date=_to_date(record.get("lossdate")),
        status=_to_str(record.get("status")),
        insurer_name=_to_str(record.get("insurername")),
        claim_number=_to_str(record.get("claimnumber")),
        damage_locations=[str(loc) for loc in record.get("damagelocations") or []],
    )
    logger.info("write_off_detected", category=category, loss_date=str(details.loss_date))
    return {
        "is_written_off": True,
        "write_off_category": category,
        "write_off_details": details,
    }


# ---------------------------------------------------------------------------
# Public entry points
# ---------------------------------------------------------------------------

def normalize_provider_payloads(payloads: Mapping[str, Optional[dict]]) -> CanonicalVehicleData:
    """
    Build a canonical record from per-endpoint payloads.

    Args:
        payloads: endpoint name -> payload (None for a failed sub-call with
            no fallback)

    Returns:
        Normalized CanonicalVehicleData
    """
    values: Dict[str, Any] = {}
    for rule in FIELD_RULES:
        value = _resolve(rule, payloads)
        if value is not None:
            values[rule.field] = value

    values["mot_history"] = _parse_mot_tests(payloads.get(MOT))
    values.update(_parse_write_off(payloads.get(HISTORY)))

    return normalize_record(CanonicalVehicleData(**values))


def enforce_electric_exclusivity(record: CanonicalVehicleData) -> CanonicalVehicleData:
    """Clear electric drivetrain fields unless the vehicle is pure electric."""
    if record.fuel_type == FUEL_ELECTRIC:
        return record
    populated = [name for name in ELECTRIC_FIELDS if getattr(record, name) is not None]
    if not populated:
        return record
    logger.debug("electric_fields_cleared", fuel_type=record.fuel_type, fields=populated)
    return record.model_copy(update={name: None for name in ELECTRIC_FIELDS})


def _mot_sort_key(test: MotTest):
    return (test.test_date is not None, test.test_date or date.min)


def normalize_record(record: CanonicalVehicleData) -> CanonicalVehicleData:
    """
    Canonicalize every normalizable field of a record.

    Idempotent: normalize_record(normalize_record(x)) == normalize_record(x).
    """
    updates: Dict[str, Any] = {
        "fuel_type": normalize_fuel_type(record.fuel_type),
        "transmission": normalize_transmission(record.transmission),
        "model": clean_model_name(record.model),
        "engine_size": normalize_engine_size(record.engine_size),
        "mot_history": sorted(record.mot_history, key=_mot_sort_key, reverse=True),
    }

    if record.write_off_category is not None:
        category = extract_write_off_category(record.write_off_category)
        updates["write_off_category"] = category
        if record.write_off_details is not None:
            updates["write_off_details"] = record.write_off_details.model_copy(
                update={"category": category}
            )

    return enforce_electric_exclusivity(record.model_copy(update=updates))


__all__ = [
    "FieldRule",
    "FIELD_RULES",
    "normalize_fuel_type",
    "normalize_transmission",
    "clean_model_name",
    "extract_write_off_category",
    "normalize_engine_size",
    "normalize_provider_payloads",
    "normalize_record",
    "enforce_electric_exclusivity",
]
