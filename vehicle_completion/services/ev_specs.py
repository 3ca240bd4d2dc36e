"""
Known-model electric vehicle specifications.

Used to fill electric drivetrain fields the provider left empty. Only pure
electric vehicles are ever looked up, and an unknown model yields nothing
rather than generic guesses.
"""

from typing import Dict, Optional

EV_SPECS: Dict[str, Dict[str, Dict[str, dict]]] = {
    "BMW": {
        "i4": {
            "M50": {
                "electric_range": 270, "battery_capacity": 83.9, "charging_time": 8.25,
                "home_charging_speed": 7.4, "rapid_charging_speed": 100,
                "electric_motor_power": 400, "electric_motor_torque": 795,
                "charging_port_type": "Type 2 / CCS",
            },
            "eDrive40": {
                "electric_range": 365, "battery_capacity": 83.9, "charging_time": 8.25,
                "home_charging_speed": 11, "rapid_charging_speed": 150,
                "electric_motor_power": 250, "electric_motor_torque": 430,
                "charging_port_type": "Type 2 / CCS",
            },
        },
        "i3": {
            "default": {
                "electric_range": 190, "battery_capacity": 42.2, "charging_time": 6,
                "home_charging_speed": 11, "rapid_charging_speed": 50,
                "electric_motor_power": 125, "electric_motor_torque": 250,
                "charging_port_type": "Type 2 / CCS",
            },
        },
        "iX": {
            "xDrive50": {
                "electric_range": 380, "battery_capacity": 111.5, "charging_time": 11,
                "home_charging_speed": 11, "rapid_charging_speed": 200,
                "electric_motor_power": 385, "electric_motor_torque": 765,
                "charging_port_type": "Type 2 / CCS",
            },
        },
    },
    "TESLA": {
        "Model 3": {
            "Standard Range Plus": {
                "electric_range": 267, "battery_capacity": 54, "charging_time": 8,
                "home_charging_speed": 11, "rapid_charging_speed": 170,
                "electric_motor_power": 211, "electric_motor_torque": 375,
                "charging_port_type": "Tesla Supercharger / Type 2",
            },
            "Long Range": {
                "electric_range": 358, "battery_capacity": 75, "charging_time": 10,
                "home_charging_speed": 11, "rapid_charging_speed": 250,
                "electric_motor_power": 239, "electric_motor_torque": 420,
                "charging_port_type": "Tesla Supercharger / Type 2",
            },
            "Performance": {
                "electric_range": 315, "battery_capacity": 75, "charging_time": 10,
                "home_charging_speed": 11, "rapid_charging_speed": 250,
                "electric_motor_power": 340, "electric_motor_torque": 639,
                "charging_port_type": "Tesla Supercharger / Type 2",
            },
        },
        "Model S": {
            "default": {
                "electric_range": 405, "battery_capacity": 100, "charging_time": 12,
                "home_charging_speed": 11, "rapid_charging_speed": 250,
                "electric_motor_power": 493, "electric_motor_torque": 800,
                "charging_port_type": "Tesla Supercharger / Type 2",
            },
        },
        "Model Y": {
            "Long Range": {
                "electric_range": 326, "battery_capacity": 75, "charging_time": 10,
                "home_charging_speed": 11, "rapid_charging_speed": 250,
                "electric_motor_power": 324, "electric_motor_torque": 493,
                "charging_port_type": "Tesla Supercharger / Type 2",
            },
        },
    },
    "AUDI": {
        "e-tron": {
            "default": {
                "electric_range": 250, "battery_capacity": 95, "charging_time": 9.5,
                "home_charging_speed": 11, "rapid_charging_speed": 150,
                "electric_motor_power": 300, "electric_motor_torque": 664,
                "charging_port_type": "Type 2 / CCS",
            },
        },
    },
}


def lookup_ev_specs(
    make: Optional[str],
    model: Optional[str],
    variant: Optional[str] = None
) -> Optional[dict]:
    """
    Find specifications for a known electric model.

    Make matches case-insensitively, model matches exactly or as a prefix
    token ("Model 3" matches "MODEL 3 LONG RANGE"). The variant picks the
    first table entry whose name appears in it, then "default", then the
    first entry listed.

    Returns:
        Copy of the spec dict keyed by canonical field name, or None
    """
    if not make or not model:
        return None

    models = EV_SPECS.get(make.strip().upper())
    if not models:
        return None

    model_lower = model.strip().lower()
    variants = None
    for name, entries in models.items():
        name_lower = name.lower()
        if model_lower == name_lower or model_lower.startswith(name_lower + " "):
            variants = entries
            break
    if variants is None:
        return None

    variant_lower = (variant or "").lower()
    for name, spec in variants.items():
        if name != "default" and name.lower() in variant_lower:
            return dict(spec)
    if "default" in variants:
        return dict(variants["default"])
    return dict(next(iter(variants.values())))
