"""
Tests for the provider payload normalizer

Tests cover:
- Fuel type / transmission / write-off canonicalization
- Model name trimming
- Payload-to-record field mapping (incl. electric drivetrain and MOT history)
- Idempotence of normalize_record
- Electric fields only on pure electric vehicles
"""

from datetime import date

import pytest

from vehicle_completion.models.canonical import (
    CanonicalVehicleData,
    ELECTRIC_FIELDS,
    MotTest,
    VehicleCategory,
    WriteOffDetails,
)
from vehicle_completion.services.fallback import FallbackSynthesizer
from vehicle_completion.services.normalizer import (
    clean_model_name,
    extract_write_off_category,
    normalize_engine_size,
    normalize_fuel_type,
    normalize_provider_payloads,
    normalize_record,
    normalize_transmission,
)

from factories import hybrid_payloads


class TestFuelType:

    @pytest.mark.parametrize("raw,expected", [
        ("PETROL", "Petrol"),
        ("diesel", "Diesel"),
        ("ELECTRICITY", "Electric"),
        ("BEV", "Electric"),
        ("HYBRID ELECTRIC", "Hybrid"),
        ("PETROL/ELECTRIC", "Petrol Hybrid"),
        ("Diesel/Electric", "Diesel Hybrid"),
        ("Plug-in Hybrid Petrol", "Petrol Plug-in Hybrid"),
        ("PHEV", "Plug-in Hybrid"),
        ("", None),
        (None, None),
    ])
    def test_canonical_vocabulary(self, raw, expected):
        assert normalize_fuel_type(raw) == expected

    def test_hybrid_electric_is_never_pure_electric(self):
        """Hybrid must win over electric whatever the word order."""
        for raw in ("HYBRID ELECTRIC", "ELECTRIC HYBRID", "Petrol Electric Hybrid"):
            assert normalize_fuel_type(raw) != "Electric"


class TestTransmission:

    @pytest.mark.parametrize("raw,expected", [
        ("Manual", "manual"),
        ("AUTOMATIC", "automatic"),
        ("CVT", "automatic"),
        ("Semi-Automatic", "semi-automatic"),
        ("7 Speed Dual Clutch", "semi-automatic"),
        ("7 speed DSG", "semi-automatic"),
        ("", None),
        ("Sequential", None),
    ])
    def test_canonical_vocabulary(self, raw, expected):
        assert normalize_transmission(raw) == expected


class TestModelName:

    @pytest.mark.parametrize("raw,expected", [
        ("CIVIC TYPE S I-VTEC", "CIVIC"),
        ("XC60 D4 R-DESIGN", "XC60 D4"),
        ("530d xDrive M Sport Edition MHEV Auto", "530d"),
        ("GOLF", "GOLF"),
        (None, None),
    ])
    def test_trim_tokens_removed(self, raw, expected):
        assert clean_model_name(raw) == expected


class TestWriteOff:

    def test_explicit_category(self):
        assert extract_write_off_category("s") == "S"

    def test_category_from_status_text(self):
        assert extract_write_off_category(None, "CAT N Damage") == "N"
        assert extract_write_off_category("Category B") == "B"

    def test_unreadable_status_is_unknown(self):
        assert extract_write_off_category(None, "Total loss") == "unknown"

    def test_write_off_record_parsed(self):
        payloads = {
            "vehicleHistory": {
                "VehicleHistory": {
                    "writeOffRecord": True,
                    "writeoff": [{
                        "status": "CAT S DAMAGE",
                        "lossdate": "2019-03-14",
                        "insurername": "Aviva",
                        "damagelocations": ["Front", "Nearside"],
                    }],
                },
            },
        }

        record = normalize_provider_payloads(payloads)

        assert record.is_written_off is True
        assert record.write_off_category == "S"
        assert record.write_off_details.loss_date == date(2019, 3, 14)
        assert record.write_off_details.damage_locations == ["Front", "Nearside"]

    def test_no_history_payload_leaves_write_off_unknown(self):
        record = normalize_provider_payloads({"vehicleSpecs": {"ModelData": {"Make": "FORD"}}})

        assert record.is_written_off is None
        assert record.write_off_category is None


class TestEngineSize:

    @pytest.mark.parametrize("raw,expected", [
        (1598, 1.6),
        ("1,995", 2.0),
        (1.6, 1.6),
        (50, 0.05),
        (125, 0.125),
        (150, 0.15),
        (0.125, 0.125),
        (998, 0.998),
        (0, None),
        (None, None),
    ])
    def test_litres(self, raw, expected):
        assert normalize_engine_size(raw) == expected

    def test_small_bikes_keep_their_class(self):
        synth = FallbackSynthesizer()
        moped = CanonicalVehicleData(engine_size=normalize_engine_size(50))
        learner = CanonicalVehicleData(engine_size=normalize_engine_size(150))

        assert synth.default_body_type(VehicleCategory.BIKE, moped) == "Scooter"
        assert synth.bike_insurance_group(moped.engine_size) == 1
        assert synth.default_body_type(VehicleCategory.BIKE, learner) == "Standard"
        assert synth.bike_insurance_group(learner.engine_size) == 8


class TestProviderPayloads:

    def test_hybrid_scenario(self):
        """AB12CDE: "HYBRID ELECTRIC" is a hybrid and carries no electric range."""
        record = normalize_provider_payloads(hybrid_payloads())

        assert record.fuel_type == "Hybrid"
        assert record.electric_range is None
        assert record.make == "TOYOTA"
        assert record.model == "PRIUS"
        assert record.year == 2012
        assert record.transmission == "automatic"
        assert record.engine_size == 1.8
        assert record.annual_tax == 0.0
        assert record.color == "SILVER"
        assert record.previous_keepers == 2
        assert record.is_written_off is False
        assert record.write_off_category == "none"
        assert record.mot_due_date == date(2026, 11, 30)
        assert record.estimated_value == 5200
        assert record.dealer_price == 6100

    def test_mot_history_newest_first(self):
        record = normalize_provider_payloads(hybrid_payloads())

        assert [test.test_number for test in record.mot_history] == ["222", "111"]
        assert record.mot_history[0].odometer_value == 68000
        assert record.mot_history[0].odometer_unit == "mi"

    def test_history_defaults_when_endpoint_answered(self):
        record = normalize_provider_payloads({"vehicleHistory": {"VehicleHistory": {}}})

        assert record.previous_keepers == 0
        assert record.exported is False
        assert record.scrapped is False

    def test_missing_valuation_stays_empty(self):
        payloads = hybrid_payloads()
        payloads["valuation"] = None

        record = normalize_provider_payloads(payloads)

        assert record.estimated_value is None
        assert record.private_price is None

    def test_electric_drivetrain_fields(self):
        payloads = {
            "vehicleSpecs": {
                "ModelData": {"Make": "BMW", "Model": "i4", "FuelType": "ELECTRICITY"},
                "PowerSource": {"ElectricDetails": {
                    "BatteryDetailsList": [{"CapacityKwh": 83.9}],
                    "MotorDetailsList": [{"PowerKw": 250, "MaxTorqueNm": 430}],
                    "ChargePortDetailsList": [
                        {
                            "PortType": "Type 2",
                            "MaxChargePowerKw": 11,
                            "ChargeTimes": {"AverageChargeTimes10To80Percent": [
                                {"ChargePortKw": 7, "TimeInMinutes": 400},
                                {"ChargePortKw": 50, "TimeInMinutes": 45},
                            ]},
                        },
                        {"PortType": "CCS", "MaxChargePowerKw": 150},
                    ],
                }},
            },
        }

        record = normalize_provider_payloads(payloads)

        assert record.fuel_type == "Electric"
        assert record.battery_capacity == 83.9
        assert record.electric_motor_power == 250.0
        assert record.home_charging_speed == 11.0
        assert record.rapid_charging_speed == 150.0
        assert record.charging_port_type == "Type 2 / CCS"
        assert record.charging_time == 0.75


class TestNormalizeRecord:

    def _raw_records(self):
        return [
            CanonicalVehicleData(
                make="BMW",
                model="530d xDrive M Sport Edition MHEV Auto",
                fuel_type="petrol/electric",
                transmission="7 speed DSG",
                engine_size=2993,
                write_off_category="CAT S",
                write_off_details=WriteOffDetails(category="CAT S", status="CAT S"),
                mot_history=[
                    MotTest(test_date=None, result="PASSED"),
                    MotTest(test_date=date(2021, 5, 1), result="FAILED"),
                    MotTest(test_date=date(2023, 5, 1), result="PASSED"),
                ],
            ),
            CanonicalVehicleData(fuel_type="BEV", electric_range=250, transmission="Automatic"),
            CanonicalVehicleData(fuel_type="Diesel", electric_range=40, battery_capacity=12.0),
            CanonicalVehicleData(),
            normalize_provider_payloads(hybrid_payloads()),
        ]

    def test_idempotent(self):
        for raw in self._raw_records():
            once = normalize_record(raw)
            assert normalize_record(once) == once

    def test_canonicalizes_every_field(self):
        record = normalize_record(self._raw_records()[0])

        assert record.model == "530d"
        assert record.fuel_type == "Petrol Hybrid"
        assert record.transmission == "semi-automatic"
        assert record.engine_size == 3.0
        assert record.write_off_category == "S"
        assert record.write_off_details.category == "S"
        assert [test.test_date for test in record.mot_history] == [date(2023, 5, 1), date(2021, 5, 1), None]


class TestElectricExclusivity:

    def _with_electric_fields(self, fuel_type):
        return CanonicalVehicleData(
            fuel_type=fuel_type,
            electric_range=200,
            battery_capacity=60.0,
            charging_time=8.0,
            home_charging_speed=7.4,
            rapid_charging_speed=100.0,
            electric_motor_power=150.0,
            electric_motor_torque=300.0,
            charging_port_type="Type 2 / CCS",
        )

    @pytest.mark.parametrize("fuel_type", [
        "Petrol", "Diesel", "Hybrid", "Petrol Hybrid", "Plug-in Hybrid", "HYBRID ELECTRIC", None,
    ])
    def test_cleared_for_non_electric(self, fuel_type):
        record = normalize_record(self._with_electric_fields(fuel_type))

        assert all(getattr(record, name) is None for name in ELECTRIC_FIELDS)

    def test_kept_for_pure_electric(self):
        record = normalize_record(self._with_electric_fields("ELECTRIC"))

        assert record.fuel_type == "Electric"
        assert all(getattr(record, name) is not None for name in ELECTRIC_FIELDS)
