"""
Tests for FallbackSynthesizer

Tests cover:
- Registration year from the plate age identifier
- Per-field defaults by category and fuel type
- Valuation is never synthesized
- Provider-shaped payloads rebuilt from cache / generated from the VRM
"""

import pytest

from vehicle_completion.models.canonical import CanonicalVehicleData, VehicleCategory
from vehicle_completion.services.fallback import FallbackSynthesizer, year_from_vrm
from vehicle_completion.services.normalizer import normalize_provider_payloads


@pytest.fixture
def synth():
    return FallbackSynthesizer()


class TestYearFromVrm:

    @pytest.mark.parametrize("vrm,expected", [
        ("AB12CDE", 2012),
        ("AB62CDE", 2012),
        ("ab 70 xyz", 2020),
        ("AB00CDE", None),
        ("A123BCD", None),
        (None, None),
    ])
    def test_age_identifier(self, vrm, expected):
        assert year_from_vrm(vrm) == expected


class TestFieldDefaults:

    def test_valuation_never_synthesized(self, synth):
        known = CanonicalVehicleData(make="FORD", fuel_type="Petrol")
        for name in ("estimated_value", "private_price", "dealer_price", "part_exchange_price"):
            assert synth.default_for_field(name, VehicleCategory.CAR, known) is None

    def test_identity_never_fabricated(self, synth):
        known = CanonicalVehicleData()
        for name in ("make", "model", "year", "fuel_type"):
            assert synth.default_for_field(name, VehicleCategory.CAR, known) is None

    @pytest.mark.parametrize("category,fuel_type,year,expected", [
        (VehicleCategory.VAN, "Diesel", 2020, 290.0),
        (VehicleCategory.VAN, "Diesel", 2015, 250.0),
        (VehicleCategory.CAR, "Electric", 2018, 195.0),
        (VehicleCategory.CAR, "Electric", 2016, 0.0),
        (VehicleCategory.CAR, "Diesel", 2018, 180.0),
        (VehicleCategory.CAR, "Petrol", 2018, 165.0),
    ])
    def test_annual_tax(self, synth, category, fuel_type, year, expected):
        known = CanonicalVehicleData(fuel_type=fuel_type, year=year)
        assert synth.default_for_field("annual_tax", category, known) == expected

    def test_electric_has_no_combustion_defaults(self, synth):
        known = CanonicalVehicleData(fuel_type="Electric")

        assert synth.default_for_field("engine_size", VehicleCategory.CAR, known) is None
        assert synth.default_for_field("combined_mpg", VehicleCategory.CAR, known) is None
        assert synth.default_for_field("co2_emissions", VehicleCategory.CAR, known) == 0
        assert synth.default_for_field("transmission", VehicleCategory.CAR, known) == "automatic"

    def test_combustion_defaults(self, synth):
        known = CanonicalVehicleData(fuel_type="Petrol")

        assert synth.default_for_field("engine_size", VehicleCategory.CAR, known) == 1.6
        assert synth.default_for_field("engine_size", VehicleCategory.BIKE, known) == 0.125
        assert synth.default_for_field("combined_mpg", VehicleCategory.CAR, known) == 35.0
        assert synth.default_for_field("transmission", VehicleCategory.CAR, known) == "manual"
        assert synth.default_for_field("variant", VehicleCategory.CAR, known) == "Petrol"

    @pytest.mark.parametrize("engine_size,expected", [
        (0.125, "Scooter"),
        (0.4, "Standard"),
        (0.8, "Touring"),
    ])
    def test_bike_body_type(self, synth, engine_size, expected):
        known = CanonicalVehicleData(engine_size=engine_size)
        assert synth.default_for_field("body_type", VehicleCategory.BIKE, known) == expected

    @pytest.mark.parametrize("category,body_type,doors,seats", [
        (VehicleCategory.CAR, None, 4, 5),
        (VehicleCategory.CAR, "Coupe", 2, 5),
        (VehicleCategory.CAR, "MPV", 4, 7),
        (VehicleCategory.CAR, "Roadster", 4, 2),
        (VehicleCategory.VAN, None, 3, 3),
        (VehicleCategory.VAN, "Crew Van", 4, 7),
    ])
    def test_doors_and_seats(self, synth, category, body_type, doors, seats):
        known = CanonicalVehicleData(body_type=body_type)

        assert synth.default_for_field("doors", category, known) == doors
        assert synth.default_for_field("seats", category, known) == seats

    def test_scooter_seats_two(self, synth):
        known = CanonicalVehicleData(body_type="Scooter")

        assert synth.default_for_field("seats", VehicleCategory.BIKE, known) == 2
        assert synth.default_for_field("doors", VehicleCategory.BIKE, known) == 0


class TestCategoryEnhancements:

    def test_bike_loses_doors_and_gains_insurance_group(self, synth):
        record = CanonicalVehicleData(doors=4, engine_size=0.6)

        assert synth.category_enhancements(VehicleCategory.BIKE, record) == {
            "doors": 0,
            "insurance_group": 8,
        }

    def test_existing_bike_insurance_group_kept(self, synth):
        record = CanonicalVehicleData(doors=0, engine_size=1.2, insurance_group=14)
        assert synth.category_enhancements(VehicleCategory.BIKE, record) == {}

    def test_cars_untouched(self, synth):
        record = CanonicalVehicleData(doors=5)
        assert synth.category_enhancements(VehicleCategory.CAR, record) == {}


class TestEndpointPayloads:

    def test_specs_rebuilt_from_cache(self, synth):
        cached = CanonicalVehicleData(
            make="TOYOTA", model="PRIUS", variant="T Spirit", year=2012, fuel_type="Hybrid",
            transmission="automatic", engine_size=1.8, doors=5, seats=5, body_type="Hatchback",
            combined_mpg=72.4, co2_emissions=89, annual_tax=0.0,
        )

        payload = synth.payload_from_cache("vehicleSpecs", cached)
        record = normalize_provider_payloads({"vehicleSpecs": payload})

        assert payload["_fallback"] == "cache"
        assert record.make == "TOYOTA"
        assert record.variant == "T Spirit"
        assert record.fuel_type == "Hybrid"
        assert record.engine_size == 1.8
        assert record.annual_tax == 0.0
        assert record.co2_emissions == 89

    def test_empty_cache_sections_give_no_payload(self, synth):
        cached = CanonicalVehicleData(make="FORD")

        assert synth.payload_from_cache("motHistory", cached) is None
        assert synth.payload_from_cache("vehicleHistory", cached) is None

    def test_valuation_never_served_from_cache(self, synth):
        cached = CanonicalVehicleData(estimated_value=5000, private_price=5000)
        assert synth.payload_from_cache("valuation", cached) is None

    def test_generated_specs_carry_plate_year_only(self, synth):
        payload = synth.generated_payload("vehicleSpecs", "AB12CDE")

        assert payload == {"VehicleIdentification": {"YearOfManufacture": 2012}, "_fallback": "generated"}
        assert synth.generated_payload("motHistory", "AB12CDE") is None
        assert synth.generated_payload("vehicleSpecs", "A1") is None
