"""
Completeness Validator

Scores a record against the critical fields for its vehicle category and
asks the Fallback Synthesizer to fill what is missing.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import structlog

from vehicle_completion.models.canonical import (
    CanonicalVehicleData,
    FUEL_ELECTRIC,
    VehicleCategory,
    is_missing,
)
from vehicle_completion.services.fallback import FallbackSynthesizer

logger = structlog.get_logger(__name__)

COMMON_CRITICAL_FIELDS = ("make", "model", "year", "fuel_type", "transmission", "annual_tax")

CRITICAL_FIELDS: Dict[VehicleCategory, Tuple[str, ...]] = {
    VehicleCategory.CAR: COMMON_CRITICAL_FIELDS + (
        "variant", "engine_size", "doors", "seats", "body_type", "co2_emissions", "combined_mpg",
    ),
    VehicleCategory.VAN: COMMON_CRITICAL_FIELDS + (
        "variant", "engine_size", "doors", "seats", "body_type", "combined_mpg",
    ),
    VehicleCategory.BIKE: COMMON_CRITICAL_FIELDS + (
        "variant", "engine_size", "body_type",
    ),
}

# Meaningless for a pure electric drivetrain
COMBUSTION_ONLY_FIELDS = ("engine_size", "combined_mpg")

# body_type feeds the door/seat defaults, engine_size feeds the bike body type
_FIX_ORDER = ("engine_size", "body_type")


def critical_fields_for(category: VehicleCategory, fuel_type: Optional[str] = None) -> Tuple[str, ...]:
    fields = CRITICAL_FIELDS[category]
    if fuel_type == FUEL_ELECTRIC:
        fields = tuple(name for name in fields if name not in COMBUSTION_ONLY_FIELDS)
    return fields


@dataclass
class CompletenessReport:
    percentage: int
    missing_fields: List[str] = field(default_factory=list)
    meets_threshold: bool = True
    total_fields: int = 0


class CompletenessValidator:
    def __init__(
        self,
        threshold: int = 70,
        fallback: Optional[FallbackSynthesizer] = None
    ):
        self.threshold = threshold
        self.fallback = fallback or FallbackSynthesizer()

    def score(self, record: CanonicalVehicleData, category: VehicleCategory) -> CompletenessReport:
        """Percentage of applicable critical fields that are populated."""
        fields = critical_fields_for(category, record.fuel_type)
        missing = [name for name in fields if is_missing(getattr(record, name))]
        percentage = round((len(fields) - len(missing)) / len(fields) * 100) if fields else 100
        return CompletenessReport(
            percentage=percentage,
            missing_fields=missing,
            meets_threshold=percentage >= self.threshold,
            total_fields=len(fields),
        )

    def meets_threshold(self, record: CanonicalVehicleData, category: VehicleCategory) -> bool:
        return self.score(record, category).meets_threshold

    def apply_fixes(
        self,
        record: CanonicalVehicleData,
        category: VehicleCategory,
        missing: Optional[List[str]] = None
    ) -> Tuple[CanonicalVehicleData, List[str]]:
        """
        Fill missing critical fields from the Fallback Synthesizer, then apply
        category rules.

        Args:
            record: Record to repair
            category: Vehicle category tag
            missing: Fields to fix (default: the current missing set)

        Returns:
            (repaired record, names of fields that received a fallback value)
        """
        if missing is None:
            missing = self.score(record, category).missing_fields

        ordered = [name for name in _FIX_ORDER if name in missing]
        ordered += [name for name in missing if name not in _FIX_ORDER]

        applied: List[str] = []
        for name in ordered:
            value = self.fallback.default_for_field(name, category, record)
            if value is None:
                continue
            record = record.model_copy(update={name: value})
            applied.append(name)

        enhancements = self.fallback.category_enhancements(category, record)
        if enhancements:
            record = record.model_copy(update=enhancements)

        if applied:
            logger.info("completeness_fixes_applied", category=category.value, fields=applied)
        return record, applied
