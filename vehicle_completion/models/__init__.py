"""
Database and Domain Models
"""

from vehicle_completion.models.vehicle import Vehicle
from vehicle_completion.models.vehicle_history import VehicleHistory
from vehicle_completion.models.canonical import (
    CanonicalVehicleData,
    MotTest,
    VehicleCategory,
    WriteOffDetails,
)
from vehicle_completion.models.completion_result import (
    CompletionErrorDetail,
    CompletionMetadata,
    CompletionResult,
)

__all__ = [
    "Vehicle",
    "VehicleHistory",
    "CanonicalVehicleData",
    "MotTest",
    "VehicleCategory",
    "WriteOffDetails",
    "CompletionErrorDetail",
    "CompletionMetadata",
    "CompletionResult",
]
