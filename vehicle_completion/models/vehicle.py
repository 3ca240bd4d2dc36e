"""
Vehicle Model
Live vehicle record (car, bike or van) that the completion orchestrator fills in
"""

from sqlalchemy import (
    Column, Integer, String, Float, Boolean, Date, DateTime, JSON, Enum,
    ForeignKey, Index
)
from sqlalchemy.sql import func
from vehicle_completion.database import Base
from vehicle_completion.models.canonical import VehicleCategory


class Vehicle(Base):
    """
    Live vehicle record.

    Column names mirror CanonicalVehicleData so a record can be applied
    field by field. `category` selects the rule tables used for
    completeness scoring and fallback synthesis.
    """
    __tablename__ = "vehicles"

    # Primary Key
    id = Column(Integer, primary_key=True, autoincrement=True)

    # Identity
    registration_number = Column(String(10), nullable=False, index=True)
    category = Column(
        Enum(VehicleCategory, name="vehicle_category", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=VehicleCategory.CAR
    )
    make = Column(String(100), nullable=True)
    model = Column(String(100), nullable=True)
    variant = Column(String(200), nullable=True)
    year = Column(Integer, nullable=True)
    color = Column(String(50), nullable=True)
    fuel_type = Column(String(50), nullable=True)
    transmission = Column(String(20), nullable=True)
    body_type = Column(String(50), nullable=True)
    doors = Column(Integer, nullable=True)
    seats = Column(Integer, nullable=True)
    engine_size = Column(Float, nullable=True)

    # Running costs
    urban_mpg = Column(Float, nullable=True)
    extra_urban_mpg = Column(Float, nullable=True)
    combined_mpg = Column(Float, nullable=True)
    co2_emissions = Column(Integer, nullable=True)
    insurance_group = Column(Integer, nullable=True)
    annual_tax = Column(Float, nullable=True)
    emission_class = Column(String(50), nullable=True)
    running_costs = Column(JSON, nullable=True)
    # Summary: {"fuel_economy": {...}, "co2_emissions", "insurance_group", "annual_tax"}

    # Performance
    power = Column(Integer, nullable=True)
    torque = Column(Float, nullable=True)
    acceleration = Column(Float, nullable=True)
    top_speed = Column(Integer, nullable=True)

    # Electric drivetrain (pure electric only)
    electric_range = Column(Integer, nullable=True)
    battery_capacity = Column(Float, nullable=True)
    charging_time = Column(Float, nullable=True)
    home_charging_speed = Column(Float, nullable=True)
    rapid_charging_speed = Column(Float, nullable=True)
    electric_motor_power = Column(Float, nullable=True)
    electric_motor_torque = Column(Float, nullable=True)
    charging_port_type = Column(String(100), nullable=True)

    # Inspection
    mot_status = Column(String(50), nullable=True)
    mot_due_date = Column(Date, nullable=True)
    mot_history = Column(JSON, nullable=True)

    # Ownership / write-off
    previous_keepers = Column(Integer, nullable=True)
    exported = Column(Boolean, nullable=True)
    scrapped = Column(Boolean, nullable=True)
    is_written_off = Column(Boolean, nullable=True)
    write_off_category = Column(String(20), nullable=True)
    write_off_details = Column(JSON, nullable=True)

    # Valuation
    estimated_value = Column(Integer, nullable=True)
    private_price = Column(Integer, nullable=True)
    dealer_price = Column(Integer, nullable=True)
    part_exchange_price = Column(Integer, nullable=True)

    # Link to the cache entry this record was last completed from
    history_check_id = Column(Integer, ForeignKey("vehicle_history.id", ondelete="SET NULL"), nullable=True)
    history_check_status = Column(String(20), nullable=True)  # verified, cached, failed
    history_check_date = Column(DateTime(timezone=True), nullable=True)

    # Completion tracking
    data_completeness = Column(Integer, nullable=True)  # Percent of critical fields
    needs_data_review = Column(Boolean, nullable=False, default=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=True)

    __table_args__ = (
        Index('ix_vehicles_needs_data_review', 'needs_data_review'),
    )

    def __repr__(self):
        return f"<Vehicle(id={self.id}, vrm='{self.registration_number}', category='{self.category}')>"
