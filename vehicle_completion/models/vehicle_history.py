"""
VehicleHistory Model
Cache entry holding the last normalized provider result per registration
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON, Index
from sqlalchemy.sql import func
from vehicle_completion.database import Base


class VehicleHistory(Base):
    """
    One authoritative cache entry per VRM.

    `data` holds the full CanonicalVehicleData as JSON; a handful of columns
    are duplicated out of it for lookup and reporting. Rows are replaced
    (delete-then-insert) on every write, never merged.
    """
    __tablename__ = "vehicle_history"

    # Primary Key
    id = Column(Integer, primary_key=True, autoincrement=True)

    # Cache key
    vrm = Column(String(10), unique=True, nullable=False, index=True)

    # Indexed projections of `data`
    make = Column(String(100), nullable=True)
    model = Column(String(100), nullable=True)
    fuel_type = Column(String(50), nullable=True)
    year = Column(Integer, nullable=True)

    # Canonical record
    data = Column(JSON, nullable=False)

    # Accounting for the fetch that produced this entry
    total_cost = Column(JSON, nullable=True)
    # {"total": 2.01, "endpoints": {"vehicleSpecs": 0.05, ...}}

    # Timestamps
    checked_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index('ix_vehicle_history_checked_at', 'checked_at'),
    )

    def __repr__(self):
        return f"<VehicleHistory(id={self.id}, vrm='{self.vrm}', checked_at={self.checked_at})>"
