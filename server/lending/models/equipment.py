"""Equipment model definition."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, DateTime, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base
from ..core.timeutils import utcnow


class EquipmentCategory(str, Enum):
    """Equipment category enumeration."""
    SPORTS = "Sports"
    LAB = "Lab"
    ELECTRONICS = "Electronics"
    MUSICAL = "Musical"
    OTHER = "Other"


class EquipmentCondition(str, Enum):
    """Equipment condition enumeration."""
    EXCELLENT = "Excellent"
    GOOD = "Good"
    FAIR = "Fair"
    POOR = "Poor"


class Equipment(Base):
    """Equipment entity holding the total and currently free unit counts."""

    __tablename__ = "equipment"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Catalogue details
    name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    category: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    condition: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=EquipmentCondition.GOOD.value
    )
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Ledger
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    available: Mapped[int] = mapped_column(Integer, nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Constraints
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_equipment_quantity_non_negative"),
        CheckConstraint("available >= 0", name="ck_equipment_available_non_negative"),
        CheckConstraint("available <= quantity", name="ck_equipment_available_lte_quantity"),
        CheckConstraint("length(name) >= 2", name="ck_equipment_name_min_length"),
    )

    @property
    def borrowed(self) -> int:
        """Units currently held by requests."""
        return self.quantity - self.available

    def __repr__(self) -> str:
        return (
            f"<Equipment(id={self.id}, name='{self.name}', "
            f"available={self.available}/{self.quantity})>"
        )
