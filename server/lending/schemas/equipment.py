"""Equipment-related Pydantic schemas."""

from datetime import datetime
from typing import Optional

from pydantic import Field

from ..models.equipment import EquipmentCategory, EquipmentCondition
from .common import ApiModel


class CreateEquipmentRequest(ApiModel):
    """Request schema for adding equipment to the catalogue."""

    name: str = Field(..., min_length=2, max_length=100, description="Display name")
    category: EquipmentCategory = Field(..., description="Equipment category")
    condition: EquipmentCondition = Field(EquipmentCondition.GOOD, description="Physical condition")
    quantity: int = Field(..., ge=0, description="Total units owned")
    description: Optional[str] = Field(None, max_length=500, description="Free-text description")


class UpdateEquipmentRequest(ApiModel):
    """Partial update; ``quantity`` changes keep the borrowed count intact."""

    name: Optional[str] = Field(None, min_length=2, max_length=100)
    category: Optional[EquipmentCategory] = None
    condition: Optional[EquipmentCondition] = None
    quantity: Optional[int] = Field(None, ge=0)
    description: Optional[str] = Field(None, max_length=500)


class Equipment(ApiModel):
    """Equipment response schema."""

    id: str = Field(..., description="Unique equipment ID")
    name: str
    category: str
    condition: str
    quantity: int = Field(..., ge=0, description="Total units owned")
    available: int = Field(..., ge=0, description="Units currently free")
    description: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ReconcileSummary(ApiModel):
    """Result of an inventory reconciliation pass."""

    checked: int = Field(0, ge=0, description="Equipment records examined")
    fixed: int = Field(0, ge=0, description="Records whose available count was corrected")
    error: Optional[str] = Field(None, description="Set when the pass was aborted")
