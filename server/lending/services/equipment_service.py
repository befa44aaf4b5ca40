"""Equipment catalogue service."""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import func, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import is_postgresql
from ..core.exceptions import NotFoundError, ValidationError
from ..models.borrow_request import RESERVING_VALUES, RequestLineItem
from ..models.equipment import Equipment
from ..schemas.equipment import CreateEquipmentRequest, UpdateEquipmentRequest
from .consistency_service import ConsistencyService

logger = logging.getLogger(__name__)


def parse_equipment_id(raw: str) -> Optional[UUID]:
    """Parse an equipment id; malformed ids are treated as unknown."""
    try:
        return UUID(str(raw))
    except (TypeError, ValueError):
        return None


class EquipmentService:
    """Service for equipment-related operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_equipment(self, request: CreateEquipmentRequest) -> Equipment:
        """
        Add equipment to the catalogue with every unit available.

        Args:
            request: Equipment creation request

        Returns:
            Created equipment entity
        """
        equipment = Equipment(
            name=request.name.strip(),
            category=request.category.value,
            condition=request.condition.value,
            quantity=request.quantity,
            available=request.quantity,
            description=request.description,
        )

        self.db.add(equipment)
        await self.db.commit()

        logger.info(
            "Equipment created successfully",
            extra={
                "equipment_id": str(equipment.id),
                "name": equipment.name,
                "quantity": equipment.quantity,
            }
        )

        return equipment

    async def list_equipment(
        self,
        category: Optional[str] = None,
        search: Optional[str] = None,
        available_only: bool = False,
    ) -> list[Equipment]:
        """List equipment with stock first, then alphabetically."""
        stmt = select(Equipment).execution_options(populate_existing=True)

        if category:
            stmt = stmt.where(Equipment.category == category)
        if search:
            stmt = stmt.where(func.lower(Equipment.name).contains(search.lower(), autoescape=True))
        if available_only:
            stmt = stmt.where(Equipment.available > 0)

        stmt = stmt.order_by(Equipment.available.desc(), Equipment.name.asc())
        result = await self.db.execute(stmt)
        return list(result.scalars())

    async def get_equipment_by_id(self, equipment_id: UUID) -> Optional[Equipment]:
        """Get equipment by ID, always reading current counts."""
        stmt = (
            select(Equipment)
            .where(Equipment.id == equipment_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_equipment_or_raise(self, raw_id: str) -> Equipment:
        """Get equipment by its string ID or raise NotFoundError."""
        equipment_id = parse_equipment_id(raw_id)
        equipment = await self.get_equipment_by_id(equipment_id) if equipment_id else None
        if not equipment:
            logger.warning("Equipment not found", extra={"equipment_id": raw_id})
            raise NotFoundError(resource_type="equipment", resource_id=raw_id)
        return equipment

    async def _lock(self, equipment_id: UUID) -> None:
        # Serialise catalogue edits per equipment; released at transaction end
        if is_postgresql(self.db):
            await self.db.execute(
                text("SELECT pg_advisory_xact_lock(hashtext(:equipment_id))"),
                {"equipment_id": str(equipment_id)}
            )

    async def update_equipment(self, raw_id: str, request: UpdateEquipmentRequest) -> Equipment:
        """
        Update catalogue fields.

        A quantity change keeps the number of borrowed units fixed and moves
        ``available`` by the same delta.

        Raises:
            NotFoundError: If equipment not found
            ValidationError: If the new quantity is below the borrowed count
        """
        equipment = await self.get_equipment_or_raise(raw_id)
        await self._lock(equipment.id)
        equipment = await self.get_equipment_by_id(equipment.id)

        changes = request.model_dump(exclude_unset=True)

        if changes.get("quantity") is not None:
            borrowed = equipment.quantity - equipment.available
            new_available = changes["quantity"] - borrowed
            if new_available < 0:
                raise ValidationError(detail="Cannot reduce quantity below borrowed amount")
            equipment.quantity = changes["quantity"]
            equipment.available = new_available

        if changes.get("name") is not None:
            equipment.name = changes["name"].strip()
        if changes.get("category") is not None:
            equipment.category = request.category.value
        if changes.get("condition") is not None:
            equipment.condition = request.condition.value
        if "description" in changes:
            equipment.description = changes["description"]

        await self.db.commit()

        logger.info(
            "Equipment updated successfully",
            extra={
                "equipment_id": str(equipment.id),
                "fields": sorted(changes),
                "quantity": equipment.quantity,
                "available": equipment.available,
            }
        )

        if "quantity" in changes:
            await ConsistencyService(self.db).check_and_fix([equipment.id])
            equipment = await self.get_equipment_by_id(equipment.id)

        return equipment

    async def delete_equipment(self, raw_id: str) -> None:
        """
        Remove equipment that nothing currently holds.

        Historical line items keep their snapshot name and category; their
        equipment reference is cleared.

        Raises:
            NotFoundError: If equipment not found
            ValidationError: If units are borrowed or active requests reference it
        """
        equipment = await self.get_equipment_or_raise(raw_id)

        if equipment.available < equipment.quantity:
            raise ValidationError(detail="Cannot delete equipment that is currently borrowed")

        active = await self.db.scalar(
            select(func.count(func.distinct(RequestLineItem.request_id))).where(
                RequestLineItem.equipment_id == equipment.id,
                RequestLineItem.status.in_(RESERVING_VALUES),
            )
        )
        if active:
            raise ValidationError(
                detail=f"Cannot delete equipment with {active} pending/approved request(s)"
            )

        await self.db.execute(
            update(RequestLineItem)
            .where(RequestLineItem.equipment_id == equipment.id)
            .values(equipment_id=None)
            .execution_options(synchronize_session=False)
        )
        await self.db.delete(equipment)
        await self.db.commit()

        logger.info(
            "Equipment deleted",
            extra={"equipment_id": str(equipment.id), "name": equipment.name}
        )
