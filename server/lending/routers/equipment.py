"""Equipment router for catalogue operations."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.database import get_db
from ..core.dependencies import AdminAuth, StaffAuth
from ..schemas.common import envelope
from ..schemas.equipment import CreateEquipmentRequest, Equipment, UpdateEquipmentRequest
from ..services.consistency_service import ConsistencyGate, ConsistencyService
from ..services.equipment_service import EquipmentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/equipment", tags=["equipment"])

# Define dependencies to avoid B008 linting errors
DB_DEPENDENCY = Depends(get_db)

consistency_gate = ConsistencyGate(interval_seconds=settings.consistency_check_interval_seconds)


def get_consistency_gate() -> ConsistencyGate:
    """Gate that throttles opportunistic reconciliation before reads."""
    return consistency_gate


GATE_DEPENDENCY = Depends(get_consistency_gate)


def _convert_equipment_to_schema(equipment_model) -> Equipment:
    """Convert equipment model to schema."""
    return Equipment(
        id=str(equipment_model.id),
        name=equipment_model.name,
        category=equipment_model.category,
        condition=equipment_model.condition,
        quantity=equipment_model.quantity,
        available=equipment_model.available,
        description=equipment_model.description,
        created_at=equipment_model.created_at,
        updated_at=equipment_model.updated_at,
    )


@router.get("")
async def list_equipment(
    category: Optional[str] = None,
    search: Optional[str] = None,
    available: bool = Query(False, description="Only equipment with free units"),
    db: AsyncSession = DB_DEPENDENCY,
    gate: ConsistencyGate = GATE_DEPENDENCY,
) -> JSONResponse:
    """List the catalogue, units in stock first."""
    gate.maybe_schedule()

    equipment = await EquipmentService(db).list_equipment(
        category=category,
        search=search,
        available_only=available,
    )
    data = [_convert_equipment_to_schema(item).to_json() for item in equipment]
    return JSONResponse(status_code=200, content=envelope(data, count=len(data)))


@router.post("/reconcile")
async def reconcile_all(
    db: AsyncSession = DB_DEPENDENCY,
    user: dict = AdminAuth,
) -> JSONResponse:
    """Recompute available counts for every equipment record."""
    summary = await ConsistencyService(db).check_and_fix()
    logger.info(
        "Manual reconciliation requested",
        extra={"user_id": user["user_id"], "fixed": summary.fixed}
    )
    return JSONResponse(status_code=200, content=envelope(summary.to_json()))


@router.get("/{equipment_id}")
async def get_equipment(
    equipment_id: str,
    db: AsyncSession = DB_DEPENDENCY,
    gate: ConsistencyGate = GATE_DEPENDENCY,
) -> JSONResponse:
    """Get a single equipment record."""
    gate.maybe_schedule()

    equipment = await EquipmentService(db).get_equipment_or_raise(equipment_id)
    return JSONResponse(
        status_code=200,
        content=envelope(_convert_equipment_to_schema(equipment).to_json())
    )


@router.post("", status_code=201)
async def create_equipment(
    request: CreateEquipmentRequest,
    db: AsyncSession = DB_DEPENDENCY,
    user: dict = StaffAuth,
) -> JSONResponse:
    """Add equipment to the catalogue with every unit available."""
    equipment = await EquipmentService(db).create_equipment(request)
    return JSONResponse(
        status_code=201,
        content=envelope(_convert_equipment_to_schema(equipment).to_json())
    )


@router.put("/{equipment_id}")
async def update_equipment(
    equipment_id: str,
    request: UpdateEquipmentRequest,
    db: AsyncSession = DB_DEPENDENCY,
    user: dict = StaffAuth,
) -> JSONResponse:
    """Update catalogue fields; quantity changes keep borrowed units."""
    equipment = await EquipmentService(db).update_equipment(equipment_id, request)
    return JSONResponse(
        status_code=200,
        content=envelope(_convert_equipment_to_schema(equipment).to_json())
    )


@router.delete("/{equipment_id}")
async def delete_equipment(
    equipment_id: str,
    db: AsyncSession = DB_DEPENDENCY,
    user: dict = AdminAuth,
) -> JSONResponse:
    """Remove equipment nobody currently holds."""
    await EquipmentService(db).delete_equipment(equipment_id)
    return JSONResponse(
        status_code=200,
        content={"success": True, "message": "Equipment deleted"}
    )


@router.post("/{equipment_id}/reconcile")
async def reconcile_one(
    equipment_id: str,
    db: AsyncSession = DB_DEPENDENCY,
    user: dict = AdminAuth,
) -> JSONResponse:
    """Recompute the available count of one equipment record."""
    equipment = await EquipmentService(db).get_equipment_or_raise(equipment_id)
    summary = await ConsistencyService(db).check_and_fix([equipment.id])
    return JSONResponse(status_code=200, content=envelope(summary.to_json()))
