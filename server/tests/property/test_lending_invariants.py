"""Property-based tests for lending invariants."""

import asyncio

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm.attributes import set_committed_value
from sqlalchemy.pool import StaticPool

from factories import STAFF, STUDENT, borrow_payload
from lending.core.database import Base
from lending.core.exceptions import ProblemDetailsException
from lending.models.borrow_request import (
    RESERVING_STATUSES,
    RESERVING_VALUES,
    LineItemStatus,
    RequestLineItem,
    RequestStatus,
    StatusHistoryEntry,
    StaleLineItem,
    derive_request_status,
)
from lending.models.equipment import Equipment, EquipmentCategory
from lending.schemas.borrow_request import UpdateStatusRequest
from lending.schemas.equipment import CreateEquipmentRequest
from lending.services.consistency_service import ConsistencyService
from lending.services.counter_service import CounterService
from lending.services.equipment_service import EquipmentService
from lending.services.request_service import RequestService
from lending.services.reservation_service import ReservationLedger

# Strategies for generating test data
quantities = st.integers(min_value=1, max_value=15)
request_sizes = st.integers(min_value=1, max_value=6)
decisions = st.sampled_from(["leave", "approve", "reject", "return", "delete"])
item_statuses = st.lists(st.sampled_from([s.value for s in LineItemStatus]), min_size=1, max_size=6)

PROPERTY_SETTINGS = settings(max_examples=20, deadline=None)


def run_in_fresh_db(scenario):
    """Run ``scenario(session)`` against a private in-memory database."""

    async def runner():
        engine = create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        try:
            session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            async with session_factory() as session:
                return await scenario(session)
        finally:
            await engine.dispose()

    return asyncio.run(runner())


async def reserved_units(session, equipment_id) -> int:
    total = await session.scalar(
        select(func.coalesce(func.sum(RequestLineItem.quantity), 0)).where(
            RequestLineItem.equipment_id == equipment_id,
            RequestLineItem.status.in_(RESERVING_VALUES),
        )
    )
    return int(total)


async def current_available(session, equipment_id) -> int:
    return await session.scalar(
        select(Equipment.available)
        .where(Equipment.id == equipment_id)
        .execution_options(populate_existing=True)
    )


async def apply_decision(service: RequestService, request_id: str, decision: str) -> None:
    try:
        if decision == "approve":
            await service.update_status(request_id, UpdateStatusRequest(status="approved"), STAFF)
        elif decision == "reject":
            await service.update_status(request_id, UpdateStatusRequest(status="rejected"), STAFF)
        elif decision == "return":
            await service.update_status(request_id, UpdateStatusRequest(status="approved"), STAFF)
            await service.update_status(request_id, UpdateStatusRequest(status="returned"), STAFF)
        elif decision == "delete":
            await service.delete_request(request_id, STUDENT)
    except ProblemDetailsException:
        await service.db.rollback()


@PROPERTY_SETTINGS
@given(
    quantity=quantities,
    requests=st.lists(st.tuples(request_sizes, decisions), min_size=1, max_size=8),
)
def test_available_tracks_reserving_units(quantity, requests):
    """Stored availability always equals quantity minus units held by active items."""

    async def scenario(session):
        equipment = await EquipmentService(session).create_equipment(
            CreateEquipmentRequest(name="Tripod", category=EquipmentCategory.OTHER, quantity=quantity)
        )
        service = RequestService(session)
        equipment_id = equipment.id

        for size, decision in requests:
            try:
                result = await service.create_request(borrow_payload(equipment_id, quantity=size), STUDENT)
            except ProblemDetailsException:
                await session.rollback()
                continue
            await apply_decision(service, result.request.request_id, decision)

            available = await current_available(session, equipment_id)
            assert 0 <= available <= quantity
            assert available == quantity - await reserved_units(session, equipment_id)

        history = (await session.execute(
            select(StatusHistoryEntry.request_id, StatusHistoryEntry.changed_at)
            .order_by(StatusHistoryEntry.id)
        )).all()
        by_request = {}
        for request_id, changed_at in history:
            by_request.setdefault(request_id, []).append(changed_at)
        for stamps in by_request.values():
            assert stamps == sorted(stamps)

    run_in_fresh_db(scenario)


@PROPERTY_SETTINGS
@given(
    quantity=quantities,
    extra_releases=st.integers(min_value=1, max_value=4),
    target=st.sampled_from([LineItemStatus.REJECTED, LineItemStatus.EXPIRED]),
)
def test_release_gives_units_back_once(quantity, extra_releases, target):
    """Releasing an item more than once never inflates availability."""

    async def scenario(session):
        equipment = await EquipmentService(session).create_equipment(
            CreateEquipmentRequest(name="Tripod", category=EquipmentCategory.OTHER, quantity=quantity)
        )
        equipment_id = equipment.id
        result = await RequestService(session).create_request(
            borrow_payload(equipment_id, quantity=quantity), STUDENT
        )
        item = result.request.items[0]
        item_id = item.id
        ledger = ReservationLedger(session)

        assert await ledger.release(item, target, reason=target.value) == quantity
        for _ in range(extra_releases):
            assert await ledger.release(item, target, reason=target.value) == 0
        await session.commit()

        # A copy read before the release must not give the units back again
        set_committed_value(item, "status", LineItemStatus.PENDING.value)
        with pytest.raises(StaleLineItem):
            await ledger.release(item, LineItemStatus.REJECTED, reason="rejected")
        await session.rollback()

        stored = await session.scalar(
            select(RequestLineItem.status).where(RequestLineItem.id == item_id)
        )
        assert stored == target.value
        assert await current_available(session, equipment_id) == quantity

    run_in_fresh_db(scenario)


@given(statuses=item_statuses)
def test_derived_status_follows_outstanding_items(statuses):
    derived = derive_request_status(statuses)
    present = {LineItemStatus(s) for s in statuses}

    if LineItemStatus.OVERDUE in present:
        assert derived == RequestStatus.OVERDUE
    elif LineItemStatus.APPROVED in present:
        assert derived == RequestStatus.APPROVED
    elif LineItemStatus.PENDING in present:
        assert derived == RequestStatus.PENDING
    elif len(present) == 1:
        assert derived.value == statuses[0]
    else:
        assert derived == RequestStatus.PARTIAL

    if present & RESERVING_STATUSES:
        assert derived != RequestStatus.PARTIAL


@given(statuses=item_statuses)
def test_derived_status_ignores_item_order(statuses):
    assert derive_request_status(statuses) == derive_request_status(list(reversed(statuses)))


@PROPERTY_SETTINGS
@given(calls=st.integers(min_value=1, max_value=12))
def test_request_ids_strictly_increase(calls):

    async def scenario(session):
        counters = CounterService(session)
        values = []
        for _ in range(calls):
            values.append(await counters.next_value())
            await session.commit()
        return values

    values = run_in_fresh_db(scenario)
    assert values == list(range(1, calls + 1))


@PROPERTY_SETTINGS
@given(quantity=quantities, held=st.integers(min_value=0, max_value=15), stored=st.integers(min_value=0, max_value=15))
def test_reconcile_is_idempotent(quantity, held, stored):
    """A second pass right after the first finds nothing to fix."""

    async def scenario(session):
        equipment = await EquipmentService(session).create_equipment(
            CreateEquipmentRequest(name="Tripod", category=EquipmentCategory.OTHER, quantity=quantity)
        )
        equipment_id = equipment.id
        if 0 < held <= quantity:
            await RequestService(session).create_request(borrow_payload(equipment_id, quantity=held), STUDENT)
        await session.execute(
            update(Equipment)
            .where(Equipment.id == equipment_id)
            .values(available=min(stored, quantity))
            .execution_options(synchronize_session=False)
        )
        await session.commit()

        service = ConsistencyService(session)
        first = await service.check_and_fix()
        second = await service.check_and_fix()

        assert first.checked == second.checked == 1
        assert first.fixed in (0, 1)
        assert second.fixed == 0
        assert 0 <= await current_available(session, equipment_id) <= quantity

    run_in_fresh_db(scenario)
