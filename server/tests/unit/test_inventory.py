"""Unit tests for the equipment catalogue and inventory reconciliation."""

import asyncio

import pytest
from sqlalchemy import update

from factories import borrow_payload
from lending.core.exceptions import NotFoundError, ValidationError
from lending.models.equipment import Equipment, EquipmentCategory
from lending.schemas.borrow_request import UpdateStatusRequest
from lending.schemas.equipment import ReconcileSummary, UpdateEquipmentRequest
from lending.services.consistency_service import ConsistencyGate, ConsistencyService
from lending.services.equipment_service import EquipmentService
from lending.services.request_service import RequestService


async def corrupt(session, equipment, **values):
    """Write counts directly, bypassing the reservation ledger."""
    await session.execute(
        update(Equipment)
        .where(Equipment.id == equipment.id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await session.commit()


@pytest.mark.asyncio
async def test_create_equipment_starts_fully_available(test_session, equipment_factory):
    equipment = await equipment_factory("Microscope", 5, EquipmentCategory.LAB)

    assert equipment.quantity == 5
    assert equipment.available == 5
    assert equipment.category == "Lab"
    assert equipment.condition == "Good"


@pytest.mark.asyncio
async def test_list_sorted_by_stock_then_name(test_session, equipment_factory):
    await equipment_factory("Tuba", 1)
    await equipment_factory("Drum", 4)
    await equipment_factory("Cello", 4)
    await equipment_factory("Amp", 0)

    listed = await EquipmentService(test_session).list_equipment()
    in_stock = await EquipmentService(test_session).list_equipment(available_only=True)

    assert [e.name for e in listed] == ["Cello", "Drum", "Tuba", "Amp"]
    assert [e.name for e in in_stock] == ["Cello", "Drum", "Tuba"]


@pytest.mark.asyncio
async def test_list_filters_by_search_and_category(test_session, equipment_factory):
    await equipment_factory("Basketball", 3)
    await equipment_factory("Digital Multimeter", 2, EquipmentCategory.ELECTRONICS)

    service = EquipmentService(test_session)

    assert [e.name for e in await service.list_equipment(search="basket")] == ["Basketball"]
    assert [e.name for e in await service.list_equipment(category="Electronics")] == ["Digital Multimeter"]


@pytest.mark.asyncio
async def test_quantity_change_keeps_borrowed_count(test_session, basketball, student):
    await RequestService(test_session).create_request(borrow_payload(basketball.id, quantity=3), student)
    service = EquipmentService(test_session)

    updated = await service.update_equipment(str(basketball.id), UpdateEquipmentRequest(quantity=5))

    assert updated.quantity == 5
    assert updated.available == 2


@pytest.mark.asyncio
async def test_quantity_below_borrowed_refused(test_session, basketball, student):
    await RequestService(test_session).create_request(borrow_payload(basketball.id, quantity=3), student)

    with pytest.raises(ValidationError) as exc:
        await EquipmentService(test_session).update_equipment(
            str(basketball.id), UpdateEquipmentRequest(quantity=2)
        )

    assert exc.value.message == "Cannot reduce quantity below borrowed amount"


@pytest.mark.asyncio
async def test_update_unknown_equipment_not_found(test_session):
    with pytest.raises(NotFoundError):
        await EquipmentService(test_session).update_equipment("missing", UpdateEquipmentRequest(name="Ghost"))


@pytest.mark.asyncio
async def test_delete_borrowed_equipment_refused(test_session, basketball, student):
    await RequestService(test_session).create_request(borrow_payload(basketball.id, quantity=1), student)

    with pytest.raises(ValidationError) as exc:
        await EquipmentService(test_session).delete_equipment(str(basketball.id))

    assert exc.value.message == "Cannot delete equipment that is currently borrowed"


@pytest.mark.asyncio
async def test_delete_keeps_line_item_snapshots(test_session, basketball, student, staff):
    requests = RequestService(test_session)
    created = await requests.create_request(borrow_payload(basketball.id, quantity=2), student)
    await requests.update_status(created.request.request_id, UpdateStatusRequest(status="rejected"), staff)

    await EquipmentService(test_session).delete_equipment(str(basketball.id))

    assert await EquipmentService(test_session).get_equipment_by_id(basketball.id) is None
    history = await requests.get_request(created.request.request_id)
    assert history.items[0].equipment_id is None
    assert history.items[0].equipment_name == "Basketball"


@pytest.mark.asyncio
async def test_reconcile_heals_drift(test_session, basketball, student):
    await RequestService(test_session).create_request(borrow_payload(basketball.id, quantity=3), student)
    await corrupt(test_session, basketball, available=10)

    summary = await ConsistencyService(test_session).check_and_fix()

    assert summary == ReconcileSummary(checked=1, fixed=1)
    healed = await EquipmentService(test_session).get_equipment_by_id(basketball.id)
    assert healed.available == 7


@pytest.mark.asyncio
async def test_reconcile_without_drift_changes_nothing(test_session, basketball, student):
    await RequestService(test_session).create_request(borrow_payload(basketball.id, quantity=3), student)

    summary = await ConsistencyService(test_session).check_and_fix([basketball.id])

    assert (summary.checked, summary.fixed) == (1, 0)


@pytest.mark.asyncio
async def test_reconcile_clamps_at_zero(test_session, basketball, student):
    await RequestService(test_session).create_request(borrow_payload(basketball.id, quantity=3), student)
    await corrupt(test_session, basketball, quantity=2, available=2)

    summary = await ConsistencyService(test_session).check_and_fix()

    assert summary.fixed == 1
    healed = await EquipmentService(test_session).get_equipment_by_id(basketball.id)
    assert healed.available == 0


@pytest.mark.asyncio
async def test_reconcile_empty_selection(test_session):
    summary = await ConsistencyService(test_session).check_and_fix([])

    assert (summary.checked, summary.fixed) == (0, 0)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.mark.asyncio
async def test_consistency_gate_throttles_runs():
    clock = FakeClock()
    calls = []

    async def runner():
        calls.append(clock.now)
        return ReconcileSummary(checked=0, fixed=0)

    gate = ConsistencyGate(runner=runner, interval_seconds=300, clock=clock)

    first = gate.maybe_schedule()
    await first
    assert gate.maybe_schedule() is None

    clock.now += 299
    assert gate.maybe_schedule() is None

    clock.now += 1
    second = gate.maybe_schedule()
    await second

    assert calls == [1000.0, 1300.0]


@pytest.mark.asyncio
async def test_consistency_gate_skips_while_running():
    clock = FakeClock()
    started = []
    release = asyncio.Event()

    async def slow_runner():
        started.append(clock.now)
        await release.wait()
        return ReconcileSummary(checked=0, fixed=0)

    gate = ConsistencyGate(runner=slow_runner, interval_seconds=10, clock=clock)
    task = gate.maybe_schedule()
    await asyncio.sleep(0)

    clock.now += 60
    assert gate.maybe_schedule() is None

    release.set()
    await task
    assert started == [1000.0]
