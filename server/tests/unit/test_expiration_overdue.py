"""Unit tests for request expiration and overdue detection."""

from datetime import timedelta

import pytest
from sqlalchemy import select, update

from factories import borrow_payload
from lending.core.timeutils import local_today, utcnow
from lending.models.borrow_request import BorrowRequest, RequestLineItem
from lending.schemas.borrow_request import UpdateStatusRequest
from lending.services.equipment_service import EquipmentService
from lending.services.expiration_service import EXPIRED_COMMENT, EXPIRED_REASON, ExpirationService
from lending.services.overdue_service import OVERDUE_COMMENT, OverdueService
from lending.services.request_service import RequestService


async def available(session, equipment) -> int:
    current = await EquipmentService(session).get_equipment_by_id(equipment.id)
    return current.available


@pytest.mark.asyncio
async def test_expiration_with_nothing_eligible(test_session):
    result = await ExpirationService(test_session).expire_pending_requests()

    assert result == {"expired": 0, "total": 0}


@pytest.mark.asyncio
async def test_request_not_expired_before_deadline(test_session, basketball, student):
    await RequestService(test_session).create_request(borrow_payload(basketball.id), student)

    result = await ExpirationService(test_session).expire_pending_requests(utcnow())

    assert result["expired"] == 0
    assert await available(test_session, basketball) == 7


@pytest.mark.asyncio
async def test_stale_pending_request_expires(test_session, basketball, student):
    """An unanswered request expires and gives its units back."""
    service = RequestService(test_session)
    created = await service.create_request(borrow_payload(basketball.id, quantity=3), student)

    result = await ExpirationService(test_session).expire_pending_requests(
        utcnow() + timedelta(hours=25)
    )

    assert result == {"expired": 1, "total": 1}
    expired = await service.get_request(created.request.request_id)
    assert expired.status == "expired"
    assert expired.items[0].status == "expired"
    assert expired.expires_at is None
    assert expired.expired_reason == EXPIRED_REASON
    assert expired.history[-1].status == "expired"
    assert expired.history[-1].changed_by == student["user_id"]
    assert expired.history[-1].comment == EXPIRED_COMMENT
    assert await available(test_session, basketball) == 10


@pytest.mark.asyncio
async def test_expiration_runs_are_idempotent(test_session, basketball, student):
    await RequestService(test_session).create_request(borrow_payload(basketball.id, quantity=3), student)
    later = utcnow() + timedelta(hours=25)
    expirer = ExpirationService(test_session)

    await expirer.expire_pending_requests(later)
    second = await expirer.expire_pending_requests(later)

    assert second == {"expired": 0, "total": 0}
    assert await available(test_session, basketball) == 10


@pytest.mark.asyncio
async def test_approved_request_never_expires(test_session, basketball, student, staff):
    service = RequestService(test_session)
    created = await service.create_request(borrow_payload(basketball.id, quantity=3), student)
    await service.update_status(created.request.request_id, UpdateStatusRequest(status="approved"), staff)

    result = await ExpirationService(test_session).expire_pending_requests(
        utcnow() + timedelta(days=3)
    )

    assert result["expired"] == 0
    assert await available(test_session, basketball) == 7


@pytest.mark.asyncio
async def test_overdue_items_are_flagged(test_session, basketball, student, staff):
    service = RequestService(test_session)
    created = await service.create_request(borrow_payload(basketball.id, quantity=3, days=7), student)
    request_id = created.request.request_id
    await service.update_status(request_id, UpdateStatusRequest(status="approved"), staff)
    late = local_today() + timedelta(days=8)

    updated = await OverdueService(test_session).mark_overdue_items(today=late)

    assert updated == 1
    flagged = await service.get_request(request_id)
    assert flagged.status == "overdue"
    assert flagged.items[0].status == "overdue"
    assert flagged.history[-1].comment == OVERDUE_COMMENT
    assert flagged.history[-1].changed_by == student["user_id"]
    # Still out on loan
    assert await available(test_session, basketball) == 7

    assert await OverdueService(test_session).mark_overdue_items(today=late) == 0

    overdue = await service.list_overdue(today=late)
    assert [r.request_id for r in overdue] == [request_id]


@pytest.mark.asyncio
async def test_overdue_pass_skips_items_changed_meanwhile(test_session, basketball, student, staff):
    """An item returned after the overdue pass read it is not flagged."""
    service = RequestService(test_session)
    created = await service.create_request(borrow_payload(basketball.id, quantity=3, days=7), student)
    request_id = created.request.request_id
    await service.update_status(request_id, UpdateStatusRequest(status="approved"), staff)

    overdue = OverdueService(test_session)
    transition = overdue.ledger.transition

    async def transition_after_return(item, target):
        await test_session.execute(
            update(RequestLineItem)
            .where(RequestLineItem.id == item.id)
            .values(status="returned")
            .execution_options(synchronize_session=False)
        )
        await test_session.commit()
        return await transition(item, target)

    overdue.ledger.transition = transition_after_return
    updated = await overdue.mark_overdue_items(today=local_today() + timedelta(days=8))

    assert updated == 0
    stored = await test_session.scalar(
        select(RequestLineItem.status)
        .join(BorrowRequest, RequestLineItem.request_id == BorrowRequest.id)
        .where(BorrowRequest.request_id == request_id)
    )
    assert stored == "returned"


@pytest.mark.asyncio
async def test_not_overdue_on_return_date(test_session, basketball, student, staff):
    service = RequestService(test_session)
    created = await service.create_request(borrow_payload(basketball.id, days=7), student)
    await service.update_status(created.request.request_id, UpdateStatusRequest(status="approved"), staff)

    updated = await OverdueService(test_session).mark_overdue_items(today=local_today() + timedelta(days=7))

    assert updated == 0


@pytest.mark.asyncio
async def test_overdue_request_can_be_returned(test_session, basketball, student, staff):
    service = RequestService(test_session)
    created = await service.create_request(borrow_payload(basketball.id, quantity=3, days=2), student)
    request_id = created.request.request_id
    await service.update_status(request_id, UpdateStatusRequest(status="approved"), staff)
    await OverdueService(test_session).mark_overdue_items(today=local_today() + timedelta(days=5))

    returned = await service.update_status(request_id, UpdateStatusRequest(status="returned"), staff)

    assert returned.status == "returned"
    assert await available(test_session, basketball) == 10


@pytest.mark.asyncio
async def test_pending_requests_are_not_flagged_overdue(test_session, basketball, student):
    await RequestService(test_session).create_request(borrow_payload(basketball.id, days=1), student)

    updated = await OverdueService(test_session).mark_overdue_items(today=local_today() + timedelta(days=10))

    assert updated == 0
