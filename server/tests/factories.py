"""Shared test data: users, tokens and request payloads."""

from datetime import timedelta

import jwt

from lending.core.config import settings
from lending.core.timeutils import local_today
from lending.schemas.borrow_request import CreateBorrowRequest, LineItemInput

STUDENT = {
    "user_id": "student-1",
    "username": "Sam Student",
    "email": "sam@example.edu",
    "roles": ["student"],
    "role": "student",
}
OTHER_STUDENT = {
    "user_id": "student-2",
    "username": "Olive Other",
    "email": "olive@example.edu",
    "roles": ["student"],
    "role": "student",
}
STAFF = {
    "user_id": "staff-1",
    "username": "Stef Staff",
    "email": "stef@example.edu",
    "roles": ["staff"],
    "role": "staff",
}
ADMIN = {
    "user_id": "admin-1",
    "username": "Ada Admin",
    "email": "ada@example.edu",
    "roles": ["admin"],
    "role": "admin",
}


def auth_headers(user: dict) -> dict:
    """Bearer header for a user, signed with the configured secret."""
    token = jwt.encode(
        {
            "sub": user["user_id"],
            "username": user["username"],
            "email": user["email"],
            "roles": user["roles"],
        },
        settings.bearer_token_secret,
        algorithm="HS256",
    )
    return {"Authorization": f"Bearer {token}"}


def borrow_payload(equipment_id, quantity: int = 3, days: int = 7, borrow_in: int = 0,
                   reason: str = "Practice session for the team") -> CreateBorrowRequest:
    """Single-item borrow request starting ``borrow_in`` days from today."""
    borrow_date = local_today() + timedelta(days=borrow_in)
    return CreateBorrowRequest(
        items=[LineItemInput(
            equipment=str(equipment_id),
            quantity=quantity,
            return_date=borrow_date + timedelta(days=days),
        )],
        borrow_date=borrow_date,
        reason=reason,
    )


def borrow_body(equipment_id, quantity: int = 3, days: int = 7, borrow_in: int = 0) -> dict:
    """JSON body for ``POST /requests`` in the wire format."""
    return borrow_payload(equipment_id, quantity, days, borrow_in).model_dump(mode="json", by_alias=True)
