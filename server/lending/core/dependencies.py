"""FastAPI dependencies for bearer authentication and role checks."""

from typing import Callable, Optional
from fastapi import Depends, Header
import jwt
from jwt import ExpiredSignatureError, PyJWTError

from .config import settings
from .exceptions import AuthenticationError, AuthorizationError


ROLE_STUDENT = "student"
ROLE_STAFF = "staff"
ROLE_ADMIN = "admin"

# Highest privilege first
ROLE_PRIORITY = (ROLE_ADMIN, ROLE_STAFF, ROLE_STUDENT)


def primary_role(roles: list[str]) -> str:
    """Return the most privileged known role, defaulting to student."""
    for role in ROLE_PRIORITY:
        if role in roles:
            return role
    return ROLE_STUDENT


async def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization")
) -> dict:
    """
    Authentication dependency that validates Bearer tokens.

    Token issuance lives outside this service; only the claims it needs are
    read here: ``sub``, ``username``, ``email`` and ``roles``.

    Args:
        authorization: Authorization header with Bearer token

    Returns:
        dict: User information from validated token

    Raises:
        AuthenticationError: If token is invalid or missing
    """
    if not authorization:
        raise AuthenticationError(detail="Authorization header missing")

    try:
        scheme, token = authorization.split()
    except ValueError:
        raise AuthenticationError(detail="Invalid authorization header format")

    if scheme.lower() != "bearer":
        raise AuthenticationError(detail="Invalid authentication scheme")

    try:
        payload = jwt.decode(
            token,
            settings.bearer_token_secret,
            algorithms=["HS256"]
        )
    except ExpiredSignatureError:
        raise AuthenticationError(detail="Token has expired")
    except PyJWTError as e:
        raise AuthenticationError(detail=f"Token validation failed: {str(e)}")

    user_id = payload.get("sub")
    if user_id is None:
        raise AuthenticationError(detail="Invalid token payload")

    roles = payload.get("roles") or []
    if isinstance(roles, str):
        roles = [roles]

    return {
        "user_id": str(user_id),
        "username": payload.get("username"),
        "email": payload.get("email"),
        "roles": roles,
        "role": primary_role(roles),
    }


def require_roles(*allowed: str) -> Callable:
    """Build a dependency that admits only callers holding one of ``allowed``."""

    async def dependency(user: dict = Depends(get_current_user)) -> dict:
        if not set(user["roles"]) & set(allowed):
            raise AuthorizationError(
                detail="You do not have permission to perform this action",
                required_permissions=list(allowed),
            )
        return user

    return dependency


RequiredAuth = Depends(get_current_user)
StaffAuth = Depends(require_roles(ROLE_STAFF, ROLE_ADMIN))
AdminAuth = Depends(require_roles(ROLE_ADMIN))
