"""FastAPI dependencies for the caller identity.

This service does not authenticate. A trusted gateway in front of it
verifies the session and forwards the result in headers:
- X-User-Id: stable user identifier (absent for anonymous callers)
- X-User-Role: ``user`` or ``admin``
- X-User-Name: display name, URL-encoded
"""

from typing import Annotated
from urllib.parse import unquote

from fastapi import Depends, HTTPException, Request, status

from src.auth.permissions import UserRole, has_permission, parse_role
from src.auth.schemas import Identity
from src.core.context import set_user_id


USER_ID_HEADER = "X-User-Id"
USER_ROLE_HEADER = "X-User-Role"
USER_NAME_HEADER = "X-User-Name"


async def get_identity_optional(request: Request) -> Identity | None:
    """Get the caller identity if the gateway supplied one.

    Returns:
        Identity or None for anonymous callers
    """
    user_id = (request.headers.get(USER_ID_HEADER) or "").strip()
    if not user_id:
        return None

    display_name = unquote(request.headers.get(USER_NAME_HEADER) or "").strip()[:100]
    identity = Identity(
        user_id=user_id,
        role=parse_role(request.headers.get(USER_ROLE_HEADER)),
        display_name=display_name or None,
    )

    # Set user_id in context for logging
    set_user_id(identity.user_id)
    return identity


async def get_identity(
    identity: Annotated[Identity | None, Depends(get_identity_optional)],
) -> Identity:
    """Get the caller identity, rejecting anonymous callers.

    Raises:
        HTTPException(401): If no identity was supplied
    """
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Sign in to interact",
        )
    return identity


def require_permission(required_role: UserRole):
    """Dependency factory requiring at least ``required_role``.

    Usage:
        @router.post("/repair", dependencies=[Depends(require_permission(UserRole.ADMIN))])
    """

    async def role_checker(
        identity: Annotated[Identity, Depends(get_identity)],
    ) -> Identity:
        if not has_permission(identity.role, required_role):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return identity

    return role_checker


def require_admin():
    """Require ADMIN role."""
    return require_permission(UserRole.ADMIN)


# Type aliases for dependency injection
OptionalIdentity = Annotated[Identity | None, Depends(get_identity_optional)]
CurrentIdentity = Annotated[Identity, Depends(get_identity)]
AdminIdentity = Annotated[Identity, Depends(require_admin())]
