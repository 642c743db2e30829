# backend/app/api/dependencies/auth.py
"""
Actor dependencies.

Authentication happens upstream of this service; the caller's identity and
role arrive as trusted ``X-Actor-Id`` / ``X-Actor-Role`` headers.
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from ...core.enums import Actor, RoleName


def get_current_actor(
    x_actor_id: Optional[str] = Header(None, alias="X-Actor-Id"),
    x_actor_role: Optional[str] = Header(None, alias="X-Actor-Role"),
) -> Actor:
    """Resolve the acting user from request headers."""
    actor_id = (x_actor_id or "").strip()
    if not actor_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"message": "X-Actor-Id header is required", "code": "ACTOR_REQUIRED"},
        )
    try:
        role = RoleName((x_actor_role or RoleName.CUSTOMER.value).strip().lower())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": f"Unknown actor role: {x_actor_role}", "code": "INVALID_ROLE"},
        )
    return Actor(id=actor_id, role=role)


def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    """Dependency for admin-only endpoints."""
    if not actor.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"message": "Admin privilege required", "code": "FORBIDDEN"},
        )
    return actor
