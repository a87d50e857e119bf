from __future__ import annotations

from dataclasses import dataclass, field

from fastapi import HTTPException, status


@dataclass
class ActorUser:
    user_id: str
    tenant_id: str | None
    permissions: set[str] = field(default_factory=set)
    correlation_id: str | None = None


def require_tenant(actor_user: ActorUser) -> str:
    if not actor_user.tenant_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="tenant context is required")
    return actor_user.tenant_id
