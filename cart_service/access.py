"""Access gate: resolves the bearer token to a principal before any cart logic runs."""
from dataclasses import dataclass

from fastapi import Depends, Request

from shared.utils import ForbiddenException, require_auth, settings


@dataclass(frozen=True)
class Principal:
    user_id: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == settings.ADMIN_ROLE


async def get_principal(request: Request, payload: dict = Depends(require_auth)) -> Principal:
    principal = Principal(user_id=str(payload["sub"]), role=payload.get("role") or "user")
    request.state.user_id = principal.user_id
    return principal


async def require_admin(principal: Principal = Depends(get_principal)) -> Principal:
    if not principal.is_admin:
        raise ForbiddenException("Administrator role required")
    return principal
