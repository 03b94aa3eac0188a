"""Principal extraction for requests that passed the upstream auth gateway.

Token issuance and verification live outside this service. The gateway
forwards the authenticated identity as ``X-User-Id`` / ``X-User-Role``; a
request without ``X-User-Id`` is anonymous.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, Request

from shortlinks.enums import Role

__all__ = ["Principal", "get_principal", "require_admin", "require_principal"]

USER_ID_HEADER = "x-user-id"
USER_ROLE_HEADER = "x-user-role"


@dataclass(frozen=True)
class Principal:
    id: str
    role: Role = Role.USER

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


async def get_principal(request: Request) -> Optional[Principal]:
    user_id = request.headers.get(USER_ID_HEADER)
    if not user_id:
        return None
    return Principal(id=user_id, role=Role.from_str(request.headers.get(USER_ROLE_HEADER)))


async def require_principal(principal: Optional[Principal] = Depends(get_principal)) -> Principal:
    if principal is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return principal


async def require_admin(principal: Principal = Depends(require_principal)) -> Principal:
    if not principal.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return principal
