"""Caller identity forwarded by the upstream gateway.

Authentication happens before requests reach this service; the gateway
sets X-User-Id and X-User-Role. These dependencies only read them.
"""
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException

ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class CurrentUser:
    id: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


async def get_current_user(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> CurrentUser:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return CurrentUser(id=x_user_id, role=(x_user_role or "user").lower())


async def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
