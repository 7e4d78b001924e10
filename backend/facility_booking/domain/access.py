from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

SYSTEM_ADMIN_ROLE = "system_admin"


@dataclass(frozen=True)
class Actor:
    id: str
    role: str = "user"
    email: Optional[str] = None
    display_name: Optional[str] = None

    @property
    def is_system_admin(self) -> bool:
        return self.role == SYSTEM_ADMIN_ROLE


class AccessPolicy(Protocol):
    """Opaque permission oracle. One shared instance is injected everywhere."""

    async def has_stable_access(self, stable_id: str, actor: Actor) -> bool: ...

    async def has_stable_management_access(self, stable_id: str, actor: Actor) -> bool: ...
