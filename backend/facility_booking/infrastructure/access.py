from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.access import AccessPolicy, Actor
from ..models import MemberStatus, OrganizationMember, Stable

MANAGEMENT_ROLES = frozenset({"administrator", "stable_manager"})


class SqlAlchemyAccessPolicy(AccessPolicy):
    """Stable owner, system admin, or active organization member with stable access."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def has_stable_access(self, stable_id: str, actor: Actor) -> bool:
        if actor.is_system_admin:
            return True
        stable = await self.session.get(Stable, stable_id)
        if stable is None:
            return False
        if stable.owner_id == actor.id:
            return True
        member = await self._active_member(stable, actor)
        return member is not None and _covers_stable(member, stable_id)

    async def has_stable_management_access(self, stable_id: str, actor: Actor) -> bool:
        if actor.is_system_admin:
            return True
        stable = await self.session.get(Stable, stable_id)
        if stable is None:
            return False
        if stable.owner_id == actor.id:
            return True
        member = await self._active_member(stable, actor)
        return member is not None and member.role in MANAGEMENT_ROLES and _covers_stable(member, stable_id)

    async def _active_member(self, stable: Stable, actor: Actor) -> OrganizationMember | None:
        if not stable.organization_id:
            return None
        member = await self.session.get(OrganizationMember, f"{actor.id}_{stable.organization_id}")
        if member is None or member.status != MemberStatus.ACTIVE:
            return None
        return member


def _covers_stable(member: OrganizationMember, stable_id: str) -> bool:
    if member.stable_access == "all":
        return True
    if member.stable_access == "specific":
        return stable_id in (member.assigned_stable_ids or [])
    return False
