"""Actor resolution and role checks.

Roles are always re-read from storage at call time; nothing here caches a
role between operations.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from pms_engine.models import AppUser
from pms_engine.services.errors import ForbiddenError, NotFoundError


class Role(str, Enum):
    """Station user roles."""

    STAFF = "staff"
    MANAGER = "manager"
    DIRECTOR = "director"


class Capability(str, Enum):
    """Operations gated by role."""

    VIEW = "view"
    RECORD_READINGS = "record_readings"
    RUN_CALCULATIONS = "run_calculations"
    CONFIGURE_PUMPS = "configure_pumps"
    APPROVE_CALCULATIONS = "approve_calculations"
    OVERRIDE_CORRECTIONS = "override_corrections"


_STAFF_CAPABILITIES = frozenset(
    {Capability.VIEW, Capability.RECORD_READINGS, Capability.RUN_CALCULATIONS}
)
_DIRECTOR_CAPABILITIES = frozenset({Capability.VIEW, Capability.RUN_CALCULATIONS})


def role_allows(role: Role, capability: Capability) -> bool:
    """Check whether a role grants a capability."""
    if role is Role.MANAGER:
        return True
    elif role is Role.STAFF:
        return capability in _STAFF_CAPABILITIES
    elif role is Role.DIRECTOR:
        # Directors oversee but never touch meter data
        return capability in _DIRECTOR_CAPABILITIES
    raise ValueError(f"Unhandled role: {role!r}")


@dataclass(frozen=True)
class Actor:
    """The user performing an operation, as resolved for this call."""

    user_id: UUID
    role: Role
    station_id: UUID | None = None

    @property
    def is_manager(self) -> bool:
        return self.role is Role.MANAGER

    def require(self, capability: Capability) -> None:
        """Raise ForbiddenError unless the actor's role grants the capability."""
        if not role_allows(self.role, capability):
            required = Role.MANAGER.value
            if capability in _STAFF_CAPABILITIES:
                required = Role.STAFF.value
            raise ForbiddenError(
                f"Role '{self.role.value}' may not perform '{capability.value}'",
                required_role=required,
                actual_role=self.role.value,
            )


class ActorResolver:
    """Resolve user ids to actors against current stored state."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def resolve(self, user_id: UUID | str | None) -> Actor:
        """Resolve the calling user, treating unknown/inactive users as unauthenticated."""
        if user_id is None:
            raise ForbiddenError("Authentication required", reason="unauthenticated")
        try:
            user_uuid = user_id if isinstance(user_id, UUID) else UUID(str(user_id))
        except ValueError:
            raise ForbiddenError("Authentication required", reason="unauthenticated")

        user = await self.session.get(AppUser, user_uuid, populate_existing=True)
        if user is None or not user.is_active:
            raise ForbiddenError("Authentication required", reason="unauthenticated")
        return Actor(user_id=user.user_id, role=Role(user.role), station_id=user.station_id)

    async def require_manager(self, user_id: UUID | str) -> Actor:
        """Re-check that a user currently holds the manager role.

        Used for override authorization, where the named manager may differ
        from the caller and the role may have changed since login.
        """
        try:
            user_uuid = user_id if isinstance(user_id, UUID) else UUID(str(user_id))
        except ValueError:
            raise NotFoundError("manager", user_id)

        user = await self.session.get(AppUser, user_uuid, populate_existing=True)
        if user is None:
            raise NotFoundError("manager", user_id)

        role = Role(user.role)
        if role is not Role.MANAGER or not user.is_active:
            raise ForbiddenError(
                "Override requires an active manager",
                required_role=Role.MANAGER.value,
                actual_role=role.value,
                manager_id=str(user.user_id),
            )
        return Actor(user_id=user.user_id, role=role, station_id=user.station_id)

