"""Role-based authorization backed by the Users table."""

from __future__ import annotations

from typing import Optional

from backend.domain.models import ReservationAction
from backend.repository.data_repository import DataRepository
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

ADMIN_ROLE = "admin"
FACULTY_ROLE = "faculty"

# Faculty may only act on their own requests; admins may do anything.
_FACULTY_SELF_ACTIONS = frozenset({ReservationAction.CREATE, ReservationAction.CANCEL})


class RoleAuthorizationService:
    """Answers the `Authorizer` port from stored user roles."""

    def __init__(
        self,
        repository: DataRepository,
        settings: Optional[Settings] = None,
    ) -> None:
        self._repository = repository
        self._settings = settings or get_settings()

    def is_allowed(
        self,
        role: Optional[str],
        actor_id: str,
        action: ReservationAction,
        resource_owner_id: str,
    ) -> bool:
        if actor_id == self._settings.system_actor_id:
            return action is ReservationAction.EXPIRE
        if role == ADMIN_ROLE:
            return True
        if role == FACULTY_ROLE:
            return action in _FACULTY_SELF_ACTIONS and actor_id == resource_owner_id
        return False

    async def authorize(
        self,
        actor_id: str,
        action: ReservationAction,
        resource_owner_id: str,
    ) -> bool:
        role = await self._repository.get_user_role_async(actor_id)
        allowed = self.is_allowed(role, actor_id, action, resource_owner_id)
        if not allowed:
            logger.info(
                "Authorization denied | actor_id=%s | role=%s | action=%s | owner_id=%s",
                actor_id,
                role,
                action.value,
                resource_owner_id,
            )
        return allowed
