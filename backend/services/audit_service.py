"""Persists lifecycle audit records."""

from __future__ import annotations

from backend.domain.models import ReservationAction
from backend.repository.data_repository import DataRepository


class AuditService:
    def __init__(self, repository: DataRepository) -> None:
        self._repository = repository

    async def record_audit(
        self,
        action: ReservationAction,
        actor_id: str,
        resource_id: str,
        outcome: str,
    ) -> None:
        await self._repository.record_audit_row(action, actor_id, resource_id, outcome)
