"""Audit trail writer."""

from __future__ import annotations

import json
import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_service.models import AuditLog, ChangeAction, EntityType

logger = logging.getLogger(__name__)


class AuditService:
    """Appends audit entries to the caller's session.

    Entries are flushed with the primary write and committed in the same
    transaction, so a change is never persisted without its audit entry.
    """

    def __init__(self, session: AsyncSession, request_id: str | None = None):
        self.session = session
        self.request_id = request_id

    async def record(
        self,
        org_id: int,
        actor_user_id: int | None,
        entity_type: EntityType,
        entity_id: int,
        action: ChangeAction,
        diff: dict[str, Any] | None = None,
    ) -> AuditLog:
        """Record an audit entry for a change."""
        entry = AuditLog(
            org_id=org_id,
            actor_user_id=actor_user_id,
            entity_type=entity_type.value,
            entity_id=entity_id,
            action=action.value,
            diff_json=_json_safe(diff) if diff is not None else None,
            request_id=self.request_id,
        )
        self.session.add(entry)
        await self.session.flush()

        logger.info(
            "audit %s %s:%s by %s",
            action.value,
            entity_type.value,
            entity_id,
            actor_user_id,
        )
        return entry

    async def list_for_entity(
        self, org_id: int, entity_type: EntityType, entity_id: int
    ) -> list[AuditLog]:
        """Audit entries for one entity, oldest first."""
        result = await self.session.execute(
            select(AuditLog)
            .where(
                AuditLog.org_id == org_id,
                AuditLog.entity_type == entity_type.value,
                AuditLog.entity_id == entity_id,
            )
            .order_by(AuditLog.id.asc())
        )
        return list(result.scalars().all())


def _json_safe(data: dict[str, Any]) -> dict[str, Any]:
    # Dates and Decimals become strings
    return json.loads(json.dumps(data, sort_keys=True, default=str))
