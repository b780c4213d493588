"""Audit log model."""

from __future__ import annotations

from enum import Enum
from typing import Any

from sqlalchemy import BigInteger, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from payroll_service.models.base import Base, BigIntId, JSONDocument, TimestampMixin


class EntityType(str, Enum):
    """Audited entity types."""

    USER_COMPENSATION = "user_compensation"
    PAYROLL_RUN = "payroll_run"


class ChangeAction(str, Enum):
    """Audited actions."""

    CREATE = "create"
    UPDATE = "update"


class AuditLog(Base, TimestampMixin):
    """Append-only record of a change made by an actor."""

    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    org_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    actor_user_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    diff_json: Mapped[dict[str, Any] | None] = mapped_column(JSONDocument, nullable=True)
    request_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    __table_args__ = (
        Index("ix_audit_log_entity", "org_id", "entity_type", "entity_id"),
    )
