"""
tenancy_sdk.tier2_reliability.audit
────────────────────────────────────
Append-only audit trail for tenant-scoped mutations: who did what, in which
tenant, to which record, and whether it went through.

Backend: structured log (stdout) or DB table (append-only).
Configure via: TENANCY_AUDIT_BACKEND=log|db|none
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import JSON, Float, String
from sqlalchemy.orm import Mapped, mapped_column

from tenancy_sdk.tier0_core.config import get_config
from tenancy_sdk.tier0_core.data import Base, get_session
from tenancy_sdk.tier0_core.identity import User
from tenancy_sdk.tier0_core.ids import new_id
from tenancy_sdk.tier0_core.logging import get_logger

log = get_logger("tenancy_sdk.audit")


@dataclass(frozen=True)
class AuditRecord:
    """Immutable audit record. Never update or delete these."""
    id: str = field(default_factory=new_id)
    timestamp: float = field(default_factory=time.time)
    actor_id: str = ""
    tenant_id: str | None = None
    action: str = ""            # e.g. "clients.create", "members.remove"
    resource_type: str = ""     # collection name
    resource_id: str = ""
    outcome: str = "success"    # "success" | "failure" | "denied"
    metadata: dict[str, Any] = field(default_factory=dict)


class AuditRow(Base):
    __tablename__ = "audit_log"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    timestamp: Mapped[float] = mapped_column(Float, nullable=False)
    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    tenant_id: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)
    action: Mapped[str] = mapped_column(String(128), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(64), nullable=False)
    resource_id: Mapped[str] = mapped_column(String(64), nullable=False)
    outcome: Mapped[str] = mapped_column(String(16), nullable=False)
    extra: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)


async def audit(
    actor: User | str,
    action: str,
    resource_type: str,
    resource_id: str,
    *,
    tenant_id: str | None = None,
    outcome: str = "success",
    metadata: dict | None = None,
) -> AuditRecord:
    """
    Write an audit record. Called by the repository guard and the
    membership service for every consequential action.

    Usage:
        await audit(
            actor=user,
            action="clients.delete",
            resource_type="clients",
            resource_id=record_id,
            tenant_id=tenant_id,
        )
    """
    record = AuditRecord(
        actor_id=actor.id if isinstance(actor, User) else actor,
        tenant_id=tenant_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        outcome=outcome,
        metadata=metadata or {},
    )

    backend = get_config().audit_backend.lower()
    if backend == "log":
        _write_log(record)
    elif backend == "db":
        await _write_db(record)

    return record


def _write_log(record: AuditRecord) -> None:
    log.info(
        "audit",
        audit_id=record.id,
        actor_id=record.actor_id,
        tenant_id=record.tenant_id,
        action=record.action,
        resource_type=record.resource_type,
        resource_id=record.resource_id,
        outcome=record.outcome,
        metadata=record.metadata,
        timestamp=record.timestamp,
    )


async def _write_db(record: AuditRecord) -> None:
    """Insert into audit_log. The table must have no UPDATE/DELETE grants."""
    async with get_session() as session:
        session.add(AuditRow(
            id=record.id,
            timestamp=record.timestamp,
            actor_id=record.actor_id,
            tenant_id=record.tenant_id,
            action=record.action,
            resource_type=record.resource_type,
            resource_id=record.resource_id,
            outcome=record.outcome,
            extra=record.metadata,
        ))


__sdk_export__ = {
    "exports": ["audit", "AuditRecord"],
    "description": "Append-only audit trail for tenant-scoped mutations",
    "tier": "tier2_reliability",
    "module": "audit",
}
