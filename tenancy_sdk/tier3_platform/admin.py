"""
tenancy_sdk.tier3_platform.admin
─────────────────────────────────
Platform console for super-admins: totals across every tenant, and the full
tenant and user lists. These reads span every tenant, so
every call first checks that the caller is a super-admin.

Usage:
    console = AdminService()
    stats = await console.stats(ctx)
    for summary in await console.all_tenants(ctx):
        print(summary.tenant.name, summary.owner_name)
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime

from tenancy_sdk.tier0_core.data import DocumentStore, get_store
from tenancy_sdk.tier0_core.errors import ForbiddenError
from tenancy_sdk.tier0_core.identity import User
from tenancy_sdk.tier0_core.logging import get_logger
from tenancy_sdk.tier2_reliability.audit import audit
from tenancy_sdk.tier3_platform.memberships import USERS_COLLECTION
from tenancy_sdk.tier3_platform.multi_tenancy import Tenant, TenantContext, TenantDirectory

log = get_logger(__name__)


@dataclass(frozen=True)
class AdminStats:
    total_users: int
    total_tenants: int
    active_tenants: int
    inactive_tenants: int


@dataclass(frozen=True)
class TenantSummary:
    tenant: Tenant
    created_at: datetime | None = None
    owner_name: str | None = None
    owner_email: str | None = None


@dataclass(frozen=True)
class UserSummary:
    user: User
    tenant_names: tuple[str, ...] = ()


class AdminService:
    def __init__(
        self,
        store: DocumentStore | None = None,
        directory: TenantDirectory | None = None,
    ) -> None:
        self._store = store or get_store()
        self._directory = directory or TenantDirectory(self._store)

    async def stats(self, ctx: TenantContext) -> AdminStats:
        await self._require_super_admin(ctx, "stats")
        tenants, users = await asyncio.gather(self._directory.list_all(), self._users())
        active = sum(1 for tenant, _ in tenants if tenant.active)
        stats = AdminStats(
            total_users=len(users),
            total_tenants=len(tenants),
            active_tenants=active,
            inactive_tenants=len(tenants) - active,
        )
        log.info("admin.stats", user_id=ctx.user.id, tenants=stats.total_tenants, users=stats.total_users)
        return stats

    async def all_tenants(self, ctx: TenantContext) -> list[TenantSummary]:
        """Every tenant, newest first, with its owner's name and email when known."""
        await self._require_super_admin(ctx, "tenants")
        tenants, users = await asyncio.gather(self._directory.list_all(), self._users())
        by_id = {user.id: user for user in users}
        summaries = []
        for tenant, created_at in tenants:
            owner = by_id.get(tenant.owner_id) if tenant.owner_id else None
            summaries.append(TenantSummary(
                tenant=tenant,
                created_at=created_at,
                owner_name=(owner.display_name or owner.email) if owner else None,
                owner_email=owner.email if owner else None,
            ))
        return summaries

    async def all_users(self, ctx: TenantContext) -> list[UserSummary]:
        """Every user ordered by email, with the names of the tenants they belong to."""
        await self._require_super_admin(ctx, "users")
        tenants, users = await asyncio.gather(self._directory.list_all(), self._users())
        names = {tenant.id: tenant.name for tenant, _ in tenants}
        return [
            UserSummary(
                user=user,
                # Memberships of deleted tenants have no name to show.
                tenant_names=tuple(
                    names[m.tenant_id] for m in user.memberships if m.tenant_id in names
                ),
            )
            for user in sorted(users, key=lambda u: (u.email.lower(), u.id))
        ]

    # ── Internals ─────────────────────────────────────────────────────────────

    async def _users(self) -> list[User]:
        return [User.from_document(doc) for doc in await self._store.query(USERS_COLLECTION)]

    async def _require_super_admin(self, ctx: TenantContext, view: str) -> None:
        if ctx.is_super_admin:
            return
        log.warning("admin.denied", user_id=ctx.user.id, view=view)
        await audit(
            ctx.user, f"admin.{view}", "platform", "",
            tenant_id=ctx.tenant_id, outcome="denied",
        )
        raise ForbiddenError(
            "forbidden",
            "You do not have permission to perform this action.",
            detail=f"admin.{view} requires a super-admin, user {ctx.user.id}",
        )


__sdk_export__ = {
    "exports": ["AdminService", "AdminStats", "TenantSummary", "UserSummary"],
    "description": "Super-admin console: platform totals and cross-tenant listings",
    "tier": "tier3_platform",
    "module": "admin",
}
