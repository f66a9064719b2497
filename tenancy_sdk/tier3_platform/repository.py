"""
tenancy_sdk.tier3_platform.repository
──────────────────────────────────────
Tenant-scoped repository guard. Every create/read/update/delete against a
tenant-owned record type goes through here; it is the only place a record's
tenant_id is read for authorization.

Rules:
    create      entity.tenant_id must equal the active tenant → MissingTenantId
                a caller-supplied id already in use            → ConflictError
                quota-bearing kinds are checked first          → QuotaExceeded
    get_by_id   foreign or missing record                      → None
    update      foreign or missing record                      → NotFoundOrForbidden
    delete      foreign or missing record                      → NotFoundOrForbidden
    get_all     only the caller's tenant, created_at descending

Reads and writes are separate store calls. A record deleted between the
ownership check and the write surfaces as NotFoundOrForbidden when the store
reports it missing; usage is recounted on every create, so two concurrent
creates can still overshoot a quota by one.
"""
from __future__ import annotations

from collections.abc import Sequence
from enum import Enum
from typing import Any

from tenancy_sdk.tier0_core.data import (
    Document,
    DocumentStore,
    Filter,
    OrderBy,
    duplicate_document,
    get_store,
)
from tenancy_sdk.tier0_core.errors import (
    MissingTenantId,
    NotFoundOrForbidden,
    QuotaExceeded,
    ValidationError,
)
from tenancy_sdk.tier0_core.identity import User
from tenancy_sdk.tier0_core.logging import get_logger
from tenancy_sdk.tier0_core.metrics import guard_operations, quota_blocks
from tenancy_sdk.tier1_runtime.clock import Clock, get_clock
from tenancy_sdk.tier2_reliability.audit import audit
from tenancy_sdk.tier3_platform.multi_tenancy import Tenant, TenantContext
from tenancy_sdk.tier3_platform.plans import ResourceKind, UNLIMITED
from tenancy_sdk.tier3_platform.quota import QuotaEvaluation, evaluate, upgrade_hint

log = get_logger(__name__)

SYSTEM_ACTOR = "system"

# Set by the guard; a patch may repeat them unchanged but never alter them.
_IMMUTABLE_FIELDS = frozenset({"id", "tenant_id", "created_at"})

_NEWEST_FIRST = OrderBy("created_at", descending=True)


class RecordKind(str, Enum):
    CLIENTS = "clients"
    VEHICLES = "vehicles"
    PRODUCTS = "products"
    JOBS = "jobs"
    CASH_MOVEMENTS = "cash_movements"
    APPOINTMENTS = "appointments"

    @property
    def collection(self) -> str:
        return self.value

    @property
    def quota(self) -> ResourceKind | None:
        """Plan-limited resource this kind counts against, if any."""
        return _QUOTA_RESOURCE.get(self)

    @property
    def counts_monthly(self) -> bool:
        return self.quota in _MONTHLY_RESOURCES


_QUOTA_RESOURCE = {
    RecordKind.CLIENTS: ResourceKind.CLIENTS,
    RecordKind.VEHICLES: ResourceKind.VEHICLES,
    RecordKind.JOBS: ResourceKind.JOBS,
}

_MONTHLY_RESOURCES = frozenset({ResourceKind.JOBS})


class TenantScopedRepository:
    """
    CRUD for one record kind, scoped by tenant id.

    Usage:
        clients = TenantScopedRepository(RecordKind.CLIENTS)
        record = await clients.create(ctx, {"tenant_id": ctx.tenant_id, "name": "Ana"})
        await clients.get_by_id(record["id"], ctx.tenant_id)
    """

    def __init__(
        self,
        kind: RecordKind,
        store: DocumentStore | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.kind = kind
        self._store = store or get_store()
        self._clock = clock or get_clock()

    @property
    def collection(self) -> str:
        return self.kind.collection

    # ── Writes ────────────────────────────────────────────────────────────────

    async def create(self, ctx: TenantContext, entity: dict[str, Any]) -> Document:
        """Insert *entity* into the active tenant. Returns the stored document."""
        active_id = ctx.tenant_id
        entity_tenant = entity.get("tenant_id")
        if ctx.tenant is None or not entity_tenant or entity_tenant != active_id:
            guard_operations(
                collection=self.collection, operation="create", outcome="missing_tenant"
            ).inc()
            log.error(
                "repository.missing_tenant_id",
                collection=self.collection,
                active_tenant_id=active_id,
                entity_tenant_id=entity_tenant,
            )
            await audit(
                ctx.user, f"{self.collection}.create", self.collection, entity.get("id") or "",
                tenant_id=active_id, outcome="failure",
            )
            raise MissingTenantId(
                self.collection,
                detail=(
                    f"{self.collection}: entity tenant_id {entity_tenant!r} "
                    f"does not match active tenant {active_id!r}"
                ),
            )

        requested_id = entity.get("id")
        if requested_id and await self._store.get_by_id(self.collection, requested_id) is not None:
            # Taken ids are refused alike whichever tenant holds them.
            guard_operations(
                collection=self.collection, operation="create", outcome="duplicate"
            ).inc()
            log.warning(
                "repository.duplicate_id", collection=self.collection, record_id=requested_id
            )
            await audit(
                ctx.user, f"{self.collection}.create", self.collection, requested_id,
                tenant_id=active_id, outcome="denied", metadata={"reason": "duplicate_id"},
            )
            raise duplicate_document(self.collection, requested_id)

        await self._enforce_quota(ctx, ctx.tenant)

        now = self._clock.timestamp()
        doc = {**entity, "created_at": now, "updated_at": now}
        doc["id"] = await self._store.insert(self.collection, doc)

        guard_operations(collection=self.collection, operation="create", outcome="ok").inc()
        log.info("repository.created", collection=self.collection, record_id=doc["id"])
        await audit(
            ctx.user, f"{self.collection}.create", self.collection, doc["id"],
            tenant_id=active_id,
        )
        return doc

    async def update(
        self,
        record_id: str,
        patch: dict[str, Any],
        tenant_id: str,
        *,
        actor: User | str = SYSTEM_ACTOR,
    ) -> Document:
        """Merge *patch* into a record owned by *tenant_id*. Returns the updated document."""
        existing = await self._owned(record_id, tenant_id, "update", actor)

        changed = sorted(
            k for k in _IMMUTABLE_FIELDS & patch.keys() if patch[k] != existing.get(k)
        )
        if changed:
            raise ValidationError(
                "immutable_field",
                "Some fields cannot be changed.",
                fields={k: "immutable" for k in changed},
            )

        changes = {k: v for k, v in patch.items() if k not in _IMMUTABLE_FIELDS}
        changes["updated_at"] = self._clock.timestamp()
        if not await self._store.update(self.collection, record_id, changes):
            # Deleted between the ownership check and the write.
            raise self._not_found(record_id, "update")

        guard_operations(collection=self.collection, operation="update", outcome="ok").inc()
        log.info("repository.updated", collection=self.collection, record_id=record_id)
        await audit(
            actor, f"{self.collection}.update", self.collection, record_id,
            tenant_id=tenant_id, metadata={"fields": sorted(changes)},
        )
        return {**existing, **changes}

    async def delete(
        self,
        record_id: str,
        tenant_id: str,
        *,
        actor: User | str = SYSTEM_ACTOR,
    ) -> None:
        """Delete a record owned by *tenant_id*."""
        await self._owned(record_id, tenant_id, "delete", actor)
        if not await self._store.delete(self.collection, record_id):
            raise self._not_found(record_id, "delete")

        guard_operations(collection=self.collection, operation="delete", outcome="ok").inc()
        log.info("repository.deleted", collection=self.collection, record_id=record_id)
        await audit(
            actor, f"{self.collection}.delete", self.collection, record_id,
            tenant_id=tenant_id,
        )

    # ── Reads ─────────────────────────────────────────────────────────────────

    async def get_by_id(self, record_id: str, tenant_id: str) -> Document | None:
        """The record, or None when it is missing or owned by another tenant."""
        if not tenant_id:
            return None
        doc = await self._store.get_by_id(self.collection, record_id)
        if doc is None or doc.get("tenant_id") != tenant_id:
            guard_operations(
                collection=self.collection, operation="get", outcome="not_found"
            ).inc()
            return None
        return doc

    async def get_all(self, tenant_id: str) -> list[Document]:
        """All records of *tenant_id*, newest first."""
        return await self.query(tenant_id)

    async def query(
        self,
        tenant_id: str,
        filters: Sequence[Filter] = (),
        order_by: OrderBy | None = _NEWEST_FIRST,
    ) -> list[Document]:
        """Run *filters* inside *tenant_id*. The tenant filter is always applied."""
        if not tenant_id:
            return []
        scoped = [Filter("tenant_id", "==", tenant_id), *filters]
        docs = await self._store.query(self.collection, scoped, order_by)
        # The store is trusted to filter, but a foreign record must never leak.
        return [d for d in docs if d.get("tenant_id") == tenant_id]

    async def count(self, tenant_id: str, since: float | None = None) -> int:
        """Number of records in *tenant_id*, optionally created at or after *since*."""
        filters = [Filter("created_at", ">=", since)] if since is not None else []
        return len(await self.query(tenant_id, filters, order_by=None))

    async def current_usage(self, tenant_id: str) -> int:
        """Usage counted against the quota: this month's records for monthly kinds."""
        since = self._clock.month_start().timestamp() if self.kind.counts_monthly else None
        return await self.count(tenant_id, since=since)

    async def quota_status(self, tenant: Tenant) -> QuotaEvaluation | None:
        """Live quota evaluation for this kind, or None when it has no quota."""
        resource = self.kind.quota
        if resource is None:
            return None
        return evaluate(resource, await self.current_usage(tenant.id), tenant.limit(resource))

    # ── Internals ─────────────────────────────────────────────────────────────

    async def _enforce_quota(self, ctx: TenantContext, tenant: Tenant) -> None:
        resource = self.kind.quota
        if resource is None or tenant.limit(resource) == UNLIMITED:
            return
        status = await self.quota_status(tenant)
        if status is None or not status.is_at_limit:
            return

        quota_blocks(resource=resource.value).inc()
        guard_operations(collection=self.collection, operation="create", outcome="quota").inc()
        log.warning(
            "quota.exceeded",
            tenant_id=tenant.id,
            resource=resource.value,
            current=status.current,
            maximum=status.maximum,
        )
        await audit(
            ctx.user, f"{self.collection}.create", self.collection, "",
            tenant_id=tenant.id, outcome="denied", metadata={"reason": "quota"},
        )
        raise QuotaExceeded(
            resource.value,
            status.current,
            status.maximum,
            required_plan=upgrade_hint(tenant, resource),
        )

    async def _owned(
        self, record_id: str, tenant_id: str, operation: str, actor: User | str
    ) -> Document:
        doc = await self.get_by_id(record_id, tenant_id)
        if doc is None:
            await audit(
                actor, f"{self.collection}.{operation}", self.collection, record_id,
                tenant_id=tenant_id, outcome="denied",
            )
            raise self._not_found(record_id, operation)
        return doc

    def _not_found(self, record_id: str, operation: str) -> NotFoundOrForbidden:
        guard_operations(
            collection=self.collection, operation=operation, outcome="not_found"
        ).inc()
        log.info(
            "repository.not_found", collection=self.collection,
            record_id=record_id, operation=operation,
        )
        return NotFoundOrForbidden(self.collection, record_id)


__sdk_export__ = {
    "exports": ["RecordKind", "TenantScopedRepository"],
    "description": "Tenant isolation and quota gating for tenant-owned records",
    "tier": "tier3_platform",
    "module": "repository",
}
