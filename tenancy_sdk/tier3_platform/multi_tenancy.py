"""
tenancy_sdk.tier3_platform.multi_tenancy
─────────────────────────────────────────
Tenant model, the explicit TenantContext threaded through every
authorization and query call, and active-tenant resolution.

Resolution never raises for authorization outcomes: it returns a
TenantResolution whose status is one of LOADING, RESOLVED, NO_TENANT,
NOT_AUTHORIZED or NOT_FOUND. Callers that prefer exceptions use
TenantResolution.require().

Default tenant: with no tenant requested, the user lands in the tenant of
their earliest membership by joined_at; ties keep membership order.
Super-admins may resolve any tenant id without a membership.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from tenancy_sdk.tier0_core.data import DocumentStore, OrderBy, get_store
from tenancy_sdk.tier0_core.errors import NotFoundError, TenantNotAuthorized
from tenancy_sdk.tier0_core.identity import Membership, Role, User
from tenancy_sdk.tier0_core.ids import new_id
from tenancy_sdk.tier0_core.logging import bind_context, get_logger
from tenancy_sdk.tier1_runtime.clock import Clock, get_clock
from tenancy_sdk.tier3_platform.plans import (
    PLAN_CATALOG,
    Feature,
    Module,
    PlanTier,
    ResourceKind,
    UNLIMITED,
)

log = get_logger(__name__)

TENANTS_COLLECTION = "tenants"

T = TypeVar("T")


# ── Domain model ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ResourceCounter:
    current: int
    maximum: int

    @property
    def is_unlimited(self) -> bool:
        return self.maximum == UNLIMITED


@dataclass(frozen=True)
class TenantConfig:
    modules: frozenset[Module] = frozenset()
    features: frozenset[Feature] = frozenset()
    limits: dict[ResourceKind, int] = field(default_factory=dict)

    def __hash__(self) -> int:
        return hash((self.modules, self.features, frozenset(self.limits.items())))

    @classmethod
    def for_plan(cls, plan: PlanTier) -> "TenantConfig":
        defaults = PLAN_CATALOG[plan]
        return cls(
            modules=defaults.modules,
            features=defaults.features,
            limits=dict(defaults.limits),
        )


@dataclass(frozen=True)
class Tenant:
    id: str
    name: str
    plan: PlanTier
    config: TenantConfig
    active: bool = True
    owner_id: str | None = None
    usage: dict[ResourceKind, int] = field(default_factory=dict)

    def __hash__(self) -> int:
        # Equal tenants always share an id.
        return hash(self.id)

    def limit(self, kind: ResourceKind) -> int:
        # A kind the tenant was never granted has no quota at all.
        return self.config.limits.get(kind, 0)

    @property
    def resource_counters(self) -> dict[ResourceKind, ResourceCounter]:
        return {
            kind: ResourceCounter(self.usage.get(kind, 0), self.limit(kind))
            for kind in ResourceKind
        }

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "plan": self.plan.value,
            "active": self.active,
            "owner_id": self.owner_id,
            "config": {
                "modules": sorted(m.value for m in self.config.modules),
                "features": sorted(f.value for f in self.config.features),
                "limits": {k.value: v for k, v in self.config.limits.items()},
            },
            "usage": {k.value: v for k, v in self.usage.items()},
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "Tenant":
        config = doc.get("config") or {}
        return cls(
            id=doc["id"],
            name=doc.get("name", ""),
            plan=PlanTier(doc.get("plan", PlanTier.TRIAL.value)),
            active=bool(doc.get("active", True)),
            owner_id=doc.get("owner_id"),
            config=TenantConfig(
                modules=frozenset(Module(m) for m in config.get("modules", [])),
                features=frozenset(Feature(f) for f in config.get("features", [])),
                limits={ResourceKind(k): int(v) for k, v in (config.get("limits") or {}).items()},
            ),
            usage={ResourceKind(k): int(v) for k, v in (doc.get("usage") or {}).items()},
        )


@dataclass(frozen=True)
class TenantContext:
    """
    Who is acting, in which tenant, with which role. Passed explicitly into
    every policy and repository call; there is no ambient active tenant.
    """
    user: User
    tenant: Tenant | None = None
    loading: bool = False

    @property
    def tenant_id(self) -> str | None:
        return self.tenant.id if self.tenant is not None else None

    @property
    def membership(self) -> Membership | None:
        if self.tenant is None:
            return None
        return self.user.membership_for(self.tenant.id)

    @property
    def role(self) -> Role | None:
        membership = self.membership
        return membership.role if membership is not None else None

    @property
    def is_super_admin(self) -> bool:
        return self.user.is_super_admin

    def bind(self) -> None:
        """Bind user/tenant/role to the structlog context for this task."""
        bind_context(
            user_id=self.user.id,
            tenant_id=self.tenant_id,
            role=self.role.value if self.role is not None else None,
        )


# ── Tenant directory ──────────────────────────────────────────────────────────

class TenantDirectory:
    """Tenant documents in the store. Billing/admin writes go through here."""

    def __init__(self, store: DocumentStore | None = None, clock: Clock | None = None) -> None:
        self._store = store or get_store()
        self._clock = clock or get_clock()

    async def create_tenant(
        self,
        name: str,
        plan: PlanTier = PlanTier.TRIAL,
        owner_id: str | None = None,
        *,
        tenant_id: str | None = None,
        config: TenantConfig | None = None,
    ) -> Tenant:
        tenant = Tenant(
            id=tenant_id or new_id(),
            name=name,
            plan=plan,
            config=config or TenantConfig.for_plan(plan),
            owner_id=owner_id,
        )
        doc = tenant.to_document()
        doc["created_at"] = self._clock.timestamp()
        await self._store.insert(TENANTS_COLLECTION, doc)
        log.info("tenant.created", tenant_id=tenant.id, plan=plan.value)
        return tenant

    async def get(self, tenant_id: str) -> Tenant | None:
        doc = await self._store.get_by_id(TENANTS_COLLECTION, tenant_id)
        return Tenant.from_document(doc) if doc is not None else None

    async def list_all(self) -> list[tuple[Tenant, datetime | None]]:
        """Every tenant with its creation time, newest first."""
        docs = await self._store.query(
            TENANTS_COLLECTION, order_by=OrderBy("created_at", descending=True)
        )
        return [
            (
                Tenant.from_document(doc),
                datetime.fromtimestamp(doc["created_at"], tz=timezone.utc)
                if doc.get("created_at") is not None else None,
            )
            for doc in docs
        ]

    async def change_plan(self, tenant_id: str, plan: PlanTier) -> Tenant:
        """Move a tenant to *plan*, replacing modules, features and limits with its defaults."""
        tenant = await self.get(tenant_id)
        if tenant is None:
            raise NotFoundError(user_message="Organization not found.", detail=f"tenant {tenant_id}")
        updated = replace(tenant, plan=plan, config=TenantConfig.for_plan(plan))
        doc = updated.to_document()
        await self._store.update(
            TENANTS_COLLECTION, tenant_id, {"plan": doc["plan"], "config": doc["config"]}
        )
        log.info("tenant.plan_changed", tenant_id=tenant_id, old=tenant.plan.value, new=plan.value)
        return updated

    async def deactivate(self, tenant_id: str) -> bool:
        found = await self._store.update(TENANTS_COLLECTION, tenant_id, {"active": False})
        if found:
            log.info("tenant.deactivated", tenant_id=tenant_id)
        return found

    async def save_usage(self, tenant_id: str, usage: dict[ResourceKind, int]) -> None:
        """Persist a usage snapshot. Counts are advisory; the guard recounts on write."""
        await self._store.update(
            TENANTS_COLLECTION, tenant_id, {"usage": {k.value: v for k, v in usage.items()}}
        )


# ── Resolution ────────────────────────────────────────────────────────────────

class ResolutionStatus(str, Enum):
    LOADING = "loading"
    RESOLVED = "resolved"
    NO_TENANT = "no_tenant"
    NOT_AUTHORIZED = "not_authorized"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class TenantResolution:
    status: ResolutionStatus
    tenant: Tenant | None = None
    requested_tenant_id: str | None = None

    @classmethod
    def pending(cls, requested_tenant_id: str | None = None) -> "TenantResolution":
        return cls(ResolutionStatus.LOADING, requested_tenant_id=requested_tenant_id)

    @property
    def loading(self) -> bool:
        return self.status is ResolutionStatus.LOADING

    @property
    def ok(self) -> bool:
        return self.status is ResolutionStatus.RESOLVED

    def require(self) -> Tenant:
        """Return the resolved tenant or raise the matching error."""
        if self.status is ResolutionStatus.RESOLVED and self.tenant is not None:
            return self.tenant
        if self.status is ResolutionStatus.NOT_AUTHORIZED:
            raise TenantNotAuthorized(self.requested_tenant_id or "")
        raise NotFoundError(
            user_message="No organization is available.",
            detail=f"tenant resolution ended in {self.status.value}",
        )


def default_membership(user: User) -> Membership | None:
    """Earliest membership by joined_at; sorted() is stable so ties keep list order."""
    if not user.memberships:
        return None
    return sorted(user.memberships, key=lambda m: m.joined_at)[0]


class TenantResolver:
    def __init__(self, directory: TenantDirectory | None = None) -> None:
        self._directory = directory or TenantDirectory()

    async def resolve(
        self, user: User, requested_tenant_id: str | None = None
    ) -> TenantResolution:
        if requested_tenant_id is not None:
            if not user.is_member_of(requested_tenant_id) and not user.is_super_admin:
                log.warning(
                    "tenant.not_authorized",
                    user_id=user.id,
                    requested_tenant_id=requested_tenant_id,
                )
                return TenantResolution(
                    ResolutionStatus.NOT_AUTHORIZED, requested_tenant_id=requested_tenant_id
                )
            tenant_id = requested_tenant_id
        else:
            membership = default_membership(user)
            if membership is None:
                log.info("tenant.none_available", user_id=user.id)
                return TenantResolution(ResolutionStatus.NO_TENANT)
            tenant_id = membership.tenant_id

        tenant = await self._directory.get(tenant_id)
        if tenant is None or (not tenant.active and not user.is_super_admin):
            log.warning("tenant.not_found", user_id=user.id, tenant_id=tenant_id)
            return TenantResolution(
                ResolutionStatus.NOT_FOUND, requested_tenant_id=requested_tenant_id
            )

        log.info(
            "tenant.resolved",
            user_id=user.id,
            tenant_id=tenant.id,
            plan=tenant.plan.value,
            via_super_admin=not user.is_member_of(tenant.id),
        )
        return TenantResolution(
            ResolutionStatus.RESOLVED, tenant=tenant, requested_tenant_id=requested_tenant_id
        )


async def resolve_active_tenant(
    user: User,
    requested_tenant_id: str | None = None,
    *,
    directory: TenantDirectory | None = None,
) -> TenantResolution:
    """Resolve the active tenant for *user* against the default store."""
    return await TenantResolver(directory).resolve(user, requested_tenant_id)


# ── Session ───────────────────────────────────────────────────────────────────

class TenantSession:
    """
    Active-tenant state for one signed-in user. Every resolution and fetch is
    tagged with the generation it was issued under; results that come back
    after the user switched tenants are dropped instead of applied.
    """

    def __init__(self, user: User, resolver: TenantResolver | None = None) -> None:
        self._user = user
        self._resolver = resolver or TenantResolver()
        self._resolution = TenantResolution.pending()
        self._generation = 0
        self._view: dict[str, Any] = {}

    @property
    def resolution(self) -> TenantResolution:
        return self._resolution

    @property
    def loading(self) -> bool:
        return self._resolution.loading

    @property
    def tenant_id(self) -> str | None:
        tenant = self._resolution.tenant
        return tenant.id if tenant is not None else None

    @property
    def context(self) -> TenantContext:
        return TenantContext(
            user=self._user, tenant=self._resolution.tenant, loading=self.loading
        )

    def view(self, key: str) -> Any:
        """Last applied fetch result for *key* in the current tenant, or None."""
        return self._view.get(key)

    async def activate(self, tenant_id: str | None = None) -> TenantResolution:
        """Switch to *tenant_id* (or the default tenant). Discards the previous view."""
        self._generation += 1
        generation = self._generation
        self._resolution = TenantResolution.pending(tenant_id)
        self._view.clear()

        resolution = await self._resolver.resolve(self._user, tenant_id)
        if generation != self._generation:
            log.debug("tenant_session.stale_resolution_dropped", requested_tenant_id=tenant_id)
            return resolution

        self._resolution = resolution
        self.context.bind()
        return resolution

    async def fetch(self, key: str, loader: Callable[[str], Awaitable[T]]) -> T | None:
        """
        Run *loader* for the active tenant and store its result under *key*.
        Returns None without touching the view when no tenant is active or
        the tenant changed while the loader was suspended.
        """
        tenant_id = self.tenant_id
        if tenant_id is None:
            return None
        generation = self._generation

        result = await loader(tenant_id)
        if generation != self._generation or tenant_id != self.tenant_id:
            log.debug("tenant_session.stale_result_dropped", key=key, issued_for=tenant_id)
            return None

        self._view[key] = result
        return result

    def close(self) -> None:
        """End the session (sign-out). In-flight results are dropped."""
        self._generation += 1
        self._resolution = TenantResolution(ResolutionStatus.NO_TENANT)
        self._view.clear()


__sdk_export__ = {
    "exports": [
        "Tenant", "TenantConfig", "ResourceCounter", "TenantContext",
        "TenantDirectory", "TenantResolver", "TenantResolution",
        "ResolutionStatus", "TenantSession", "resolve_active_tenant",
    ],
    "description": "Tenant model, explicit tenant context and active-tenant resolution",
    "tier": "tier3_platform",
    "module": "multi_tenancy",
}
