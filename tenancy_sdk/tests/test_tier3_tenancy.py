"""Tests for tier3_platform tenancy, module access, authorization, quota and admin modules."""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from tenancy_sdk.tier0_core.errors import ForbiddenError, NotFoundError, TenantNotAuthorized
from tenancy_sdk.tier0_core.identity import Membership, Role, User
from tenancy_sdk.tier3_platform.admin import AdminService
from tenancy_sdk.tier3_platform.authorization import (
    ROLE_PERMISSIONS,
    Permission,
    PermissionPolicy,
    can,
    can_all,
    can_any,
    require_permission,
)
from tenancy_sdk.tier3_platform.memberships import MembershipService
from tenancy_sdk.tier3_platform.module_access import (
    has_feature_access,
    has_module_access,
    module_access,
)
from tenancy_sdk.tier3_platform.multi_tenancy import (
    ResolutionStatus,
    Tenant,
    TenantConfig,
    TenantContext,
    TenantResolver,
    TenantSession,
)
from tenancy_sdk.tier3_platform.plans import (
    MODULE_MIN_PLAN,
    PLAN_CATALOG,
    UNLIMITED,
    Feature,
    Module,
    PlanTier,
    ResourceKind,
    modules_for_plan,
    required_plan_for,
    upgrade_target,
)
from tenancy_sdk.tier3_platform.quota import (
    Notice,
    QuotaThresholds,
    UsageState,
    evaluate,
    evaluate_quota,
    upgrade_hint,
)

FROZEN_AT = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


def _tenant(plan: PlanTier, tenant_id: str = "t1", **usage: int) -> Tenant:
    return Tenant(
        id=tenant_id,
        name=tenant_id,
        plan=plan,
        config=TenantConfig.for_plan(plan),
        usage={ResourceKind(k): v for k, v in usage.items()},
    )


# ── plans ──────────────────────────────────────────────────────────────────

class TestPlans:
    def test_every_module_has_a_minimum_plan(self):
        assert set(MODULE_MIN_PLAN) == set(Module)

    def test_module_sets_nest_across_tiers(self):
        tiers = list(PlanTier)
        for lower, higher in zip(tiers, tiers[1:]):
            assert modules_for_plan(lower) <= modules_for_plan(higher)

    def test_trial_modules_available_everywhere(self):
        for module in modules_for_plan(PlanTier.TRIAL):
            for plan in PlanTier:
                assert module in PLAN_CATALOG[plan].modules

    def test_required_plans(self):
        assert required_plan_for(Module.CLIENTS) is PlanTier.TRIAL
        assert required_plan_for(Module.SCHEDULE) is PlanTier.BASIC
        assert required_plan_for(Module.INVENTORY) is PlanTier.PREMIUM

    def test_enterprise_is_unlimited(self):
        assert all(v == UNLIMITED for v in PLAN_CATALOG[PlanTier.ENTERPRISE].limits.values())
        assert PLAN_CATALOG[PlanTier.ENTERPRISE].features == frozenset(Feature)

    def test_upgrade_target(self):
        assert upgrade_target(ResourceKind.CLIENTS, PlanTier.TRIAL) is PlanTier.BASIC
        assert upgrade_target(ResourceKind.CLIENTS, PlanTier.BASIC) is PlanTier.PREMIUM
        assert upgrade_target(ResourceKind.USERS, PlanTier.PREMIUM) is PlanTier.ENTERPRISE
        assert upgrade_target(ResourceKind.CLIENTS, PlanTier.PREMIUM) is None
        assert upgrade_target(ResourceKind.USERS, PlanTier.ENTERPRISE) is None


# ── resolution ─────────────────────────────────────────────────────────────

class TestTenantResolver:
    @pytest.mark.asyncio
    async def test_default_is_earliest_membership(self, directory):
        await directory.create_tenant("A", tenant_id="t-a")
        await directory.create_tenant("B", tenant_id="t-b")
        user = User(
            id="u1",
            email="u1@example.com",
            memberships=(
                Membership("t-a", Role.STAFF, FROZEN_AT),
                Membership("t-b", Role.OWNER, FROZEN_AT - timedelta(days=1)),
            ),
        )
        resolution = await TenantResolver(directory).resolve(user)
        assert resolution.status is ResolutionStatus.RESOLVED
        assert resolution.tenant.id == "t-b"

    @pytest.mark.asyncio
    async def test_tied_join_dates_keep_membership_order(self, directory):
        await directory.create_tenant("A", tenant_id="t-a")
        await directory.create_tenant("B", tenant_id="t-b")
        user = User(
            id="u1",
            email="u1@example.com",
            memberships=(
                Membership("t-b", Role.STAFF, FROZEN_AT),
                Membership("t-a", Role.STAFF, FROZEN_AT),
            ),
        )
        assert (await TenantResolver(directory).resolve(user)).tenant.id == "t-b"

    @pytest.mark.asyncio
    async def test_requested_tenant_must_be_a_membership(self, directory, make_user):
        await directory.create_tenant("A", tenant_id="t-a")
        await directory.create_tenant("B", tenant_id="t-b")
        user = make_user("u1", [("t-a", Role.OWNER)])
        resolution = await TenantResolver(directory).resolve(user, "t-b")
        assert resolution.status is ResolutionStatus.NOT_AUTHORIZED
        assert resolution.tenant is None
        with pytest.raises(TenantNotAuthorized):
            resolution.require()

    @pytest.mark.asyncio
    async def test_no_memberships_is_explicit_no_tenant(self, directory, make_user):
        resolution = await TenantResolver(directory).resolve(make_user("u1"))
        assert resolution.status is ResolutionStatus.NO_TENANT
        assert resolution.tenant is None
        with pytest.raises(NotFoundError):
            resolution.require()

    @pytest.mark.asyncio
    async def test_super_admin_resolves_any_tenant(self, directory, make_user):
        await directory.create_tenant("A", tenant_id="t-a")
        admin = make_user("root", super_admin=True)
        resolution = await TenantResolver(directory).resolve(admin, "t-a")
        assert resolution.ok
        assert resolution.require().id == "t-a"

    @pytest.mark.asyncio
    async def test_missing_tenant_is_not_found(self, directory, make_user):
        user = make_user("u1", [("t-gone", Role.OWNER)])
        resolution = await TenantResolver(directory).resolve(user)
        assert resolution.status is ResolutionStatus.NOT_FOUND

    @pytest.mark.asyncio
    async def test_inactive_tenant_hidden_from_members_only(self, directory, make_user):
        await directory.create_tenant("A", tenant_id="t-a")
        assert await directory.deactivate("t-a") is True
        member = make_user("u1", [("t-a", Role.OWNER)])
        admin = make_user("root", super_admin=True)
        resolver = TenantResolver(directory)
        assert (await resolver.resolve(member)).status is ResolutionStatus.NOT_FOUND
        assert (await resolver.resolve(admin, "t-a")).ok


class TestTenantDirectory:
    @pytest.mark.asyncio
    async def test_create_uses_plan_defaults(self, directory):
        tenant = await directory.create_tenant("A", PlanTier.BASIC, owner_id="u1")
        stored = await directory.get(tenant.id)
        assert stored == tenant
        assert stored.config.modules == modules_for_plan(PlanTier.BASIC)
        assert stored.limit(ResourceKind.CLIENTS) == 500

    @pytest.mark.asyncio
    async def test_change_plan_replaces_config(self, directory):
        tenant = await directory.create_tenant("A", PlanTier.TRIAL)
        upgraded = await directory.change_plan(tenant.id, PlanTier.PREMIUM)
        assert upgraded.plan is PlanTier.PREMIUM
        assert Module.INVENTORY in (await directory.get(tenant.id)).config.modules

    @pytest.mark.asyncio
    async def test_change_plan_of_missing_tenant(self, directory):
        with pytest.raises(NotFoundError):
            await directory.change_plan("nope", PlanTier.BASIC)

    @pytest.mark.asyncio
    async def test_usage_snapshot(self, directory):
        tenant = await directory.create_tenant("A")
        await directory.save_usage(tenant.id, {ResourceKind.CLIENTS: 12})
        stored = await directory.get(tenant.id)
        assert stored.resource_counters[ResourceKind.CLIENTS].current == 12
        assert stored.resource_counters[ResourceKind.CLIENTS].maximum == 50

    def test_tenants_are_hashable(self, make_user):
        tenant = _tenant(PlanTier.BASIC, clients=3)
        same = _tenant(PlanTier.BASIC, clients=3)
        other = _tenant(PlanTier.PREMIUM, "t2")
        assert hash(tenant) == hash(same)
        assert hash(tenant.config) == hash(TenantConfig.for_plan(PlanTier.BASIC))
        assert {tenant, same, other} == {tenant, other}

        ctx = TenantContext(make_user("u1", [("t1", Role.OWNER)]), tenant)
        assert {ctx: "cached"}[TenantContext(ctx.user, same)] == "cached"


class _GatedResolver(TenantResolver):
    """Holds resolution of one tenant id until the gate opens."""

    def __init__(self, directory, gated_id):
        super().__init__(directory)
        self.gate = asyncio.Event()
        self.gated_id = gated_id

    async def resolve(self, user, requested_tenant_id=None):
        if requested_tenant_id == self.gated_id:
            await self.gate.wait()
        return await super().resolve(user, requested_tenant_id)


class TestTenantSession:
    @pytest.mark.asyncio
    async def test_loading_until_resolved(self, directory, make_user):
        await directory.create_tenant("A", tenant_id="t-a")
        user = make_user("u1", [("t-a", Role.OWNER)])
        resolver = _GatedResolver(directory, "t-a")
        session = TenantSession(user, resolver)

        task = asyncio.create_task(session.activate("t-a"))
        await asyncio.sleep(0)
        assert session.loading
        assert session.context.loading
        assert module_access(session.context, Module.CLIENTS).is_loading

        resolver.gate.set()
        await task
        assert not session.loading
        assert session.tenant_id == "t-a"
        assert module_access(session.context, Module.CLIENTS).allowed

    @pytest.mark.asyncio
    async def test_stale_resolution_is_dropped(self, directory, make_user):
        await directory.create_tenant("A", tenant_id="t-a")
        await directory.create_tenant("B", tenant_id="t-b")
        user = make_user("u1", [("t-a", Role.OWNER), ("t-b", Role.STAFF)])
        resolver = _GatedResolver(directory, "t-a")
        session = TenantSession(user, resolver)

        slow = asyncio.create_task(session.activate("t-a"))
        await asyncio.sleep(0)
        await session.activate("t-b")
        resolver.gate.set()
        await slow

        assert session.tenant_id == "t-b"
        assert session.context.role is Role.STAFF

    @pytest.mark.asyncio
    async def test_switch_during_fetch_shows_only_new_tenant(self, directory, make_user):
        await directory.create_tenant("A", tenant_id="t-a")
        await directory.create_tenant("B", tenant_id="t-b")
        user = make_user("u1", [("t-a", Role.OWNER), ("t-b", Role.OWNER)])
        session = TenantSession(user, TenantResolver(directory))
        await session.activate("t-a")

        gate = asyncio.Event()

        async def slow_loader(tenant_id):
            await gate.wait()
            return [f"{tenant_id}-client"]

        async def fast_loader(tenant_id):
            return [f"{tenant_id}-client"]

        in_flight = asyncio.create_task(session.fetch("clients", slow_loader))
        await asyncio.sleep(0)
        await session.activate("t-b")
        fresh = await session.fetch("clients", fast_loader)
        gate.set()

        assert await in_flight is None
        assert fresh == ["t-b-client"]
        assert session.view("clients") == ["t-b-client"]

    @pytest.mark.asyncio
    async def test_fetch_without_tenant_is_noop(self, directory, make_user):
        session = TenantSession(make_user("u1"), TenantResolver(directory))
        await session.activate()
        assert session.resolution.status is ResolutionStatus.NO_TENANT

        async def loader(tenant_id):
            raise AssertionError("loader must not run without a tenant")

        assert await session.fetch("clients", loader) is None

    @pytest.mark.asyncio
    async def test_close_clears_view(self, directory, make_user):
        await directory.create_tenant("A", tenant_id="t-a")
        session = TenantSession(make_user("u1", [("t-a", Role.OWNER)]), TenantResolver(directory))
        await session.activate()

        async def loader(tenant_id):
            return 1

        await session.fetch("count", loader)
        assert session.view("count") == 1
        session.close()
        assert session.view("count") is None
        assert session.tenant_id is None


# ── module access ──────────────────────────────────────────────────────────

class TestModuleAccess:
    def test_allowed_iff_module_enabled(self):
        for plan in PlanTier:
            tenant = _tenant(plan)
            for module in Module:
                access = has_module_access(tenant, module)
                assert access.allowed is (module in tenant.config.modules)
                assert access.required_plan is MODULE_MIN_PLAN[module]

    def test_decision_ignores_required_plan(self):
        tenant = Tenant(
            id="t1",
            name="custom",
            plan=PlanTier.TRIAL,
            config=TenantConfig(modules=frozenset({Module.INVENTORY})),
        )
        inventory = has_module_access(tenant, Module.INVENTORY)
        assert inventory.allowed
        assert inventory.required_plan is PlanTier.PREMIUM
        clients = has_module_access(tenant, Module.CLIENTS)
        assert not clients.allowed
        assert clients.needs_upgrade

    def test_loading_is_not_a_denial(self):
        access = has_module_access(_tenant(PlanTier.ENTERPRISE), Module.CLIENTS, loading=True)
        assert access.allowed is False
        assert access.is_loading is True
        assert access.needs_upgrade is False

    def test_no_tenant_denies_everything(self):
        for module in Module:
            assert has_module_access(None, module).allowed is False

    def test_feature_access(self):
        basic = _tenant(PlanTier.BASIC)
        assert has_feature_access(basic, Feature.EMAIL_NOTIFICATIONS).allowed
        assert not has_feature_access(basic, Feature.SMS_NOTIFICATIONS).allowed
        assert has_feature_access(basic, Feature.SMS_NOTIFICATIONS, loading=True).is_loading
        assert not has_feature_access(None, Feature.EMAIL_NOTIFICATIONS).allowed


# ── authorization ──────────────────────────────────────────────────────────

class TestAuthorization:
    def _ctx(self, make_user, role=None, super_admin=False):
        tenant = _tenant(PlanTier.ENTERPRISE)
        memberships = [(tenant.id, role)] if role is not None else []
        return TenantContext(make_user("u1", memberships, super_admin=super_admin), tenant)

    def test_every_role_has_grants(self):
        assert set(ROLE_PERMISSIONS) == set(Role)

    def test_ungranted_permissions_denied(self, make_user):
        for role in Role:
            ctx = self._ctx(make_user, role)
            for permission in Permission:
                assert can(ctx, permission) is (permission in ROLE_PERMISSIONS[role])

    def test_empty_input_asymmetry_for_every_role(self, make_user):
        for role in Role:
            ctx = self._ctx(make_user, role)
            assert can_any(ctx, []) is False
            assert can_all(ctx, []) is True

    def test_no_membership_denies_everything(self, make_user):
        ctx = self._ctx(make_user)
        assert can(ctx, Permission.VIEW_CLIENTS) is False
        assert can_any(ctx, [Permission.VIEW_CLIENTS]) is False
        assert can_all(ctx, [Permission.VIEW_CLIENTS]) is False
        assert can_any(ctx, []) is False
        assert can_all(ctx, []) is False

    def test_no_tenant_denies_everything(self, make_user):
        ctx = TenantContext(make_user("u1", [("t1", Role.OWNER)]))
        assert can(ctx, Permission.VIEW_CLIENTS) is False

    def test_super_admin_bypasses_membership(self, make_user):
        ctx = self._ctx(make_user, super_admin=True)
        assert all(can(ctx, p) for p in Permission)
        assert can_all(ctx, list(Permission))
        assert can_any(ctx, []) is False
        assert can_all(ctx, []) is True

    def test_combinators(self, make_user):
        ctx = self._ctx(make_user, Role.VIEWER)
        assert can_any(ctx, [Permission.DELETE_CLIENTS, Permission.VIEW_CLIENTS])
        assert not can_all(ctx, [Permission.DELETE_CLIENTS, Permission.VIEW_CLIENTS])

    def test_role_table_shape(self):
        assert ROLE_PERMISSIONS[Role.OWNER] == frozenset(Permission)
        assert Permission.CHANGE_PLAN not in ROLE_PERMISSIONS[Role.ADMIN]
        assert Permission.MANAGE_TEAM not in ROLE_PERMISSIONS[Role.MANAGER]
        assert Permission.DELETE_CLIENTS not in ROLE_PERMISSIONS[Role.STAFF]
        assert all(p.value.startswith("view_") for p in ROLE_PERMISSIONS[Role.VIEWER])

    def test_custom_grant_table(self, make_user):
        ctx = self._ctx(make_user, Role.STAFF)
        policy = PermissionPolicy(ctx, grants={Role.STAFF: frozenset({Permission.VIEW_CASH})})
        assert policy.can(Permission.VIEW_CASH)
        assert not policy.can(Permission.VIEW_CLIENTS)

    def test_role_flags(self, make_user):
        policy = PermissionPolicy(self._ctx(make_user, Role.OWNER))
        assert policy.is_owner and not policy.is_admin and not policy.is_manager

    def test_require_permission(self, make_user):
        ctx = self._ctx(make_user, Role.VIEWER)
        require_permission(ctx, Permission.VIEW_CASH)
        with pytest.raises(ForbiddenError):
            require_permission(ctx, Permission.CREATE_TRANSACTIONS)


# ── quota ──────────────────────────────────────────────────────────────────

class TestQuota:
    @pytest.mark.parametrize(
        "current,maximum,state",
        [
            (0, 0, UsageState.EXHAUSTED),
            (79, 100, UsageState.NORMAL),
            (80, 100, UsageState.WARNING),
            (94, 100, UsageState.WARNING),
            (95, 100, UsageState.CRITICAL),
            (99, 100, UsageState.CRITICAL),
            (100, 100, UsageState.EXHAUSTED),
            (150, 100, UsageState.EXHAUSTED),
        ],
    )
    def test_thresholds(self, current, maximum, state):
        assert evaluate(ResourceKind.CLIENTS, current, maximum).state is state

    def test_display_percentage_clamped(self):
        over = evaluate(ResourceKind.CLIENTS, 150, 100)
        assert over.is_near_limit
        assert over.percentage == 150
        assert over.display_percentage == 100
        assert over.remaining == 0

    def test_zero_maximum_is_exhausted(self):
        result = evaluate(ResourceKind.USERS, 0, 0)
        assert result.is_at_limit
        assert result.notice is Notice.BLOCK

    def test_unlimited_is_always_normal(self):
        result = evaluate(ResourceKind.JOBS, 10_000, UNLIMITED)
        assert result.state is UsageState.NORMAL
        assert not result.is_near_limit
        assert result.display_percentage == 0
        assert result.is_unlimited
        assert result.remaining is None

    def test_notices_follow_state(self):
        assert evaluate(ResourceKind.CLIENTS, 1, 100).notice is Notice.NONE
        assert evaluate(ResourceKind.CLIENTS, 85, 100).notice is Notice.BANNER
        assert evaluate(ResourceKind.CLIENTS, 96, 100).notice is Notice.UPGRADE_MODAL
        assert evaluate(ResourceKind.CLIENTS, 100, 100).notice is Notice.BLOCK

    def test_custom_thresholds(self):
        strict = QuotaThresholds(warning=50, critical=75, exhausted=90)
        assert evaluate(ResourceKind.CLIENTS, 90, 100, strict).state is UsageState.EXHAUSTED

    def test_thresholds_from_env(self, monkeypatch):
        from tenancy_sdk.tier0_core.config import _reset_config
        monkeypatch.setenv("TENANCY_QUOTA_WARNING_PCT", "60")
        _reset_config()
        assert evaluate(ResourceKind.CLIENTS, 60, 100).state is UsageState.WARNING

    def test_evaluate_quota_uses_tenant_snapshot(self):
        tenant = _tenant(PlanTier.TRIAL, clients=45)
        assert evaluate_quota(tenant, ResourceKind.CLIENTS).state is UsageState.WARNING
        assert evaluate_quota(tenant, ResourceKind.CLIENTS, current=10).state is UsageState.NORMAL

    def test_upgrade_hint(self):
        assert upgrade_hint(_tenant(PlanTier.TRIAL), ResourceKind.JOBS) == "BASIC"
        assert upgrade_hint(_tenant(PlanTier.ENTERPRISE), ResourceKind.JOBS) is None


# ── admin console ──────────────────────────────────────────────────────────

class TestAdminConsole:
    async def _platform(self, store, clock, directory, make_user):
        first = await directory.create_tenant("Taller Norte", PlanTier.BASIC, "ana", tenant_id="t-1")
        await directory.create_tenant("Taller Sur", PlanTier.PREMIUM, "ben", tenant_id="t-2")
        await directory.create_tenant("Taller Este", PlanTier.TRIAL, tenant_id="t-3")
        await directory.deactivate("t-2")

        members = MembershipService(store, clock, directory)
        await members.save_user(make_user("ana", [("t-1", Role.OWNER), ("t-3", Role.STAFF)]))
        await members.save_user(make_user("ben", [("t-2", Role.OWNER), ("t-gone", Role.VIEWER)]))
        await members.save_user(make_user("root", super_admin=True, email="admin@example.com"))
        root = await members.get_user("root")
        return AdminService(store, directory), TenantContext(root), first

    @pytest.mark.asyncio
    async def test_stats(self, store, clock, directory, make_user):
        console, ctx, _ = await self._platform(store, clock, directory, make_user)
        stats = await console.stats(ctx)
        assert (stats.total_tenants, stats.active_tenants, stats.inactive_tenants) == (3, 2, 1)
        assert stats.total_users == 3

    @pytest.mark.asyncio
    async def test_all_tenants_newest_first_with_owner(self, store, clock, directory, make_user):
        console, ctx, first = await self._platform(store, clock, directory, make_user)
        summaries = await console.all_tenants(ctx)
        assert [s.tenant.id for s in summaries] == ["t-3", "t-2", "t-1"]
        assert [s.owner_name for s in summaries] == [None, "BEN", "ANA"]
        assert summaries[1].owner_email == "ben@example.com"
        assert summaries[1].tenant.active is False
        assert summaries[2].tenant == first
        assert summaries[2].created_at == FROZEN_AT

    @pytest.mark.asyncio
    async def test_all_users_with_tenant_names(self, store, clock, directory, make_user):
        console, ctx, _ = await self._platform(store, clock, directory, make_user)
        users = await console.all_users(ctx)
        assert [(u.user.id, u.tenant_names) for u in users] == [
            ("root", ()),
            ("ana", ("Taller Norte", "Taller Este")),
            ("ben", ("Taller Sur",)),
        ]

    @pytest.mark.asyncio
    async def test_requires_super_admin(self, store, clock, directory, make_user):
        console, _, first = await self._platform(store, clock, directory, make_user)
        owner = TenantContext(make_user("ana", [("t-1", Role.OWNER)]), first)
        for view in (console.stats, console.all_tenants, console.all_users):
            with pytest.raises(ForbiddenError):
                await view(owner)
