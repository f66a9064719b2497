"""
tenancy_sdk.tier3_platform.plans
─────────────────────────────────
Subscription plans, feature-area modules, feature flags and plan-limited
resource kinds, with the static tables that tie them together.

Plan tiers nest: every module available at a lower tier stays available at
every higher tier (TRIAL ⊆ BASIC ⊆ PREMIUM ⊆ ENTERPRISE). Default module sets
are derived from MODULE_MIN_PLAN, so the nesting holds by construction.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from tenancy_sdk.tier0_core.errors import ConfigurationError

UNLIMITED = -1


class PlanTier(str, Enum):
    TRIAL = "TRIAL"
    BASIC = "BASIC"
    PREMIUM = "PREMIUM"
    ENTERPRISE = "ENTERPRISE"

    @property
    def rank(self) -> int:
        return _PLAN_ORDER.index(self)

    def includes(self, other: "PlanTier") -> bool:
        """True if this tier is at or above *other*."""
        return self.rank >= other.rank


_PLAN_ORDER = [PlanTier.TRIAL, PlanTier.BASIC, PlanTier.PREMIUM, PlanTier.ENTERPRISE]


class Module(str, Enum):
    CLIENTS = "clients"
    VEHICLES = "vehicles"
    JOBS = "jobs"
    SCHEDULE = "schedule"
    QUOTES = "quotes"
    INVENTORY = "inventory"
    INVOICING = "invoicing"
    REPORTS = "reports"


class Feature(str, Enum):
    ADVANCED_REPORTS = "advanced_reports"
    API_ACCESS = "api_access"
    CUSTOM_BRANDING = "custom_branding"
    EMAIL_NOTIFICATIONS = "email_notifications"
    SMS_NOTIFICATIONS = "sms_notifications"
    MULTI_LOCATION = "multi_location"


class ResourceKind(str, Enum):
    USERS = "users"
    CLIENTS = "clients"
    VEHICLES = "vehicles"
    JOBS = "jobs"  # per calendar month


MODULE_MIN_PLAN: dict[Module, PlanTier] = {
    Module.CLIENTS: PlanTier.TRIAL,
    Module.VEHICLES: PlanTier.TRIAL,
    Module.JOBS: PlanTier.TRIAL,
    Module.SCHEDULE: PlanTier.BASIC,
    Module.QUOTES: PlanTier.BASIC,
    Module.INVENTORY: PlanTier.PREMIUM,
    Module.INVOICING: PlanTier.PREMIUM,
    Module.REPORTS: PlanTier.PREMIUM,
}


def required_plan_for(module: Module) -> PlanTier:
    """Minimum plan tier that includes *module*."""
    return MODULE_MIN_PLAN[module]


def modules_for_plan(plan: PlanTier) -> frozenset[Module]:
    return frozenset(m for m, tier in MODULE_MIN_PLAN.items() if plan.includes(tier))


@dataclass(frozen=True)
class PlanDefaults:
    plan: PlanTier
    features: frozenset[Feature]
    limits: dict[ResourceKind, int] = field(default_factory=dict)

    @property
    def modules(self) -> frozenset[Module]:
        return modules_for_plan(self.plan)


PLAN_CATALOG: dict[PlanTier, PlanDefaults] = {
    PlanTier.TRIAL: PlanDefaults(
        plan=PlanTier.TRIAL,
        features=frozenset(),
        limits={
            ResourceKind.USERS: 2,
            ResourceKind.CLIENTS: 50,
            ResourceKind.VEHICLES: 50,
            ResourceKind.JOBS: 20,
        },
    ),
    PlanTier.BASIC: PlanDefaults(
        plan=PlanTier.BASIC,
        features=frozenset({Feature.EMAIL_NOTIFICATIONS}),
        limits={
            ResourceKind.USERS: 5,
            ResourceKind.CLIENTS: 500,
            ResourceKind.VEHICLES: 500,
            ResourceKind.JOBS: 100,
        },
    ),
    PlanTier.PREMIUM: PlanDefaults(
        plan=PlanTier.PREMIUM,
        features=frozenset({
            Feature.EMAIL_NOTIFICATIONS,
            Feature.SMS_NOTIFICATIONS,
            Feature.ADVANCED_REPORTS,
            Feature.CUSTOM_BRANDING,
        }),
        limits={
            ResourceKind.USERS: 15,
            ResourceKind.CLIENTS: UNLIMITED,
            ResourceKind.VEHICLES: UNLIMITED,
            ResourceKind.JOBS: UNLIMITED,
        },
    ),
    PlanTier.ENTERPRISE: PlanDefaults(
        plan=PlanTier.ENTERPRISE,
        features=frozenset(Feature),
        limits={kind: UNLIMITED for kind in ResourceKind},
    ),
}


def upgrade_target(kind: ResourceKind, plan: PlanTier) -> PlanTier | None:
    """The next tier above *plan* whose limit for *kind* is larger, if any."""
    current = PLAN_CATALOG[plan].limits[kind]
    if current == UNLIMITED:
        return None
    for tier in _PLAN_ORDER[plan.rank + 1:]:
        limit = PLAN_CATALOG[tier].limits[kind]
        if limit == UNLIMITED or limit > current:
            return tier
    return None


def _check_tables() -> None:
    missing_modules = set(Module) - set(MODULE_MIN_PLAN)
    if missing_modules:
        raise ConfigurationError(
            detail=f"modules without a minimum plan: {sorted(m.value for m in missing_modules)}"
        )
    for tier in PlanTier:
        defaults = PLAN_CATALOG.get(tier)
        if defaults is None:
            raise ConfigurationError(detail=f"plan {tier.value} has no catalog entry")
        missing_limits = set(ResourceKind) - set(defaults.limits)
        if missing_limits:
            raise ConfigurationError(
                detail=f"plan {tier.value} lacks limits for {sorted(k.value for k in missing_limits)}"
            )


_check_tables()


__sdk_export__ = {
    "exports": [
        "PlanTier", "Module", "Feature", "ResourceKind", "PLAN_CATALOG",
        "MODULE_MIN_PLAN", "required_plan_for", "modules_for_plan", "UNLIMITED",
    ],
    "description": "Plan tiers, modules, features and resource limits",
    "tier": "tier3_platform",
    "module": "plans",
}
