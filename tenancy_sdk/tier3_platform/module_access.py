"""
tenancy_sdk.tier3_platform.module_access
─────────────────────────────────────────
Plan-gated feature areas. Access is decided only by the tenant's enabled
module set; the minimum plan is looked up independently and always returned
so callers can render "included in your plan" or "requires upgrade to X".
"""
from __future__ import annotations

from dataclasses import dataclass

from tenancy_sdk.tier0_core.logging import get_logger
from tenancy_sdk.tier0_core.metrics import module_denials
from tenancy_sdk.tier3_platform.multi_tenancy import Tenant, TenantContext
from tenancy_sdk.tier3_platform.plans import Feature, Module, PlanTier, required_plan_for

log = get_logger(__name__)


@dataclass(frozen=True)
class ModuleAccess:
    allowed: bool
    required_plan: PlanTier
    is_loading: bool = False
    current_plan: PlanTier | None = None

    @property
    def needs_upgrade(self) -> bool:
        return not self.allowed and not self.is_loading


@dataclass(frozen=True)
class FeatureAccess:
    allowed: bool
    is_loading: bool = False


def has_module_access(
    tenant: Tenant | None, module: Module, *, loading: bool = False
) -> ModuleAccess:
    required = required_plan_for(module)
    if loading:
        return ModuleAccess(allowed=False, required_plan=required, is_loading=True)
    if tenant is None:
        return ModuleAccess(allowed=False, required_plan=required)

    allowed = module in tenant.config.modules
    if not allowed:
        module_denials(module=module.value).inc()
        log.debug(
            "module.denied",
            tenant_id=tenant.id,
            module=module.value,
            plan=tenant.plan.value,
            required_plan=required.value,
        )
    return ModuleAccess(allowed=allowed, required_plan=required, current_plan=tenant.plan)


def module_access(ctx: TenantContext, module: Module) -> ModuleAccess:
    """has_module_access for the tenant and loading state carried by *ctx*."""
    return has_module_access(ctx.tenant, module, loading=ctx.loading)


def has_feature_access(
    tenant: Tenant | None, feature: Feature, *, loading: bool = False
) -> FeatureAccess:
    if loading:
        return FeatureAccess(allowed=False, is_loading=True)
    if tenant is None:
        return FeatureAccess(allowed=False)
    return FeatureAccess(allowed=feature in tenant.config.features)


__sdk_export__ = {
    "exports": [
        "ModuleAccess", "FeatureAccess", "has_module_access",
        "module_access", "has_feature_access",
    ],
    "description": "Plan-tier module and feature gating",
    "tier": "tier3_platform",
    "module": "module_access",
}
