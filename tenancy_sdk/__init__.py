"""
tenancy_sdk
───────────
Stable top-level exports. Import from here, not from sub-modules directly.
Every name exported here is part of the public API and subject to semver.
"""
from tenancy_sdk.tier0_core.identity import (
    IdentityProvider,
    Membership,
    MockIdentityProvider,
    Role,
    User,
    get_current_user,
)
from tenancy_sdk.tier0_core.logging import get_logger
from tenancy_sdk.tier0_core.errors import (
    PlatformError,
    ForbiddenError,
    ValidationError,
    NotFoundError,
    ConflictError,
    TenantNotAuthorized,
    MissingTenantId,
    QuotaExceeded,
    NotFoundOrForbidden,
)
from tenancy_sdk.tier0_core.config import get_config, TenancyConfig
from tenancy_sdk.tier0_core.data import (
    DocumentStore,
    InMemoryDocumentStore,
    SqlDocumentStore,
    Filter,
    OrderBy,
    get_store,
)
from tenancy_sdk.tier1_runtime.clock import Clock, get_clock

from tenancy_sdk.tier2_reliability.audit import audit, AuditRecord

from tenancy_sdk.tier3_platform.plans import (
    PlanTier,
    Module,
    Feature,
    ResourceKind,
    UNLIMITED,
)
from tenancy_sdk.tier3_platform.multi_tenancy import (
    Tenant,
    TenantConfig,
    TenantContext,
    TenantDirectory,
    TenantResolver,
    TenantResolution,
    ResolutionStatus,
    TenantSession,
    resolve_active_tenant,
)
from tenancy_sdk.tier3_platform.module_access import (
    ModuleAccess,
    has_module_access,
    has_feature_access,
)
from tenancy_sdk.tier3_platform.authorization import (
    Permission,
    PermissionPolicy,
    can,
    can_any,
    can_all,
    require_permission,
)
from tenancy_sdk.tier3_platform.quota import (
    UsageState,
    QuotaEvaluation,
    evaluate,
    evaluate_quota,
)
from tenancy_sdk.tier3_platform.repository import RecordKind, TenantScopedRepository
from tenancy_sdk.tier3_platform.ledger import CashLedger, MovementType
from tenancy_sdk.tier3_platform.memberships import MembershipService, Invitation
from tenancy_sdk.tier3_platform.admin import AdminService, AdminStats
from tenancy_sdk.tier3_platform.numbering import next_work_order_number

__version__ = "0.1.0"
__all__ = [
    # identity
    "IdentityProvider", "MockIdentityProvider", "Membership", "Role", "User",
    "get_current_user",
    # logging
    "get_logger",
    # errors
    "PlatformError", "ForbiddenError", "ValidationError", "NotFoundError",
    "ConflictError", "TenantNotAuthorized", "MissingTenantId", "QuotaExceeded",
    "NotFoundOrForbidden",
    # config
    "get_config", "TenancyConfig",
    # data
    "DocumentStore", "InMemoryDocumentStore", "SqlDocumentStore",
    "Filter", "OrderBy", "get_store",
    # clock
    "Clock", "get_clock",
    # audit
    "audit", "AuditRecord",
    # plans
    "PlanTier", "Module", "Feature", "ResourceKind", "UNLIMITED",
    # multi_tenancy
    "Tenant", "TenantConfig", "TenantContext", "TenantDirectory",
    "TenantResolver", "TenantResolution", "ResolutionStatus", "TenantSession",
    "resolve_active_tenant",
    # module_access
    "ModuleAccess", "has_module_access", "has_feature_access",
    # authorization
    "Permission", "PermissionPolicy", "can", "can_any", "can_all",
    "require_permission",
    # quota
    "UsageState", "QuotaEvaluation", "evaluate", "evaluate_quota",
    # repository
    "RecordKind", "TenantScopedRepository",
    # ledger
    "CashLedger", "MovementType",
    # memberships
    "MembershipService", "Invitation",
    # admin
    "AdminService", "AdminStats",
    # numbering
    "next_work_order_number",
]
