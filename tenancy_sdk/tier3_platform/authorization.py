"""
tenancy_sdk.tier3_platform.authorization
─────────────────────────────────────────
Role-based permissions within the active tenant. Each Role owns a closed,
static set of Permission grants; super-admins pass every check.

Empty inputs are asymmetric on purpose: can_any([]) is False and
can_all([]) is True. A caller with no membership in the active tenant gets
False from all three predicates, empty inputs included, unless they are a
super-admin.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import Enum

from tenancy_sdk.tier0_core.errors import ConfigurationError, ForbiddenError
from tenancy_sdk.tier0_core.identity import Role
from tenancy_sdk.tier0_core.logging import get_logger
from tenancy_sdk.tier0_core.metrics import authz_decisions
from tenancy_sdk.tier3_platform.multi_tenancy import TenantContext

log = get_logger(__name__)


class Permission(str, Enum):
    # Organization
    MANAGE_ORGANIZATION = "manage_organization"
    DELETE_ORGANIZATION = "delete_organization"
    CHANGE_PLAN = "change_plan"

    # Team
    MANAGE_TEAM = "manage_team"
    INVITE_USERS = "invite_users"
    REMOVE_USERS = "remove_users"
    CHANGE_USER_ROLES = "change_user_roles"

    # Clients
    VIEW_CLIENTS = "view_clients"
    CREATE_CLIENTS = "create_clients"
    EDIT_CLIENTS = "edit_clients"
    DELETE_CLIENTS = "delete_clients"

    # Vehicles
    VIEW_VEHICLES = "view_vehicles"
    CREATE_VEHICLES = "create_vehicles"
    EDIT_VEHICLES = "edit_vehicles"
    DELETE_VEHICLES = "delete_vehicles"

    # Jobs
    VIEW_JOBS = "view_jobs"
    CREATE_JOBS = "create_jobs"
    EDIT_JOBS = "edit_jobs"
    DELETE_JOBS = "delete_jobs"
    COMPLETE_JOBS = "complete_jobs"

    # Products / inventory
    VIEW_PRODUCTS = "view_products"
    CREATE_PRODUCTS = "create_products"
    EDIT_PRODUCTS = "edit_products"
    DELETE_PRODUCTS = "delete_products"

    # Quotes
    VIEW_QUOTES = "view_quotes"
    CREATE_QUOTES = "create_quotes"
    EDIT_QUOTES = "edit_quotes"
    DELETE_QUOTES = "delete_quotes"
    APPROVE_QUOTES = "approve_quotes"

    # Schedule
    VIEW_SCHEDULE = "view_schedule"
    CREATE_APPOINTMENTS = "create_appointments"
    EDIT_APPOINTMENTS = "edit_appointments"
    DELETE_APPOINTMENTS = "delete_appointments"

    # Cash ledger
    VIEW_CASH = "view_cash"
    CREATE_TRANSACTIONS = "create_transactions"
    EDIT_TRANSACTIONS = "edit_transactions"
    DELETE_TRANSACTIONS = "delete_transactions"

    # Reports
    VIEW_REPORTS = "view_reports"
    EXPORT_REPORTS = "export_reports"


P = Permission

_VIEW_ALL = frozenset({
    P.VIEW_CLIENTS, P.VIEW_VEHICLES, P.VIEW_JOBS, P.VIEW_PRODUCTS,
    P.VIEW_QUOTES, P.VIEW_SCHEDULE, P.VIEW_CASH, P.VIEW_REPORTS,
})

_MANAGER = _VIEW_ALL | {
    P.CREATE_CLIENTS, P.EDIT_CLIENTS, P.DELETE_CLIENTS,
    P.CREATE_VEHICLES, P.EDIT_VEHICLES, P.DELETE_VEHICLES,
    P.CREATE_JOBS, P.EDIT_JOBS, P.DELETE_JOBS, P.COMPLETE_JOBS,
    P.CREATE_PRODUCTS, P.EDIT_PRODUCTS,
    P.CREATE_QUOTES, P.EDIT_QUOTES, P.APPROVE_QUOTES,
    P.CREATE_APPOINTMENTS, P.EDIT_APPOINTMENTS, P.DELETE_APPOINTMENTS,
    P.CREATE_TRANSACTIONS,
    P.EXPORT_REPORTS,
}

ROLE_PERMISSIONS: Mapping[Role, frozenset[Permission]] = {
    Role.OWNER: frozenset(Permission),
    Role.ADMIN: frozenset(Permission) - {P.DELETE_ORGANIZATION, P.CHANGE_PLAN},
    Role.MANAGER: _MANAGER,
    Role.STAFF: _VIEW_ALL | {
        P.CREATE_CLIENTS, P.EDIT_CLIENTS,
        P.CREATE_VEHICLES, P.EDIT_VEHICLES,
        P.CREATE_JOBS, P.EDIT_JOBS, P.COMPLETE_JOBS,
        P.CREATE_QUOTES,
        P.CREATE_APPOINTMENTS, P.EDIT_APPOINTMENTS,
    },
    Role.VIEWER: _VIEW_ALL,
}


def _check_grant_table(table: Mapping[Role, frozenset[Permission]]) -> None:
    missing = set(Role) - set(table)
    if missing:
        raise ConfigurationError(
            detail=f"roles without a grant set: {sorted(r.value for r in missing)}"
        )


_check_grant_table(ROLE_PERMISSIONS)


class PermissionPolicy:
    """Pure permission checks for one TenantContext."""

    def __init__(
        self,
        ctx: TenantContext,
        grants: Mapping[Role, frozenset[Permission]] | None = None,
    ) -> None:
        self._ctx = ctx
        self._grants = grants if grants is not None else ROLE_PERMISSIONS

    @property
    def role(self) -> Role | None:
        return self._ctx.role

    @property
    def is_owner(self) -> bool:
        return self.role is Role.OWNER

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    @property
    def is_manager(self) -> bool:
        return self.role is Role.MANAGER

    def _has_access(self) -> bool:
        return self._ctx.is_super_admin or self.role is not None

    def can(self, permission: Permission) -> bool:
        if self._ctx.is_super_admin:
            allowed = True
        elif self.role is None:
            allowed = False
        else:
            allowed = permission in self._grants.get(self.role, frozenset())
        authz_decisions(decision="allow" if allowed else "deny").inc()
        if not allowed:
            log.debug(
                "authz.denied",
                permission=permission.value,
                role=self.role.value if self.role is not None else None,
                tenant_id=self._ctx.tenant_id,
            )
        return allowed

    def can_any(self, permissions: Iterable[Permission]) -> bool:
        if not self._has_access():
            return False
        return any(self.can(p) for p in permissions)

    def can_all(self, permissions: Iterable[Permission]) -> bool:
        if not self._has_access():
            return False
        return all(self.can(p) for p in permissions)


# ── Public API ────────────────────────────────────────────────────────────────

def can(ctx: TenantContext, permission: Permission) -> bool:
    return PermissionPolicy(ctx).can(permission)


def can_any(ctx: TenantContext, permissions: Iterable[Permission]) -> bool:
    return PermissionPolicy(ctx).can_any(permissions)


def can_all(ctx: TenantContext, permissions: Iterable[Permission]) -> bool:
    return PermissionPolicy(ctx).can_all(permissions)


def require_permission(ctx: TenantContext, permission: Permission) -> None:
    """
    Assert that the caller holds *permission*. Raises ForbiddenError if not.

    Usage:
        require_permission(ctx, Permission.INVITE_USERS)
    """
    if not can(ctx, permission):
        raise ForbiddenError(
            "forbidden",
            "You do not have permission to perform this action.",
            detail=f"{permission.value} denied in tenant {ctx.tenant_id}",
        )


__sdk_export__ = {
    "exports": [
        "Permission", "ROLE_PERMISSIONS", "PermissionPolicy",
        "can", "can_any", "can_all", "require_permission",
    ],
    "description": "Role → permission grants with any-of / all-of combinators",
    "tier": "tier3_platform",
    "module": "authorization",
}
