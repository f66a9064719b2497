"""
tenancy_sdk.tier0_core.errors
──────────────────────────────
Standard error taxonomy for the tenancy engine. Every error carries a stable
machine-readable code, a user-safe message and internal detail. Raising a
PlatformError here automatically reports it if an error backend is configured.

Decision predicates (can, has_module_access, evaluate, resolve) never raise
these; they are reserved for the data layer and programmer errors.

Select via: TENANCY_ERROR_BACKEND=sentry|none
"""
from __future__ import annotations

import os
from typing import Any


# ── Base error ────────────────────────────────────────────────────────────────

class PlatformError(Exception):
    """
    Base class for all tenancy errors. Every error has:
    - code: stable machine-readable string (snake_case)
    - user_message: safe to surface to end users
    - detail: internal context, never shown to users
    - status_code: HTTP status code for API responses
    """

    status_code: int = 500
    code: str = "internal_error"

    def __init__(
        self,
        code: str | None = None,
        user_message: str = "An unexpected error occurred.",
        detail: str | None = None,
        **metadata: Any,
    ) -> None:
        self.code = code or self.__class__.code
        self.user_message = user_message
        self.detail = detail or user_message
        self.metadata = metadata
        super().__init__(self.detail)
        _capture(self)

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.user_message,
            }
        }


# ── Generic kinds ─────────────────────────────────────────────────────────────

class ForbiddenError(PlatformError):
    """The caller is signed in but lacks the permission for this action."""
    status_code = 403
    code = "forbidden"


class ValidationError(PlatformError):
    """Input validation failure."""
    status_code = 422
    code = "validation_error"

    def __init__(
        self,
        code: str | None = None,
        user_message: str = "Validation failed.",
        fields: dict | None = None,
        **metadata: Any,
    ) -> None:
        self.fields = fields or {}
        super().__init__(code, user_message, **metadata)

    def to_dict(self) -> dict:
        d = super().to_dict()
        if self.fields:
            d["error"]["fields"] = self.fields
        return d


class NotFoundError(PlatformError):
    """Requested resource does not exist."""
    status_code = 404
    code = "not_found"


class ConflictError(PlatformError):
    """Resource state conflict (e.g., duplicate membership)."""
    status_code = 409
    code = "conflict"


class ConfigurationError(PlatformError):
    """Misconfiguration detected at startup."""
    status_code = 500
    code = "configuration_error"


# ── Tenancy kinds ─────────────────────────────────────────────────────────────

class TenantNotAuthorized(ForbiddenError):
    """The requested tenant is not among the caller's memberships."""
    code = "tenant_not_authorized"

    def __init__(
        self,
        tenant_id: str,
        user_message: str = "You do not have access to this organization.",
        **metadata: Any,
    ) -> None:
        self.tenant_id = tenant_id
        super().__init__(
            None,
            user_message,
            detail=f"tenant {tenant_id!r} is not in the caller's memberships",
            tenant_id=tenant_id,
            **metadata,
        )


class MissingTenantId(PlatformError):
    """A tenant-owned entity reached the data layer without a matching tenant_id."""
    status_code = 500
    code = "missing_tenant_id"

    def __init__(self, collection: str, detail: str | None = None, **metadata: Any) -> None:
        self.collection = collection
        super().__init__(
            None,
            "An unexpected error occurred.",
            detail=detail or f"{collection}: entity has no tenant_id",
            collection=collection,
            **metadata,
        )


class QuotaExceeded(PlatformError):
    """A plan-limited resource is exhausted. Recoverable by upgrading the plan."""
    status_code = 402
    code = "quota_exceeded"

    def __init__(
        self,
        resource: str,
        current: int,
        maximum: int,
        required_plan: str | None = None,
        **metadata: Any,
    ) -> None:
        self.resource = resource
        self.current = current
        self.maximum = maximum
        self.required_plan = required_plan
        super().__init__(
            None,
            f"You have reached the {resource} limit of your plan.",
            detail=f"{resource}: {current}/{maximum}",
            resource=resource,
            **metadata,
        )

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["error"]["resource"] = self.resource
        d["error"]["limit"] = self.maximum
        if self.required_plan:
            d["error"]["upgrade_to"] = self.required_plan
        return d


class NotFoundOrForbidden(NotFoundError):
    """
    The record does not exist or belongs to another tenant. The two causes are
    deliberately indistinguishable, including in detail and metadata.
    """
    code = "not_found"

    def __init__(self, collection: str, record_id: str) -> None:
        self.collection = collection
        self.record_id = record_id
        super().__init__(
            None,
            "The requested record was not found.",
            detail=f"{collection}/{record_id} not found",
        )


# ── Error capture backend ─────────────────────────────────────────────────────

def _capture(error: PlatformError) -> None:
    """Send error to configured backend. Called automatically by PlatformError.__init__."""
    from tenancy_sdk.tier0_core.config import get_config

    if get_config().error_backend.lower() == "sentry":
        _capture_sentry(error)


def _capture_sentry(error: PlatformError) -> None:
    import sentry_sdk

    with sentry_sdk.new_scope() as scope:
        scope.set_tag("error_code", error.code)
        tenant_id = error.metadata.get("tenant_id")
        if tenant_id:
            scope.set_tag("tenant_id", tenant_id)
        # Quota and permission denials are expected traffic, not crashes.
        if error.status_code >= 500:
            scope.capture_exception(error)
        else:
            scope.capture_message(str(error), level="warning")


def configure_sentry(dsn: str, **kwargs: Any) -> None:
    """Initialize Sentry and route PlatformErrors to it. Call once at startup."""
    import sentry_sdk

    from tenancy_sdk.tier0_core.config import _reset_config

    sentry_sdk.init(dsn=dsn, **kwargs)
    os.environ["TENANCY_ERROR_BACKEND"] = "sentry"
    _reset_config()


__sdk_export__ = {
    "exports": [
        "PlatformError", "ForbiddenError", "ValidationError", "NotFoundError",
        "ConflictError", "ConfigurationError", "TenantNotAuthorized",
        "MissingTenantId", "QuotaExceeded", "NotFoundOrForbidden",
    ],
    "description": "Error taxonomy for tenant isolation, permissions and quotas",
    "tier": "tier0_core",
    "module": "errors",
}
