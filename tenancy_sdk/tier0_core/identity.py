"""
tenancy_sdk.tier0_core.identity
────────────────────────────────
Identity snapshot of an already-authenticated user: email, display name,
tenant memberships and the global super-admin flag. The raw credential /
session provider is external; it is reached through the IdentityProvider
protocol.

Select via: TENANCY_IDENTITY_PROVIDER=mock
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Protocol, runtime_checkable

from tenancy_sdk.tier0_core.config import get_config
from tenancy_sdk.tier0_core.errors import ValidationError
from tenancy_sdk.tier0_core.logging import get_logger

log = get_logger(__name__)


# ── Domain model ─────────────────────────────────────────────────────────────

class Role(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MANAGER = "manager"
    STAFF = "staff"
    VIEWER = "viewer"


@dataclass(frozen=True)
class Membership:
    """A user's role within one tenant."""
    tenant_id: str
    role: Role
    joined_at: datetime
    invited_by: str | None = None

    def to_document(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "role": self.role.value,
            "joined_at": self.joined_at.isoformat(),
            "invited_by": self.invited_by,
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "Membership":
        joined_at = doc["joined_at"]
        if isinstance(joined_at, str):
            joined_at = datetime.fromisoformat(joined_at)
        return cls(
            tenant_id=doc["tenant_id"],
            role=Role(doc["role"]),
            joined_at=joined_at,
            invited_by=doc.get("invited_by"),
        )


@dataclass(frozen=True)
class User:
    """Normalized identity snapshot, independent of the provider."""
    id: str
    email: str
    display_name: str = ""
    is_super_admin: bool = False
    memberships: tuple[Membership, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        seen: set[str] = set()
        for membership in self.memberships:
            if membership.tenant_id in seen:
                raise ValidationError(
                    "duplicate_membership",
                    "A user can belong to an organization only once.",
                    fields={"memberships": membership.tenant_id},
                )
            seen.add(membership.tenant_id)

    def membership_for(self, tenant_id: str) -> Membership | None:
        for membership in self.memberships:
            if membership.tenant_id == tenant_id:
                return membership
        return None

    def is_member_of(self, tenant_id: str) -> bool:
        return self.membership_for(tenant_id) is not None

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "display_name": self.display_name,
            "is_super_admin": self.is_super_admin,
            "memberships": [m.to_document() for m in self.memberships],
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "User":
        return cls(
            id=doc["id"],
            email=doc.get("email", ""),
            display_name=doc.get("display_name", ""),
            is_super_admin=bool(doc.get("is_super_admin", False)),
            memberships=tuple(
                Membership.from_document(m) for m in doc.get("memberships") or []
            ),
        )


AuthStateCallback = Callable[[User | None], Any]


# ── Provider protocol ─────────────────────────────────────────────────────────

@runtime_checkable
class IdentityProvider(Protocol):
    """Implement this protocol to plug in a session/credential backend."""

    def get_current_user(self) -> User | None: ...

    def on_auth_state_change(self, callback: AuthStateCallback) -> Callable[[], None]:
        """Register a callback; returns a function that unsubscribes it."""
        ...

    def sign_out(self) -> None: ...


# ── Mock provider (tests / local dev) ─────────────────────────────────────────

class MockIdentityProvider:
    """Deterministic in-process provider, never calls external services."""

    def __init__(self, user: User | None = None) -> None:
        self._user = user
        self._callbacks: list[AuthStateCallback] = []

    def get_current_user(self) -> User | None:
        return self._user

    def on_auth_state_change(self, callback: AuthStateCallback) -> Callable[[], None]:
        self._callbacks.append(callback)

        def _unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _unsubscribe

    def sign_in(self, user: User) -> None:
        self._user = user
        log.info("identity.signed_in", user_id=user.id)
        self._notify()

    def sign_out(self) -> None:
        if self._user is not None:
            log.info("identity.signed_out", user_id=self._user.id)
        self._user = None
        self._notify()

    def _notify(self) -> None:
        for callback in list(self._callbacks):
            callback(self._user)


# ── Provider registry ─────────────────────────────────────────────────────────

_provider: IdentityProvider | None = None


def _build_provider() -> IdentityProvider:
    name = get_config().identity_provider.lower()
    if name == "mock":
        return MockIdentityProvider()
    raise EnvironmentError(
        f"Unknown TENANCY_IDENTITY_PROVIDER={name!r}. Valid options: mock"
    )


def get_provider() -> IdentityProvider:
    global _provider
    if _provider is None:
        _provider = _build_provider()
    return _provider


def set_provider(provider: IdentityProvider) -> None:
    """Install an externally-built provider (call at application startup)."""
    global _provider
    _provider = provider


def _reset_provider() -> None:
    """For tests: reset provider so env changes take effect."""
    global _provider
    _provider = None


# ── Public API ────────────────────────────────────────────────────────────────

def get_current_user() -> User | None:
    """Return the signed-in user snapshot, or None."""
    return get_provider().get_current_user()


__sdk_export__ = {
    "exports": ["User", "Membership", "Role", "IdentityProvider", "get_current_user"],
    "description": "Identity snapshot and provider abstraction",
    "tier": "tier0_core",
    "module": "identity",
}
