"""
tenancy_sdk.tier3_platform.memberships
───────────────────────────────────────
Team management: memberships and invitations.

User documents own their memberships (a list of Membership documents) and a
denormalized ``tenant_ids`` list used for member queries. Adding a member is
checked against the tenant's USERS quota the same way the repository guard
checks record quotas.

Invitation lifecycle:
    pending ──accept──▶ accepted      (adds the membership)
            ──reject──▶ rejected
            ──cancel──▶ (deleted)
            ──ttl─────▶ expired       (applied lazily on read)

At most one pending invitation exists per (email, tenant).
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from tenancy_sdk.tier0_core.config import get_config
from tenancy_sdk.tier0_core.data import DocumentStore, Filter, OrderBy, get_store
from tenancy_sdk.tier0_core.errors import (
    ConflictError,
    NotFoundError,
    QuotaExceeded,
    ValidationError,
)
from tenancy_sdk.tier0_core.identity import Membership, Role, User
from tenancy_sdk.tier0_core.logging import get_logger
from tenancy_sdk.tier0_core.metrics import quota_blocks
from tenancy_sdk.tier1_runtime.clock import Clock, get_clock
from tenancy_sdk.tier2_reliability.audit import audit
from tenancy_sdk.tier3_platform.authorization import Permission, require_permission
from tenancy_sdk.tier3_platform.multi_tenancy import Tenant, TenantContext, TenantDirectory
from tenancy_sdk.tier3_platform.plans import ResourceKind, UNLIMITED
from tenancy_sdk.tier3_platform.quota import QuotaEvaluation, evaluate, upgrade_hint

log = get_logger(__name__)

USERS_COLLECTION = "users"
INVITATIONS_COLLECTION = "invitations"


class InvitationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


@dataclass(frozen=True)
class Invitation:
    id: str
    tenant_id: str
    email: str
    role: Role
    invited_by: str
    status: InvitationStatus
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at < now

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "email": self.email,
            "role": self.role.value,
            "invited_by": self.invited_by,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "Invitation":
        return cls(
            id=doc["id"],
            tenant_id=doc["tenant_id"],
            email=doc["email"],
            role=Role(doc["role"]),
            invited_by=doc.get("invited_by", ""),
            status=InvitationStatus(doc.get("status", InvitationStatus.PENDING.value)),
            created_at=datetime.fromisoformat(doc["created_at"]),
            expires_at=datetime.fromisoformat(doc["expires_at"]),
        )


def _user_document(user: User) -> dict[str, Any]:
    doc = user.to_document()
    doc["tenant_ids"] = [m.tenant_id for m in user.memberships]
    return doc


class MembershipService:
    def __init__(
        self,
        store: DocumentStore | None = None,
        clock: Clock | None = None,
        directory: TenantDirectory | None = None,
    ) -> None:
        self._store = store or get_store()
        self._clock = clock or get_clock()
        self._directory = directory or TenantDirectory(self._store, self._clock)

    # ── Users ─────────────────────────────────────────────────────────────────

    async def get_user(self, user_id: str) -> User | None:
        doc = await self._store.get_by_id(USERS_COLLECTION, user_id)
        return User.from_document(doc) if doc is not None else None

    async def save_user(self, user: User) -> None:
        """Insert or replace the user document."""
        doc = _user_document(user)
        if not await self._store.update(USERS_COLLECTION, user.id, doc):
            await self._store.insert(USERS_COLLECTION, doc)

    async def list_members(self, tenant_id: str) -> list[tuple[User, Membership]]:
        """Members of *tenant_id* with their membership, earliest joiner first."""
        docs = await self._store.query(
            USERS_COLLECTION, [Filter("tenant_ids", "contains", tenant_id)]
        )
        members = []
        for doc in docs:
            user = User.from_document(doc)
            membership = user.membership_for(tenant_id)
            if membership is not None:
                members.append((user, membership))
        members.sort(key=lambda pair: pair[1].joined_at)
        return members

    async def count_members(self, tenant_id: str) -> int:
        return len(await self.list_members(tenant_id))

    async def seat_status(self, tenant: Tenant) -> QuotaEvaluation:
        """Live USERS quota evaluation for *tenant*."""
        return evaluate(
            ResourceKind.USERS,
            await self.count_members(tenant.id),
            tenant.limit(ResourceKind.USERS),
        )

    # ── Memberships ───────────────────────────────────────────────────────────

    async def add_member(
        self, ctx: TenantContext, user_id: str, role: Role
    ) -> Membership:
        """Add *user_id* to the active tenant. Requires INVITE_USERS."""
        require_permission(ctx, Permission.INVITE_USERS)
        tenant = self._active_tenant(ctx)
        return await self._add_membership(tenant, user_id, role, invited_by=ctx.user.id)

    async def remove_member(self, ctx: TenantContext, user_id: str) -> None:
        """Remove *user_id* from the active tenant. Requires REMOVE_USERS."""
        require_permission(ctx, Permission.REMOVE_USERS)
        tenant = self._active_tenant(ctx)
        user = await self._member(tenant.id, user_id)

        updated = replace(
            user,
            memberships=tuple(m for m in user.memberships if m.tenant_id != tenant.id),
        )
        await self.save_user(updated)
        log.info("membership.removed", tenant_id=tenant.id, user_id=user_id)
        await audit(ctx.user, "members.remove", USERS_COLLECTION, user_id, tenant_id=tenant.id)

    async def change_role(self, ctx: TenantContext, user_id: str, role: Role) -> Membership:
        """Give *user_id* a new role in the active tenant. Requires CHANGE_USER_ROLES."""
        require_permission(ctx, Permission.CHANGE_USER_ROLES)
        tenant = self._active_tenant(ctx)
        user = await self._member(tenant.id, user_id)

        changed = replace(user.membership_for(tenant.id), role=role)
        memberships = tuple(
            changed if m.tenant_id == tenant.id else m for m in user.memberships
        )
        await self.save_user(replace(user, memberships=memberships))

        log.info("membership.role_changed", tenant_id=tenant.id, user_id=user_id, role=role.value)
        await audit(
            ctx.user, "members.change_role", USERS_COLLECTION, user_id,
            tenant_id=tenant.id, metadata={"role": role.value},
        )
        return changed

    # ── Invitations ───────────────────────────────────────────────────────────

    async def invite(self, ctx: TenantContext, email: str, role: Role) -> Invitation:
        """Create a pending invitation. Requires INVITE_USERS."""
        require_permission(ctx, Permission.INVITE_USERS)
        tenant = self._active_tenant(ctx)
        email = email.strip().lower()
        if "@" not in email:
            raise ValidationError(
                "invalid_email", "Enter a valid email address.", fields={"email": "invalid"}
            )

        if await self._pending_for(email, tenant.id):
            raise ConflictError(
                "invitation_pending",
                "There is already a pending invitation for this user.",
                detail=f"pending invitation for {email} in {tenant.id}",
            )

        now = self._clock.now()
        invitation = Invitation(
            id="",
            tenant_id=tenant.id,
            email=email,
            role=role,
            invited_by=ctx.user.id,
            status=InvitationStatus.PENDING,
            created_at=now,
            expires_at=now + timedelta(days=get_config().invitation_ttl_days),
        )
        doc = invitation.to_document()
        del doc["id"]
        invitation = replace(invitation, id=await self._store.insert(INVITATIONS_COLLECTION, doc))

        log.info(
            "invitation.created", tenant_id=tenant.id, invitation_id=invitation.id, email=email
        )
        await audit(
            ctx.user, "invitations.create", INVITATIONS_COLLECTION, invitation.id,
            tenant_id=tenant.id, metadata={"role": role.value},
        )
        return invitation

    async def get_invitation(self, invitation_id: str) -> Invitation | None:
        """The invitation, with a lapsed pending one marked expired."""
        doc = await self._store.get_by_id(INVITATIONS_COLLECTION, invitation_id)
        if doc is None:
            return None
        return await self._expire_if_lapsed(Invitation.from_document(doc))

    async def invitations_for(self, email: str) -> list[Invitation]:
        """Pending, unexpired invitations addressed to *email*."""
        docs = await self._store.query(
            INVITATIONS_COLLECTION,
            [
                Filter("email", "==", email.strip().lower()),
                Filter("status", "==", InvitationStatus.PENDING.value),
            ],
            OrderBy("created_at", descending=True),
        )
        result = []
        for doc in docs:
            invitation = await self._expire_if_lapsed(Invitation.from_document(doc))
            if invitation.status is InvitationStatus.PENDING:
                result.append(invitation)
        return result

    async def tenant_invitations(self, tenant_id: str) -> list[Invitation]:
        docs = await self._store.query(
            INVITATIONS_COLLECTION,
            [Filter("tenant_id", "==", tenant_id)],
            OrderBy("created_at", descending=True),
        )
        return [await self._expire_if_lapsed(Invitation.from_document(d)) for d in docs]

    async def accept_invitation(self, invitation_id: str, user: User) -> Membership:
        """Accept on behalf of *user*; adds the membership the invitation grants."""
        invitation = await self._open_invitation(invitation_id, user)
        tenant = await self._directory.get(invitation.tenant_id)
        if tenant is None or not tenant.active:
            raise NotFoundError(
                user_message="Organization not found.", detail=f"tenant {invitation.tenant_id}"
            )

        membership = await self._add_membership(
            tenant, user.id, invitation.role, invited_by=invitation.invited_by
        )
        await self._set_status(invitation, InvitationStatus.ACCEPTED)
        log.info("invitation.accepted", tenant_id=tenant.id, invitation_id=invitation_id)
        return membership

    async def reject_invitation(self, invitation_id: str, user: User) -> None:
        """Decline on behalf of *user*, who must be the addressee."""
        invitation = await self._open_invitation(invitation_id, user)
        await self._set_status(invitation, InvitationStatus.REJECTED)
        log.info("invitation.rejected", tenant_id=invitation.tenant_id, invitation_id=invitation_id)

    async def cancel_invitation(self, ctx: TenantContext, invitation_id: str) -> None:
        """Withdraw an invitation of the active tenant. Requires INVITE_USERS."""
        require_permission(ctx, Permission.INVITE_USERS)
        doc = await self._store.get_by_id(INVITATIONS_COLLECTION, invitation_id)
        if doc is None or doc.get("tenant_id") != ctx.tenant_id:
            raise NotFoundError(
                "invitation_not_found", "Invitation not found.", detail=f"invitation {invitation_id}"
            )
        await self._store.delete(INVITATIONS_COLLECTION, invitation_id)
        log.info("invitation.cancelled", tenant_id=ctx.tenant_id, invitation_id=invitation_id)
        await audit(
            ctx.user, "invitations.cancel", INVITATIONS_COLLECTION, invitation_id,
            tenant_id=ctx.tenant_id,
        )

    async def count_pending(self, tenant_id: str) -> int:
        now = self._clock.now()
        return sum(
            1
            for inv in await self.tenant_invitations(tenant_id)
            if inv.status is InvitationStatus.PENDING and not inv.is_expired(now)
        )

    # ── Internals ─────────────────────────────────────────────────────────────

    @staticmethod
    def _active_tenant(ctx: TenantContext) -> Tenant:
        if ctx.tenant is None:
            raise NotFoundError(user_message="No organization is active.", detail="no active tenant")
        return ctx.tenant

    async def _member(self, tenant_id: str, user_id: str) -> User:
        user = await self.get_user(user_id)
        if user is None or not user.is_member_of(tenant_id):
            raise NotFoundError(
                "member_not_found",
                "This user is not a member of the organization.",
                detail=f"user {user_id} in tenant {tenant_id}",
            )
        return user

    async def _add_membership(
        self, tenant: Tenant, user_id: str, role: Role, invited_by: str | None
    ) -> Membership:
        user = await self.get_user(user_id)
        if user is None:
            raise NotFoundError(user_message="User not found.", detail=f"user {user_id}")
        if user.is_member_of(tenant.id):
            raise ConflictError(
                "already_member",
                "This user already belongs to the organization.",
                detail=f"user {user_id} already in tenant {tenant.id}",
            )

        if tenant.limit(ResourceKind.USERS) != UNLIMITED:
            seats = await self.seat_status(tenant)
            if seats.is_at_limit:
                quota_blocks(resource=ResourceKind.USERS.value).inc()
                log.warning(
                    "quota.exceeded",
                    tenant_id=tenant.id,
                    resource=ResourceKind.USERS.value,
                    current=seats.current,
                    maximum=seats.maximum,
                )
                raise QuotaExceeded(
                    ResourceKind.USERS.value,
                    seats.current,
                    seats.maximum,
                    required_plan=upgrade_hint(tenant, ResourceKind.USERS),
                )

        membership = Membership(
            tenant_id=tenant.id,
            role=role,
            joined_at=self._clock.now(),
            invited_by=invited_by,
        )
        await self.save_user(replace(user, memberships=(*user.memberships, membership)))
        log.info("membership.added", tenant_id=tenant.id, user_id=user_id, role=role.value)
        await audit(
            invited_by or user_id, "members.add", USERS_COLLECTION, user_id,
            tenant_id=tenant.id, metadata={"role": role.value},
        )
        return membership

    async def _pending_for(self, email: str, tenant_id: str) -> bool:
        docs = await self._store.query(
            INVITATIONS_COLLECTION,
            [
                Filter("email", "==", email),
                Filter("tenant_id", "==", tenant_id),
                Filter("status", "==", InvitationStatus.PENDING.value),
            ],
        )
        for doc in docs:
            invitation = await self._expire_if_lapsed(Invitation.from_document(doc))
            if invitation.status is InvitationStatus.PENDING:
                return True
        return False

    async def _open_invitation(self, invitation_id: str, user: User) -> Invitation:
        invitation = await self.get_invitation(invitation_id)
        # Someone else's invitation is indistinguishable from a missing one.
        if invitation is None or invitation.email != user.email.strip().lower():
            raise NotFoundError(
                "invitation_not_found", "Invitation not found.", detail=f"invitation {invitation_id}"
            )
        if invitation.status is not InvitationStatus.PENDING:
            raise ConflictError(
                "invitation_closed",
                f"This invitation is {invitation.status.value}.",
                detail=f"invitation {invitation_id} is {invitation.status.value}",
            )
        return invitation

    async def _expire_if_lapsed(self, invitation: Invitation) -> Invitation:
        if invitation.status is InvitationStatus.PENDING and invitation.is_expired(self._clock.now()):
            return await self._set_status(invitation, InvitationStatus.EXPIRED)
        return invitation

    async def _set_status(self, invitation: Invitation, status: InvitationStatus) -> Invitation:
        await self._store.update(INVITATIONS_COLLECTION, invitation.id, {"status": status.value})
        return replace(invitation, status=status)


__sdk_export__ = {
    "exports": ["MembershipService", "Invitation", "InvitationStatus"],
    "description": "Tenant memberships and invitations with seat quotas",
    "tier": "tier3_platform",
    "module": "memberships",
}
