"""
tenancy_sdk test configuration.

All tests run against the mock identity provider and the in-memory document
store by default, so no external services are required. Override by setting
environment variables before running pytest.
"""
from __future__ import annotations

import os
from datetime import datetime, timezone

import pytest
import pytest_asyncio

# ── Force mock providers for all tests ────────────────────────────────────
# These must be set before any tenancy_sdk modules are imported.

os.environ.setdefault("TENANCY_ENV", "test")
os.environ.setdefault("TENANCY_STORE_BACKEND", "memory")
os.environ.setdefault("TENANCY_IDENTITY_PROVIDER", "mock")
os.environ.setdefault("TENANCY_ERROR_BACKEND", "none")
os.environ.setdefault("TENANCY_AUDIT_BACKEND", "log")
os.environ.setdefault("APP_NAME", "tenancy-test")

FROZEN_AT = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


# ── Fixtures ───────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def reset_module_singletons():
    """
    Reset cached config, provider, store and clock singletons between tests
    so each test starts with no state bleed.
    """
    import tenancy_sdk.tier0_core.config as _config
    import tenancy_sdk.tier0_core.data as _data
    import tenancy_sdk.tier0_core.identity as _identity
    import tenancy_sdk.tier1_runtime.clock as _clock

    orig_clock = _clock.get_clock()
    _config._reset_config()
    _data._reset()
    _identity._reset_provider()

    yield

    _clock.set_clock(orig_clock)
    _config._reset_config()
    _data._reset()
    _identity._reset_provider()


@pytest.fixture
def store():
    from tenancy_sdk.tier0_core.data import InMemoryDocumentStore
    return InMemoryDocumentStore()


@pytest.fixture
def clock():
    """A clock that advances one second per read, so created_at values are distinct."""
    from tenancy_sdk.tier1_runtime.clock import SteppingClock
    return SteppingClock(FROZEN_AT)


@pytest.fixture
def directory(store, clock):
    from tenancy_sdk.tier3_platform.multi_tenancy import TenantDirectory
    return TenantDirectory(store, clock)


@pytest.fixture
def make_user():
    """Build a User with memberships given as (tenant_id, role) pairs, joined in order."""
    from datetime import timedelta

    from tenancy_sdk.tier0_core.identity import Membership, User

    def _make(user_id="u1", memberships=(), *, super_admin=False, email=None):
        return User(
            id=user_id,
            email=email or f"{user_id}@example.com",
            display_name=user_id.upper(),
            is_super_admin=super_admin,
            memberships=tuple(
                Membership(tenant_id, role, FROZEN_AT - timedelta(days=30 - i))
                for i, (tenant_id, role) in enumerate(memberships)
            ),
        )

    return _make


@pytest.fixture
def make_context():
    """TenantContext for *user* acting in *tenant*."""
    from tenancy_sdk.tier3_platform.multi_tenancy import TenantContext

    def _make(user, tenant=None, loading=False):
        return TenantContext(user=user, tenant=tenant, loading=loading)

    return _make


@pytest_asyncio.fixture
async def basic_tenant(directory):
    from tenancy_sdk.tier3_platform.plans import PlanTier
    return await directory.create_tenant("Taller Norte", PlanTier.BASIC, tenant_id="t-basic")


@pytest_asyncio.fixture
async def trial_tenant(directory):
    from tenancy_sdk.tier3_platform.plans import PlanTier
    return await directory.create_tenant("Taller Sur", PlanTier.TRIAL, tenant_id="t-trial")
