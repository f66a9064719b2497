"""Tests for tier1_runtime and tier2_reliability modules."""
from __future__ import annotations

from datetime import datetime, timezone

import pytest

from tenancy_sdk.tier1_runtime.clock import Clock, SteppingClock, now, set_clock


# ── clock ──────────────────────────────────────────────────────────────────

class TestClock:
    def test_now_returns_utc_datetime(self):
        dt = now()
        assert dt.tzinfo is not None

    def test_frozen_clock(self):
        fixed = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        clock = Clock().freeze(fixed)
        assert clock.now() == fixed
        assert clock.timestamp() == fixed.timestamp()

    def test_frozen_clock_set_global(self):
        from tenancy_sdk.tier1_runtime.clock import get_clock
        fixed = datetime(2025, 6, 15, 0, 0, 0, tzinfo=timezone.utc)
        frozen = Clock().freeze(fixed)
        set_clock(frozen)
        assert get_clock() is frozen
        assert now() == fixed

    def test_month_start(self):
        clock = Clock().freeze(datetime(2026, 2, 28, 23, 59, 59, 999, tzinfo=timezone.utc))
        assert clock.month_start() == datetime(2026, 2, 1, tzinfo=timezone.utc)

    def test_stepping_clock_advances_per_read(self):
        start = datetime(2026, 1, 1, tzinfo=timezone.utc)
        clock = SteppingClock(start, step=2.0)
        assert clock.timestamp() == start.timestamp()
        assert clock.timestamp() == start.timestamp() + 2.0
        assert clock.now() > start


# ── audit ──────────────────────────────────────────────────────────────────

class TestAudit:
    @pytest.mark.asyncio
    async def test_log_backend_returns_record(self, make_user):
        from tenancy_sdk.tier2_reliability.audit import audit
        user = make_user("u1")
        record = await audit(user, "clients.delete", "clients", "c-1", tenant_id="t1")
        assert record.actor_id == "u1"
        assert record.tenant_id == "t1"
        assert record.outcome == "success"
        assert record.id

    @pytest.mark.asyncio
    async def test_actor_may_be_plain_id(self):
        from tenancy_sdk.tier2_reliability.audit import audit
        record = await audit("system", "clients.update", "clients", "c-1", outcome="denied")
        assert record.actor_id == "system"
        assert record.tenant_id is None
        assert record.outcome == "denied"

    @pytest.mark.asyncio
    async def test_db_backend_appends_row(self, monkeypatch, tmp_path):
        from sqlalchemy import select

        from tenancy_sdk.tier0_core.config import _reset_config
        from tenancy_sdk.tier0_core.data import create_schema, dispose_engine, get_session
        from tenancy_sdk.tier2_reliability.audit import AuditRow, audit

        monkeypatch.setenv("TENANCY_AUDIT_BACKEND", "db")
        monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'audit.db'}")
        _reset_config()
        await create_schema()
        try:
            record = await audit(
                "u1", "members.add", "users", "u2", tenant_id="t1", metadata={"role": "staff"}
            )
            async with get_session() as session:
                rows = (await session.execute(select(AuditRow))).scalars().all()
            assert [r.id for r in rows] == [record.id]
            assert rows[0].tenant_id == "t1"
            assert rows[0].extra == {"role": "staff"}
        finally:
            await dispose_engine()
