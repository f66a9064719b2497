"""
tenancy_sdk.tier3_platform.ledger
──────────────────────────────────
Cash ledger: income and expense movements per tenant, read by date range.
Movements are ordinary tenant-owned records and go through the repository
guard; dates are stored as ISO strings (YYYY-MM-DD) so range filters compare
lexically.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum

from tenancy_sdk.tier0_core.data import Document, DocumentStore, Filter
from tenancy_sdk.tier0_core.errors import ValidationError
from tenancy_sdk.tier1_runtime.clock import Clock
from tenancy_sdk.tier3_platform.multi_tenancy import TenantContext
from tenancy_sdk.tier3_platform.repository import RecordKind, TenantScopedRepository


class MovementType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


@dataclass(frozen=True)
class Balance:
    income: Decimal
    expense: Decimal

    @property
    def net(self) -> Decimal:
        return self.income - self.expense


class CashLedger:
    def __init__(self, store: DocumentStore | None = None, clock: Clock | None = None) -> None:
        self._movements = TenantScopedRepository(RecordKind.CASH_MOVEMENTS, store, clock)

    @property
    def movements(self) -> TenantScopedRepository:
        return self._movements

    async def record(
        self,
        ctx: TenantContext,
        movement_type: MovementType,
        amount: Decimal | int | float | str,
        on: date,
        description: str = "",
        category: str | None = None,
    ) -> Document:
        try:
            value = Decimal(str(amount))
        except InvalidOperation:
            value = None
        # NaN and infinities parse but cannot be balanced.
        if value is None or not value.is_finite() or value <= 0:
            raise ValidationError(
                "invalid_amount",
                "Amount must be greater than zero.",
                fields={"amount": "must be positive"},
            )
        return await self._movements.create(ctx, {
            "tenant_id": ctx.tenant_id,
            "type": MovementType(movement_type).value,
            "amount": str(value),
            "date": on.isoformat(),
            "description": description,
            "category": category,
        })

    async def by_date_range(self, tenant_id: str, start: date, end: date) -> list[Document]:
        """Movements dated start..end inclusive, latest date first."""
        docs = await self._movements.query(
            tenant_id,
            [Filter("date", ">=", start.isoformat()), Filter("date", "<=", end.isoformat())],
        )
        # Stable: same-day movements keep newest-created first.
        return sorted(docs, key=lambda d: d["date"], reverse=True)

    async def balance(self, tenant_id: str, start: date, end: date) -> Balance:
        income = expense = Decimal("0")
        for doc in await self.by_date_range(tenant_id, start, end):
            amount = Decimal(str(doc.get("amount", "0")))
            if doc.get("type") == MovementType.INCOME.value:
                income += amount
            elif doc.get("type") == MovementType.EXPENSE.value:
                expense += amount
        return Balance(income=income, expense=expense)


__sdk_export__ = {
    "exports": ["CashLedger", "MovementType", "Balance"],
    "description": "Tenant-scoped cash movements with date-range balance",
    "tier": "tier3_platform",
    "module": "ledger",
}
