"""
tenancy_sdk.tier3_platform.numbering
─────────────────────────────────────
Per-tenant work-order numbers: ``<PREFIX>-YYYYMM-NNNN``.

The sequence lives in a counter document keyed by tenant id and advances
through the store's atomic increment. A tenant without a counter is seeded
from the highest sequence among its existing jobs, so numbering continues
where imported data left off. Seeding itself is not atomic; two first calls
racing for the same tenant can skip numbers, never repeat them.
"""
from __future__ import annotations

from tenancy_sdk.tier0_core.config import get_config
from tenancy_sdk.tier0_core.data import DocumentStore
from tenancy_sdk.tier0_core.logging import get_logger
from tenancy_sdk.tier1_runtime.clock import Clock, get_clock
from tenancy_sdk.tier3_platform.repository import RecordKind, TenantScopedRepository

log = get_logger(__name__)

COUNTERS_COLLECTION = "tenant_counters"
JOBS_COUNTER_FIELD = "jobs_counter"
JOB_NUMBER_FIELD = "number"


def parse_sequence(number: object) -> int | None:
    """Sequence part of ``PREFIX-YYYYMM-NNNN``, or None when malformed."""
    if not isinstance(number, str):
        return None
    parts = number.split("-")
    if len(parts) != 3 or not parts[2].isdigit():
        return None
    return int(parts[2])


async def highest_job_sequence(store: DocumentStore, tenant_id: str) -> int:
    jobs = await TenantScopedRepository(RecordKind.JOBS, store).get_all(tenant_id)
    sequences = [parse_sequence(job.get(JOB_NUMBER_FIELD)) for job in jobs]
    return max((s for s in sequences if s is not None), default=0)


async def current_counter(store: DocumentStore, tenant_id: str) -> int:
    """Last issued sequence (0 when none was issued yet)."""
    doc = await store.get_by_id(COUNTERS_COLLECTION, tenant_id)
    return int(doc.get(JOBS_COUNTER_FIELD) or 0) if doc is not None else 0


async def next_work_order_number(
    store: DocumentStore,
    tenant_id: str,
    clock: Clock | None = None,
) -> str:
    """
    Issue the next work-order number for *tenant_id*.

    Usage:
        number = await next_work_order_number(store, ctx.tenant_id)
        # "WO-202610-0042"
    """
    if not tenant_id:
        raise ValueError("tenant_id is required")
    clock = clock or get_clock()

    if await store.get_by_id(COUNTERS_COLLECTION, tenant_id) is None:
        seed = await highest_job_sequence(store, tenant_id)
        await store.increment(COUNTERS_COLLECTION, tenant_id, JOBS_COUNTER_FIELD, seed)
        log.info("numbering.counter_seeded", tenant_id=tenant_id, seed=seed)

    sequence = await store.increment(COUNTERS_COLLECTION, tenant_id, JOBS_COUNTER_FIELD)
    number = f"{get_config().work_order_prefix}-{clock.now():%Y%m}-{sequence:04d}"
    log.debug("numbering.issued", tenant_id=tenant_id, number=number)
    return number


__sdk_export__ = {
    "exports": ["next_work_order_number", "current_counter", "parse_sequence"],
    "description": "Atomic per-tenant work-order numbering",
    "tier": "tier3_platform",
    "module": "numbering",
}
