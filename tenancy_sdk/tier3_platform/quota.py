"""
tenancy_sdk.tier3_platform.quota
─────────────────────────────────
Resource quota monitor. Classifies (current, maximum) into a usage state and
the UI treatment that goes with it:

    NORMAL     below warning threshold   → no notice
    WARNING    warning ≤ pct < critical  → informational banner
    CRITICAL   critical ≤ pct < 100      → upgrade modal
    EXHAUSTED  pct ≥ 100, or maximum 0   → hard block on create

Thresholds come from TenancyConfig (80 / 95 / 100 by default) so the three
treatments stay consistent. A maximum of UNLIMITED (-1) is always NORMAL.
The monitor does not block anything itself; the repository guard consults it
before inserts.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from tenancy_sdk.tier0_core.config import get_config
from tenancy_sdk.tier0_core.logging import get_logger
from tenancy_sdk.tier0_core.metrics import quota_evaluations
from tenancy_sdk.tier3_platform.multi_tenancy import Tenant
from tenancy_sdk.tier3_platform.plans import ResourceKind, UNLIMITED, upgrade_target

log = get_logger(__name__)


class UsageState(str, Enum):
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"
    EXHAUSTED = "exhausted"


class Notice(str, Enum):
    NONE = "none"
    BANNER = "banner"
    UPGRADE_MODAL = "upgrade_modal"
    BLOCK = "block"


_NOTICE_FOR_STATE = {
    UsageState.NORMAL: Notice.NONE,
    UsageState.WARNING: Notice.BANNER,
    UsageState.CRITICAL: Notice.UPGRADE_MODAL,
    UsageState.EXHAUSTED: Notice.BLOCK,
}


@dataclass(frozen=True)
class QuotaThresholds:
    warning: float = 80.0
    critical: float = 95.0
    exhausted: float = 100.0

    @classmethod
    def from_config(cls) -> "QuotaThresholds":
        cfg = get_config()
        return cls(
            warning=cfg.quota_warning_pct,
            critical=cfg.quota_critical_pct,
            exhausted=cfg.quota_exhausted_pct,
        )


@dataclass(frozen=True)
class QuotaEvaluation:
    resource: ResourceKind
    current: int
    maximum: int
    state: UsageState
    percentage: float  # raw, may exceed 100

    @property
    def is_unlimited(self) -> bool:
        return self.maximum == UNLIMITED

    @property
    def display_percentage(self) -> float:
        """Percentage clamped to [0, 100] for progress indicators."""
        return max(0.0, min(100.0, self.percentage))

    @property
    def notice(self) -> Notice:
        return _NOTICE_FOR_STATE[self.state]

    @property
    def is_near_limit(self) -> bool:
        return self.state is not UsageState.NORMAL

    @property
    def is_at_limit(self) -> bool:
        return self.state is UsageState.EXHAUSTED

    @property
    def remaining(self) -> int | None:
        if self.is_unlimited:
            return None
        return max(0, self.maximum - self.current)


def evaluate(
    resource: ResourceKind,
    current: int,
    maximum: int,
    thresholds: QuotaThresholds | None = None,
) -> QuotaEvaluation:
    """Classify usage of *resource*. Pure apart from metrics."""
    t = thresholds or QuotaThresholds.from_config()

    if maximum == UNLIMITED:
        state, percentage = UsageState.NORMAL, 0.0
    elif maximum <= 0:
        # No quota granted.
        state, percentage = UsageState.EXHAUSTED, 100.0
    else:
        percentage = current / maximum * 100
        if percentage >= t.exhausted:
            state = UsageState.EXHAUSTED
        elif percentage >= t.critical:
            state = UsageState.CRITICAL
        elif percentage >= t.warning:
            state = UsageState.WARNING
        else:
            state = UsageState.NORMAL

    quota_evaluations(resource=resource.value, state=state.value).inc()
    return QuotaEvaluation(
        resource=resource,
        current=current,
        maximum=maximum,
        state=state,
        percentage=percentage,
    )


def evaluate_quota(
    tenant: Tenant,
    resource: ResourceKind,
    current: int | None = None,
) -> QuotaEvaluation:
    """
    Evaluate *resource* for *tenant*. Uses the tenant's stored usage snapshot
    unless a fresh *current* count is supplied.
    """
    counter = tenant.resource_counters[resource]
    used = counter.current if current is None else current
    evaluation = evaluate(resource, used, counter.maximum)
    if evaluation.state is not UsageState.NORMAL:
        log.info(
            "quota.elevated",
            tenant_id=tenant.id,
            resource=resource.value,
            state=evaluation.state.value,
            current=used,
            maximum=counter.maximum,
        )
    return evaluation


def upgrade_hint(tenant: Tenant, resource: ResourceKind) -> str | None:
    """Plan to suggest when *resource* runs out, or None when nothing larger exists."""
    target = upgrade_target(resource, tenant.plan)
    return target.value if target is not None else None


__sdk_export__ = {
    "exports": [
        "UsageState", "Notice", "QuotaThresholds", "QuotaEvaluation",
        "evaluate", "evaluate_quota", "upgrade_hint",
    ],
    "description": "Resource usage classification for banners, upgrade prompts and hard blocks",
    "tier": "tier3_platform",
    "module": "quota",
}
