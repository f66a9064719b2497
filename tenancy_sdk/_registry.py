"""
tenancy_sdk._registry
──────────────────────
Internal module registry: the single source of truth for which modules
exist and what each one exports.

Adding a new module:
  1. Implement it in the right tier
  2. Add ``__sdk_export__`` to the module
  3. Add one tuple to TIER_MODULES below
"""
from __future__ import annotations

import importlib
from typing import Any

# ---------------------------------------------------------------------------
# Ordered list of (tier_path, module_name). Lower tiers never import higher
# ones, so importing in this order always succeeds.
# ---------------------------------------------------------------------------
TIER_MODULES: list[tuple[str, str]] = [
    # tier0_core: foundational layer
    ("tier0_core", "errors"),
    ("tier0_core", "logging"),
    ("tier0_core", "config"),
    ("tier0_core", "ids"),
    ("tier0_core", "metrics"),
    ("tier0_core", "identity"),
    ("tier0_core", "data"),
    # tier1_runtime
    ("tier1_runtime", "clock"),
    # tier2_reliability
    ("tier2_reliability", "audit"),
    # tier3_platform: tenancy engine
    ("tier3_platform", "plans"),
    ("tier3_platform", "multi_tenancy"),
    ("tier3_platform", "module_access"),
    ("tier3_platform", "authorization"),
    ("tier3_platform", "quota"),
    ("tier3_platform", "repository"),
    ("tier3_platform", "ledger"),
    ("tier3_platform", "memberships"),
    ("tier3_platform", "admin"),
    ("tier3_platform", "numbering"),
]


def collect_exports() -> dict[str, dict[str, Any]]:
    """
    Import every registered module and return its ``__sdk_export__`` metadata
    keyed by dotted module name. Modules without metadata are listed with
    their ``__all__`` as exports.

    Raises AttributeError when a module advertises a name it does not define.
    """
    catalog: dict[str, dict[str, Any]] = {}

    for tier_path, module_name in TIER_MODULES:
        qualified = f"tenancy_sdk.{tier_path}.{module_name}"
        mod = importlib.import_module(qualified)

        meta: dict[str, Any] | None = getattr(mod, "__sdk_export__", None)
        if meta is None:
            meta = {
                "exports": list(getattr(mod, "__all__", [])),
                "tier": tier_path,
                "module": module_name,
            }

        for name in meta.get("exports", []):
            if not hasattr(mod, name):
                raise AttributeError(f"{qualified} exports missing name {name!r}")
        catalog[qualified] = meta

    return catalog
