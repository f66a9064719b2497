"""
tenancy_sdk.tier0_core.ids
───────────────────────────
ID generation for tenants, records, memberships and invitations. UUID v7 is
the default: time-ordered, so document ids sort by creation.
"""
from __future__ import annotations

import uuid
from typing import Literal

import uuid_extensions


def new_uuid4() -> str:
    """Generate a random UUID v4 string."""
    return str(uuid.uuid4())


def new_uuid7() -> str:
    """Generate a time-ordered UUID v7 string (monotonic, sortable)."""
    return str(uuid_extensions.uuid7())


def new_id(kind: Literal["uuid4", "uuid7"] = "uuid7") -> str:
    """
    Generate a new document ID using the specified kind.
    Default is uuid7 (time-ordered, database-friendly).
    """
    if kind == "uuid4":
        return new_uuid4()
    elif kind == "uuid7":
        return new_uuid7()
    raise ValueError(f"Unknown ID kind: {kind!r}. Use 'uuid4' or 'uuid7'.")


__all__ = ["new_uuid4", "new_uuid7", "new_id"]
