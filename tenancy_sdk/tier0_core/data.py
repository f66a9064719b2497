"""
tenancy_sdk.tier0_core.data
────────────────────────────
Document store access. The store is an external collaborator that knows
nothing about tenants; the repository guard (tier3_platform.repository)
supplies the tenant_id filter and field on every call.

Adapters:
    InMemoryDocumentStore: dev/tests, yields to the event loop on every call
    SqlDocumentStore:      SQLAlchemy 2.x async, one JSON document per row

Configure via: TENANCY_STORE_BACKEND=memory|sql, DATABASE_URL
"""
from __future__ import annotations

import asyncio
import copy
from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import JSON, Float, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from tenancy_sdk.tier0_core.config import get_config
from tenancy_sdk.tier0_core.errors import ConflictError
from tenancy_sdk.tier0_core.ids import new_id

Document = dict[str, Any]


# ── Query primitives ──────────────────────────────────────────────────────────

_OPS = {
    "==": lambda a, b: a == b,
    "!=": lambda a, b: a != b,
    "<": lambda a, b: a is not None and a < b,
    "<=": lambda a, b: a is not None and a <= b,
    ">": lambda a, b: a is not None and a > b,
    ">=": lambda a, b: a is not None and a >= b,
    "in": lambda a, b: a in b,
    "contains": lambda a, b: a is not None and b in a,
}


@dataclass(frozen=True)
class Filter:
    field: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in _OPS:
            raise ValueError(f"Unsupported filter op {self.op!r}. Valid: {sorted(_OPS)}")

    def matches(self, doc: Document) -> bool:
        return _OPS[self.op](doc.get(self.field), self.value)


@dataclass(frozen=True)
class OrderBy:
    field: str
    descending: bool = True


def apply_query(
    docs: Sequence[Document],
    filters: Sequence[Filter] = (),
    order_by: OrderBy | None = None,
) -> list[Document]:
    """Filter and sort documents in process. Missing sort keys sort last."""
    result = [d for d in docs if all(f.matches(d) for f in filters)]
    if order_by is not None:
        present = [d for d in result if d.get(order_by.field) is not None]
        missing = [d for d in result if d.get(order_by.field) is None]
        present.sort(key=lambda d: d[order_by.field], reverse=order_by.descending)
        result = present + missing
    return result


# ── Protocol ──────────────────────────────────────────────────────────────────

@runtime_checkable
class DocumentStore(Protocol):
    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: OrderBy | None = None,
    ) -> list[Document]: ...

    async def get_by_id(self, collection: str, doc_id: str) -> Document | None: ...

    async def insert(self, collection: str, doc: Document) -> str:
        """
        Insert a document; returns its id (generated when absent).
        Raises ConflictError when the id is already taken in *collection*.
        """
        ...

    async def update(self, collection: str, doc_id: str, patch: Document) -> bool:
        """Merge *patch* into a document; returns False when it does not exist."""
        ...

    async def delete(self, collection: str, doc_id: str) -> bool: ...

    async def increment(
        self, collection: str, doc_id: str, field: str, amount: int = 1
    ) -> int:
        """Atomically add *amount* to a numeric field (creating it at 0); returns the new value."""
        ...


def duplicate_document(collection: str, doc_id: str) -> ConflictError:
    """The error raised for a taken id. Says nothing about who owns the document."""
    return ConflictError(
        "duplicate_id",
        "A record with this id already exists.",
        detail=f"{collection}/{doc_id} already exists",
    )


# ── In-memory adapter ─────────────────────────────────────────────────────────

class InMemoryDocumentStore:
    """
    Dict-backed store for tests and local dev. Every call awaits once so
    callers observe the same suspension points as with a networked store.
    Documents are copied on the way in and out.
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, Document]] = {}
        self._lock = asyncio.Lock()

    def _bucket(self, collection: str) -> dict[str, Document]:
        return self._collections.setdefault(collection, {})

    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: OrderBy | None = None,
    ) -> list[Document]:
        await asyncio.sleep(0)
        docs = apply_query(list(self._bucket(collection).values()), filters, order_by)
        return [copy.deepcopy(d) for d in docs]

    async def get_by_id(self, collection: str, doc_id: str) -> Document | None:
        await asyncio.sleep(0)
        doc = self._bucket(collection).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def insert(self, collection: str, doc: Document) -> str:
        await asyncio.sleep(0)
        doc_id = doc.get("id") or new_id()
        stored = copy.deepcopy(doc)
        stored["id"] = doc_id
        bucket = self._bucket(collection)
        if doc_id in bucket:
            raise duplicate_document(collection, doc_id)
        bucket[doc_id] = stored
        return doc_id

    async def update(self, collection: str, doc_id: str, patch: Document) -> bool:
        await asyncio.sleep(0)
        doc = self._bucket(collection).get(doc_id)
        if doc is None:
            return False
        doc.update(copy.deepcopy(patch))
        return True

    async def delete(self, collection: str, doc_id: str) -> bool:
        await asyncio.sleep(0)
        return self._bucket(collection).pop(doc_id, None) is not None

    async def increment(
        self, collection: str, doc_id: str, field: str, amount: int = 1
    ) -> int:
        async with self._lock:
            await asyncio.sleep(0)
            doc = self._bucket(collection).setdefault(doc_id, {"id": doc_id})
            doc[field] = int(doc.get(field) or 0) + amount
            return doc[field]


# ── SQL adapter ───────────────────────────────────────────────────────────────

class Base(DeclarativeBase):
    """All ORM models inherit from this base."""
    pass


class DocumentRow(Base):
    __tablename__ = "documents"

    collection: Mapped[str] = mapped_column(String(64), primary_key=True)
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)
    created_at: Mapped[float | None] = mapped_column(Float, nullable=True)
    body: Mapped[dict] = mapped_column(JSON, nullable=False)


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """Return the singleton async engine. Created on first call."""
    global _engine
    if _engine is None:
        cfg = get_config()
        _engine = create_async_engine(cfg.database_url, echo=cfg.database_echo)
    return _engine


def get_session_factory(engine: AsyncEngine | None = None) -> async_sessionmaker[AsyncSession]:
    """Return the session factory (a fresh one when *engine* is given)."""
    global _session_factory
    if engine is not None:
        return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


@asynccontextmanager
async def get_session(
    factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncGenerator[AsyncSession, None]:
    """
    Async context manager that yields a transactional session.
    Commits on clean exit, rolls back on exception, always closes.
    """
    factory = factory or get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def create_schema(engine: AsyncEngine | None = None) -> None:
    """Create the documents table if it does not exist."""
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    """Dispose the engine. Call on application shutdown."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


class SqlDocumentStore:
    """
    Documents as JSON rows. tenant_id equality filters are pushed down to an
    indexed column; every other filter and the ordering run in process.
    """

    def __init__(self, engine: AsyncEngine | None = None) -> None:
        self._factory = get_session_factory(engine)

    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: OrderBy | None = None,
    ) -> list[Document]:
        stmt = select(DocumentRow).where(DocumentRow.collection == collection)
        remaining: list[Filter] = []
        for f in filters:
            if f.field == "tenant_id" and f.op == "==":
                stmt = stmt.where(DocumentRow.tenant_id == f.value)
            else:
                remaining.append(f)
        async with get_session(self._factory) as session:
            rows = (await session.execute(stmt)).scalars().all()
            docs = [dict(row.body) for row in rows]
        return apply_query(docs, remaining, order_by)

    async def get_by_id(self, collection: str, doc_id: str) -> Document | None:
        async with get_session(self._factory) as session:
            row = await session.get(DocumentRow, (collection, doc_id))
            return dict(row.body) if row is not None else None

    async def insert(self, collection: str, doc: Document) -> str:
        doc_id = doc.get("id") or new_id()
        body = {**doc, "id": doc_id}
        try:
            async with get_session(self._factory) as session:
                session.add(DocumentRow(
                    collection=collection,
                    id=doc_id,
                    tenant_id=body.get("tenant_id"),
                    created_at=body.get("created_at"),
                    body=body,
                ))
        except IntegrityError as exc:
            raise duplicate_document(collection, doc_id) from exc
        return doc_id

    async def update(self, collection: str, doc_id: str, patch: Document) -> bool:
        async with get_session(self._factory) as session:
            row = await session.get(DocumentRow, (collection, doc_id))
            if row is None:
                return False
            # Reassign so the JSON column is marked dirty.
            row.body = {**row.body, **patch}
            return True

    async def delete(self, collection: str, doc_id: str) -> bool:
        async with get_session(self._factory) as session:
            row = await session.get(DocumentRow, (collection, doc_id))
            if row is None:
                return False
            await session.delete(row)
            return True

    async def increment(
        self, collection: str, doc_id: str, field: str, amount: int = 1
    ) -> int:
        async with get_session(self._factory) as session:
            stmt = (
                select(DocumentRow)
                .where(DocumentRow.collection == collection, DocumentRow.id == doc_id)
                .with_for_update()
            )
            row = (await session.execute(stmt)).scalar_one_or_none()
            if row is None:
                row = DocumentRow(collection=collection, id=doc_id, body={"id": doc_id})
                session.add(row)
            value = int(row.body.get(field) or 0) + amount
            row.body = {**row.body, field: value}
            return value


# ── Store registry ────────────────────────────────────────────────────────────

_store: DocumentStore | None = None


def _build_store() -> DocumentStore:
    backend = get_config().store_backend
    if backend == "memory":
        return InMemoryDocumentStore()
    return SqlDocumentStore()


def get_store() -> DocumentStore:
    global _store
    if _store is None:
        _store = _build_store()
    return _store


def _reset() -> None:
    """For tests: reset engine, session factory and store."""
    global _engine, _session_factory, _store
    _engine = None
    _session_factory = None
    _store = None


__sdk_export__ = {
    "exports": [
        "DocumentStore", "InMemoryDocumentStore", "SqlDocumentStore",
        "Filter", "OrderBy", "duplicate_document", "get_store", "get_session",
    ],
    "description": "Abstract document store with in-memory and SQLAlchemy adapters",
    "tier": "tier0_core",
    "module": "data",
}
