"""EntityStore: the thin persistence gateway used by every lifecycle.

Lifecycle code never talks to the driver directly. It reads with
``find``/``find_one``, writes with ``insert``/``update`` and groups a unit of
work in ``transaction``, which commits or rolls back and turns driver failures
into the typed errors of :mod:`marketplace.core.errors`.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Sequence
from contextlib import asynccontextmanager
from typing import Any, TypeVar

from sqlalchemy import ColumnElement, select, update as sa_update
from sqlalchemy.exc import (
    IntegrityError,
    InterfaceError,
    OperationalError,
    TimeoutError as PoolTimeoutError,
)
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from marketplace.core.config import settings
from marketplace.core.errors import ConflictError, DealError, StoreUnavailableError
from marketplace.db.base import Base

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=Base)
T = TypeVar("T")

_UNAVAILABLE = (OperationalError, InterfaceError, PoolTimeoutError, asyncio.TimeoutError)


async def bounded(awaitable: Awaitable[T]) -> T:
    """Await a store call, failing with StoreUnavailableError past the timeout."""
    try:
        return await asyncio.wait_for(awaitable, timeout=settings.store_timeout_seconds)
    except _UNAVAILABLE as exc:
        logger.warning("Store call failed: %s", exc)
        raise StoreUnavailableError() from exc


async def find(
    db: AsyncSession,
    model: type[M],
    *criteria: ColumnElement[bool],
    for_update: bool = False,
    order_by: Sequence[Any] = (),
    offset: int | None = None,
    limit: int | None = None,
) -> list[M]:
    stmt = select(model).where(*criteria)
    if order_by:
        stmt = stmt.order_by(*order_by)
    if offset is not None:
        stmt = stmt.offset(offset)
    if limit is not None:
        stmt = stmt.limit(limit)
    if for_update:
        stmt = stmt.with_for_update()
    result = await bounded(db.execute(stmt))
    return list(result.scalars().all())


async def find_one(
    db: AsyncSession,
    model: type[M],
    *criteria: ColumnElement[bool],
    for_update: bool = False,
) -> M | None:
    stmt = select(model).where(*criteria)
    if for_update:
        stmt = stmt.with_for_update()
    result = await bounded(db.execute(stmt))
    return result.scalar_one_or_none()


async def insert(db: AsyncSession, record: M) -> int:
    """Stage a new record and flush it so the generated id is available."""
    db.add(record)
    await bounded(db.flush())
    return record.id


async def update(
    db: AsyncSession,
    model: type[M],
    criteria: Sequence[ColumnElement[bool]],
    patch: dict[str, Any],
) -> int:
    """Predicate update; returns the number of affected rows."""
    stmt = (
        sa_update(model)
        .where(*criteria)
        .values(**patch)
        .execution_options(synchronize_session="fetch")
    )
    result = await bounded(db.execute(stmt))
    return result.rowcount


@asynccontextmanager
async def transaction(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Run a unit of work atomically.

    Commits on success and rolls back on any error. Lost optimistic-lock races
    and uniqueness violations surface as ConflictError; driver failures as
    StoreUnavailableError. Lifecycle errors pass through untouched.
    """
    try:
        yield db
        await bounded(db.commit())
    except DealError:
        await db.rollback()
        raise
    except StaleDataError as exc:
        await db.rollback()
        raise ConflictError(
            "The record was modified concurrently; reload and retry",
            code="STALE_VERSION",
        ) from exc
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError("Conflicting record already exists", code="DUPLICATE") from exc
    except _UNAVAILABLE as exc:
        await db.rollback()
        raise StoreUnavailableError() from exc
    except BaseException:
        await db.rollback()
        raise
