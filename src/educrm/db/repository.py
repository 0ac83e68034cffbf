# src/educrm/db/repository.py
"""
Persistence port shared by the services.

A ``Repository`` wraps one mapped model and an ``AsyncSession``: create,
update, soft delete/restore, lookup by id and paginated listing with
search and sort.  ``with_tx`` runs a coroutine function as one
all-or-nothing unit of work.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Generic, Iterable, Optional, Sequence, TypeVar

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from educrm.core import errors
from educrm.core.responses import PageParams
from educrm.db.base import utcnow

ModelT = TypeVar("ModelT")
R = TypeVar("R")


def _label(model: type) -> str:
    return getattr(model, "LABEL", None) or model.__name__


class Repository(Generic[ModelT]):
    def __init__(
        self,
        session: AsyncSession,
        model: type[ModelT],
        *,
        search_columns: Iterable[str] = (),
    ):
        self.session = session
        self.model = model
        self.search_columns = tuple(search_columns or getattr(model, "SEARCH_COLUMNS", ()))
        self.soft_delete = hasattr(model, "deleted_at")
        self.label = _label(model)

    # -- queries ------------------------------------------------------------

    def select(self, *, include_deleted: bool = False) -> sa.Select:
        stmt = sa.select(self.model)
        if self.soft_delete and not include_deleted:
            stmt = stmt.where(self.model.deleted_at.is_(None))
        return stmt

    def _sort_clause(self, params: PageParams):
        columns = sa.inspect(self.model).columns
        if params.sort not in columns:
            raise errors.bad_request(
                f"Cannot sort {self.label} by '{params.sort}'",
                {"sort": params.sort, "allowed": sorted(c.key for c in columns)},
            )
        col = getattr(self.model, params.sort)
        return col.asc() if params.order == "asc" else col.desc()

    def _search_clause(self, term: str):
        like = f"%{term}%"
        cols = [getattr(self.model, name) for name in self.search_columns]
        return sa.or_(*[c.ilike(like) for c in cols]) if cols else None

    async def get(
        self,
        item_id: Any,
        *,
        include_deleted: bool = False,
        for_update: bool = False,
    ) -> Optional[ModelT]:
        stmt = self.select(include_deleted=include_deleted).where(self.model.id == item_id)
        if for_update:
            stmt = stmt.with_for_update()
        res = await self.session.execute(stmt)
        return res.scalars().first()

    async def get_or_404(self, item_id: Any, **kw) -> ModelT:
        obj = await self.get(item_id, **kw)
        if obj is None:
            raise errors.not_found(self.label)
        return obj

    async def exists(self, item_id: Any) -> bool:
        return await self.get(item_id) is not None

    async def count(self, *filters) -> int:
        stmt = sa.select(sa.func.count()).select_from(self.model)
        if self.soft_delete:
            stmt = stmt.where(self.model.deleted_at.is_(None))
        for f in filters:
            stmt = stmt.where(f)
        return int((await self.session.execute(stmt)).scalar_one())

    async def list(self, *filters, order_by=None, limit: Optional[int] = None) -> list[ModelT]:
        stmt = self.select()
        for f in filters:
            stmt = stmt.where(f)
        stmt = stmt.order_by(*(order_by if order_by is not None else [self.model.created_at.desc()]))
        if limit:
            stmt = stmt.limit(limit)
        return list((await self.session.execute(stmt)).scalars().all())

    async def get_page(self, params: PageParams, *filters) -> tuple[Sequence[ModelT], int]:
        stmt = self.select()
        for f in filters:
            stmt = stmt.where(f)
        if params.search:
            clause = self._search_clause(params.search)
            if clause is not None:
                stmt = stmt.where(clause)

        total_stmt = sa.select(sa.func.count()).select_from(stmt.subquery())
        total = int((await self.session.execute(total_stmt)).scalar_one())

        stmt = (
            stmt.order_by(self._sort_clause(params), self.model.id)
            .offset(params.offset)
            .limit(params.limit)
        )
        items = (await self.session.execute(stmt)).scalars().all()
        return items, total

    # -- writes ------------------------------------------------------------

    async def create(self, obj: ModelT) -> ModelT:
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def update(self, obj: ModelT, data: dict[str, Any]) -> ModelT:
        for key, value in data.items():
            setattr(obj, key, value)
        await self.session.flush()
        return obj

    async def delete(self, item_id: Any) -> ModelT:
        obj = await self.get_or_404(item_id)
        if self.soft_delete:
            obj.deleted_at = utcnow()
        else:
            await self.session.delete(obj)
        await self.session.flush()
        return obj

    async def restore(self, item_id: Any) -> ModelT:
        obj = await self.get(item_id, include_deleted=True)
        if obj is None:
            raise errors.not_found(self.label)
        if not self.soft_delete or obj.deleted_at is None:
            raise errors.invalid_operation(f"{self.label} is not deleted")
        obj.deleted_at = None
        await self.session.flush()
        return obj


async def with_tx(session: AsyncSession, fn: Callable[[], Awaitable[R]]) -> R:
    """Run ``fn`` and commit; any failure (cancellation included) rolls back."""
    try:
        result = await fn()
        await session.commit()
    except BaseException:
        await session.rollback()
        raise
    return result


__all__ = ["Repository", "with_tx"]
