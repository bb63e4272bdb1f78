import copy
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional

from sqlalchemy import Table, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.core.errors import UnknownTableError
from storefront.data.database import AsyncSessionLocal, Base

# Registers the tables on Base.metadata
from storefront.data import models  # noqa: F401

Row = Dict[str, Any]

class DataStore:
    def __init__(self, session_factory: async_sessionmaker = AsyncSessionLocal):
        self._session_factory = session_factory
        self._bound: Optional[AsyncSession] = None

    @staticmethod
    def _table(name: str) -> Table:
        table = Base.metadata.tables.get(name)
        if table is None:
            raise UnknownTableError(name)
        return table

    @staticmethod
    def _where(table: Table, filters: Optional[Mapping[str, Any]]) -> list:
        clauses = []
        for column, value in (filters or {}).items():
            if column not in table.c:
                raise KeyError(f"{table.name} has no column {column!r}")
            if isinstance(value, (list, tuple, set, frozenset)):
                clauses.append(table.c[column].in_(list(value)))
            else:
                clauses.append(table.c[column] == value)
        return clauses

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        if self._bound is not None:
            yield self._bound
            return
        async with self._session_factory() as session:
            async with session.begin():
                yield session

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["DataStore"]:
        """Yield a store whose calls all share one transaction.

        The transaction commits when the block exits normally and rolls back
        if it raises.
        """
        async with self._session() as session:
            bound = copy.copy(self)
            bound._bound = session
            yield bound

    async def get(self, table: str, filters: Mapping[str, Any]) -> Optional[Row]:
        t = self._table(table)
        stmt = select(t).where(*self._where(t, filters)).limit(1)
        async with self._session() as session:
            result = await session.execute(stmt)
            row = result.mappings().first()
        return dict(row) if row is not None else None

    async def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        t = self._table(table)
        async with self._session() as session:
            result = await session.execute(insert(t).values(**row))
            key = result.inserted_primary_key
            pk_filter = {col.name: value for col, value in zip(t.primary_key.columns, key)}
            stored = await session.execute(select(t).where(*self._where(t, pk_filter)))
            created = stored.mappings().one()
        return dict(created)

    async def update(
        self, table: str, patch: Mapping[str, Any], filters: Mapping[str, Any]
    ) -> int:
        t = self._table(table)
        stmt = update(t).where(*self._where(t, filters)).values(**patch)
        async with self._session() as session:
            result = await session.execute(stmt)
        return result.rowcount

    async def query(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[Row]:
        t = self._table(table)
        stmt = select(t).where(*self._where(t, filters))
        if order_by is not None:
            column = t.c[order_by]
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        async with self._session() as session:
            result = await session.execute(stmt)
            rows = result.mappings().all()
        return [dict(r) for r in rows]

    async def decrement(
        self, table: str, column: str, amount: int, filters: Mapping[str, Any]
    ) -> bool:
        """Atomically subtract ``amount`` from ``column`` if enough remains.

        Returns False when no row matched, either because the filters found
        nothing or because the current value is below ``amount``.
        """
        t = self._table(table)
        target = t.c[column]
        stmt = (
            update(t)
            .where(*self._where(t, filters), target >= amount)
            .values({column: target - amount})
        )
        async with self._session() as session:
            result = await session.execute(stmt)
        return result.rowcount > 0

data_store = DataStore()

def get_store() -> DataStore:
    return data_store
