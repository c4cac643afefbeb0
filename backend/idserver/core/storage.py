from typing import Any, Dict, List, Optional, Sequence, Union
from loguru import logger
from sqlalchemy import MetaData, Table, select, insert, update, delete, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from common.errors import ServiceError
from idserver.models import Base, INITIAL_VALUES

Row = Dict[str, Any]
Filters = Dict[str, Union[str, int, Sequence[Union[str, int]]]]

class SQLDatabase:
    """
    Read access to a set of tables through an async session factory.
    Rows are returned as plain dicts keyed by column name.
    """
    service_name = "database"

    def __init__(self, session_factory: async_sessionmaker, metadata: MetaData):
        self.session_factory = session_factory
        self.metadata = metadata

    def _table(self, name: str) -> Table:
        try:
            return self.metadata.tables[name]
        except KeyError:
            raise ServiceError(f"Unknown table {name}", service_name=self.service_name, table=name)

    def _columns(self, table: Table, fields: Optional[List[str]]):
        if not fields:
            return [table]
        return [table.c[f] for f in fields]

    @staticmethod
    def _where(table: Table, stmt, filters: Optional[Filters]):
        for field, value in (filters or {}).items():
            if isinstance(value, (list, tuple, set)):
                stmt = stmt.where(table.c[field].in_(list(value)))
            else:
                stmt = stmt.where(table.c[field] == value)
        return stmt

    async def _fetch(self, stmt) -> List[Row]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                return [dict(r._mapping) for r in result.all()]
        except SQLAlchemyError as e:
            raise ServiceError(str(e), service_name=self.service_name) from e

    async def get(self, table: str, fields: Optional[List[str]], filters: Optional[Filters] = None) -> List[Row]:
        t = self._table(table)
        stmt = self._where(t, select(*self._columns(t, fields)), filters)
        return await self._fetch(stmt)

    async def get_all(self, table: str, fields: Optional[List[str]]) -> List[Row]:
        return await self.get(table, fields)

    async def get_higher_than(self, table: str, fields: Optional[List[str]], filters: Dict[str, int]) -> List[Row]:
        """Rows whose filter columns are strictly greater than the given values."""
        t = self._table(table)
        stmt = select(*self._columns(t, fields))
        for field, value in filters.items():
            stmt = stmt.where(t.c[field] > value)
        return await self._fetch(stmt)

    async def get_count(self, table: str, field: str) -> int:
        t = self._table(table)
        rows = await self._fetch(select(func.count(t.c[field]).label("count")))
        return int(rows[0]["count"]) if rows else 0


class IdentityStore(SQLDatabase):
    """Storage collaborator of the identity server: pepper slots, hashes, user history."""
    service_name = "identity_db"

    def __init__(self, session_factory: async_sessionmaker):
        super().__init__(session_factory, Base.metadata)

    async def _execute(self, stmt) -> int:
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
                return result.rowcount
        except SQLAlchemyError as e:
            raise ServiceError(str(e), service_name=self.service_name) from e

    async def insert(self, table: str, row: Row) -> None:
        await self._execute(insert(self._table(table)).values(**row))

    async def update(self, table: str, patch: Row, key_field: str, key_value: Any) -> int:
        t = self._table(table)
        return await self._execute(update(t).where(t.c[key_field] == key_value).values(**patch))

    async def update_where(self, table: str, patch: Row, filters: Filters) -> int:
        """Conditional update; the returned row count tells whether the filters matched."""
        t = self._table(table)
        return await self._execute(self._where(t, update(t), filters).values(**patch))

    async def delete_where(self, table: str, field: str, value: Any) -> int:
        t = self._table(table)
        return await self._execute(delete(t).where(t.c[field] == value))

    async def create_tables(self, engine) -> None:
        """Creates missing tables and seeds initial values on a fresh database."""
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        for table, rows in INITIAL_VALUES.items():
            for row in rows:
                existing = await self.get(table, None, row_key(table, row))
                if not existing:
                    await self.insert(table, row)
                    logger.info(f"Initialized {table} row {row_key(table, row)}")

def row_key(table: str, row: Row) -> Filters:
    t = Base.metadata.tables[table]
    return {c.name: row[c.name] for c in t.primary_key.columns}
