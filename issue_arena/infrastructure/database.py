import logging
import uuid
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Set, Tuple

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    case,
    delete,
    false,
    func,
    insert,
    select,
    text,
    update,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, create_async_engine

from issue_arena.application.ports import Collection, Record, SnapshotCallback, Unsubscribe
from issue_arena.domain.exceptions import AlreadyExistsException, StoreUnavailableException

logger = logging.getLogger(__name__)

# SQLAlchemy core Table definitions
metadata = MetaData()
teams_table = Table(
    'teams', metadata,
    Column('name', String, primary_key=True),
    Column('points', Integer, nullable=False, server_default=text('0')),
    Column('active', Boolean, nullable=False, server_default=false()),
)
repositories_table = Table(
    'repositories', metadata,
    Column('name', String, primary_key=True),
    Column('url', String, nullable=False),
)
issues_table = Table(
    'issues', metadata,
    Column('id', String, primary_key=True),
    Column('title', String, nullable=False),
    Column('tags', JSON, nullable=False),
    Column('repo', String, nullable=False, index=True),
    Column('status', String, nullable=False, index=True),
    Column('assigned_to', String, nullable=True, index=True),
    Column('occupied_at', DateTime(timezone=True), nullable=True),
    Column('closed_at', DateTime(timezone=True), nullable=True),
    Column('pr_url', String, nullable=True),
    Column('pr_status', String, nullable=True),
    Column('rewarded', Boolean, nullable=False, server_default=false()),
    Column('version', Integer, nullable=False, server_default=text('0')),
)

TABLES: Dict[Collection, Tuple[Table, str]] = {
    Collection.TEAMS: (teams_table, 'name'),
    Collection.REPOSITORIES: (repositories_table, 'name'),
    Collection.ISSUES: (issues_table, 'id'),
}

# Tables whose rows carry an optimistic concurrency counter bumped on every update.
VERSIONED = {Collection.ISSUES}


def _table(collection: Collection) -> Tuple[Table, str]:
    return TABLES[Collection(collection)]


def build_update(collection: Collection, entity_id: str, fields: Record, expected: Optional[Record] = None):
    """
    UPDATE conditioned on the primary key plus every `expected` column value.
    A row that no longer matches the expectation is left untouched.
    """
    table, pk = _table(collection)
    values = dict(fields)
    if collection in VERSIONED and 'version' not in values:
        values['version'] = table.c.version + 1

    stmt = update(table).where(table.c[pk] == entity_id).values(**values)
    for column, value in (expected or {}).items():
        if value is None:
            stmt = stmt.where(table.c[column].is_(None))
        else:
            stmt = stmt.where(table.c[column] == value)
    return stmt


def build_increment(collection: Collection, entity_id: str, field: str, delta: int, floor: Optional[int] = 0):
    """Applies `delta` inside the database so concurrent increments never overwrite each other."""
    table, pk = _table(collection)
    column = table.c[field]
    new_value = column + delta
    if floor is not None:
        new_value = case((column + delta < floor, floor), else_=column + delta)
    return update(table).where(table.c[pk] == entity_id).values({field: new_value})


class _Writer:
    """Writes bound to one open connection/transaction."""

    def __init__(self, conn: AsyncConnection, touched: Set[Collection]):
        self._conn = conn
        self._touched = touched

    async def create(self, collection: Collection, record: Record) -> str:
        table, pk = _table(collection)
        record = dict(record)
        if not record.get(pk):
            record[pk] = uuid.uuid4().hex
        try:
            await self._conn.execute(insert(table).values(**record))
        except IntegrityError as e:
            raise AlreadyExistsException(f"'{record[pk]}' already exists in {Collection(collection).value}.") from e
        self._touched.add(Collection(collection))
        return record[pk]

    async def update(self, collection: Collection, entity_id: str, fields: Record, expected: Optional[Record] = None) -> bool:
        result = await self._conn.execute(build_update(collection, entity_id, fields, expected))
        if result.rowcount:
            self._touched.add(Collection(collection))
        return result.rowcount == 1

    async def increment(self, collection: Collection, entity_id: str, field: str, delta: int, floor: Optional[int] = 0) -> bool:
        result = await self._conn.execute(build_increment(collection, entity_id, field, delta, floor))
        if result.rowcount:
            self._touched.add(Collection(collection))
        return result.rowcount == 1

    async def delete(self, collection: Collection, entity_id: str) -> bool:
        table, pk = _table(collection)
        result = await self._conn.execute(delete(table).where(table.c[pk] == entity_id))
        if result.rowcount:
            self._touched.add(Collection(collection))
        return result.rowcount == 1

    async def count(self, collection: Collection, **where: Any) -> int:
        table, _ = _table(collection)
        stmt = select(func.count()).select_from(table)
        for column, value in where.items():
            stmt = stmt.where(table.c[column] == value)
        result = await self._conn.execute(stmt)
        return result.scalar_one()


class SqlStateStore:
    """
    State store backed by a SQL database through SQLAlchemy's asyncio engine.

    Besides plain CRUD it offers the primitives the application needs to stay
    consistent across clients: conditional updates, atomic increments and
    multi-write transactions. Subscribers receive the full collection snapshot
    after every committed write and on `refresh()`.
    """

    def __init__(self, db_url: str):
        self.engine = create_async_engine(db_url, echo=False)
        self._subscribers: Dict[Collection, List[SnapshotCallback]] = defaultdict(list)

    async def create_schema(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[_Writer]:
        """
        Binds every write made through the yielded writer into one database
        transaction. Any exception rolls all of them back.
        """
        touched: Set[Collection] = set()
        try:
            async with self.engine.begin() as conn:
                yield _Writer(conn, touched)
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailableException(f"State store write failed: {e}") from e

        for collection in touched:
            await self._publish(collection)

    @asynccontextmanager
    async def _reading(self) -> AsyncIterator[AsyncConnection]:
        try:
            async with self.engine.connect() as conn:
                yield conn
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailableException(f"State store read failed: {e}") from e

    async def get_all(self, collection: Collection) -> List[Record]:
        table, pk = _table(collection)
        async with self._reading() as conn:
            result = await conn.execute(select(table).order_by(table.c[pk]))
            return [dict(row._mapping) for row in result]

    async def get(self, collection: Collection, entity_id: str) -> Optional[Record]:
        table, pk = _table(collection)
        async with self._reading() as conn:
            result = await conn.execute(select(table).where(table.c[pk] == entity_id))
            row = result.first()
            return dict(row._mapping) if row is not None else None

    async def count(self, collection: Collection, **where: Any) -> int:
        async with self._reading() as conn:
            return await _Writer(conn, set()).count(collection, **where)

    async def create(self, collection: Collection, record: Record) -> str:
        async with self.transaction() as tx:
            return await tx.create(collection, record)

    async def update(self, collection: Collection, entity_id: str, fields: Record, expected: Optional[Record] = None) -> bool:
        async with self.transaction() as tx:
            return await tx.update(collection, entity_id, fields, expected)

    async def increment(self, collection: Collection, entity_id: str, field: str, delta: int, floor: Optional[int] = 0) -> bool:
        async with self.transaction() as tx:
            return await tx.increment(collection, entity_id, field, delta, floor)

    async def delete(self, collection: Collection, entity_id: str) -> bool:
        async with self.transaction() as tx:
            return await tx.delete(collection, entity_id)

    def subscribe(self, collection: Collection, on_change: SnapshotCallback) -> Unsubscribe:
        callbacks = self._subscribers[Collection(collection)]
        callbacks.append(on_change)

        def unsubscribe() -> None:
            if on_change in callbacks:
                callbacks.remove(on_change)

        return unsubscribe

    async def refresh(self) -> None:
        """Re-delivers the current snapshot of every subscribed collection."""
        for collection in [c for c, callbacks in self._subscribers.items() if callbacks]:
            await self._publish(collection, strict=True)

    async def _publish(self, collection: Collection, strict: bool = False) -> None:
        callbacks = list(self._subscribers.get(collection, ()))
        if not callbacks:
            return
        try:
            snapshot = await self.get_all(collection)
        except StoreUnavailableException as e:
            if strict:
                raise
            # The write itself is committed; the next refresh re-delivers.
            logger.warning(f"Could not publish {collection.value} snapshot: {e}")
            return

        for callback in callbacks:
            try:
                callback(snapshot)
            except Exception:
                logger.exception(f"Subscriber for {collection.value} failed on snapshot.")
