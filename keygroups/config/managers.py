"""
Database session management.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import Engine, event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel, create_engine

# Registers every table on SQLModel.metadata
from keygroups.database.meta import ALL_TABLES  # noqa: F401


def serialize_sqlite_transactions(engine: AsyncEngine):
    """
    Every SQLite transaction takes the database write lock as it begins, so
    operations against one database file run one at a time. SQLite has no
    FOR UPDATE, and the driver would otherwise defer BEGIN to the first
    write.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class SyncSessionManager:
    """
    Synchronous engine used only for schema management:

    manager = SyncSessionManager(conn_url)
    manager.create_all()
    """

    connection_url: str
    engine: Engine

    def __init__(self, connection_url: str, echo: bool = False):
        self.connection_url = connection_url
        self.engine = create_engine(self.connection_url, echo=echo)

    def create_all(self):
        """
        Create the group, code lookup, membership and invite link tables if
        they do not exist yet.
        """
        with self.engine.begin() as conn:
            SQLModel.metadata.create_all(conn)

    def drop_all(self):
        """
        Drop every table. WARNING: this deletes every group, membership and
        invite link.
        """
        with self.engine.begin() as conn:
            SQLModel.metadata.drop_all(conn)


class AsyncSessionManager:
    """
    A manager for asynchronous sessions. Every group operation runs inside
    exactly one transaction:

    manager = AsyncSessionManager(conn_url)

    async with manager.transaction() as conn:
        group = await membership_service.join(..., conn=conn, log=log)

    Any exception escaping the block rolls back every write the operation
    staged.
    """

    connection_url: str
    engine: AsyncEngine
    session: async_sessionmaker

    def __init__(self, connection_url: str, echo: bool = False):
        self.connection_url = connection_url
        self.engine = create_async_engine(self.connection_url, echo=echo)
        self.session = async_sessionmaker(self.engine, expire_on_commit=False)

        if self.engine.dialect.name == "sqlite":
            serialize_sqlite_transactions(self.engine)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        async with self.session() as conn:
            async with conn.begin():
                yield conn

    async def dispose(self):
        await self.engine.dispose()
