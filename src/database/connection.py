from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.utils.settings.database import DatabaseSettings


def _use_immediate_transactions(engine: AsyncEngine) -> None:
    """
    Make SQLite take the write lock when a transaction begins.

    The driver's default deferred BEGIN lets two writers each hold a read
    lock and then deadlock upgrading it, which surfaces as "database is
    locked" instead of a wait.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        # disable the driver's own BEGIN handling
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_engine(url: str, **kwargs) -> AsyncEngine:
    """Async engine for ``url``; SQLite engines get immediate transactions."""
    if url.startswith("sqlite"):
        engine = create_async_engine(
            url, echo=False, connect_args={"timeout": 30}, **kwargs
        )
        _use_immediate_transactions(engine)
        return engine
    return create_async_engine(url, echo=False, pool_pre_ping=True, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


async_engine = create_engine(DatabaseSettings().DATABASE_URL_ASYNC)
AsyncSessionLocal = create_session_factory(async_engine)

