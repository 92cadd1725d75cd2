from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine,async_sessionmaker,AsyncSession
from marketplace.config.settings import config_settings
from marketplace.db.utils import _normalize_db_url, is_sqlite


def build_engine(url: str | None = None, echo: bool | None = None) -> AsyncEngine:
    db_url = _normalize_db_url(url or config_settings.DATABASE_URL)
    if echo is None:
        echo = config_settings.DB_ECHO

    if is_sqlite(db_url):
        engine = create_async_engine(db_url, echo=echo, connect_args={"check_same_thread": False})

        @event.listens_for(engine.sync_engine, "connect")
        def _enable_sqlite_fks(dbapi_conn, _record):
            # let sqlalchemy own BEGIN so savepoints nest inside the outer transaction
            dbapi_conn.isolation_level = None
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine.sync_engine, "begin")
        def _begin(conn):
            conn.exec_driver_sql("BEGIN")

        return engine

    return create_async_engine(db_url, echo=echo, pool_pre_ping=True)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine,class_=AsyncSession,expire_on_commit=False)
