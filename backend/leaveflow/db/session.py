from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from leaveflow.core.config import get_settings

settings = get_settings()


def _is_file_sqlite(url: str) -> bool:
    return url.startswith("sqlite") and ":memory:" not in url and not url.rstrip("/").endswith(":")


def create_db_engine(url: str) -> Engine:
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    engine = create_engine(url, pool_pre_ping=True, connect_args=connect_args)
    if _is_file_sqlite(url):
        # pysqlite defers BEGIN until the first write, so two writers can each hold
        # a read lock and deadlock on upgrade. Take the write lock up front instead.
        @event.listens_for(engine, "connect")
        def _disable_pysqlite_begin(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


engine = create_db_engine(settings.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
