# caselookup/db/session.py
import logging
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base

from caselookup.core.config import settings

logger = logging.getLogger(__name__)

SQLITE_BUSY_TIMEOUT_MS = 5000

Base = declarative_base()


def build_engine(database_url: str, **engine_kwargs) -> Engine:
    """SQLite engine shared by API threads and queue workers."""
    db_engine = create_engine(database_url, connect_args={"check_same_thread": False}, **engine_kwargs)

    @event.listens_for(db_engine, "connect")
    def _configure_sqlite(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        # Wait for the write lock instead of raising "database is locked".
        cursor.execute(f"PRAGMA busy_timeout = {SQLITE_BUSY_TIMEOUT_MS}")
        cursor.close()

    return db_engine


SQLALCHEMY_DATABASE_URL = settings.DATABASE_URL
logger.info(f"Case database: {SQLALCHEMY_DATABASE_URL}")

engine = build_engine(SQLALCHEMY_DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
