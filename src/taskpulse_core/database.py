"""Database connection and session management."""
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from .config import get_settings

settings = get_settings()


def create_db_engine(url: str, echo: bool = False) -> Engine:
    """
    Create an engine for the given database URL.

    PostgreSQL gets a small pre-pinged pool. SQLite gets foreign keys switched
    on and explicit BEGIN handling so SAVEPOINTs work; in-memory SQLite shares
    one connection so every session sees the same database.

    Args:
        url: SQLAlchemy database URL
        echo: Log emitted SQL

    Returns:
        Engine: configured SQLAlchemy engine
    """
    if not url.startswith("sqlite"):
        return create_engine(
            url,
            echo=echo,
            pool_pre_ping=True,          # Verify connections before using
            pool_size=3,
            max_overflow=7,
            pool_recycle=3600,           # Recycle connections every hour
            pool_timeout=30,
        )

    kwargs = {"echo": echo, "connect_args": {"check_same_thread": False}}
    if url in ("sqlite://", "sqlite:///:memory:"):
        kwargs["poolclass"] = StaticPool
    engine = create_engine(url, **kwargs)

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Let SQLAlchemy own transaction boundaries instead of pysqlite
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


engine = create_db_engine(settings.database_url, echo=settings.sql_echo)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind: Engine = engine) -> None:
    """Create all tables that do not exist yet."""
    from .models import Base

    Base.metadata.create_all(bind=bind)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency function to get database session.

    Uncommitted work is rolled back when the session closes.

    Yields:
        Session: SQLAlchemy database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
