"""Engine and session factory for QuorumGate."""

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from quorumgate.core.config import get_settings
from quorumgate.db.base import Base


def make_engine(database_url: str, *, echo: bool = False) -> Engine:
    """
    Create an engine for the given URL.

    SQLite connections open every transaction with ``BEGIN IMMEDIATE`` so
    concurrent writers serialize on the database lock instead of failing
    with lock-upgrade deadlocks. Other backends rely on row locks.
    """
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, echo=echo, pool_pre_ping=True)

    engine = create_engine(
        database_url,
        echo=echo,
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


settings = get_settings()

engine = make_engine(settings.database_url, echo=settings.database_echo)

SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(bind: Engine = None) -> None:
    """Create all tables that do not exist yet."""
    # Import models so they register with the metadata
    import quorumgate.db.models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
