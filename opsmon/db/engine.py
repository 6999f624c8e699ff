"""Database engine and session factory.

Every opsmon invocation is short-lived and synchronous, so a single sync
engine per process is enough. Tests pass their own engine explicitly.
"""

from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from opsmon.db.base import Base
from opsmon.settings import get_settings

_engine = None


def get_engine() -> Engine:
    """Get or create the database engine."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_engine(
            settings.database_url,
            echo=settings.database_echo,
            pool_pre_ping=True,
        )
    return _engine


def get_session_factory(engine: Optional[Engine] = None) -> sessionmaker:
    return sessionmaker(bind=engine or get_engine(), expire_on_commit=False)


def init_db(engine: Optional[Engine] = None) -> None:
    """Create all alerting tables that do not exist yet.

    Production databases are migrated with Alembic; this is for
    development databases and SQLite.
    """
    Base.metadata.create_all(bind=engine or get_engine())

