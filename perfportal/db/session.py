import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from perfportal.core.config import settings
from perfportal.db.migrations import run_schema_migrations

logger = logging.getLogger(__name__)


def build_engine(database_url: str) -> Engine:
    """SQLite needs cross-thread access for FastAPI workers; postgres gets pre-ping."""

    if database_url.startswith("sqlite"):
        return create_engine(database_url, connect_args={"check_same_thread": False})
    return create_engine(database_url, pool_pre_ping=True)


engine = build_engine(settings.database_url)


def init_db(bind: Engine | None = None) -> None:
    target = bind or engine
    SQLModel.metadata.create_all(bind=target)
    run_schema_migrations(target)
    logger.info("Database schema ready on %s", target.dialect.name)


@contextmanager
def get_session() -> Iterator[Session]:
    """Session that commits on success and rolls back on any error."""

    with Session(engine) as session:
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
