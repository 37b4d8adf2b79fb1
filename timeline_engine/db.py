# timeline_engine/db.py
import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session as SQLAlchemySession, sessionmaker
from sqlalchemy.pool import StaticPool

from timeline_engine.config import settings

logger = logging.getLogger(__name__)


def make_engine(url: Optional[str] = None) -> Engine:
    url = url or settings.DATABASE_URL
    if url.startswith("sqlite") and ":memory:" in url:
        # One shared connection, otherwise every session sees an empty database
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    return create_engine(url, pool_pre_ping=True, pool_recycle=3600)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    from timeline_engine.collaborators.persistence import Base

    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ensured.")


@contextmanager
def get_db_session(session_factory: sessionmaker) -> Generator[SQLAlchemySession, None, None]:
    """
    Provide a transactional scope around a series of operations.
    Commits on success; rolls back and re-raises on failure.
    """
    db = session_factory()
    try:
        yield db
        db.commit()
        logger.debug("Database session committed.")
    except Exception as e:
        db.rollback()
        logger.error(f"Database session rolled back due to error: {e}", exc_info=True)
        raise
    finally:
        db.close()
        logger.debug("Database session closed.")
