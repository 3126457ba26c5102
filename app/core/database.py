"""
Database engine, session factory and declarative base.
"""
import logging
from contextlib import contextmanager
from typing import Generator, Iterator

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from app.core.config import settings
from app.core.exceptions import PersistenceError

logger = logging.getLogger(__name__)

_connect_args = {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}

engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,
    connect_args=_connect_args,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency: one session per request, always closed."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def write_transaction(db: Session, action: str) -> Iterator[Session]:
    """
    Wrap the flushes of one write and commit when the block exits.

    Any SQLAlchemyError, from a flush or from the commit, rolls the session
    back and is raised as PersistenceError. Other exceptions roll back too.
    """
    try:
        yield db
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Failed to %s: %s", action, e)
        raise PersistenceError(message=f"Failed to {action}. Please try again.")
    except Exception:
        db.rollback()
        raise
