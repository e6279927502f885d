from __future__ import annotations

from collections.abc import Callable
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from src.emr.errors import EMRError, StorageError

SessionFactory = Callable[[], Session]


def create_sqlalchemy_engine(database_url: str) -> Engine:
    return create_engine(database_url, future=True)


def create_sqlalchemy_session_factory(engine: Engine) -> SessionFactory:
    """Build a factory producing SQLAlchemy sessions bound to ``engine``."""

    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False, class_=Session)

    def _factory() -> Session:
        return SessionLocal()

    return _factory


@contextmanager
def session_scope(session_factory: SessionFactory, *, commit: bool = False) -> Iterator[Session]:
    """Yield a session, committing on success and rolling back on error.

    Driver and ORM failures are re-raised as StorageError so the service layer
    only has to deal with the domain error taxonomy. Domain errors raised
    inside the block (e.g. ConflictError) propagate unchanged.
    """

    session = session_factory()
    try:
        yield session
        if commit:
            session.commit()
    except EMRError:
        session.rollback()
        raise
    except SQLAlchemyError as exc:
        session.rollback()
        raise StorageError(f"Database operation failed: {exc.__class__.__name__}") from exc
    finally:
        session.close()
