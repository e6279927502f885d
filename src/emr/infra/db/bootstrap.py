from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from src.emr.config import Settings
from src.emr.infra.db import inmemory
from src.emr.infra.db.models import Base
from src.emr.infra.db.repositories import (
    AssignmentRepository,
    ClinicalNoteRepository,
    FaxRepository,
    FormSchemaRepository,
    PatientRepository,
)
from src.emr.infra.db.session import create_sqlalchemy_engine, create_sqlalchemy_session_factory
from src.emr.infra.db.sql_repositories import (
    SqlAssignmentRepository,
    SqlClinicalNoteRepository,
    SqlFaxRepository,
    SqlFormSchemaRepository,
    SqlPatientRepository,
)

logger = logging.getLogger(__name__)


@dataclass
class Repositories:
    patients: PatientRepository
    schemas: FormSchemaRepository
    assignments: AssignmentRepository
    notes: ClinicalNoteRepository
    faxes: FaxRepository
    engine: Optional[Engine] = None

    def ping(self) -> bool:
        if self.engine is None:
            return True
        try:
            with self.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.exception("Database health check failed")
            return False
        return True

    def close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None


def in_memory_repositories() -> Repositories:
    return Repositories(
        patients=inmemory.InMemoryPatientRepository(),
        schemas=inmemory.InMemoryFormSchemaRepository(),
        assignments=inmemory.InMemoryAssignmentRepository(),
        notes=inmemory.InMemoryClinicalNoteRepository(),
        faxes=inmemory.InMemoryFaxRepository(),
    )


def sql_repositories(database_url: str, *, create_tables: bool = True) -> Repositories:
    engine = create_sqlalchemy_engine(database_url)
    if create_tables:
        # Real deployments should run migrations; creating missing tables keeps
        # local setups and tests self-contained.
        Base.metadata.create_all(engine)
    session_factory = create_sqlalchemy_session_factory(engine)
    return Repositories(
        patients=SqlPatientRepository(session_factory),
        schemas=SqlFormSchemaRepository(session_factory),
        assignments=SqlAssignmentRepository(session_factory),
        notes=SqlClinicalNoteRepository(session_factory),
        faxes=SqlFaxRepository(session_factory),
        engine=engine,
    )


def build_repositories(settings: Settings) -> Repositories:
    """Pick SQL-backed repositories when configured, in-memory otherwise.

    If USE_SQL_REPOS is enabled but DATABASE_URL is missing, we log the
    misconfiguration and fall back to in-memory storage.
    """

    if not settings.use_sql_repos:
        return in_memory_repositories()

    if not settings.database_url:
        logger.warning("USE_SQL_REPOS is enabled but DATABASE_URL is not set; using in-memory repositories")
        return in_memory_repositories()

    return sql_repositories(settings.database_url)
