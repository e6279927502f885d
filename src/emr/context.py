from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from src.emr.config import Settings, settings as default_settings
from src.emr.infra.db.bootstrap import Repositories, build_repositories
from src.emr.services.ai.completion import CompletionBackend, NoteAssistant, get_completion_backend_from_env
from src.emr.services.assignments.service import AssignmentService
from src.emr.services.audit.service import AuditService
from src.emr.services.auth.identity import InMemoryIdentityProvider, parse_demo_users
from src.emr.services.fax.service import FaxCarrier, FaxService, get_fax_carrier_from_env
from src.emr.services.forms.service import FormSchemaService
from src.emr.services.notes.service import ClinicalNoteService
from src.emr.services.patients.service import PatientService
from src.emr.services.realtime.feed import ChangeFeed
from src.emr.services.templates.service import NoteTemplateService
from src.emr.services.transcription.backends import ASRBackend, get_asr_backend_from_env
from src.emr.services.transcription.service import TranscriptionService
from src.emr.services.users.service import InMemoryUserService

logger = logging.getLogger(__name__)


class AppContext:
    """Owns every repository, service and external client of the application.

    Build one, call :meth:`initialize`, use it, then :meth:`dispose` it. The
    FastAPI app does this in its lifespan; tests build their own contexts,
    optionally passing fake backends or pre-built repositories.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        repositories: Optional[Repositories] = None,
        asr_backend: Optional[ASRBackend] = None,
        completion_backend: Optional[CompletionBackend] = None,
        fax_carrier: Optional[FaxCarrier] = None,
    ) -> None:
        self.settings = settings or default_settings
        self._repositories = repositories
        self._asr_backend = asr_backend
        self._completion_backend = completion_backend
        self._fax_carrier = fax_carrier
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> "AppContext":
        if self._initialized:
            return self

        cfg = self.settings
        self.repositories = self._repositories or build_repositories(cfg)
        self.feed = ChangeFeed()
        self.audit = AuditService()
        self.users = InMemoryUserService()

        self.identity = InMemoryIdentityProvider(session_ttl=timedelta(minutes=cfg.session_ttl_minutes))
        for account in parse_demo_users(cfg.demo_users):
            self.identity.register(**account)

        self.asr_backend = self._asr_backend or get_asr_backend_from_env()
        self.completion_backend = self._completion_backend or get_completion_backend_from_env()
        self.fax_carrier = self._fax_carrier or get_fax_carrier_from_env()

        repos = self.repositories
        self.patients = PatientService(repos.patients)
        self.templates = NoteTemplateService()
        self.schemas = FormSchemaService(repos.schemas, repos.assignments)
        self.assignments = AssignmentService(
            schemas=repos.schemas,
            patients=repos.patients,
            assignments=repos.assignments,
            default_due_days=cfg.default_assignment_due_days,
        )
        self.notes = ClinicalNoteService(
            notes=repos.notes,
            patients=repos.patients,
            feed=self.feed,
            templates=self.templates,
        )
        self.assistant = NoteAssistant(self.completion_backend)
        self.transcription = TranscriptionService(
            asr_backend=self.asr_backend,
            completion_backend=self.completion_backend,
            max_upload_bytes=cfg.max_upload_bytes,
        )
        self.fax = FaxService(
            faxes=repos.faxes,
            carrier=self.fax_carrier,
            from_number=cfg.twilio_fax_number,
            status_callback_url=cfg.fax_status_callback_url,
        )

        self._initialized = True
        logger.info("Application context initialized (sql=%s)", repos.engine is not None)
        return self

    def dispose(self) -> None:
        """Release subscriptions, external clients and database connections."""

        if not self._initialized:
            return
        released = self.feed.close()
        for client in (self.asr_backend, self.completion_backend, self.fax_carrier):
            close = getattr(client, "close", None)
            if close is not None:
                close()
        self.repositories.close()
        self._initialized = False
        logger.info("Application context disposed (%d subscriptions released)", released)

    def __enter__(self) -> "AppContext":
        return self.initialize()

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.dispose()
        return False
