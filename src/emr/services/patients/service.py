from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import List, Optional
from uuid import uuid4

from src.emr.domain.models.patient import Patient
from src.emr.errors import NotFoundError, ValidationError
from src.emr.infra.db.repositories import PatientRepository
from src.emr.tenancy import get_current_organization

logger = logging.getLogger(__name__)


class PatientService:
    def __init__(self, patients: PatientRepository) -> None:
        self._patients = patients

    def create_patient(self, *, full_name: str, date_of_birth: Optional[date] = None) -> Patient:
        if not full_name.strip():
            raise ValidationError("full_name must not be empty")
        patient = Patient(
            id=str(uuid4()),
            organization_id=get_current_organization(),
            full_name=full_name.strip(),
            date_of_birth=date_of_birth,
            created_at=datetime.now(timezone.utc),
        )
        self._patients.save(patient)
        logger.info("Created patient %s", patient.id)
        return patient

    def get_patient(self, patient_id: str) -> Patient:
        patient = self._patients.get(patient_id)
        if patient is None or patient.is_deleted:
            raise NotFoundError("Patient not found")
        return patient

    def list_patients(self) -> List[Patient]:
        return sorted(self._patients.list(), key=lambda p: p.full_name.lower())

    def soft_delete_patient(self, patient_id: str) -> Patient:
        """Hide a patient from every read; existing notes and forms are kept."""

        patient = self.get_patient(patient_id)
        updated = patient.model_copy(update={"is_deleted": True})
        self._patients.save(updated)
        return updated
