from __future__ import annotations

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from src.emr.context import AppContext
from src.emr.domain.models.patient import Patient
from src.emr.security import get_app_context, require_staff

router = APIRouter(
    prefix="/patients",
    tags=["patients"],
    dependencies=[Depends(require_staff)],
)


class CreatePatientRequest(BaseModel):
    full_name: str
    date_of_birth: Optional[date] = None


@router.post("/", response_model=Patient, status_code=status.HTTP_201_CREATED)
async def create_patient(payload: CreatePatientRequest, ctx: AppContext = Depends(get_app_context)) -> Patient:
    patient = ctx.patients.create_patient(full_name=payload.full_name, date_of_birth=payload.date_of_birth)
    ctx.audit.log_event(action="create", resource_type="patient", resource_id=patient.id)
    return patient


@router.get("/", response_model=List[Patient])
async def list_patients(ctx: AppContext = Depends(get_app_context)) -> List[Patient]:
    return ctx.patients.list_patients()


@router.get("/{patient_id}", response_model=Patient)
async def get_patient(patient_id: str, ctx: AppContext = Depends(get_app_context)) -> Patient:
    return ctx.patients.get_patient(patient_id)


@router.delete("/{patient_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_patient(patient_id: str, ctx: AppContext = Depends(get_app_context)) -> None:
    ctx.patients.soft_delete_patient(patient_id)
    ctx.audit.log_event(action="delete", resource_type="patient", resource_id=patient_id)
