from __future__ import annotations

from threading import Lock
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import UUID, uuid4

from src.emr.domain.models.note_template import NoteTemplate, NoteTemplateSection
from src.emr.errors import ValidationError
from src.emr.tenancy import DEFAULT_ORGANIZATION, get_current_organization

SectionSpec = Tuple[str, str, Optional[str]]

_SOAP_SECTIONS: List[SectionSpec] = [
    ("subjective", "Subjective", "Chief complaint, history of present illness, symptoms"),
    ("objective", "Objective", "Vitals, examination findings, results"),
    ("assessment", "Assessment", "Diagnosis and differentials"),
    ("plan", "Plan", "Treatment, medications, follow-up"),
]


class NoteTemplateService:
    """In-memory store of note templates, scoped by organization.

    The default organization is seeded with a few specialty layouts so that
    template-type notes work out of the box.
    """

    def __init__(self, *, seed_defaults: bool = True) -> None:
        self._templates: Dict[UUID, NoteTemplate] = {}
        self._lock = Lock()
        if seed_defaults:
            self._seed_defaults()

    def _seed_defaults(self) -> None:
        self._add_seed_template(
            organization_id=DEFAULT_ORGANIZATION,
            name="General SOAP note",
            specialty="general",
            visit_type=None,
            sections=_SOAP_SECTIONS,
        )
        self._add_seed_template(
            organization_id=DEFAULT_ORGANIZATION,
            name="Cardiology outpatient follow-up",
            specialty="cardiology",
            visit_type="follow_up",
            sections=[
                ("subjective", "History of Present Illness", None),
                ("objective", "Cardiovascular Exam", "Blood pressure, heart rate, auscultation"),
                ("assessment", "Cardiac Assessment", None),
                ("plan", "Management Plan", None),
            ],
        )
        self._add_seed_template(
            organization_id=DEFAULT_ORGANIZATION,
            name="Pediatrics well-child visit",
            specialty="pediatrics",
            visit_type="well_child",
            sections=[
                ("subjective", "Parental Concerns", None),
                ("objective", "Growth and Development", None),
                ("assessment", "Pediatric Assessment", "Key problems and differentials"),
                ("plan", "Immunizations and Follow-up", "Vaccines, anticipatory guidance, follow-up"),
            ],
        )

    def _add_seed_template(
        self,
        *,
        organization_id: str,
        name: str,
        specialty: str,
        visit_type: Optional[str],
        sections: Sequence[SectionSpec],
    ) -> None:
        template = NoteTemplate(
            id=uuid4(),
            organization_id=organization_id,
            name=name,
            specialty=specialty,
            visit_type=visit_type,
            sections=[NoteTemplateSection(id=s_id, title=title, hint=hint) for s_id, title, hint in sections],
            is_default=True,
        )
        self._templates[template.id] = template

    def get_template(self, template_id: UUID) -> Optional[NoteTemplate]:
        template = self._templates.get(template_id)
        if template is None or template.organization_id != get_current_organization():
            return None
        return template

    def list_templates(
        self,
        *,
        specialty: Optional[str] = None,
        visit_type: Optional[str] = None,
    ) -> List[NoteTemplate]:
        organization = get_current_organization()
        results: List[NoteTemplate] = []
        for template in self._templates.values():
            if template.organization_id != organization:
                continue
            if specialty and template.specialty != specialty:
                continue
            if visit_type and template.visit_type != visit_type:
                continue
            results.append(template)
        return results

    def create_template(
        self,
        *,
        name: str,
        specialty: str,
        visit_type: Optional[str],
        sections: List[NoteTemplateSection],
    ) -> NoteTemplate:
        if not sections:
            raise ValidationError("A note template needs at least one section")
        section_ids = [section.id for section in sections]
        if len(set(section_ids)) != len(section_ids):
            raise ValidationError("Note template section ids must be unique")

        template = NoteTemplate(
            id=uuid4(),
            organization_id=get_current_organization(),
            name=name,
            specialty=specialty,
            visit_type=visit_type,
            sections=sections,
            is_default=False,
        )
        with self._lock:
            self._templates[template.id] = template
        return template

    def get_default_for(self, *, specialty: str, visit_type: Optional[str] = None) -> Optional[NoteTemplate]:
        for template in self.list_templates(specialty=specialty, visit_type=visit_type):
            if template.is_default:
                return template
        return None
