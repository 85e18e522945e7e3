from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from . import forms
from .errors import ValidationError
from .models import ChecklistRecord, ChecklistTemplate, Section, TemplateType
from .validation import Completion, check_new_submission, completion

HEADER_FIELDS = (
    "type",
    "driver_name",
    "inspector_name",
    "reason",
    "handover_user_id",
    "inspector_employee_id",
    "general_observations",
    "recommendations",
    "priority",
    "next_maintenance_date",
)


class SessionMode(str, Enum):
    NEW = "new"
    EDIT = "edit"


@dataclass
class ChecklistSession:
    """In-progress state of one checklist form.

    A session belongs to a single browser session. ``start_new`` and
    ``start_edit`` always reset every field; ``close`` discards the answers.
    """

    mode: Optional[SessionMode] = None
    record_id: Optional[int] = None
    vehicle_id: Optional[int] = None
    effective_role: Optional[str] = None
    templates: List[ChecklistTemplate] = field(default_factory=list)
    results: forms.Results = field(default_factory=dict)
    evidence_url: str = ""
    header: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_open(self) -> bool:
        return self.mode is not None

    @property
    def is_new(self) -> bool:
        return self.mode is SessionMode.NEW

    def start_new(self, *, vehicle_id: Optional[int] = None, template_type: TemplateType = TemplateType.EXPRESS) -> None:
        self._reset()
        self.mode = SessionMode.NEW
        self.vehicle_id = vehicle_id
        self.header["type"] = template_type

    def start_edit(self, record: ChecklistRecord, templates: List[ChecklistTemplate]) -> None:
        self._reset()
        self.mode = SessionMode.EDIT
        self.record_id = record.id
        self.vehicle_id = record.vehicle_id
        self.templates = list(templates)
        self.results = forms.load_results(self.templates, record.results)
        self.evidence_url = record.evidence_url or ""
        self.header = {name: getattr(record, name) for name in HEADER_FIELDS}

    def close(self) -> None:
        self._reset()

    def use_templates(self, templates: List[ChecklistTemplate], effective_role: Optional[str] = None) -> None:
        self.templates = list(templates)
        self.effective_role = effective_role

    def section(self, section_id: str, item_id: Optional[str] = None) -> Section:
        section = forms.find_section(self.templates, section_id, item_id)
        if section is not None:
            return section
        raise ValidationError("results", f"Sección desconocida: {section_id}")

    def set_state(self, section_id: str, item_id: str, value: Optional[str]) -> forms.Results:
        self.results = forms.set_state(self.results, self.section(section_id, item_id), item_id, value)
        return self.results

    def set_obs(self, section_id: str, item_id: str, text: Optional[str]) -> forms.Results:
        self.section(section_id)
        self.results = forms.set_obs(self.results, section_id, item_id, text)
        return self.results

    def update_header(self, **values: Any) -> None:
        for name, value in values.items():
            if name not in HEADER_FIELDS:
                raise ValidationError(name, f"Campo desconocido: {name}")
            self.header[name] = value

    def attach_evidence(self, url: str) -> None:
        self.evidence_url = url

    def form(self) -> List[forms.FormSection]:
        return forms.build_form(self.templates, self.results)

    def completion(self) -> Completion:
        return completion(self.templates, self.results)

    def build_submission(self) -> Dict[str, Any]:
        """Payload for the record store.

        New checklists must be complete and carry evidence; ``IncompleteFormError``
        is raised before anything is sent. Edits are accepted as they are.
        """
        if not self.is_open:
            raise ValidationError("session", "No hay un checklist abierto")
        if self.is_new:
            check_new_submission(self.templates, self.results, self.evidence_url)
        payload = dict(self.header)
        payload["vehicle_id"] = self.vehicle_id
        payload["evidence_url"] = self.evidence_url
        payload["results"] = forms.snapshot_results(self.templates, self.results)
        return payload

    def _reset(self) -> None:
        self.mode = None
        self.record_id = None
        self.vehicle_id = None
        self.effective_role = None
        self.templates = []
        self.results = {}
        self.evidence_url = ""
        self.header = {}
