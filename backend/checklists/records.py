from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, Dict, List, Mapping, Optional

from .cache import QueryCache
from .database import Database
from .errors import ValidationError
from .models import ChecklistReason, ChecklistRecord, ChecklistStatus, Priority, TemplateType

logger = logging.getLogger(__name__)

CHECKLISTS_TAG = "checklists"
FAILURE_STATES = frozenset({"no"})
SERVER_ASSIGNED_FIELDS = frozenset({"id", "folio", "inspected_at", "updated_at", "status"})
REQUIRED_FIELDS = ("vehicle_id", "type", "driver_name", "inspector_name")


@dataclass(frozen=True)
class RecordFilters:
    """Conjunctive filters for listing checklists."""

    type: Optional[TemplateType] = None
    vehicle_id: Optional[int] = None
    economic_number: Optional[str] = None
    start: Optional[date] = None
    end: Optional[date] = None
    status: Optional[ChecklistStatus] = None

    @classmethod
    def from_query(cls, params: Mapping[str, Optional[str]]) -> "RecordFilters":
        raw_type = (params.get("type") or "").strip().lower()
        raw_vehicle = (params.get("vehicle_id") or "").strip()
        raw_status = (params.get("status") or "").strip().lower()
        return cls(
            type=_clean_enum(TemplateType, raw_type, "type") if raw_type and raw_type != "all" else None,
            vehicle_id=_clean_int(raw_vehicle, "vehicle_id") if raw_vehicle else None,
            economic_number=(params.get("economic_number") or "").strip() or None,
            start=_clean_date(params.get("start"), "start"),
            end=_clean_date(params.get("end"), "end"),
            status=_clean_enum(ChecklistStatus, raw_status, "status") if raw_status and raw_status != "all" else None,
        )

    @property
    def is_empty(self) -> bool:
        return self == RecordFilters()


def compute_status(results: Mapping[str, Any]) -> ChecklistStatus:
    for block in results.values():
        if not isinstance(block, Mapping):
            continue
        for answer in block.values():
            if isinstance(answer, Mapping) and str(answer.get("state") or "").lower() in FAILURE_STATES:
                return ChecklistStatus.OPERANDO_CON_FALLA
    return ChecklistStatus.OPERANDO


def clean_record_values(values: Mapping[str, Any], *, partial: bool = False) -> Dict[str, Any]:
    """Validate a create/update payload.

    Server assigned fields are dropped and unknown keys are ignored.
    """
    cleaned: Dict[str, Any] = {}
    if not partial:
        for name in REQUIRED_FIELDS:
            if values.get(name) in (None, ""):
                raise ValidationError(name, f"El campo {name} es obligatorio")
    for name, value in values.items():
        if name in SERVER_ASSIGNED_FIELDS:
            continue
        if name == "vehicle_id":
            cleaned[name] = _clean_int(value, name)
        elif name == "type":
            cleaned[name] = _clean_enum(TemplateType, value, name)
        elif name in {"driver_name", "inspector_name"}:
            text = str(value or "").strip()
            if not text:
                raise ValidationError(name, f"El campo {name} es obligatorio")
            cleaned[name] = text
        elif name == "reason":
            cleaned[name] = _clean_enum(ChecklistReason, value or ChecklistReason.SCHEDULED_TASK.value, name)
        elif name == "priority":
            cleaned[name] = _clean_enum(Priority, value, name) if value else None
        elif name in {"handover_user_id", "inspector_employee_id", "created_by_user_id"}:
            cleaned[name] = _clean_int(value, name) if value not in (None, "") else None
        elif name in {"general_observations", "recommendations"}:
            cleaned[name] = str(value).strip() or None if value is not None else None
        elif name == "evidence_url":
            cleaned[name] = str(value or "").strip()
        elif name == "next_maintenance_date":
            cleaned[name] = _clean_date(value, name)
        elif name == "results":
            cleaned[name] = _clean_results(value)
    if not partial:
        cleaned.setdefault("reason", ChecklistReason.SCHEDULED_TASK)
        cleaned.setdefault("results", {})
        cleaned.setdefault("evidence_url", "")
    return cleaned


@dataclass
class ChecklistRecordStore:
    database: Database
    cache: QueryCache = field(default_factory=QueryCache)

    def create(self, values: Mapping[str, Any]) -> ChecklistRecord:
        cleaned = clean_record_values(values)
        cleaned["status"] = compute_status(cleaned["results"])
        record = self.database.add_checklist(cleaned)
        self.cache.invalidate(CHECKLISTS_TAG)
        logger.info("Created checklist %s for vehicle %s (%s)", record.folio, record.vehicle_id, record.status.value)
        return record

    def update(self, checklist_id: int, values: Mapping[str, Any]) -> ChecklistRecord:
        existing = self.get(checklist_id)
        cleaned = clean_record_values(values, partial=True)
        cleaned["status"] = compute_status(cleaned.get("results", existing.results))
        record = self.database.update_checklist(checklist_id, cleaned)
        if record is None:
            raise LookupError("Checklist not found")
        self.cache.invalidate(CHECKLISTS_TAG)
        logger.info("Updated checklist %s fields=%s", record.folio, sorted(cleaned))
        return record

    def get(self, checklist_id: int) -> ChecklistRecord:
        record = self.database.get_checklist(checklist_id)
        if not record:
            raise LookupError("Checklist not found")
        return record

    def list(self, filters: Optional[RecordFilters] = None) -> List[ChecklistRecord]:
        filters = filters or RecordFilters()
        return list(
            self.cache.fetch(
                (CHECKLISTS_TAG, filters),
                [CHECKLISTS_TAG],
                lambda: self._query(filters),
            )
        )

    def peek(self, filters: Optional[RecordFilters] = None) -> Optional[List[ChecklistRecord]]:
        """Last cached result for ``filters``, even when it is due for a refetch."""
        return self.cache.peek((CHECKLISTS_TAG, filters or RecordFilters()))

    def delete(self, checklist_id: int) -> None:
        if not self.database.delete_checklist(checklist_id):
            raise LookupError("Checklist not found")
        removed = self.cache.patch(
            CHECKLISTS_TAG,
            lambda records: [record for record in records if record.id != checklist_id],
        )
        self.cache.invalidate(CHECKLISTS_TAG)
        logger.info("Deleted checklist %s (patched %d cached lists)", checklist_id, removed)

    def _query(self, filters: RecordFilters) -> List[ChecklistRecord]:
        return self.database.list_checklists(
            checklist_type=filters.type,
            vehicle_id=filters.vehicle_id,
            economic_number=filters.economic_number,
            start=datetime.combine(filters.start, time.min) if filters.start else None,
            end=datetime.combine(filters.end, time.max) if filters.end else None,
            status=filters.status,
        )


def _clean_enum(enum_type: Any, value: Any, name: str) -> Any:
    try:
        return enum_type(value)
    except ValueError as exc:
        raise ValidationError(name, f"Valor inválido para {name}: {value}") from exc


def _clean_int(value: Any, name: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(name, f"{name} debe ser un número") from exc
    if number <= 0:
        raise ValidationError(name, f"{name} debe ser positivo")
    return number


def _clean_date(value: Any, name: str) -> Optional[date]:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value).strip()[:10], "%Y-%m-%d").date()
    except ValueError as exc:
        raise ValidationError(name, f"Fecha inválida para {name}: {value}") from exc


def _clean_results(value: Any) -> Dict[str, Dict[str, Dict[str, str]]]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValidationError("results", "Los resultados deben ser un objeto")
    cleaned: Dict[str, Dict[str, Dict[str, str]]] = {}
    for section_key, block in value.items():
        if not isinstance(block, Mapping):
            raise ValidationError("results", f"Resultados inválidos en {section_key}")
        cleaned[str(section_key)] = {
            str(item_key): {"state": str(answer.get("state") or ""), "obs": str(answer.get("obs") or "")}
            for item_key, answer in block.items()
            if isinstance(answer, Mapping)
        }
    return cleaned
