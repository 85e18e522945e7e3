from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

DEFAULT_SECTION_TITLE = "Sección"


class TemplateType(str, Enum):
    EXPRESS = "express"
    COMPLETO = "completo"


class SectionKind(str, Enum):
    BINARY = "binary"
    TRISTATE = "tristate"


SECTION_VOCABULARY: dict[SectionKind, tuple[str, ...]] = {
    SectionKind.BINARY: ("yes", "no"),
    SectionKind.TRISTATE: ("good", "regular", "bad"),
}


class ChecklistReason(str, Enum):
    SCHEDULED_TASK = "scheduled_task"
    OPERATOR_CHANGE = "operator_change"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ChecklistStatus(str, Enum):
    OPERANDO = "operando"
    OPERANDO_CON_FALLA = "operando_con_falla"


ADMIN_ROLE_NAMES = frozenset({"admin", "administrador"})


@dataclass
class Role:
    id: int
    name: str


@dataclass
class User:
    id: int
    full_name: str
    email: str
    role: str
    created_at: datetime

    @property
    def is_admin(self) -> bool:
        return (self.role or "").strip().lower() in ADMIN_ROLE_NAMES


@dataclass
class Vehicle:
    id: int
    economic_number: Optional[str]
    plate: str
    brand: str
    model: str
    year: Optional[int] = None
    mileage: Optional[int] = None
    fuel_type: Optional[str] = None
    assigned_user_id: Optional[int] = None

    @property
    def label(self) -> str:
        return f"{self.economic_number or self.plate} · {self.brand} {self.model}"


@dataclass(frozen=True)
class ChecklistItem:
    id: str
    name: str

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "name": self.name}


@dataclass
class Section:
    """A group of checklist items.

    ``id`` is the stable key answers are stored under. It defaults to the
    title the section had when it was first defined, so renaming ``title``
    later keeps earlier answers attached to it.
    """

    id: str
    title: str
    items: List[ChecklistItem] = field(default_factory=list)
    kind: SectionKind = SectionKind.TRISTATE

    @property
    def display_title(self) -> str:
        return self.title or DEFAULT_SECTION_TITLE

    @property
    def allowed_states(self) -> tuple[str, ...]:
        return SECTION_VOCABULARY[self.kind]

    def item(self, item_id: str) -> Optional[ChecklistItem]:
        return next((item for item in self.items if item.id == item_id), None)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Section":
        title = str(raw.get("title") or "").strip()
        items: List[ChecklistItem] = []
        for entry in raw.get("items") or []:
            if isinstance(entry, dict):
                name = str(entry.get("name") or "").strip()
                item_id = str(entry.get("id") or name)
            else:
                name = str(entry).strip()
                item_id = name
            items.append(ChecklistItem(id=item_id, name=name))
        return cls(
            id=str(raw.get("id") or title or DEFAULT_SECTION_TITLE),
            title=title,
            items=items,
            kind=SectionKind(raw.get("kind") or SectionKind.TRISTATE.value),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "kind": self.kind.value,
            "items": [item.to_dict() for item in self.items],
        }


@dataclass
class ChecklistTemplate:
    id: int
    name: str
    description: Optional[str]
    type: TemplateType
    sections: List[Section]
    role_ids: List[int]
    active: bool
    created_at: datetime
    updated_at: datetime

    def section(self, section_id: str) -> Optional[Section]:
        return next((section for section in self.sections if section.id == section_id), None)


@dataclass
class ChecklistRecord:
    id: int
    folio: str
    vehicle_id: int
    type: TemplateType
    driver_name: str
    inspector_name: str
    reason: ChecklistReason
    results: Dict[str, Dict[str, Dict[str, str]]]
    evidence_url: str
    status: ChecklistStatus
    inspected_at: datetime
    updated_at: datetime
    handover_user_id: Optional[int] = None
    inspector_employee_id: Optional[int] = None
    general_observations: Optional[str] = None
    recommendations: Optional[str] = None
    priority: Optional[Priority] = None
    next_maintenance_date: Optional[date] = None
    created_by_user_id: Optional[int] = None
