from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .cache import QueryCache
from .database import Database
from .errors import ValidationError
from .models import ChecklistTemplate, Section, TemplateType

logger = logging.getLogger(__name__)

TEMPLATES_TAG = "templates"
CLONE_SUFFIX = " (Copia)"
UPDATABLE_FIELDS = frozenset({"name", "description", "type", "sections", "role_ids", "active"})


def normalize_sections(raw_sections: Any) -> List[Section]:
    if raw_sections is None:
        return []
    if not isinstance(raw_sections, (list, tuple)):
        raise ValidationError("sections", "Las secciones deben ser una lista")
    sections: List[Section] = []
    seen_sections: set[str] = set()
    for index, raw in enumerate(raw_sections, start=1):
        if isinstance(raw, Section):
            section = raw
        elif isinstance(raw, dict):
            try:
                section = Section.from_dict(raw)
            except ValueError as exc:
                raise ValidationError("sections", f"Tipo de sección inválido en la sección {index}") from exc
        else:
            raise ValidationError("sections", f"La sección {index} no es válida")
        if section.id in seen_sections:
            raise ValidationError("sections", f"Sección duplicada: {section.display_title}")
        seen_sections.add(section.id)
        seen_items: set[str] = set()
        for item in section.items:
            if not item.name:
                raise ValidationError("sections", f"Hay un ítem sin nombre en {section.display_title}")
            if item.id in seen_items:
                raise ValidationError("sections", f"Ítem duplicado en {section.display_title}: {item.name}")
            seen_items.add(item.id)
        sections.append(section)
    return sections


def merge_unique(*result_sets: Iterable[ChecklistTemplate]) -> List[ChecklistTemplate]:
    """Concatenate result sets keeping the first occurrence of each template id."""
    seen: set[int] = set()
    merged: List[ChecklistTemplate] = []
    for result_set in result_sets:
        for template in result_set:
            if template.id in seen:
                continue
            seen.add(template.id)
            merged.append(template)
    return merged


def _clean_name(name: Any) -> str:
    cleaned = str(name or "").strip()
    if not cleaned:
        raise ValidationError("name", "El nombre de la plantilla es obligatorio")
    return cleaned


def _clean_type(value: Any) -> TemplateType:
    try:
        return TemplateType(value)
    except ValueError as exc:
        raise ValidationError("type", f"Tipo de plantilla inválido: {value}") from exc


def _clean_role_ids(role_ids: Optional[Iterable[Any]]) -> List[int]:
    cleaned: List[int] = []
    for role_id in role_ids or []:
        try:
            value = int(role_id)
        except (TypeError, ValueError):
            continue
        if value not in cleaned:
            cleaned.append(value)
    return cleaned


@dataclass
class TemplateStore:
    database: Database
    cache: QueryCache = field(default_factory=QueryCache)

    def list_templates(
        self,
        *,
        active_only: bool = False,
        unique: bool = False,
        role_ids: Sequence[int] = (),
    ) -> List[ChecklistTemplate]:
        """List templates.

        With ``unique`` the templates scoped to any of ``role_ids`` come first,
        followed by the rest, each template appearing once.
        """
        templates = self.cache.fetch(
            (TEMPLATES_TAG, active_only),
            [TEMPLATES_TAG],
            lambda: self.database.list_templates(active_only=active_only),
        )
        if not unique:
            return list(templates)
        wanted = set(role_ids)
        scoped = [template for template in templates if wanted.intersection(template.role_ids)]
        return merge_unique(scoped, templates)

    def for_role(self, role_id: int) -> List[ChecklistTemplate]:
        return [
            template
            for template in self.list_templates(active_only=True)
            if role_id in template.role_ids
        ]

    def get(self, template_id: int) -> ChecklistTemplate:
        template = self.database.get_template(template_id)
        if not template:
            raise LookupError("Template not found")
        return template

    def create(
        self,
        *,
        name: str,
        template_type: Any = TemplateType.EXPRESS,
        sections: Any = None,
        description: Optional[str] = None,
        role_ids: Optional[Iterable[Any]] = None,
        active: bool = True,
    ) -> ChecklistTemplate:
        template = self.database.add_template(
            name=_clean_name(name),
            description=(description or "").strip() or None,
            template_type=_clean_type(template_type),
            sections=normalize_sections(sections),
            role_ids=_clean_role_ids(role_ids),
            active=bool(active),
        )
        self.cache.invalidate(TEMPLATES_TAG)
        logger.info("Created checklist template %s (%s)", template.id, template.name)
        return template

    def update(self, template_id: int, changes: Dict[str, Any]) -> ChecklistTemplate:
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(sorted(unknown)[0], f"Campo no editable: {', '.join(sorted(unknown))}")
        fields: Dict[str, Any] = {}
        if "name" in changes:
            fields["name"] = _clean_name(changes["name"])
        if "description" in changes:
            fields["description"] = (changes["description"] or "").strip() or None
        if "type" in changes:
            fields["type"] = _clean_type(changes["type"])
        if "sections" in changes:
            fields["sections"] = normalize_sections(changes["sections"])
        if "active" in changes:
            fields["active"] = bool(changes["active"])
        role_ids = _clean_role_ids(changes["role_ids"]) if "role_ids" in changes else None
        template = self.database.update_template(template_id, fields, role_ids)
        if not template:
            raise LookupError("Template not found")
        self.cache.invalidate(TEMPLATES_TAG)
        logger.info("Updated checklist template %s fields=%s", template_id, sorted(changes))
        return template

    def clone(self, template_id: int, *, active: bool = True) -> ChecklistTemplate:
        source = self.get(template_id)
        copy = self.database.add_template(
            name=f"{source.name or 'Plantilla'}{CLONE_SUFFIX}",
            description=source.description,
            template_type=source.type,
            sections=[Section.from_dict(section.to_dict()) for section in source.sections],
            role_ids=list(source.role_ids),
            active=active,
        )
        self.cache.invalidate(TEMPLATES_TAG)
        logger.info("Cloned checklist template %s into %s", template_id, copy.id)
        return copy

    def toggle_active(self, template_id: int, active: bool) -> ChecklistTemplate:
        template = self.database.update_template(template_id, {"active": bool(active)})
        if not template:
            raise LookupError("Template not found")
        self.cache.invalidate(TEMPLATES_TAG)
        logger.info("Template %s is now %s", template_id, "active" if active else "inactive")
        return template

    def delete(self, template_id: int) -> None:
        if not self.database.delete_template(template_id):
            raise LookupError("Template not found")
        self.cache.invalidate(TEMPLATES_TAG)
        logger.info("Deleted checklist template %s", template_id)
