"""Nested answer structure of a checklist being filled in.

Answers live in ``results[section_id][item_id] = {"state": ..., "obs": ...}``.
Every mutation returns a new top-level mapping and a new mapping for the
touched section; untouched sections keep their identity so callers can
detect changes with ``is`` instead of deep comparison.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .errors import ValidationError
from .models import ChecklistTemplate, Section, SectionKind

Answer = Dict[str, str]
Results = Dict[str, Dict[str, Answer]]


@dataclass(frozen=True)
class FormItem:
    item_id: str
    name: str
    state: str
    obs: str


@dataclass(frozen=True)
class FormSection:
    template_id: int
    section_id: str
    title: str
    kind: SectionKind
    allowed_states: Tuple[str, ...]
    items: Tuple[FormItem, ...]


def answer_for(results: Mapping[str, Any], section_id: str, item_id: str) -> Answer:
    section = results.get(section_id)
    if not isinstance(section, Mapping):
        return {}
    answer = section.get(item_id)
    return answer if isinstance(answer, dict) else {}


def _replace_answer(results: Mapping[str, Any], section_id: str, item_id: str, key: str, value: str) -> Results:
    previous_section = results.get(section_id)
    section = dict(previous_section) if isinstance(previous_section, Mapping) else {}
    answer = dict(section.get(item_id) or {})
    answer[key] = value
    section[item_id] = answer
    updated = dict(results)
    updated[section_id] = section
    return updated


def set_state(results: Mapping[str, Any], section: Section, item_id: str, value: Optional[str]) -> Results:
    if section.item(item_id) is None:
        raise ValidationError("results", f"Ítem desconocido en {section.display_title}: {item_id}")
    state = str(value or "").strip()
    if state and state not in section.allowed_states:
        raise ValidationError(
            "results",
            f"Estado '{state}' no válido para {section.display_title}; use {', '.join(section.allowed_states)}",
        )
    return _replace_answer(results, section.id, item_id, "state", state)


def set_obs(results: Mapping[str, Any], section_id: str, item_id: str, text: Optional[str]) -> Results:
    return _replace_answer(results, section_id, item_id, "obs", str(text or ""))


def find_section(templates: Iterable[ChecklistTemplate], section_id: str, item_id: Optional[str] = None) -> Optional[Section]:
    """Section with ``section_id`` that defines ``item_id``.

    Several templates may share a section id; their items are answered under
    the same key. Without a matching item the first section with that id is
    returned so the caller can report the unknown item.
    """
    fallback: Optional[Section] = None
    for template in templates:
        section = template.section(section_id)
        if section is None:
            continue
        if item_id is None or section.item(item_id) is not None:
            return section
        fallback = fallback or section
    return fallback


def build_form(templates: Iterable[ChecklistTemplate], results: Mapping[str, Any]) -> List[FormSection]:
    """Sections to render, always driven by the templates.

    Items without an answer render with blank state and observation.
    """
    form: List[FormSection] = []
    for template in templates:
        for section in template.sections:
            items = []
            for item in section.items:
                answer = answer_for(results, section.id, item.id)
                items.append(
                    FormItem(
                        item_id=item.id,
                        name=str(item.name),
                        state=str(answer.get("state") or ""),
                        obs=str(answer.get("obs") or ""),
                    )
                )
            form.append(
                FormSection(
                    template_id=template.id,
                    section_id=section.id,
                    title=section.display_title,
                    kind=section.kind,
                    allowed_states=section.allowed_states,
                    items=tuple(items),
                )
            )
    return form


def load_results(templates: Iterable[ChecklistTemplate], stored: Mapping[str, Any]) -> Results:
    """Re-key persisted, title-keyed answers onto section and item ids.

    Stored keys are matched against the id first and the current title second.
    Keys that match nothing are kept unchanged so they survive an edit.
    """
    loaded: Results = {}
    consumed: set[str] = set()
    for template in templates:
        for section in template.sections:
            key = _first_present(stored, (section.id, section.display_title))
            if key is None:
                continue
            consumed.add(key)
            block = stored[key]
            if not isinstance(block, Mapping):
                continue
            answers = loaded.setdefault(section.id, {})
            used_items: set[str] = set()
            for item in section.items:
                item_key = _first_present(block, (item.id, item.name))
                if item_key is None or not isinstance(block[item_key], Mapping):
                    continue
                used_items.add(item_key)
                answers[item.id] = _clean_answer(block[item_key])
            for item_key, answer in block.items():
                if item_key not in used_items and isinstance(answer, Mapping):
                    answers.setdefault(item_key, _clean_answer(answer))
    for key, block in stored.items():
        if key in consumed or not isinstance(block, Mapping):
            continue
        loaded[key] = {
            item_key: _clean_answer(answer) for item_key, answer in block.items() if isinstance(answer, Mapping)
        }
    return loaded


def snapshot_results(templates: Iterable[ChecklistTemplate], results: Mapping[str, Any]) -> Results:
    """Copy answers into the self-describing shape that gets persisted.

    Keys become the section titles and item names displayed at fill time.
    Answers kept under keys no template knows about are copied as they are.
    """
    snapshot: Results = {}
    claimed: set[str] = set()
    for template in templates:
        for section in template.sections:
            claimed.add(section.id)
            block = results.get(section.id)
            if not isinstance(block, Mapping):
                continue
            rows = snapshot.setdefault(section.display_title, {})
            for item in section.items:
                answer = block.get(item.id)
                if isinstance(answer, Mapping) and _is_filled(answer):
                    rows[item.name] = _clean_answer(answer)
            for item_key, answer in block.items():
                if section.item(item_key) is None and isinstance(answer, Mapping) and _is_filled(answer):
                    rows.setdefault(item_key, _clean_answer(answer))
    for key, block in results.items():
        if key in claimed or not isinstance(block, Mapping):
            continue
        rows = snapshot.setdefault(key, {})
        for item_key, answer in block.items():
            if isinstance(answer, Mapping) and _is_filled(answer):
                rows.setdefault(item_key, _clean_answer(answer))
    return {title: rows for title, rows in snapshot.items() if rows}


def _first_present(mapping: Mapping[str, Any], keys: Iterable[str]) -> Optional[str]:
    return next((key for key in keys if key in mapping), None)


def _clean_answer(answer: Mapping[str, Any]) -> Answer:
    return {"state": str(answer.get("state") or ""), "obs": str(answer.get("obs") or "")}


def _is_filled(answer: Mapping[str, Any]) -> bool:
    return bool(answer.get("state")) or bool(str(answer.get("obs") or "").strip())
