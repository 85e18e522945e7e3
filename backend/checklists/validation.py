from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Tuple

from .errors import IncompleteFormError
from .forms import answer_for
from .models import ChecklistTemplate

EVIDENCE_REQUIRED_MESSAGE = "Adjunta la evidencia antes de guardar el checklist."


@dataclass(frozen=True)
class Completion:
    total: int
    marked: int
    missing: Tuple[Tuple[str, str], ...] = ()

    @property
    def all_answered(self) -> bool:
        return self.total == 0 or self.marked == self.total


def completion(templates: Iterable[ChecklistTemplate], results: Mapping[str, Any]) -> Completion:
    total = 0
    marked = 0
    missing = []
    for template in templates:
        for section in template.sections:
            for item in section.items:
                total += 1
                if answer_for(results, section.id, item.id).get("state"):
                    marked += 1
                else:
                    missing.append((section.display_title, item.name))
    return Completion(total=total, marked=marked, missing=tuple(missing))


def all_answered(templates: Iterable[ChecklistTemplate], results: Mapping[str, Any]) -> bool:
    return completion(templates, results).all_answered


def check_new_submission(
    templates: Iterable[ChecklistTemplate],
    results: Mapping[str, Any],
    evidence_url: str,
) -> Completion:
    """Gate a brand new checklist; edits of existing ones skip this check.

    Raises ``IncompleteFormError`` listing every reason the submission is blocked.
    """
    status = completion(templates, results)
    reasons = []
    if not status.all_answered:
        pending = ", ".join(f"{section} / {item}" for section, item in status.missing[:5])
        extra = len(status.missing) - 5
        if extra > 0:
            pending += f" y {extra} más"
        reasons.append(f"Faltan {status.total - status.marked} de {status.total} ítems por marcar: {pending}.")
    if not (evidence_url or "").strip():
        reasons.append(EVIDENCE_REQUIRED_MESSAGE)
    if reasons:
        raise IncompleteFormError(reasons)
    return status
