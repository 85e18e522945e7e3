from __future__ import annotations

from typing import Iterable, Optional


class ChecklistError(Exception):
    """Base class for checklist domain errors."""


class ValidationError(ChecklistError, ValueError):
    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field
        self.message = message


class IncompleteFormError(ChecklistError, ValueError):
    """Raised before submitting a new checklist that is not ready yet.

    ``reasons`` holds one human readable message per blocking condition so the
    caller can show all of them at once.
    """

    def __init__(self, reasons: Iterable[str]) -> None:
        self.reasons = list(reasons)
        super().__init__(" ".join(self.reasons) or "El checklist está incompleto.")


class TransportError(ChecklistError, RuntimeError):
    def __init__(self, message: str, *, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


class LookupMiss(ChecklistError, LookupError):
    """Expected not-found result of a secondary lookup."""
