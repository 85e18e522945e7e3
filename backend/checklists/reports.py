"""Rendering of persisted checklists.

Both outputs read only the record's own ``results`` so a checklist stays
readable after its template is edited or deleted.
"""

from __future__ import annotations

from dataclasses import dataclass
from html import escape
from typing import Any, List, Mapping, Optional, Tuple

from .models import DEFAULT_SECTION_TITLE, ChecklistRecord, ChecklistStatus, Vehicle

STATE_LABELS = {
    "good": "Bueno",
    "regular": "Regular",
    "bad": "Malo",
    "yes": "Sí",
    "no": "No",
}
PRIORITY_LABELS = {"high": "Alta", "medium": "Media", "low": "Baja"}
REASON_LABELS = {"scheduled_task": "Tarea programada", "operator_change": "Cambio de operario"}
STATUS_LABELS = {
    ChecklistStatus.OPERANDO: "Operando",
    ChecklistStatus.OPERANDO_CON_FALLA: "Operando con falla",
}
TYPE_LABELS = {"express": "Express", "completo": "Completo"}
EMPTY = "—"


def state_label(state: Optional[str]) -> str:
    if not state:
        return EMPTY
    return STATE_LABELS.get(state, state)


def _value(value: Any) -> str:
    return getattr(value, "value", value) or ""


@dataclass(frozen=True)
class DetailRow:
    item: str
    state: str
    state_label: str
    obs: str


@dataclass(frozen=True)
class DetailSection:
    title: str
    rows: Tuple[DetailRow, ...]


@dataclass(frozen=True)
class DetailView:
    folio: str
    type_label: str
    status_label: str
    reason_label: str
    priority_label: str
    driver_name: str
    inspector_name: str
    inspected_at: str
    sections: Tuple[DetailSection, ...]
    general_observations: str
    recommendations: str
    next_maintenance: str
    evidence_url: str


def detail_sections(results: Mapping[str, Any]) -> List[DetailSection]:
    sections = []
    for title, block in results.items():
        if not isinstance(block, Mapping):
            continue
        rows = []
        for item, answer in block.items():
            answer = answer if isinstance(answer, Mapping) else {}
            state = str(answer.get("state") or "")
            rows.append(DetailRow(item=str(item), state=state, state_label=state_label(state), obs=str(answer.get("obs") or "")))
        if rows:
            sections.append(DetailSection(title=str(title) or DEFAULT_SECTION_TITLE, rows=tuple(rows)))
    return sections


def render_detail(record: ChecklistRecord) -> DetailView:
    return DetailView(
        folio=record.folio,
        type_label=TYPE_LABELS.get(_value(record.type), _value(record.type)),
        status_label=STATUS_LABELS.get(record.status, _value(record.status)),
        reason_label=REASON_LABELS.get(_value(record.reason), _value(record.reason)),
        priority_label=PRIORITY_LABELS.get(_value(record.priority), EMPTY),
        driver_name=record.driver_name,
        inspector_name=record.inspector_name,
        inspected_at=record.inspected_at.strftime("%Y-%m-%d %H:%M"),
        sections=tuple(detail_sections(record.results)),
        general_observations=record.general_observations or "",
        recommendations=record.recommendations or "",
        next_maintenance=record.next_maintenance_date.isoformat() if record.next_maintenance_date else EMPTY,
        evidence_url=record.evidence_url or "",
    )


def _vehicle_rows(vehicle: Vehicle) -> List[Tuple[str, Any]]:
    return [
        ("Número económico", vehicle.economic_number),
        ("Placas", vehicle.plate),
        ("Marca", vehicle.brand),
        ("Modelo", vehicle.model),
        ("Año", vehicle.year),
        ("Kilometraje", f"{vehicle.mileage:,} km" if vehicle.mileage is not None else None),
        ("Combustible", vehicle.fuel_type),
    ]


def render_printable(record: ChecklistRecord, vehicle: Optional[Vehicle] = None) -> str:
    """Standalone HTML document for printing a checklist."""
    view = render_detail(record)
    vehicle_label = vehicle.label if vehicle else f"Vehículo {record.vehicle_id}"
    parts = [
        "<!DOCTYPE html>",
        "<html lang='es'><head><meta charset='utf-8'>",
        f"<title>Checklist {escape(view.folio)}</title>",
        "<style>body{font-family:sans-serif;margin:24px;color:#1f2a24}"
        "table{width:100%;border-collapse:collapse;margin-bottom:16px}"
        "th,td{border:1px solid #c9d1c4;padding:4px 8px;text-align:left}"
        "th{background:#eef2ec}h2{font-size:1.05rem;margin:18px 0 6px}"
        "@media print{.no-print{display:none}}</style>",
        "</head><body>",
        "<header>",
        f"<h1>Checklist {escape(view.folio)}</h1>",
        f"<p>{escape(vehicle_label)} · {escape(view.type_label)} · {escape(view.inspected_at)}</p>",
        f"<p>Conductor: {escape(view.driver_name)} · Inspector: {escape(view.inspector_name)}</p>",
        f"<p>Motivo: {escape(view.reason_label)} · Estado: {escape(view.status_label)}</p>",
        "</header>",
    ]
    if vehicle is not None:
        parts.append("<section class='vehicle'><h2>Datos del vehículo</h2><table>")
        for label, value in _vehicle_rows(vehicle):
            shown = EMPTY if value in (None, "") else str(value)
            parts.append(f"<tr><th>{escape(label)}</th><td>{escape(shown)}</td></tr>")
        parts.append("</table></section>")
    for section in view.sections:
        parts.append(f"<section class='checklist-section'><h2>{escape(section.title)}</h2>")
        parts.append("<table><thead><tr><th>Actividad</th><th>Estado</th><th>Observaciones</th></tr></thead><tbody>")
        for row in section.rows:
            parts.append(
                f"<tr><td>{escape(row.item)}</td><td>{escape(row.state_label)}</td><td>{escape(row.obs)}</td></tr>"
            )
        parts.append("</tbody></table></section>")
    parts.extend(
        [
            "<section class='summary'><h2>Resumen</h2><table>",
            f"<tr><th>Prioridad</th><td>{escape(view.priority_label)}</td></tr>",
            f"<tr><th>Próximo mantenimiento</th><td>{escape(view.next_maintenance)}</td></tr>",
            f"<tr><th>Observaciones generales</th><td>{escape(view.general_observations or EMPTY)}</td></tr>",
            f"<tr><th>Recomendaciones</th><td>{escape(view.recommendations or EMPTY)}</td></tr>",
            "</table></section>",
            "<button class='no-print' onclick='window.print()'>Imprimir</button>",
            "</body></html>",
        ]
    )
    return "\n".join(parts)
