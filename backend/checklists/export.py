from __future__ import annotations

import io
from collections import Counter
from datetime import datetime
from typing import Iterable, Mapping, Optional

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from .models import ChecklistRecord, ChecklistStatus, TemplateType, User, Vehicle
from .reports import PRIORITY_LABELS, REASON_LABELS, STATUS_LABELS, TYPE_LABELS, state_label

FAILURE_FILL = PatternFill(start_color="FDECEA", end_color="FDECEA", fill_type="solid")


def _failed_items(record: ChecklistRecord) -> str:
    failed = []
    for title, block in record.results.items():
        for item, answer in block.items():
            state = answer.get("state") or ""
            if state in {"no", "bad"}:
                failed.append(f"{title} / {item}: {state_label(state)}")
    return ", ".join(failed)


def export_checklists_workbook(
    records: Iterable[ChecklistRecord],
    vehicles: Mapping[int, Optional[Vehicle]],
    *,
    generated_by: User,
) -> tuple[str, bytes]:
    records = list(records)
    workbook = Workbook()
    summary_ws = workbook.active
    summary_ws.title = "Resumen"

    now = datetime.utcnow()
    title_font = Font(size=16, bold=True, color="24512C")
    header_font = Font(bold=True, color="1F2A24")
    muted_font = Font(color="5B6657")

    summary_ws["A1"] = "Checklists de flota"
    summary_ws["A1"].font = title_font
    summary_ws.merge_cells("A1:D1")
    summary_ws["A2"] = f"Generado para {generated_by.full_name}"
    summary_ws["A2"].font = muted_font
    summary_ws.merge_cells("A2:D2")
    summary_ws["A3"] = now.strftime("Creado %Y-%m-%d %H:%M UTC")
    summary_ws["A3"].font = muted_font
    summary_ws.merge_cells("A3:D3")

    total = len(records)
    failing = sum(1 for record in records if record.status is ChecklistStatus.OPERANDO_CON_FALLA)
    latest = max((record.inspected_at for record in records), default=None)
    summary_ws["A5"], summary_ws["B5"] = "Indicador", "Valor"
    summary_ws["A5"].font = header_font
    summary_ws["B5"].font = header_font
    metrics = [
        ("Checklists", total),
        ("Con falla", failing),
        ("Último checklist", latest.strftime("%Y-%m-%d %H:%M") if latest else "—"),
        ("Vehículos inspeccionados", len({record.vehicle_id for record in records})),
    ]
    for index, (label, value) in enumerate(metrics, start=6):
        summary_ws.cell(row=index, column=1, value=label)
        summary_ws.cell(row=index, column=2, value=value)

    type_counts = Counter(record.type for record in records)
    summary_ws["A11"], summary_ws["B11"] = "Tipo", "Cantidad"
    summary_ws["A11"].font = header_font
    summary_ws["B11"].font = header_font
    for offset, template_type in enumerate(TemplateType, start=12):
        summary_ws.cell(row=offset, column=1, value=TYPE_LABELS[template_type.value])
        summary_ws.cell(row=offset, column=2, value=type_counts.get(template_type, 0))

    for column, width in [(1, 28), (2, 22)]:
        summary_ws.column_dimensions[get_column_letter(column)].width = width

    detail_ws = workbook.create_sheet("Checklists")
    detail_headers = [
        "Folio",
        "Fecha (UTC)",
        "Tipo",
        "Vehículo",
        "Conductor",
        "Inspector",
        "Motivo",
        "Estado",
        "Prioridad",
        "Próximo mantenimiento",
        "Puntos con falla",
        "Evidencia",
    ]
    detail_ws.append(detail_headers)
    for cell in detail_ws[1]:
        cell.font = header_font
        cell.alignment = Alignment(horizontal="center")

    for record in records:
        vehicle = vehicles.get(record.vehicle_id)
        detail_ws.append(
            [
                record.folio,
                record.inspected_at.strftime("%Y-%m-%d %H:%M"),
                TYPE_LABELS.get(record.type.value, record.type.value),
                vehicle.label if vehicle else f"Vehículo {record.vehicle_id}",
                record.driver_name,
                record.inspector_name,
                REASON_LABELS.get(record.reason.value, record.reason.value),
                STATUS_LABELS[record.status],
                PRIORITY_LABELS.get(record.priority.value, "") if record.priority else "",
                record.next_maintenance_date.isoformat() if record.next_maintenance_date else "",
                _failed_items(record),
                record.evidence_url,
            ]
        )
        if record.status is ChecklistStatus.OPERANDO_CON_FALLA:
            for cell in detail_ws[detail_ws.max_row]:
                cell.fill = FAILURE_FILL

    detail_ws.auto_filter.ref = detail_ws.dimensions
    detail_ws.freeze_panes = "A2"
    for column_index in range(1, len(detail_headers) + 1):
        max_length = max(
            (len(str(detail_ws.cell(row=row, column=column_index).value or "")) for row in range(1, detail_ws.max_row + 1)),
            default=10,
        )
        detail_ws.column_dimensions[get_column_letter(column_index)].width = min(max(12, max_length + 2), 48)

    filename = f"checklists-{now.strftime('%Y%m%d-%H%M%S')}.xlsx"
    buffer = io.BytesIO()
    workbook.save(buffer)
    return filename, buffer.getvalue()
