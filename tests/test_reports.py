from __future__ import annotations

from backend.checklists import FleetChecklistApp
from backend.checklists.reports import render_detail, render_printable, state_label


def _record(app: FleetChecklistApp, vehicle_id: int, results, **extra):
    values = {
        "vehicle_id": vehicle_id,
        "type": "express",
        "driver_name": "Óscar <Operario>",
        "inspector_name": "Sergio Supervisor",
        "results": results,
        "evidence_url": "/uploads/checklist-evidence-1.png",
    }
    values.update(extra)
    return app.records.create(values)


def test_state_labels() -> None:
    assert [state_label(state) for state in ("good", "regular", "bad", "yes", "no")] == [
        "Bueno",
        "Regular",
        "Malo",
        "Sí",
        "No",
    ]
    assert state_label("") == "—"
    assert state_label("n/a") == "n/a"


def test_detail_is_built_from_stored_results_only(seeded_app: FleetChecklistApp, vehicle, express_template) -> None:
    results = {
        "Niveles": {"Aceite de motor": {"state": "good", "obs": ""}},
        "Carrocería antigua": {"Pintura": {"state": "bad", "obs": "Rayones"}},
    }
    record = _record(seeded_app, vehicle.id, results, priority="medium")
    seeded_app.templates.delete(express_template.id)

    view = render_detail(seeded_app.records.get(record.id))

    assert [section.title for section in view.sections] == ["Niveles", "Carrocería antigua"]
    row = view.sections[1].rows[0]
    assert (row.item, row.state_label, row.obs) == ("Pintura", "Malo", "Rayones")
    assert view.priority_label == "Media"
    assert view.reason_label == "Tarea programada"


def test_printable_renders_every_section_after_template_removal(seeded_app: FleetChecklistApp, vehicle, express_template) -> None:
    results = {
        "Luces": {"Faros": {"state": "no", "obs": "Foco fundido"}, "Direccionales": {"state": "yes", "obs": ""}},
        "Vacía": {},
    }
    record = _record(
        seeded_app,
        vehicle.id,
        results,
        priority="high",
        general_observations="Revisar eléctrico",
        next_maintenance_date="2030-01-15",
    )
    seeded_app.templates.delete(express_template.id)

    document = render_printable(seeded_app.records.get(record.id), vehicle)

    assert f"Checklist {record.folio}" in document
    assert "ECO-101" in document and "ABC-1234" in document
    assert "Foco fundido" in document
    assert "<td>Faros</td><td>No</td>" in document
    assert "<td>Direccionales</td><td>Sí</td>" in document
    assert "Vacía" not in document
    assert "Alta" in document
    assert "Revisar eléctrico" in document
    assert "2030-01-15" in document
    assert "Óscar &lt;Operario&gt;" in document
    assert "Operando con falla" in document


def test_printable_without_vehicle_uses_reference(seeded_app: FleetChecklistApp, vehicle) -> None:
    record = _record(seeded_app, vehicle.id, {})

    document = render_printable(record)

    assert f"Vehículo {vehicle.id}" in document
    assert "Datos del vehículo" not in document
    assert "<th>Prioridad</th><td>—</td>" in document
