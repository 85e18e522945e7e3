from __future__ import annotations

from datetime import date, datetime, timedelta

import pytest

from backend.checklists import FleetChecklistApp
from backend.checklists.errors import IncompleteFormError, ValidationError
from backend.checklists.models import ChecklistReason, ChecklistStatus, Priority, TemplateType
from backend.checklists.records import RecordFilters, compute_status


def _payload(vehicle_id: int, **overrides):
    payload = {
        "vehicle_id": vehicle_id,
        "type": "express",
        "driver_name": "Óscar Operario",
        "inspector_name": "Sergio Supervisor",
        "results": {"Luces": {"Faros": {"state": "yes", "obs": ""}}},
        "evidence_url": "/uploads/checklist-evidence-1.png",
    }
    payload.update(overrides)
    return payload


def test_create_assigns_folio_and_timestamp(seeded_app: FleetChecklistApp, vehicle) -> None:
    before = datetime.utcnow() - timedelta(seconds=1)
    record = seeded_app.records.create(
        _payload(vehicle.id, folio="CL-999", inspected_at="2001-01-01T00:00:00", id=77, status="operando_con_falla")
    )

    assert record.folio == f"CL-{record.id}"
    assert record.id != 77
    assert record.inspected_at >= before
    assert record.status is ChecklistStatus.OPERANDO
    assert record.reason is ChecklistReason.SCHEDULED_TASK
    assert record.type is TemplateType.EXPRESS


def test_create_validates_required_fields(seeded_app: FleetChecklistApp, vehicle) -> None:
    with pytest.raises(ValidationError) as excinfo:
        seeded_app.records.create(_payload(vehicle.id, driver_name="  "))
    assert excinfo.value.field == "driver_name"

    with pytest.raises(ValidationError):
        seeded_app.records.create(_payload(vehicle.id, type="semanal"))
    with pytest.raises(ValidationError):
        seeded_app.records.create(_payload(vehicle.id, priority="urgente"))
    with pytest.raises(ValidationError):
        seeded_app.records.create(_payload(vehicle.id, results=["no"]))


def test_status_reflects_failed_answers(seeded_app: FleetChecklistApp, vehicle) -> None:
    record = seeded_app.records.create(_payload(vehicle.id, results={"Luces": {"Faros": {"state": "no", "obs": ""}}}))
    assert record.status is ChecklistStatus.OPERANDO_CON_FALLA

    fixed = seeded_app.records.update(record.id, {"results": {"Luces": {"Faros": {"state": "yes", "obs": "Cambiado"}}}})
    assert fixed.status is ChecklistStatus.OPERANDO
    assert fixed.folio == record.folio
    assert fixed.inspected_at == record.inspected_at


def test_compute_status_ignores_observation_text() -> None:
    assert compute_status({"Motor": {"Aceite": {"state": "good", "obs": "no"}}}) is ChecklistStatus.OPERANDO
    assert compute_status({"Motor": {"Aceite": {"state": "bad"}}}) is ChecklistStatus.OPERANDO


def test_update_is_partial_and_last_write_wins(seeded_app: FleetChecklistApp, vehicle) -> None:
    record = seeded_app.records.create(_payload(vehicle.id, priority="low"))

    seeded_app.records.update(record.id, {"priority": "high", "next_maintenance_date": "2030-05-01"})
    updated = seeded_app.records.update(record.id, {"recommendations": "Cambiar balatas"})

    assert updated.priority is Priority.HIGH
    assert updated.next_maintenance_date == date(2030, 5, 1)
    assert updated.recommendations == "Cambiar balatas"
    assert updated.driver_name == record.driver_name


def test_filters_are_conjunctive(seeded_app: FleetChecklistApp, vehicle) -> None:
    other = seeded_app.database.get_vehicle_by_economic_number("ECO-205")
    express = seeded_app.records.create(_payload(vehicle.id))
    completo = seeded_app.records.create(_payload(vehicle.id, type="completo"))
    elsewhere = seeded_app.records.create(_payload(other.id))

    by_type = seeded_app.records.list(RecordFilters(type=TemplateType.EXPRESS))
    assert {record.id for record in by_type} == {express.id, elsewhere.id}

    by_both = seeded_app.records.list(RecordFilters(type=TemplateType.EXPRESS, economic_number="101"))
    assert [record.id for record in by_both] == [express.id]

    by_vehicle = seeded_app.records.list(RecordFilters(vehicle_id=vehicle.id))
    assert {record.id for record in by_vehicle} == {express.id, completo.id}


def test_economic_number_matches_vehicle_substring(seeded_app: FleetChecklistApp, vehicle) -> None:
    record = seeded_app.records.create(_payload(vehicle.id, driver_name="ECO-205"))

    assert [item.id for item in seeded_app.records.list(RecordFilters(economic_number="eco-1"))] == [record.id]
    assert seeded_app.records.list(RecordFilters(economic_number="205")) == []


def test_date_range_includes_the_whole_end_day(seeded_app: FleetChecklistApp, vehicle) -> None:
    record = seeded_app.records.create(_payload(vehicle.id))
    today = record.inspected_at.date()

    assert [item.id for item in seeded_app.records.list(RecordFilters(start=today, end=today))] == [record.id]
    assert seeded_app.records.list(RecordFilters(end=today - timedelta(days=1))) == []
    assert seeded_app.records.list(RecordFilters(start=today + timedelta(days=1))) == []


def test_filters_from_query_strings() -> None:
    filters = RecordFilters.from_query(
        {"type": "all", "vehicle_id": "", "economic_number": " 101 ", "start": "2024-01-01", "end": None}
    )
    assert filters == RecordFilters(economic_number="101", start=date(2024, 1, 1))
    assert RecordFilters.from_query({}).is_empty

    with pytest.raises(ValidationError):
        RecordFilters.from_query({"start": "ayer"})


def test_delete_removes_record_from_cached_lists(seeded_app: FleetChecklistApp, vehicle) -> None:
    keep = seeded_app.records.create(_payload(vehicle.id))
    drop = seeded_app.records.create(_payload(vehicle.id))
    assert {record.id for record in seeded_app.records.list()} == {keep.id, drop.id}

    seeded_app.records.delete(drop.id)

    assert [record.id for record in seeded_app.records.peek()] == [keep.id]
    assert [record.id for record in seeded_app.records.list()] == [keep.id]
    with pytest.raises(LookupError):
        seeded_app.records.get(drop.id)
    with pytest.raises(LookupError):
        seeded_app.records.delete(drop.id)


def test_incomplete_new_checklist_never_reaches_the_store(
    seeded_app: FleetChecklistApp, driver_auth, monkeypatch: pytest.MonkeyPatch
) -> None:
    from backend.checklists.session import ChecklistSession

    calls = []
    monkeypatch.setattr(seeded_app.records, "create", lambda values: calls.append(values))
    monkeypatch.setattr(seeded_app.database, "add_checklist", lambda values: calls.append(values))
    session = ChecklistSession()
    seeded_app.start_checklist(session, driver_auth)
    session.update_header(driver_name="Óscar Operario")
    first = session.form()[0]
    session.set_state(first.section_id, first.items[0].item_id, first.allowed_states[0])

    with pytest.raises(IncompleteFormError) as excinfo:
        seeded_app.submit(session, driver_auth)

    assert calls == []
    assert len(excinfo.value.reasons) == 2
    assert session.is_open


def test_filtered_listings_do_not_grow_the_cache(seeded_app: FleetChecklistApp, vehicle) -> None:
    cache = seeded_app.records.cache
    for index in range(cache.max_entries + 20):
        seeded_app.records.list(RecordFilters(economic_number=f"ECO-{index}"))
    assert len(cache) == cache.max_entries

    seeded_app.records.create(_payload(vehicle.id))
    seeded_app.records.create(_payload(vehicle.id))

    assert len(cache) == 0


def test_status_filter_combines_with_other_filters(seeded_app: FleetChecklistApp, vehicle) -> None:
    failing = {"Luces": {"Faros": {"state": "no", "obs": ""}}}
    other = seeded_app.database.get_vehicle_by_economic_number("ECO-205")
    broken_here = seeded_app.records.create(_payload(vehicle.id, results=failing))
    seeded_app.records.create(_payload(vehicle.id))
    seeded_app.records.create(_payload(other.id, results=failing))

    filters = RecordFilters(status=ChecklistStatus.OPERANDO_CON_FALLA, vehicle_id=vehicle.id)

    assert [record.id for record in seeded_app.records.list(filters)] == [broken_here.id]
    assert len(seeded_app.records.list(RecordFilters(status=ChecklistStatus.OPERANDO))) == 1
    assert RecordFilters.from_query({"status": "operando_con_falla"}).status is ChecklistStatus.OPERANDO_CON_FALLA
    assert RecordFilters.from_query({"status": "all"}).status is None
    with pytest.raises(ValidationError):
        RecordFilters.from_query({"status": "averiado"})
