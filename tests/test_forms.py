from __future__ import annotations

from datetime import datetime

import pytest

from backend.checklists.errors import IncompleteFormError, ValidationError
from backend.checklists.forms import build_form, find_section, load_results, set_obs, set_state, snapshot_results
from backend.checklists.models import ChecklistTemplate, Section, SectionKind, TemplateType
from backend.checklists.validation import EVIDENCE_REQUIRED_MESSAGE, all_answered, check_new_submission, completion


def _template(sections, template_id: int = 1) -> ChecklistTemplate:
    now = datetime.utcnow()
    return ChecklistTemplate(
        id=template_id,
        name="Plantilla",
        description=None,
        type=TemplateType.EXPRESS,
        sections=[Section.from_dict(section) for section in sections],
        role_ids=[],
        active=True,
        created_at=now,
        updated_at=now,
    )


@pytest.fixture()
def motor_template() -> ChecklistTemplate:
    return _template(
        [
            {"title": "Motor", "kind": "binary", "items": ["Aceite", "Frenos"]},
            {"title": "Luces", "kind": "tristate", "items": ["Faros"]},
        ]
    )


def test_set_state_copies_only_the_touched_section(motor_template: ChecklistTemplate) -> None:
    motor = motor_template.section("Motor")
    luces = motor_template.section("Luces")
    first = set_state({}, luces, "Faros", "good")
    second = set_state(first, motor, "Aceite", "yes")

    assert second is not first
    assert second["Luces"] is first["Luces"]
    assert "Motor" not in first
    assert second["Motor"]["Aceite"] == {"state": "yes"}

    third = set_obs(second, "Motor", "Aceite", "Nivel bajo")
    assert third["Motor"] is not second["Motor"]
    assert third["Luces"] is second["Luces"]
    assert second["Motor"]["Aceite"] == {"state": "yes"}
    assert third["Motor"]["Aceite"] == {"state": "yes", "obs": "Nivel bajo"}


def test_set_state_enforces_section_vocabulary(motor_template: ChecklistTemplate) -> None:
    motor = motor_template.section("Motor")
    assert motor.kind is SectionKind.BINARY
    with pytest.raises(ValidationError):
        set_state({}, motor, "Aceite", "good")
    with pytest.raises(ValidationError):
        set_state({}, motor, "Llantas", "yes")
    cleared = set_state(set_state({}, motor, "Aceite", "no"), motor, "Aceite", "")
    assert cleared["Motor"]["Aceite"]["state"] == ""


def test_completion_counts_marked_items() -> None:
    template = _template([{"title": "Motor", "items": ["Aceite", "Frenos"]}])
    results = {"Motor": {"Aceite": {"state": "yes"}}}

    status = completion([template], results)

    assert (status.total, status.marked) == (2, 1)
    assert status.all_answered is False
    assert status.missing == (("Motor", "Frenos"),)


def test_all_answered_is_vacuously_true_without_sections() -> None:
    assert all_answered([_template([])], {}) is True
    assert all_answered([], {"Motor": {"Aceite": {"state": ""}}}) is True


def test_untitled_sections_use_placeholder_title() -> None:
    template = _template([{"title": "", "items": ["Aceite"]}])
    form = build_form([template], {})
    assert form[0].title == "Sección"
    status = completion([template], {"Sección": {"Aceite": {"state": "good"}}})
    assert status.all_answered


def test_build_form_renders_blank_controls_for_missing_answers(motor_template: ChecklistTemplate) -> None:
    form = build_form([motor_template], {"Motor": {"Aceite": {"state": "no", "obs": "Fuga"}}, "Viejo": {"X": {}}})

    assert [section.title for section in form] == ["Motor", "Luces"]
    assert form[0].allowed_states == ("yes", "no")
    assert [(item.name, item.state, item.obs) for item in form[0].items] == [
        ("Aceite", "no", "Fuga"),
        ("Frenos", "", ""),
    ]
    assert form[1].items[0].state == ""


def test_check_new_submission_reports_every_reason(motor_template: ChecklistTemplate) -> None:
    with pytest.raises(IncompleteFormError) as excinfo:
        check_new_submission([motor_template], {}, "")

    reasons = excinfo.value.reasons
    assert len(reasons) == 2
    assert "Motor / Aceite" in reasons[0]
    assert reasons[1] == EVIDENCE_REQUIRED_MESSAGE


def test_snapshot_and_load_follow_renamed_titles() -> None:
    template = _template([{"title": "Motor", "items": ["Aceite"]}])
    results = set_state({}, template.section("Motor"), "Aceite", "yes")
    stored = snapshot_results([template], results)
    assert stored == {"Motor": {"Aceite": {"state": "yes", "obs": ""}}}

    renamed = _template([{"id": "Motor", "title": "Motor y transmisión", "items": [{"id": "Aceite", "name": "Aceite de motor"}]}])
    loaded = load_results([renamed], stored)
    assert loaded["Motor"]["Aceite"]["state"] == "yes"
    assert snapshot_results([renamed], loaded) == {"Motor y transmisión": {"Aceite de motor": {"state": "yes", "obs": ""}}}


def test_load_results_keeps_answers_without_a_matching_section() -> None:
    template = _template([{"title": "Motor", "items": ["Aceite"]}])
    stored = {"Carrocería": {"Pintura": {"state": "bad", "obs": "Rayones"}}}

    loaded = load_results([template], stored)

    assert loaded["Carrocería"]["Pintura"] == {"state": "bad", "obs": "Rayones"}
    assert snapshot_results([template], loaded) == stored


def test_find_section_uses_the_template_that_defines_the_item() -> None:
    first = _template([{"title": "Motor", "kind": "binary", "items": ["Aceite"]}], template_id=1)
    second = _template([{"title": "Motor", "kind": "tristate", "items": ["Correa"]}], template_id=2)

    section = find_section([first, second], "Motor", "Correa")
    results = set_state({}, section, "Correa", "regular")

    assert section.kind is SectionKind.TRISTATE
    assert results == {"Motor": {"Correa": {"state": "regular"}}}
    assert find_section([first, second], "Motor", "Bujías") is first.sections[0]
    assert find_section([first, second], "Cabina") is None
