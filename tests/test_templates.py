from __future__ import annotations

import pytest

from backend.checklists import FleetChecklistApp
from backend.checklists.cache import QueryCache
from backend.checklists.errors import ValidationError
from backend.checklists.models import SectionKind, TemplateType
from backend.checklists.templates import merge_unique


def _role_id(app: FleetChecklistApp, name: str) -> int:
    role = app.database.get_role_by_name(name)
    assert role is not None
    return role.id


def test_create_normalizes_sections(app: FleetChecklistApp) -> None:
    template = app.templates.create(
        name="  Revisión de frenos ",
        template_type="completo",
        sections=[{"title": "Frenos", "kind": "binary", "items": ["Balatas", {"name": "Discos", "id": "discos"}]}],
    )

    assert template.name == "Revisión de frenos"
    assert template.type is TemplateType.COMPLETO
    section = template.sections[0]
    assert (section.id, section.title, section.kind) == ("Frenos", "Frenos", SectionKind.BINARY)
    assert [(item.id, item.name) for item in section.items] == [("Balatas", "Balatas"), ("discos", "Discos")]


@pytest.mark.parametrize(
    "sections",
    [
        [{"title": "Motor", "items": ["Aceite", "Aceite"]}],
        [{"title": "Motor", "items": ["Aceite"]}, {"title": "Motor", "items": ["Filtro"]}],
        [{"title": "Motor", "items": [""]}],
        [{"title": "Motor", "kind": "quintuple", "items": ["Aceite"]}],
        "Motor",
    ],
)
def test_create_rejects_malformed_sections(app: FleetChecklistApp, sections) -> None:
    with pytest.raises(ValidationError):
        app.templates.create(name="Inválida", sections=sections)


def test_create_requires_a_name(app: FleetChecklistApp) -> None:
    with pytest.raises(ValidationError) as excinfo:
        app.templates.create(name="   ")
    assert excinfo.value.field == "name"


def test_unique_listing_puts_role_templates_first(seeded_app: FleetChecklistApp) -> None:
    admin_role = _role_id(seeded_app, "admin")
    general = seeded_app.templates.create(name="General")
    scoped = seeded_app.templates.create(name="Solo admin", role_ids=[admin_role])

    listed = seeded_app.templates.list_templates(unique=True, role_ids=[admin_role])

    ids = [template.id for template in listed]
    assert ids[0] == scoped.id
    assert general.id in ids
    assert len(ids) == len(set(ids))


def test_merge_unique_keeps_first_occurrence(seeded_app: FleetChecklistApp) -> None:
    first = seeded_app.templates.create(name="Uno")
    second = seeded_app.templates.create(name="Dos")

    merged = merge_unique([second], [first, second])

    assert [template.id for template in merged] == [second.id, first.id]


def test_clone_is_independent(seeded_app: FleetChecklistApp, express_template) -> None:
    clone = seeded_app.templates.clone(express_template.id, active=True)

    assert clone.id != express_template.id
    assert clone.name == "Revisión express (Copia)"
    assert clone.type is express_template.type
    assert [section.to_dict() for section in clone.sections] == [section.to_dict() for section in express_template.sections]
    assert clone.role_ids == express_template.role_ids

    seeded_app.templates.toggle_active(express_template.id, False)
    seeded_app.templates.update(clone.id, {"sections": [{"title": "Nueva", "items": ["Único"]}]})

    assert seeded_app.templates.get(clone.id).active is True
    original = seeded_app.templates.get(express_template.id)
    assert original.active is False
    assert [section.title for section in original.sections] == [section.title for section in express_template.sections]


def test_inactive_templates_are_not_selectable(seeded_app: FleetChecklistApp, express_template) -> None:
    operario = _role_id(seeded_app, "operario")
    assert [template.id for template in seeded_app.templates.for_role(operario)] == [express_template.id]

    seeded_app.templates.toggle_active(express_template.id, False)

    assert seeded_app.templates.for_role(operario) == []
    assert seeded_app.templates.get(express_template.id).active is False


def test_update_rejects_unknown_fields(seeded_app: FleetChecklistApp, express_template) -> None:
    with pytest.raises(ValidationError):
        seeded_app.templates.update(express_template.id, {"owner": "nadie"})
    with pytest.raises(LookupError):
        seeded_app.templates.update(9999, {"name": "Nada"})


def test_update_replaces_roles(seeded_app: FleetChecklistApp, express_template) -> None:
    admin_role = _role_id(seeded_app, "admin")

    updated = seeded_app.templates.update(express_template.id, {"role_ids": [admin_role, str(admin_role), "x"]})

    assert updated.role_ids == [admin_role]


def test_delete_removes_template(seeded_app: FleetChecklistApp, express_template) -> None:
    seeded_app.templates.delete(express_template.id)

    with pytest.raises(LookupError):
        seeded_app.templates.get(express_template.id)
    assert all(template.id != express_template.id for template in seeded_app.templates.list_templates())


def test_listing_is_cached_until_a_mutation(app: FleetChecklistApp, monkeypatch: pytest.MonkeyPatch) -> None:
    calls = []
    original = app.database.list_templates

    def counting(**kwargs):
        calls.append(kwargs)
        return original(**kwargs)

    monkeypatch.setattr(app.database, "list_templates", counting)
    app.templates.list_templates()
    app.templates.list_templates()
    assert len(calls) == 1

    app.templates.create(name="Nueva")
    assert [template.name for template in app.templates.list_templates()] == ["Nueva"]
    assert len(calls) == 2


def test_query_cache_patch_then_invalidate() -> None:
    cache = QueryCache()
    cache.put("a", [1, 2, 3], ["numbers"])

    assert cache.patch("numbers", lambda values: [value for value in values if value != 2]) == 1
    assert cache.get("a") == [1, 3]

    cache.invalidate("numbers")
    assert cache.get("a") is None
    assert cache.peek("a") == [1, 3]
    assert cache.fetch("a", ["numbers"], lambda: [9]) == [9]


def test_query_cache_is_bounded_and_drops_unread_stale_entries() -> None:
    cache = QueryCache(max_entries=3)
    for index in range(5):
        cache.put(index, [index], ["numbers"])
    assert len(cache) == 3
    assert cache.peek(0) is None and cache.peek(4) == [4]

    cache.invalidate("numbers")
    cache.fetch(4, ["numbers"], lambda: [40])
    cache.invalidate("numbers")

    assert len(cache) == 1
    assert cache.peek(4) == [40]
