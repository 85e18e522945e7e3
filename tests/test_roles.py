from __future__ import annotations

from datetime import datetime

from backend.checklists import FleetChecklistApp
from backend.checklists.directories import AuthContext
from backend.checklists.errors import LookupMiss
from backend.checklists.models import Role, User
from backend.checklists.roles import RoleResolver
from backend.checklists.session import ChecklistSession


class _MissingVehicles:
    def list(self):
        return []

    def get(self, vehicle_id):
        return None

    def get_assigned_user(self, vehicle_id):
        raise LookupMiss("nobody")


class _StaticRoles:
    def __init__(self, *names: str) -> None:
        self.roles = [Role(id=index, name=name) for index, name in enumerate(names, start=1)]

    def list(self):
        return list(self.roles)


def _user(role: str) -> User:
    return User(id=99, full_name="Prueba", email="prueba@example.com", role=role, created_at=datetime.utcnow())


def test_supervisor_gets_the_assigned_drivers_templates(seeded_app: FleetChecklistApp, supervisor, vehicle, express_template) -> None:
    supervisor_role = seeded_app.database.get_role_by_name("supervisor")
    seeded_app.templates.update(express_template.id, {"role_ids": [seeded_app.database.get_role_by_name("operario").id]})
    own = seeded_app.templates.create(name="Supervisión", role_ids=[supervisor_role.id])

    resolution = seeded_app.resolve_templates(AuthContext(current_user=supervisor), vehicle.id)

    assert resolution.effective_role == "operario"
    assert [template.id for template in resolution.templates] == [express_template.id]
    assert own.id not in [template.id for template in resolution.templates]


def test_falls_back_to_own_role_without_vehicle(seeded_app: FleetChecklistApp, supervisor) -> None:
    resolver = seeded_app.resolver

    assert resolver.effective_role(supervisor, None) == "supervisor"


def test_falls_back_when_vehicle_has_no_assignee(seeded_app: FleetChecklistApp, supervisor) -> None:
    unassigned = seeded_app.database.get_vehicle_by_economic_number("ECO-102")
    assert unassigned is not None and unassigned.assigned_user_id is None

    assert seeded_app.resolver.effective_role(supervisor, unassigned.id) == "supervisor"


def test_lookup_miss_is_not_surfaced() -> None:
    resolver = RoleResolver(_MissingVehicles(), _StaticRoles("supervisor"))

    assert resolver.effective_role(_user("supervisor"), 12) == "supervisor"


def test_unknown_role_resolves_to_no_templates(seeded_app: FleetChecklistApp) -> None:
    resolver = RoleResolver(_MissingVehicles(), _StaticRoles("admin"))

    resolution = resolver.resolve(_user("mecánico"), None, seeded_app.templates)

    assert resolution.effective_role == "mecánico"
    assert resolution.has_templates is False


def test_start_checklist_preselects_the_users_vehicle(seeded_app: FleetChecklistApp, driver, vehicle, express_template) -> None:
    session = ChecklistSession()

    resolution = seeded_app.start_checklist(session, AuthContext(current_user=driver))

    assert session.vehicle_id == vehicle.id
    assert session.is_new
    assert resolution.has_templates
    assert [template.id for template in session.templates] == [express_template.id]
    assert session.header["inspector_name"] == driver.full_name
