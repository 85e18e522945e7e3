from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from backend.checklists import FleetChecklistApp
from backend.checklists.directories import AuthContext
from backend.checklists.models import ChecklistTemplate, User, Vehicle


@pytest.fixture()
def app(tmp_path: Path) -> FleetChecklistApp:
    return FleetChecklistApp.create(tmp_path / "test_checklists.db", tmp_path / "uploads")


@pytest.fixture()
def seeded_app(app: FleetChecklistApp) -> FleetChecklistApp:
    app.seed_defaults()
    return app


@pytest.fixture()
def admin(seeded_app: FleetChecklistApp) -> User:
    user = seeded_app.find_user_by_email("admin@flota.example.com")
    assert user is not None
    return user


@pytest.fixture()
def supervisor(seeded_app: FleetChecklistApp) -> User:
    user = seeded_app.find_user_by_email("supervisor@flota.example.com")
    assert user is not None
    return user


@pytest.fixture()
def driver(seeded_app: FleetChecklistApp) -> User:
    user = seeded_app.find_user_by_email("operario@flota.example.com")
    assert user is not None
    return user


@pytest.fixture()
def vehicle(seeded_app: FleetChecklistApp) -> Vehicle:
    vehicle = seeded_app.database.get_vehicle_by_economic_number("ECO-101")
    assert vehicle is not None
    return vehicle


@pytest.fixture()
def express_template(seeded_app: FleetChecklistApp) -> ChecklistTemplate:
    templates = [template for template in seeded_app.templates.list_templates() if template.name == "Revisión express"]
    assert templates, "Seed should provide the express template"
    return templates[0]


@pytest.fixture()
def admin_auth(admin: User) -> AuthContext:
    return AuthContext(current_user=admin)


@pytest.fixture()
def driver_auth(driver: User) -> AuthContext:
    return AuthContext(current_user=driver)


@pytest.fixture()
def sample_png() -> bytes:
    return bytes.fromhex(
        "89504e470d0a1a0a0000000d4948445200000001000000010806000000"
        "1f15c4890000000d49444154789c63f8cfc0f01f0005000201a5f5b6a70000000049454e44ae426082"
    )
