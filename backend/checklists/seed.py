"""Seed a checklist database with default roles, demo users and sample checklists."""

from __future__ import annotations

import argparse
import random
import textwrap
from pathlib import Path

from .app import FleetChecklistApp
from .config import Settings, configure_logging
from .directories import AuthContext
from .session import ChecklistSession

_SAMPLE_PNG = bytes.fromhex(
    "89504e470d0a1a0a0000000d4948445200000001000000010806000000"
    "1f15c4890000000d49444154789c63f8cfc0f01f0005000201a5f5b6a70000000049454e44ae426082"
)

SAMPLE_OBSERVATIONS = ["", "", "Revisar en el próximo servicio", "Ligero desgaste", "Sin novedad"]


def generate_sample_checklists(app: FleetChecklistApp, *, total: int = 12, seed: int = 7) -> int:
    rng = random.Random(seed)
    operario = app.find_user_by_email("operario@flota.example.com")
    if operario is None:
        raise RuntimeError("No demo users available; seed defaults before generating checklists")
    auth = AuthContext(current_user=operario)
    vehicles = app.list_vehicles()
    created = 0
    for index in range(total):
        session = ChecklistSession()
        app.start_checklist(session, auth, vehicle_id=vehicles[index % len(vehicles)].id)
        if not session.templates:
            continue
        for section_view in session.form():
            for item in section_view.items:
                weights = [8, 1] if len(section_view.allowed_states) == 2 else [6, 3, 1]
                state = rng.choices(section_view.allowed_states, weights=weights)[0]
                session.set_state(section_view.section_id, item.item_id, state)
                session.set_obs(section_view.section_id, item.item_id, rng.choice(SAMPLE_OBSERVATIONS))
        session.update_header(driver_name=operario.full_name)
        app.upload_evidence(session, f"evidencia-{index}.png", _SAMPLE_PNG)
        app.submit(session, auth)
        created += 1
    return created


def main() -> None:
    settings = Settings.from_env()
    parser = argparse.ArgumentParser(description="Seed the fleet checklist database.")
    parser.add_argument(
        "--database",
        default=str(settings.database_path),
        help="Path to the SQLite database file (default: %(default)s)",
    )
    parser.add_argument(
        "--upload-dir",
        default=str(settings.upload_dir),
        help="Directory where evidence files are stored (default: %(default)s)",
    )
    parser.add_argument(
        "--checklists",
        type=int,
        default=0,
        help="Number of sample checklists to generate (default: %(default)s)",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=7,
        help="Random seed for reproducible data (default: %(default)s)",
    )
    args = parser.parse_args()
    configure_logging(settings.log_level)

    app = FleetChecklistApp.create(Path(args.database), Path(args.upload_dir))
    app.seed_defaults()
    created = generate_sample_checklists(app, total=args.checklists, seed=args.seed) if args.checklists else 0
    print(
        textwrap.dedent(
            f"""
            Seeded {len(app.list_roles())} roles, {len(app.list_users())} users and {len(app.list_vehicles())} vehicles.
            Generated {created} sample checklists in {args.database}.
            """
        ).strip()
    )


if __name__ == "__main__":  # pragma: no cover - script entry point
    main()
