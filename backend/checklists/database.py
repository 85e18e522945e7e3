from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Generator, Iterable, List, Optional

from .errors import TransportError
from .models import (
    ChecklistReason,
    ChecklistRecord,
    ChecklistStatus,
    ChecklistTemplate,
    Priority,
    Role,
    Section,
    TemplateType,
    User,
    Vehicle,
)

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"
DATE_FORMAT = "%Y-%m-%d"

RECORD_COLUMNS = (
    "vehicle_id",
    "type",
    "driver_name",
    "inspector_name",
    "reason",
    "handover_user_id",
    "inspector_employee_id",
    "results",
    "general_observations",
    "recommendations",
    "priority",
    "evidence_url",
    "next_maintenance_date",
    "status",
    "created_by_user_id",
)


class Database:
    """SQLite backed persistence for templates, checklists and their directories."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def initialize(self) -> None:
        with self._connect() as conn:
            conn.executescript(
                """
                PRAGMA foreign_keys = ON;
                CREATE TABLE IF NOT EXISTS roles (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE
                );
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    full_name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    role TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS vehicles (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    economic_number TEXT,
                    plate TEXT NOT NULL,
                    brand TEXT NOT NULL,
                    model TEXT NOT NULL,
                    year INTEGER,
                    mileage INTEGER,
                    fuel_type TEXT,
                    assigned_user_id INTEGER REFERENCES users(id) ON DELETE SET NULL
                );
                CREATE TABLE IF NOT EXISTS checklist_templates (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    description TEXT,
                    type TEXT NOT NULL,
                    sections TEXT NOT NULL,
                    active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS checklist_template_roles (
                    template_id INTEGER NOT NULL REFERENCES checklist_templates(id) ON DELETE CASCADE,
                    role_id INTEGER NOT NULL REFERENCES roles(id) ON DELETE CASCADE,
                    PRIMARY KEY (template_id, role_id)
                );
                CREATE TABLE IF NOT EXISTS checklists (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    folio TEXT,
                    vehicle_id INTEGER NOT NULL REFERENCES vehicles(id),
                    type TEXT NOT NULL,
                    driver_name TEXT NOT NULL,
                    inspector_name TEXT NOT NULL,
                    reason TEXT NOT NULL,
                    handover_user_id INTEGER,
                    inspector_employee_id INTEGER,
                    results TEXT NOT NULL,
                    general_observations TEXT,
                    recommendations TEXT,
                    priority TEXT,
                    evidence_url TEXT NOT NULL DEFAULT '',
                    next_maintenance_date TEXT,
                    status TEXT NOT NULL,
                    created_by_user_id INTEGER,
                    inspected_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_checklists_inspected_at
                    ON checklists(inspected_at);
            """
            )

    @contextmanager
    def _connect(self) -> Generator[sqlite3.Connection, None, None]:
        try:
            conn = sqlite3.connect(self.path)
        except sqlite3.Error as exc:
            raise TransportError("No se pudo abrir la base de datos", cause=exc) from exc
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise TransportError(f"Error de base de datos: {exc}", cause=exc) from exc
        finally:
            conn.close()

    @contextmanager
    def session(self) -> Generator[sqlite3.Connection, None, None]:
        with self._connect() as conn:
            yield conn

    # Role operations
    def add_role(self, name: str) -> Role:
        with self.session() as conn:
            cursor = conn.execute("INSERT INTO roles (name) VALUES (?)", (name,))
            role_id = cursor.lastrowid
        return Role(id=role_id, name=name)

    def list_roles(self) -> List[Role]:
        with self.session() as conn:
            rows = conn.execute("SELECT * FROM roles ORDER BY name").fetchall()
        return [Role(id=row["id"], name=row["name"]) for row in rows]

    def get_role_by_name(self, name: str) -> Optional[Role]:
        with self.session() as conn:
            row = conn.execute("SELECT * FROM roles WHERE lower(name) = lower(?)", (name,)).fetchone()
        return Role(id=row["id"], name=row["name"]) if row else None

    # User operations
    def add_user(self, full_name: str, email: str, role: str) -> User:
        now = _utcnow()
        with self.session() as conn:
            cursor = conn.execute(
                "INSERT INTO users (full_name, email, role, created_at) VALUES (?, ?, ?, ?)",
                (full_name, email.strip().lower(), role, _format_datetime(now)),
            )
            user_id = cursor.lastrowid
        return User(id=user_id, full_name=full_name, email=email.strip().lower(), role=role, created_at=now)

    def get_user(self, user_id: int) -> Optional[User]:
        with self.session() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return _row_to_user(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self.session() as conn:
            row = conn.execute("SELECT * FROM users WHERE email = ?", (email.strip().lower(),)).fetchone()
        return _row_to_user(row) if row else None

    def list_users(self) -> List[User]:
        with self.session() as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY full_name").fetchall()
        return [_row_to_user(row) for row in rows]

    # Vehicle operations
    def add_vehicle(
        self,
        *,
        plate: str,
        brand: str,
        model: str,
        economic_number: Optional[str] = None,
        year: Optional[int] = None,
        mileage: Optional[int] = None,
        fuel_type: Optional[str] = None,
        assigned_user_id: Optional[int] = None,
    ) -> Vehicle:
        with self.session() as conn:
            cursor = conn.execute(
                """
                INSERT INTO vehicles (
                    economic_number, plate, brand, model, year, mileage, fuel_type, assigned_user_id
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (economic_number, plate, brand, model, year, mileage, fuel_type, assigned_user_id),
            )
            vehicle_id = cursor.lastrowid
        vehicle = self.get_vehicle(vehicle_id)
        assert vehicle is not None
        return vehicle

    def get_vehicle(self, vehicle_id: int) -> Optional[Vehicle]:
        with self.session() as conn:
            row = conn.execute("SELECT * FROM vehicles WHERE id = ?", (vehicle_id,)).fetchone()
        return _row_to_vehicle(row) if row else None

    def get_vehicle_by_economic_number(self, economic_number: str) -> Optional[Vehicle]:
        with self.session() as conn:
            row = conn.execute("SELECT * FROM vehicles WHERE economic_number = ?", (economic_number,)).fetchone()
        return _row_to_vehicle(row) if row else None

    def get_vehicle_assigned_to_user(self, user_id: int) -> Optional[Vehicle]:
        with self.session() as conn:
            row = conn.execute(
                "SELECT * FROM vehicles WHERE assigned_user_id = ? ORDER BY id LIMIT 1",
                (user_id,),
            ).fetchone()
        return _row_to_vehicle(row) if row else None

    def list_vehicles(self) -> List[Vehicle]:
        with self.session() as conn:
            rows = conn.execute("SELECT * FROM vehicles ORDER BY economic_number, plate").fetchall()
        return [_row_to_vehicle(row) for row in rows]

    def assign_vehicle(self, vehicle_id: int, user_id: Optional[int]) -> None:
        with self.session() as conn:
            conn.execute("UPDATE vehicles SET assigned_user_id = ? WHERE id = ?", (user_id, vehicle_id))

    # Template operations
    def add_template(
        self,
        *,
        name: str,
        description: Optional[str],
        template_type: TemplateType,
        sections: Iterable[Section],
        role_ids: Iterable[int],
        active: bool,
    ) -> ChecklistTemplate:
        now = _format_datetime(_utcnow())
        with self.session() as conn:
            cursor = conn.execute(
                """
                INSERT INTO checklist_templates (name, description, type, sections, active, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    name,
                    description,
                    template_type.value,
                    _dump_sections(sections),
                    1 if active else 0,
                    now,
                    now,
                ),
            )
            template_id = cursor.lastrowid
            _replace_template_roles(conn, template_id, role_ids)
        template = self.get_template(template_id)
        assert template is not None
        return template

    def update_template(
        self,
        template_id: int,
        fields: Dict[str, Any],
        role_ids: Optional[Iterable[int]] = None,
    ) -> Optional[ChecklistTemplate]:
        assignments: list[str] = []
        params: list[Any] = []
        for column, value in fields.items():
            if column == "sections":
                value = _dump_sections(value)
            elif column == "type":
                value = TemplateType(value).value
            elif column == "active":
                value = 1 if value else 0
            assignments.append(f"{column} = ?")
            params.append(value)
        assignments.append("updated_at = ?")
        params.append(_format_datetime(_utcnow()))
        with self.session() as conn:
            cursor = conn.execute(
                f"UPDATE checklist_templates SET {', '.join(assignments)} WHERE id = ?",
                (*params, template_id),
            )
            if cursor.rowcount == 0:
                return None
            if role_ids is not None:
                _replace_template_roles(conn, template_id, role_ids)
        return self.get_template(template_id)

    def get_template(self, template_id: int) -> Optional[ChecklistTemplate]:
        with self.session() as conn:
            row = conn.execute("SELECT * FROM checklist_templates WHERE id = ?", (template_id,)).fetchone()
            if not row:
                return None
            role_ids = _template_role_ids(conn, template_id)
        return _row_to_template(row, role_ids)

    def list_templates(self, *, active_only: bool = False) -> List[ChecklistTemplate]:
        query = "SELECT * FROM checklist_templates"
        if active_only:
            query += " WHERE active = 1"
        query += " ORDER BY name, id"
        with self.session() as conn:
            rows = conn.execute(query).fetchall()
            return [_row_to_template(row, _template_role_ids(conn, row["id"])) for row in rows]

    def delete_template(self, template_id: int) -> bool:
        with self.session() as conn:
            cursor = conn.execute("DELETE FROM checklist_templates WHERE id = ?", (template_id,))
        return cursor.rowcount > 0

    # Checklist operations
    def add_checklist(self, values: Dict[str, Any]) -> ChecklistRecord:
        now = _format_datetime(_utcnow())
        columns = [column for column in RECORD_COLUMNS if column in values]
        params = [_encode_record_value(column, values[column]) for column in columns]
        placeholders = ", ".join("?" for _ in range(len(columns) + 2))
        with self.session() as conn:
            cursor = conn.execute(
                f"INSERT INTO checklists ({', '.join(columns)}, inspected_at, updated_at) VALUES ({placeholders})",
                (*params, now, now),
            )
            checklist_id = cursor.lastrowid
            conn.execute("UPDATE checklists SET folio = ? WHERE id = ?", (f"CL-{checklist_id}", checklist_id))
        record = self.get_checklist(checklist_id)
        assert record is not None
        return record

    def update_checklist(self, checklist_id: int, values: Dict[str, Any]) -> Optional[ChecklistRecord]:
        columns = [column for column in RECORD_COLUMNS if column in values]
        assignments = [f"{column} = ?" for column in columns] + ["updated_at = ?"]
        params = [_encode_record_value(column, values[column]) for column in columns]
        with self.session() as conn:
            cursor = conn.execute(
                f"UPDATE checklists SET {', '.join(assignments)} WHERE id = ?",
                (*params, _format_datetime(_utcnow()), checklist_id),
            )
            if cursor.rowcount == 0:
                return None
        return self.get_checklist(checklist_id)

    def get_checklist(self, checklist_id: int) -> Optional[ChecklistRecord]:
        with self.session() as conn:
            row = conn.execute("SELECT * FROM checklists WHERE id = ?", (checklist_id,)).fetchone()
        return _row_to_checklist(row) if row else None

    def list_checklists(
        self,
        *,
        checklist_type: Optional[TemplateType] = None,
        vehicle_id: Optional[int] = None,
        economic_number: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        status: Optional[ChecklistStatus] = None,
    ) -> List[ChecklistRecord]:
        query = "SELECT * FROM checklists"
        params: list[Any] = []
        clauses: list[str] = []
        if checklist_type is not None:
            clauses.append("type = ?")
            params.append(checklist_type.value)
        if vehicle_id is not None:
            clauses.append("vehicle_id = ?")
            params.append(vehicle_id)
        if economic_number:
            clauses.append(
                "vehicle_id IN (SELECT id FROM vehicles WHERE instr(lower(coalesce(economic_number, '')), ?) > 0)"
            )
            params.append(economic_number.lower())
        if start is not None:
            clauses.append("inspected_at >= ?")
            params.append(_format_datetime(start))
        if end is not None:
            clauses.append("inspected_at <= ?")
            params.append(_format_datetime(end))
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY inspected_at DESC, id DESC"

        with self.session() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_checklist(row) for row in rows]

    def delete_checklist(self, checklist_id: int) -> bool:
        with self.session() as conn:
            cursor = conn.execute("DELETE FROM checklists WHERE id = ?", (checklist_id,))
        return cursor.rowcount > 0


def _replace_template_roles(conn: sqlite3.Connection, template_id: int, role_ids: Iterable[int]) -> None:
    conn.execute("DELETE FROM checklist_template_roles WHERE template_id = ?", (template_id,))
    conn.executemany(
        "INSERT OR IGNORE INTO checklist_template_roles (template_id, role_id) VALUES (?, ?)",
        [(template_id, int(role_id)) for role_id in role_ids],
    )


def _template_role_ids(conn: sqlite3.Connection, template_id: int) -> List[int]:
    rows = conn.execute(
        "SELECT role_id FROM checklist_template_roles WHERE template_id = ? ORDER BY role_id",
        (template_id,),
    ).fetchall()
    return [row["role_id"] for row in rows]


def _dump_sections(sections: Iterable[Section]) -> str:
    return json.dumps([section.to_dict() for section in sections], ensure_ascii=False)


def _encode_record_value(column: str, value: Any) -> Any:
    if value is None:
        return None
    if column == "results":
        return json.dumps(value, ensure_ascii=False)
    if column == "next_maintenance_date":
        return value.strftime(DATE_FORMAT)
    if column in {"type", "reason", "priority", "status"}:
        return value.value if hasattr(value, "value") else str(value)
    return value


def _row_to_user(row: sqlite3.Row) -> User:
    return User(
        id=row["id"],
        full_name=row["full_name"],
        email=row["email"],
        role=row["role"],
        created_at=_parse_datetime(row["created_at"]),
    )


def _row_to_vehicle(row: sqlite3.Row) -> Vehicle:
    return Vehicle(
        id=row["id"],
        economic_number=row["economic_number"],
        plate=row["plate"],
        brand=row["brand"],
        model=row["model"],
        year=row["year"],
        mileage=row["mileage"],
        fuel_type=row["fuel_type"],
        assigned_user_id=row["assigned_user_id"],
    )


def _row_to_template(row: sqlite3.Row, role_ids: List[int]) -> ChecklistTemplate:
    return ChecklistTemplate(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        type=TemplateType(row["type"]),
        sections=[Section.from_dict(raw) for raw in json.loads(row["sections"])],
        role_ids=role_ids,
        active=bool(row["active"]),
        created_at=_parse_datetime(row["created_at"]),
        updated_at=_parse_datetime(row["updated_at"]),
    )


def _row_to_checklist(row: sqlite3.Row) -> ChecklistRecord:
    return ChecklistRecord(
        id=row["id"],
        folio=row["folio"] or f"CL-{row['id']}",
        vehicle_id=row["vehicle_id"],
        type=TemplateType(row["type"]),
        driver_name=row["driver_name"],
        inspector_name=row["inspector_name"],
        reason=ChecklistReason(row["reason"]),
        results=json.loads(row["results"]),
        evidence_url=row["evidence_url"] or "",
        status=ChecklistStatus(row["status"]),
        inspected_at=_parse_datetime(row["inspected_at"]),
        updated_at=_parse_datetime(row["updated_at"]),
        handover_user_id=row["handover_user_id"],
        inspector_employee_id=row["inspector_employee_id"],
        general_observations=row["general_observations"],
        recommendations=row["recommendations"],
        priority=Priority(row["priority"]) if row["priority"] else None,
        next_maintenance_date=_parse_date(row["next_maintenance_date"]) if row["next_maintenance_date"] else None,
        created_by_user_id=row["created_by_user_id"],
    )


def _utcnow() -> datetime:
    return datetime.utcnow()


def _format_datetime(value: datetime) -> str:
    return value.strftime(ISO_FORMAT)


def _parse_datetime(value: str) -> datetime:
    return datetime.strptime(value, ISO_FORMAT)


def _parse_date(value: str) -> date:
    return datetime.strptime(value, DATE_FORMAT).date()
