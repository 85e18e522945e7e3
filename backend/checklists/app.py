from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from .cache import QueryCache
from .database import Database
from .directories import (
    AuthContext,
    DatabaseRoleDirectory,
    DatabaseVehicleDirectory,
    FileUploadService,
    find_role,
)
from .errors import IncompleteFormError
from .export import export_checklists_workbook
from .models import ChecklistRecord, ChecklistTemplate, Role, TemplateType, User, Vehicle
from .records import ChecklistRecordStore, RecordFilters
from .reports import DetailView, render_detail, render_printable
from .roles import RoleResolver, TemplateResolution
from .session import ChecklistSession
from .templates import TemplateStore
from .uploads import LocalUploadService

logger = logging.getLogger(__name__)

DEFAULT_ROLES = ("admin", "supervisor", "operario")
DEFAULT_EXPRESS_TEMPLATE = "Revisión express"
DEFAULT_EXPRESS_SECTIONS: List[Dict[str, Any]] = [
    {
        "title": "Niveles",
        "kind": "tristate",
        "items": ["Aceite de motor", "Anticongelante", "Líquido de frenos", "Líquido de dirección"],
    },
    {
        "title": "Llantas",
        "kind": "tristate",
        "items": ["Presión", "Desgaste", "Llanta de refacción"],
    },
    {
        "title": "Luces",
        "kind": "binary",
        "items": ["Faros", "Direccionales", "Luces de freno", "Luces de reversa"],
    },
    {
        "title": "Seguridad",
        "kind": "binary",
        "items": ["Extintor", "Botiquín", "Triángulos", "Cinturones"],
    },
]
DEFAULT_USERS = (
    ("Ana Administradora", "admin@flota.example.com", "admin"),
    ("Sergio Supervisor", "supervisor@flota.example.com", "supervisor"),
    ("Óscar Operario", "operario@flota.example.com", "operario"),
)


@dataclass
class FleetChecklistApp:
    database: Database
    templates: TemplateStore
    records: ChecklistRecordStore
    resolver: RoleResolver
    vehicles: DatabaseVehicleDirectory
    roles: DatabaseRoleDirectory
    uploads: FileUploadService

    @classmethod
    def create(
        cls,
        database_path: Path,
        upload_dir: Optional[Path] = None,
        *,
        uploads: Optional[FileUploadService] = None,
    ) -> "FleetChecklistApp":
        database = Database(database_path)
        database.initialize()
        cache = QueryCache()
        vehicles = DatabaseVehicleDirectory(database)
        roles = DatabaseRoleDirectory(database)
        if uploads is None:
            uploads = LocalUploadService(Path(upload_dir) if upload_dir else Path(database_path).parent / "uploads")
        return cls(
            database=database,
            templates=TemplateStore(database, cache),
            records=ChecklistRecordStore(database, cache),
            resolver=RoleResolver(vehicles, roles),
            vehicles=vehicles,
            roles=roles,
            uploads=uploads,
        )

    def seed_defaults(self) -> None:
        for name in DEFAULT_ROLES:
            if not self.database.get_role_by_name(name):
                self.database.add_role(name)
        for full_name, email, role in DEFAULT_USERS:
            if not self.database.get_user_by_email(email):
                self.database.add_user(full_name, email, role)
        operario = self.database.get_user_by_email("operario@flota.example.com")
        vehicle_definitions = [
            ("ECO-101", "ABC-1234", "Nissan", "NP300", 2021, 48210, "Diésel"),
            ("ECO-102", "DEF-5678", "Toyota", "Hilux", 2019, 93550, "Gasolina"),
            ("ECO-205", "GHI-9012", "Ford", "Transit", 2022, 21030, "Diésel"),
        ]
        for economic_number, plate, brand, model, year, mileage, fuel in vehicle_definitions:
            if not self.database.get_vehicle_by_economic_number(economic_number):
                self.database.add_vehicle(
                    economic_number=economic_number,
                    plate=plate,
                    brand=brand,
                    model=model,
                    year=year,
                    mileage=mileage,
                    fuel_type=fuel,
                    assigned_user_id=operario.id if operario and economic_number == "ECO-101" else None,
                )
        if not any(template.name == DEFAULT_EXPRESS_TEMPLATE for template in self.templates.list_templates()):
            self.templates.create(
                name=DEFAULT_EXPRESS_TEMPLATE,
                description="Revisión rápida antes de salir a ruta",
                template_type=TemplateType.EXPRESS,
                sections=DEFAULT_EXPRESS_SECTIONS,
                role_ids=[role.id for role in self.roles.list() if role.name in {"operario", "supervisor"}],
            )

    # Directory lookups
    def get_user(self, user_id: int) -> User:
        user = self.database.get_user(user_id)
        if not user:
            raise LookupError("User not found")
        return user

    def find_user_by_email(self, email: str) -> Optional[User]:
        return self.database.get_user_by_email((email or "").strip().lower())

    def list_users(self) -> List[User]:
        return self.database.list_users()

    def list_roles(self) -> List[Role]:
        return self.roles.list()

    def list_vehicles(self) -> List[Vehicle]:
        return self.vehicles.list()

    def get_vehicle(self, vehicle_id: int) -> Vehicle:
        vehicle = self.vehicles.get(vehicle_id)
        if not vehicle:
            raise LookupError("Vehicle not found")
        return vehicle

    # Checklist sessions
    def resolve_templates(self, auth: AuthContext, vehicle_id: Optional[int]) -> TemplateResolution:
        return self.resolver.resolve(auth.current_user, vehicle_id, self.templates)

    def start_checklist(
        self,
        session: ChecklistSession,
        auth: AuthContext,
        *,
        vehicle_id: Optional[int] = None,
        template_type: TemplateType = TemplateType.EXPRESS,
    ) -> TemplateResolution:
        user = auth.current_user
        if vehicle_id is None:
            assigned = self.database.get_vehicle_assigned_to_user(user.id)
            vehicle_id = assigned.id if assigned else None
        session.start_new(vehicle_id=vehicle_id, template_type=template_type)
        session.update_header(inspector_name=user.full_name)
        return self._apply_resolution(session, auth)

    def select_vehicle(self, session: ChecklistSession, auth: AuthContext, vehicle_id: Optional[int]) -> TemplateResolution:
        if vehicle_id is not None:
            self.get_vehicle(vehicle_id)
        session.vehicle_id = vehicle_id
        return self._apply_resolution(session, auth)

    def start_edit(self, session: ChecklistSession, auth: AuthContext, checklist_id: int) -> ChecklistRecord:
        record = self.records.get(checklist_id)
        self._require_editor(auth.current_user, record)
        resolution = self.resolve_templates(auth, record.vehicle_id)
        session.start_edit(record, resolution.templates)
        session.effective_role = resolution.effective_role
        return record

    def upload_evidence(self, session: ChecklistSession, filename: str, data: bytes) -> str:
        result = self.uploads.upload(filename, data)
        session.attach_evidence(result.url)
        return result.url

    def submit(self, session: ChecklistSession, auth: AuthContext) -> ChecklistRecord:
        """Persist the session as a new checklist or as an edit of an existing one.

        The completeness gate runs before any store call. The session is closed
        once the store accepts the payload.
        """
        user = auth.current_user
        try:
            payload = session.build_submission()
        except IncompleteFormError as exc:
            logger.warning("Rejected checklist submission by %s: %s", user.email, exc)
            raise
        template_type = payload.get("type")
        if getattr(template_type, "value", template_type) == TemplateType.COMPLETO.value and not user.is_admin:
            raise PermissionError("Solo un administrador puede registrar checklists completos")
        if session.is_new:
            payload["created_by_user_id"] = user.id
            record = self.records.create(payload)
        else:
            existing = self.records.get(session.record_id)
            self._require_editor(user, existing)
            record = self.records.update(existing.id, payload)
        session.close()
        return record

    # Checklist records
    def list_checklists(self, auth: AuthContext, filters: Optional[RecordFilters] = None) -> List[ChecklistRecord]:
        records = self.records.list(filters)
        user = auth.current_user
        if user.is_admin:
            return records
        assigned = self.database.get_vehicle_assigned_to_user(user.id)
        return [record for record in records if self._is_visible(user, record, assigned)]

    def get_checklist(self, auth: AuthContext, checklist_id: int) -> ChecklistRecord:
        record = self.records.get(checklist_id)
        user = auth.current_user
        if not user.is_admin and not self._is_visible(user, record, self.database.get_vehicle_assigned_to_user(user.id)):
            raise PermissionError("No tienes acceso a este checklist")
        return record

    def can_edit(self, user: User, record: ChecklistRecord) -> bool:
        return user.is_admin or record.created_by_user_id == user.id

    def delete_checklist(self, auth: AuthContext, checklist_id: int) -> None:
        record = self.records.get(checklist_id)
        self._require_editor(auth.current_user, record)
        self.records.delete(checklist_id)

    def checklist_detail(self, auth: AuthContext, checklist_id: int) -> DetailView:
        return render_detail(self.get_checklist(auth, checklist_id))

    def printable_checklist(self, auth: AuthContext, checklist_id: int) -> str:
        record = self.get_checklist(auth, checklist_id)
        return render_printable(record, self.vehicles.get(record.vehicle_id))

    def export_checklists(self, auth: AuthContext, filters: Optional[RecordFilters] = None) -> tuple[str, bytes]:
        records = self.list_checklists(auth, filters)
        vehicles = {vehicle_id: self.vehicles.get(vehicle_id) for vehicle_id in {record.vehicle_id for record in records}}
        return export_checklists_workbook(records, vehicles, generated_by=auth.current_user)

    # Template administration
    def list_templates(self, auth: AuthContext, *, active_only: bool = False) -> List[ChecklistTemplate]:
        role = find_role(self.roles, auth.current_user.role)
        return self.templates.list_templates(
            active_only=active_only,
            unique=True,
            role_ids=[role.id] if role else [],
        )

    def get_template(self, template_id: int) -> ChecklistTemplate:
        return self.templates.get(template_id)

    def create_template(self, auth: AuthContext, **fields: Any) -> ChecklistTemplate:
        self._require_admin(auth.current_user)
        return self.templates.create(**fields)

    def update_template(self, auth: AuthContext, template_id: int, changes: Dict[str, Any]) -> ChecklistTemplate:
        self._require_admin(auth.current_user)
        return self.templates.update(template_id, changes)

    def clone_template(self, auth: AuthContext, template_id: int, *, active: bool = True) -> ChecklistTemplate:
        self._require_admin(auth.current_user)
        return self.templates.clone(template_id, active=active)

    def toggle_template(self, auth: AuthContext, template_id: int, active: bool) -> ChecklistTemplate:
        self._require_admin(auth.current_user)
        return self.templates.toggle_active(template_id, active)

    def delete_template(self, auth: AuthContext, template_id: int) -> None:
        self._require_admin(auth.current_user)
        self.templates.delete(template_id)

    def _apply_resolution(self, session: ChecklistSession, auth: AuthContext) -> TemplateResolution:
        resolution = self.resolve_templates(auth, session.vehicle_id)
        session.use_templates(resolution.templates, resolution.effective_role)
        if not resolution.has_templates:
            logger.info("No templates assigned for role %s", resolution.effective_role)
        return resolution

    @staticmethod
    def _is_visible(user: User, record: ChecklistRecord, assigned: Optional[Vehicle]) -> bool:
        if assigned and record.vehicle_id == assigned.id:
            return True
        if record.handover_user_id == user.id:
            return True
        name = (user.full_name or "").strip().lower()
        return bool(name) and (name in record.driver_name.lower() or name in record.inspector_name.lower())

    @staticmethod
    def _require_admin(user: User) -> None:
        if not user.is_admin:
            raise PermissionError("Solo los administradores pueden gestionar plantillas")

    def _require_editor(self, user: User, record: ChecklistRecord) -> None:
        if not self.can_edit(user, record):
            raise PermissionError("Solo un administrador o quien creó el checklist puede modificarlo")

