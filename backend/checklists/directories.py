"""Collaborators the checklist engine consumes but does not own.

Each protocol describes the narrow surface the engine relies on. The
``Database*`` classes are the sqlite-backed implementations used by default.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Protocol

from .database import Database
from .errors import LookupMiss
from .models import Role, User, Vehicle


@dataclass
class AuthContext:
    current_user: User


@dataclass
class UploadResult:
    url: str


class VehicleDirectory(Protocol):
    def list(self) -> List[Vehicle]:
        ...

    def get(self, vehicle_id: int) -> Optional[Vehicle]:
        ...

    def get_assigned_user(self, vehicle_id: int) -> User:
        """Return the user assigned to the vehicle or raise ``LookupMiss``."""
        ...


class RoleDirectory(Protocol):
    def list(self) -> List[Role]:
        ...


class FileUploadService(Protocol):
    def upload(self, filename: str, data: bytes) -> UploadResult:
        """Store the file and return its public URL or raise ``TransportError``."""
        ...


@dataclass
class DatabaseVehicleDirectory:
    database: Database

    def list(self) -> List[Vehicle]:
        return self.database.list_vehicles()

    def get(self, vehicle_id: int) -> Optional[Vehicle]:
        return self.database.get_vehicle(vehicle_id)

    def get_assigned_user(self, vehicle_id: int) -> User:
        vehicle = self.database.get_vehicle(vehicle_id)
        if vehicle is None or vehicle.assigned_user_id is None:
            raise LookupMiss(f"Vehicle {vehicle_id} has no assigned user")
        user = self.database.get_user(vehicle.assigned_user_id)
        if user is None:
            raise LookupMiss(f"User {vehicle.assigned_user_id} not found")
        return user


@dataclass
class DatabaseRoleDirectory:
    database: Database

    def list(self) -> List[Role]:
        return self.database.list_roles()


def find_role(roles: RoleDirectory, name: Optional[str]) -> Optional[Role]:
    wanted = (name or "").strip().lower()
    if not wanted:
        return None
    return next((role for role in roles.list() if role.name.strip().lower() == wanted), None)
