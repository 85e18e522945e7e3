from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .directories import RoleDirectory, VehicleDirectory, find_role
from .errors import LookupMiss
from .models import ChecklistTemplate, User
from .templates import TemplateStore

logger = logging.getLogger(__name__)


@dataclass
class TemplateResolution:
    """Outcome of resolving which templates apply to a checklist."""

    effective_role: Optional[str]
    templates: List[ChecklistTemplate] = field(default_factory=list)

    @property
    def has_templates(self) -> bool:
        return bool(self.templates)


@dataclass
class RoleResolver:
    vehicles: VehicleDirectory
    roles: RoleDirectory

    def effective_role(self, current_user: User, vehicle_id: Optional[int]) -> Optional[str]:
        """Role whose templates apply when ``current_user`` inspects the vehicle.

        The role of the user assigned to the vehicle wins; without a vehicle,
        or when the assignee cannot be found, the acting user's own role is used.
        """
        if vehicle_id:
            try:
                assignee = self.vehicles.get_assigned_user(vehicle_id)
            except LookupMiss:
                logger.debug("No assignee for vehicle %s, falling back to %s", vehicle_id, current_user.role)
            else:
                if assignee.role:
                    return assignee.role
        return current_user.role or None

    def resolve(
        self,
        current_user: User,
        vehicle_id: Optional[int],
        templates: TemplateStore,
    ) -> TemplateResolution:
        role_name = self.effective_role(current_user, vehicle_id)
        role = find_role(self.roles, role_name)
        if role is None:
            return TemplateResolution(effective_role=role_name)
        return TemplateResolution(effective_role=role.name, templates=templates.for_role(role.id))
