"""
Roles, permissions and the authenticated principal passed into every operation.
"""
from dataclasses import dataclass
from enum import Enum

from parking_engine.errors import PermissionDenied, Unauthenticated


class Role(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"

    @classmethod
    def parse(cls, value: str) -> "Role":
        value = (value or "").strip().lower()
        if value == "user":
            return cls.CUSTOMER
        try:
            return cls(value)
        except ValueError:
            raise PermissionDenied(f"Unknown role: {value or '<empty>'}")

    @property
    def level(self) -> int:
        return ROLE_LEVELS[self]

    @property
    def is_admin(self) -> bool:
        return self.level >= ROLE_LEVELS[Role.ADMIN]


ROLE_LEVELS = {
    Role.CUSTOMER: 1,
    Role.ADMIN: 2,
    Role.SUPERADMIN: 3,
}

MANAGE_PARKING = "manage_parking"
MANAGE_USERS = "manage_users"
VIEW_ALL_DATA = "view_all_data"
VIEW_REPORTS = "view_reports"
MANAGE_SETTINGS = "manage_settings"
EXPORT_DATA = "export_data"
VIEW_OWN_DATA = "view_own_data"

ROLE_PERMISSIONS = {
    Role.CUSTOMER: {VIEW_OWN_DATA},
    Role.ADMIN: {MANAGE_PARKING, MANAGE_USERS, VIEW_ALL_DATA, VIEW_REPORTS},
    Role.SUPERADMIN: {
        MANAGE_PARKING,
        MANAGE_USERS,
        VIEW_ALL_DATA,
        VIEW_REPORTS,
        MANAGE_SETTINGS,
        EXPORT_DATA,
    },
}


@dataclass(frozen=True)
class Principal:
    id: str
    role: Role

    def has_permission(self, permission: str) -> bool:
        return permission in ROLE_PERMISSIONS[self.role]

    def can_act_for(self, user_id) -> bool:
        """Admins may act on behalf of anyone; everyone else only for themselves."""
        if user_id is None or str(user_id) == self.id:
            return True
        return self.role.is_admin


def require_principal(principal) -> Principal:
    if principal is None:
        raise Unauthenticated()
    return principal


def require_permission(principal, permission: str) -> Principal:
    principal = require_principal(principal)
    if not principal.has_permission(permission):
        raise PermissionDenied(f"User does not have permission: {permission}")
    return principal
