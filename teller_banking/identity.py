"""
Roles and principals shared by the token service, the authorization gate
and the managers.
"""

from dataclasses import dataclass
from enum import Enum


class Role(Enum):
    """Closed set of user roles; a user holds exactly one"""
    USER = "user"
    ADMIN = "admin"
    STAFF = "staff"  # Cashier


# Roles that bypass ownership checks on owner-scoped account reads
PRIVILEGED_ROLES = frozenset({Role.ADMIN, Role.STAFF})


@dataclass(frozen=True)
class Principal:
    """The authenticated actor derived from a verified token"""
    id: str
    role: Role

    @property
    def is_privileged(self) -> bool:
        return self.role in PRIVILEGED_ROLES
