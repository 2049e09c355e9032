"""
BharatCRM - Auth context & roles
The auth layer resolves the caller; ingestion code trusts this context as-is.
"""

from pydantic import BaseModel
from enum import Enum


class UserRole(str, Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    MANAGER = "manager"
    SALES = "sales"


VALID_ROLES = [r.value for r in UserRole]
ADMIN_ROLES = (UserRole.SUPER_ADMIN.value, UserRole.ADMIN.value)


class AuthContext(BaseModel):
    """{user_id, org_id, role} of the authenticated caller"""
    user_id: str
    org_id: str
    role: str = UserRole.SALES.value

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    @property
    def is_manager(self) -> bool:
        return self.role == UserRole.MANAGER.value
