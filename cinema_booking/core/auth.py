from dataclasses import dataclass
from fastapi import Header


STAFF_ROLES = {"ADMIN", "STAFF", "MANAGER"}


@dataclass(frozen=True)
class CurrentUser:
    user_id: int
    role: str = "CUSTOMER"

    @property
    def is_staff(self) -> bool:
        return self.role.upper() in STAFF_ROLES


async def get_current_user(
        x_user_id: int = Header(alias="X-User-Id"),
        x_user_role: str = Header(default="CUSTOMER", alias="X-User-Role")) -> CurrentUser:
    """
    Authentication lives in front of this service; the gateway forwards the
    resolved user id and role as headers.
    """
    return CurrentUser(user_id=x_user_id, role=x_user_role.upper())
