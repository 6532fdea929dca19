from collections.abc import Callable

from fastapi import Depends, HTTPException, status

from rudark.core.security_current import get_current_admin
from rudark.models.admin_user import ADMIN_ROLES, AdminUser


def require_admin_roles(*allowed_roles: str) -> Callable[[AdminUser], AdminUser]:
    normalized_allowed = {role.strip().lower() for role in allowed_roles if role.strip()}
    if not normalized_allowed:
        raise ValueError("At least one allowed role is required")
    unknown = normalized_allowed - ADMIN_ROLES
    if unknown:
        raise ValueError(f"Unknown admin roles: {', '.join(sorted(unknown))}")

    def dependency(admin: AdminUser = Depends(get_current_admin)) -> AdminUser:
        if (admin.role or "").lower() not in normalized_allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient role for this action",
            )
        return admin

    return dependency


# Shorthands used by the admin routers.
require_staff = require_admin_roles("owner", "admin", "staff")
require_manager = require_admin_roles("owner", "admin")
require_owner = require_admin_roles("owner")
