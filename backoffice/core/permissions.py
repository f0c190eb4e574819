from collections.abc import Callable

from fastapi import Depends, HTTPException, status

from backoffice.core.security import CallerIdentity
from backoffice.core.security_current import get_current_identity


def require_roles(*allowed_roles: str) -> Callable[[CallerIdentity], CallerIdentity]:
    normalized_allowed = {role.strip().lower() for role in allowed_roles if role.strip()}
    if not normalized_allowed:
        raise ValueError("At least one allowed role is required")

    def dependency(identity: CallerIdentity = Depends(get_current_identity)) -> CallerIdentity:
        current_role = (identity.role or "").lower()
        if current_role not in normalized_allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient role for this action",
            )
        return identity

    return dependency


ANY_STAFF = ("admin", "salesperson")
ADMIN_ONLY = ("admin",)
