from .deps import (
    Principal,
    get_current_principal,
    require_auth,
    require_ownership,
    require_permission,
    require_role,
)

__all__ = [
    "Principal",
    "get_current_principal",
    "require_auth",
    "require_ownership",
    "require_permission",
    "require_role",
]
