from __future__ import annotations

from typing import Any

PERM_WILDCARD = "*"
PERM_FARM_READ = "farm.read"
PERM_FARM_WRITE = "farm.write"
PERM_FARM_DELETE = "farm.delete"


def has_permission(claims: dict[str, Any], permission: str) -> bool:
    permissions = claims.get("permissions", [])
    if not isinstance(permissions, list):
        return False
    return permission in permissions or PERM_WILDCARD in permissions
