from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt

JWT_SECRET = os.getenv("JWT_SECRET", "farm-dev-secret-change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MIN = int(os.getenv("JWT_EXPIRES_MIN", "60"))
JWT_ISSUER = os.getenv("JWT_ISSUER", "farm-integrity")


@dataclass(frozen=True)
class Principal:
    tenant_id: str
    user_id: str
    permissions: tuple[str, ...]


def create_access_token(
    *,
    user_id: str,
    tenant_id: str,
    permissions: list[str] | None = None,
    expires_minutes: int | None = None,
) -> str:
    now = datetime.now(UTC)
    expire_delta = timedelta(minutes=expires_minutes or JWT_EXPIRES_MIN)
    payload: dict[str, Any] = {
        "sub": user_id,
        "tenant_id": tenant_id,
        "permissions": permissions or [],
        "iss": JWT_ISSUER,
        "iat": int(now.timestamp()),
        "exp": int((now + expire_delta).timestamp()),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    decoded = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM], issuer=JWT_ISSUER)
    if not isinstance(decoded, dict):
        raise ValueError("Invalid token payload")
    if not decoded.get("tenant_id") or not decoded.get("sub"):
        raise ValueError("Token is missing tenant or subject")
    return decoded


def principal_from_claims(claims: dict[str, Any]) -> Principal:
    permissions = claims.get("permissions", [])
    return Principal(
        tenant_id=str(claims["tenant_id"]),
        user_id=str(claims["sub"]),
        permissions=tuple(permissions) if isinstance(permissions, list) else (),
    )
