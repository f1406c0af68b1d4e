"""HS256 access tokens carrying lending roles and an optional department.

Tokens are normally minted by the identity service; ``issue_access`` exists
for local tooling and tests.
"""

from __future__ import annotations

import time
from typing import Any, Dict, Iterable, Optional
from uuid import UUID

import jwt
from jwt import InvalidTokenError

from app.settings import settings

ACCESS_TTL_SECONDS = 15 * 60
REQUIRED_CLAIMS = ("sub", "sid", "roles")


def encode_access(payload: dict[str, object], *, ttl_seconds: int = ACCESS_TTL_SECONDS) -> str:
    now = int(time.time())
    body: Dict[str, Any] = {
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": now,
        "exp": now + ttl_seconds,
    }
    body.update(payload)
    return jwt.encode(body, settings.secret_key, algorithm="HS256")


def issue_access(
    user_id: str,
    roles: Iterable[str],
    *,
    session_id: str,
    dept_id: Optional[UUID] = None,
    ttl_seconds: int = ACCESS_TTL_SECONDS,
) -> str:
    """Mint a token for a club, student, faculty reviewer or admin."""
    claims: dict[str, object] = {"sub": user_id, "sid": session_id, "roles": [str(r) for r in roles]}
    if dept_id is not None:
        claims["dept_id"] = str(dept_id)
    return encode_access(claims, ttl_seconds=ttl_seconds)


def decode_access(token: str) -> dict[str, object]:
    """Decode and validate an access token.

    Raises jwt.InvalidTokenError subclasses on failure, including when one of
    ``REQUIRED_CLAIMS`` is absent or empty.
    """
    payload = jwt.decode(
        token,
        settings.secret_key,
        algorithms=["HS256"],
        audience=settings.jwt_audience,
        issuer=settings.jwt_issuer,
        leeway=5,
        options={"require": ["exp", "iat", "iss", "aud"]},
    )
    for claim in REQUIRED_CLAIMS:
        if not payload.get(claim):
            raise InvalidTokenError(f"missing_claim:{claim}")
    return payload  # type: ignore[return-value]


__all__ = ["InvalidTokenError", "decode_access", "encode_access", "issue_access"]
