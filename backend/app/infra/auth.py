"""Authentication helpers for FastAPI endpoints.

Bearer JWTs are verified with settings.secret_key. Dev headers are only
honoured outside production so local tools can act as any account.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.infra import jwt as jwt_helper
from app.settings import settings


@dataclass(slots=True)
class AuthenticatedUser:
	id: str
	roles: Tuple[str, ...] = ()
	dept_id: Optional[UUID] = None
	display_name: Optional[str] = None
	session_id: Optional[str] = None

	def has_role(self, role: str) -> bool:
		return role in self.roles


_bearer_scheme = HTTPBearer(auto_error=False)


def _parse_roles(claim: object) -> Tuple[str, ...]:
	if isinstance(claim, (list, tuple)):
		return tuple(str(r).strip().lower() for r in claim if str(r).strip())
	if isinstance(claim, str):
		return tuple(part.strip().lower() for part in claim.split(",") if part.strip())
	return ()


def _parse_dept(value: object) -> Optional[UUID]:
	if value in (None, ""):
		return None
	try:
		return UUID(str(value))
	except ValueError:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_dept_id") from None


def verify_access_jwt(token: str) -> AuthenticatedUser:
	"""Decode and validate an access JWT and return an AuthenticatedUser.

	Requirements:
	- issuer and audience from settings.jwt_issuer / settings.jwt_audience
	- required claims: sub, sid, exp, iat, roles
	- roles can be list[str] or comma-separated string.
	"""
	try:
		payload = jwt_helper.decode_access(token)
	except jwt_helper.InvalidTokenError:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token") from None

	sub = str(payload.get("sub") or "").strip()
	if not sub:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")

	display_name = payload.get("name") or payload.get("display_name")
	session_id = payload.get("sid")
	return AuthenticatedUser(
		id=sub,
		roles=_parse_roles(payload.get("roles") or payload.get("role")),
		dept_id=_parse_dept(payload.get("dept_id")),
		display_name=str(display_name) if display_name is not None else None,
		session_id=str(session_id).strip() if session_id is not None else None,
	)


async def get_current_user(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	x_user_roles: Optional[str] = Header(default=None, alias="X-User-Roles"),
	x_dept_id: Optional[str] = Header(default=None, alias="X-Dept-Id"),
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthenticatedUser:
	"""Resolve the authenticated user.

	In development we allow simple headers. In all other environments, headers are
	ignored and a valid Bearer JWT is required.
	"""
	if credentials and credentials.scheme.lower() == "bearer":
		return verify_access_jwt(credentials.credentials)

	if settings.is_dev() and x_user_id:
		return AuthenticatedUser(
			id=x_user_id.strip(),
			roles=_parse_roles(x_user_roles or ""),
			dept_id=_parse_dept(x_dept_id),
		)

	raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")


def require_roles(*required: Iterable[str]):
	"""Return a dependency that enforces the presence of any of the given roles.

	Usage:
		@router.get("/inbox", dependencies=[Depends(require_roles("faculty"))])
	"""
	required_set = {str(r).strip() for r in required if str(r).strip()}

	async def _dep(user: AuthenticatedUser = Depends(get_current_user)) -> AuthenticatedUser:
		if not required_set:
			return user
		if any(user.has_role(r) for r in required_set):
			return user
		raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="insufficient_role")

	return _dep
