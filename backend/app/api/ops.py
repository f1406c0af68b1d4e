"""Operations endpoints providing health checks, metrics, and admin controls."""

from __future__ import annotations

import hmac
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from app.lending.jobs.overdue_sweeper import OverdueSweeper
from app.obs import health
from app.settings import settings

router = APIRouter(prefix="", tags=["ops"])


def _resolve_token(x_admin_token: Optional[str], authorization: Optional[str]) -> Optional[str]:
	if x_admin_token:
		return x_admin_token
	if authorization and authorization.lower().startswith("bearer "):
		return authorization.split(" ", 1)[1]
	return None


async def require_admin(
	x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
	authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> None:
	token = settings.obs_admin_token
	if not token:
		# Fail closed: if no token is configured, no admin access is allowed.
		raise HTTPException(status.HTTP_403_FORBIDDEN, detail="admin_token_not_configured")
	provided = _resolve_token(x_admin_token, authorization) or ""
	if not hmac.compare_digest(provided, token):
		raise HTTPException(status.HTTP_403_FORBIDDEN, detail="forbidden")


async def require_metrics_access(
	x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
	authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> None:
	if settings.obs_metrics_public:
		return
	await require_admin(x_admin_token=x_admin_token, authorization=authorization)


@router.get("/health/live")
async def health_live() -> dict[str, str]:
	return await health.liveness()


@router.get("/health/ready")
async def health_ready() -> Response:
	status_code, payload = await health.readiness()
	return JSONResponse(content=payload, status_code=status_code)


@router.get("/metrics")
async def prometheus_metrics(_: None = Depends(require_metrics_access)) -> Response:
	payload = generate_latest()
	return Response(content=payload, media_type=CONTENT_TYPE_LATEST)


@router.post("/ops/lending/sweep-overdue")
async def trigger_overdue_sweep(_: None = Depends(require_admin)) -> dict[str, object]:
	"""Run the overdue sweep now instead of waiting for the scheduler."""
	moved = await OverdueSweeper().run_once()
	return {"status": "ok", "marked_overdue": moved}


@router.get("/ops/lending/scheduler")
async def lending_scheduler_status(request: Request, _: None = Depends(require_admin)) -> dict[str, object]:
	scheduler = getattr(request.app.state, "lending_scheduler", None)
	if scheduler is None:
		return {"running": False, "jobs": [], "sweep_minutes": settings.lending_overdue_sweep_minutes}
	return {
		"running": scheduler.running,
		"jobs": scheduler.job_ids(),
		"sweep_minutes": settings.lending_overdue_sweep_minutes,
	}
