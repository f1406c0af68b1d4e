"""FastAPI routers for the lending workflow."""

from __future__ import annotations

from fastapi import APIRouter

from app.lending.api import departments, requests

router = APIRouter(prefix="/api/lending/v1")

router.include_router(requests.router)
router.include_router(departments.router)

__all__ = ["router"]
