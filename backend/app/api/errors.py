"""Global error handlers ensuring request_id is included in JSON responses."""

from __future__ import annotations

from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.request_id import get_request_id


class CodedHTTPException(HTTPException):
    """HTTPException carrying a stable error category alongside ``detail``."""

    def __init__(self, status_code: int, detail: str, code: str, headers: Optional[dict[str, str]] = None) -> None:
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.code = code


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
        payload = {"detail": exc.detail, "request_id": get_request_id(request)}
        code = getattr(exc, "code", None)
        if code:
            payload["code"] = code
        return JSONResponse(status_code=exc.status_code, content=payload, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
        payload = {
            "detail": "validation_error",
            "code": "VALIDATION_ERROR",
            "errors": jsonable_errors(exc),
            "request_id": get_request_id(request),
        }
        return JSONResponse(status_code=422, content=payload)


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, object]]:
    """Drop non-serialisable context (e.g. exception objects) from pydantic errors."""
    return [
        {"loc": list(err.get("loc", ())), "msg": str(err.get("msg", "")), "type": str(err.get("type", ""))}
        for err in exc.errors()
    ]
