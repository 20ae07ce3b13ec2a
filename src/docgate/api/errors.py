from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from docgate.services.errors import (
    BaselineMoved,
    ConcurrentModification,
    DuplicateNodeIdentity,
    GateDomainError,
    IncomparableSnapshots,
    InvalidStageGraph,
    MergeGateBlocked,
    MissingNodeIdentity,
    OrderBlocked,
    ProposalClosed,
    StaleChange,
)

GATE_ERROR_STATUS: dict[type[GateDomainError], int] = {
    IncomparableSnapshots: 422,
    MissingNodeIdentity: 422,
    DuplicateNodeIdentity: 422,
    InvalidStageGraph: 422,
    StaleChange: 409,
    OrderBlocked: 409,
    MergeGateBlocked: 409,
    ConcurrentModification: 409,
    ProposalClosed: 409,
    BaselineMoved: 409,
}


@dataclass
class ApiDomainError(Exception):
    detail: str
    status_code: int = 400
    code: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return self.detail


class UnauthorizedError(ApiDomainError):
    def __init__(self, detail: str = "Missing or invalid API key"):
        super().__init__(detail=detail, status_code=401, code="unauthorized")


class ForbiddenError(ApiDomainError):
    def __init__(self, detail: str):
        super().__init__(detail=detail, status_code=403, code="forbidden")


class NotFoundError(ApiDomainError):
    def __init__(self, detail: str):
        super().__init__(detail=detail, status_code=404, code="not_found")


class ValidationError(ApiDomainError):
    def __init__(self, detail: str, *, status_code: int = 400):
        super().__init__(detail=detail, status_code=status_code, code="validation_error")


class ConflictError(ApiDomainError):
    def __init__(self, detail: str, *, code: str = "conflict", details: dict[str, Any] | None = None):
        super().__init__(detail=detail, status_code=409, code=code, details=dict(details or {}))


def from_gate_error(exc: GateDomainError) -> ApiDomainError:
    status = next((code for cls, code in GATE_ERROR_STATUS.items() if isinstance(exc, cls)), 400)
    if status == 409:
        return ConflictError(exc.message, code=exc.code, details=exc.details)
    return ApiDomainError(detail=exc.message, status_code=status, code=exc.code, details=dict(exc.details))


def _payload(exc: ApiDomainError) -> dict[str, Any]:
    payload: dict[str, Any] = {"detail": exc.detail}
    if exc.code:
        payload["code"] = exc.code
    if exc.details:
        payload["details"] = exc.details
    return payload


async def _api_domain_error_handler(_: Request, exc: ApiDomainError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=_payload(exc))


async def _gate_domain_error_handler(request: Request, exc: GateDomainError) -> JSONResponse:
    return await _api_domain_error_handler(request, from_gate_error(exc))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiDomainError, _api_domain_error_handler)
    app.add_exception_handler(GateDomainError, _gate_domain_error_handler)


def to_http_exception(exc: Exception, *, default_status: int = 400) -> Exception:
    """Map a service failure onto something FastAPI renders.

    Typed failures come back as ``ApiDomainError`` so the registered handler
    can keep ``code`` and ``details`` in the body.
    """
    if isinstance(exc, (HTTPException, ApiDomainError)):
        return exc
    if isinstance(exc, GateDomainError):
        return from_gate_error(exc)
    if isinstance(exc, LookupError):
        return NotFoundError(str(exc))
    if isinstance(exc, PermissionError):
        return ForbiddenError(str(exc))
    if isinstance(exc, ValueError):
        return ValidationError(str(exc), status_code=default_status)
    return HTTPException(status_code=default_status, detail=str(exc))
