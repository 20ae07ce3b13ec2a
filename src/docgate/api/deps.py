from __future__ import annotations

from typing import Callable

from fastapi import Header, Request
from sqlalchemy.orm import Session

from docgate.api.errors import ForbiddenError, UnauthorizedError
from docgate.services.auth import AuthContext


def open_session(request: Request) -> Session:
    return request.app.state.db.session()


def require_auth(min_role: str = "viewer") -> Callable:
    def dependency(
        request: Request,
        x_docgate_api_key: str | None = Header(default=None, alias="X-DocGate-API-Key"),
    ) -> AuthContext:
        session = request.app.state.db.session()
        try:
            ctx = request.app.state.auth_service.authenticate(session, x_docgate_api_key)
            if not ctx:
                raise UnauthorizedError()
            if not request.app.state.auth_service.role_allows(ctx.role, min_role):
                raise ForbiddenError(f"Role '{ctx.role}' lacks required permission '{min_role}'")
            request.state.auth_context = ctx
            session.commit()
            return ctx
        finally:
            session.close()

    return dependency
