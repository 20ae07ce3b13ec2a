from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from docgate.api.deps import require_auth
from docgate.services.auth import ROLE_ORDER, AuthContext

router = APIRouter()


@router.get("/auth/whoami")
def auth_whoami(request: Request, auth_context: AuthContext = Depends(require_auth("viewer"))) -> dict:
    auth_service = request.app.state.auth_service
    return {
        "api_key_id": auth_context.api_key_id,
        "owner": auth_context.owner,
        "role": auth_context.role,
        "granted_roles": [role for role in ROLE_ORDER if auth_service.role_allows(auth_context.role, role)],
    }
