from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from docgate.api.deps import open_session, require_auth
from docgate.api.errors import to_http_exception
from docgate.services.auth import AuthContext

router = APIRouter()


@router.get("/approvals/workflow", dependencies=[Depends(require_auth("viewer"))])
def approval_workflow(request: Request) -> dict:
    graph = request.app.state.approval_graph
    return {
        "stages": graph.describe(),
        "roles": [role.value for role in graph.roles()],
    }


@router.get("/proposals/{proposal_id}/approvals", dependencies=[Depends(require_auth("viewer"))])
def proposal_approvals(proposal_id: str, request: Request) -> dict:
    session = open_session(request)
    try:
        return request.app.state.approval_service.summary(session, proposal_id)
    except HTTPException:
        raise
    except Exception as exc:
        raise to_http_exception(exc, default_status=400) from exc
    finally:
        session.close()


@router.post("/proposals/{proposal_id}/approvals/{role}")
def approve_role(
    proposal_id: str,
    role: str,
    request: Request,
    auth_context: AuthContext = Depends(require_auth("approver")),
) -> dict:
    session = open_session(request)
    try:
        service = request.app.state.approval_service
        service.approve_role(session, proposal_id, role, auth_context.owner)
        return service.summary(session, proposal_id)
    except HTTPException:
        session.rollback()
        raise
    except Exception as exc:
        session.rollback()
        raise to_http_exception(exc, default_status=400) from exc
    finally:
        session.close()
