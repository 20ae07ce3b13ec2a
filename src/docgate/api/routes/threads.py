from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from docgate.api.deps import open_session, require_auth
from docgate.api.errors import to_http_exception
from docgate.schemas import ThreadCreateRequest, ThreadView
from docgate.services.auth import AuthContext
from docgate.services.proposal_queries import get_proposal

router = APIRouter()


@router.post("/proposals/{proposal_id}/threads", response_model=ThreadView)
def open_thread(
    proposal_id: str,
    payload: ThreadCreateRequest,
    request: Request,
    auth_context: AuthContext = Depends(require_auth("reviewer")),
) -> ThreadView:
    session = open_session(request)
    try:
        thread = request.app.state.proposal_service.open_thread(
            session,
            proposal_id,
            payload.title,
            anchor_node_id=payload.anchor_node_id,
            actor=auth_context.owner,
        )
        return ThreadView.model_validate(thread, from_attributes=True)
    except HTTPException:
        session.rollback()
        raise
    except Exception as exc:
        session.rollback()
        raise to_http_exception(exc, default_status=400) from exc
    finally:
        session.close()


def _set_thread_status(request: Request, proposal_id: str, thread_id: str, *, resolved: bool, actor: str) -> ThreadView:
    session = open_session(request)
    try:
        thread = request.app.state.proposal_service.set_thread_status(
            session, proposal_id, thread_id, resolved=resolved, actor=actor
        )
        return ThreadView.model_validate(thread, from_attributes=True)
    except HTTPException:
        session.rollback()
        raise
    except Exception as exc:
        session.rollback()
        raise to_http_exception(exc, default_status=400) from exc
    finally:
        session.close()


@router.post("/proposals/{proposal_id}/threads/{thread_id}/resolve", response_model=ThreadView)
def resolve_thread(
    proposal_id: str,
    thread_id: str,
    request: Request,
    auth_context: AuthContext = Depends(require_auth("reviewer")),
) -> ThreadView:
    return _set_thread_status(request, proposal_id, thread_id, resolved=True, actor=auth_context.owner)


@router.post("/proposals/{proposal_id}/threads/{thread_id}/reopen", response_model=ThreadView)
def reopen_thread(
    proposal_id: str,
    thread_id: str,
    request: Request,
    auth_context: AuthContext = Depends(require_auth("reviewer")),
) -> ThreadView:
    return _set_thread_status(request, proposal_id, thread_id, resolved=False, actor=auth_context.owner)


@router.get("/proposals/{proposal_id}/threads", dependencies=[Depends(require_auth("viewer"))])
def list_threads(proposal_id: str, request: Request, open_only: bool = Query(default=False)) -> dict:
    session = open_session(request)
    try:
        get_proposal(session, proposal_id)
        threads = request.app.state.thread_store.list_threads(session, proposal_id, open_only=open_only)
        return {
            "proposalId": proposal_id,
            "threads": [ThreadView.model_validate(thread, from_attributes=True).model_dump() for thread in threads],
        }
    except HTTPException:
        raise
    except Exception as exc:
        raise to_http_exception(exc, default_status=400) from exc
    finally:
        session.close()
