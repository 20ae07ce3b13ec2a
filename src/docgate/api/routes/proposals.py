from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from docgate.api.deps import open_session, require_auth
from docgate.api.errors import to_http_exception
from docgate.schemas import ProposalCreateRequest, ProposalHeadRequest, ProposalView, ReviewStateRequest
from docgate.services.auth import AuthContext
from docgate.services.proposal_queries import get_proposal
from docgate.services.review import ReviewContext

router = APIRouter()


@router.post("/documents/{document_id}/proposals", response_model=ProposalView)
def create_proposal(
    document_id: str,
    payload: ProposalCreateRequest,
    request: Request,
    auth_context: AuthContext = Depends(require_auth("reviewer")),
) -> ProposalView:
    session = open_session(request)
    try:
        proposal = request.app.state.proposal_service.create_proposal(
            session,
            document_id,
            payload.title,
            payload.head_ref,
            actor=auth_context.owner,
            base_ref=payload.base_ref,
        )
        session.commit()
        return ProposalView.model_validate(proposal, from_attributes=True)
    except HTTPException:
        session.rollback()
        raise
    except Exception as exc:
        session.rollback()
        raise to_http_exception(exc, default_status=400) from exc
    finally:
        session.close()


@router.get("/documents/{document_id}/proposals", dependencies=[Depends(require_auth("viewer"))])
def list_proposals(document_id: str, request: Request) -> dict:
    session = open_session(request)
    try:
        proposals = request.app.state.proposal_service.list_proposals(session, document_id)
        return {
            "documentId": document_id,
            "proposals": [ProposalView.model_validate(row, from_attributes=True).model_dump() for row in proposals],
        }
    except HTTPException:
        raise
    except Exception as exc:
        raise to_http_exception(exc, default_status=400) from exc
    finally:
        session.close()


@router.get("/proposals/{proposal_id}", response_model=ProposalView, dependencies=[Depends(require_auth("viewer"))])
def get_proposal_view(proposal_id: str, request: Request) -> ProposalView:
    session = open_session(request)
    try:
        return ProposalView.model_validate(get_proposal(session, proposal_id), from_attributes=True)
    except HTTPException:
        raise
    except Exception as exc:
        raise to_http_exception(exc, default_status=400) from exc
    finally:
        session.close()


@router.post("/proposals/{proposal_id}/head", response_model=ProposalView)
def update_proposal_head(
    proposal_id: str,
    payload: ProposalHeadRequest,
    request: Request,
    auth_context: AuthContext = Depends(require_auth("reviewer")),
) -> ProposalView:
    session = open_session(request)
    try:
        proposal = request.app.state.proposal_service.update_head(
            session, proposal_id, payload.head_ref, actor=auth_context.owner
        )
        return ProposalView.model_validate(proposal, from_attributes=True)
    except HTTPException:
        session.rollback()
        raise
    except Exception as exc:
        session.rollback()
        raise to_http_exception(exc, default_status=400) from exc
    finally:
        session.close()


@router.post("/proposals/{proposal_id}/changes/{change_id}/review-state")
def set_change_review_state(
    proposal_id: str,
    change_id: str,
    payload: ReviewStateRequest,
    request: Request,
    auth_context: AuthContext = Depends(require_auth("reviewer")),
) -> dict:
    session = open_session(request)
    try:
        change = request.app.state.review_tracker.set_review_state(
            session,
            proposal_id,
            change_id,
            payload.state,
            ReviewContext(
                from_ref=payload.from_ref,
                to_ref=payload.to_ref,
                actor=auth_context.owner,
                rationale=payload.rejected_rationale,
            ),
        )
        return {"proposalId": proposal_id, "change": change.to_payload()}
    except HTTPException:
        session.rollback()
        raise
    except Exception as exc:
        session.rollback()
        raise to_http_exception(exc, default_status=400) from exc
    finally:
        session.close()


@router.get("/proposals/{proposal_id}/changes/review-states", dependencies=[Depends(require_auth("viewer"))])
def list_change_review_states(
    proposal_id: str,
    request: Request,
    from_ref: str | None = Query(default=None),
    to_ref: str | None = Query(default=None),
) -> dict:
    session = open_session(request)
    try:
        items = request.app.state.review_tracker.list_review_states(session, proposal_id, from_ref, to_ref)
        return {"proposalId": proposal_id, "reviewStates": items}
    except HTTPException:
        raise
    except Exception as exc:
        raise to_http_exception(exc, default_status=400) from exc
    finally:
        session.close()


@router.get("/proposals/{proposal_id}/audit-events", dependencies=[Depends(require_auth("viewer"))])
def list_audit_events(proposal_id: str, request: Request, limit: int = Query(default=100, ge=1, le=1000)) -> dict:
    session = open_session(request)
    try:
        get_proposal(session, proposal_id)
        return {"proposalId": proposal_id, "events": request.app.state.audit_service.list_events(session, proposal_id, limit)}
    except HTTPException:
        raise
    except Exception as exc:
        raise to_http_exception(exc, default_status=400) from exc
    finally:
        session.close()
