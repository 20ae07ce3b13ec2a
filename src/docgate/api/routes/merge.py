from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from docgate.api.deps import open_session, require_auth
from docgate.api.errors import to_http_exception
from docgate.schemas import MergePolicyRequest, MergeRequest, MergeResponse, ProposalView
from docgate.services.auth import AuthContext
from docgate.services.merge_gate import MergeGatePolicy

router = APIRouter()


def _policy(request: Request, payload: MergePolicyRequest | None) -> MergeGatePolicy:
    settings = request.app.state.settings
    allow_deferred = payload.allow_merge_with_deferred_changes if payload else None
    ignore_format = payload.ignore_format_only_changes_for_gate if payload else None
    return MergeGatePolicy(
        allow_merge_with_deferred_changes=(
            settings.default_allow_merge_with_deferred_changes if allow_deferred is None else allow_deferred
        ),
        ignore_format_only_changes_for_gate=(
            settings.default_ignore_format_only_changes_for_gate if ignore_format is None else ignore_format
        ),
    )


@router.post("/proposals/{proposal_id}/merge-gate", dependencies=[Depends(require_auth("viewer"))])
def preview_merge_gate(proposal_id: str, request: Request, payload: MergePolicyRequest | None = None) -> dict:
    session = open_session(request)
    try:
        decision = request.app.state.proposal_service.evaluate_gate(session, proposal_id, _policy(request, payload))
        return {"proposalId": proposal_id, **decision.details()}
    except HTTPException:
        session.rollback()
        raise
    except Exception as exc:
        session.rollback()
        raise to_http_exception(exc, default_status=400) from exc
    finally:
        session.close()


@router.post("/proposals/{proposal_id}/merge", response_model=MergeResponse)
def merge_proposal(
    proposal_id: str,
    request: Request,
    payload: MergeRequest | None = None,
    auth_context: AuthContext = Depends(require_auth("approver")),
) -> MergeResponse:
    session = open_session(request)
    try:
        change_states = None
        if payload is not None and payload.change_states is not None:
            change_states = [{"id": item.id, "reviewState": item.review_state} for item in payload.change_states]
        result = request.app.state.proposal_service.merge(
            session,
            proposal_id,
            _policy(request, payload),
            actor=auth_context.owner,
            change_states=change_states,
        )
        return MergeResponse(
            proposal=ProposalView.model_validate(result.proposal, from_attributes=True),
            merged_ref=result.merged_ref,
            gate=result.decision.details(),
        )
    except HTTPException:
        session.rollback()
        raise
    except Exception as exc:
        session.rollback()
        raise to_http_exception(exc, default_status=400) from exc
    finally:
        session.close()
