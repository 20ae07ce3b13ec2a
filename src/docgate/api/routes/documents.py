from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import desc, select

from docgate.api.deps import open_session, require_auth
from docgate.api.errors import to_http_exception
from docgate.models import Document
from docgate.schemas import (
    DocumentCreateRequest,
    DocumentCreateResponse,
    DocumentView,
    SnapshotCreateRequest,
    SnapshotView,
)
from docgate.services.auth import AuthContext

router = APIRouter()


def _snapshot_view(record, *, include_content: bool = False) -> SnapshotView:
    return SnapshotView(
        document_id=record.document_id,
        ref=record.ref,
        parent_ref=record.parent_ref,
        author=record.author,
        message=record.message,
        created_at=record.created_at,
        content=record.content if include_content else None,
    )


@router.post("/documents", response_model=DocumentCreateResponse)
def create_document(
    payload: DocumentCreateRequest,
    request: Request,
    auth_context: AuthContext = Depends(require_auth("reviewer")),
) -> DocumentCreateResponse:
    session = open_session(request)
    try:
        document, record = request.app.state.snapshot_store.create_document(
            session, payload.title, payload.content, actor=auth_context.owner
        )
        session.commit()
        return DocumentCreateResponse(
            document=DocumentView.model_validate(document, from_attributes=True),
            snapshot=_snapshot_view(record),
        )
    except HTTPException:
        session.rollback()
        raise
    except Exception as exc:
        session.rollback()
        raise to_http_exception(exc, default_status=400) from exc
    finally:
        session.close()


@router.get("/documents", dependencies=[Depends(require_auth("viewer"))])
def list_documents(request: Request, limit: int = Query(default=100, ge=1, le=500)) -> dict:
    session = open_session(request)
    try:
        rows = session.scalars(select(Document).order_by(desc(Document.created_at)).limit(limit)).all()
        return {"documents": [DocumentView.model_validate(row, from_attributes=True).model_dump() for row in rows]}
    finally:
        session.close()


@router.post("/documents/{document_id}/snapshots", response_model=SnapshotView)
def create_snapshot(
    document_id: str,
    payload: SnapshotCreateRequest,
    request: Request,
    auth_context: AuthContext = Depends(require_auth("reviewer")),
) -> SnapshotView:
    session = open_session(request)
    try:
        record = request.app.state.snapshot_store.save_snapshot(
            session,
            document_id,
            payload.content,
            author=auth_context.owner,
            parent_ref=payload.parent_ref,
            message=payload.message,
            ref=payload.ref,
        )
        session.commit()
        return _snapshot_view(record)
    except HTTPException:
        session.rollback()
        raise
    except Exception as exc:
        session.rollback()
        raise to_http_exception(exc, default_status=400) from exc
    finally:
        session.close()


@router.get("/documents/{document_id}/snapshots", dependencies=[Depends(require_auth("viewer"))])
def list_snapshots(document_id: str, request: Request, limit: int = Query(default=100, ge=1, le=500)) -> dict:
    session = open_session(request)
    try:
        records = request.app.state.snapshot_store.list_snapshots(session, document_id, limit=limit)
        return {"documentId": document_id, "snapshots": [_snapshot_view(record).model_dump() for record in records]}
    except HTTPException:
        raise
    except Exception as exc:
        raise to_http_exception(exc, default_status=400) from exc
    finally:
        session.close()


@router.get(
    "/documents/{document_id}/snapshots/{ref}",
    response_model=SnapshotView,
    dependencies=[Depends(require_auth("viewer"))],
)
def get_snapshot(document_id: str, ref: str, request: Request) -> SnapshotView:
    session = open_session(request)
    try:
        record = request.app.state.snapshot_store.get_record(session, document_id, ref)
        return _snapshot_view(record, include_content=True)
    except HTTPException:
        raise
    except Exception as exc:
        raise to_http_exception(exc, default_status=400) from exc
    finally:
        session.close()


@router.get("/documents/{document_id}/compare", dependencies=[Depends(require_auth("viewer"))])
def compare_snapshots(
    document_id: str,
    request: Request,
    from_ref: str = Query(...),
    to_ref: str = Query(...),
    proposal_id: str | None = Query(default=None),
) -> dict:
    session = open_session(request)
    try:
        return request.app.state.proposal_service.compare(session, document_id, from_ref, to_ref, proposal_id)
    except HTTPException:
        raise
    except Exception as exc:
        raise to_http_exception(exc, default_status=400) from exc
    finally:
        session.close()


@router.get("/documents/{document_id}/decision-log", dependencies=[Depends(require_auth("viewer"))])
def decision_log(
    document_id: str,
    request: Request,
    proposal_id: str | None = Query(default=None),
    outcome: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
) -> dict:
    session = open_session(request)
    try:
        request.app.state.snapshot_store.get_document(session, document_id)
        items = request.app.state.decision_log.list_entries(
            session, document_id, proposal_id=proposal_id, outcome=outcome, limit=limit
        )
        return {"documentId": document_id, "items": items}
    except HTTPException:
        raise
    except Exception as exc:
        raise to_http_exception(exc, default_status=400) from exc
    finally:
        session.close()
