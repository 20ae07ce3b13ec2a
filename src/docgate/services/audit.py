from __future__ import annotations

from typing import Any

from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from docgate.models import AuditEvent

EVENT_TYPES = {
    "change_accepted",
    "change_rejected",
    "change_deferred",
    "change_reopened",
    "thread_resolved",
    "thread_reopened",
    "thread_orphaned",
    "proposal_approved",
    "proposal_merged",
}


class AuditService:
    def record(
        self,
        session: Session,
        event_type: str,
        *,
        actor: str,
        document_id: str,
        proposal_id: str | None = None,
        change_id: str | None = None,
        thread_id: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unsupported audit event type: {event_type}")
        event = AuditEvent(
            event_type=event_type,
            actor=actor or "system",
            document_id=document_id,
            proposal_id=proposal_id,
            change_id=change_id,
            thread_id=thread_id,
            payload=dict(payload or {}),
        )
        session.add(event)
        return event

    def list_events(self, session: Session, proposal_id: str, limit: int = 100) -> list[dict[str, Any]]:
        rows = session.scalars(
            select(AuditEvent)
            .where(AuditEvent.proposal_id == proposal_id)
            .order_by(desc(AuditEvent.created_at), desc(AuditEvent.id))
            .limit(limit)
        ).all()
        events = []
        for row in rows:
            item = {
                "id": row.id,
                "eventType": row.event_type,
                "actor": row.actor,
                "documentId": row.document_id,
                "proposalId": row.proposal_id,
                "payload": row.payload,
                "createdAt": row.created_at,
            }
            if row.change_id:
                item["changeId"] = row.change_id
            if row.thread_id:
                item["threadId"] = row.thread_id
            events.append(item)
        return events
