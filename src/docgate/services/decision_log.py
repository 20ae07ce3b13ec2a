from __future__ import annotations

from typing import Any, Iterable

from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from docgate.models import DecisionLogEntry

OUTCOMES = ("ACCEPTED", "REJECTED", "DEFERRED")


def parse_outcome(value: str) -> str:
    outcome = str(value or "").strip().upper()
    if outcome not in OUTCOMES:
        raise ValueError(f"invalid decision outcome: {value}")
    return outcome


class DecisionLog:
    """Append-only ledger of proposal decisions. Rows are never updated or deleted."""

    def append(
        self,
        session: Session,
        *,
        document_id: str,
        proposal_id: str,
        outcome: str,
        rationale: str,
        decided_by: str,
        merged_ref: str | None = None,
        thread_id: str | None = None,
        participants: Iterable[str] = (),
    ) -> DecisionLogEntry:
        if not rationale.strip():
            raise ValueError("decision rationale must not be empty")
        entry = DecisionLogEntry(
            document_id=document_id,
            proposal_id=proposal_id,
            thread_id=thread_id,
            outcome=parse_outcome(outcome),
            rationale=rationale.strip(),
            decided_by=decided_by,
            merged_ref=merged_ref,
            participants=sorted({name for name in participants if name}),
        )
        session.add(entry)
        return entry

    def list_entries(
        self,
        session: Session,
        document_id: str,
        *,
        proposal_id: str | None = None,
        outcome: str | None = None,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        stmt = select(DecisionLogEntry).where(DecisionLogEntry.document_id == document_id)
        if proposal_id:
            stmt = stmt.where(DecisionLogEntry.proposal_id == proposal_id)
        if outcome:
            stmt = stmt.where(DecisionLogEntry.outcome == parse_outcome(outcome))
        rows = session.scalars(stmt.order_by(desc(DecisionLogEntry.decided_at), desc(DecisionLogEntry.id)).limit(limit)).all()
        return [
            {
                "id": row.id,
                "proposalId": row.proposal_id,
                "threadId": row.thread_id,
                "outcome": row.outcome,
                "rationale": row.rationale,
                "decidedBy": row.decided_by,
                "decidedAt": row.decided_at,
                "mergedRef": row.merged_ref,
                "participants": list(row.participants or []),
            }
            for row in rows
        ]
