from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from docgate.models import ChangeReviewRecord, utcnow
from docgate.services.audit import AuditService
from docgate.services.compare import ComparisonService
from docgate.services.diff_types import Change, ReviewState
from docgate.services.errors import StaleChange
from docgate.services.locking import ProposalLocks, bump_state_version
from docgate.services.proposal_queries import get_proposal, require_open
from docgate.services.threads import ThreadStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReviewContext:
    from_ref: str
    to_ref: str
    actor: str
    rationale: str | None = None


def parse_review_state(value: str | ReviewState) -> ReviewState:
    if isinstance(value, ReviewState):
        return value
    try:
        return ReviewState(str(value).strip().lower())
    except ValueError as exc:
        raise ValueError(f"invalid review state: {value}") from exc


class ChangeReviewTracker:
    """Reviewer dispositions per change, kept apart from the derived diff.

    Dispositions are keyed by change id, which is stable for a
    (node, from_ref, to_ref) triple, so recomputing the same comparison
    re-attaches them.
    """

    def __init__(
        self,
        comparison_service: ComparisonService,
        thread_store: ThreadStore,
        audit_service: AuditService,
        locks: ProposalLocks,
    ):
        self.comparison_service = comparison_service
        self.thread_store = thread_store
        self.audit_service = audit_service
        self.locks = locks

    def get_review_state(self, session: Session, proposal_id: str, change_id: str) -> ReviewState:
        record = self._record(session, proposal_id, change_id)
        return ReviewState(record.review_state) if record else ReviewState.PENDING

    def records(self, session: Session, proposal_id: str, from_ref: str | None = None, to_ref: str | None = None) -> list[ChangeReviewRecord]:
        stmt = select(ChangeReviewRecord).where(ChangeReviewRecord.proposal_id == proposal_id)
        if from_ref:
            stmt = stmt.where(ChangeReviewRecord.from_ref == from_ref)
        if to_ref:
            stmt = stmt.where(ChangeReviewRecord.to_ref == to_ref)
        return list(session.scalars(stmt.order_by(ChangeReviewRecord.id)).all())

    def attach(self, session: Session, proposal_id: str, changes: Sequence[Change]) -> list[Change]:
        """Overlay persisted dispositions and anchored thread ids onto freshly computed changes."""
        states = {record.change_id: record.review_state for record in self.records(session, proposal_id)}
        thread_ids = self.thread_store.thread_ids_by_node(session, proposal_id)
        open_ids = {thread.id for thread in self.thread_store.open_threads(session, proposal_id)}
        attached = []
        for change in changes:
            anchored = frozenset(thread_ids.get(change.anchor.node_id, set()))
            attached.append(
                replace(
                    change,
                    review_state=ReviewState(states.get(change.id, ReviewState.PENDING.value)),
                    thread_ids=anchored,
                    blockers=frozenset(f"thread:{thread_id}" for thread_id in anchored if thread_id in open_ids),
                )
            )
        return attached

    def set_review_state(
        self,
        session: Session,
        proposal_id: str,
        change_id: str,
        new_state: str | ReviewState,
        context: ReviewContext,
        *,
        document_id: str | None = None,
    ) -> Change:
        state = parse_review_state(new_state)
        rationale = (context.rationale or "").strip()
        if state is ReviewState.REJECTED and not rationale:
            raise ValueError("rejected_rationale is required when rejecting a change")

        with self.locks.exclusive(session, proposal_id):
            proposal = require_open(get_proposal(session, proposal_id, document_id=document_id))
            latest = (proposal.base_ref, proposal.head_ref)
            if (context.from_ref, context.to_ref) != latest:
                logger.info(
                    "Stale review write for change %s on proposal %s (refs %s..%s, latest %s..%s)",
                    change_id,
                    proposal_id,
                    context.from_ref,
                    context.to_ref,
                    *latest,
                )
                raise StaleChange(
                    change_id,
                    from_ref=context.from_ref,
                    to_ref=context.to_ref,
                    latest_from_ref=proposal.base_ref,
                    latest_to_ref=proposal.head_ref,
                )

            comparison = self.comparison_service.compare(session, proposal.document_id, *latest)
            change = next((item for item in comparison.changes if item.id == change_id), None)
            if change is None:
                raise StaleChange(
                    change_id,
                    from_ref=context.from_ref,
                    to_ref=context.to_ref,
                    latest_from_ref=proposal.base_ref,
                    latest_to_ref=proposal.head_ref,
                )

            record = self._record(session, proposal_id, change_id)
            previous_state = ReviewState(record.review_state) if record else ReviewState.PENDING
            if record is None:
                record = ChangeReviewRecord(
                    change_id=change_id,
                    proposal_id=proposal_id,
                    document_id=proposal.document_id,
                    anchor_node_id=change.anchor.node_id,
                    from_ref=context.from_ref,
                    to_ref=context.to_ref,
                )
                session.add(record)
            record.review_state = state.value
            record.rejected_rationale = rationale if state is ReviewState.REJECTED else None
            record.reviewed_by = context.actor
            record.reviewed_at = utcnow()

            event_type = "change_reopened" if state is ReviewState.PENDING else f"change_{state.value}"
            self.audit_service.record(
                session,
                event_type,
                actor=context.actor,
                document_id=proposal.document_id,
                proposal_id=proposal_id,
                change_id=change_id,
                payload={
                    "previousState": previous_state.value,
                    "newState": state.value,
                    "rejectedRationale": rationale or None,
                    "fromRef": context.from_ref,
                    "toRef": context.to_ref,
                },
            )
            bump_state_version(session, proposal)
            session.flush()
            updated = self.attach(session, proposal_id, [change])[0]
        return updated

    def list_review_states(
        self,
        session: Session,
        proposal_id: str,
        from_ref: str | None = None,
        to_ref: str | None = None,
    ) -> list[dict[str, Any]]:
        get_proposal(session, proposal_id)
        items = []
        for record in self.records(session, proposal_id, from_ref, to_ref):
            item: dict[str, Any] = {
                "changeId": record.change_id,
                "reviewState": record.review_state,
                "anchorNodeId": record.anchor_node_id,
                "reviewedBy": record.reviewed_by,
                "reviewedAt": record.reviewed_at,
                "fromRef": record.from_ref,
                "toRef": record.to_ref,
            }
            if record.rejected_rationale:
                item["rejectedRationale"] = record.rejected_rationale
            items.append(item)
        return items

    def _record(self, session: Session, proposal_id: str, change_id: str) -> ChangeReviewRecord | None:
        return session.scalar(
            select(ChangeReviewRecord).where(
                ChangeReviewRecord.proposal_id == proposal_id,
                ChangeReviewRecord.change_id == change_id,
            )
        )
