from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Sequence

from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from docgate.models import Proposal, Thread, utcnow
from docgate.services import merge_gate
from docgate.services.approvals import ApprovalService
from docgate.services.audit import AuditService
from docgate.services.compare import Comparison, ComparisonService
from docgate.services.decision_log import DecisionLog
from docgate.services.diff_types import Change
from docgate.services.document_tree import walk
from docgate.services.errors import BaselineMoved, MergeGateBlocked, StaleChange
from docgate.services.locking import ProposalLocks, advance_baseline, bump_state_version
from docgate.services.merge_gate import MergeDecision, MergeGatePolicy
from docgate.services.metrics import MetricsService
from docgate.services.proposal_queries import get_proposal, require_open
from docgate.services.review import ChangeReviewTracker, parse_review_state
from docgate.services.snapshots import SnapshotStore
from docgate.services.threads import ThreadStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MergeResult:
    proposal: Proposal
    decision: MergeDecision
    merged_ref: str


class ProposalService:
    def __init__(
        self,
        snapshot_store: SnapshotStore,
        comparison_service: ComparisonService,
        review_tracker: ChangeReviewTracker,
        approval_service: ApprovalService,
        thread_store: ThreadStore,
        audit_service: AuditService,
        locks: ProposalLocks,
        decision_log: DecisionLog,
        metrics: MetricsService | None = None,
    ):
        self.snapshot_store = snapshot_store
        self.comparison_service = comparison_service
        self.review_tracker = review_tracker
        self.approval_service = approval_service
        self.thread_store = thread_store
        self.audit_service = audit_service
        self.locks = locks
        self.decision_log = decision_log
        self.metrics = metrics

    def create_proposal(
        self,
        session: Session,
        document_id: str,
        title: str,
        head_ref: str,
        *,
        actor: str,
        base_ref: str | None = None,
    ) -> Proposal:
        document = self.snapshot_store.get_document(session, document_id)
        base = base_ref or document.baseline_ref
        if not base:
            raise ValueError(f"Document {document_id} has no baseline to propose against")
        self.snapshot_store.get_record(session, document_id, base)
        self.snapshot_store.get_record(session, document_id, head_ref)
        if not title.strip():
            raise ValueError("title must not be empty")

        proposal = Proposal(
            document_id=document_id,
            title=title.strip(),
            status="DRAFT",
            base_ref=base,
            head_ref=head_ref,
            state_version=0,
            created_by=actor,
        )
        session.add(proposal)
        session.flush()
        self.approval_service.seed(session, proposal)
        return proposal

    def list_proposals(self, session: Session, document_id: str) -> list[Proposal]:
        self.snapshot_store.get_document(session, document_id)
        return list(
            session.scalars(select(Proposal).where(Proposal.document_id == document_id).order_by(desc(Proposal.created_at))).all()
        )

    def update_head(self, session: Session, proposal_id: str, head_ref: str, *, actor: str) -> Proposal:
        with self.locks.exclusive(session, proposal_id):
            proposal = require_open(get_proposal(session, proposal_id))
            self.snapshot_store.get_record(session, proposal.document_id, head_ref)
            if proposal.head_ref != head_ref:
                logger.info("Proposal %s head moved %s -> %s by %s", proposal_id, proposal.head_ref, head_ref, actor)
                proposal.head_ref = head_ref
                self._orphan_threads(session, proposal, actor=actor)
                bump_state_version(session, proposal)
        return proposal

    def compare(
        self,
        session: Session,
        document_id: str,
        from_ref: str,
        to_ref: str,
        proposal_id: str | None = None,
    ) -> dict[str, Any]:
        comparison = self.comparison_service.compare(session, document_id, from_ref, to_ref)
        changes = comparison.changes
        if proposal_id:
            get_proposal(session, proposal_id, document_id=document_id)
            changes = self.review_tracker.attach(session, proposal_id, changes)
        return {
            "documentId": document_id,
            "from": from_ref,
            "to": to_ref,
            "proposalId": proposal_id,
            "changedFields": comparison.changed_fields,
            "changes": [change.to_payload() for change in changes],
        }

    def current_changes(self, session: Session, proposal: Proposal) -> tuple[Comparison, list[Change]]:
        comparison = self.comparison_service.compare(session, proposal.document_id, proposal.base_ref, proposal.head_ref)
        return comparison, self.review_tracker.attach(session, proposal.id, comparison.changes)

    def evaluate_gate(self, session: Session, proposal_id: str, policy: MergeGatePolicy) -> MergeDecision:
        with self.locks.exclusive(session, proposal_id):
            proposal = get_proposal(session, proposal_id)
            return self._evaluate_locked(session, proposal, policy)

    def merge(
        self,
        session: Session,
        proposal_id: str,
        policy: MergeGatePolicy,
        *,
        actor: str,
        change_states: Sequence[dict[str, Any]] | None = None,
    ) -> MergeResult:
        with self.locks.exclusive(session, proposal_id):
            proposal = require_open(get_proposal(session, proposal_id))
            decision = self._evaluate_locked(session, proposal, policy, change_states=change_states)
            if not decision.allowed:
                logger.info(
                    "Merge of proposal %s blocked: approvals=%s threads=%s changes=%s",
                    proposal_id,
                    decision.pending_approvals,
                    decision.open_threads,
                    decision.change_blockers,
                )
                raise MergeGateBlocked(decision.details())

            document = self.snapshot_store.get_document(session, proposal.document_id)
            if document.baseline_ref != proposal.base_ref:
                raise BaselineMoved(proposal_id, proposal.base_ref, document.baseline_ref)

            advance_baseline(session, document, proposal)
            proposal.status = "MERGED"
            proposal.merged_by = actor
            proposal.merged_at = utcnow()
            self.audit_service.record(
                session,
                "proposal_merged",
                actor=actor,
                document_id=proposal.document_id,
                proposal_id=proposal_id,
                payload={
                    "baseRef": proposal.base_ref,
                    "mergedRef": proposal.head_ref,
                    "policy": policy.as_dict(),
                    "stateVersion": decision.state_version,
                },
            )
            self.decision_log.append(
                session,
                document_id=proposal.document_id,
                proposal_id=proposal_id,
                outcome="ACCEPTED",
                rationale="Proposal merged after the merge gate passed.",
                decided_by=actor,
                merged_ref=proposal.head_ref,
                participants=[actor, *self.approval_service.approvers(session, proposal_id)],
            )
            bump_state_version(session, proposal)
            logger.info("Merged proposal %s into document %s at %s", proposal_id, proposal.document_id, proposal.head_ref)
        return MergeResult(proposal=proposal, decision=decision, merged_ref=proposal.head_ref)

    def open_thread(
        self,
        session: Session,
        proposal_id: str,
        title: str,
        *,
        anchor_node_id: str | None,
        actor: str,
    ) -> Thread:
        with self.locks.exclusive(session, proposal_id):
            proposal = require_open(get_proposal(session, proposal_id))
            thread = self.thread_store.open_thread(session, proposal_id, title, anchor_node_id=anchor_node_id, actor=actor)
            bump_state_version(session, proposal)
        return thread

    def set_thread_status(self, session: Session, proposal_id: str, thread_id: str, *, resolved: bool, actor: str) -> Thread:
        with self.locks.exclusive(session, proposal_id):
            proposal = get_proposal(session, proposal_id)
            if resolved:
                thread = self.thread_store.resolve_thread(session, proposal_id, thread_id, actor=actor)
            else:
                thread = self.thread_store.reopen_thread(session, proposal_id, thread_id)
            self.audit_service.record(
                session,
                "thread_resolved" if resolved else "thread_reopened",
                actor=actor,
                document_id=proposal.document_id,
                proposal_id=proposal_id,
                thread_id=thread_id,
            )
            bump_state_version(session, proposal)
        return thread

    def _orphan_threads(self, session: Session, proposal: Proposal, *, actor: str) -> None:
        head = self.snapshot_store.load(session, proposal.document_id, proposal.head_ref)
        node_ids = [visit.node.id for visit in walk(head.root)]
        for thread in self.thread_store.orphan_missing_anchors(session, proposal.id, node_ids):
            logger.info("Thread %s on proposal %s orphaned: %s", thread.id, proposal.id, thread.orphaned_reason)
            self.audit_service.record(
                session,
                "thread_orphaned",
                actor=actor,
                document_id=proposal.document_id,
                proposal_id=proposal.id,
                thread_id=thread.id,
                payload={"reason": thread.orphaned_reason, "anchorNodeId": thread.anchor_node_id, "headRef": proposal.head_ref},
            )

    def _evaluate_locked(
        self,
        session: Session,
        proposal: Proposal,
        policy: MergeGatePolicy,
        *,
        change_states: Sequence[dict[str, Any]] | None = None,
    ) -> MergeDecision:
        state_version = int(proposal.state_version or 0)
        approval_state = self.approval_service.state_for(session, proposal)
        open_threads = self.thread_store.open_threads(session, proposal.id)
        _, changes = self.current_changes(session, proposal)
        if change_states is not None:
            self._check_declared_states(proposal, changes, change_states)

        decision = merge_gate.evaluate(
            approval_state,
            len(open_threads),
            changes,
            policy,
            open_threads=open_threads,
            state_version=state_version,
        )
        if self.metrics is not None:
            self.metrics.inc("merge_gate.allowed" if decision.allowed else "merge_gate.blocked")
        return decision

    def _check_declared_states(
        self,
        proposal: Proposal,
        changes: Sequence[Change],
        change_states: Sequence[dict[str, Any]],
    ) -> None:
        """The caller's view of review states must match what is persisted."""
        by_id = {change.id: change for change in changes}
        for entry in change_states:
            change_id = str(entry.get("id") or entry.get("changeId") or "").strip()
            if not change_id:
                raise ValueError("changeStates entries require an id")
            declared = parse_review_state(entry.get("reviewState") or "pending")
            change = by_id.get(change_id)
            if change is None or change.review_state is not declared:
                raise StaleChange(
                    change_id,
                    from_ref=proposal.base_ref,
                    to_ref=proposal.head_ref,
                    latest_from_ref=proposal.base_ref,
                    latest_to_ref=proposal.head_ref,
                )
