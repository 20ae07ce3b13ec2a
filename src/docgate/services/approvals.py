from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from docgate.models import Proposal, ProposalApproval, utcnow
from docgate.services.approval_graph import ApprovalRole, ApprovalStageGraph, ApprovalState, ApprovalStatus
from docgate.services.audit import AuditService
from docgate.services.errors import OrderBlocked
from docgate.services.locking import ProposalLocks, bump_state_version
from docgate.services.proposal_queries import get_proposal, require_open

logger = logging.getLogger(__name__)


class ApprovalService:
    def __init__(self, graph: ApprovalStageGraph, audit_service: AuditService, locks: ProposalLocks):
        self.graph = graph
        self.audit_service = audit_service
        self.locks = locks

    def seed(self, session: Session, proposal: Proposal) -> None:
        existing = {row.role for row in self._rows(session, proposal.id)}
        for role in self.graph.roles():
            if role.value not in existing:
                session.add(ProposalApproval(proposal_id=proposal.id, role=role.value, status=ApprovalStatus.PENDING.value))

    def state_for(self, session: Session, proposal: Proposal) -> ApprovalState:
        statuses: dict[ApprovalRole, ApprovalStatus] = {}
        for row in self._rows(session, proposal.id):
            try:
                role = ApprovalRole(row.role)
            except ValueError:
                logger.warning("Ignoring approval row for unknown role %r on proposal %s", row.role, proposal.id)
                continue
            statuses[role] = ApprovalStatus(row.status)
        return self.graph.state_from(statuses, version=int(proposal.state_version or 0))

    def approve_role(self, session: Session, proposal_id: str, role: str | ApprovalRole, actor: str) -> ApprovalState:
        parsed = ApprovalRole.parse(role)
        if parsed not in self.graph.roles():
            raise ValueError(f"role {parsed.value} is not part of the configured approval workflow")

        with self.locks.exclusive(session, proposal_id):
            proposal = require_open(get_proposal(session, proposal_id))
            state = self.state_for(session, proposal)
            try:
                new_state = self.graph.approve(state, parsed)
            except OrderBlocked as exc:
                logger.info(
                    "Approval of %s on proposal %s blocked by %s", parsed.value, proposal_id, ", ".join(exc.blocking_roles)
                )
                raise
            if new_state is state:
                return state

            row = session.scalar(
                select(ProposalApproval).where(
                    ProposalApproval.proposal_id == proposal_id, ProposalApproval.role == parsed.value
                )
            )
            if row is None:
                row = ProposalApproval(proposal_id=proposal_id, role=parsed.value)
                session.add(row)
            row.status = ApprovalStatus.APPROVED.value
            row.approved_by = actor
            row.approved_at = utcnow()
            if proposal.status == "DRAFT":
                proposal.status = "UNDER_REVIEW"

            self.audit_service.record(
                session,
                "proposal_approved",
                actor=actor,
                document_id=proposal.document_id,
                proposal_id=proposal_id,
                payload={"role": parsed.value, "stage": self.graph.stage_of(parsed).id},
            )
            version = bump_state_version(session, proposal)
        return self.graph.state_from(dict(new_state.statuses), version=version)

    def summary(self, session: Session, proposal_id: str) -> dict[str, Any]:
        proposal = get_proposal(session, proposal_id)
        state = self.state_for(session, proposal)
        rows = {row.role: row for row in self._rows(session, proposal_id)}
        stages = []
        for stage in self.graph.describe():
            stages.append(
                {
                    **stage,
                    "approvals": [
                        {
                            "role": role,
                            "status": state.status_of(ApprovalRole(role)).value,
                            "approvedBy": getattr(rows.get(role), "approved_by", None),
                            "approvedAt": getattr(rows.get(role), "approved_at", None),
                        }
                        for role in stage["roles"]
                    ],
                }
            )
        return {
            "proposalId": proposal_id,
            "approvals": state.as_dict(),
            "stages": stages,
            "allApproved": self.graph.all_approved(state),
            "remainingStages": self.graph.remaining_stages(state),
            "stateVersion": state.version,
        }

    def approvers(self, session: Session, proposal_id: str) -> list[str]:
        return [row.approved_by for row in self._rows(session, proposal_id) if row.approved_by]

    def _rows(self, session: Session, proposal_id: str) -> list[ProposalApproval]:
        return list(
            session.scalars(
                select(ProposalApproval).where(ProposalApproval.proposal_id == proposal_id).order_by(ProposalApproval.role)
            ).all()
        )
