from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from docgate.models import Proposal
from docgate.services.errors import ProposalClosed

CLOSED_STATUSES = {"MERGED"}


def get_proposal(session: Session, proposal_id: str, *, document_id: str | None = None) -> Proposal:
    proposal = session.scalar(select(Proposal).where(Proposal.id == proposal_id))
    if not proposal or (document_id is not None and proposal.document_id != document_id):
        raise LookupError(f"Proposal {proposal_id} not found")
    return proposal


def require_open(proposal: Proposal) -> Proposal:
    if proposal.status in CLOSED_STATUSES:
        raise ProposalClosed(proposal.id, proposal.status)
    return proposal
