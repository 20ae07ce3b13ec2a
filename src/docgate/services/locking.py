from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import select, update
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from docgate.models import Document, Proposal
from docgate.services.errors import BaselineMoved, ConcurrentModification

logger = logging.getLogger(__name__)


class ProposalLocks:
    """Per-proposal exclusive sections for read-guard-write sequences.

    Proposal ids are unique across documents, so one lock per proposal id is a
    lock per (document, proposal) pair. The section commits the session when
    the body succeeds and rolls it back otherwise, so no other writer can
    observe a guard that has been evaluated but not yet persisted.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def _lock_for(self, proposal_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(proposal_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[proposal_id] = lock
            return lock

    @contextmanager
    def exclusive(self, session: Session, proposal_id: str) -> Iterator[None]:
        lock = self._lock_for(proposal_id)
        with lock:
            try:
                yield
                session.commit()
            except Exception:
                session.rollback()
                raise


def bump_state_version(session: Session, proposal: Proposal) -> int:
    """Compare-and-swap the proposal's state version; losing the race raises ConcurrentModification."""
    expected = int(proposal.state_version or 0)
    result = session.execute(
        update(Proposal)
        .where(Proposal.id == proposal.id, Proposal.state_version == expected)
        .values(state_version=expected + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.info("State version race lost on proposal %s (expected=%s)", proposal.id, expected)
        raise ConcurrentModification(proposal.id, expected)
    set_committed_value(proposal, "state_version", expected + 1)
    return expected + 1


def advance_baseline(session: Session, document: Document, proposal: Proposal) -> str:
    """Move the document baseline from the proposal's base to its head.

    Proposal locks do not serialize merges of sibling proposals, so the
    baseline moves by compare-and-swap on ``documents.baseline_ref``.
    """
    result = session.execute(
        update(Document)
        .where(Document.id == document.id, Document.baseline_ref == proposal.base_ref)
        .values(baseline_ref=proposal.head_ref)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        current = session.scalar(select(Document.baseline_ref).where(Document.id == document.id))
        logger.info("Baseline race lost merging proposal %s (base=%s, current=%s)", proposal.id, proposal.base_ref, current)
        raise BaselineMoved(proposal.id, proposal.base_ref, current)
    set_committed_value(document, "baseline_ref", proposal.head_ref)
    return proposal.head_ref
