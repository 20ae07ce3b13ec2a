from __future__ import annotations

from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from docgate.models import Thread, utcnow
from docgate.services.merge_gate import OpenThread

OPEN = "OPEN"
RESOLVED = "RESOLVED"
ORPHANED = "ORPHANED"


class ThreadStore:
    """Minimal discussion-thread store: the gate only needs status and anchors."""

    def open_thread(
        self,
        session: Session,
        proposal_id: str,
        title: str,
        *,
        anchor_node_id: str | None = None,
        actor: str | None = None,
    ) -> Thread:
        if not title.strip():
            raise ValueError("title must not be empty")
        thread = Thread(
            proposal_id=proposal_id,
            title=title.strip(),
            anchor_node_id=anchor_node_id,
            status=OPEN,
            created_by=actor,
        )
        session.add(thread)
        session.flush()
        return thread

    def get_thread(self, session: Session, proposal_id: str, thread_id: str) -> Thread:
        thread = session.scalar(select(Thread).where(Thread.id == thread_id, Thread.proposal_id == proposal_id))
        if not thread:
            raise LookupError(f"Thread {thread_id} not found")
        return thread

    def resolve_thread(self, session: Session, proposal_id: str, thread_id: str, *, actor: str | None = None) -> Thread:
        thread = self.get_thread(session, proposal_id, thread_id)
        if thread.status != RESOLVED:
            thread.status = RESOLVED
            thread.resolved_by = actor
            thread.resolved_at = utcnow()
        return thread

    def reopen_thread(self, session: Session, proposal_id: str, thread_id: str) -> Thread:
        thread = self.get_thread(session, proposal_id, thread_id)
        if thread.status == ORPHANED:
            raise ValueError(f"Thread {thread_id} is orphaned; its anchor node {thread.anchor_node_id} no longer exists")
        thread.status = OPEN
        thread.resolved_by = None
        thread.resolved_at = None
        return thread

    def orphan_missing_anchors(self, session: Session, proposal_id: str, node_ids: Iterable[str]) -> list[Thread]:
        """Move open threads whose anchor node is gone to ORPHANED and return them."""
        present = set(node_ids)
        orphaned = []
        for thread in self.list_threads(session, proposal_id, open_only=True):
            if thread.anchor_node_id and thread.anchor_node_id not in present:
                thread.status = ORPHANED
                thread.orphaned_reason = f"Anchor node '{thread.anchor_node_id}' was removed from the document"
                thread.orphaned_at = utcnow()
                orphaned.append(thread)
        return orphaned

    def list_threads(self, session: Session, proposal_id: str, *, open_only: bool = False) -> list[Thread]:
        stmt = select(Thread).where(Thread.proposal_id == proposal_id)
        if open_only:
            stmt = stmt.where(Thread.status == OPEN)
        return list(session.scalars(stmt.order_by(Thread.created_at, Thread.id)).all())

    def open_threads(self, session: Session, proposal_id: str) -> list[OpenThread]:
        return [
            OpenThread(id=thread.id, anchor_node_id=thread.anchor_node_id)
            for thread in self.list_threads(session, proposal_id, open_only=True)
        ]

    def thread_ids_by_node(self, session: Session, proposal_id: str) -> dict[str, set[str]]:
        by_node: dict[str, set[str]] = {}
        for thread in self.list_threads(session, proposal_id):
            if thread.anchor_node_id:
                by_node.setdefault(thread.anchor_node_id, set()).add(thread.id)
        return by_node
