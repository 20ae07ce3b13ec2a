from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy import update

from docgate.db import DBManager
from docgate.models import Base, Document, Proposal
from docgate.services.audit import AuditService
from docgate.services.decision_log import DecisionLog
from docgate.services.errors import BaselineMoved, ConcurrentModification
from docgate.services.locking import ProposalLocks, advance_baseline, bump_state_version
from docgate.services.metrics import MetricsService
from docgate.services.snapshots import SnapshotStore


@pytest.fixture
def db(tmp_path: Path) -> DBManager:
    manager = DBManager(f"sqlite:///{tmp_path / 'services.db'}")
    manager.create_all(Base.metadata)
    return manager


@pytest.fixture
def proposal_id(db: DBManager, sample_docs) -> str:
    store = SnapshotStore()
    with db.session_scope() as session:
        document, record = store.create_document(session, "Policy", sample_docs["base"], actor="alice")
        proposal = Proposal(document_id=document.id, title="p", base_ref=record.ref, head_ref=record.ref)
        session.add(proposal)
        session.flush()
        return proposal.id


def test_snapshot_save_is_idempotent(db: DBManager, sample_docs):
    store = SnapshotStore()
    with db.session_scope() as session:
        document, first = store.create_document(session, "Policy", sample_docs["base"], actor="alice")
        second = store.save_snapshot(session, document.id, sample_docs["head"], parent_ref=first.ref)
        again = store.save_snapshot(session, document.id, sample_docs["head"], parent_ref=first.ref)

        assert again.id == second.id
        assert len(store.list_snapshots(session, document.id)) == 2
        assert store.load(session, document.id, second.ref).root.id == "doc"


def test_state_version_compare_and_swap(db: DBManager, proposal_id: str):
    session = db.session()
    try:
        proposal = session.get(Proposal, proposal_id)
        assert bump_state_version(session, proposal) == 1
        session.commit()

        # Another writer advances the version behind this session's back.
        session.execute(
            update(Proposal)
            .where(Proposal.id == proposal_id)
            .values(state_version=5)
            .execution_options(synchronize_session=False)
        )
        session.commit()

        with pytest.raises(ConcurrentModification) as exc_info:
            bump_state_version(session, proposal)
        assert exc_info.value.details == {"proposalId": proposal_id, "expectedVersion": 1}
    finally:
        session.close()


def test_exclusive_section_rolls_back_on_failure(db: DBManager, proposal_id: str):
    locks = ProposalLocks()
    session = db.session()
    try:
        proposal = session.get(Proposal, proposal_id)
        with pytest.raises(RuntimeError):
            with locks.exclusive(session, proposal_id):
                proposal.title = "changed"
                session.flush()
                raise RuntimeError("boom")
        assert session.get(Proposal, proposal_id).title == "p"
    finally:
        session.close()


def test_audit_rejects_unknown_event_type(db: DBManager):
    with db.session_scope() as session:
        with pytest.raises(ValueError):
            AuditService().record(session, "proposal_deleted", actor="alice", document_id="doc")


def test_baseline_advances_only_from_the_proposal_base(db: DBManager, proposal_id: str):
    session = db.session()
    try:
        proposal = session.get(Proposal, proposal_id)
        document = session.get(Document, proposal.document_id)
        proposal.head_ref = "next"
        assert advance_baseline(session, document, proposal) == "next"
        session.commit()
        assert document.baseline_ref == "next"

        # A sibling proposal opened on the old base loses.
        sibling = Proposal(document_id=document.id, title="q", base_ref=proposal.base_ref, head_ref="other")
        session.add(sibling)
        session.flush()
        with pytest.raises(BaselineMoved) as exc_info:
            advance_baseline(session, document, sibling)
        assert exc_info.value.details == {"baseRef": proposal.base_ref, "baselineRef": "next"}
    finally:
        session.close()


def test_decision_log_requires_known_outcome_and_rationale(db: DBManager, proposal_id: str):
    log = DecisionLog()
    with db.session_scope() as session:
        proposal = session.get(Proposal, proposal_id)
        with pytest.raises(ValueError):
            log.append(session, document_id=proposal.document_id, proposal_id=proposal_id, outcome="MAYBE", rationale="x", decided_by="alice")
        with pytest.raises(ValueError):
            log.append(session, document_id=proposal.document_id, proposal_id=proposal_id, outcome="DEFERRED", rationale=" ", decided_by="alice")
        log.append(
            session,
            document_id=proposal.document_id,
            proposal_id=proposal_id,
            outcome="deferred",
            rationale="Waiting on legal",
            decided_by="alice",
            participants=["bob", "alice", "bob", ""],
        )
        session.flush()
        entries = log.list_entries(session, proposal.document_id, outcome="DEFERRED")
        assert [(entry["outcome"], entry["participants"]) for entry in entries] == [("DEFERRED", ["alice", "bob"])]
        assert log.list_entries(session, proposal.document_id, outcome="ACCEPTED") == []


def test_metrics_keep_a_bounded_timing_window():
    metrics = MetricsService(max_samples=3)
    for value in (10.0, 20.0, 30.0, 40.0):
        metrics.observe("diff.ms", value)
    with metrics.timer("http.request.ms"):
        pass
    metrics.inc("merge_gate.blocked")
    metrics.inc("merge_gate.blocked", 2)

    snapshot = metrics.snapshot()
    assert snapshot["counters"] == {"merge_gate.blocked": 3.0}
    assert snapshot["timings"]["diff.ms"] == {"count": 3, "avg_ms": 30.0, "p95_ms": 30.0, "max_ms": 40.0}
    assert snapshot["timings"]["http.request.ms"]["count"] == 1
