from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import DDL, JSON, Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, event
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class Base(DeclarativeBase):
    pass


class Document(Base):
    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    title: Mapped[str] = mapped_column(String(512))
    baseline_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    snapshots: Mapped[list[SnapshotRecord]] = relationship(back_populates="document", cascade="all, delete-orphan")
    proposals: Mapped[list[Proposal]] = relationship(back_populates="document", cascade="all, delete-orphan")


class SnapshotRecord(Base):
    __tablename__ = "snapshots"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    document_id: Mapped[str] = mapped_column(ForeignKey("documents.id", ondelete="CASCADE"), index=True)
    ref: Mapped[str] = mapped_column(String(128), index=True)
    parent_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)
    content: Mapped[dict] = mapped_column(JSON, default=dict)
    author: Mapped[str | None] = mapped_column(String(128), nullable=True)
    message: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    document: Mapped[Document] = relationship(back_populates="snapshots")

    __table_args__ = (UniqueConstraint("document_id", "ref", name="uq_snapshot_ref"),)


class Proposal(Base):
    __tablename__ = "proposals"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    document_id: Mapped[str] = mapped_column(ForeignKey("documents.id", ondelete="CASCADE"), index=True)
    title: Mapped[str] = mapped_column(String(512))
    status: Mapped[str] = mapped_column(String(32), default="DRAFT", index=True)
    base_ref: Mapped[str] = mapped_column(String(128))
    head_ref: Mapped[str] = mapped_column(String(128))
    state_version: Mapped[int] = mapped_column(Integer, default=0)
    created_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    merged_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    merged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    document: Mapped[Document] = relationship(back_populates="proposals")
    approvals: Mapped[list[ProposalApproval]] = relationship(back_populates="proposal", cascade="all, delete-orphan")


class ProposalApproval(Base):
    __tablename__ = "proposal_approvals"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    proposal_id: Mapped[str] = mapped_column(ForeignKey("proposals.id", ondelete="CASCADE"), index=True)
    role: Mapped[str] = mapped_column(String(64))
    status: Mapped[str] = mapped_column(String(16), default="Pending")
    approved_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    proposal: Mapped[Proposal] = relationship(back_populates="approvals")

    __table_args__ = (UniqueConstraint("proposal_id", "role", name="uq_proposal_role"),)


class ChangeReviewRecord(Base):
    __tablename__ = "change_review_states"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    change_id: Mapped[str] = mapped_column(String(64), index=True)
    proposal_id: Mapped[str] = mapped_column(ForeignKey("proposals.id", ondelete="CASCADE"), index=True)
    document_id: Mapped[str] = mapped_column(ForeignKey("documents.id", ondelete="CASCADE"), index=True)
    anchor_node_id: Mapped[str] = mapped_column(String(128))
    from_ref: Mapped[str] = mapped_column(String(128))
    to_ref: Mapped[str] = mapped_column(String(128))
    review_state: Mapped[str] = mapped_column(String(16), default="pending", index=True)
    rejected_rationale: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (UniqueConstraint("proposal_id", "change_id", name="uq_change_review"),)


class Thread(Base):
    __tablename__ = "threads"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    proposal_id: Mapped[str] = mapped_column(ForeignKey("proposals.id", ondelete="CASCADE"), index=True)
    anchor_node_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    title: Mapped[str] = mapped_column(String(512))
    status: Mapped[str] = mapped_column(String(16), default="OPEN", index=True)
    created_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    orphaned_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    orphaned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class ApiKey(Base):
    __tablename__ = "api_keys"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    key_hash: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    owner: Mapped[str] = mapped_column(String(128), index=True)
    role: Mapped[str] = mapped_column(String(32), index=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class AuditEvent(Base):
    __tablename__ = "audit_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_type: Mapped[str] = mapped_column(String(64), index=True)
    actor: Mapped[str] = mapped_column(String(128), default="system")
    document_id: Mapped[str] = mapped_column(ForeignKey("documents.id", ondelete="CASCADE"), index=True)
    proposal_id: Mapped[str | None] = mapped_column(ForeignKey("proposals.id", ondelete="CASCADE"), nullable=True, index=True)
    change_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    thread_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    payload: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class DecisionLogEntry(Base):
    __tablename__ = "decision_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    document_id: Mapped[str] = mapped_column(ForeignKey("documents.id", ondelete="CASCADE"), index=True)
    proposal_id: Mapped[str] = mapped_column(ForeignKey("proposals.id", ondelete="CASCADE"), index=True)
    thread_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    outcome: Mapped[str] = mapped_column(String(16), index=True)
    rationale: Mapped[str] = mapped_column(Text)
    decided_by: Mapped[str] = mapped_column(String(128))
    decided_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    merged_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)
    participants: Mapped[list] = mapped_column(JSON, default=list)


@event.listens_for(DecisionLogEntry, "before_update")
@event.listens_for(DecisionLogEntry, "before_delete")
def _decision_log_is_append_only(mapper, connection, target) -> None:
    raise ValueError(f"decision_log entry {target.id} is immutable")


# Writers that bypass the ORM are stopped by the database itself.
DECISION_LOG_SQLITE_TRIGGERS = (
    "CREATE TRIGGER IF NOT EXISTS trg_decision_log_block_update BEFORE UPDATE ON decision_log "
    "BEGIN SELECT RAISE(ABORT, 'decision_log is immutable'); END",
    "CREATE TRIGGER IF NOT EXISTS trg_decision_log_block_delete BEFORE DELETE ON decision_log "
    "BEGIN SELECT RAISE(ABORT, 'decision_log is immutable'); END",
)
DECISION_LOG_POSTGRES_TRIGGERS = (
    "CREATE OR REPLACE FUNCTION decision_log_immutable_guard() RETURNS trigger AS $$ "
    "BEGIN RAISE EXCEPTION 'decision_log is immutable' USING ERRCODE = '55000'; END; "
    "$$ LANGUAGE plpgsql",
    "CREATE TRIGGER trg_decision_log_block_update BEFORE UPDATE ON decision_log "
    "FOR EACH ROW EXECUTE FUNCTION decision_log_immutable_guard()",
    "CREATE TRIGGER trg_decision_log_block_delete BEFORE DELETE ON decision_log "
    "FOR EACH ROW EXECUTE FUNCTION decision_log_immutable_guard()",
)

for _statement in DECISION_LOG_SQLITE_TRIGGERS:
    event.listen(DecisionLogEntry.__table__, "after_create", DDL(_statement).execute_if(dialect="sqlite"))
for _statement in DECISION_LOG_POSTGRES_TRIGGERS:
    event.listen(DecisionLogEntry.__table__, "after_create", DDL(_statement).execute_if(dialect="postgresql"))
