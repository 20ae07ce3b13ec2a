"""Initial DocGate review schema

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 00:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "documents",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("title", sa.String(length=512), nullable=False),
        sa.Column("baseline_ref", sa.String(length=128), nullable=True),
        sa.Column("created_by", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "snapshots",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("document_id", sa.String(length=36), nullable=False),
        sa.Column("ref", sa.String(length=128), nullable=False),
        sa.Column("parent_ref", sa.String(length=128), nullable=True),
        sa.Column("content", sa.JSON(), nullable=False),
        sa.Column("author", sa.String(length=128), nullable=True),
        sa.Column("message", sa.String(length=512), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["document_id"], ["documents.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("document_id", "ref", name="uq_snapshot_ref"),
    )
    op.create_index(op.f("ix_snapshots_document_id"), "snapshots", ["document_id"], unique=False)
    op.create_index(op.f("ix_snapshots_ref"), "snapshots", ["ref"], unique=False)

    op.create_table(
        "proposals",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("document_id", sa.String(length=36), nullable=False),
        sa.Column("title", sa.String(length=512), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("base_ref", sa.String(length=128), nullable=False),
        sa.Column("head_ref", sa.String(length=128), nullable=False),
        sa.Column("state_version", sa.Integer(), nullable=False),
        sa.Column("created_by", sa.String(length=128), nullable=True),
        sa.Column("merged_by", sa.String(length=128), nullable=True),
        sa.Column("merged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["document_id"], ["documents.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_proposals_document_id"), "proposals", ["document_id"], unique=False)
    op.create_index(op.f("ix_proposals_status"), "proposals", ["status"], unique=False)

    op.create_table(
        "proposal_approvals",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("proposal_id", sa.String(length=36), nullable=False),
        sa.Column("role", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("approved_by", sa.String(length=128), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["proposal_id"], ["proposals.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("proposal_id", "role", name="uq_proposal_role"),
    )
    op.create_index(op.f("ix_proposal_approvals_proposal_id"), "proposal_approvals", ["proposal_id"], unique=False)

    op.create_table(
        "change_review_states",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("change_id", sa.String(length=64), nullable=False),
        sa.Column("proposal_id", sa.String(length=36), nullable=False),
        sa.Column("document_id", sa.String(length=36), nullable=False),
        sa.Column("anchor_node_id", sa.String(length=128), nullable=False),
        sa.Column("from_ref", sa.String(length=128), nullable=False),
        sa.Column("to_ref", sa.String(length=128), nullable=False),
        sa.Column("review_state", sa.String(length=16), nullable=False),
        sa.Column("rejected_rationale", sa.Text(), nullable=True),
        sa.Column("reviewed_by", sa.String(length=128), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["document_id"], ["documents.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["proposal_id"], ["proposals.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("proposal_id", "change_id", name="uq_change_review"),
    )
    op.create_index(op.f("ix_change_review_states_change_id"), "change_review_states", ["change_id"], unique=False)
    op.create_index(op.f("ix_change_review_states_proposal_id"), "change_review_states", ["proposal_id"], unique=False)
    op.create_index(op.f("ix_change_review_states_document_id"), "change_review_states", ["document_id"], unique=False)
    op.create_index(op.f("ix_change_review_states_review_state"), "change_review_states", ["review_state"], unique=False)

    op.create_table(
        "threads",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("proposal_id", sa.String(length=36), nullable=False),
        sa.Column("anchor_node_id", sa.String(length=128), nullable=True),
        sa.Column("title", sa.String(length=512), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("created_by", sa.String(length=128), nullable=True),
        sa.Column("resolved_by", sa.String(length=128), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["proposal_id"], ["proposals.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_threads_proposal_id"), "threads", ["proposal_id"], unique=False)
    op.create_index(op.f("ix_threads_anchor_node_id"), "threads", ["anchor_node_id"], unique=False)
    op.create_index(op.f("ix_threads_status"), "threads", ["status"], unique=False)

    op.create_table(
        "api_keys",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("key_hash", sa.String(length=128), nullable=False),
        sa.Column("owner", sa.String(length=128), nullable=False),
        sa.Column("role", sa.String(length=32), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_api_keys_key_hash"), "api_keys", ["key_hash"], unique=True)
    op.create_index(op.f("ix_api_keys_owner"), "api_keys", ["owner"], unique=False)
    op.create_index(op.f("ix_api_keys_role"), "api_keys", ["role"], unique=False)

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("actor", sa.String(length=128), nullable=False),
        sa.Column("document_id", sa.String(length=36), nullable=False),
        sa.Column("proposal_id", sa.String(length=36), nullable=True),
        sa.Column("change_id", sa.String(length=64), nullable=True),
        sa.Column("thread_id", sa.String(length=36), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["document_id"], ["documents.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["proposal_id"], ["proposals.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_audit_events_event_type"), "audit_events", ["event_type"], unique=False)
    op.create_index(op.f("ix_audit_events_document_id"), "audit_events", ["document_id"], unique=False)
    op.create_index(op.f("ix_audit_events_proposal_id"), "audit_events", ["proposal_id"], unique=False)
    op.create_index(op.f("ix_audit_events_change_id"), "audit_events", ["change_id"], unique=False)
    op.create_index(op.f("ix_audit_events_thread_id"), "audit_events", ["thread_id"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_audit_events_thread_id"), table_name="audit_events")
    op.drop_index(op.f("ix_audit_events_change_id"), table_name="audit_events")
    op.drop_index(op.f("ix_audit_events_proposal_id"), table_name="audit_events")
    op.drop_index(op.f("ix_audit_events_document_id"), table_name="audit_events")
    op.drop_index(op.f("ix_audit_events_event_type"), table_name="audit_events")
    op.drop_table("audit_events")

    op.drop_index(op.f("ix_api_keys_role"), table_name="api_keys")
    op.drop_index(op.f("ix_api_keys_owner"), table_name="api_keys")
    op.drop_index(op.f("ix_api_keys_key_hash"), table_name="api_keys")
    op.drop_table("api_keys")

    op.drop_index(op.f("ix_threads_status"), table_name="threads")
    op.drop_index(op.f("ix_threads_anchor_node_id"), table_name="threads")
    op.drop_index(op.f("ix_threads_proposal_id"), table_name="threads")
    op.drop_table("threads")

    op.drop_index(op.f("ix_change_review_states_review_state"), table_name="change_review_states")
    op.drop_index(op.f("ix_change_review_states_document_id"), table_name="change_review_states")
    op.drop_index(op.f("ix_change_review_states_proposal_id"), table_name="change_review_states")
    op.drop_index(op.f("ix_change_review_states_change_id"), table_name="change_review_states")
    op.drop_table("change_review_states")

    op.drop_index(op.f("ix_proposal_approvals_proposal_id"), table_name="proposal_approvals")
    op.drop_table("proposal_approvals")

    op.drop_index(op.f("ix_proposals_status"), table_name="proposals")
    op.drop_index(op.f("ix_proposals_document_id"), table_name="proposals")
    op.drop_table("proposals")

    op.drop_index(op.f("ix_snapshots_ref"), table_name="snapshots")
    op.drop_index(op.f("ix_snapshots_document_id"), table_name="snapshots")
    op.drop_table("snapshots")

    op.drop_table("documents")
