"""Decision log and orphaned threads

Revision ID: 20261018_0002
Revises: 20261018_0001
Create Date: 2026-10-18 00:00:01
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

from docgate.models import DECISION_LOG_POSTGRES_TRIGGERS, DECISION_LOG_SQLITE_TRIGGERS


# revision identifiers, used by Alembic.
revision = "20261018_0002"
down_revision = "20261018_0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table("threads") as batch_op:
        batch_op.add_column(sa.Column("orphaned_reason", sa.Text(), nullable=True))
        batch_op.add_column(sa.Column("orphaned_at", sa.DateTime(timezone=True), nullable=True))

    op.create_table(
        "decision_log",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("document_id", sa.String(length=36), nullable=False),
        sa.Column("proposal_id", sa.String(length=36), nullable=False),
        sa.Column("thread_id", sa.String(length=36), nullable=True),
        sa.Column("outcome", sa.String(length=16), nullable=False),
        sa.Column("rationale", sa.Text(), nullable=False),
        sa.Column("decided_by", sa.String(length=128), nullable=False),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("merged_ref", sa.String(length=128), nullable=True),
        sa.Column("participants", sa.JSON(), nullable=False),
        sa.ForeignKeyConstraint(["document_id"], ["documents.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["proposal_id"], ["proposals.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_decision_log_document_id"), "decision_log", ["document_id"], unique=False)
    op.create_index(op.f("ix_decision_log_proposal_id"), "decision_log", ["proposal_id"], unique=False)
    op.create_index(op.f("ix_decision_log_outcome"), "decision_log", ["outcome"], unique=False)

    dialect = op.get_bind().dialect.name
    if dialect == "sqlite":
        for statement in DECISION_LOG_SQLITE_TRIGGERS:
            op.execute(statement)
    elif dialect == "postgresql":
        for statement in DECISION_LOG_POSTGRES_TRIGGERS:
            op.execute(statement)


def downgrade() -> None:
    op.drop_index(op.f("ix_decision_log_outcome"), table_name="decision_log")
    op.drop_index(op.f("ix_decision_log_proposal_id"), table_name="decision_log")
    op.drop_index(op.f("ix_decision_log_document_id"), table_name="decision_log")
    op.drop_table("decision_log")
    if op.get_bind().dialect.name == "postgresql":
        op.execute("DROP FUNCTION IF EXISTS decision_log_immutable_guard()")

    with op.batch_alter_table("threads") as batch_op:
        batch_op.drop_column("orphaned_at")
        batch_op.drop_column("orphaned_reason")
