from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session

from docgate.services.diff import DiffEngine
from docgate.services.diff_types import Change
from docgate.services.document_tree import Snapshot
from docgate.services.metrics import MetricsService
from docgate.services.snapshots import SnapshotStore


@dataclass(frozen=True)
class Comparison:
    document_id: str
    before: Snapshot
    after: Snapshot
    changes: list[Change]
    changed_fields: list[str]


class ComparisonService:
    def __init__(self, diff_engine: DiffEngine, snapshot_store: SnapshotStore, metrics: MetricsService | None = None):
        self.diff_engine = diff_engine
        self.snapshot_store = snapshot_store
        self.metrics = metrics

    def compare(self, session: Session, document_id: str, from_ref: str, to_ref: str) -> Comparison:
        before = self.snapshot_store.load(session, document_id, from_ref)
        after = self.snapshot_store.load(session, document_id, to_ref)
        if self.metrics is None:
            changes = self.diff_engine.diff(before, after)
        else:
            with self.metrics.timer("diff.ms"):
                changes = self.diff_engine.diff(before, after)
            self.metrics.inc("diff.changes", len(changes))
        return Comparison(
            document_id=document_id,
            before=before,
            after=after,
            changes=changes,
            changed_fields=self.diff_engine.changed_fields(before, after, changes),
        )
