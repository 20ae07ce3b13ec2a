from __future__ import annotations

import hashlib
import json
from typing import Any

from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from docgate.models import Document, SnapshotRecord
from docgate.services.document_tree import Snapshot, node_from_dict, node_to_dict, snapshot_from_payload


def content_ref(document_id: str, parent_ref: str | None, content: dict[str, Any]) -> str:
    encoded = json.dumps(content, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(f"{document_id}:{parent_ref or ''}:{encoded}".encode("utf-8")).hexdigest()[:40]


class SnapshotStore:
    """Immutable snapshot storage keyed by (document, ref)."""

    def create_document(self, session: Session, title: str, content: dict[str, Any], *, actor: str) -> tuple[Document, SnapshotRecord]:
        if not title.strip():
            raise ValueError("title must not be empty")
        document = Document(title=title.strip(), created_by=actor)
        session.add(document)
        session.flush()
        record = self.save_snapshot(session, document.id, content, author=actor, message="Initial version")
        document.baseline_ref = record.ref
        return document, record

    def get_document(self, session: Session, document_id: str) -> Document:
        document = session.scalar(select(Document).where(Document.id == document_id))
        if not document:
            raise LookupError(f"Document {document_id} not found")
        return document

    def save_snapshot(
        self,
        session: Session,
        document_id: str,
        content: dict[str, Any],
        *,
        author: str | None = None,
        parent_ref: str | None = None,
        message: str | None = None,
        ref: str | None = None,
    ) -> SnapshotRecord:
        self.get_document(session, document_id)
        if parent_ref:
            self.get_record(session, document_id, parent_ref)
        # Parsing validates node identity before anything is stored.
        root = node_from_dict(content, default_id=document_id)
        canonical = node_to_dict(root)
        snapshot_ref = (ref or "").strip() or content_ref(document_id, parent_ref, canonical)

        existing = session.scalar(
            select(SnapshotRecord).where(SnapshotRecord.document_id == document_id, SnapshotRecord.ref == snapshot_ref)
        )
        if existing:
            if existing.content != canonical:
                raise ValueError(f"Snapshot {snapshot_ref} already exists with different content")
            return existing

        record = SnapshotRecord(
            document_id=document_id,
            ref=snapshot_ref,
            parent_ref=parent_ref,
            content=canonical,
            author=author,
            message=message,
        )
        session.add(record)
        session.flush()
        return record

    def get_record(self, session: Session, document_id: str, ref: str) -> SnapshotRecord:
        record = session.scalar(
            select(SnapshotRecord).where(SnapshotRecord.document_id == document_id, SnapshotRecord.ref == ref)
        )
        if not record:
            raise LookupError(f"Snapshot {ref} not found for document {document_id}")
        return record

    def load(self, session: Session, document_id: str, ref: str) -> Snapshot:
        record = self.get_record(session, document_id, ref)
        return snapshot_from_payload(
            record.ref,
            record.content,
            root_id=document_id,
            author=record.author,
            created_at=record.created_at,
        )

    def list_snapshots(self, session: Session, document_id: str, limit: int = 100) -> list[SnapshotRecord]:
        self.get_document(session, document_id)
        return list(
            session.scalars(
                select(SnapshotRecord)
                .where(SnapshotRecord.document_id == document_id)
                .order_by(desc(SnapshotRecord.created_at), desc(SnapshotRecord.id))
                .limit(limit)
            ).all()
        )
