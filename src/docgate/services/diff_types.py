from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ChangeType(str, Enum):
    INSERTED = "inserted"
    DELETED = "deleted"
    MODIFIED = "modified"
    MOVED = "moved"
    FORMAT_ONLY = "format_only"

    @property
    def rank(self) -> int:
        return CHANGE_TYPE_RANK[self]


CHANGE_TYPE_RANK = {
    ChangeType.MOVED: 0,
    ChangeType.MODIFIED: 1,
    ChangeType.INSERTED: 2,
    ChangeType.DELETED: 3,
    ChangeType.FORMAT_ONLY: 4,
}


class ReviewState(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    DEFERRED = "deferred"


@dataclass(frozen=True)
class Anchor:
    node_id: str
    from_offset: int = 0
    to_offset: int = 0


@dataclass(frozen=True)
class ChangeContext:
    before: str = ""
    after: str = ""


@dataclass(frozen=True)
class Change:
    id: str
    type: ChangeType
    from_ref: str
    to_ref: str
    anchor: Anchor
    context: ChangeContext
    snippet: str
    author: str | None = None
    edited_at: str = ""
    review_state: ReviewState = ReviewState.PENDING
    thread_ids: frozenset[str] = field(default_factory=frozenset)
    blockers: frozenset[str] = field(default_factory=frozenset)

    def to_payload(self) -> dict[str, Any]:
        author_name = self.author or "Unknown"
        return {
            "id": self.id,
            "type": self.type.value,
            "fromRef": self.from_ref,
            "toRef": self.to_ref,
            "anchor": {
                "nodeId": self.anchor.node_id,
                "fromOffset": self.anchor.from_offset,
                "toOffset": self.anchor.to_offset,
            },
            "context": {"before": self.context.before, "after": self.context.after},
            "snippet": self.snippet,
            "author": {"id": author_id(author_name), "name": author_name},
            "editedAt": self.edited_at,
            "reviewState": self.review_state.value,
            "threadIds": sorted(self.thread_ids),
            "blockers": sorted(self.blockers),
        }


def short_hash(value: str, length: int = 12) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:length]


def change_id_for(node_id: str, from_ref: str, to_ref: str) -> str:
    return "chg_" + short_hash(f"{node_id}|{from_ref}|{to_ref}")


def author_id(name: str) -> str:
    return "usr_" + short_hash(name.strip().lower())
