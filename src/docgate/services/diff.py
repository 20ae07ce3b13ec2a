from __future__ import annotations

import bisect
import hashlib
import json
from dataclasses import dataclass
from typing import Any, Iterable

from docgate.services.diff_types import Anchor, Change, ChangeContext, ChangeType, change_id_for
from docgate.services.document_tree import Node, Snapshot, full_text, walk
from docgate.services.errors import DuplicateNodeIdentity, IncomparableSnapshots

# Attribute keys that only affect presentation. A node whose differences are
# confined to these keys is classified format_only rather than modified.
FORMAT_ATTRS = frozenset({"marks", "textAlign", "indent", "color", "highlight", "fontFamily", "fontSize"})
SNIPPET_MAX_CHARS = 120


@dataclass(frozen=True)
class FlatNode:
    node: Node
    parent_id: str | None
    index: int
    order: int
    content_hash: str
    format_hash: str
    previous_text: str
    next_text: str


def _digest(payload: Any) -> str:
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def content_hash(node: Node, format_attrs: frozenset[str] = FORMAT_ATTRS) -> str:
    attrs = {key: value for key, value in node.attrs.items() if key not in format_attrs}
    return _digest({"kind": node.kind, "text": node.text, "attrs": attrs})


def format_hash(node: Node, format_attrs: frozenset[str] = FORMAT_ATTRS) -> str:
    return _digest({key: value for key, value in node.attrs.items() if key in format_attrs})


def flatten(root: Node, format_attrs: frozenset[str] = FORMAT_ATTRS) -> dict[str, FlatNode]:
    flat: dict[str, FlatNode] = {}
    siblings_by_parent: dict[str | None, tuple[Node, ...]] = {None: (root,)}
    for order, visit in enumerate(walk(root)):
        node = visit.node
        if node.id in flat:
            raise DuplicateNodeIdentity(node.id, visit.path)
        if node.children:
            siblings_by_parent[node.id] = node.children
        siblings = siblings_by_parent[visit.parent_id]
        previous_text = full_text(siblings[visit.index - 1]) if visit.index > 0 else ""
        next_text = full_text(siblings[visit.index + 1]) if visit.index + 1 < len(siblings) else ""
        flat[node.id] = FlatNode(
            node=node,
            parent_id=visit.parent_id,
            index=visit.index,
            order=order,
            content_hash=content_hash(node, format_attrs),
            format_hash=format_hash(node, format_attrs),
            previous_text=previous_text,
            next_text=next_text,
        )
    return flat


def stable_positions(sequence: list[int]) -> set[int]:
    """Positions of one longest strictly increasing subsequence of ``sequence``."""
    tail_positions: list[int] = []
    tail_values: list[int] = []
    previous = [-1] * len(sequence)
    for pos, value in enumerate(sequence):
        slot = bisect.bisect_left(tail_values, value)
        if slot > 0:
            previous[pos] = tail_positions[slot - 1]
        if slot == len(tail_positions):
            tail_positions.append(pos)
            tail_values.append(value)
        else:
            tail_positions[slot] = pos
            tail_values[slot] = value

    kept: set[int] = set()
    pos = tail_positions[-1] if tail_positions else -1
    while pos != -1:
        kept.add(pos)
        pos = previous[pos]
    return kept


def moved_node_ids(before: dict[str, FlatNode], after: dict[str, FlatNode]) -> set[str]:
    moved: set[str] = set()
    for node_id, item in after.items():
        previous = before.get(node_id)
        if previous is not None and previous.parent_id != item.parent_id:
            moved.add(node_id)

    for parent_id, parent in after.items():
        if not parent.node.children or parent_id not in before:
            continue
        retained = [
            child.id
            for child in parent.node.children
            if child.id in before and before[child.id].parent_id == parent_id
        ]
        kept = stable_positions([before[child_id].index for child_id in retained])
        moved.update(child_id for pos, child_id in enumerate(retained) if pos not in kept)
    return moved


def position_label(item: FlatNode) -> str:
    return f"{item.parent_id or '<root>'}[{item.index}]"


def truncate_snippet(value: str, limit: int = SNIPPET_MAX_CHARS) -> str:
    trimmed = value.strip()
    if len(trimmed) <= limit:
        return trimmed
    return trimmed[:limit] + "..."


class DiffEngine:
    def __init__(self, format_attrs: Iterable[str] = FORMAT_ATTRS, snippet_max_chars: int = SNIPPET_MAX_CHARS):
        self.format_attrs = frozenset(format_attrs)
        self.snippet_max_chars = snippet_max_chars

    def diff(self, before: Snapshot, after: Snapshot) -> list[Change]:
        if before.root.id != after.root.id:
            raise IncomparableSnapshots(before.root.id, after.root.id)

        before_flat = flatten(before.root, self.format_attrs)
        after_flat = flatten(after.root, self.format_attrs)
        moved = moved_node_ids(before_flat, after_flat)
        edited_at = after.created_at.isoformat() if after.created_at else ""

        # Key is (slot, phase, rank, before order); deletions take phase 1 so they
        # follow every change anchored at their surviving predecessor.
        keyed: list[tuple[tuple[int, int, int, int], Change]] = []
        for node_id, item in after_flat.items():
            previous = before_flat.get(node_id)
            change_type = self._classify(previous, item, node_id in moved)
            if change_type is None:
                continue
            change = self._make_change(change_type, previous, item, before, after, edited_at, was_moved=node_id in moved)
            keyed.append(((item.order, 0, change_type.rank, 0), change))

        slot = -1
        for node_id, previous in before_flat.items():
            if node_id in after_flat:
                slot = after_flat[node_id].order
                continue
            change = self._make_change(ChangeType.DELETED, previous, None, before, after, edited_at)
            keyed.append(((slot, 1, ChangeType.DELETED.rank, previous.order), change))

        keyed.sort(key=lambda entry: entry[0])
        return [change for _, change in keyed]

    def changed_fields(self, before: Snapshot, after: Snapshot, changes: list[Change] | None = None) -> list[str]:
        """Coarse list of root attributes that differ, plus ``doc`` when any body node changed."""
        keys = set(before.root.attrs) | set(after.root.attrs)
        fields = {key for key in keys if before.root.attrs.get(key) != after.root.attrs.get(key)}
        if changes is None:
            changes = self.diff(before, after)
        if any(change.anchor.node_id != after.root.id for change in changes):
            fields.add("doc")
        return sorted(fields)

    def _classify(self, previous: FlatNode | None, item: FlatNode, was_moved: bool) -> ChangeType | None:
        if previous is None:
            return ChangeType.INSERTED
        content_changed = previous.content_hash != item.content_hash
        format_changed = previous.format_hash != item.format_hash
        if content_changed or (format_changed and was_moved):
            return ChangeType.MODIFIED
        if format_changed:
            return ChangeType.FORMAT_ONLY
        if was_moved:
            return ChangeType.MOVED
        return None

    def _make_change(
        self,
        change_type: ChangeType,
        previous: FlatNode | None,
        item: FlatNode | None,
        before: Snapshot,
        after: Snapshot,
        edited_at: str,
        *,
        was_moved: bool = False,
    ) -> Change:
        node_id = item.node.id if item is not None else previous.node.id

        from_offset = to_offset = 0
        if item is not None and item.node.text is not None:
            to_offset = len(item.node.text)

        if change_type is ChangeType.MOVED or (change_type is ChangeType.MODIFIED and was_moved):
            context = ChangeContext(before=position_label(previous), after=position_label(item))
        elif change_type is ChangeType.DELETED:
            context = ChangeContext(before=previous.previous_text, after=previous.next_text)
        else:
            context = ChangeContext(before=item.previous_text, after=item.next_text)

        if change_type is ChangeType.DELETED:
            snippet_source = full_text(previous.node) or previous.node.kind
        else:
            snippet_source = full_text(item.node) or (full_text(previous.node) if previous else "") or item.node.kind

        return Change(
            id=change_id_for(node_id, before.ref, after.ref),
            type=change_type,
            from_ref=before.ref,
            to_ref=after.ref,
            anchor=Anchor(node_id=node_id, from_offset=from_offset, to_offset=to_offset),
            context=context,
            snippet=truncate_snippet(snippet_source, self.snippet_max_chars),
            author=after.author,
            edited_at=edited_at,
        )
