from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterator, Mapping

from docgate.services.errors import DuplicateNodeIdentity, MissingNodeIdentity

INLINE_KINDS = {"text", "hardBreak", "mention", "emoji"}


@dataclass(frozen=True)
class Node:
    id: str
    kind: str
    attrs: dict[str, Any] = field(default_factory=dict)
    children: tuple[Node, ...] | None = None
    text: str | None = None

    @property
    def is_text(self) -> bool:
        return self.text is not None


@dataclass(frozen=True)
class Snapshot:
    ref: str
    root: Node
    author: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class NodeVisit:
    node: Node
    parent_id: str | None
    index: int
    path: tuple[int, ...]


def walk(root: Node) -> Iterator[NodeVisit]:
    """Pre-order traversal yielding each node with its parent id and index path."""
    stack: list[NodeVisit] = [NodeVisit(root, None, 0, ())]
    while stack:
        visit = stack.pop()
        yield visit
        children = visit.node.children or ()
        for idx in range(len(children) - 1, -1, -1):
            stack.append(NodeVisit(children[idx], visit.node.id, idx, visit.path + (idx,)))


def full_text(node: Node) -> str:
    parts: list[str] = []
    if node.text and node.text.strip():
        parts.append(node.text.strip())
    for child in node.children or ():
        child_text = full_text(child)
        if child_text:
            parts.append(child_text)
    return " ".join(parts).strip()


def node_to_dict(node: Node) -> dict[str, Any]:
    payload: dict[str, Any] = {"id": node.id, "kind": node.kind, "attrs": dict(node.attrs)}
    if node.children is not None:
        payload["children"] = [node_to_dict(child) for child in node.children]
    if node.text is not None:
        payload["text"] = node.text
    return payload


def node_from_dict(data: Mapping[str, Any], *, default_id: str | None = None) -> Node:
    """Build a node tree from canonical or editor JSON.

    Canonical nodes look like ``{"id", "kind", "attrs", "children", "text"}``.
    Editor nodes look like ``{"type", "attrs": {"nodeId"}, "content", "text", "marks"}``;
    inline children without ids are folded into the owning block's text, and
    their marks become ``{"type", "from", "to"}`` spans in ``attrs["marks"]``.
    ``default_id`` names the root when the payload does not carry one.
    """
    if "kind" in data or "id" in data:
        root = _canonical_node(data, default_id=default_id, path=())
    else:
        root = _editor_node(data, default_id=default_id, path=())
    require_unique_ids(root)
    return root


def require_unique_ids(root: Node) -> None:
    seen: set[str] = set()
    for visit in walk(root):
        if visit.node.id in seen:
            raise DuplicateNodeIdentity(visit.node.id, visit.path)
        seen.add(visit.node.id)


def snapshot_from_payload(
    ref: str,
    payload: Mapping[str, Any],
    *,
    root_id: str | None = None,
    author: str | None = None,
    created_at: datetime | None = None,
) -> Snapshot:
    return Snapshot(ref=ref, root=node_from_dict(payload, default_id=root_id), author=author, created_at=created_at)


def _canonical_node(data: Mapping[str, Any], *, default_id: str | None, path: tuple[int, ...]) -> Node:
    kind = str(data.get("kind") or "node")
    node_id = str(data.get("id") or default_id or "").strip()
    if not node_id:
        raise MissingNodeIdentity(kind, path)
    raw_children = data.get("children")
    children = None
    if raw_children is not None:
        children = tuple(
            _canonical_node(child, default_id=None, path=path + (idx,)) for idx, child in enumerate(raw_children)
        )
    text = data.get("text")
    return Node(
        id=node_id,
        kind=kind,
        attrs=dict(data.get("attrs") or {}),
        children=children,
        text=str(text) if text is not None else None,
    )


def _editor_node(data: Mapping[str, Any], *, default_id: str | None, path: tuple[int, ...]) -> Node:
    kind = str(data.get("type") or "node")
    attrs = dict(data.get("attrs") or {})
    node_id = str(attrs.pop("nodeId", None) or default_id or "").strip()
    if not node_id:
        raise MissingNodeIdentity(kind, path)

    block_children: list[Node] = []
    text_parts: list[str] = []
    marks: list[dict[str, Any]] = []
    saw_inline = False
    cursor = 0
    for child in data.get("content") or []:
        if _is_inline(child):
            saw_inline = True
            fragment = _inline_text(child)
            for mark in child.get("marks") or []:
                span = {"type": str(mark.get("type", "")), "from": cursor, "to": cursor + len(fragment)}
                if mark.get("attrs"):
                    span["attrs"] = dict(mark["attrs"])
                marks.append(span)
            text_parts.append(fragment)
            cursor += len(fragment)
            continue
        block_children.append(_editor_node(child, default_id=None, path=path + (len(block_children),)))

    if marks:
        attrs["marks"] = marks
    text = data.get("text")
    if saw_inline:
        text = "".join(text_parts)
    children = tuple(block_children) if block_children else None
    return Node(id=node_id, kind=kind, attrs=attrs, children=children, text=str(text) if text is not None else None)


def _is_inline(child: Mapping[str, Any]) -> bool:
    if (child.get("attrs") or {}).get("nodeId"):
        return False
    return child.get("type") in INLINE_KINDS or ("text" in child and not child.get("content"))


def _inline_text(child: Mapping[str, Any]) -> str:
    if child.get("type") == "hardBreak":
        return "\n"
    if child.get("text") is not None:
        return str(child["text"])
    label = (child.get("attrs") or {}).get("label")
    return str(label) if label else ""
