from __future__ import annotations

import hashlib
from datetime import datetime, timezone

import pytest

from docgate.services.diff import DiffEngine, stable_positions, truncate_snippet
from docgate.services.diff_types import ChangeType, ReviewState, change_id_for
from docgate.services.document_tree import node_from_dict, snapshot_from_payload
from docgate.services.errors import DuplicateNodeIdentity, IncomparableSnapshots, MissingNodeIdentity


def _doc(*blocks: dict, doc_id: str = "doc", **root_attrs) -> dict:
    return {"id": doc_id, "kind": "doc", "attrs": dict(root_attrs), "children": list(blocks)}


def _para(node_id: str, text: str, **attrs) -> dict:
    return {"id": node_id, "kind": "paragraph", "attrs": dict(attrs), "text": text}


def _snap(ref: str, payload: dict, author: str = "alice"):
    return snapshot_from_payload(ref, payload, author=author, created_at=datetime(2026, 1, 2, tzinfo=timezone.utc))


@pytest.fixture
def engine() -> DiffEngine:
    return DiffEngine()


def test_self_diff_is_empty(engine):
    snapshot = _snap("r1", _doc(_para("p1", "One"), _para("p2", "Two")))
    assert engine.diff(snapshot, snapshot) == []


def test_diff_is_deterministic(engine):
    before = _snap("r1", _doc(_para("p1", "One"), _para("p2", "Two"), _para("p3", "Three")))
    after = _snap("r2", _doc(_para("p3", "Three!"), _para("p1", "One"), _para("p4", "Four")))

    first = engine.diff(before, after)
    second = engine.diff(before, after)

    assert first == second
    assert [change.id for change in first] == [change.id for change in second]


def test_inserted_and_deleted_are_exclusive(engine):
    before = _snap("r1", _doc(_para("p1", "Keep"), _para("p2", "Gone")))
    after = _snap("r2", _doc(_para("p1", "Keep"), _para("p3", "New")))

    changes = engine.diff(before, after)
    by_node = {}
    for change in changes:
        by_node.setdefault(change.anchor.node_id, []).append(change.type)

    assert by_node == {"p2": [ChangeType.DELETED], "p3": [ChangeType.INSERTED]}


def test_reorder_marks_only_the_displaced_node_as_moved(engine):
    before = _snap("r1", _doc(_para("a", "A"), _para("b", "B"), _para("c", "C")))
    after = _snap("r2", _doc(_para("b", "B"), _para("c", "C"), _para("a", "A")))

    changes = engine.diff(before, after)

    assert [(change.anchor.node_id, change.type) for change in changes] == [("a", ChangeType.MOVED)]
    assert changes[0].context.before == "doc[0]"
    assert changes[0].context.after == "doc[2]"


def test_content_change_takes_precedence_over_move(engine):
    before = _snap("r1", _doc(_para("a", "Alpha"), _para("b", "B"), _para("c", "C")))
    after = _snap("r2", _doc(_para("b", "B"), _para("c", "C"), _para("a", "Alpha revised")))

    changes = engine.diff(before, after)

    assert len(changes) == 1
    assert changes[0].type is ChangeType.MODIFIED
    assert changes[0].context.after == "doc[2]"


def test_reparenting_counts_as_move(engine):
    before = _snap(
        "r1",
        _doc(
            {"id": "s1", "kind": "section", "attrs": {}, "children": [_para("p1", "Inner")]},
            {"id": "s2", "kind": "section", "attrs": {}, "children": [_para("p2", "Other")]},
        ),
    )
    after = _snap(
        "r2",
        _doc(
            {"id": "s1", "kind": "section", "attrs": {}, "children": []},
            {"id": "s2", "kind": "section", "attrs": {}, "children": [_para("p2", "Other"), _para("p1", "Inner")]},
        ),
    )

    changes = engine.diff(before, after)

    assert [(change.anchor.node_id, change.type) for change in changes] == [("p1", ChangeType.MOVED)]
    assert changes[0].context.before == "s1[0]"
    assert changes[0].context.after == "s2[1]"


def test_format_attributes_yield_format_only(engine):
    before = _snap("r1", _doc(_para("p1", "Heading"), _para("p2", "Body")))
    after = _snap("r2", _doc(_para("p1", "Heading", textAlign="center"), _para("p2", "Body")))

    changes = engine.diff(before, after)

    assert [(change.anchor.node_id, change.type) for change in changes] == [("p1", ChangeType.FORMAT_ONLY)]


def test_non_format_attribute_is_content(engine):
    before = _snap("r1", _doc(_para("p1", "Heading", level=1)))
    after = _snap("r2", _doc(_para("p1", "Heading", level=2)))

    assert engine.diff(before, after)[0].type is ChangeType.MODIFIED


def test_custom_format_catalogue():
    engine = DiffEngine(format_attrs={"level"})
    before = _snap("r1", _doc(_para("p1", "Heading", level=1)))
    after = _snap("r2", _doc(_para("p1", "Heading", level=2)))

    assert engine.diff(before, after)[0].type is ChangeType.FORMAT_ONLY


def test_change_payload_fields(engine):
    before = _snap("r1", _doc(_para("p1", "Intro"), _para("p2", "Records are kept for seven years."), _para("p3", "Outro")))
    after = _snap("r2", _doc(_para("p1", "Intro"), _para("p2", "Records are kept for five years."), _para("p3", "Outro")))

    (change,) = engine.diff(before, after)
    payload = change.to_payload()

    assert change.id == "chg_" + hashlib.sha256(b"p2|r1|r2").hexdigest()[:12]
    assert change.id == change_id_for("p2", "r1", "r2")
    assert payload["type"] == "modified"
    assert payload["anchor"] == {"nodeId": "p2", "fromOffset": 0, "toOffset": len("Records are kept for five years.")}
    assert payload["context"] == {"before": "Intro", "after": "Outro"}
    assert payload["snippet"] == "Records are kept for five years."
    assert payload["author"]["name"] == "alice"
    assert payload["author"]["id"].startswith("usr_")
    assert payload["editedAt"].startswith("2026-01-02")
    assert payload["reviewState"] == ReviewState.PENDING.value


def test_deleted_change_uses_before_neighbours_and_zero_offsets(engine):
    before = _snap("r1", _doc(_para("p1", "First"), _para("p2", "Middle"), _para("p3", "Last")))
    after = _snap("r2", _doc(_para("p1", "First"), _para("p3", "Last")))

    (change,) = engine.diff(before, after)

    assert change.type is ChangeType.DELETED
    assert (change.anchor.from_offset, change.anchor.to_offset) == (0, 0)
    assert (change.context.before, change.context.after) == ("First", "Last")
    assert change.snippet == "Middle"


def test_changes_follow_document_order(engine):
    before = _snap("r1", _doc(_para("p1", "One"), _para("p2", "Two"), _para("p3", "Three")))
    after = _snap("r2", _doc(_para("p1", "One!"), _para("p4", "Inserted"), _para("p3", "Three", textAlign="right")))

    changes = engine.diff(before, after)

    assert [(change.anchor.node_id, change.type) for change in changes] == [
        ("p1", ChangeType.MODIFIED),
        ("p2", ChangeType.DELETED),
        ("p4", ChangeType.INSERTED),
        ("p3", ChangeType.FORMAT_ONLY),
    ]


def test_deletion_follows_format_change_of_its_predecessor(engine):
    before = _snap("r1", _doc(_para("p1", "One"), _para("p2", "Two"), _para("p3", "Three")))
    after = _snap("r2", _doc(_para("p1", "One", textAlign="center"), _para("p3", "Three")))

    changes = engine.diff(before, after)

    assert [(change.anchor.node_id, change.type) for change in changes] == [
        ("p1", ChangeType.FORMAT_ONLY),
        ("p2", ChangeType.DELETED),
    ]


def test_snippet_is_truncated():
    assert truncate_snippet("x" * 200) == "x" * 120 + "..."
    assert truncate_snippet("  short  ") == "short"


def test_different_roots_are_incomparable(engine):
    before = _snap("r1", _doc(_para("p1", "One"), doc_id="doc-a"))
    after = _snap("r2", _doc(_para("p1", "One"), doc_id="doc-b"))

    with pytest.raises(IncomparableSnapshots) as exc_info:
        engine.diff(before, after)
    assert exc_info.value.code == "INCOMPARABLE_SNAPSHOTS"


def test_duplicate_node_ids_are_rejected_when_parsed():
    with pytest.raises(DuplicateNodeIdentity) as exc_info:
        node_from_dict(_doc(_para("p1", "One"), _para("p1", "Again")))
    assert exc_info.value.code == "DUPLICATE_NODE_IDENTITY"
    assert exc_info.value.details == {"nodeId": "p1", "path": [1]}

    editor = {
        "type": "doc",
        "attrs": {"nodeId": "doc"},
        "content": [
            {"type": "paragraph", "attrs": {"nodeId": "p1"}, "content": [{"type": "text", "text": "x"}]},
            {"type": "blockquote", "attrs": {"nodeId": "q1"}, "content": [{"type": "paragraph", "attrs": {"nodeId": "p1"}}]},
        ],
    }
    with pytest.raises(DuplicateNodeIdentity):
        node_from_dict(editor)


def test_changed_fields_reports_root_attrs_and_body(engine):
    before = _snap("r1", _doc(_para("p1", "One"), title="Draft"))
    only_title = _snap("r2", _doc(_para("p1", "One"), title="Final"))
    title_and_body = _snap("r3", _doc(_para("p1", "One more"), title="Final"))

    assert engine.changed_fields(before, only_title) == ["title"]
    assert engine.changed_fields(before, title_and_body) == ["doc", "title"]


def test_stable_positions_picks_longest_increasing_run():
    assert stable_positions([1, 2, 0]) == {0, 1}
    assert stable_positions([]) == set()
    assert len(stable_positions([3, 0, 1, 2])) == 3


def test_editor_json_folds_inline_text_and_marks():
    payload = {
        "type": "doc",
        "content": [
            {
                "type": "paragraph",
                "attrs": {"nodeId": "p1"},
                "content": [
                    {"type": "text", "text": "Hello "},
                    {"type": "text", "text": "world", "marks": [{"type": "bold"}]},
                ],
            }
        ],
    }

    root = node_from_dict(payload, default_id="doc-1")

    assert root.id == "doc-1"
    (paragraph,) = root.children
    assert paragraph.id == "p1"
    assert paragraph.text == "Hello world"
    assert paragraph.attrs["marks"] == [{"type": "bold", "from": 6, "to": 11}]


def test_editor_mark_change_is_format_only(engine):
    def editor(marks):
        return {
            "type": "doc",
            "content": [
                {
                    "type": "paragraph",
                    "attrs": {"nodeId": "p1"},
                    "content": [{"type": "text", "text": "Same words", "marks": marks}],
                }
            ],
        }

    before = snapshot_from_payload("r1", editor([]), root_id="doc")
    after = snapshot_from_payload("r2", editor([{"type": "italic"}]), root_id="doc")

    changes = engine.diff(before, after)
    assert [(change.anchor.node_id, change.type) for change in changes] == [("p1", ChangeType.FORMAT_ONLY)]


def test_block_without_identity_is_rejected():
    payload = {"type": "doc", "content": [{"type": "paragraph", "content": [{"type": "text", "text": "orphan"}]}]}

    with pytest.raises(MissingNodeIdentity) as exc_info:
        node_from_dict(payload, default_id="doc")
    assert exc_info.value.details == {"kind": "paragraph", "path": [0]}
