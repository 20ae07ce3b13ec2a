from __future__ import annotations

import pytest

from docgate.services import merge_gate
from docgate.services.approval_graph import ApprovalRole, ApprovalStageGraph
from docgate.services.diff_types import Anchor, Change, ChangeContext, ChangeType, ReviewState
from docgate.services.merge_gate import BlockerType, MergeGatePolicy, OpenThread


def _change(change_id: str, state: ReviewState, change_type: ChangeType = ChangeType.MODIFIED) -> Change:
    return Change(
        id=change_id,
        type=change_type,
        from_ref="r1",
        to_ref="r2",
        anchor=Anchor(node_id=f"node-{change_id}", from_offset=0, to_offset=4),
        context=ChangeContext(before="", after=""),
        snippet="text",
        author="alice",
        review_state=state,
    )


@pytest.fixture
def graph() -> ApprovalStageGraph:
    return ApprovalStageGraph.sequential([("stage1", ["security"]), ("stage2", ["legal"])])


def _approved(graph: ApprovalStageGraph):
    state = graph.approve(graph.initial_state(), ApprovalRole.SECURITY)
    return graph.approve(state, ApprovalRole.LEGAL)


def test_pending_change_and_unapproved_role_block():
    graph = ApprovalStageGraph.parallel([("security", ["security"])])
    decision = merge_gate.evaluate(
        graph.initial_state(),
        0,
        [_change("c1", ReviewState.PENDING)],
        MergeGatePolicy(),
    )

    assert decision.allowed is False
    assert [blocker.type for blocker in decision.blockers] == [BlockerType.APPROVAL, BlockerType.CHANGE]
    assert decision.blockers[0].id == "approval:security"
    assert decision.blockers[1].change_id == "c1"


def test_deferred_change_allowed_by_policy(graph):
    changes = [_change("c1", ReviewState.DEFERRED)]

    blocked = merge_gate.evaluate(_approved(graph), 0, changes, MergeGatePolicy())
    allowed = merge_gate.evaluate(_approved(graph), 0, changes, MergeGatePolicy(allow_merge_with_deferred_changes=True))

    assert blocked.allowed is False
    assert allowed.allowed is True
    assert allowed.blockers == ()


def test_deferred_format_only_needs_both_flags(graph):
    changes = [_change("c1", ReviewState.DEFERRED, ChangeType.FORMAT_ONLY)]

    deferred_only = MergeGatePolicy(allow_merge_with_deferred_changes=True)
    both = MergeGatePolicy(allow_merge_with_deferred_changes=True, ignore_format_only_changes_for_gate=True)

    assert merge_gate.evaluate(_approved(graph), 0, changes, deferred_only).allowed is False
    assert merge_gate.evaluate(_approved(graph), 0, changes, both).allowed is True


def test_pending_format_only_always_blocks(graph):
    changes = [_change("c1", ReviewState.PENDING, ChangeType.FORMAT_ONLY)]
    policy = MergeGatePolicy(allow_merge_with_deferred_changes=True, ignore_format_only_changes_for_gate=True)

    assert merge_gate.evaluate(_approved(graph), 0, changes, policy).allowed is False


def test_rejected_and_accepted_never_block(graph):
    changes = [_change("c1", ReviewState.ACCEPTED), _change("c2", ReviewState.REJECTED)]

    decision = merge_gate.evaluate(_approved(graph), 0, changes, MergeGatePolicy())

    assert decision.allowed is True
    assert decision.details()["rejectedChanges"] == ["c2"]


def test_open_threads_block_with_placeholders(graph):
    decision = merge_gate.evaluate(
        _approved(graph),
        3,
        [],
        MergeGatePolicy(),
        open_threads=[OpenThread(id="t1", anchor_node_id="p1")],
    )

    assert [blocker.id for blocker in decision.blockers] == ["thread:t1", "thread:open:2", "thread:open:3"]
    assert decision.blockers[0].link == {"tab": "discussions", "threadId": "t1", "nodeId": "p1"}
    assert decision.open_threads == 3


def test_negative_thread_count_rejected(graph):
    with pytest.raises(ValueError):
        merge_gate.evaluate(graph.initial_state(), -1, [], MergeGatePolicy())


def test_blocker_ordering_is_stable(graph):
    changes = [_change("c2", ReviewState.PENDING), _change("c1", ReviewState.DEFERRED)]
    threads = [OpenThread(id="t9"), OpenThread(id="t1")]

    first = merge_gate.evaluate(graph.initial_state(), 2, changes, MergeGatePolicy(), open_threads=threads)
    second = merge_gate.evaluate(graph.initial_state(), 2, changes, MergeGatePolicy(), open_threads=threads)

    assert first.blockers == second.blockers
    assert [blocker.id for blocker in first.blockers] == [
        "approval:security",
        "approval:legal",
        "thread:t9",
        "thread:t1",
        "change:c2",
        "change:c1",
    ]


def test_details_payload_shape(graph):
    decision = merge_gate.evaluate(graph.initial_state(), 0, [], MergeGatePolicy(), state_version=7)
    details = decision.details()

    assert details["pendingApprovals"] == 2
    assert details["openThreads"] == 0
    assert details["stateVersion"] == 7
    assert details["policy"] == {"allowMergeWithDeferredChanges": False, "ignoreFormatOnlyChangesForGate": False}
    assert details["blockers"][0]["label"] == "Security approval is pending"
