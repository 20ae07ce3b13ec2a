from __future__ import annotations

from pathlib import Path

import pytest

from docgate.services.approval_graph import (
    PRESETS,
    ApprovalRole,
    ApprovalStage,
    ApprovalStageGraph,
    ApprovalStatus,
    default_graph,
)
from docgate.services.errors import InvalidStageGraph, OrderBlocked
from docgate.services.workflow_config import load_approval_graph


def _two_stage() -> ApprovalStageGraph:
    return ApprovalStageGraph.sequential([("stage1", ["security"]), ("stage2", ["legal"])])


def test_sequential_order_is_enforced():
    graph = _two_stage()
    state = graph.initial_state()

    with pytest.raises(OrderBlocked) as exc_info:
        graph.approve(state, ApprovalRole.LEGAL)
    assert exc_info.value.blocking_roles == ["security"]
    assert exc_info.value.details == {"role": "legal", "blockers": ["security"]}

    state = graph.approve(state, ApprovalRole.SECURITY)
    state = graph.approve(state, ApprovalRole.LEGAL)
    assert graph.all_approved(state)


def test_approve_is_idempotent_for_approved_role():
    graph = _two_stage()
    state = graph.approve(graph.initial_state(), ApprovalRole.SECURITY)

    assert graph.approve(state, ApprovalRole.SECURITY) is state
    assert state.status_of(ApprovalRole.SECURITY) is ApprovalStatus.APPROVED
    assert state.version == 1


def test_roles_within_a_stage_are_unordered():
    graph = default_graph()
    state = graph.approve(graph.initial_state(), ApprovalRole.ARCHITECTURE_COMMITTEE)
    state = graph.approve(state, ApprovalRole.SECURITY)

    assert graph.remaining_stages(state) == ["signoff"]
    assert graph.blocking_roles(graph.initial_state(), ApprovalRole.LEGAL) == [
        ApprovalRole.SECURITY,
        ApprovalRole.ARCHITECTURE_COMMITTEE,
    ]


def test_parallel_graph_has_no_prerequisites():
    graph = PRESETS["parallel"]()
    state = graph.approve(graph.initial_state(), ApprovalRole.LEGAL)

    assert state.pending_roles() == [ApprovalRole.SECURITY, ApprovalRole.ARCHITECTURE_COMMITTEE]


def test_transitive_prerequisites_block():
    graph = PRESETS["sequential"]()
    with pytest.raises(OrderBlocked) as exc_info:
        graph.approve(graph.initial_state(), ApprovalRole.LEGAL)
    assert exc_info.value.blocking_roles == ["security", "architectureCommittee"]


@pytest.mark.parametrize(
    "stages",
    [
        (),
        (ApprovalStage("a", frozenset()),),
        (ApprovalStage("a", frozenset({ApprovalRole.SECURITY})), ApprovalStage("a", frozenset({ApprovalRole.LEGAL}))),
        (ApprovalStage("a", frozenset({ApprovalRole.SECURITY})), ApprovalStage("b", frozenset({ApprovalRole.SECURITY}))),
        (ApprovalStage("a", frozenset({ApprovalRole.SECURITY}), depends_on="missing"),),
        (
            ApprovalStage("a", frozenset({ApprovalRole.SECURITY}), depends_on="b"),
            ApprovalStage("b", frozenset({ApprovalRole.LEGAL}), depends_on="a"),
        ),
    ],
)
def test_invalid_graphs_are_rejected(stages):
    with pytest.raises(InvalidStageGraph):
        ApprovalStageGraph(stages=stages)


def test_unknown_role_is_a_value_error():
    with pytest.raises(ValueError):
        ApprovalRole.parse("marketing")


def test_from_config_graph_mode():
    graph = ApprovalStageGraph.from_config(
        {
            "stages": [
                {"id": "signoff", "roles": ["legal"], "dependsOn": "review"},
                {"id": "review", "roles": ["security", "compliance"]},
            ]
        }
    )

    assert [stage.id for stage in graph.ordered_stages()] == ["review", "signoff"]
    assert graph.roles() == [ApprovalRole.SECURITY, ApprovalRole.COMPLIANCE, ApprovalRole.LEGAL]


def test_from_config_rejects_unknown_mode():
    with pytest.raises(InvalidStageGraph):
        ApprovalStageGraph.from_config({"mode": "random", "stages": [{"id": "a", "roles": ["legal"]}]})


def test_load_workflow_from_yaml(tmp_path: Path):
    path = tmp_path / "workflow.yaml"
    path.write_text(
        "approval_workflow:\n"
        "  mode: sequential\n"
        "  stages:\n"
        "    - id: product\n"
        "      roles: [product]\n"
        "    - id: legal\n"
        "      roles: [legal]\n",
        encoding="utf-8",
    )

    graph = load_approval_graph(path=path)

    assert graph.describe() == [
        {"id": "product", "roles": ["product"], "dependsOn": None},
        {"id": "legal", "roles": ["legal"], "dependsOn": "product"},
    ]


def test_load_workflow_cycle_fails(tmp_path: Path):
    path = tmp_path / "workflow.yaml"
    path.write_text(
        "stages:\n"
        "  - {id: a, roles: [security], dependsOn: b}\n"
        "  - {id: b, roles: [legal], dependsOn: a}\n",
        encoding="utf-8",
    )

    with pytest.raises(InvalidStageGraph):
        load_approval_graph(path=path)


def test_load_workflow_unknown_preset():
    with pytest.raises(InvalidStageGraph):
        load_approval_graph(preset="committee")
