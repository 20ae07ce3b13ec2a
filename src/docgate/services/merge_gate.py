from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Sequence

from docgate.services.approval_graph import ApprovalState
from docgate.services.diff_types import Change, ChangeType, ReviewState


class BlockerType(str, Enum):
    APPROVAL = "approval"
    THREAD = "thread"
    CHANGE = "change"


BLOCKER_TYPE_ORDER = {BlockerType.APPROVAL: 0, BlockerType.THREAD: 1, BlockerType.CHANGE: 2}


@dataclass(frozen=True)
class MergeGatePolicy:
    allow_merge_with_deferred_changes: bool = False
    ignore_format_only_changes_for_gate: bool = False

    def as_dict(self) -> dict[str, bool]:
        return {
            "allowMergeWithDeferredChanges": self.allow_merge_with_deferred_changes,
            "ignoreFormatOnlyChangesForGate": self.ignore_format_only_changes_for_gate,
        }


@dataclass(frozen=True)
class MergeBlocker:
    id: str
    type: BlockerType
    label: str
    link: dict[str, Any]
    role: str | None = None
    thread_id: str | None = None
    change_id: str | None = None
    state: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"id": self.id, "type": self.type.value, "label": self.label, "link": dict(self.link)}
        if self.role is not None:
            payload["role"] = self.role
        if self.thread_id is not None:
            payload["threadId"] = self.thread_id
        if self.change_id is not None:
            payload["changeId"] = self.change_id
        if self.state is not None:
            payload["state"] = self.state
        return payload


@dataclass(frozen=True)
class OpenThread:
    id: str
    anchor_node_id: str | None = None


@dataclass(frozen=True)
class MergeDecision:
    allowed: bool
    blockers: tuple[MergeBlocker, ...]
    policy: MergeGatePolicy
    pending_approvals: int
    open_threads: int
    change_blockers: int
    state_version: int | None = None
    informational: tuple[str, ...] = field(default_factory=tuple)

    def details(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "pendingApprovals": self.pending_approvals,
            "openThreads": self.open_threads,
            "changeBlockers": self.change_blockers,
            "blockers": [blocker.to_payload() for blocker in self.blockers],
            "policy": self.policy.as_dict(),
            "stateVersion": self.state_version,
            "rejectedChanges": list(self.informational),
        }


def change_blocks_merge(change: Change, policy: MergeGatePolicy) -> bool:
    state = change.review_state
    if state is ReviewState.REJECTED or state is ReviewState.ACCEPTED:
        return False
    if state is ReviewState.PENDING:
        return True
    if state is ReviewState.DEFERRED:
        if not policy.allow_merge_with_deferred_changes:
            return True
        return change.type is ChangeType.FORMAT_ONLY and not policy.ignore_format_only_changes_for_gate
    raise ValueError(f"Unknown review state: {state}")


def approval_blockers(approval_state: ApprovalState) -> list[MergeBlocker]:
    blockers = []
    for role in approval_state.pending_roles():
        blockers.append(
            MergeBlocker(
                id=f"approval:{role.value}",
                type=BlockerType.APPROVAL,
                label=f"{role.label} approval is pending",
                role=role.value,
                state=approval_state.status_of(role).value,
                link={"tab": "approvals", "role": role.value},
            )
        )
    return blockers


def thread_blockers(open_thread_count: int, open_threads: Sequence[OpenThread] = ()) -> list[MergeBlocker]:
    blockers = [
        MergeBlocker(
            id=f"thread:{thread.id}",
            type=BlockerType.THREAD,
            label=f"Thread {thread.id} is still open",
            thread_id=thread.id,
            link={"tab": "discussions", "threadId": thread.id, "nodeId": thread.anchor_node_id},
        )
        for thread in open_threads
    ]
    # The thread store may report more open threads than it can name.
    for idx in range(len(blockers), open_thread_count):
        blockers.append(
            MergeBlocker(
                id=f"thread:open:{idx + 1}",
                type=BlockerType.THREAD,
                label="A required thread is still open",
                link={"tab": "discussions"},
            )
        )
    return blockers


def change_blockers(changes: Sequence[Change], policy: MergeGatePolicy) -> list[MergeBlocker]:
    blockers = []
    for change in changes:
        if not change_blocks_merge(change, policy):
            continue
        blockers.append(
            MergeBlocker(
                id=f"change:{change.id}",
                type=BlockerType.CHANGE,
                label=f"Change {change.id} is {change.review_state.value}",
                change_id=change.id,
                state=change.review_state.value,
                link={"tab": "history", "changeId": change.id, "nodeId": change.anchor.node_id},
            )
        )
    return blockers


def evaluate(
    approval_state: ApprovalState,
    open_thread_count: int,
    changes: Sequence[Change],
    policy: MergeGatePolicy,
    *,
    open_threads: Sequence[OpenThread] = (),
    state_version: int | None = None,
) -> MergeDecision:
    if open_thread_count < 0:
        raise ValueError("open_thread_count must be >= 0")
    open_thread_count = max(open_thread_count, len(open_threads))

    approvals = approval_blockers(approval_state)
    threads = thread_blockers(open_thread_count, open_threads)
    change_items = change_blockers(changes, policy)
    ordered = sorted(
        enumerate(approvals + threads + change_items),
        key=lambda entry: (BLOCKER_TYPE_ORDER[entry[1].type], entry[0]),
    )
    blockers = tuple(blocker for _, blocker in ordered)

    return MergeDecision(
        allowed=not blockers,
        blockers=blockers,
        policy=policy,
        pending_approvals=len(approvals),
        open_threads=open_thread_count,
        change_blockers=len(change_items),
        state_version=state_version,
        informational=tuple(change.id for change in changes if change.review_state is ReviewState.REJECTED),
    )
