from __future__ import annotations

from typing import Any, Sequence


class GateDomainError(Exception):
    """Base class for typed failures returned by the review and merge core."""

    code = "domain_error"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})


class IncomparableSnapshots(GateDomainError):
    code = "INCOMPARABLE_SNAPSHOTS"

    def __init__(self, before_root_id: str, after_root_id: str):
        super().__init__(
            f"Snapshots do not share a lineage: root {before_root_id!r} vs {after_root_id!r}",
            details={"before_root_id": before_root_id, "after_root_id": after_root_id},
        )


class MissingNodeIdentity(GateDomainError):
    code = "MISSING_NODE_IDENTITY"

    def __init__(self, kind: str, path: Sequence[int]):
        super().__init__(
            f"Block node of kind {kind!r} at path {list(path)} has no node id",
            details={"kind": kind, "path": list(path)},
        )


class InvalidStageGraph(GateDomainError):
    code = "INVALID_STAGE_GRAPH"


class StaleChange(GateDomainError):
    code = "STALE_CHANGE"

    def __init__(self, change_id: str, *, from_ref: str, to_ref: str, latest_from_ref: str | None, latest_to_ref: str | None):
        super().__init__(
            f"Change {change_id} is stale; re-fetch the comparison before retrying",
            details={
                "changeId": change_id,
                "fromRef": from_ref,
                "toRef": to_ref,
                "latestFromRef": latest_from_ref,
                "latestToRef": latest_to_ref,
            },
        )
        self.change_id = change_id


class OrderBlocked(GateDomainError):
    code = "APPROVAL_ORDER_BLOCKED"

    def __init__(self, role: str, blocking_roles: Sequence[str]):
        super().__init__(
            "Approval order is blocked by unmet prerequisites",
            details={"role": role, "blockers": list(blocking_roles)},
        )
        self.role = role
        self.blocking_roles = list(blocking_roles)


class MergeGateBlocked(GateDomainError):
    code = "MERGE_GATE_BLOCKED"

    def __init__(self, details: dict[str, Any]):
        super().__init__("Merge gate blocked", details=details)


class ConcurrentModification(GateDomainError):
    code = "CONCURRENT_MODIFICATION"

    def __init__(self, proposal_id: str, expected_version: int):
        super().__init__(
            f"Proposal {proposal_id} changed concurrently (expected state_version={expected_version}); retry",
            details={"proposalId": proposal_id, "expectedVersion": expected_version},
        )


class ProposalClosed(GateDomainError):
    code = "PROPOSAL_CLOSED"

    def __init__(self, proposal_id: str, status: str):
        super().__init__(f"Proposal {proposal_id} is {status} and no longer accepts changes", details={"status": status})


class BaselineMoved(GateDomainError):
    code = "BASELINE_MOVED"

    def __init__(self, proposal_id: str, base_ref: str, baseline_ref: str | None):
        super().__init__(
            f"Baseline moved from {base_ref} to {baseline_ref} since proposal {proposal_id} was opened",
            details={"baseRef": base_ref, "baselineRef": baseline_ref},
        )


class DuplicateNodeIdentity(GateDomainError):
    code = "DUPLICATE_NODE_IDENTITY"

    def __init__(self, node_id: str, path: Sequence[int]):
        super().__init__(
            f"Node id {node_id!r} appears more than once in one snapshot (again at path {list(path)})",
            details={"nodeId": node_id, "path": list(path)},
        )
