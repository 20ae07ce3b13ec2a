from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Iterator, Mapping, Sequence

from docgate.services.errors import InvalidStageGraph, OrderBlocked


class ApprovalRole(str, Enum):
    SECURITY = "security"
    ARCHITECTURE_COMMITTEE = "architectureCommittee"
    LEGAL = "legal"
    COMPLIANCE = "compliance"
    PRODUCT = "product"

    @property
    def label(self) -> str:
        return ROLE_LABELS[self]

    @classmethod
    def parse(cls, value: str | ApprovalRole) -> ApprovalRole:
        if isinstance(value, ApprovalRole):
            return value
        try:
            return cls(str(value).strip())
        except ValueError as exc:
            allowed = ", ".join(role.value for role in cls)
            raise ValueError(f"role must be one of {allowed}") from exc


ROLE_LABELS = {
    ApprovalRole.SECURITY: "Security",
    ApprovalRole.ARCHITECTURE_COMMITTEE: "Architecture Committee",
    ApprovalRole.LEGAL: "Legal",
    ApprovalRole.COMPLIANCE: "Compliance",
    ApprovalRole.PRODUCT: "Product",
}


class ApprovalStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"


@dataclass(frozen=True)
class ApprovalStage:
    id: str
    roles: frozenset[ApprovalRole]
    depends_on: str | None = None


@dataclass(frozen=True)
class ApprovalState:
    """Status of every configured role, in stage order. Approval is one-way."""

    statuses: tuple[tuple[ApprovalRole, ApprovalStatus], ...]
    version: int = 0

    def status_of(self, role: ApprovalRole) -> ApprovalStatus:
        for candidate, status in self.statuses:
            if candidate is role:
                return status
        raise LookupError(f"Role {role.value} is not part of this approval workflow")

    def is_approved(self, role: ApprovalRole) -> bool:
        return self.status_of(role) is ApprovalStatus.APPROVED

    def all_approved(self) -> bool:
        return all(status is ApprovalStatus.APPROVED for _, status in self.statuses)

    def pending_roles(self) -> list[ApprovalRole]:
        return [role for role, status in self.statuses if status is not ApprovalStatus.APPROVED]

    def with_approved(self, role: ApprovalRole) -> ApprovalState:
        self.status_of(role)
        return ApprovalState(
            statuses=tuple(
                (candidate, ApprovalStatus.APPROVED if candidate is role else status) for candidate, status in self.statuses
            ),
            version=self.version + 1,
        )

    def as_dict(self) -> dict[str, str]:
        return {role.value: status.value for role, status in self.statuses}


@dataclass(frozen=True)
class ApprovalStageGraph:
    stages: tuple[ApprovalStage, ...]
    _stage_by_role: dict[ApprovalRole, ApprovalStage] = field(init=False, repr=False, compare=False)
    _stage_by_id: dict[str, ApprovalStage] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.stages:
            raise InvalidStageGraph("An approval workflow needs at least one stage")
        stage_by_id: dict[str, ApprovalStage] = {}
        stage_by_role: dict[ApprovalRole, ApprovalStage] = {}
        for stage in self.stages:
            if stage.id in stage_by_id:
                raise InvalidStageGraph(f"Duplicate stage id {stage.id!r}")
            if not stage.roles:
                raise InvalidStageGraph(f"Stage {stage.id!r} has no roles")
            stage_by_id[stage.id] = stage
            for role in stage.roles:
                if role in stage_by_role:
                    raise InvalidStageGraph(
                        f"Role {role.value!r} appears in stages {stage_by_role[role].id!r} and {stage.id!r}"
                    )
                stage_by_role[role] = stage
        for stage in self.stages:
            if stage.depends_on is not None and stage.depends_on not in stage_by_id:
                raise InvalidStageGraph(f"Stage {stage.id!r} depends on unknown stage {stage.depends_on!r}")
        object.__setattr__(self, "_stage_by_id", stage_by_id)
        object.__setattr__(self, "_stage_by_role", stage_by_role)
        self._check_acyclic()

    def _check_acyclic(self) -> None:
        for stage in self.stages:
            seen = [stage.id]
            current = stage.depends_on
            while current is not None:
                if current in seen:
                    cycle = " -> ".join(seen + [current])
                    raise InvalidStageGraph(f"Approval stages form a cycle: {cycle}", details={"cycle": seen + [current]})
                seen.append(current)
                current = self._stage_by_id[current].depends_on

    @classmethod
    def sequential(cls, groups: Sequence[tuple[str, Iterable[ApprovalRole | str]]]) -> ApprovalStageGraph:
        stages = []
        previous: str | None = None
        for stage_id, roles in groups:
            stages.append(ApprovalStage(id=stage_id, roles=_parse_roles(stage_id, roles), depends_on=previous))
            previous = stage_id
        return cls(stages=tuple(stages))

    @classmethod
    def parallel(cls, groups: Sequence[tuple[str, Iterable[ApprovalRole | str]]]) -> ApprovalStageGraph:
        return cls(stages=tuple(ApprovalStage(id=stage_id, roles=_parse_roles(stage_id, roles)) for stage_id, roles in groups))

    @classmethod
    def from_config(cls, payload: Mapping[str, Any]) -> ApprovalStageGraph:
        """Build a graph from ``{"mode"?: sequential|parallel|graph, "stages": [{"id", "roles", "dependsOn"?}]}``."""
        raw_stages = payload.get("stages")
        if not isinstance(raw_stages, list) or not raw_stages:
            raise InvalidStageGraph("Approval workflow config must define a non-empty 'stages' list")
        mode = str(payload.get("mode") or "graph").strip().lower()
        groups: list[tuple[str, list[str]]] = []
        depends: list[str | None] = []
        for idx, raw in enumerate(raw_stages):
            if not isinstance(raw, Mapping):
                raise InvalidStageGraph(f"stages[{idx}] must be a mapping")
            stage_id = str(raw.get("id") or "").strip()
            if not stage_id:
                raise InvalidStageGraph(f"stages[{idx}].id is required")
            groups.append((stage_id, list(raw.get("roles") or [])))
            depends_on = raw.get("dependsOn", raw.get("depends_on"))
            depends.append(str(depends_on).strip() if depends_on else None)

        if mode == "sequential":
            return cls.sequential(groups)
        if mode == "parallel":
            return cls.parallel(groups)
        if mode != "graph":
            raise InvalidStageGraph(f"Unsupported approval workflow mode: {mode}")
        return cls(
            stages=tuple(
                ApprovalStage(id=stage_id, roles=_parse_roles(stage_id, roles), depends_on=depends_on)
                for (stage_id, roles), depends_on in zip(groups, depends)
            )
        )

    def ordered_stages(self) -> list[ApprovalStage]:
        """Stages in dependency order, declaration order among independent stages."""
        ordered: list[ApprovalStage] = []
        placed: set[str] = set()
        remaining = list(self.stages)
        while remaining:
            for stage in remaining:
                if stage.depends_on is None or stage.depends_on in placed:
                    ordered.append(stage)
                    placed.add(stage.id)
                    remaining.remove(stage)
                    break
        return ordered

    def roles(self) -> list[ApprovalRole]:
        return [role for stage in self.ordered_stages() for role in _sorted_roles(stage.roles)]

    def stage_of(self, role: ApprovalRole) -> ApprovalStage:
        try:
            return self._stage_by_role[role]
        except KeyError as exc:
            raise LookupError(f"Role {role.value} is not part of this approval workflow") from exc

    def prerequisite_stages(self, stage: ApprovalStage) -> Iterator[ApprovalStage]:
        current = stage.depends_on
        while current is not None:
            upstream = self._stage_by_id[current]
            yield upstream
            current = upstream.depends_on

    def initial_state(self) -> ApprovalState:
        return ApprovalState(statuses=tuple((role, ApprovalStatus.PENDING) for role in self.roles()))

    def state_from(self, statuses: Mapping[ApprovalRole, ApprovalStatus], version: int = 0) -> ApprovalState:
        return ApprovalState(
            statuses=tuple((role, statuses.get(role, ApprovalStatus.PENDING)) for role in self.roles()),
            version=version,
        )

    def blocking_roles(self, state: ApprovalState, role: ApprovalRole) -> list[ApprovalRole]:
        stage = self.stage_of(role)
        upstream_ids = {upstream.id for upstream in self.prerequisite_stages(stage)}
        return [
            candidate
            for candidate in self.roles()
            if self._stage_by_role[candidate].id in upstream_ids and not state.is_approved(candidate)
        ]

    def approve(self, state: ApprovalState, role: ApprovalRole) -> ApprovalState:
        if state.is_approved(role):
            return state
        blockers = self.blocking_roles(state, role)
        if blockers:
            raise OrderBlocked(role.value, [blocker.value for blocker in blockers])
        return state.with_approved(role)

    def all_approved(self, state: ApprovalState) -> bool:
        return all(state.is_approved(role) for role in self.roles())

    def remaining_stages(self, state: ApprovalState) -> list[str]:
        return [
            stage.id for stage in self.ordered_stages() if not all(state.is_approved(role) for role in stage.roles)
        ]

    def describe(self) -> list[dict[str, Any]]:
        return [
            {
                "id": stage.id,
                "roles": [role.value for role in _sorted_roles(stage.roles)],
                "dependsOn": stage.depends_on,
            }
            for stage in self.ordered_stages()
        ]


def _parse_roles(stage_id: str, roles: Iterable[ApprovalRole | str]) -> frozenset[ApprovalRole]:
    parsed = set()
    for role in roles:
        try:
            parsed.add(ApprovalRole.parse(role))
        except ValueError as exc:
            raise InvalidStageGraph(f"Stage {stage_id!r}: {exc}") from exc
    return frozenset(parsed)


def _sorted_roles(roles: Iterable[ApprovalRole]) -> list[ApprovalRole]:
    declared = list(ApprovalRole)
    return sorted(roles, key=declared.index)


def default_graph() -> ApprovalStageGraph:
    return ApprovalStageGraph(
        stages=(
            ApprovalStage(
                id="review",
                roles=frozenset({ApprovalRole.SECURITY, ApprovalRole.ARCHITECTURE_COMMITTEE}),
            ),
            ApprovalStage(id="signoff", roles=frozenset({ApprovalRole.LEGAL}), depends_on="review"),
        )
    )


PRESETS = {
    "default": default_graph,
    "sequential": lambda: ApprovalStageGraph.sequential(
        [
            ("security", [ApprovalRole.SECURITY]),
            ("architecture", [ApprovalRole.ARCHITECTURE_COMMITTEE]),
            ("legal", [ApprovalRole.LEGAL]),
        ]
    ),
    "parallel": lambda: ApprovalStageGraph.parallel(
        [
            ("security", [ApprovalRole.SECURITY]),
            ("architecture", [ApprovalRole.ARCHITECTURE_COMMITTEE]),
            ("legal", [ApprovalRole.LEGAL]),
        ]
    ),
}
