from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from docgate.services.approval_graph import PRESETS, ApprovalStageGraph
from docgate.services.errors import InvalidStageGraph

logger = logging.getLogger(__name__)


def _safe_yaml_load(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f)


def load_approval_graph(preset: str = "default", path: Path | None = None) -> ApprovalStageGraph:
    """Resolve the workflow once at startup; an invalid file fails the whole process."""
    if path is not None:
        if not path.exists():
            raise InvalidStageGraph(f"Approval workflow file not found: {path}")
        try:
            raw = _safe_yaml_load(path) or {}
        except yaml.YAMLError as exc:
            raise InvalidStageGraph(f"Approval workflow file is not valid YAML: {path}") from exc
        if not isinstance(raw, dict):
            raise InvalidStageGraph(f"Approval workflow must be a mapping: {path}")
        graph = ApprovalStageGraph.from_config(raw.get("approval_workflow", raw))
        logger.info("Loaded approval workflow from %s with stages %s", path, [stage.id for stage in graph.ordered_stages()])
        return graph

    factory = PRESETS.get(preset)
    if factory is None:
        raise InvalidStageGraph(f"Unknown approval workflow preset: {preset}")
    return factory()
