from __future__ import annotations

import os
from pathlib import Path
import subprocess
import sys

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import inspect, select, text

from docgate.config import Settings
from docgate.main import create_app
from docgate.models import ApiKey, Base
from docgate.services.errors import InvalidStageGraph


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[1]


def _prod_settings(tmp_path: Path, **overrides) -> Settings:
    return Settings(environment="prod", database_url=f"sqlite:///{tmp_path / 'prod.db'}", **overrides)


def test_prod_default_schema_mode_does_not_auto_create(tmp_path: Path):
    settings = _prod_settings(tmp_path)
    app = create_app(settings)
    with TestClient(app):
        pass

    assert settings.resolved_schema_management_mode() == "migrate_only"
    assert settings.resolved_bootstrap_keys_enabled() is False
    tables = set(inspect(app.state.db.engine).get_table_names())
    assert "proposals" not in tables


def test_prod_auto_create_with_bootstrap_disabled_skips_key_seeding(tmp_path: Path):
    settings = _prod_settings(tmp_path, schema_management_mode="auto_create", bootstrap_keys_enabled=False)
    app = create_app(settings)
    with TestClient(app) as client:
        assert client.get("/api/v1/documents", headers={"X-DocGate-API-Key": settings.bootstrap_admin_key}).status_code == 401

    tables = set(inspect(app.state.db.engine).get_table_names())
    assert set(Base.metadata.tables).issubset(tables)
    with app.state.db.session_scope() as session:
        assert session.scalars(select(ApiKey)).all() == []


def test_bootstrap_keys_are_seeded_once(tmp_path: Path):
    settings = _prod_settings(tmp_path, schema_management_mode="auto_create", bootstrap_keys_enabled=True)
    for _ in range(2):
        app = create_app(settings)
        with TestClient(app):
            pass

    with app.state.db.session_scope() as session:
        roles = sorted(row.role for row in session.scalars(select(ApiKey)).all())
    assert roles == ["admin", "approver", "reviewer", "viewer"]


def test_invalid_workflow_file_fails_startup(tmp_path: Path):
    workflow = tmp_path / "workflow.yaml"
    workflow.write_text(
        "stages:\n  - {id: a, roles: [security]}\n  - {id: b, roles: [security]}\n",
        encoding="utf-8",
    )

    with pytest.raises(InvalidStageGraph):
        create_app(_prod_settings(tmp_path, approval_workflow_path=workflow))


def test_configured_workflow_drives_approvals(tmp_path: Path):
    workflow = tmp_path / "workflow.yaml"
    workflow.write_text(
        "mode: parallel\nstages:\n  - {id: compliance, roles: [compliance]}\n  - {id: product, roles: [product]}\n",
        encoding="utf-8",
    )
    settings = Settings(
        environment="test",
        database_url=f"sqlite:///{tmp_path / 'wf.db'}",
        approval_workflow_path=workflow,
    )
    app = create_app(settings)
    with TestClient(app) as client:
        body = client.get("/api/v1/approvals/workflow", headers={"X-DocGate-API-Key": settings.bootstrap_viewer_key}).json()

    assert body["roles"] == ["compliance", "product"]
    assert all(stage["dependsOn"] is None for stage in body["stages"])


def test_request_id_is_echoed(client):
    response = client.get("/healthz", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


def test_alembic_upgrade_downgrade_contract(tmp_path: Path):
    repo_root = _repo_root()
    db_path = tmp_path / "migrate.db"
    env = {**os.environ, "DOCGATE_DATABASE_URL": f"sqlite:///{db_path}"}

    for args in (["upgrade", "head"], ["downgrade", "base"], ["upgrade", "head"]):
        result = subprocess.run(
            [sys.executable, "-m", "alembic", *args],
            cwd=repo_root,
            env=env,
            capture_output=True,
            text=True,
            check=False,
        )
        assert result.returncode == 0, result.stderr

    app = create_app(Settings(environment="prod", database_url=f"sqlite:///{db_path}"))
    assert app.state.db.has_all_tables(Base.metadata)
    with app.state.db.engine.connect() as conn:
        triggers = set(conn.scalars(text("SELECT name FROM sqlite_master WHERE type = 'trigger'")))
    assert {"trg_decision_log_block_update", "trg_decision_log_block_delete"} <= triggers
