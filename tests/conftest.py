from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from docgate.config import Settings
from docgate.main import create_app


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    return Settings(
        environment="test",
        database_url=f"sqlite:///{tmp_path / 'test.db'}",
    )


@pytest.fixture
def auth_headers(test_settings: Settings) -> dict[str, dict[str, str]]:
    return {
        "viewer": {"X-DocGate-API-Key": test_settings.bootstrap_viewer_key},
        "reviewer": {"X-DocGate-API-Key": test_settings.bootstrap_reviewer_key},
        "approver": {"X-DocGate-API-Key": test_settings.bootstrap_approver_key},
        "admin": {"X-DocGate-API-Key": test_settings.bootstrap_admin_key},
    }


@pytest.fixture
def client(test_settings: Settings):
    app = create_app(test_settings)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def db_session(client):
    session = client.app.state.db.session()
    try:
        yield session
    finally:
        session.close()


def make_doc(*blocks: dict, doc_id: str = "doc", **root_attrs) -> dict:
    return {"id": doc_id, "kind": "doc", "attrs": dict(root_attrs), "children": list(blocks)}


def para(node_id: str, text: str, **attrs) -> dict:
    return {"id": node_id, "kind": "paragraph", "attrs": dict(attrs), "text": text}


@pytest.fixture
def sample_docs() -> dict[str, dict]:
    base = make_doc(
        para("p1", "Scope of the data retention policy."),
        para("p2", "Records are kept for seven years."),
        para("p3", "Exceptions require legal review."),
    )
    head = make_doc(
        para("p1", "Scope of the data retention policy."),
        para("p2", "Records are kept for five years."),
        para("p3", "Exceptions require legal review."),
        para("p4", "Backups follow the same schedule."),
    )
    return {"base": base, "head": head}
