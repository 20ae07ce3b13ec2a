from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request

from docgate.api.errors import register_exception_handlers
from docgate.api.routes import router as api_router
from docgate.config import Settings, get_settings
from docgate.db import DBManager
from docgate.models import Base
from docgate.services.approvals import ApprovalService
from docgate.services.audit import AuditService
from docgate.services.auth import AuthService
from docgate.services.compare import ComparisonService
from docgate.services.decision_log import DecisionLog
from docgate.services.diff import DiffEngine
from docgate.services.locking import ProposalLocks
from docgate.services.metrics import MetricsService
from docgate.services.proposals import ProposalService
from docgate.services.review import ChangeReviewTracker
from docgate.services.snapshots import SnapshotStore
from docgate.services.threads import ThreadStore
from docgate.services.workflow_config import load_approval_graph

logger = logging.getLogger(__name__)


def _initialize_schema_and_seeds(app: FastAPI) -> None:
    settings: Settings = app.state.settings
    schema_mode = settings.resolved_schema_management_mode()
    if schema_mode == "auto_create":
        app.state.db.create_all(Base.metadata)
    elif schema_mode == "migrate_only":
        logger.info("Schema management mode is migrate_only; skipping create_all() at startup")
    elif schema_mode == "off":
        logger.info("Schema management mode is off; skipping create_all() at startup")

    if not app.state.db.has_all_tables(Base.metadata):
        logger.warning(
            "Database schema is not ready for startup seeding; skipping bootstrap keys (mode=%s, database_url=%s)",
            schema_mode,
            settings.database_url,
        )
        return

    if not settings.resolved_bootstrap_keys_enabled():
        logger.info("Bootstrap API key seeding disabled for environment=%s", settings.environment)
        return

    with app.state.db.session_scope() as session:
        app.state.auth_service.ensure_default_api_keys(
            session,
            [
                ("dev-viewer", "viewer", settings.bootstrap_viewer_key),
                ("dev-reviewer", "reviewer", settings.bootstrap_reviewer_key),
                ("dev-approver", "approver", settings.bootstrap_approver_key),
                ("dev-admin", "admin", settings.bootstrap_admin_key),
            ],
        )


def create_app(settings_override: Settings | None = None) -> FastAPI:
    settings = settings_override or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _initialize_schema_and_seeds(app)
        yield
        app.state.db.engine.dispose()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    register_exception_handlers(app)

    app.state.settings = settings
    # An invalid workflow raises InvalidStageGraph here and the app never starts.
    app.state.approval_graph = load_approval_graph(settings.approval_workflow_preset, settings.approval_workflow_path)
    app.state.db = DBManager(settings.database_url)
    app.state.metrics = MetricsService()
    app.state.locks = ProposalLocks()
    app.state.auth_service = AuthService()
    app.state.audit_service = AuditService()
    app.state.thread_store = ThreadStore()
    app.state.decision_log = DecisionLog()
    app.state.snapshot_store = SnapshotStore()
    app.state.diff_engine = DiffEngine(format_attrs=settings.format_attrs, snippet_max_chars=settings.snippet_max_chars)
    app.state.comparison_service = ComparisonService(app.state.diff_engine, app.state.snapshot_store, app.state.metrics)
    app.state.review_tracker = ChangeReviewTracker(
        comparison_service=app.state.comparison_service,
        thread_store=app.state.thread_store,
        audit_service=app.state.audit_service,
        locks=app.state.locks,
    )
    app.state.approval_service = ApprovalService(app.state.approval_graph, app.state.audit_service, app.state.locks)
    app.state.proposal_service = ProposalService(
        snapshot_store=app.state.snapshot_store,
        comparison_service=app.state.comparison_service,
        review_tracker=app.state.review_tracker,
        approval_service=app.state.approval_service,
        thread_store=app.state.thread_store,
        audit_service=app.state.audit_service,
        locks=app.state.locks,
        decision_log=app.state.decision_log,
        metrics=app.state.metrics,
    )

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        started = time.perf_counter()
        request_id = request.headers.get("X-Request-ID", str(uuid4()))
        request.state.request_id = request_id
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        app.state.metrics.observe("http.request.ms", elapsed_ms)
        app.state.metrics.inc(f"http.status.{response.status_code}")
        response.headers["X-Request-ID"] = request_id
        return response

    app.include_router(api_router)

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/metrics")
    async def metrics() -> dict:
        return app.state.metrics.snapshot()

    return app


app = create_app()
