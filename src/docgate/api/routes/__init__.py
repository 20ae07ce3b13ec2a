from __future__ import annotations

from fastapi import APIRouter

from docgate.api.routes.approvals import router as approvals_router
from docgate.api.routes.auth import router as auth_router
from docgate.api.routes.documents import router as documents_router
from docgate.api.routes.merge import router as merge_router
from docgate.api.routes.proposals import router as proposals_router
from docgate.api.routes.threads import router as threads_router

router = APIRouter(prefix="/api/v1")
for child in (
    documents_router,
    proposals_router,
    approvals_router,
    threads_router,
    merge_router,
    auth_router,
):
    router.include_router(child)
