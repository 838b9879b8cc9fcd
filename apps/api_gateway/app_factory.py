# apps/api_gateway/app_factory.py
from __future__ import annotations

from typing import Optional

from fastapi import FastAPI
from fastapi.responses import RedirectResponse

from apps.api_gateway.documents import create_documents_router
from services.batch.orchestrator import BatchOrchestrator
from services.records.client import RecordsClient


def create_app(
    *,
    orchestrator: BatchOrchestrator,
    records: Optional[RecordsClient] = None,
) -> FastAPI:
    app = FastAPI(title="BAPP Scan Verification")

    @app.get("/")
    async def root():
        return RedirectResponse(url="/docs")

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    app.include_router(create_documents_router(orchestrator=orchestrator, records=records))
    return app
