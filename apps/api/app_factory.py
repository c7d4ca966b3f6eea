# apps/api/app_factory.py
from __future__ import annotations

from fastapi import FastAPI
from fastapi.responses import RedirectResponse

from apps.api.kyc import create_kyc_router
from services.ingestion.staging import FileStager
from services.submission.coordinator import SubmissionCoordinator


def create_app(*, coordinator: SubmissionCoordinator, stager: FileStager) -> FastAPI:
    app = FastAPI(title="KYC Verification Submission API")

    @app.get("/")
    async def root():
        return RedirectResponse(url="/docs")

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "blob_store": type(coordinator.blob_store).__name__}

    app.include_router(create_kyc_router(coordinator=coordinator, stager=stager))
    return app
