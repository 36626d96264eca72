"""
FastAPI Application Entry Point.

Citation Consensus Checker API.
"""

import json
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any, AsyncGenerator

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from app.config import IdentifierBackend, get_settings
from citecheck import __version__
from citecheck.errors import (
    AlreadyValidatedError,
    CitationCheckError,
    InfrastructureError,
    NotFoundError,
    ValidationInputError,
)
from citecheck.identification.schemas import Citation, CitationDocument, ManualReviewStatus
from citecheck.service import CheckService
from citecheck.storage.schemas import DocumentSnapshot
from citecheck.utils.logger import get_logger, setup_logging
from citecheck.validation.risk import effective_risk
from citecheck.validation.schemas import JobEvent, ValidationJob

logger = get_logger(__name__)
settings = get_settings()


@lru_cache
def get_service() -> CheckService:
    """Process-wide check service (overridden in tests)."""
    return CheckService.from_settings(get_settings())


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan events."""
    # Startup
    setup_logging(settings.log_level)
    logger.info("Starting Citation Checker API...")
    logger.info(f"LLM Backend: {settings.llm_backend.value}")
    logger.info(f"Panel mode: {settings.panel_mode.value}")
    settings.ensure_directories()
    yield
    # Shutdown
    logger.info("Shutting down Citation Checker API...")
    if get_service.cache_info().currsize:
        await get_service().orchestrator.shutdown()


app = FastAPI(
    title="Citation Consensus Checker",
    description="Multi-agent consensus validation of legal citations",
    version=__version__,
    lifespan=lifespan,
)

# CORS middleware for frontend integration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Error Mapping
# ============================================================================


def status_code_for(error: CitationCheckError) -> int:
    match error:
        case ValidationInputError():
            return 400
        case NotFoundError():
            return 404
        case AlreadyValidatedError():
            return 409
        case InfrastructureError():
            return 503
    return 500


@app.exception_handler(CitationCheckError)
async def citation_check_error_handler(request: Request, exc: CitationCheckError) -> JSONResponse:
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


# ============================================================================
# Request Bodies and Response Payloads
# ============================================================================


class ParagraphEdit(BaseModel):
    paragraph_text: str = Field(..., alias="paragraphText")


class ManualReviewUpdate(BaseModel):
    status: ManualReviewStatus | None = None
    notes: str | None = None
    reviewer: str | None = None


def citation_payload(citation: Citation) -> dict[str, Any]:
    """Citation as stored, plus the risk level to display."""
    risk = effective_risk(citation)
    payload = citation.model_dump(mode="json")
    payload["effectiveRisk"] = risk.risk_level.value if risk.risk_level else None
    payload["riskSource"] = risk.source.value
    return payload


def snapshot_payload(snapshot: DocumentSnapshot) -> dict[str, Any]:
    return {
        "checkId": snapshot.snapshot_id,
        "lineageId": snapshot.lineage_id,
        "version": snapshot.version,
        "parentId": snapshot.parent_id,
        "status": snapshot.status.value,
        "createdAt": snapshot.created_at.isoformat(),
        "description": snapshot.description,
        "citationCounter": snapshot.citation_counter,
        "metadata": snapshot.document.metadata,
        "content": [p.model_dump(mode="json") for p in snapshot.document.content],
        "citations": [citation_payload(c) for c in snapshot.document.citations],
    }


def progress_payload(job: ValidationJob, tier: str) -> dict[str, int]:
    progress = job.tier2_progress if tier == "tier2" else job.tier3_progress
    return {
        "pending": progress.pending,
        "processing": progress.processing,
        "completed": progress.completed,
        "failed": progress.failed,
        "total": progress.total,
        "current": progress.current,
        "percentage": progress.percentage,
    }


def job_payload(job: ValidationJob) -> dict[str, Any]:
    return {
        "jobId": job.job_id,
        "status": job.status.value,
        "phase": job.phase.value if job.phase else None,
        "tier2Progress": progress_payload(job, "tier2"),
        "tier3Progress": progress_payload(job, "tier3"),
        "checkId": job.check_id,
        "resultCheckId": job.result_check_id,
        "force": job.force,
        "supersedes": job.supersedes,
        "error": job.error,
    }


def event_frame(event: JobEvent) -> str:
    """Encode a job event as a Server-Sent Events frame."""
    data = {"type": event.type.value, **job_payload(event.job)}
    return f"event: {event.type.value}\ndata: {json.dumps(data)}\n\n"


# ============================================================================
# Service Endpoints
# ============================================================================


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy", "version": __version__}


@app.get("/config")
async def get_config() -> dict[str, Any]:
    """Get current configuration (non-sensitive values only)."""
    return {
        "llm_backend": settings.llm_backend.value,
        "panel_mode": settings.panel_mode.value,
        "tier2_min_quorum": settings.tier2_min_quorum,
        "tier3_min_quorum": settings.tier3_min_quorum,
        "dispersion_threshold": settings.dispersion_threshold,
        "validation_concurrency": settings.validation_concurrency,
        "case_lookup_enabled": settings.case_lookup_enabled,
        "identifier_backend": settings.identifier_backend.value,
    }


# ============================================================================
# Checks
# ============================================================================


@app.post("/checks", status_code=201)
async def create_check(
    document: CitationDocument,
    service: CheckService = Depends(get_service),
) -> dict[str, Any]:
    """Store an already structured document as a new check."""
    snapshot = await service.create_check(document)
    return snapshot_payload(snapshot)


@app.get("/checks/{check_id}")
async def get_check(check_id: str, service: CheckService = Depends(get_service)) -> dict[str, Any]:
    snapshot = await service.get_check(check_id)
    return snapshot_payload(snapshot)


@app.get("/checks/{check_id}/versions")
async def get_versions(check_id: str, service: CheckService = Depends(get_service)) -> dict[str, Any]:
    versions = await service.versions(check_id)
    return {
        "checkId": check_id,
        "versions": [v.model_dump(mode="json") for v in versions],
    }


@app.post("/checks/{check_id}/identify-citations")
async def identify_citations(
    check_id: str,
    backend: IdentifierBackend | None = None,
    service: CheckService = Depends(get_service),
) -> dict[str, Any]:
    """Run citation identification and write a new snapshot."""
    snapshot = await service.identify_citations(check_id, backend=backend)
    return snapshot_payload(snapshot)


@app.get("/checks/{check_id}/identifier-comparison")
async def get_identifier_comparison(
    check_id: str,
    service: CheckService = Depends(get_service),
) -> dict[str, Any]:
    """Compare pattern and eyecite identification without writing a snapshot."""
    comparison = await service.compare_identifiers(check_id)
    return {"checkId": check_id, **comparison.model_dump(mode="json")}


@app.get("/checks/{check_id}/risk-summary")
async def get_risk_summary(
    check_id: str,
    service: CheckService = Depends(get_service),
) -> dict[str, Any]:
    summary = await service.risk_summary(check_id)
    return {"checkId": check_id, **summary.model_dump(mode="json")}


# ============================================================================
# Validation
# ============================================================================


@app.post("/checks/{check_id}/validate-citations", status_code=202)
async def validate_citations(
    check_id: str,
    force: bool = False,
    service: CheckService = Depends(get_service),
) -> dict[str, Any]:
    """
    Start background validation of every citation in a check.

    Returns the job to poll at ``/jobs/{jobId}`` or stream at
    ``/jobs/{jobId}/events``.
    """
    job = await service.start_validation(check_id, force=force)
    return {"jobId": job.job_id, "checkId": job.check_id, "status": job.status.value}


@app.get("/jobs/{job_id}")
async def get_job(job_id: str, service: CheckService = Depends(get_service)) -> dict[str, Any]:
    return job_payload(service.get_job(job_id))


@app.get("/jobs/{job_id}/events")
async def stream_job_events(
    job_id: str,
    service: CheckService = Depends(get_service),
) -> StreamingResponse:
    """Stream job progress as Server-Sent Events until the job finishes."""
    events = service.job_events(job_id)

    async def frames() -> AsyncGenerator[str, None]:
        async for event in events:
            yield event_frame(event)

    return StreamingResponse(
        frames(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@app.post("/checks/{check_id}/citations/{citation_id}/revalidate")
async def revalidate_citation(
    check_id: str,
    citation_id: str,
    force_tier3: bool = Query(default=False, alias="forceTier3"),
    service: CheckService = Depends(get_service),
) -> dict[str, Any]:
    """Re-run validation for a single citation."""
    citation, snapshot = await service.revalidate_citation(
        check_id, citation_id, force_tier3=force_tier3
    )
    return {"citation": citation_payload(citation), "checkId": snapshot.snapshot_id}


@app.patch("/checks/{check_id}/citations/{citation_id}/manual-review")
async def set_manual_review(
    check_id: str,
    citation_id: str,
    body: ManualReviewUpdate,
    service: CheckService = Depends(get_service),
) -> dict[str, Any]:
    """Set or clear a reviewer's override for a citation."""
    citation, snapshot = await service.set_manual_review(
        check_id, citation_id, body.status, notes=body.notes, reviewer=body.reviewer
    )
    return {"citation": citation_payload(citation), "checkId": snapshot.snapshot_id}


@app.patch("/checks/{check_id}/paragraphs/{paragraph_id}/edit")
async def edit_paragraph(
    check_id: str,
    paragraph_id: str,
    body: ParagraphEdit,
    service: CheckService = Depends(get_service),
) -> dict[str, Any]:
    """Apply a paragraph edit, reconcile its citations and validate new ones."""
    result = await service.edit_paragraph(check_id, paragraph_id, body.paragraph_text)
    return {
        "paragraph": result.paragraph.model_dump(mode="json"),
        "newCitations": [citation_payload(c) for c in result.new_citations],
        "removedCitations": result.removed_citations,
        "checkId": result.check_id,
        "validationError": result.validation_error,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True,
    )
