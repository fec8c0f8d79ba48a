from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Generator

from fastapi import Depends, FastAPI, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from leadscout import services
from leadscout.config import load_settings
from leadscout.db import get_session, init_db
from leadscout.errors import SubjectValidationError
from leadscout.models import Lead
from leadscout.schemas import (
    AnalyzeRequest,
    CategorizeResponse,
    JobAccepted,
    JobStatusOut,
    LeadDetail,
    LeadListResponse,
    LeadProfile,
    Scoring,
    StatsOut,
)

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db(load_settings().db_path)
    yield


app = FastAPI(
    title="LeadScout",
    version="0.1.0",
    description=(
        "Lead enrichment and scoring API. Submit a GitHub repository and/or a "
        "website, poll the job, then browse scored leads. All endpoints return JSON."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Analysis", "description": "Queue enrichment jobs and poll their status."},
        {"name": "Leads", "description": "Browse persisted, scored leads."},
        {"name": "Scoring", "description": "Re-score or bucket already fetched profiles."},
        {"name": "Stats", "description": "Aggregate statistics and breakdowns."},
    ],
)


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


def db_session() -> Generator[Session, None, None]:
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _get_or_404(session: Session, model, entity_id: int, label: str = "Entity"):
    obj = session.execute(select(model).where(model.id == entity_id)).scalars().first()
    if not obj:
        raise HTTPException(404, f"{label} not found")
    return obj


# ---------------------------------------------------------------------------
# Routes: Analysis
# ---------------------------------------------------------------------------


@app.post("/api/leads/analyze", response_model=JobAccepted, status_code=202,
          tags=["Analysis"], summary="Queue a GitHub repository and/or website for analysis")
async def analyze(body: AnalyzeRequest, session: Session = Depends(db_session)):
    try:
        job_id = services.submit(
            session, github=body.github, website=body.website, user_id=body.user_id,
            max_attempts=load_settings().job_attempts,
        )
    except SubjectValidationError as exc:
        raise HTTPException(422, str(exc)) from exc
    return {"job_id": job_id, "status": "pending", "message": "Analysis started"}


@app.get("/api/leads/job/{job_id}", response_model=JobStatusOut,
         tags=["Analysis"], summary="Get job status, progress and result")
async def job_status(job_id: str, session: Session = Depends(db_session)):
    status = services.get_status(session, job_id)
    if status is None:
        raise HTTPException(404, "Job not found")
    return status


# ---------------------------------------------------------------------------
# Routes: Leads
# ---------------------------------------------------------------------------


@app.get("/api/leads", response_model=LeadListResponse,
         tags=["Leads"], summary="List leads with filtering and pagination")
async def list_leads(
    user_id: str | None = Query(None, description="Only leads submitted by this user"),
    priority: str | None = Query(None, description="Comma-separated: high, medium, low, very-low"),
    min_score: float | None = Query(None, ge=0, le=100),
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=500),
    session: Session = Depends(db_session),
):
    items, total = services.query_leads(
        session, user_id=user_id, priority=priority, min_score=min_score,
        page=page, per_page=per_page,
    )
    return {"items": items, "total": total}


@app.get("/api/leads/{lead_id}", response_model=LeadDetail,
         tags=["Leads"], summary="Get a lead with its full enriched profile")
async def get_lead(lead_id: int, session: Session = Depends(db_session)):
    return services.lead_detail(_get_or_404(session, Lead, lead_id, "Lead"))


# ---------------------------------------------------------------------------
# Routes: Scoring
# ---------------------------------------------------------------------------


@app.post("/api/score", response_model=Scoring,
          tags=["Scoring"], summary="Score a profile without re-running enrichment")
async def score_profile(profile: LeadProfile):
    return services.score(profile)


@app.post("/api/categorize", response_model=CategorizeResponse,
          tags=["Scoring"], summary="Split profiles into hot, warm and cold")
async def categorize(profiles: list[LeadProfile]):
    return services.categorize(profiles)


@app.post("/api/prioritize", response_model=list[LeadProfile],
          tags=["Scoring"], summary="Rank profiles by score, best first")
async def prioritize(
    profiles: list[LeadProfile],
    min_score: float | None = Query(None, ge=0, le=100, description="Drop profiles scoring below this"),
):
    return services.prioritize(profiles, min_score=min_score)


# ---------------------------------------------------------------------------
# Routes: Stats
# ---------------------------------------------------------------------------


@app.get("/api/stats", response_model=StatsOut,
         tags=["Stats"], summary="Get aggregate statistics and breakdowns")
async def get_stats(session: Session = Depends(db_session)):
    return services.compute_stats(session)


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    uvicorn.run("leadscout.app:app", host="127.0.0.1", port=8001, reload=True)


if __name__ == "__main__":
    main()
