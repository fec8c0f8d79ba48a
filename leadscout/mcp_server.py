from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, contextmanager
from typing import Any

from mcp.server.fastmcp import FastMCP
from pydantic import ValidationError
from sqlalchemy import select

from leadscout import services
from leadscout.config import load_settings
from leadscout.db import get_session, init_db
from leadscout.errors import SubjectValidationError
from leadscout.models import Lead

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def leadscout_lifespan(server: FastMCP) -> AsyncIterator[None]:
    init_db(load_settings().db_path)
    yield


mcp = FastMCP(
    "LeadScout",
    instructions=(
        "LeadScout enriches a GitHub repository and/or company website into a scored lead. "
        "Queue work with analyze_lead(), poll get_job_status(job_id) until COMPLETED, "
        "then browse with list_leads() and get_lead(id). A leadscout-worker process "
        "must be running for queued jobs to make progress."
    ),
    lifespan=leadscout_lifespan,
    json_response=True,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@contextmanager
def _session():
    session = get_session()
    try:
        yield session
    finally:
        session.close()


def _dump(value: Any) -> Any:
    """JSON-safe form of pydantic models nested in service results."""
    return json.loads(json.dumps(value, default=lambda o: o.model_dump(mode="json")))


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


@mcp.resource("leadscout://overview")
def leadscout_overview() -> str:
    """Overview of LeadScout: pipeline stages, scoring and tiers."""
    return json.dumps({
        "system": "LeadScout - lead enrichment and scoring",
        "stages": {
            "repository": "GitHub metadata, languages, top contributors, owning organization.",
            "technology": "Frontend, backend, analytics, hosting, CMS, e-commerce, marketing and security detections.",
            "contact": "Emails (typed), phones and social profiles from the site and its contact page.",
            "company": "Name, industry, location, size, business model, features and social proof.",
        },
        "scoring": {
            "weights": {"github": 0.25, "technology": 0.20, "company": 0.25, "contact": 0.15, "engagement": 0.15},
            "grades": "A+ >= 90, A >= 80, B+ >= 70, B >= 60, C+ >= 50, C >= 40, else D",
            "priority": "high >= 70 (or >= 50 with any sub-score >= 80), medium >= 50, low >= 30, else very-low",
            "categories": "hot >= 70, warm >= 50, cold < 50",
        },
        "workflow": [
            "1. analyze_lead(github=..., website=...) - queue a job.",
            "2. get_job_status(job_id) - poll progress (0-100).",
            "3. list_leads() / get_lead(id) - inspect results.",
            "4. score_profile(profile) / categorize_leads(profiles) / prioritize_leads(profiles) - re-score without fetching.",
        ],
    }, indent=2)


# ---------------------------------------------------------------------------
# Tools: Analysis
# ---------------------------------------------------------------------------


@mcp.tool()
def analyze_lead(github: str | None = None, website: str | None = None, user_id: str | None = None) -> dict:
    """Queue a lead for enrichment.

    Args:
        github: Repository as "owner/name" (or a github.com URL).
        website: Domain or http(s) URL of the company site.
        user_id: Optional owner used to filter list_leads().
    """
    with _session() as session:
        try:
            job_id = services.submit(
                session, github=github, website=website, user_id=user_id,
                max_attempts=load_settings().job_attempts,
            )
        except SubjectValidationError as exc:
            return {"error": f"Invalid subject: {exc}"}
        return {"job_id": job_id, "status": "pending"}


@mcp.tool()
def get_job_status(job_id: str) -> dict:
    """Get status (PENDING, PROCESSING, COMPLETED, FAILED), progress and result of a job."""
    with _session() as session:
        status = services.get_status(session, job_id)
        if status is None:
            return {"error": f"Job {job_id} not found"}
        return _dump(status)


# ---------------------------------------------------------------------------
# Tools: Leads
# ---------------------------------------------------------------------------


@mcp.tool()
def list_leads(
    priority: str | None = None, user_id: str | None = None,
    min_score: float | None = None, limit: int = 50,
) -> list[dict]:
    """List scored leads, best first.

    Args:
        priority: Comma-separated from: high, medium, low, very-low.
        user_id: Only leads submitted by this user.
        min_score: Minimum total score (0-100).
        limit: Max results (default 50, max 500).
    """
    with _session() as session:
        items, _ = services.query_leads(
            session, user_id=user_id, priority=priority, min_score=min_score,
            page=1, per_page=max(1, min(limit, 500)),
        )
        return items


@mcp.tool()
def get_lead(lead_id: int) -> dict:
    """Get a lead with its full enriched profile and scoring."""
    with _session() as session:
        lead = session.execute(select(Lead).where(Lead.id == lead_id)).scalars().first()
        if not lead:
            return {"error": f"Lead {lead_id} not found"}
        return _dump(services.lead_detail(lead))


# ---------------------------------------------------------------------------
# Tools: Scoring
# ---------------------------------------------------------------------------


@mcp.tool()
def score_profile(profile: dict) -> dict:
    """Score an already enriched LeadProfile (as returned by get_lead) without fetching."""
    try:
        scoring = services.score(services.profile_from_payload(profile))
    except ValidationError as exc:
        return {"error": f"Invalid profile: {exc}"}
    return scoring.model_dump(mode="json")


@mcp.tool()
def categorize_leads(profiles: list[dict]) -> dict:
    """Split LeadProfiles into hot (>= 70), warm (50-70) and cold (< 50)."""
    try:
        parsed = [services.profile_from_payload(p) for p in profiles]
    except ValidationError as exc:
        return {"error": f"Invalid profile: {exc}"}
    return _dump(services.categorize(parsed))


@mcp.tool()
def prioritize_leads(profiles: list[dict], min_score: float | None = None) -> list[dict] | dict:
    """Rank LeadProfiles by total score, best first.

    Args:
        profiles: Enriched profiles, as returned by get_lead.
        min_score: Drop profiles scoring below this (0-100).
    """
    try:
        parsed = [services.profile_from_payload(p) for p in profiles]
    except ValidationError as exc:
        return {"error": f"Invalid profile: {exc}"}
    return _dump(services.prioritize(parsed, min_score=min_score))


# ---------------------------------------------------------------------------
# Tools: Stats
# ---------------------------------------------------------------------------


@mcp.tool()
def get_stats() -> dict:
    """Get lead counts by priority and grade, and job counts by status."""
    with _session() as session:
        return services.compute_stats(session)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """Run the LeadScout MCP server over stdio."""
    mcp.run()


if __name__ == "__main__":
    main()
