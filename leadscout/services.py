"""Shared business logic for the LeadScout API, MCP server and worker."""
from __future__ import annotations

import json
import logging
from collections import Counter
from typing import Any, Iterable

from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from leadscout import jobs, scorer
from leadscout.errors import SubjectValidationError
from leadscout.models import AnalysisJob, Lead, LeadActivity
from leadscout.schemas import LeadProfile, Scoring, Subject
from leadscout.utils import ensure_aware, normalize_domain, utcnow

log = logging.getLogger(__name__)

PRIORITY_ENUM = {
    "high": "HIGH",
    "medium": "MEDIUM",
    "low": "LOW",
    "very-low": "VERY_LOW",
}

# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def _iso(value) -> str | None:
    return ensure_aware(value).isoformat() if value else None


def lead_summary(lead: Lead) -> dict:
    return {
        "id": lead.id, "name": lead.name, "domain": lead.domain,
        "priority": lead.priority, "score": lead.score, "grade": lead.grade,
        "confidence": lead.confidence, "source": lead.source, "user_id": lead.user_id,
        "last_analyzed_at": _iso(lead.last_analyzed_at),
    }


def lead_detail(lead: Lead) -> dict:
    base = lead_summary(lead)
    base["profile"] = LeadProfile.model_validate_json(lead.profile_json)
    return base


def job_status(job: AnalysisJob) -> dict:
    result = None
    if job.status == jobs.COMPLETED and job.result_json:
        result = LeadProfile.model_validate_json(job.result_json)
    return {
        "job_id": job.id, "status": job.status, "progress": job.progress,
        "stage": job.stage or "", "result": result, "error": job.error,
    }


def lead_domain(profile: LeadProfile) -> str | None:
    if profile.company is not None and profile.company.domain:
        return profile.company.domain
    if profile.technology is not None:
        return normalize_domain(profile.technology.url)
    return None


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


def parse_subject(github: str | None = None, website: str | None = None) -> Subject:
    """Validate a subject, raising :class:`SubjectValidationError` if malformed."""
    try:
        return Subject(github=github, website=website)
    except ValidationError as exc:
        messages = "; ".join(err["msg"].removeprefix("Value error, ") for err in exc.errors())
        raise SubjectValidationError(messages) from exc


def submit(
    session: Session,
    github: str | None = None,
    website: str | None = None,
    user_id: str | None = None,
    max_attempts: int = jobs.DEFAULT_MAX_ATTEMPTS,
) -> str:
    """Validate and enqueue a subject. Returns the new job id."""
    subject = parse_subject(github, website)
    job = jobs.enqueue(session, subject, user_id=user_id, max_attempts=max_attempts)
    return job.id


def get_status(session: Session, job_id: str) -> dict | None:
    job = jobs.get_job(session, job_id)
    return job_status(job) if job is not None else None


def score(profile: LeadProfile) -> Scoring:
    """Re-score an already fetched profile without running any stage."""
    return scorer.score(profile)


def rescore(profiles: Iterable[LeadProfile]) -> list[LeadProfile]:
    """Attach a freshly computed Scoring, replacing any the caller supplied."""
    return [p.model_copy(update={"scoring": scorer.score(p)}) for p in profiles]


def categorize(profiles: Iterable[LeadProfile]) -> dict[str, list[LeadProfile]]:
    return scorer.categorize(rescore(profiles))


def prioritize(profiles: Iterable[LeadProfile], min_score: float | None = None) -> list[LeadProfile]:
    """Rank profiles best first, dropping those below *min_score* when given."""
    scored = rescore(profiles)
    if min_score is not None:
        scored = scorer.filter_by_score(scored, min_score)
    return scorer.prioritize(scored)


def persist_lead(session: Session, profile: LeadProfile, user_id: str | None = None) -> Lead:
    """Store a scored profile as a Lead with an ANALYZED activity (caller must commit)."""
    if profile.scoring is None:
        raise ValueError("Cannot persist an unscored profile")
    scoring = profile.scoring
    lead = Lead(
        name=profile.display_name,
        domain=lead_domain(profile),
        status="NEW",
        priority=PRIORITY_ENUM[scoring.priority],
        score=scoring.total_score,
        grade=scoring.grade,
        confidence=scoring.confidence,
        source=profile.metadata.source,
        profile_json=profile.model_dump_json(),
        user_id=user_id,
        last_analyzed_at=utcnow(),
        created_at=utcnow(),
    )
    lead.activities.append(LeadActivity(
        type="ANALYZED",
        data_json=json.dumps({"score": scoring.total_score, "grade": scoring.grade}),
        created_at=utcnow(),
    ))
    session.add(lead)
    session.flush()
    return lead


def query_leads(
    session: Session, *, user_id: str | None = None, priority: str | None = None,
    min_score: float | None = None, page: int = 1, per_page: int = 50,
) -> tuple[list[dict], int]:
    query = select(Lead)
    if user_id:
        query = query.where(Lead.user_id == user_id)
    if priority:
        wanted = {p.strip().upper().replace("-", "_") for p in priority.split(",")}
        query = query.where(Lead.priority.in_(wanted))
    if min_score is not None:
        query = query.where(Lead.score >= min_score)
    total = session.execute(select(func.count()).select_from(query.subquery())).scalar() or 0
    rows = session.execute(
        query.order_by(Lead.score.desc(), Lead.id).offset((page - 1) * per_page).limit(per_page)
    ).scalars().all()
    return [lead_summary(lead) for lead in rows], total


def compute_stats(session: Session) -> dict:
    leads = session.execute(select(Lead)).scalars().all()
    by_priority: Counter[str] = Counter(lead.priority for lead in leads)
    by_grade: Counter[str] = Counter(lead.grade for lead in leads)
    jobs_by_status = dict(session.execute(
        select(AnalysisJob.status, func.count()).group_by(AnalysisJob.status)
    ).all())
    return {
        "total_leads": len(leads),
        "jobs_by_status": jobs_by_status,
        "by_priority": dict(by_priority),
        "by_grade": dict(by_grade),
    }


def profile_from_payload(payload: dict[str, Any]) -> LeadProfile:
    """Build a LeadProfile from loose JSON, as sent to the score endpoints."""
    return LeadProfile.model_validate(payload)
