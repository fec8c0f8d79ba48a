"""Scoring Engine: deterministic lead score, grade, priority and reasoning.

Pure functions over a :class:`LeadProfile`; no I/O. Recency is measured
against ``profile.metadata.analyzed_at`` unless an explicit ``now`` is given,
so re-scoring the same profile always yields the same :class:`Scoring`.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Iterable

from leadscout.schemas import (
    CompanyProfile,
    ContactProfile,
    Engagement,
    LeadProfile,
    RepositoryProfile,
    ScoreBreakdown,
    Scoring,
    TechnologyProfile,
)
from leadscout.utils import days_between

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Weights, grades, tiers
# ---------------------------------------------------------------------------

WEIGHTS = {
    "github": 0.25,
    "technology": 0.20,
    "company": 0.25,
    "contact": 0.15,
    "engagement": 0.15,
}

# Inclusive lower bounds, highest first
GRADE_THRESHOLDS = (
    (90, "A+"),
    (80, "A"),
    (70, "B+"),
    (60, "B"),
    (50, "C+"),
    (40, "C"),
)
LOWEST_GRADE = "D"

MODERN_FRAMEWORKS = frozenset({"React", "Vue.js", "Angular", "Next.js", "Node.js"})

HOT_THRESHOLD = 70
WARM_THRESHOLD = 50

_CONFIDENCE_GITHUB = 0.9
_CONFIDENCE_COMPANY = 0.85
_CONFIDENCE_CONTACT = 0.95
_DEFAULT_CONFIDENCE = 0.5

FALLBACK_REASON = "Moderate potential - requires further research"


def round2(value: float) -> float:
    """Round half-up to 2 decimal places (Python's round() is half-even)."""
    return math.floor(value * 100 + 0.5) / 100


# ---------------------------------------------------------------------------
# Sub-scores
# ---------------------------------------------------------------------------


def score_github(repo: RepositoryProfile | None, now: datetime) -> float:
    if repo is None:
        return 0.0
    score = repo.activity_score * 30 + repo.popularity_score * 30
    if repo.stars:
        score += min(20.0, repo.stars / 100 * 20)
    if repo.contributors:
        score += min(10, len(repo.contributors) * 2)
    if repo.pushed_at is not None and days_between(repo.pushed_at, now) < 30:
        score += 10
    return min(100.0, score)


def score_technology(tech: TechnologyProfile | None) -> float:
    if tech is None:
        return 0.0
    score = 0.0
    stack = tech.category("frontend") + tech.category("backend")
    if any(d.name in MODERN_FRAMEWORKS for d in stack):
        score += 30
    if tech.category("analytics"):
        score += 20
    if tech.category("ecommerce"):
        score += 25
    if tech.category("marketing"):
        score += 15
    if tech.category("security"):
        score += 10
    return min(100.0, score)


def score_company(company: CompanyProfile | None, now: datetime) -> float:
    if company is None:
        return 0.0
    score = 0.0
    if company.public_repos and company.public_repos > 10:
        score += 20
    if company.followers and company.followers > 100:
        score += 20
    if company.email:
        score += 15
    if company.website:
        score += 15
    if company.location:
        score += 10
    if company.created_at is not None and days_between(company.created_at, now) / 365 > 2:
        score += 20
    return min(100.0, score)


def score_contact(contact: ContactProfile | None) -> float:
    if contact is None:
        return 0.0
    score = 0.0
    if contact.emails:
        score += 40
        if len(contact.emails) > 2:
            score += 10
    score += min(30, len(contact.social) * 10)
    if contact.social.get("linkedin"):
        score += 20
    return min(100.0, score)


def score_engagement(engagement: Engagement | None, now: datetime) -> float:
    if engagement is None:
        return 50.0
    score = 50.0
    if engagement.last_update is not None:
        days = days_between(engagement.last_update, now)
        if days < 7:
            score += 30
        elif days < 30:
            score += 20
        elif days < 90:
            score += 10
    if engagement.social_activity:
        score += min(20.0, engagement.social_activity * 5)
    return min(100.0, score)


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


def compute_grade(total: float) -> str:
    for threshold, grade in GRADE_THRESHOLDS:
        if total >= threshold:
            return grade
    return LOWEST_GRADE


def compute_priority(total: float, breakdown: ScoreBreakdown) -> str:
    if total >= 70:
        return "high"
    strong_area = any(v >= 80 for v in breakdown.model_dump().values())
    if strong_area and total >= 50:
        return "high"
    if total >= 50:
        return "medium"
    if total >= 30:
        return "low"
    return "very-low"


def generate_reasoning(breakdown: ScoreBreakdown, profile: LeadProfile) -> list[str]:
    reasons: list[str] = []

    if breakdown.github >= 70:
        reasons.append("Strong GitHub presence with active development")
    elif breakdown.github < 30:
        reasons.append("Limited GitHub activity or visibility")

    if breakdown.technology >= 70:
        reasons.append("Modern technology stack indicates technical sophistication")
    if profile.technology is not None and profile.technology.category("ecommerce"):
        reasons.append("E-commerce platform suggests revenue potential")

    if breakdown.company >= 70:
        reasons.append("Well-established company with strong online presence")
    if profile.company is not None and profile.company.email:
        reasons.append("Direct contact information available")

    if breakdown.contact >= 60:
        reasons.append("Multiple contact channels available")
    elif breakdown.contact < 30:
        reasons.append("Limited contact information found")

    if breakdown.engagement >= 70:
        reasons.append("Recent activity indicates active business")

    return reasons or [FALLBACK_REASON]


def compute_confidence(profile: LeadProfile) -> float:
    weights: list[float] = []
    if profile.repository is not None:
        weights.append(_CONFIDENCE_GITHUB)
    if profile.technology is not None and profile.technology.confidence:
        weights.append(profile.technology.confidence)
    if profile.company is not None:
        weights.append(_CONFIDENCE_COMPANY)
    if profile.contact is not None and profile.contact.emails:
        weights.append(_CONFIDENCE_CONTACT)
    if not weights:
        return _DEFAULT_CONFIDENCE
    return round2(sum(weights) / len(weights))


def score(profile: LeadProfile, now: datetime | None = None) -> Scoring:
    """Score a merged profile. Never mutates *profile*."""
    now = now or profile.metadata.analyzed_at
    breakdown = ScoreBreakdown(
        github=score_github(profile.repository, now),
        technology=score_technology(profile.technology),
        company=score_company(profile.company, now),
        contact=score_contact(profile.contact),
        engagement=score_engagement(profile.engagement, now),
    )
    # Summed in fixed weight order so float results are reproducible
    total = 0.0
    for key, weight in WEIGHTS.items():
        total += getattr(breakdown, key) * weight
    total = round2(min(100.0, max(0.0, total)))

    scoring = Scoring(
        total_score=total,
        grade=compute_grade(total),
        priority=compute_priority(total, breakdown),
        breakdown=breakdown,
        reasoning=generate_reasoning(breakdown, profile),
        confidence=compute_confidence(profile),
    )
    log.debug("Scored %s: %.2f (%s, %s)", profile.display_name, total, scoring.grade, scoring.priority)
    return scoring


def with_scoring(profile: LeadProfile) -> LeadProfile:
    """Return *profile* carrying a Scoring, computing one if it has none."""
    if profile.scoring is not None:
        return profile
    return profile.model_copy(update={"scoring": score(profile)})


# ---------------------------------------------------------------------------
# Ranking helpers
# ---------------------------------------------------------------------------


def categorize(profiles: Iterable[LeadProfile]) -> dict[str, list[LeadProfile]]:
    """Partition into hot (>=70), warm (>=50, <70) and cold (<50)."""
    result: dict[str, list[LeadProfile]] = {"hot": [], "warm": [], "cold": []}
    for profile in map(with_scoring, profiles):
        total = profile.scoring.total_score
        if total >= HOT_THRESHOLD:
            result["hot"].append(profile)
        elif total >= WARM_THRESHOLD:
            result["warm"].append(profile)
        else:
            result["cold"].append(profile)
    return result


def prioritize(profiles: Iterable[LeadProfile]) -> list[LeadProfile]:
    """Sort by total score, best first. Ties keep their input order."""
    scored = [with_scoring(p) for p in profiles]
    return sorted(scored, key=lambda p: p.scoring.total_score, reverse=True)


def filter_by_score(profiles: Iterable[LeadProfile], min_score: float = 50) -> list[LeadProfile]:
    return [p for p in map(with_scoring, profiles) if p.scoring.total_score >= min_score]
