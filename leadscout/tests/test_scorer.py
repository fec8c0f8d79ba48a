"""Tests for the deterministic Scoring Engine and ranking helpers."""
from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from leadscout import scorer
from leadscout.schemas import (
    CompanyProfile,
    ContactProfile,
    Contributor,
    Detection,
    EmailContact,
    Engagement,
    LeadMetadata,
    LeadProfile,
    RepositoryProfile,
    ScoreBreakdown,
    Scoring,
    TechnologyProfile,
)

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _profile(**parts) -> LeadProfile:
    return LeadProfile(metadata=LeadMetadata(analyzed_at=NOW, source="website"), **parts)


def _scored(total: float) -> LeadProfile:
    breakdown = ScoreBreakdown(github=total, technology=total, company=total, contact=total, engagement=total)
    return _profile(scoring=Scoring(
        total_score=total, grade=scorer.compute_grade(total),
        priority=scorer.compute_priority(total, breakdown),
        breakdown=breakdown, reasoning=[], confidence=0.5,
    ))


def _strong_profile() -> LeadProfile:
    repo = RepositoryProfile(
        full_name="acme/rocket", name="rocket", owner="acme",
        stars=5000, forks=800, watchers=5000,
        contributors=[Contributor(username=f"dev{i}", contributions=10 - i) for i in range(5)],
        pushed_at=NOW - timedelta(days=1),
        activity_score=1.0, popularity_score=1.0,
    )
    tech = TechnologyProfile(
        url="https://acme.io",
        technologies={
            "frontend": [Detection(name="React", confidence=0.9)],
            "backend": [], "hosting": [], "cms": [],
            "analytics": [Detection(name="Google Analytics", confidence=0.95)],
            "ecommerce": [Detection(name="Shopify", confidence=0.95)],
            "marketing": [Detection(name="HubSpot", confidence=0.9)],
            "security": [Detection(name="HSTS", confidence=1.0)],
        },
        confidence=0.9,
    )
    contact = ContactProfile(
        emails=[EmailContact(email=f"{p}@acme.io", type="general") for p in ("info", "sales", "jobs")],
        social={"twitter": "https://x.com/acme", "linkedin": "https://linkedin.com/company/acme",
                "github": "https://github.com/acme"},
        confidence=0.9,
    )
    company = CompanyProfile(
        name="Acme", public_repos=20, followers=200, email="hello@acme.io",
        website="https://acme.io", location="Berlin", created_at=NOW - timedelta(days=5 * 365),
    )
    return _profile(repository=repo, technology=tech, contact=contact, company=company)


# ---------------------------------------------------------------------------
# Sub-scores and aggregation
# ---------------------------------------------------------------------------


class TestScore:
    def test_empty_profile(self):
        scoring = scorer.score(_profile())
        assert scoring.breakdown.github == 0
        assert scoring.breakdown.technology == 0
        assert scoring.breakdown.company == 0
        assert scoring.breakdown.contact == 0
        assert scoring.breakdown.engagement == 50
        assert scoring.total_score == 7.5
        assert scoring.grade == "D"
        assert scoring.priority == "very-low"
        assert scoring.confidence == 0.5
        assert scoring.reasoning == [
            "Limited GitHub activity or visibility",
            "Limited contact information found",
        ]

    def test_strong_profile(self):
        scoring = scorer.score(_strong_profile())
        assert scoring.breakdown.github == 100
        assert scoring.breakdown.technology == 100
        assert scoring.breakdown.company == 100
        assert scoring.breakdown.contact == 100
        assert scoring.total_score == 92.5
        assert scoring.grade == "A+"
        assert scoring.priority == "high"
        assert scoring.confidence == 0.9
        assert scoring.reasoning == [
            "Strong GitHub presence with active development",
            "Modern technology stack indicates technical sophistication",
            "E-commerce platform suggests revenue potential",
            "Well-established company with strong online presence",
            "Direct contact information available",
            "Multiple contact channels available",
        ]

    def test_rescoring_is_byte_identical(self):
        profile = _strong_profile()
        assert scorer.score(profile).model_dump_json() == scorer.score(profile).model_dump_json()

    def test_recency_measured_from_analyzed_at(self):
        repo = RepositoryProfile(
            full_name="a/b", name="b", owner="a",
            pushed_at=NOW - timedelta(days=10), activity_score=0.8,
        )
        profile = _profile(repository=repo)
        # 0.8 * 30 + 10 (pushed within 30 days of analysis)
        assert scorer.score(profile).breakdown.github == pytest.approx(34.0)
        later = NOW + timedelta(days=60)
        assert scorer.score(profile, now=later).breakdown.github == pytest.approx(24.0)

    def test_stale_repository_scores_low(self):
        repo = RepositoryProfile(
            full_name="octocat/Hello-World", name="Hello-World", owner="octocat",
            pushed_at=NOW - timedelta(days=400), activity_score=0.2, popularity_score=0.0,
        )
        scoring = scorer.score(_profile(repository=repo))
        assert scoring.breakdown.github == pytest.approx(6.0)
        assert scoring.priority in {"low", "very-low"}

    def test_technology_modern_framework_from_backend(self):
        tech = TechnologyProfile(url="https://x.io", technologies={
            "frontend": [], "backend": [Detection(name="Node.js", confidence=1.0)],
        })
        assert scorer.score_technology(tech) == 30

    def test_company_age_requires_more_than_two_years(self):
        young = CompanyProfile(created_at=NOW - timedelta(days=365))
        old = CompanyProfile(created_at=NOW - timedelta(days=3 * 365))
        assert scorer.score_company(young, NOW) == 0
        assert scorer.score_company(old, NOW) == 20

    def test_contact_social_capped(self):
        contact = ContactProfile(social={
            "twitter": "t", "facebook": "f", "instagram": "i", "youtube": "y",
        })
        assert scorer.score_contact(contact) == 30

    def test_engagement_tiers(self):
        assert scorer.score_engagement(Engagement(last_update=NOW - timedelta(days=3)), NOW) == 80
        assert scorer.score_engagement(Engagement(last_update=NOW - timedelta(days=20)), NOW) == 70
        assert scorer.score_engagement(Engagement(last_update=NOW - timedelta(days=60)), NOW) == 60
        assert scorer.score_engagement(Engagement(last_update=NOW - timedelta(days=200)), NOW) == 50
        assert scorer.score_engagement(Engagement(social_activity=10), NOW) == 70

    def test_confidence_ignores_contact_without_email(self):
        profile = _profile(contact=ContactProfile(phones=["555-123-4567"]), company=CompanyProfile())
        assert scorer.score(profile).confidence == 0.85

    def test_round2_is_half_up(self):
        assert scorer.round2(0.125) == 0.13
        assert scorer.round2(7.5) == 7.5


class TestGradeAndPriority:
    @pytest.mark.parametrize("total,grade", [
        (100, "A+"), (90, "A+"), (89.99, "A"), (80, "A"), (70, "B+"), (60, "B"),
        (50, "C+"), (40, "C"), (39.99, "D"), (0, "D"),
    ])
    def test_grade_thresholds(self, total, grade):
        assert scorer.compute_grade(total) == grade

    def test_priority_tiers(self):
        flat = ScoreBreakdown(github=10, technology=10, company=10, contact=10, engagement=10)
        assert scorer.compute_priority(70, flat) == "high"
        assert scorer.compute_priority(55, flat) == "medium"
        assert scorer.compute_priority(30, flat) == "low"
        assert scorer.compute_priority(29.99, flat) == "very-low"

    def test_strong_area_promotes_to_high(self):
        spiky = ScoreBreakdown(github=85, technology=10, company=10, contact=10, engagement=10)
        assert scorer.compute_priority(55, spiky) == "high"
        assert scorer.compute_priority(45, spiky) == "low"


# ---------------------------------------------------------------------------
# Ranking helpers
# ---------------------------------------------------------------------------


class TestRanking:
    def test_categorize(self):
        buckets = scorer.categorize([_scored(80), _scored(55), _scored(20)])
        assert [p.scoring.total_score for p in buckets["hot"]] == [80]
        assert [p.scoring.total_score for p in buckets["warm"]] == [55]
        assert [p.scoring.total_score for p in buckets["cold"]] == [20]

    def test_categorize_boundaries_inclusive(self):
        buckets = scorer.categorize([_scored(70), _scored(50), _scored(49.99)])
        assert [p.scoring.total_score for p in buckets["hot"]] == [70]
        assert [p.scoring.total_score for p in buckets["warm"]] == [50]
        assert [p.scoring.total_score for p in buckets["cold"]] == [49.99]

    def test_categorize_scores_unscored_profiles(self):
        buckets = scorer.categorize([_profile()])
        assert buckets["cold"][0].scoring.total_score == 7.5

    def test_prioritize_sorts_descending(self):
        ranked = scorer.prioritize([_scored(20), _scored(80), _scored(55)])
        assert [p.scoring.total_score for p in ranked] == [80, 55, 20]

    def test_filter_by_score(self):
        kept = scorer.filter_by_score([_scored(20), _scored(50), _scored(80)])
        assert [p.scoring.total_score for p in kept] == [50, 80]
