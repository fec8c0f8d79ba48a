"""Pydantic models for subjects, sub-profiles, scoring and API bodies."""
from __future__ import annotations

import re
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from leadscout.utils import normalize_domain

GITHUB_REPO_RE = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")
_HOST_RE = re.compile(r"^(?=.{1,253}$)([a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,63}$")

TECH_CATEGORIES = (
    "frontend", "backend", "analytics", "hosting", "cms", "ecommerce", "marketing", "security",
)
SOCIAL_PLATFORMS = ("twitter", "linkedin", "facebook", "instagram", "github", "youtube")

EmailType = Literal["general", "sales", "support", "personal", "admin", "unknown"]
Priority = Literal["high", "medium", "low", "very-low"]
JobStatus = Literal["PENDING", "PROCESSING", "COMPLETED", "FAILED"]


# ---------------------------------------------------------------------------
# Subject
# ---------------------------------------------------------------------------


class Subject(BaseModel):
    """The enrichment target: a GitHub ``owner/name`` and/or a website."""

    model_config = ConfigDict(frozen=True)

    github: str | None = None
    website: str | None = None

    @field_validator("github")
    @classmethod
    def github_must_be_full_name(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        v = v.strip()
        # Accept a full repository URL as well
        if "github.com" in v:
            v = v.split("github.com")[-1].strip("/")
            v = "/".join(v.split("/")[:2]).removesuffix(".git")
        if not GITHUB_REPO_RE.match(v):
            raise ValueError("github must look like 'owner/name'")
        return v

    @field_validator("website")
    @classmethod
    def website_must_be_domain_or_url(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        v = v.strip()
        if not _HOST_RE.match(normalize_domain(v)):
            raise ValueError("website must be a domain or an http(s) URL")
        return v

    @model_validator(mode="after")
    def at_least_one(self) -> Subject:
        if not self.github and not self.website:
            raise ValueError("Either github or website must be provided")
        return self

    @property
    def identity(self) -> str:
        """Normalized identity used for cache keys."""
        parts: list[str] = []
        if self.github:
            parts.append(self.github)
        if self.website:
            parts.append(normalize_domain(self.website))
        return "|".join(parts)


# ---------------------------------------------------------------------------
# Repository Intelligence
# ---------------------------------------------------------------------------


class Contributor(BaseModel):
    username: str
    contributions: int = 0
    avatar: str | None = None
    profile: str | None = None


class OrganizationProfile(BaseModel):
    login: str
    name: str | None = None
    description: str | None = None
    website: str | None = None
    location: str | None = None
    email: str | None = None
    public_repos: int = 0
    followers: int = 0
    created_at: datetime | None = None
    avatar: str | None = None
    url: str | None = None


class RepositoryProfile(BaseModel):
    full_name: str
    name: str
    owner: str
    owner_type: str = "User"
    description: str | None = None
    url: str | None = None
    homepage: str | None = None
    license: str | None = None
    stars: int = 0
    forks: int = 0
    watchers: int = 0
    open_issues: int = 0
    topics: list[str] = []
    language: str | None = None
    languages: dict[str, int] = {}
    contributors: list[Contributor] = []
    organization: OrganizationProfile | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    pushed_at: datetime | None = None
    activity_score: float = Field(0.0, ge=0.0, le=1.0)
    popularity_score: float = Field(0.0, ge=0.0, le=1.0)
    insights: list[str] = []

    @property
    def tech_stack(self) -> list[str]:
        return list(self.languages)


# ---------------------------------------------------------------------------
# Technology Fingerprinter
# ---------------------------------------------------------------------------


class Detection(BaseModel):
    name: str
    confidence: float = Field(ge=0.0, le=1.0)
    type: str | None = None


class TechnologyProfile(BaseModel):
    url: str
    technologies: dict[str, list[Detection]] = Field(
        default_factory=lambda: {c: [] for c in TECH_CATEGORIES}
    )
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    summary: list[str] = []

    def category(self, name: str) -> list[Detection]:
        return self.technologies.get(name, [])


# ---------------------------------------------------------------------------
# Contact Extractor
# ---------------------------------------------------------------------------


class EmailContact(BaseModel):
    email: str
    type: EmailType = "unknown"
    confidence: float = Field(0.7, ge=0.0, le=1.0)


class ContactProfile(BaseModel):
    emails: list[EmailContact] = []
    phones: list[str] = []
    social: dict[str, str] = {}
    linkedin: str | None = None
    confidence: float = Field(0.0, ge=0.0, le=1.0)


# ---------------------------------------------------------------------------
# Company Profiler
# ---------------------------------------------------------------------------


class SocialProof(BaseModel):
    customers: int | None = None
    testimonials: int | None = None
    awards: int | None = None
    press_mentions: int | None = None

    def is_empty(self) -> bool:
        return not any(v is not None for v in self.model_dump().values())


class CompanyProfile(BaseModel):
    name: str | None = None
    domain: str | None = None
    title: str | None = None
    description: str | None = None
    keywords: list[str] = []
    industry: str | None = None
    location: str | None = None
    founded_year: int | None = None
    size: str | None = None
    business_model: list[str] = []
    features: list[str] = Field(default_factory=list, max_length=10)
    social_proof: SocialProof = Field(default_factory=SocialProof)
    confidence: float = Field(0.5, ge=0.0, le=1.0)
    # Seeded from the owning GitHub organization, when there is one
    email: str | None = None
    website: str | None = None
    public_repos: int | None = None
    followers: int | None = None
    created_at: datetime | None = None


# ---------------------------------------------------------------------------
# Lead + scoring
# ---------------------------------------------------------------------------


class Engagement(BaseModel):
    last_update: datetime | None = None
    social_activity: float | None = None


class LeadMetadata(BaseModel):
    analyzed_at: datetime
    source: Literal["github", "website"]
    url: str | None = None


class ScoreBreakdown(BaseModel):
    model_config = ConfigDict(frozen=True)

    github: float
    technology: float
    company: float
    contact: float
    engagement: float


class Scoring(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_score: float = Field(ge=0.0, le=100.0)
    grade: str
    priority: Priority
    breakdown: ScoreBreakdown
    reasoning: list[str]
    confidence: float = Field(ge=0.0, le=1.0)


class LeadProfile(BaseModel):
    repository: RepositoryProfile | None = None
    technology: TechnologyProfile | None = None
    contact: ContactProfile | None = None
    company: CompanyProfile | None = None
    engagement: Engagement | None = None
    metadata: LeadMetadata
    scoring: Scoring | None = None

    @property
    def display_name(self) -> str:
        if self.company and self.company.name:
            return self.company.name
        if self.repository:
            return self.repository.name
        return "Unknown Lead"


# ---------------------------------------------------------------------------
# API request / response bodies
# ---------------------------------------------------------------------------


class AnalyzeRequest(BaseModel):
    github: str | None = None
    website: str | None = None
    user_id: str | None = None


class JobAccepted(BaseModel):
    job_id: str
    status: str = "pending"
    message: str = ""


class JobStatusOut(BaseModel):
    job_id: str
    status: JobStatus
    progress: int = Field(ge=0, le=100)
    stage: str = ""
    result: LeadProfile | None = None
    error: str | None = None


class LeadOut(BaseModel):
    id: int
    name: str
    domain: str | None
    priority: str
    score: float
    grade: str
    confidence: float
    source: str
    user_id: str | None = None
    last_analyzed_at: str | None = None


class LeadDetail(LeadOut):
    profile: LeadProfile


class LeadListResponse(BaseModel):
    items: list[LeadOut]
    total: int


class CategorizeResponse(BaseModel):
    hot: list[LeadProfile]
    warm: list[LeadProfile]
    cold: list[LeadProfile]


class StatsOut(BaseModel):
    total_leads: int
    jobs_by_status: dict[str, int]
    by_priority: dict[str, int]
    by_grade: dict[str, int]
