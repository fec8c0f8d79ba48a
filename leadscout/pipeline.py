"""Pipeline Orchestrator: run the four enrichment stages for one subject.

Stages run in a fixed order::

    REPO_FETCH -> TECH_DETECT -> CONTACT_EXTRACT -> COMPANY_RESEARCH -> SCORE -> PERSIST

Each adapter call goes through the result cache and the retry wrapper. A stage
that still fails is logged and recorded as an absent sub-profile; only scoring
and persistence errors reach the caller.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable

from leadscout import scorer
from leadscout.cache import (
    STAGE_COMPANY,
    STAGE_CONTACT,
    STAGE_PROFILE,
    STAGE_REPOSITORY,
    STAGE_TECHNOLOGY,
    ResultCache,
    cache_key,
)
from leadscout.company import CompanyHints, CompanyProfiler
from leadscout.config import Settings
from leadscout.contacts import ContactExtractor
from leadscout.errors import EnrichmentError, is_retryable
from leadscout.fetcher import GitHubClient, PageFetcher
from leadscout.repository import RepositoryIntelligence
from leadscout.retry import Sleep, with_retry
from leadscout.schemas import (
    CompanyProfile,
    ContactProfile,
    LeadMetadata,
    LeadProfile,
    RepositoryProfile,
    Subject,
    TechnologyProfile,
)
from leadscout.technology import TechnologyFingerprinter
from leadscout.utils import normalize_url, utcnow

log = logging.getLogger(__name__)

ProgressSink = Callable[[int, str], Awaitable[None]]
Persist = Callable[[LeadProfile], Awaitable[Any]]

# (percent, message) reported at each stage boundary
PROGRESS_START = (0, "Starting analysis")
PROGRESS_REPO = (10, "Analyzing GitHub repository")
PROGRESS_REPO_DONE = (25, "GitHub analysis complete")
PROGRESS_TECH = (30, "Detecting website technology")
PROGRESS_TECH_DONE = (50, "Technology detection complete")
PROGRESS_CONTACT = (55, "Extracting contact information")
PROGRESS_CONTACT_DONE = (70, "Contact extraction complete")
PROGRESS_COMPANY = (75, "Researching company profile")
PROGRESS_COMPANY_DONE = (90, "Company research complete")
PROGRESS_SCORE = (95, "Calculating lead score")
PROGRESS_PERSIST = (98, "Saving lead")
PROGRESS_DONE = (100, "Complete")

# Seed values from the GitHub organization beat researched values for these
_SEED_PRECEDENCE = ("website",)


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------


class ProgressReporter:
    """Forward checkpoints to a sink, never letting the percentage decrease."""

    def __init__(self, sink: ProgressSink | None = None):
        self._sink = sink
        self.value = -1

    async def __call__(self, checkpoint: tuple[int, str]) -> None:
        percent, message = checkpoint
        if percent < self.value:
            return
        self.value = percent
        if self._sink is not None:
            await self._sink(percent, message)


# ---------------------------------------------------------------------------
# Decision points and merging
# ---------------------------------------------------------------------------


def resolve_website(subject: Subject, repository: RepositoryProfile | None) -> str | None:
    """Explicit website first; otherwise fall back to the repository homepage."""
    if subject.website:
        return subject.website
    if repository is not None and repository.homepage:
        return repository.homepage
    return None


def organization_seed(repository: RepositoryProfile | None) -> CompanyProfile | None:
    if repository is None or repository.organization is None:
        return None
    org = repository.organization
    return CompanyProfile(
        name=org.name,
        email=org.email,
        website=org.website,
        location=org.location,
        public_repos=org.public_repos,
        followers=org.followers,
        created_at=org.created_at,
    )


def company_hints(seed: CompanyProfile | None, repository: RepositoryProfile | None) -> CompanyHints:
    return CompanyHints(
        name=seed.name if seed else None,
        location=seed.location if seed else None,
        public_repos=seed.public_repos if seed else None,
        contributors=list(repository.contributors) if repository else [],
    )


def merge_company(seed: CompanyProfile | None, researched: CompanyProfile | None) -> CompanyProfile | None:
    """Overlay researched fields on the organization seed.

    Empty researched values never erase seeded ones.
    """
    if seed is None or researched is None:
        return researched if researched is not None else seed
    update: dict[str, Any] = {}
    for name in CompanyProfile.model_fields:
        seeded = getattr(seed, name)
        if seeded in (None, "", [], {}):
            continue
        if name in _SEED_PRECEDENCE or getattr(researched, name) in (None, "", [], {}):
            update[name] = seeded
    return researched.model_copy(update=update)


@dataclass
class StageResults:
    """Sub-profiles in stage order; ``None`` means absent or degraded."""
    repository: RepositoryProfile | None = None
    technology: TechnologyProfile | None = None
    contact: ContactProfile | None = None
    company: CompanyProfile | None = None


def merge_profiles(metadata: LeadMetadata, results: StageResults) -> LeadProfile:
    return LeadProfile(
        repository=results.repository,
        technology=results.technology,
        contact=results.contact,
        company=results.company,
        engagement=None,
        metadata=metadata,
    )


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class Pipeline:
    """Sequence the adapters for one subject and score the merged profile."""

    def __init__(
        self,
        repository: RepositoryIntelligence,
        technology: TechnologyFingerprinter,
        contacts: ContactExtractor,
        company: CompanyProfiler,
        cache: ResultCache | None = None,
        retry_attempts: int = 3,
        retry_base_delay: float = 1.0,
        retry_max_delay: float = 10.0,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.technology = technology
        self.contacts = contacts
        self.company = company
        self.cache = cache if cache is not None else ResultCache()
        self.retry_attempts = retry_attempts
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self._sleep = sleep
        self._clock = clock

    async def run(
        self,
        subject: Subject,
        progress: ProgressSink | None = None,
        persist: Persist | None = None,
    ) -> LeadProfile:
        report = ProgressReporter(progress)
        await report(PROGRESS_START)
        identity = subject.identity
        profile_key = cache_key(identity, STAGE_PROFILE)

        profile: LeadProfile | None = self.cache.get(profile_key)
        if profile is not None:
            log.info("Using cached profile for %s", identity)
            await report(PROGRESS_SCORE)
        else:
            profile = await self._enrich(subject, report)
            await report(PROGRESS_SCORE)
            profile = profile.model_copy(update={"scoring": scorer.score(profile)})
            self.cache.set(profile_key, profile)

        if persist is not None:
            await report(PROGRESS_PERSIST)
            await persist(profile)
        await report(PROGRESS_DONE)
        return profile

    async def _enrich(self, subject: Subject, report: ProgressReporter) -> LeadProfile:
        identity = subject.identity
        results = StageResults()

        if subject.github:
            await report(PROGRESS_REPO)
            results.repository = await self._stage(
                STAGE_REPOSITORY, identity, lambda: self.repository.fetch(subject.github),
            )
            await report(PROGRESS_REPO_DONE)

        # Decided right after REPO_FETCH, before any website stage runs
        website = resolve_website(subject, results.repository)
        if website and not subject.website:
            log.info("Using repository homepage %s as website for %s", website, identity)

        seed = organization_seed(results.repository)
        results.company = seed

        if website:
            await report(PROGRESS_TECH)
            results.technology = await self._stage(
                STAGE_TECHNOLOGY, identity, lambda: self.technology.fetch(website),
            )
            await report(PROGRESS_TECH_DONE)

            organization = results.repository.organization if results.repository else None
            await report(PROGRESS_CONTACT)
            results.contact = await self._stage(
                STAGE_CONTACT, identity, lambda: self.contacts.fetch(website, organization),
            )
            await report(PROGRESS_CONTACT_DONE)

            hints = company_hints(seed, results.repository)
            await report(PROGRESS_COMPANY)
            researched = await self._stage(
                STAGE_COMPANY, identity, lambda: self.company.fetch(website, hints),
            )
            results.company = merge_company(seed, researched)
            await report(PROGRESS_COMPANY_DONE)

        if website:
            url = normalize_url(website)
        else:
            url = results.repository.url if results.repository else None
        metadata = LeadMetadata(
            analyzed_at=self._clock(),
            source="github" if subject.github else "website",
            url=url,
        )
        return merge_profiles(metadata, results)

    async def _stage(self, stage: str, identity: str, call: Callable[[], Awaitable[Any]]) -> Any:
        """Cached, retried adapter call. Failures degrade to ``None``."""
        key = cache_key(identity, stage)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        try:
            value = await with_retry(
                call,
                max_attempts=self.retry_attempts,
                base_delay=self.retry_base_delay,
                max_delay=self.retry_max_delay,
                sleep=self._sleep,
                label=f"{stage} stage for {identity}",
            )
        except EnrichmentError as exc:
            if is_retryable(exc):
                log.warning("%s stage degraded for %s: %s", stage, identity, exc)
            else:
                log.error("%s stage failed for %s (%s): %s", stage, identity, type(exc).__name__, exc)
            return None
        except Exception:
            log.exception("%s stage crashed for %s", stage, identity)
            return None
        self.cache.set(key, value)
        return value


def build_pipeline(settings: Settings, cache: ResultCache | None = None) -> Pipeline:
    """Wire the adapters from settings. Build once per process and share."""
    fetcher = PageFetcher(timeout=settings.http_timeout, user_agent=settings.user_agent)
    github = GitHubClient(token=settings.github_token, timeout=settings.http_timeout)
    return Pipeline(
        repository=RepositoryIntelligence(github),
        technology=TechnologyFingerprinter(fetcher),
        contacts=ContactExtractor(fetcher),
        company=CompanyProfiler(fetcher),
        cache=cache if cache is not None else ResultCache(default_ttl=settings.cache_ttl),
        retry_attempts=settings.retry_attempts,
        retry_base_delay=settings.retry_base_delay,
        retry_max_delay=settings.retry_max_delay,
    )
