"""Repository Intelligence: GitHub repository metadata and derived signals."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, TypeVar

from leadscout.errors import EnrichmentError, SubjectValidationError
from leadscout.fetcher import GitHubClient
from leadscout.schemas import Contributor, OrganizationProfile, RepositoryProfile
from leadscout.utils import days_between, parse_timestamp, utcnow

log = logging.getLogger(__name__)

T = TypeVar("T")

MAX_CONTRIBUTORS = 10


# ---------------------------------------------------------------------------
# Derived scores
# ---------------------------------------------------------------------------


def activity_score(pushed_at: datetime | None, now: datetime) -> float:
    """Step function over days since the last push."""
    if pushed_at is None:
        return 0.2
    days = days_between(pushed_at, now)
    if days < 7:
        return 1.0
    if days < 30:
        return 0.8
    if days < 90:
        return 0.6
    if days < 180:
        return 0.4
    return 0.2


def popularity_score(stars: int, forks: int, watchers: int) -> float:
    score = stars / 1000 * 0.5 + forks / 100 * 0.3 + watchers / 500 * 0.2
    return max(0.0, min(1.0, score))


def repository_insights(
    activity: float, popularity: float, open_issues: int,
    homepage: str | None, license_name: str | None,
) -> list[str]:
    insights: list[str] = []
    if activity > 0.8:
        insights.append("Very active development - recently updated")
    elif activity < 0.3:
        insights.append("Low activity - may be archived or completed")
    if popularity > 0.7:
        insights.append("High popularity - strong community interest")
    if open_issues > 50:
        insights.append("Many open issues - active user engagement")
    if homepage:
        insights.append("Has production website - commercially viable")
    if license_name:
        insights.append(f"Licensed under {license_name}")
    return insights


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


class RepositoryIntelligence:
    """Fetch a repository, its languages, top contributors and owning org."""

    stage = "repository"

    def __init__(self, client: GitHubClient, clock: Callable[[], datetime] = utcnow):
        self._client = client
        self._clock = clock

    async def fetch(self, full_name: str) -> RepositoryProfile:
        owner, sep, name = full_name.partition("/")
        if not sep or not owner or not name:
            raise SubjectValidationError(f"Invalid repository name: {full_name!r}")

        # NotFound / RateLimited / Unauthorized propagate from the primary read
        data = await self._client.get_json(f"/repos/{owner}/{name}")
        owner_data = data.get("owner") or {}
        owner_type = owner_data.get("type") or "User"

        org_task: Awaitable[OrganizationProfile | None]
        if owner_type == "Organization":
            org_task = self._optional(self._organization(owner), None, f"org {owner}")
        else:
            org_task = _none()

        languages, contributors, organization = await asyncio.gather(
            self._optional(self._languages(owner, name), {}, f"languages {full_name}"),
            self._optional(self._contributors(owner, name), [], f"contributors {full_name}"),
            org_task,
        )

        stars = int(data.get("stargazers_count") or 0)
        forks = int(data.get("forks_count") or 0)
        watchers = int(data.get("watchers_count") or 0)
        open_issues = int(data.get("open_issues_count") or 0)
        pushed_at = parse_timestamp(data.get("pushed_at"))
        homepage = (data.get("homepage") or "").strip() or None
        license_name = (data.get("license") or {}).get("name")

        activity = activity_score(pushed_at, self._clock())
        popularity = popularity_score(stars, forks, watchers)

        return RepositoryProfile(
            full_name=data.get("full_name") or full_name,
            name=data.get("name") or name,
            owner=owner_data.get("login") or owner,
            owner_type=owner_type,
            description=data.get("description"),
            url=data.get("html_url"),
            homepage=homepage,
            license=license_name,
            stars=stars,
            forks=forks,
            watchers=watchers,
            open_issues=open_issues,
            topics=list(data.get("topics") or []),
            language=data.get("language"),
            languages=languages,
            contributors=contributors,
            organization=organization,
            created_at=parse_timestamp(data.get("created_at")),
            updated_at=parse_timestamp(data.get("updated_at")),
            pushed_at=pushed_at,
            activity_score=activity,
            popularity_score=popularity,
            insights=repository_insights(activity, popularity, open_issues, homepage, license_name),
        )

    async def _languages(self, owner: str, name: str) -> dict[str, int]:
        data = await self._client.get_json(f"/repos/{owner}/{name}/languages")
        if not isinstance(data, dict):
            return {}
        return {str(k): int(v) for k, v in data.items()}

    async def _contributors(self, owner: str, name: str) -> list[Contributor]:
        data = await self._client.get_json(
            f"/repos/{owner}/{name}/contributors", params={"per_page": MAX_CONTRIBUTORS},
        )
        if not isinstance(data, list):
            return []
        contributors = [
            Contributor(
                username=c.get("login") or "",
                contributions=int(c.get("contributions") or 0),
                avatar=c.get("avatar_url"),
                profile=c.get("html_url"),
            )
            for c in data if isinstance(c, dict) and c.get("login")
        ]
        contributors.sort(key=lambda c: c.contributions, reverse=True)
        return contributors[:MAX_CONTRIBUTORS]

    async def _organization(self, org: str) -> OrganizationProfile:
        data = await self._client.get_json(f"/orgs/{org}")
        return OrganizationProfile(
            login=data.get("login") or org,
            name=data.get("name"),
            description=data.get("description"),
            website=(data.get("blog") or "").strip() or None,
            location=data.get("location"),
            email=data.get("email"),
            public_repos=int(data.get("public_repos") or 0),
            followers=int(data.get("followers") or 0),
            created_at=parse_timestamp(data.get("created_at")),
            avatar=data.get("avatar_url"),
            url=data.get("html_url"),
        )

    @staticmethod
    async def _optional(coro: Awaitable[T], default: Any, what: str) -> T:
        """Secondary reads degrade to *default* instead of failing the stage."""
        try:
            return await coro
        except EnrichmentError as exc:
            log.warning("GitHub %s fetch failed: %s", what, exc)
            return default


async def _none() -> None:
    return None
