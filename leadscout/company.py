"""Company Profiler: name, industry, size and social proof from a website.

The page is fetched once. Hints known from Repository Intelligence (org name,
location, repository count, contributors) fill gaps the page leaves open. A
site that cannot be fetched still yields a profile built from its domain and
those hints.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable

from lxml import etree

from leadscout.errors import EnrichmentError
from leadscout.fetcher import PageFetcher
from leadscout.schemas import CompanyProfile, Contributor, SocialProof
from leadscout.technology import parse_html
from leadscout.utils import normalize_domain, normalize_url, utcnow

log = logging.getLogger(__name__)

WhoisLookup = Callable[[str], Awaitable[datetime | None]]

INDUSTRY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "SaaS": ("saas", "software as a service", "cloud software", "platform"),
    "E-commerce": ("shop", "store", "buy", "cart", "checkout", "products"),
    "Fintech": ("finance", "payment", "banking", "financial", "crypto"),
    "Healthcare": ("health", "medical", "healthcare", "patient", "clinic"),
    "Education": ("education", "learning", "course", "training", "school"),
    "Marketing": ("marketing", "advertising", "analytics", "seo", "social media"),
    "Development": ("developer", "api", "code", "programming", "development"),
    "Design": ("design", "creative", "graphics", "ui", "ux"),
    "Consulting": ("consulting", "advisory", "services"),
}
DEFAULT_INDUSTRY = "General"

BUSINESS_MODELS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("Subscription", ("pricing", "subscribe", "plan")),
    ("Freemium", ("free trial", "freemium")),
    ("Enterprise", ("enterprise", "custom pricing")),
    ("Marketplace", ("marketplace", "sellers")),
    ("Ad-supported", ("advertising", "ad-free")),
)

FOUNDED_RE = re.compile(r"(?:founded|since|est\.)\D{0,20}(\d{4})", re.IGNORECASE)
CUSTOMERS_RE = re.compile(r"(\d+[\d,]*)\+?\s*(?:customers?|users?|clients?)", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")

MAX_FEATURES = 10

_CONFIDENCE_TITLE = 0.9
_CONFIDENCE_DESCRIPTION = 0.8
_CONFIDENCE_INDUSTRY = 0.7
_CONFIDENCE_HINTS = 0.95
_CONFIDENCE_SOCIAL_PROOF = 0.85
_DEFAULT_CONFIDENCE = 0.5


@dataclass
class CompanyHints:
    """What is already known about the company before its site is read."""
    name: str | None = None
    location: str | None = None
    public_repos: int | None = None
    contributors: list[Contributor] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Extraction helpers
# ---------------------------------------------------------------------------


def _clean(text: str | None) -> str:
    return _WHITESPACE.sub(" ", text or "").strip()


def _has_class(name: str) -> str:
    return f"//*[contains(concat(' ', normalize-space(@class), ' '), ' {name} ')]"


def _first_text(tree: etree._Element, xpath: str) -> str:
    for node in tree.xpath(xpath):
        value = node if isinstance(node, str) else node.text_content()
        value = _clean(value)
        if value:
            return value
    return ""


def _meta(tree: etree._Element, attr: str, value: str) -> str:
    return _first_text(tree, f"//meta[@{attr}='{value}']/@content")


def extract_name(tree: etree._Element, title: str) -> str | None:
    """First non-empty of site name, app name, logo alt, brand, title segment."""
    candidates = (
        _meta(tree, "property", "og:site_name"),
        _meta(tree, "name", "application-name"),
        _first_text(tree, _has_class("logo") + "/@alt"),
        _first_text(tree, "//header" + _has_class("brand")),
        title.split("|")[0].split("-")[0],
    )
    for candidate in candidates:
        candidate = _clean(candidate)
        if candidate:
            return candidate
    return None


def name_from_domain(domain: str) -> str:
    label = normalize_domain(domain).split(".")[0]
    return label[:1].upper() + label[1:]


def detect_industry(raw_html: str, keywords: str) -> str:
    content = raw_html.lower()
    keywords = keywords.lower()
    for industry, terms in INDUSTRY_KEYWORDS.items():
        if any(term in content or term in keywords for term in terms):
            return industry
    return DEFAULT_INDUSTRY


def extract_location(tree: etree._Element) -> str | None:
    candidates = (
        _meta(tree, "name", "geo.region"),
        _first_text(tree, "//address"),
        _first_text(tree, "//*[@itemprop='address']"),
        _first_text(tree, _has_class("location")),
        _first_text(tree, _has_class("address")),
    )
    return next((c for c in candidates if c), None)


def extract_features(tree: etree._Element) -> list[str]:
    features: list[str] = []
    sections = tree.xpath(
        "//*[contains(@class, 'feature') or contains(@class, 'benefit') or contains(@class, 'service')]"
    )
    for elem in sections[:MAX_FEATURES]:
        text = _clean(elem.text_content())
        if 10 < len(text) < 200:
            features.append(text)
    for elem in tree.xpath("//ul/li | //ol/li"):
        if len(features) >= MAX_FEATURES:
            break
        text = _clean(elem.text_content())
        if 10 < len(text) < 150:
            features.append(text)
    return features[:MAX_FEATURES]


def extract_social_proof(tree: etree._Element) -> SocialProof:
    body = tree.xpath("//body")
    text = body[0].text_content() if body else tree.text_content()
    customers = None
    match = CUSTOMERS_RE.search(text)
    if match:
        customers = int(match.group(1).replace(",", ""))

    def count(*needles: str) -> int | None:
        cond = " or ".join(f"contains(@class, '{n}')" for n in needles)
        return len(tree.xpath(f"//*[{cond}]")) or None

    return SocialProof(
        customers=customers,
        testimonials=count("testimonial", "review"),
        awards=count("award", "certification", "badge"),
        press_mentions=count("press", "featured", "media"),
    )


def extract_founded_year(text: str, current_year: int) -> int | None:
    for match in FOUNDED_RE.finditer(text):
        year = int(match.group(1))
        if 1900 <= year <= current_year:
            return year
    return None


def detect_business_model(text: str) -> list[str]:
    content = text.lower()
    models = [model for model, terms in BUSINESS_MODELS if any(t in content for t in terms)]
    return models or ["Unknown"]


def estimate_size(hints: CompanyHints) -> str:
    if hints.public_repos is not None:
        repos = hints.public_repos
        if repos > 50:
            return "Large (50+ employees)"
        if repos > 20:
            return "Medium (20-50 employees)"
        if repos > 5:
            return "Small (5-20 employees)"
        return "Startup (1-5 employees)"
    if hints.contributors:
        count = len(hints.contributors)
        if count > 20:
            return "Large (50+ employees)"
        if count > 10:
            return "Medium (20-50 employees)"
        if count > 3:
            return "Small (5-20 employees)"
        return "Startup (1-5 employees)"
    return "Unknown"


def research_confidence(
    title: str, description: str, industry: str,
    hints: CompanyHints, social_proof: SocialProof,
) -> float:
    weights = []
    if title:
        weights.append(_CONFIDENCE_TITLE)
    if description:
        weights.append(_CONFIDENCE_DESCRIPTION)
    if industry != DEFAULT_INDUSTRY:
        weights.append(_CONFIDENCE_INDUSTRY)
    if hints.public_repos or hints.contributors:
        weights.append(_CONFIDENCE_HINTS)
    if not social_proof.is_empty():
        weights.append(_CONFIDENCE_SOCIAL_PROOF)
    if not weights:
        return _DEFAULT_CONFIDENCE
    return round(sum(weights) / len(weights), 2)


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


class CompanyProfiler:
    """Research a company from its homepage, optionally backed by WHOIS."""

    stage = "company"

    def __init__(
        self,
        fetcher: PageFetcher,
        whois: WhoisLookup | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._fetcher = fetcher
        self._whois = whois
        self._clock = clock

    async def fetch(self, website: str, hints: CompanyHints | None = None) -> CompanyProfile:
        hints = hints or CompanyHints()
        url = normalize_url(website)
        domain = normalize_domain(url)
        try:
            page = await self._fetcher.fetch(url)
        except EnrichmentError as exc:
            # Domain and hints still make a usable profile
            log.warning("Could not fetch %s for company research: %s", url, exc)
            html = ""
        else:
            html = page.html
        tree = parse_html(html)

        title = description = ""
        keywords: list[str] = []
        name = location = None
        industry = DEFAULT_INDUSTRY
        features: list[str] = []
        social_proof = SocialProof()
        body_text = ""
        if tree is not None:
            title = _first_text(tree, "//title")
            description = _meta(tree, "name", "description")
            raw_keywords = _meta(tree, "name", "keywords")
            keywords = [k.strip() for k in raw_keywords.split(",") if k.strip()]
            name = extract_name(tree, title)
            industry = detect_industry(html, raw_keywords)
            location = extract_location(tree)
            features = extract_features(tree)
            social_proof = extract_social_proof(tree)
            body_text = _clean(tree.text_content())
        elif html:
            log.debug("Could not parse HTML for %s", url)

        extracted = " ".join([title, description, " ".join(keywords), name or "", location or "", *features])
        founded_year = extract_founded_year(f"{extracted} {body_text}", self._clock().year)
        if founded_year is None:
            founded_year = await self._whois_year(domain)

        profile = CompanyProfile(
            name=name or hints.name or name_from_domain(domain),
            domain=domain,
            title=title or None,
            description=description or None,
            keywords=keywords,
            industry=industry,
            location=hints.location or location,
            founded_year=founded_year,
            size=estimate_size(hints),
            business_model=detect_business_model(extracted),
            features=features,
            social_proof=social_proof,
            confidence=research_confidence(title, description, industry, hints, social_proof),
            website=url,
        )
        log.info("Researched company %s (%s, confidence %.2f)", profile.name, industry, profile.confidence)
        return profile

    async def _whois_year(self, domain: str) -> int | None:
        if self._whois is None:
            return None
        try:
            created = await self._whois(domain)
        except EnrichmentError as exc:
            log.debug("WHOIS lookup failed for %s: %s", domain, exc)
            return None
        return created.year if created else None
