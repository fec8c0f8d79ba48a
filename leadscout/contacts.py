"""Contact Extractor: emails, phone numbers and social links from a website.

Page-fetch failures never escape this module; a site that cannot be read
yields an empty :class:`ContactProfile` with confidence 0.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable
from urllib.parse import unquote, urljoin, urlparse

from lxml import etree

from leadscout.errors import EnrichmentError
from leadscout.fetcher import PageFetcher
from leadscout.schemas import ContactProfile, EmailContact, OrganizationProfile
from leadscout.technology import parse_html
from leadscout.utils import normalize_domain, normalize_url, same_site

log = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"[a-zA-Z0-9._-]+@[a-zA-Z0-9._-]+\.[a-zA-Z0-9._-]+")
PHONE_RE = re.compile(r"(?:\+?\d{1,3}[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}")
_VALID_EMAIL_RE = re.compile(
    r"^[a-z0-9](?:[a-z0-9._%+-]*[a-z0-9_%+-])?@[a-z0-9-]+(?:\.[a-z0-9-]+)*\.[a-z]{2,}$"
)
_NON_DIGIT = re.compile(r"\D+")
_WHITESPACE = re.compile(r"\s+")

# Placeholder / platform domains and link targets that only look like emails
BLACKLISTED_DOMAINS = ("example.com", "test.com", "localhost", "wix.com", "wordpress.com")
BLACKLISTED_SUFFIXES = (".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp")
FREE_MAIL_DOMAINS = ("gmail.com", "yahoo.com", "hotmail.com")

SOCIAL_DOMAINS: dict[str, tuple[str, ...]] = {
    "twitter": ("twitter.com", "x.com"),
    "linkedin": ("linkedin.com",),
    "facebook": ("facebook.com",),
    "instagram": ("instagram.com",),
    "github": ("github.com",),
    "youtube": ("youtube.com",),
}

_EMAIL_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("general", ("info", "contact")),
    ("sales", ("sales", "business")),
    ("support", ("support", "help")),
    ("admin", ("admin", "webmaster")),
)

_EMAIL_TYPE_CONFIDENCE = {"sales": 0.9, "general": 0.85, "personal": 0.95}
_DEFAULT_EMAIL_CONFIDENCE = 0.7
_FREE_MAIL_PENALTY = 0.1

MIN_PHONE_LENGTH = 10


# ---------------------------------------------------------------------------
# Validation, dedup, classification
# ---------------------------------------------------------------------------


def _domain_matches(host: str, domain: str) -> bool:
    return host == domain or host.endswith("." + domain)


def is_valid_email(email: str, site_domain: str | None = None) -> bool:
    """Reject image names, placeholder domains and malformed addresses.

    An address on the scanned site's own domain is never treated as a
    placeholder, so ``sales@example.com`` is accepted on ``example.com``.
    """
    email = email.strip().lower()
    if email.endswith(BLACKLISTED_SUFFIXES):
        return False
    if not _VALID_EMAIL_RE.match(email):
        return False
    host = email.rsplit("@", 1)[1]
    own_site = bool(site_domain) and _domain_matches(host, site_domain)
    if not own_site and any(_domain_matches(host, bad) for bad in BLACKLISTED_DOMAINS):
        return False
    return True


def dedupe_emails(emails: Iterable[str]) -> list[str]:
    """Case-insensitive dedup on the full address, first occurrence wins."""
    seen: set[str] = set()
    result: list[str] = []
    for email in emails:
        normalized = email.strip().lower()
        if normalized and normalized not in seen:
            seen.add(normalized)
            result.append(normalized)
    return result


def dedupe_phones(phones: Iterable[str]) -> list[str]:
    """Dedup ignoring every non-digit character, first occurrence wins."""
    seen: set[str] = set()
    result: list[str] = []
    for phone in phones:
        digits = _NON_DIGIT.sub("", phone)
        if digits and digits not in seen:
            seen.add(digits)
            result.append(phone.strip())
    return result


def email_type(email: str) -> str:
    local = email.lower().split("@", 1)[0]
    for kind, keywords in _EMAIL_KEYWORDS:
        if any(local.endswith(k) for k in keywords):
            return kind
    if len(local) > 2 and "info" not in local and "contact" not in local:
        return "personal"
    return "unknown"


def email_confidence(email: str, kind: str) -> float:
    confidence = _EMAIL_TYPE_CONFIDENCE.get(kind, _DEFAULT_EMAIL_CONFIDENCE)
    host = email.lower().rsplit("@", 1)[-1]
    if host in FREE_MAIL_DOMAINS:
        confidence -= _FREE_MAIL_PENALTY
    return round(max(0.0, min(1.0, confidence)), 2)


def categorize_emails(emails: Iterable[str]) -> list[EmailContact]:
    contacts = []
    for email in emails:
        kind = email_type(email)
        contacts.append(EmailContact(email=email, type=kind, confidence=email_confidence(email, kind)))
    return contacts


def contact_confidence(emails: list[str], phones: list[str], social: dict[str, str]) -> float:
    score = 0.0
    if emails:
        score += 0.4
    if len(emails) > 2:
        score += 0.1
    if phones:
        score += 0.2
    if social:
        score += 0.2
    if len(social) > 2:
        score += 0.1
    return round(min(1.0, score), 2)


# ---------------------------------------------------------------------------
# Page scanning
# ---------------------------------------------------------------------------


@dataclass
class _Scan:
    emails: list[str] = field(default_factory=list)
    phones: list[str] = field(default_factory=list)
    social: dict[str, str] = field(default_factory=dict)

    def extend(self, other: _Scan) -> None:
        self.emails.extend(other.emails)
        self.phones.extend(other.phones)
        for platform, url in other.social.items():
            self.social.setdefault(platform, url)


def _hrefs(tree: etree._Element | None, prefix: str | None = None) -> list[str]:
    if tree is None:
        return []
    hrefs = [h.strip() for h in tree.xpath("//a/@href")]
    if prefix is not None:
        hrefs = [h for h in hrefs if h.lower().startswith(prefix)]
    return hrefs


def find_emails(raw_html: str, tree: etree._Element | None, site_domain: str | None = None) -> list[str]:
    # The pattern also swallows a full stop that ends the sentence
    candidates = [m.rstrip(".") for m in EMAIL_RE.findall(raw_html)]
    for href in _hrefs(tree, "mailto:"):
        candidates.append(unquote(href[len("mailto:"):].split("?", 1)[0]))
    return dedupe_emails(e for e in candidates if is_valid_email(e, site_domain))


def find_phones(raw_html: str, tree: etree._Element | None) -> list[str]:
    phones = [unquote(href[len("tel:"):]).strip() for href in _hrefs(tree, "tel:")]
    text = tree.text_content() if tree is not None else raw_html
    for match in PHONE_RE.findall(text):
        cleaned = _WHITESPACE.sub(" ", match).strip()
        if len(cleaned) >= MIN_PHONE_LENGTH:
            phones.append(cleaned)
    return dedupe_phones(p for p in phones if p)


def find_social(tree: etree._Element | None) -> dict[str, str]:
    social: dict[str, str] = {}
    for href in _hrefs(tree):
        host = (urlparse(href).hostname or "").lower()
        if not host:
            continue
        for platform, domains in SOCIAL_DOMAINS.items():
            if any(_domain_matches(host, d) for d in domains):
                social.setdefault(platform, href)
                break
    return social


def find_contact_page(tree: etree._Element | None, base_url: str) -> str | None:
    """First same-site link whose target mentions ``contact`` or ``about``."""
    for href in _hrefs(tree):
        lowered = href.lower()
        if "contact" not in lowered and "about" not in lowered:
            continue
        if lowered.startswith(("mailto:", "tel:", "javascript:")):
            continue
        url = urljoin(base_url, href)
        if url.rstrip("/") != base_url.rstrip("/") and same_site(url, base_url):
            return url
    return None


def scan_html(raw_html: str, site_domain: str | None = None) -> _Scan:
    tree = parse_html(raw_html)
    return _Scan(
        emails=find_emails(raw_html, tree, site_domain),
        phones=find_phones(raw_html, tree),
        social=find_social(tree),
    )


def side_channel(organization: OrganizationProfile | None, linkedin: str | None = None) -> _Scan:
    """Contacts already known from Repository Intelligence."""
    scan = _Scan()
    if organization is not None:
        if organization.email:
            scan.emails.append(organization.email)
        if organization.url:
            scan.social["github"] = organization.url
    if linkedin:
        scan.social["linkedin"] = linkedin
    return scan


class ContactExtractor:
    """Scan a site (plus one contact/about page) for contact channels."""

    stage = "contact"

    def __init__(self, fetcher: PageFetcher):
        self._fetcher = fetcher

    async def fetch(
        self,
        website: str,
        organization: OrganizationProfile | None = None,
        linkedin: str | None = None,
    ) -> ContactProfile:
        url = normalize_url(website)
        web = await self._scan_site(url)
        side = side_channel(organization, linkedin)

        emails = dedupe_emails(web.emails + side.emails)
        phones = dedupe_phones(web.phones + side.phones)
        social = {**web.social, **side.social}

        return ContactProfile(
            emails=categorize_emails(emails),
            phones=phones,
            social=social,
            linkedin=linkedin,
            confidence=contact_confidence(emails, phones, social),
        )

    async def _scan_site(self, url: str) -> _Scan:
        site_domain = normalize_domain(url)
        try:
            page = await self._fetcher.fetch(url)
        except EnrichmentError as exc:
            log.warning("Contact extraction could not fetch %s: %s", url, exc)
            return _Scan()

        scan = scan_html(page.html, site_domain)
        contact_url = find_contact_page(parse_html(page.html), page.url)
        if contact_url:
            try:
                contact_page = await self._fetcher.fetch(contact_url)
            except EnrichmentError as exc:
                log.debug("Contact page %s unavailable: %s", contact_url, exc)
            else:
                if same_site(contact_page.url, url):
                    scan.extend(scan_html(contact_page.html, site_domain))
        return scan
