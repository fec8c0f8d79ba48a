"""Technology Fingerprinter: classify a site's stack from HTML and headers.

Every detection carries a fixed confidence per signal. The profile's overall
confidence is the arithmetic mean over all detections, 0 when none fired.
"""
from __future__ import annotations

import logging
from typing import Mapping

from lxml import etree, html as lxml_html

from leadscout.fetcher import Page, PageFetcher
from leadscout.schemas import Detection, TechnologyProfile
from leadscout.utils import normalize_url

log = logging.getLogger(__name__)


def parse_html(raw_html: str) -> etree._Element | None:
    if not raw_html or not raw_html.strip():
        return None
    try:
        return lxml_html.fromstring(raw_html)
    except (etree.ParserError, etree.XMLSyntaxError, ValueError):
        return None


def _count(tree: etree._Element | None, xpath: str) -> int:
    if tree is None:
        return 0
    return len(tree.xpath(xpath))


# ---------------------------------------------------------------------------
# Category detectors
# ---------------------------------------------------------------------------


def detect_frontend(tree: etree._Element | None, html: str) -> list[Detection]:
    found: list[Detection] = []
    if "react" in html or "__REACT" in html or _count(tree, "//*[@data-reactroot]"):
        found.append(Detection(name="React", confidence=0.9))
    if "vue" in html or _count(tree, "//@*[starts-with(name(), 'data-v-')]"):
        found.append(Detection(name="Vue.js", confidence=0.9))
    if "ng-version" in html or _count(tree, "//*[@ng-version]"):
        found.append(Detection(name="Angular", confidence=0.95))
    if "__NEXT_DATA__" in html or _count(tree, "//*[@id='__next']"):
        found.append(Detection(name="Next.js", confidence=0.95))
    if "jquery" in html:
        found.append(Detection(name="jQuery", confidence=0.8))
    if "tailwind" in html or _count(tree, "//*[contains(@class, 'tw-')]"):
        found.append(Detection(name="Tailwind CSS", confidence=0.85))
    if "bootstrap" in html or _count(tree, "//*[contains(@class, 'col-')]") > 10:
        found.append(Detection(name="Bootstrap", confidence=0.8))
    return found


def detect_backend(headers: Mapping[str, str], html: str) -> list[Detection]:
    found: list[Detection] = []
    server = headers.get("server", "").lower()
    if "nginx" in server:
        found.append(Detection(name="Nginx", type="web-server", confidence=1.0))
    if "apache" in server:
        found.append(Detection(name="Apache", type="web-server", confidence=1.0))

    powered = headers.get("x-powered-by", "").lower()
    if "express" in powered:
        found.append(Detection(name="Express.js", type="framework", confidence=1.0))
    if "php" in powered:
        found.append(Detection(name="PHP", type="language", confidence=1.0))
    if "asp.net" in powered:
        found.append(Detection(name="ASP.NET", type="framework", confidence=1.0))

    if "wp-content" in html or "wordpress" in html:
        found.append(Detection(name="WordPress", type="cms", confidence=0.95))
    return found


def detect_analytics(html: str) -> list[Detection]:
    found: list[Detection] = []
    if "google-analytics.com" in html or "gtag" in html or "UA-" in html:
        found.append(Detection(name="Google Analytics", confidence=0.95))
    if "googletagmanager.com" in html or "GTM-" in html:
        found.append(Detection(name="Google Tag Manager", confidence=0.95))
    if "mixpanel" in html:
        found.append(Detection(name="Mixpanel", confidence=0.9))
    if "segment.com" in html or "analytics.js" in html:
        found.append(Detection(name="Segment", confidence=0.9))
    if "hotjar" in html:
        found.append(Detection(name="Hotjar", confidence=0.9))
    return found


def detect_hosting(headers: Mapping[str, str]) -> list[Detection]:
    found: list[Detection] = []
    server = headers.get("server", "").lower()
    if "cf-ray" in headers or "cloudflare" in server:
        found.append(Detection(name="Cloudflare", type="cdn", confidence=1.0))
    if "x-vercel-id" in headers or "vercel" in server:
        found.append(Detection(name="Vercel", type="hosting", confidence=1.0))
    if "x-nf-request-id" in headers or "netlify" in server:
        found.append(Detection(name="Netlify", type="hosting", confidence=1.0))
    if "x-amz-cf-id" in headers or "x-amz-request-id" in headers:
        found.append(Detection(name="AWS", type="hosting", confidence=1.0))
    return found


def detect_cms(headers: Mapping[str, str], html: str) -> list[Detection]:
    found: list[Detection] = []
    if "wp-content" in html or "wp-includes" in html:
        found.append(Detection(name="WordPress", confidence=0.95))
    if "cdn.shopify.com" in html or "Shopify" in html:
        found.append(Detection(name="Shopify", confidence=0.95))
    if "wix.com" in html or "x-wix-request-id" in headers:
        found.append(Detection(name="Wix", confidence=0.95))
    if "squarespace" in html:
        found.append(Detection(name="Squarespace", confidence=0.9))
    return found


def detect_ecommerce(html: str) -> list[Detection]:
    found: list[Detection] = []
    if "shopify" in html:
        found.append(Detection(name="Shopify", confidence=0.95))
    if "woocommerce" in html:
        found.append(Detection(name="WooCommerce", confidence=0.95))
    if "magento" in html:
        found.append(Detection(name="Magento", confidence=0.9))
    if "stripe" in html:
        found.append(Detection(name="Stripe", confidence=0.85))
    return found


def detect_marketing(html: str) -> list[Detection]:
    found: list[Detection] = []
    if "hubspot" in html:
        found.append(Detection(name="HubSpot", confidence=0.9))
    if "mailchimp" in html:
        found.append(Detection(name="Mailchimp", confidence=0.9))
    if "intercom" in html:
        found.append(Detection(name="Intercom", confidence=0.9))
    return found


def detect_security(headers: Mapping[str, str]) -> list[Detection]:
    found: list[Detection] = []
    if "strict-transport-security" in headers:
        found.append(Detection(name="HSTS", confidence=1.0))
    if "content-security-policy" in headers:
        found.append(Detection(name="CSP", confidence=1.0))
    if "x-frame-options" in headers:
        found.append(Detection(name="X-Frame-Options", confidence=1.0))
    return found


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


def overall_confidence(technologies: Mapping[str, list[Detection]]) -> float:
    detections = [d for category in technologies.values() for d in category]
    if not detections:
        return 0.0
    return sum(d.confidence for d in detections) / len(detections)


def summarize(technologies: Mapping[str, list[Detection]]) -> list[str]:
    return [
        f"{category}: {', '.join(d.name for d in detections)}"
        for category, detections in technologies.items()
        if detections
    ]


def fingerprint(page: Page) -> TechnologyProfile:
    """Classify a fetched page into the fixed technology categories."""
    html = page.html or ""
    headers = {k.lower(): v for k, v in page.headers.items()}
    tree = parse_html(html)
    if tree is None and html.strip():
        log.debug("Could not parse HTML for %s; using text signals only", page.url)

    technologies = {
        "frontend": detect_frontend(tree, html),
        "backend": detect_backend(headers, html),
        "analytics": detect_analytics(html),
        "hosting": detect_hosting(headers),
        "cms": detect_cms(headers, html),
        "ecommerce": detect_ecommerce(html),
        "marketing": detect_marketing(html),
        "security": detect_security(headers),
    }
    return TechnologyProfile(
        url=page.url,
        technologies=technologies,
        confidence=overall_confidence(technologies),
        summary=summarize(technologies),
    )


class TechnologyFingerprinter:
    """Fetch a website once and fingerprint its technology stack."""

    stage = "technology"

    def __init__(self, fetcher: PageFetcher):
        self._fetcher = fetcher

    async def fetch(self, website: str) -> TechnologyProfile:
        url = normalize_url(website)
        # FetchError (network / timeout) propagates to the retry wrapper
        page = await self._fetcher.fetch(url)
        profile = fingerprint(page)
        log.info("Detected %d technologies on %s", sum(len(v) for v in profile.technologies.values()), url)
        return profile
