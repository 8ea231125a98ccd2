"""Subject index resolution: finds the course detail links for one subject."""

from __future__ import annotations

import logging
import re
from typing import List
from urllib.parse import quote

from bs4 import BeautifulSoup

from catalog_crawler.scraper.browser import BrowserSession
from catalog_crawler.scraper.models import CourseLink
from catalog_crawler.scraper.retry import CatalogScrapeError

logger = logging.getLogger(__name__)

# Acalog course filter for catalog 7, exact match on the subject prefix.
_INDEX_PATH = (
    "/content.php?filter%5B27%5D={subject}&filter%5B29%5D=&filter%5Bkeyword%5D="
    "&filter%5B32%5D=1&filter%5Bcpage%5D=1&cur_cat_oid=7&expand=&navoid=225"
    "&search_database=Filter&filter%5Bexact_match%5D=1#acalog_template_course_filter"
)

_PREVIEW_LINK_SELECTOR = 'a[href*="preview_course"]'
_COURSE_TEXT_RE = re.compile(r"[A-Z]{2,4}\s*\d+")


class NavigationTimeout(CatalogScrapeError):
    """The subject index page did not load within the index timeout."""


def build_index_url(base_url: str, subject: str) -> str:
    """Return the subject-filtered catalog index URL."""
    return base_url.rstrip("/") + _INDEX_PATH.format(subject=quote(subject.strip()))


def extract_course_links(html: str) -> List[CourseLink]:
    """Return the course-preview anchors whose text looks like ``SUBJ 123``.

    Navigation and decorative anchors that share the preview marker but carry
    no course code are dropped.
    """
    soup = BeautifulSoup(html, "html.parser")
    links: List[CourseLink] = []
    for anchor in soup.select(_PREVIEW_LINK_SELECTOR):
        href = anchor.get("href") or ""
        text = anchor.get_text().strip()
        if href and _COURSE_TEXT_RE.search(text):
            links.append(CourseLink(href=href, text=text))
    return links


async def resolve_links(
    session: BrowserSession,
    subject: str,
    *,
    base_url: str,
    timeout: float = 60.0,
) -> List[CourseLink]:
    """Load *subject*'s index page in a fresh browser page and extract its links.

    The page is closed before returning, whether or not navigation succeeded.

    Raises:
        NavigationTimeout: The page did not reach DOM-ready within *timeout*
            seconds.
    """
    from playwright.async_api import TimeoutError as PlaywrightTimeoutError  # noqa: PLC0415

    index_url = build_index_url(base_url, subject)
    logger.info("[index] Navigating to index for %s", subject)

    page = await session.new_page()
    try:
        try:
            await page.goto(
                index_url,
                wait_until="domcontentloaded",
                timeout=timeout * 1000,
            )
        except PlaywrightTimeoutError as exc:
            raise NavigationTimeout(
                f"index page for {subject} did not load within {timeout:.0f}s"
            ) from exc
        html = await page.content()
    finally:
        await page.close()

    links = extract_course_links(html)
    logger.info("[index] Extracted %d course links for %s", len(links), subject)
    return links
