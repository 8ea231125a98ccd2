"""Bounded concurrent fetching of course detail pages.

Every link of a subject is fetched with ``httpx.AsyncClient`` behind a
:class:`ConcurrencyLimiter`, retried through a :class:`RetryPolicy`, and
parsed into a :class:`CourseRecord`.  A link that cannot be fetched is simply
missing from the result; one failure never cancels the rest of the batch.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import re
from typing import List, Optional, Sequence

import httpx

from catalog_crawler.scraper.limiter import ConcurrencyLimiter
from catalog_crawler.scraper.models import UNKNOWN_COID, CourseLink, CourseRecord
from catalog_crawler.scraper.parser import parse_course_details
from catalog_crawler.scraper.retry import FailureKind, FetchFailure, RetryPolicy

logger = logging.getLogger(__name__)

_COID_RE = re.compile(r"coid=(\d+)")

REQUISITE_FIELDS = ("prereq", "coreq", "anti_req", "advisory_prereq")
UNKNOWN_REQUISITE = "unknown"


# ---------------------------------------------------------------------------
# Link helpers
# ---------------------------------------------------------------------------

def resolve_url(base_url: str, href: str) -> str:
    """Turn an index-page *href* into an absolute detail URL.

    Handles absolute URLs, root-relative paths and bare relative paths, and
    decodes any ``&amp;`` left in the attribute.
    """
    cleaned = href.strip().replace("&amp;", "&")
    if cleaned.startswith(("http://", "https://")):
        return cleaned
    base = base_url.rstrip("/")
    if cleaned.startswith("/"):
        return f"{base}{cleaned}"
    return f"{base}/{cleaned}"


def extract_coid(url: str) -> str:
    """Return the catalog's ``coid`` query value, or ``"unknown"``."""
    match = _COID_RE.search(url)
    return match.group(1) if match else UNKNOWN_COID


def classify_fetch_error(exc: BaseException) -> FailureKind:
    """Map an httpx failure onto the retry taxonomy.

    404 is permanent (stale catalog link).  Timeouts, connection and DNS
    errors, and 5xx responses are transient.  Anything else is unclassified.
    """
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status == 404:
            return FailureKind.PERMANENT
        if 500 <= status < 600:
            return FailureKind.TRANSIENT
        return FailureKind.UNCLASSIFIED
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError)):
        return FailureKind.TRANSIENT
    return FailureKind.UNCLASSIFIED


def mark_requisites_unknown(record: CourseRecord) -> CourseRecord:
    """Replace every non-empty requisite field with ``"unknown"``.

    Applied to subjects outside the required list, where requisite text has
    not been verified.  Empty fields stay empty.
    """
    changes = {
        name: UNKNOWN_REQUISITE for name in REQUISITE_FIELDS if getattr(record, name)
    }
    return dataclasses.replace(record, **changes) if changes else record


# ---------------------------------------------------------------------------
# Fetching
# ---------------------------------------------------------------------------

async def fetch_course(
    client: httpx.AsyncClient,
    link: CourseLink,
    *,
    base_url: str,
    index_url: str,
    user_agent: str,
    timeout: float,
    retry_policy: RetryPolicy,
    supported: bool = True,
) -> Optional[CourseRecord]:
    """Fetch and parse one detail page; return ``None`` if it cannot be fetched."""
    url = resolve_url(base_url, link.href)
    coid = extract_coid(url)
    headers = {"Referer": index_url, "User-Agent": user_agent}

    async def _get() -> httpx.Response:
        response = await client.get(url, headers=headers, timeout=timeout)
        response.raise_for_status()
        return response

    try:
        response = await retry_policy.execute(_get, classify_fetch_error, label=url)
    except FetchFailure:
        return None

    record = dataclasses.replace(parse_course_details(response.text), coid=coid, url=url)
    if not supported:
        record = mark_requisites_unknown(record)
    return record


async def fetch_all(
    links: Sequence[CourseLink],
    *,
    base_url: str,
    index_url: str,
    subject: str = "",
    concurrency: int = 30,
    timeout: float = 15.0,
    max_retries: int = 2,
    supported: bool = True,
    user_agent: str = "",
    failure_summary_threshold: float = 0.3,
    client: Optional[httpx.AsyncClient] = None,
    retry_policy: Optional[RetryPolicy] = None,
) -> List[CourseRecord]:
    """Fetch every link with at most *concurrency* requests in flight.

    Waits for every fetch to settle before returning.  The returned list holds
    only the links that produced a record, in no particular order.

    Args:
        client: Shared client; a private one is opened and closed when omitted.
        retry_policy: Overrides the default policy built from *max_retries*.
    """
    limiter = ConcurrencyLimiter(concurrency)
    policy = retry_policy or RetryPolicy(max_retries=max_retries)
    owns_client = client is None
    http = client if client is not None else httpx.AsyncClient(follow_redirects=True)

    async def _bounded(link: CourseLink) -> Optional[CourseRecord]:
        async with limiter:
            return await fetch_course(
                http,
                link,
                base_url=base_url,
                index_url=index_url,
                user_agent=user_agent,
                timeout=timeout,
                retry_policy=policy,
                supported=supported,
            )

    logger.info(
        "[fetch] Fetching %d course pages for %s (%d concurrent)…",
        len(links), subject or "(subject)", concurrency,
    )
    try:
        outcomes = await asyncio.gather(
            *(_bounded(link) for link in links), return_exceptions=True
        )
    finally:
        if owns_client:
            await http.aclose()

    records: List[CourseRecord] = []
    failures = 0
    for link, outcome in zip(links, outcomes):
        if isinstance(outcome, CourseRecord):
            records.append(outcome)
            continue
        failures += 1
        if isinstance(outcome, BaseException):
            logger.debug("[fetch] unexpected error for %s: %r", link.href, outcome)

    if failures and failures > len(links) * failure_summary_threshold:
        logger.info(
            "[fetch] %s: %d courses scraped, %d failed "
            "(404s are expected for broken catalog links)",
            subject, len(records), failures,
        )
    else:
        logger.info("[fetch] %s: %d courses scraped successfully", subject, len(records))
    return records
