"""Run-level orchestration: one browser session, one pipeline per subject.

``CatalogScraper.run`` is the single entry point callers need.  It opens the
shared :class:`BrowserSession` and a shared ``httpx.AsyncClient``, runs every
subject pipeline concurrently, and always closes both on exit.  A subject
whose pipeline fails is logged and left out of the result; only a browser
launch failure aborts the run.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional, Sequence

import httpx

from catalog_crawler.config import Settings, settings as default_settings
from catalog_crawler.scraper.browser import BrowserSession
from catalog_crawler.scraper.fetcher import fetch_all
from catalog_crawler.scraper.index import build_index_url, resolve_links
from catalog_crawler.scraper.models import SubjectResult
from catalog_crawler.scraper.retry import RetryPolicy

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], BrowserSession]


class CatalogScraper:
    """Scrape catalog subjects into :class:`SubjectResult` lists.

    Args:
        config: Settings to run with; the module singleton when omitted.
        session_factory: Builds the (not yet started) browser session.
        retry_policy: Shared by every detail fetch of the run; built from
            *config* when omitted.
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        *,
        session_factory: Optional[SessionFactory] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> None:
        self.config = config if config is not None else default_settings
        self._session_factory = session_factory or self._default_session
        self._retry_policy = retry_policy or RetryPolicy(
            max_retries=self.config.max_retries,
            base_delay=self.config.retry_base_delay,
            log_sample_rate=self.config.failure_log_sample_rate,
        )

    def _default_session(self) -> BrowserSession:
        return BrowserSession(
            headless=self.config.headless,
            user_agent=self.config.user_agent,
        )

    def subjects_for(self, subjects: Optional[Sequence[str]]) -> List[str]:
        """Return *subjects*, or the required-subject list when none are given.

        Blank codes are dropped first, so a list of only blanks also falls
        back to the required subjects.
        """
        cleaned = [s.strip() for s in subjects or () if s and s.strip()]
        if cleaned:
            return cleaned
        defaults = list(self.config.required_subjects)
        logger.info(
            "[scraper] No subjects provided, defaulting to required subjects: %s",
            ", ".join(defaults),
        )
        return defaults

    def client_limits(self, subject_count: int) -> httpx.Limits:
        """Connection pool sized so every limiter slot of every subject gets a connection."""
        slots = self.config.request_concurrency * max(subject_count, 1)
        return httpx.Limits(max_connections=slots, max_keepalive_connections=slots)

    async def scrape_subject(
        self,
        session: BrowserSession,
        client: httpx.AsyncClient,
        subject: str,
    ) -> SubjectResult:
        """Resolve, fetch and parse every course of one subject."""
        cfg = self.config
        supported = cfg.is_supported(subject)
        if not supported:
            logger.warning(
                "[scraper] Subject %r is not in supported list (%s). "
                "Prerequisites may be marked as unknown.",
                subject, ", ".join(cfg.required_subjects),
            )

        links = await resolve_links(
            session,
            subject,
            base_url=cfg.catalog_base_url,
            timeout=cfg.index_timeout,
        )
        courses = await fetch_all(
            links,
            base_url=cfg.catalog_base_url,
            index_url=build_index_url(cfg.catalog_base_url, subject),
            subject=subject,
            concurrency=cfg.request_concurrency,
            timeout=cfg.detail_timeout,
            supported=supported,
            user_agent=cfg.user_agent,
            failure_summary_threshold=cfg.failure_summary_threshold,
            client=client,
            retry_policy=self._retry_policy,
        )
        return SubjectResult(subject=subject, courses=courses)

    async def run(
        self,
        term: str,
        subjects: Optional[Sequence[str]] = None,
    ) -> List[SubjectResult]:
        """Scrape *subjects* (or the required list) for *term*.

        *term* is only used for logging.  The result keeps the requested
        subject order and omits subjects whose pipeline failed.

        Raises:
            LaunchFailure: The browser session could not be started.
        """
        subject_list = self.subjects_for(subjects)
        logger.info(
            "[scraper] Starting catalog scrape for %s → %s", term, ", ".join(subject_list)
        )

        session = self._session_factory()
        completed = False
        try:
            await session.start()
            async with httpx.AsyncClient(
                follow_redirects=True, limits=self.client_limits(len(subject_list))
            ) as client:
                outcomes = await asyncio.gather(
                    *(self.scrape_subject(session, client, s) for s in subject_list),
                    return_exceptions=True,
                )
            completed = True
        except Exception as exc:
            logger.error("[scraper] Fatal error: %s", exc)
            raise
        finally:
            try:
                await session.close()
            except Exception as exc:
                # A finished run keeps its results when teardown fails.
                if not completed:
                    raise
                logger.error("[scraper] ✗ Error closing browser session: %s", exc)

        results: List[SubjectResult] = []
        for subject, outcome in zip(subject_list, outcomes):
            if isinstance(outcome, SubjectResult):
                results.append(outcome)
            else:
                logger.error("[scraper] ✗ Failed to scrape subject %s: %s", subject, outcome)

        logger.info("[scraper] Completed scrape for %s", ", ".join(subject_list))
        return results


def scrape_catalog(
    term: str,
    subjects: Optional[Sequence[str]] = None,
    config: Optional[Settings] = None,
) -> List[SubjectResult]:
    """Blocking convenience wrapper around :meth:`CatalogScraper.run`."""
    return asyncio.run(CatalogScraper(config).run(term, subjects))
