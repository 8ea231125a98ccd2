"""Scraper package: subject index resolution, detail fetch & course parsing."""

from catalog_crawler.scraper.browser import BrowserSession, LaunchFailure
from catalog_crawler.scraper.fetcher import fetch_all
from catalog_crawler.scraper.index import NavigationTimeout, resolve_links
from catalog_crawler.scraper.models import CourseLink, CourseRecord, SubjectResult
from catalog_crawler.scraper.orchestrator import CatalogScraper, scrape_catalog
from catalog_crawler.scraper.parser import parse_course_details

__all__ = [
    "BrowserSession",
    "CatalogScraper",
    "CourseLink",
    "CourseRecord",
    "LaunchFailure",
    "NavigationTimeout",
    "SubjectResult",
    "fetch_all",
    "parse_course_details",
    "resolve_links",
    "scrape_catalog",
]
