"""Data models for the catalog scraper pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, List

UNKNOWN_COID = "unknown"


@dataclass(frozen=True)
class CourseLink:
    """A candidate detail-page link taken from a subject index page."""

    href: str
    text: str


@dataclass(frozen=True)
class CourseRecord:
    """One normalised course, as parsed from its catalog detail page.

    Every field is a string and is empty when the page does not carry it.
    ``coid`` and ``url`` are attached by the fetcher, not the parser.
    """

    coid: str = ""
    url: str = ""
    title: str = ""
    description: str = ""
    credits: str = ""
    prereq: str = ""
    coreq: str = ""
    anti_req: str = ""
    advisory_prereq: str = ""
    sbc: str = ""
    classieEvalsUrl: str = ""

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


@dataclass
class SubjectResult:
    """All records scraped for one subject."""

    subject: str
    courses: List[CourseRecord] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.courses)

    def to_dict(self) -> dict[str, Any]:
        return {
            "subject": self.subject,
            "count": self.count,
            "courses": [course.to_dict() for course in self.courses],
        }
