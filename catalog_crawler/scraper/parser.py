"""Course detail page parsing: turns raw catalog HTML into a :class:`CourseRecord`.

The catalog renders each course as a title heading, a horizontal rule, the
free-text description, and then a run of ``<strong>`` labels each followed by
loose sibling text::

    <h1 id="course_preview_title">CSE 214: Data Structures</h1>
    <hr>
    An extension of programming methodology ...
    <strong>Prerequisite(s):</strong> CSE 114 <br>
    <strong>SBC: </strong> TECH <br>
    <strong>3 credits</strong>

Parsing is pure and never raises; any field that cannot be located is an
empty string.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from bs4 import BeautifulSoup
from bs4.element import NavigableString, PageElement, PreformattedString, Tag

from catalog_crawler.scraper.models import CourseRecord

logger = logging.getLogger(__name__)

# Two layout variants: the course preview page and the embedded popup.
_TITLE_SELECTOR = "h1#course_preview_title, div > h3"

_STOP_KEYWORDS = (
    "prerequisite(s):",
    "corequisite(s):",
    "anti-requisite:",
    "advisory preq:",
    "sbc:",
)

_PLACEMENT_TEXT = "on the mathematics placement examination"
_PLACEMENT_OR_RE = re.compile(r"^\s*or\s+(.+)", re.IGNORECASE)
_OR_SPLIT_RE = re.compile(r"or\s+", re.IGNORECASE)
_OR_HIGHER_RE = re.compile(r"^\s*or\s+higher", re.IGNORECASE)

_COURSE_CODE_RE = re.compile(r"^([A-Z]{2,4})\s*(\d{3})")
_SBC_PREFIX_RE = re.compile(r"SBC:\s*", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")

CLASSIE_EVALS_URL = (
    "https://classie-evals.stonybrook.edu/?SearchKeyword={subject}{number}&SearchTerm=ALL"
)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _collapse(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def _is_tag(node: Optional[PageElement], name: str) -> bool:
    return isinstance(node, Tag) and node.name == name


def _node_text(node: PageElement) -> str:
    """Visible text of a sibling node; comments and doctypes count as nothing."""
    if isinstance(node, Tag):
        return node.get_text()
    if isinstance(node, PreformattedString):
        return ""
    if isinstance(node, NavigableString):
        return str(node)
    return ""


def _normalise_title(text: str) -> str:
    return _collapse(text.strip().replace("&nbsp;", " ").replace("\u00a0", " "))


def _description_after(title_el: Tag) -> str:
    """Concatenate the siblings between the title's ``<hr>`` and the first label."""
    hr = title_el.find_next_sibling("hr")
    if hr is None:
        return ""
    parts: list[str] = []
    node = hr.next_sibling
    while node is not None and not _is_tag(node, "strong"):
        parts.append(_node_text(node))
        node = node.next_sibling
    return _collapse("".join(parts))


def _value_for_label(label_el: Tag) -> str:
    """Return the loose text following *label_el* up to the next label."""
    pieces: list[str] = []
    node = label_el.next_sibling
    while node is not None:
        node_text = _node_text(node).strip()
        if _is_tag(node, "strong") or node_text.lower().startswith(_STOP_KEYWORDS):
            break
        pieces.append(node_text)
        node = node.next_sibling

    text = _collapse(" ".join(pieces))
    if text.startswith(":"):
        text = _collapse(text[1:])
    return text


def _classie_evals_url(title: str) -> str:
    match = _COURSE_CODE_RE.match(title)
    if not match:
        return ""
    return CLASSIE_EVALS_URL.format(subject=match.group(1), number=match.group(2))


# ---------------------------------------------------------------------------
# Prerequisite simplification
# ---------------------------------------------------------------------------

def simplify_placement_prereq(prereq: str, title: str = "") -> str:
    """Collapse a "placement exam OR course" prerequisite to the course branch.

    ``"Level 2 or higher on the mathematics placement examination or MAT 123
    or higher"`` becomes ``"MAT 123 or higher"``.  The placement alternative
    is dropped on purpose; text without both a placement clause and a MAT/AMS
    course is returned unchanged.
    """
    lowered = prereq.lower()
    if _PLACEMENT_TEXT not in lowered or not ("MAT" in prereq or "AMS" in prereq):
        return prereq

    simplified: Optional[str] = None
    placement_end = lowered.index(_PLACEMENT_TEXT) + len(_PLACEMENT_TEXT)
    or_match = _PLACEMENT_OR_RE.match(prereq[placement_end:])
    if or_match:
        simplified = or_match.group(1).strip()
    else:
        parts = _OR_SPLIT_RE.split(prereq)
        course_part = next(
            (
                part
                for part in parts
                if ("MAT" in part or "AMS" in part) and "placement" not in part.lower()
            ),
            None,
        )
        if course_part:
            course_end = prereq.index(course_part) + len(course_part)
            or_higher = _OR_HIGHER_RE.match(prereq[course_end:])
            simplified = course_part.strip() + (" or higher" if or_higher else "")

    if simplified is None:
        return prereq

    logger.warning(
        "[parser] Simplified placement exam prerequisite for %r. "
        "Original: %r. Simplified: %r.",
        title, prereq, simplified,
    )
    return simplified


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def parse_course_details(html: str) -> CourseRecord:
    """Parse one course detail page.

    ``coid`` and ``url`` are left empty; the fetcher fills them in.
    """
    if not html:
        return CourseRecord()

    soup = BeautifulSoup(html, "html.parser")
    title_el = soup.select_one(_TITLE_SELECTOR)
    if title_el is None:
        return CourseRecord()

    title = _normalise_title(title_el.get_text())
    container = title_el.parent
    if container is None:
        return CourseRecord(title=title, classieEvalsUrl=_classie_evals_url(title))

    description = _description_after(title_el)

    fields = {
        "credits": "",
        "prereq": "",
        "coreq": "",
        "anti_req": "",
        "advisory_prereq": "",
        "sbc": "",
    }
    for label_el in container.find_all("strong"):
        label = label_el.get_text().lower()
        if "credit" in label:
            fields["credits"] = label_el.get_text().strip()
        elif "prerequisite(s)" in label:
            fields["prereq"] = _value_for_label(label_el)
        elif "corequisite(s)" in label:
            fields["coreq"] = _value_for_label(label_el)
        elif "anti-requisite" in label:
            fields["anti_req"] = _value_for_label(label_el)
        elif "advisory preq" in label:
            fields["advisory_prereq"] = _value_for_label(label_el)
        elif "sbc:" in label:
            inline = _SBC_PREFIX_RE.sub("", label_el.get_text(), count=1).strip()
            fields["sbc"] = inline or _value_for_label(label_el)

    fields["prereq"] = simplify_placement_prereq(fields["prereq"], title=title)

    return CourseRecord(
        title=title,
        description=description,
        classieEvalsUrl=_classie_evals_url(title),
        **fields,
    )
