"""Tests for the bounded concurrent fetcher.

Mocking strategy:
- ``respx`` patches ``httpx`` at the transport layer so no real network calls
  are made by ``fetch_all``.
- The retry policy gets an ``AsyncMock`` sleep so backoff waits are recorded
  instead of slept.
"""

from __future__ import annotations

import asyncio
import logging
from unittest.mock import AsyncMock, call, patch

import httpx
import pytest
import respx

from catalog_crawler.scraper.fetcher import (
    classify_fetch_error,
    extract_coid,
    fetch_all,
    mark_requisites_unknown,
    resolve_url,
)
from catalog_crawler.scraper.models import CourseLink, CourseRecord
from catalog_crawler.scraper.parser import parse_course_details
from catalog_crawler.scraper.retry import FailureKind, RetryPolicy


# ---------------------------------------------------------------------------
# Fixtures / constants
# ---------------------------------------------------------------------------

_BASE = "https://catalog.example.edu"
_INDEX_URL = f"{_BASE}/content.php?filter%5B27%5D=CSE"
_UA = "Mozilla/5.0 (test)"

_DETAIL_HTML = """\
<html><body><td class="block_content">
<h1 id="course_preview_title">CSE 214: Data Structures</h1>
<hr>Lists, stacks and queues.<br>
<strong>Prerequisite(s):</strong> CSE 114<br>
<strong>3 credits</strong>
</td></body></html>
"""


def _link(coid: int) -> CourseLink:
    return CourseLink(
        href=f"preview_course_nopop.php?catoid=7&amp;coid={coid}",
        text=f"CSE {coid}",
    )


def _detail_url(coid: int) -> str:
    return f"{_BASE}/preview_course_nopop.php?catoid=7&coid={coid}"


def _policy(sleep: AsyncMock | None = None) -> RetryPolicy:
    return RetryPolicy(max_retries=2, sleep=sleep or AsyncMock(), sampler=lambda: 0.99)


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://x.example/")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError("status", request=request, response=response)


# ---------------------------------------------------------------------------
# Link helpers
# ---------------------------------------------------------------------------

class TestResolveUrl:
    def test_absolute_url_kept(self) -> None:
        assert resolve_url(_BASE, "https://other.example/p?coid=1") == "https://other.example/p?coid=1"

    def test_root_relative(self) -> None:
        assert resolve_url(_BASE + "/", "/preview_course.php?coid=2") == f"{_BASE}/preview_course.php?coid=2"

    def test_bare_relative(self) -> None:
        assert resolve_url(_BASE, "preview_course.php?coid=3") == f"{_BASE}/preview_course.php?coid=3"

    def test_decodes_amp_entities(self) -> None:
        assert resolve_url(_BASE, "p.php?catoid=7&amp;coid=4") == f"{_BASE}/p.php?catoid=7&coid=4"


class TestExtractCoid:
    def test_extracts_digits(self) -> None:
        assert extract_coid(_detail_url(44512)) == "44512"

    def test_missing_coid_is_unknown(self) -> None:
        assert extract_coid(f"{_BASE}/preview_course.php?catoid=7") == "unknown"


class TestClassifyFetchError:
    def test_404_is_permanent(self) -> None:
        assert classify_fetch_error(_status_error(404)) is FailureKind.PERMANENT

    @pytest.mark.parametrize("status", [500, 502, 503])
    def test_5xx_is_transient(self, status: int) -> None:
        assert classify_fetch_error(_status_error(status)) is FailureKind.TRANSIENT

    def test_other_4xx_is_unclassified(self) -> None:
        assert classify_fetch_error(_status_error(403)) is FailureKind.UNCLASSIFIED

    @pytest.mark.parametrize(
        "exc",
        [httpx.ReadTimeout("slow"), httpx.ConnectTimeout("slow"), httpx.ConnectError("dns")],
    )
    def test_network_errors_are_transient(self, exc: Exception) -> None:
        assert classify_fetch_error(exc) is FailureKind.TRANSIENT

    def test_unknown_error_is_unclassified(self) -> None:
        assert classify_fetch_error(ValueError("bad")) is FailureKind.UNCLASSIFIED


class TestMarkRequisitesUnknown:
    def test_non_empty_fields_become_unknown(self) -> None:
        record = CourseRecord(title="PHY 131", prereq="MAT 125", coreq="", anti_req="PHY 125")
        marked = mark_requisites_unknown(record)
        assert marked.prereq == "unknown"
        assert marked.anti_req == "unknown"
        assert marked.coreq == ""
        assert marked.advisory_prereq == ""
        assert marked.title == "PHY 131"

    def test_record_without_requisites_unchanged(self) -> None:
        record = CourseRecord(title="PHY 100")
        assert mark_requisites_unknown(record) is record


# ---------------------------------------------------------------------------
# fetch_all
# ---------------------------------------------------------------------------

class TestFetchAll:
    async def test_mixed_batch_keeps_only_successes(self) -> None:
        """404 once, transient three times, success once -> one record."""
        sleep = AsyncMock()
        with respx.mock:
            gone = respx.get(_detail_url(1)).mock(return_value=httpx.Response(404))
            flaky = respx.get(_detail_url(2)).mock(
                side_effect=[
                    httpx.ConnectError("connection reset"),
                    httpx.Response(503),
                    httpx.ReadTimeout("timed out"),
                ]
            )
            ok = respx.get(_detail_url(3)).mock(
                return_value=httpx.Response(200, text=_DETAIL_HTML)
            )
            records = await fetch_all(
                [_link(1), _link(2), _link(3)],
                base_url=_BASE,
                index_url=_INDEX_URL,
                subject="CSE",
                user_agent=_UA,
                retry_policy=_policy(sleep),
            )

        assert len(records) == 1
        assert records[0].coid == "3"
        assert records[0].url == _detail_url(3)
        assert records[0].title == "CSE 214: Data Structures"
        assert gone.call_count == 1
        assert flaky.call_count == 3
        assert ok.call_count == 1
        assert sleep.await_args_list == [call(1.0), call(2.0)]

    async def test_retried_then_successful_link_is_kept(self) -> None:
        with respx.mock:
            respx.get(_detail_url(5)).mock(
                side_effect=[httpx.Response(502), httpx.Response(200, text=_DETAIL_HTML)]
            )
            records = await fetch_all(
                [_link(5)], base_url=_BASE, index_url=_INDEX_URL, retry_policy=_policy()
            )
        assert [r.coid for r in records] == ["5"]

    async def test_sends_referer_and_user_agent(self) -> None:
        with respx.mock:
            route = respx.get(_detail_url(7)).mock(
                return_value=httpx.Response(200, text=_DETAIL_HTML)
            )
            await fetch_all(
                [_link(7)],
                base_url=_BASE,
                index_url=_INDEX_URL,
                user_agent=_UA,
                retry_policy=_policy(),
            )
        request = route.calls.last.request
        assert request.headers["Referer"] == _INDEX_URL
        assert request.headers["User-Agent"] == _UA

    async def test_unsupported_subject_marks_requisites_unknown(self) -> None:
        assert parse_course_details(_DETAIL_HTML).prereq == "CSE 114"
        with respx.mock:
            respx.get(_detail_url(8)).mock(return_value=httpx.Response(200, text=_DETAIL_HTML))
            records = await fetch_all(
                [_link(8)],
                base_url=_BASE,
                index_url=_INDEX_URL,
                supported=False,
                retry_policy=_policy(),
            )
        assert records[0].prereq == "unknown"
        assert records[0].coreq == ""
        assert records[0].anti_req == ""
        assert records[0].credits == "3 credits"

    async def test_unexpected_error_does_not_fail_batch(self) -> None:
        def _parse(html: str) -> CourseRecord:
            if "BROKEN" in html:
                raise RuntimeError("parser bug")
            return parse_course_details(html)

        with respx.mock:
            respx.get(_detail_url(1)).mock(return_value=httpx.Response(200, text="BROKEN"))
            respx.get(_detail_url(2)).mock(return_value=httpx.Response(200, text=_DETAIL_HTML))
            with patch("catalog_crawler.scraper.fetcher.parse_course_details", side_effect=_parse):
                records = await fetch_all(
                    [_link(1), _link(2)],
                    base_url=_BASE,
                    index_url=_INDEX_URL,
                    retry_policy=_policy(),
                )
        assert [r.coid for r in records] == ["2"]

    async def test_concurrency_is_bounded(self) -> None:
        class _CountingClient:
            def __init__(self) -> None:
                self.active = 0
                self.peak = 0

            async def get(self, url, headers=None, timeout=None) -> httpx.Response:
                self.active += 1
                self.peak = max(self.peak, self.active)
                await asyncio.sleep(0.005)
                self.active -= 1
                return httpx.Response(
                    200, text=_DETAIL_HTML, request=httpx.Request("GET", url)
                )

        client = _CountingClient()
        records = await fetch_all(
            [_link(i) for i in range(12)],
            base_url=_BASE,
            index_url=_INDEX_URL,
            concurrency=3,
            client=client,  # type: ignore[arg-type]
            retry_policy=_policy(),
        )
        assert len(records) == 12
        assert client.peak == 3

    async def test_failure_summary_logged_above_threshold(self, caplog) -> None:
        with respx.mock:
            respx.get(_detail_url(1)).mock(return_value=httpx.Response(404))
            respx.get(_detail_url(2)).mock(return_value=httpx.Response(200, text=_DETAIL_HTML))
            with caplog.at_level(logging.INFO, logger="catalog_crawler.scraper.fetcher"):
                await fetch_all(
                    [_link(1), _link(2)],
                    base_url=_BASE,
                    index_url=_INDEX_URL,
                    subject="CSE",
                    retry_policy=_policy(),
                )
        assert "1 courses scraped, 1 failed" in caplog.text

    async def test_empty_link_list(self) -> None:
        records = await fetch_all([], base_url=_BASE, index_url=_INDEX_URL, retry_policy=_policy())
        assert records == []
