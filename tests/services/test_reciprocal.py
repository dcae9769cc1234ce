from __future__ import annotations

import httpx
import pytest

from app.services.backlinks import fetcher as fetcher_module
from app.services.backlinks import reciprocal as reciprocal_module
from app.services.backlinks.errors import InvalidUrl
from app.services.backlinks.fetcher import PageFetcher
from app.services.backlinks.reciprocal import ReciprocalLinkChecker
from tests.helpers.metrics_stub import StubMetrics

PLATFORM_URLS = ["https://www.pitchmypage.com", "https://pitchmypage.com"]


@pytest.fixture(autouse=True)
def stub_metrics(monkeypatch) -> StubMetrics:
    stub = StubMetrics()
    monkeypatch.setattr(fetcher_module, "metrics", stub)
    monkeypatch.setattr(reciprocal_module, "metrics", stub)
    return stub


def _checker(handler) -> ReciprocalLinkChecker:
    return ReciprocalLinkChecker(
        fetcher=PageFetcher(transport=httpx.MockTransport(handler)),
        reciprocal_urls=PLATFORM_URLS,
    )


@pytest.mark.asyncio
async def test_dofollow_link_to_platform_page_verifies():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200, text='<footer><a href="https://www.pitchmypage.com/pitch/42">Featured</a></footer>'
        )

    summary = await _checker(handler).verify("https://maker.example.com")

    assert summary.verified is True
    assert summary.verified_count == 1
    assert summary.required_count == 1
    assert summary.results[0].found and summary.results[0].is_dofollow
    assert summary.results[0].anchor_text == "Featured"
    assert summary.results[1].found is False


@pytest.mark.asyncio
async def test_nofollow_link_does_not_count():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200, text='<a href="https://pitchmypage.com/" rel="nofollow ugc">PitchMyPage</a>'
        )

    summary = await _checker(handler).verify("https://maker.example.com")

    assert summary.verified is False
    assert summary.verified_count == 0
    assert summary.results[1].found is True
    assert summary.results[1].is_dofollow is False


@pytest.mark.asyncio
async def test_unreachable_page_reports_error_per_url():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    summary = await _checker(handler).verify("https://maker.example.com")

    assert summary.verified is False
    assert all(result.error == "HTTP 500: Internal Server Error" for result in summary.results)


@pytest.mark.asyncio
async def test_malformed_source_url_is_rejected():
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - never called
        raise AssertionError("fetch should not happen")

    with pytest.raises(InvalidUrl):
        await _checker(handler).verify("not a url")


def test_snippets_are_keyed_by_site_and_escaped():
    snippets = reciprocal_module.reciprocal_snippets(
        ["https://www.pitchmypage.com", "https://appideasfinder.com/?ref=a&b=1"]
    )

    assert snippets["pitchmypage"] == '<a href="https://www.pitchmypage.com">pitchmypage.com</a>'
    assert snippets["appideasfinder"] == (
        '<a href="https://appideasfinder.com/?ref=a&amp;b=1">appideasfinder.com</a>'
    )
    assert snippets["both"].split("<br>\n") == [snippets["pitchmypage"], snippets["appideasfinder"]]
