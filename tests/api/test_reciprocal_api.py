from __future__ import annotations

from contextlib import contextmanager

import httpx

from app.config import settings
from app.main import app
from app.services.backlinks.fetcher import PageFetcher
from app.services.backlinks.reciprocal import ReciprocalLinkChecker, get_reciprocal_checker


@contextmanager
def _override(html: str):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text=html)

    checker = ReciprocalLinkChecker(
        fetcher=PageFetcher(transport=httpx.MockTransport(handler)),
        reciprocal_urls=["https://www.pitchmypage.com"],
    )
    app.dependency_overrides[get_reciprocal_checker] = lambda: checker
    try:
        yield
    finally:
        app.dependency_overrides.pop(get_reciprocal_checker, None)


def test_reciprocal_verify_returns_camel_case_summary(client):
    with _override('<a href="https://www.pitchmypage.com/p/1">Featured on PitchMyPage</a>'):
        response = client.post(
            "/reciprocal/verify", json={"source_url": "https://maker.example.com"}
        )

    assert response.status_code == 200
    body = response.json()
    assert body["verified"] is True
    assert body["verifiedCount"] == 1
    assert body["requiredCount"] == 1
    assert body["results"] == [
        {
            "url": "https://www.pitchmypage.com",
            "found": True,
            "isDofollow": True,
            "anchorText": "Featured on PitchMyPage",
            "error": None,
        }
    ]


def test_reciprocal_verify_rejects_invalid_url(client):
    with _override(""):
        response = client.post("/reciprocal/verify", json={"source_url": "maker.example.com"})

    assert response.status_code == 400


def test_reciprocal_html_serves_snippets_for_configured_urls(client, monkeypatch):
    monkeypatch.setattr(
        settings, "reciprocal_urls", ["https://www.pitchmypage.com", "https://www.appideasfinder.com"]
    )

    response = client.get("/reciprocal/html", params={"type": "pitchmypage"})

    assert response.status_code == 200
    body = response.json()
    assert body["html"] == '<a href="https://www.pitchmypage.com">pitchmypage.com</a>'
    assert set(body["snippets"]) == {"pitchmypage", "appideasfinder", "both"}
    assert body["snippets"]["both"] == (
        '<a href="https://www.pitchmypage.com">pitchmypage.com</a><br>\n'
        '<a href="https://www.appideasfinder.com">appideasfinder.com</a>'
    )
    assert set(body["instructions"]) == set(body["snippets"])


def test_reciprocal_html_unknown_type_falls_back_to_all_links(client, monkeypatch):
    monkeypatch.setattr(settings, "reciprocal_urls", ["https://www.pitchmypage.com"])

    body = client.get("/reciprocal/html", params={"type": "elsewhere"}).json()

    assert body["html"] == body["snippets"]["both"]
