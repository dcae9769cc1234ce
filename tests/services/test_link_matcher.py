from __future__ import annotations

import pytest

from app.models.backlink import DetectedLinkType
from app.services.backlinks.errors import InvalidUrl
from app.services.backlinks.matcher import LinkMatcher

SOURCE = "https://blog.example.com/posts/launch"


@pytest.fixture
def matcher() -> LinkMatcher:
    return LinkMatcher()


def test_nofollow_link_with_trailing_slash_matches_bare_target(matcher: LinkMatcher):
    html = '<html><body><a href="https://target.com/" rel="nofollow">x</a></body></html>'

    match = matcher.find_link(html, SOURCE, "https://target.com")

    assert match.found
    assert match.link_type == DetectedLinkType.NOFOLLOW
    assert match.anchor_text == "x"


def test_rel_tokens_are_case_insensitive(matcher: LinkMatcher):
    html = '<a href="https://target.com" rel="Sponsored NOFOLLOW">Target</a>'

    match = matcher.find_link(html, SOURCE, "https://target.com/")

    assert match.link_type == DetectedLinkType.NOFOLLOW


def test_link_without_nofollow_is_dofollow(matcher: LinkMatcher):
    html = '<p>Try <a href="https://target.com/app#pricing" rel="noopener">  the   app </a></p>'

    match = matcher.find_link(html, SOURCE, "https://target.com/app")

    assert match.found
    assert match.link_type == DetectedLinkType.DOFOLLOW
    assert match.anchor_text == "the   app"


def test_relative_href_is_resolved_against_source(matcher: LinkMatcher):
    html = '<a href="/pricing/">Pricing</a>'

    match = matcher.find_link(html, SOURCE, "https://blog.example.com/pricing")

    assert match.found
    assert match.href == "/pricing/"


def test_relative_href_honours_base_element(matcher: LinkMatcher):
    html = (
        '<head><base href="https://cdn.example.com/docs/"></head>'
        '<a href="guide">Guide</a>'
    )

    assert matcher.find_link(html, SOURCE, "https://cdn.example.com/docs/guide").found
    assert not matcher.find_link(html, SOURCE, "https://blog.example.com/guide").found


def test_first_matching_anchor_wins(matcher: LinkMatcher):
    html = (
        '<a href="https://target.com">first</a>'
        '<a href="https://target.com/" rel="nofollow">second</a>'
    )

    match = matcher.find_link(html, SOURCE, "https://target.com")

    assert match.link_type == DetectedLinkType.DOFOLLOW
    assert match.anchor_text == "first"


def test_malformed_hrefs_are_skipped(matcher: LinkMatcher):
    html = (
        '<a href="http://[broken">bad</a>'
        '<a href="javascript:void(0)">js</a>'
        '<a href="https://target.com">good</a>'
    )

    match = matcher.find_link(html, SOURCE, "https://target.com")

    assert match.found
    assert match.anchor_text == "good"


def test_missing_link_reports_none(matcher: LinkMatcher):
    html = '<a href="https://other.com">other</a><a>no href</a>'

    match = matcher.find_link(html, SOURCE, "https://target.com")

    assert not match.found
    assert match.link_type == DetectedLinkType.NONE
    assert match.anchor_text is None


def test_empty_anchor_text_is_none(matcher: LinkMatcher):
    match = matcher.find_link('<a href="https://target.com"><img src="logo.png"></a>', SOURCE, "https://target.com")

    assert match.found
    assert match.anchor_text is None


def test_broken_markup_still_scanned(matcher: LinkMatcher):
    html = '<div><p>unclosed <a href="https://target.com/">link</a><span>'

    assert matcher.find_link(html, SOURCE, "https://target.com").found


def test_host_match_accepts_any_path_on_target_host(matcher: LinkMatcher):
    html = '<a href="https://www.pitchmypage.com/pitch/123">Featured on PitchMyPage</a>'

    assert matcher.find_link(html, SOURCE, "https://www.pitchmypage.com", match_host=True).found
    assert not matcher.find_link(html, SOURCE, "https://www.pitchmypage.com").found


def test_invalid_target_raises(matcher: LinkMatcher):
    with pytest.raises(InvalidUrl):
        matcher.find_link("<a href='https://target.com'>x</a>", SOURCE, "target")
