from __future__ import annotations

import pytest

from app.services.backlinks import urls
from app.services.backlinks.errors import InvalidUrl


@pytest.mark.parametrize(
    "url",
    [
        "https://target.com",
        "https://target.com/pricing",
        "https://target.com/blog/post",
        "http://target.com:8080/app",
        "https://target.com/#already",
    ],
)
def test_trailing_slash_and_fragment_do_not_change_canonical_form(url: str):
    assert urls.normalize(url) == urls.normalize(url + "/")
    assert urls.normalize(url + "#frag") == urls.normalize(url)


def test_only_one_trailing_path_slash_is_ignored():
    assert urls.normalize("https://target.com/page//") != urls.normalize("https://target.com/page")
    assert urls.normalize("https://target.com/page?next=/") != urls.normalize(
        "https://target.com/page?next="
    )
    assert urls.normalize("https://target.com/page/?ref=1") == urls.normalize(
        "https://target.com/page?ref=1"
    )


def test_normalize_lowercases_scheme_and_host_and_drops_default_port():
    canonical = urls.normalize("HTTPS://Target.COM:443/Pricing")

    assert canonical.value == "https://target.com/Pricing"
    assert canonical.host == "target.com"
    assert urls.normalize("http://target.com:80/") == urls.normalize("http://target.com")


def test_normalize_keeps_non_default_port_and_query():
    canonical = urls.normalize("https://target.com:8443/app?b=2&a=1")

    assert canonical.value == "https://target.com:8443/app?b=2&a=1"


def test_normalize_percent_encodes_consistently():
    assert urls.normalize("https://target.com/a b") == urls.normalize("https://target.com/a%20b")


@pytest.mark.parametrize(
    "url",
    ["", "   ", "not a url", "ftp://target.com/file", "mailto:team@target.com", "https://", "http://[::1"],
)
def test_normalize_rejects_malformed_urls(url: str):
    with pytest.raises(InvalidUrl) as excinfo:
        urls.normalize(url)

    assert excinfo.value.code == "400_INVALID_URL"


def test_resolve_relative_hrefs_against_source_page():
    base = "https://blog.example.com/posts/launch"

    assert urls.resolve("/about", base).value == "https://blog.example.com/about"
    assert urls.resolve("related", base).value == "https://blog.example.com/posts/related"
    assert urls.resolve("//target.com/", base).value == "https://target.com"


def test_resolve_rejects_non_http_hrefs():
    with pytest.raises(InvalidUrl):
        urls.resolve("javascript:void(0)", "https://blog.example.com/")


def test_urls_match_never_matches_malformed_input():
    assert urls.urls_match("https://target.com/", "https://target.com#top")
    assert not urls.urls_match("not a url", "not a url")


def test_ensure_valid_names_the_field():
    assert urls.ensure_valid("  https://target.com  ", field="target_url") == "https://target.com"
    with pytest.raises(InvalidUrl, match="target_url"):
        urls.ensure_valid("target.com", field="target_url")
