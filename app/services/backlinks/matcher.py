"""Locate a target link inside a fetched HTML document."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from app.models.backlink import DetectedLinkType
from app.services.backlinks import urls
from app.services.backlinks.errors import InvalidUrl, ParseError

logger = logging.getLogger(__name__)

HTML_PARSER = "html.parser"


@dataclass(frozen=True)
class LinkMatch:
    """Outcome of scanning one document for one target."""

    found: bool
    link_type: DetectedLinkType
    anchor_text: str | None = None
    href: str | None = None

    @classmethod
    def not_found(cls) -> LinkMatch:
        return cls(found=False, link_type=DetectedLinkType.NONE)


class LinkMatcher:
    """Scans anchors in document order; the first anchor that matches wins."""

    def __init__(self, *, parser: str = HTML_PARSER) -> None:
        self._parser = parser

    def find_link(
        self,
        html: str,
        source_url: str,
        target_url: str,
        *,
        match_host: bool = False,
    ) -> LinkMatch:
        """Return whether ``html`` (served at ``source_url``) links to ``target_url``.

        Relative hrefs resolve against the document's ``<base href>`` when it
        declares one.

        Raises InvalidUrl when ``target_url`` itself is malformed and ParseError
        when the document cannot be parsed at all. Individual malformed hrefs are
        skipped.
        """
        target = urls.normalize(target_url)
        soup = self._parse(html)
        base_url = _base_url(soup, source_url)
        skipped = 0
        for anchor, href in _anchors(soup):
            try:
                candidate = urls.resolve(href, base_url)
            except InvalidUrl:
                skipped += 1
                continue
            matched = candidate.host == target.host if match_host else candidate == target
            if not matched:
                continue
            link_type = (
                DetectedLinkType.NOFOLLOW if _is_nofollow(anchor) else DetectedLinkType.DOFOLLOW
            )
            anchor_text = anchor.get_text(" ", strip=True) or None
            logger.debug(
                "backlinks.match.found",
                extra={"source_url": source_url, "href": href, "link_type": link_type.value},
            )
            return LinkMatch(found=True, link_type=link_type, anchor_text=anchor_text, href=href)
        if skipped:
            logger.debug(
                "backlinks.match.skipped_hrefs",
                extra={"source_url": source_url, "skipped": skipped},
            )
        return LinkMatch.not_found()

    def _parse(self, html: str) -> BeautifulSoup:
        try:
            return BeautifulSoup(html or "", self._parser)
        except Exception as exc:  # pragma: no cover - parser guard
            raise ParseError(f"Unable to parse HTML: {exc}") from exc


def _anchors(soup: BeautifulSoup) -> Iterator[tuple[Tag, str]]:
    for anchor in soup.find_all("a", href=True):
        href = anchor.get("href")
        if isinstance(href, list):
            href = " ".join(href)
        if href:
            yield anchor, href


def _base_url(soup: BeautifulSoup, page_url: str) -> str:
    base = soup.find("base", href=True)
    href = base.get("href") if isinstance(base, Tag) else None
    if not isinstance(href, str) or not href.strip():
        return page_url
    try:
        resolved = urljoin(page_url, href.strip())
        urls.normalize(resolved)
    except (InvalidUrl, ValueError):
        return page_url
    return resolved


def _is_nofollow(anchor: Tag) -> bool:
    rel = anchor.get("rel") or []
    tokens = rel.split() if isinstance(rel, str) else rel
    return any(token.strip().lower() == "nofollow" for token in tokens)
