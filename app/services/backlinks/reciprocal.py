"""Checks that a submitter's page links back to the platform."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from html import escape

from app.config import settings
from app.models.backlink import DetectedLinkType
from app.observability.metrics import metrics
from app.services.backlinks import urls
from app.services.backlinks.errors import FetchError, InvalidUrl, ParseError
from app.services.backlinks.fetcher import PageFetcher
from app.services.backlinks.matcher import LinkMatcher

logger = logging.getLogger(__name__)

REQUIRED_DOFOLLOW_LINKS = 1
ALL_SNIPPETS_KEY = "both"


@dataclass(frozen=True)
class ReciprocalResult:
    url: str
    found: bool
    is_dofollow: bool
    anchor_text: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class ReciprocalSummary:
    verified: bool
    verified_count: int
    required_count: int
    results: list[ReciprocalResult]


class ReciprocalLinkChecker:
    """Fetches a page once and looks for a link to each platform URL (host match)."""

    def __init__(
        self,
        *,
        fetcher: PageFetcher,
        matcher: LinkMatcher | None = None,
        reciprocal_urls: Sequence[str] | None = None,
        required_count: int = REQUIRED_DOFOLLOW_LINKS,
    ) -> None:
        self._fetcher = fetcher
        self._matcher = matcher or LinkMatcher()
        self._reciprocal_urls = list(
            reciprocal_urls if reciprocal_urls is not None else settings.reciprocal_urls
        )
        self._required_count = required_count

    async def verify(self, source_url: str) -> ReciprocalSummary:
        """Raises InvalidUrl for a malformed ``source_url``; fetch errors land in the results."""
        source_url = urls.ensure_valid(source_url, field="source_url")
        try:
            page = await self._fetcher.fetch(source_url)
        except FetchError as exc:
            logger.info(
                "backlinks.reciprocal.unreachable",
                extra={"source_url": source_url, "code": exc.code},
            )
            results = [
                ReciprocalResult(url=url, found=False, is_dofollow=False, error=str(exc))
                for url in self._reciprocal_urls
            ]
            return self._summarize(source_url, results)

        results = []
        for url in self._reciprocal_urls:
            try:
                match = self._matcher.find_link(page.body, source_url, url, match_host=True)
            except (InvalidUrl, ParseError) as exc:
                results.append(
                    ReciprocalResult(url=url, found=False, is_dofollow=False, error=str(exc))
                )
                continue
            results.append(
                ReciprocalResult(
                    url=url,
                    found=match.found,
                    is_dofollow=match.link_type == DetectedLinkType.DOFOLLOW,
                    anchor_text=match.anchor_text,
                )
            )
        return self._summarize(source_url, results)

    def _summarize(self, source_url: str, results: list[ReciprocalResult]) -> ReciprocalSummary:
        verified_count = sum(1 for result in results if result.found and result.is_dofollow)
        summary = ReciprocalSummary(
            verified=verified_count >= self._required_count,
            verified_count=verified_count,
            required_count=self._required_count,
            results=results,
        )
        metrics.increment("reciprocal.checked", tags={"verified": str(summary.verified).lower()})
        logger.info(
            "backlinks.reciprocal.completed",
            extra={
                "source_url": source_url,
                "verified": summary.verified,
                "verified_count": verified_count,
            },
        )
        return summary


def reciprocal_snippets(reciprocal_urls: Sequence[str] | None = None) -> dict[str, str]:
    """Copy-paste anchors for each platform URL, keyed by site name, plus ``both``."""
    targets = reciprocal_urls if reciprocal_urls is not None else settings.reciprocal_urls
    snippets: dict[str, str] = {}
    for url in targets:
        label = urls.normalize(url).host.removeprefix("www.")
        snippets[label.split(".")[0]] = f'<a href="{escape(url)}">{escape(label)}</a>'
    snippets[ALL_SNIPPETS_KEY] = "<br>\n".join(snippets.values())
    return snippets


_CHECKER_INSTANCE: ReciprocalLinkChecker | None = None


def get_reciprocal_checker() -> ReciprocalLinkChecker:
    global _CHECKER_INSTANCE  # noqa: PLW0603
    if _CHECKER_INSTANCE is None:
        _CHECKER_INSTANCE = ReciprocalLinkChecker(fetcher=PageFetcher())
    return _CHECKER_INSTANCE
