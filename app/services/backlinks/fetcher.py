"""HTTP retrieval of backlink source pages."""

from __future__ import annotations

import asyncio
import logging
import ssl
import time
from dataclasses import dataclass

import httpx

from app.config import settings
from app.core.backoff import BackoffPolicy
from app.observability.metrics import metrics
from app.services.backlinks.errors import FetchError, HttpError, NetworkError

logger = logging.getLogger(__name__)

ACCEPT_HEADER = "text/html,application/xhtml+xml;q=0.9,*/*;q=0.5"


@dataclass(frozen=True)
class FetchedPage:
    """Successful (2xx) response body for a source page."""

    url: str
    final_url: str
    status_code: int
    body: str
    elapsed_ms: int


class PageFetcher:
    """Fetches a single page with a bounded timeout and an identifying User-Agent."""

    def __init__(
        self,
        *,
        timeout_seconds: float | None = None,
        user_agent: str | None = None,
        retry_limit: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout_seconds = timeout_seconds or settings.backlink_fetch_timeout_seconds
        self._user_agent = user_agent or settings.backlink_user_agent
        self._backoff = BackoffPolicy(
            max_attempts=retry_limit or settings.backlink_fetch_retry_limit,
            base_delay=0.5,
            max_delay=5.0,
        )
        self._transport = transport

    @property
    def timeout_seconds(self) -> float:
        return self._timeout_seconds

    async def fetch(self, url: str) -> FetchedPage:
        """Return the page body or raise HttpError / NetworkError."""
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self._timeout_seconds),
            headers={"User-Agent": self._user_agent, "Accept": ACCEPT_HEADER},
            follow_redirects=True,
            transport=self._transport,
        ) as client:
            for attempt, delay in self._backoff.attempts():
                try:
                    return await self._fetch_once(client, url)
                except NetworkError as exc:
                    if attempt >= self._backoff.max_attempts:
                        raise
                    logger.warning(
                        "backlinks.fetch.retry",
                        extra={"url": url, "attempt": attempt, "code": exc.code},
                    )
                    await asyncio.sleep(delay)
        raise NetworkError("Exceeded retry policy", code="520_FETCH_FAILED")  # pragma: no cover

    async def _fetch_once(self, client: httpx.AsyncClient, url: str) -> FetchedPage:
        start = time.perf_counter()
        try:
            response = await client.get(url)
        except httpx.TimeoutException as exc:
            elapsed_ms = _elapsed_ms(start)
            self._record("timeout", elapsed_ms)
            raise NetworkError(
                f"Timed out after {self._timeout_seconds:g}s fetching {url}",
                code="504_FETCH_TIMEOUT",
                elapsed_ms=elapsed_ms,
            ) from exc
        except httpx.RequestError as exc:
            elapsed_ms = _elapsed_ms(start)
            code = "520_FETCH_FAILED"
            if isinstance(exc.__cause__, ssl.SSLError):
                code = "523_TLS_HANDSHAKE_FAILED"
            self._record("network_error", elapsed_ms)
            logger.warning(
                "backlinks.fetch.request_error",
                extra={"url": url, "code": code, "error": type(exc).__name__},
            )
            raise NetworkError(
                str(exc) or type(exc).__name__, code=code, elapsed_ms=elapsed_ms
            ) from exc

        elapsed_ms = _elapsed_ms(start)
        if not response.is_success:
            self._record("http_error", elapsed_ms)
            logger.info(
                "backlinks.fetch.http_error",
                extra={"url": url, "status": response.status_code},
            )
            raise HttpError(
                response.status_code,
                elapsed_ms=elapsed_ms,
                reason=response.reason_phrase,
            )

        self._record("success", elapsed_ms)
        return FetchedPage(
            url=url,
            final_url=str(response.url),
            status_code=response.status_code,
            body=response.text,
            elapsed_ms=elapsed_ms,
        )

    @staticmethod
    def _record(outcome: str, elapsed_ms: int) -> None:
        metrics.timing("fetch.latency_ms", elapsed_ms, tags={"outcome": outcome})


def _elapsed_ms(start: float) -> int:
    return int(round((time.perf_counter() - start) * 1000))


__all__ = ["FetchError", "FetchedPage", "PageFetcher"]
