"""Conditional feed fetching and parsing for Briefly."""

import calendar
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import feedparser
import httpx

from briefly import __version__
from briefly.utils.logging import get_logger

logger = get_logger(__name__)

USER_AGENT = f"Mozilla/5.0 (compatible; Briefly/{__version__}; +https://briefly.app)"


class FeedFetchError(Exception):
    """Raised when a feed cannot be fetched or parsed."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


@dataclass
class FeedEntry:
    """One entry of a parsed feed."""

    title: str | None
    link: str | None
    guid: str | None
    author: str | None
    content: str | None
    snippet: str | None
    published_at: datetime | None


@dataclass
class FeedResponse:
    """Outcome of a conditional feed request."""

    not_modified: bool
    etag: str | None = None
    last_modified: str | None = None
    entries: list[FeedEntry] = field(default_factory=list)


def _parse_date(entry: Any) -> datetime | None:
    parsed = entry.get("published_parsed") or entry.get("updated_parsed")
    if not parsed:
        return None
    return datetime.fromtimestamp(calendar.timegm(parsed), tz=UTC)


def _to_entry(entry: Any) -> FeedEntry:
    content = None
    if entry.get("content"):
        content = entry["content"][0].get("value") or None
    return FeedEntry(
        title=(entry.get("title") or "").strip() or None,
        link=(entry.get("link") or "").strip() or None,
        guid=entry.get("id") or None,
        author=entry.get("author") or None,
        content=content,
        snippet=entry.get("summary") or None,
        published_at=_parse_date(entry),
    )


def parse_feed(body: bytes) -> list[FeedEntry]:
    """Parse an RSS/Atom document into entries in document order.

    Raises:
        FeedFetchError: If the document is malformed and yields no entries.
    """
    parsed = feedparser.parse(body)
    if parsed.bozo and not parsed.entries:
        raise FeedFetchError(f"parse error: {parsed.get('bozo_exception')}")
    return [_to_entry(e) for e in parsed.entries]


class FeedClient:
    """Fetches syndication feeds, honouring cached etag/last-modified validators."""

    def __init__(self, timeout: float = 30.0) -> None:
        self._client = httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            headers={
                "User-Agent": USER_AGENT,
                "Accept": "application/rss+xml, application/atom+xml, application/xml, text/xml",
            },
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "FeedClient":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    async def fetch(
        self,
        feed_url: str,
        etag: str | None = None,
        last_modified: str | None = None,
    ) -> FeedResponse:
        """Fetch a feed conditionally.

        Args:
            feed_url: The feed URL.
            etag: Cached ETag, sent as If-None-Match.
            last_modified: Cached Last-Modified, sent as If-Modified-Since.

        Returns:
            A FeedResponse; ``not_modified`` is True when the origin answered 304.

        Raises:
            FeedFetchError: If the request fails or the body cannot be parsed.
        """
        headers = {}
        if etag:
            headers["If-None-Match"] = etag
        if last_modified:
            headers["If-Modified-Since"] = last_modified

        try:
            response = await self._client.get(feed_url, headers=headers)
        except httpx.TimeoutException as e:
            logger.warning("Timeout fetching feed", url=feed_url)
            raise FeedFetchError("timeout") from e
        except httpx.RequestError as e:
            logger.warning("Request error fetching feed", url=feed_url, error=str(e))
            raise FeedFetchError(f"request error: {e}") from e

        if response.status_code == httpx.codes.NOT_MODIFIED:
            logger.debug("Feed not modified", url=feed_url)
            return FeedResponse(not_modified=True)

        if not response.is_success:
            logger.warning("HTTP error fetching feed", url=feed_url, status=response.status_code)
            raise FeedFetchError(f"HTTP {response.status_code}")

        entries = parse_feed(response.content)
        return FeedResponse(
            not_modified=False,
            etag=response.headers.get("etag"),
            last_modified=response.headers.get("last-modified"),
            entries=entries,
        )
