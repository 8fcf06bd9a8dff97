"""Unit tests for the feed client."""

from datetime import UTC, datetime

import httpx
import pytest
import respx
from httpx import Response

from briefly.clients.feed import FeedClient, FeedFetchError, parse_feed

FEED_URL = "https://news.example.com/feed.xml"

RSS = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
<channel>
<title>Example News</title>
<link>https://news.example.com</link>
<item>
  <title>First story</title>
  <link>https://news.example.com/first</link>
  <guid>first-guid</guid>
  <author>jane@example.com (Jane Doe)</author>
  <description>First snippet.</description>
  <pubDate>Mon, 19 Oct 2026 06:00:00 GMT</pubDate>
</item>
<item>
  <title>Second story</title>
  <link>https://news.example.com/second</link>
  <description>Second snippet.</description>
</item>
<item>
  <link>https://news.example.com/untitled</link>
</item>
</channel>
</rss>
"""


class TestParseFeed:
    """Tests for parse_feed."""

    def test_entries_in_document_order(self) -> None:
        """Should return entries in the order the document lists them."""
        entries = parse_feed(RSS)

        assert [e.link for e in entries] == [
            "https://news.example.com/first",
            "https://news.example.com/second",
            "https://news.example.com/untitled",
        ]

    def test_entry_fields(self) -> None:
        """Should map guid, snippet and publication date."""
        first = parse_feed(RSS)[0]

        assert first.title == "First story"
        assert first.guid == "first-guid"
        assert first.snippet == "First snippet."
        assert first.published_at == datetime(2026, 10, 19, 6, 0, tzinfo=UTC)

    def test_missing_fields_are_none(self) -> None:
        """Entries without guid, title or date should report None."""
        entries = parse_feed(RSS)

        assert entries[1].published_at is None
        assert entries[2].title is None

    def test_garbage_raises(self) -> None:
        """A document that is not a feed should raise FeedFetchError."""
        with pytest.raises(FeedFetchError, match="parse error"):
            parse_feed(b"<html><body><p>not a feed</p></body>")


class TestFeedClient:
    """Tests for FeedClient."""

    @pytest.fixture
    def client(self) -> FeedClient:
        return FeedClient()

    @respx.mock
    async def test_fetch_returns_entries_and_validators(self, client: FeedClient) -> None:
        """Should parse the body and keep the response validators."""
        respx.get(FEED_URL).mock(
            return_value=Response(
                200,
                content=RSS,
                headers={"ETag": '"abc"', "Last-Modified": "Mon, 19 Oct 2026 06:00:00 GMT"},
            )
        )

        response = await client.fetch(FEED_URL)

        assert response.not_modified is False
        assert response.etag == '"abc"'
        assert response.last_modified == "Mon, 19 Oct 2026 06:00:00 GMT"
        assert len(response.entries) == 3
        await client.close()

    @respx.mock
    async def test_fetch_sends_conditional_headers(self, client: FeedClient) -> None:
        """Cached validators should be sent as If-None-Match / If-Modified-Since."""
        route = respx.get(FEED_URL).mock(return_value=Response(304))

        response = await client.fetch(
            FEED_URL, etag='"abc"', last_modified="Mon, 19 Oct 2026 06:00:00 GMT"
        )

        assert response.not_modified is True
        assert response.entries == []
        request = route.calls.last.request
        assert request.headers["If-None-Match"] == '"abc"'
        assert request.headers["If-Modified-Since"] == "Mon, 19 Oct 2026 06:00:00 GMT"
        await client.close()

    @respx.mock
    async def test_fetch_without_validators_sends_no_conditional_headers(
        self, client: FeedClient
    ) -> None:
        route = respx.get(FEED_URL).mock(return_value=Response(200, content=RSS))

        await client.fetch(FEED_URL)

        request = route.calls.last.request
        assert "If-None-Match" not in request.headers
        assert "If-Modified-Since" not in request.headers
        await client.close()

    @respx.mock
    async def test_fetch_http_error_raises(self, client: FeedClient) -> None:
        """Should raise FeedFetchError with the HTTP status."""
        respx.get(FEED_URL).mock(return_value=Response(503))

        with pytest.raises(FeedFetchError, match="HTTP 503"):
            await client.fetch(FEED_URL)
        await client.close()

    @respx.mock
    async def test_fetch_timeout_raises(self, client: FeedClient) -> None:
        """Should raise FeedFetchError on timeout."""
        respx.get(FEED_URL).mock(side_effect=httpx.TimeoutException("timeout"))

        with pytest.raises(FeedFetchError, match="timeout"):
            await client.fetch(FEED_URL)
        await client.close()

    @respx.mock
    async def test_fetch_connection_error_raises(self, client: FeedClient) -> None:
        respx.get(FEED_URL).mock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(FeedFetchError, match="request error"):
            await client.fetch(FEED_URL)
        await client.close()
