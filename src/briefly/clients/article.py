"""Full-page text extraction for Briefly."""

import re

import httpx
import lxml.html
import trafilatura
from readability import Document

from briefly.clients.feed import USER_AGENT
from briefly.utils.logging import get_logger

logger = get_logger(__name__)

MAX_CONTENT_LENGTH = 5000
MAX_REDIRECTS = 10

_WHITESPACE = re.compile(r"\s+")


def clean_text(text: str, max_length: int = MAX_CONTENT_LENGTH) -> str:
    """Collapse whitespace and cap the text at ``max_length`` characters."""
    text = _WHITESPACE.sub(" ", text).strip()
    if len(text) > max_length:
        return text[:max_length] + "..."
    return text


class PageTextExtractor:
    """Turns an article URL into plain text, or None when that is not possible.

    Never raises: every failure is logged and reported as None so callers can
    fall back to whatever content they already have.
    """

    def __init__(self, timeout: float = 10.0, max_length: int = MAX_CONTENT_LENGTH) -> None:
        self._max_length = max_length
        self._client = httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            max_redirects=MAX_REDIRECTS,
            headers={
                "User-Agent": USER_AGENT,
                "Accept": "text/html",
            },
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def extract(self, url: str) -> str | None:
        """Fetch a page and extract its readable text.

        Args:
            url: The article URL.

        Returns:
            The cleaned text, capped at the configured length, or None.
        """
        html = await self._fetch_html(url)
        if html is None:
            return None

        try:
            text = self._extract_text(html)
        except Exception as e:
            logger.warning("Failed to extract article content", url=url, error=str(e))
            return None

        if not text:
            logger.debug("No readable content found", url=url)
            return None
        return clean_text(text, self._max_length)

    async def _fetch_html(self, url: str) -> str | None:
        # Cookies set along one redirect chain must not leak into the next page
        self._client.cookies.clear()
        try:
            response = await self._client.get(url)
            response.raise_for_status()
            return response.text
        except httpx.HTTPStatusError as e:
            logger.warning("HTTP error fetching article", url=url, status=e.response.status_code)
        except httpx.TooManyRedirects:
            logger.warning("Too many redirects fetching article", url=url)
        except httpx.TimeoutException:
            logger.warning("Timeout fetching article", url=url)
        except httpx.RequestError as e:
            logger.warning("Request error fetching article", url=url, error=str(e))
        return None

    def _extract_text(self, html: str) -> str | None:
        """Extract article text from HTML.

        Uses trafilatura as primary extractor, falls back to readability-lxml.
        """
        content = trafilatura.extract(
            html,
            include_comments=False,
            include_tables=False,
            no_fallback=False,
        )
        if content:
            return content

        logger.debug("Falling back to readability-lxml")
        summary_html = Document(html).summary()
        return lxml.html.fromstring(summary_html).text_content() or None
