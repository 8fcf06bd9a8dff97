"""Feed ingestion: per-source conditional fetch with dedup, and the batch fan-out."""

import hashlib
from datetime import UTC, datetime

from briefly.clients.feed import FeedClient, FeedEntry
from briefly.models import FetchResult, NewArticle, Source
from briefly.repositories.base import (
    ArticleRepository,
    DuplicateArticleError,
    SourceRepository,
)
from briefly.utils.logging import get_logger

logger = get_logger(__name__)


def content_fingerprint(body: str | None) -> str | None:
    """SHA-256 hex digest of an entry body, or None when there is no body."""
    if not body:
        return None
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


class ContentFetcher:
    """Fetches one source and inserts its new entries."""

    def __init__(
        self,
        feed_client: FeedClient,
        sources: SourceRepository,
        articles: ArticleRepository,
    ) -> None:
        self._feeds = feed_client
        self._sources = sources
        self._articles = articles

    async def fetch(self, source: Source) -> FetchResult:
        """Fetch a source and store entries not seen before.

        Errors are reported on the result rather than raised, so one failing
        source never stops a batch.

        Args:
            source: The source to fetch.

        Returns:
            FetchResult with counts of new and skipped entries and an optional error.
        """
        result = FetchResult(source=source)

        try:
            response = await self._feeds.fetch(
                source.feed_url, etag=source.etag, last_modified=source.last_modified
            )

            if response.not_modified:
                await self._sources.mark_not_modified(source.id, datetime.now(UTC))
                return result

            for entry in response.entries:
                if not entry.link or not entry.title:
                    result.skipped += 1
                    continue

                article = self._to_new_article(source, entry, entry.link, entry.title)
                try:
                    await self._articles.create(article)
                    result.new_articles += 1
                except DuplicateArticleError:
                    result.skipped += 1

            await self._sources.mark_fetched(
                source.id,
                etag=response.etag,
                last_modified=response.last_modified,
                fetched_at=datetime.now(UTC),
            )
            return result

        except Exception as e:
            result.error = str(e)
            try:
                await self._sources.record_failure(source.id, datetime.now(UTC))
            except Exception as record_error:
                logger.error(
                    "Failed to record fetch failure",
                    source_id=source.id,
                    error=str(record_error),
                    exc_info=True,
                )
            return result

    @staticmethod
    def _to_new_article(source: Source, entry: FeedEntry, link: str, title: str) -> NewArticle:
        return NewArticle(
            source_id=source.id,
            guid=entry.guid or link,
            title=title,
            url=link,
            author=entry.author,
            content=entry.snippet or entry.content,
            content_hash=content_fingerprint(entry.content or entry.snippet),
            published_at=entry.published_at,
        )


class FeedFanout:
    """Runs the ContentFetcher over every active source, one at a time."""

    def __init__(self, fetcher: ContentFetcher, sources: SourceRepository) -> None:
        self._fetcher = fetcher
        self._sources = sources

    async def fetch_all(self) -> list[FetchResult]:
        """Fetch all active sources.

        Returns:
            One FetchResult per source, in fetch order.
        """
        sources = await self._sources.list_active()
        logger.info("Fetching active feeds", count=len(sources))

        results: list[FetchResult] = []
        for source in sources:
            logger.info("Fetching feed", source=source.name, feed_url=source.feed_url)
            result = await self._fetcher.fetch(source)

            if result.error:
                logger.error("Feed fetch error", source=source.name, error=result.error)
            else:
                logger.info(
                    "Feed fetched",
                    source=source.name,
                    new_articles=result.new_articles,
                    skipped=result.skipped,
                )
            results.append(result)

        total_new = sum(r.new_articles for r in results)
        total_errors = sum(1 for r in results if r.error)
        logger.info("Feed fetch complete", total_new=total_new, total_errors=total_errors)
        return results
