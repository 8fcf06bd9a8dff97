"""Article enrichment: LLM summaries with retry, backoff and pacing."""

import asyncio

from briefly.clients.article import PageTextExtractor
from briefly.clients.gemini import GeminiClient
from briefly.models import Article, EnrichmentResult, SummaryStatus
from briefly.repositories.base import ArticleRepository
from briefly.utils.logging import get_logger

logger = get_logger(__name__)

MAX_ATTEMPTS = 3
BACKOFF_BASE_SECONDS = 2.0
PACING_SECONDS = 1.0


class EnrichmentWorker:
    """Moves pending articles through processing to completed or failed."""

    def __init__(
        self,
        gemini_client: GeminiClient,
        articles: ArticleRepository,
        extractor: PageTextExtractor | None = None,
        max_attempts: int = MAX_ATTEMPTS,
        backoff_base: float = BACKOFF_BASE_SECONDS,
        pacing: float = PACING_SECONDS,
    ) -> None:
        self._gemini = gemini_client
        self._articles = articles
        self._extractor = extractor
        self._max_attempts = max_attempts
        self._backoff_base = backoff_base
        self._pacing = pacing

    async def summarize_pending(self) -> EnrichmentResult:
        """Summarize every pending article, oldest first.

        Returns:
            EnrichmentResult with the number of completed and failed articles.
        """
        articles = await self._articles.list_pending()
        logger.info("Summarizing pending articles", count=len(articles))

        result = EnrichmentResult()
        for index, article in enumerate(articles):
            logger.info(
                "Summarizing",
                position=index + 1,
                total=len(articles),
                article_id=article.id,
                title=article.title,
            )
            status = await self.summarize_article(article)
            if status == SummaryStatus.COMPLETED:
                result.processed += 1
            else:
                result.failed += 1

            if index < len(articles) - 1:
                await asyncio.sleep(self._pacing)

        logger.info("Summarization complete", processed=result.processed, failed=result.failed)
        return result

    async def summarize_article(self, article: Article) -> SummaryStatus:
        """Summarize one article.

        The article is marked processing before any external call, so a crash
        mid-call leaves it visibly stuck instead of silently pending.

        Returns:
            The article's final status. Articles already claimed by another
            run are left alone and reported with their current status.
        """
        claimed = await self._articles.transition(article.id, SummaryStatus.PROCESSING)
        if not claimed:
            current = await self._articles.get(article.id)
            status = current.summary_status if current else SummaryStatus.FAILED
            logger.warning(
                "Article no longer pending, skipping",
                article_id=article.id,
                status=status.value,
            )
            return status

        content = await self._full_text(article)

        try:
            summary = await self._summarize_with_retry(article, content)
        except Exception as e:
            logger.error("Failed to summarize article", article_id=article.id, error=str(e))
            await self._articles.transition(article.id, SummaryStatus.FAILED)
            return SummaryStatus.FAILED

        await self._articles.transition(article.id, SummaryStatus.COMPLETED, summary=summary)
        return SummaryStatus.COMPLETED

    async def _full_text(self, article: Article) -> str | None:
        """Fetch the full page text, falling back to the stored content."""
        if self._extractor is None:
            return article.content

        try:
            text = await self._extractor.extract(article.url)
        except Exception as e:
            logger.warning("Full text extraction failed", article_id=article.id, error=str(e))
            text = None

        if not text:
            return article.content

        await self._articles.update_content(article.id, text)
        return text

    async def _summarize_with_retry(self, article: Article, content: str | None) -> str:
        """Call the summarizer, retrying with exponential backoff.

        Raises:
            Exception: The last error once all attempts are exhausted.
        """
        for attempt in range(1, self._max_attempts + 1):
            try:
                return await self._gemini.summarize_article(
                    title=article.title,
                    content=content,
                    author=article.author,
                )
            except Exception as e:
                if attempt == self._max_attempts:
                    raise
                backoff = self._backoff_base ** attempt
                logger.warning(
                    "Summarization attempt failed, retrying",
                    article_id=article.id,
                    attempt=attempt,
                    max_attempts=self._max_attempts,
                    backoff_seconds=backoff,
                    error=str(e),
                )
                await asyncio.sleep(backoff)
        raise RuntimeError("unreachable")
