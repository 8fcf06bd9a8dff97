"""Retention sweep for old articles and briefings."""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from briefly.config import ARTICLE_RETENTION_DAYS, BRIEFING_RETENTION_DAYS
from briefly.repositories.base import ArticleRepository, BriefingRepository
from briefly.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class SweepResult:
    articles_deleted: int
    briefings_deleted: int


class RetentionSweeper:
    """Deletes articles and briefings older than their retention windows."""

    def __init__(
        self,
        articles: ArticleRepository,
        briefings: BriefingRepository,
        article_retention: timedelta = timedelta(days=ARTICLE_RETENTION_DAYS),
        briefing_retention: timedelta = timedelta(days=BRIEFING_RETENTION_DAYS),
    ) -> None:
        self._articles = articles
        self._briefings = briefings
        self._article_retention = article_retention
        self._briefing_retention = briefing_retention

    async def sweep(self, now: datetime | None = None) -> SweepResult:
        now = now or datetime.now(UTC)

        articles_deleted = await self._articles.delete_created_before(
            now - self._article_retention
        )
        logger.info("Cleanup: deleted old articles", count=articles_deleted)

        briefings_deleted = await self._briefings.delete_created_before(
            now - self._briefing_retention
        )
        logger.info("Cleanup: deleted old briefings", count=briefings_deleted)

        return SweepResult(articles_deleted=articles_deleted, briefings_deleted=briefings_deleted)
