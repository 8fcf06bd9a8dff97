"""Daily briefing compilation under per-topic and global quotas."""

from datetime import UTC, date, datetime, timedelta

from briefly.config import MAX_ARTICLES_PER_BRIEFING, MAX_ARTICLES_PER_TOPIC
from briefly.models import BriefingSection, BriefingStatus, CompiledBriefing, User
from briefly.repositories.base import ArticleRepository, BriefingRepository, UserRepository
from briefly.utils.logging import get_logger

logger = get_logger(__name__)

LOOKBACK = timedelta(hours=24)


class DigestCompiler:
    """Selects each user's articles for the day and records the briefing.

    Compilation is idempotent per (user, day): once a briefing has moved past
    pending, running again for the same day writes nothing.
    """

    def __init__(
        self,
        users: UserRepository,
        articles: ArticleRepository,
        briefings: BriefingRepository,
        max_per_topic: int = MAX_ARTICLES_PER_TOPIC,
        max_total: int = MAX_ARTICLES_PER_BRIEFING,
    ) -> None:
        self._users = users
        self._articles = articles
        self._briefings = briefings
        self._max_per_topic = max_per_topic
        self._max_total = max_total

    async def compile_for_user(
        self, user: User, now: datetime | None = None
    ) -> CompiledBriefing | None:
        """Compile today's briefing for one user.

        Args:
            user: The subscriber.
            now: Reference time; defaults to the current UTC time.

        Returns:
            The compiled briefing, or None when it already exists past pending
            or no eligible article was found.
        """
        now = now or datetime.now(UTC)
        today: date = now.astimezone(UTC).date()

        existing = await self._briefings.get_for_date(user.id, today)
        if existing and existing.status != BriefingStatus.PENDING:
            logger.debug(
                "Briefing already compiled", user_id=user.id, status=existing.status.value
            )
            return None

        subscriptions = await self._users.subscriptions(user.id)
        if not subscriptions:
            return None

        since = now - LOOKBACK
        sections: list[BriefingSection] = []
        claimed: set[int] = set()
        total = 0

        for subscription in subscriptions:
            if total >= self._max_total:
                break

            topic = subscription.topic
            articles = await self._articles.find_completed_for_topic(
                topic.id,
                since=since,
                exclude_ids=claimed,
                limit=min(self._max_per_topic, self._max_total - total),
            )
            if not articles:
                continue

            sections.append(
                BriefingSection(topic_name=topic.name, topic_slug=topic.slug, articles=articles)
            )
            claimed.update(a.id for a in articles)
            total += len(articles)

        if not sections:
            return None

        briefing = await self._briefings.upsert_compiled(
            user.id, today, article_count=total, compiled_at=now
        )
        if briefing.compiled_at != now:
            logger.info("Briefing compiled concurrently by another run", user_id=user.id)
            return None

        # One write per row; an existing (briefing, article) pair is left as is
        position = 0
        for section in sections:
            for article in section.articles:
                await self._briefings.add_article(
                    briefing.id, article.id, position, section.topic_slug
                )
                position += 1

        return CompiledBriefing(
            briefing_id=briefing.id,
            user_id=user.id,
            sections=sections,
            briefing_date=briefing.briefing_date,
        )

    async def compile_all(self, now: datetime | None = None) -> list[CompiledBriefing]:
        """Compile briefings for every active user.

        A failure for one user is logged and does not stop the others.

        Returns:
            The briefings compiled in this run.
        """
        users = await self._users.list_active()
        logger.info("Compiling briefings", user_count=len(users))

        compiled: list[CompiledBriefing] = []
        for user in users:
            try:
                result = await self.compile_for_user(user, now)
            except Exception as e:
                logger.error(
                    "Failed to compile briefing",
                    user_id=user.id,
                    error=str(e),
                    exc_info=True,
                )
                continue

            if result:
                logger.info(
                    "Compiled briefing",
                    user_id=user.id,
                    briefing_id=result.briefing_id,
                    topics=len(result.sections),
                    articles=result.article_count,
                )
                compiled.append(result)
            else:
                logger.debug("Skipped user: no articles or already compiled", user_id=user.id)

        logger.info("Briefing compilation complete", compiled=len(compiled))
        return compiled
