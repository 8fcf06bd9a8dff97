"""Delivery fan-out: per-user briefing email and batched chat webhook posts."""

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx

from briefly.clients.mailer import SmtpMailer
from briefly.clients.webhook import (
    MAX_EMBEDS_PER_MESSAGE,
    ChatWebhookClient,
    WebhookError,
    WebhookNotConfiguredError,
)
from briefly.models import (
    Article,
    Briefing,
    BriefingArticle,
    BriefingSection,
    BriefingStatus,
    CompiledBriefing,
)
from briefly.repositories.base import (
    ArticleRepository,
    BriefingRepository,
    TopicRepository,
    UserRepository,
)
from briefly.services.digest import BriefingRenderer, format_long_date
from briefly.utils.logging import get_logger

logger = get_logger(__name__)

CHAT_LOOKBACK = timedelta(hours=24)
CHAT_ARTICLE_LIMIT = 20
CHAT_BATCH_PAUSE_SECONDS = 0.5
EMBED_TITLE_LIMIT = 256
EMBED_DESCRIPTION_LIMIT = 4096
EMBED_COLOR = 0x3498DB


@dataclass
class DeliveryResult:
    """Outcome of one briefing email delivery."""

    briefing_id: int
    sent: bool
    skipped: bool = False


class BriefingDelivery:
    """Sends one compiled briefing by email."""

    def __init__(
        self,
        mailer: SmtpMailer,
        renderer: BriefingRenderer,
        briefings: BriefingRepository,
        users: UserRepository,
        topics: TopicRepository,
        dry_run: bool = False,
    ) -> None:
        self._mailer = mailer
        self._renderer = renderer
        self._briefings = briefings
        self._users = users
        self._topics = topics
        self._dry_run = dry_run

    async def send(self, briefing_id: int) -> DeliveryResult:
        """Send a compiled briefing.

        Only briefings in the compiled state are sent, so a redelivered job
        never mails twice. A failed send is terminal for the briefing.

        Raises:
            LookupError: If the briefing or its user does not exist.
            Exception: Whatever the mail transport raised, after marking the briefing failed.
        """
        briefing = await self._briefings.get(briefing_id)
        if briefing is None:
            raise LookupError(f"Briefing {briefing_id} not found")

        user = await self._users.get(briefing.user_id)
        if user is None:
            raise LookupError(f"User {briefing.user_id} not found")

        if not await self._briefings.transition(briefing_id, BriefingStatus.SENDING):
            logger.info(
                "Briefing not in compiled state, skipping send",
                briefing_id=briefing_id,
                status=briefing.status.value,
            )
            return DeliveryResult(briefing_id=briefing_id, sent=False, skipped=True)

        try:
            rows = await self._briefings.list_articles(briefing_id)
            compiled = await self._rebuild(briefing, rows)
            subject, html_content, text_content = self._renderer.render(user, compiled)

            if self._dry_run:
                logger.info("Dry run - briefing not sent", briefing_id=briefing_id, subject=subject)
            else:
                await asyncio.to_thread(
                    self._mailer.send_email, user.email, subject, html_content, text_content
                )
        except Exception as e:
            logger.error("Failed to send briefing", briefing_id=briefing_id, error=str(e))
            await self._briefings.transition(briefing_id, BriefingStatus.FAILED)
            raise

        await self._briefings.transition(
            briefing_id, BriefingStatus.SENT, sent_at=datetime.now(UTC)
        )
        logger.info("Briefing sent", briefing_id=briefing_id, user_id=user.id)
        return DeliveryResult(briefing_id=briefing_id, sent=True)

    async def _rebuild(
        self, briefing: Briefing, rows: list[BriefingArticle]
    ) -> CompiledBriefing:
        """Group stored rows back into topic sections, keeping position order."""
        sections: dict[str, BriefingSection] = {}
        for row in rows:
            if row.article is None:
                continue
            section = sections.get(row.topic_slug)
            if section is None:
                section = BriefingSection(topic_name=row.topic_slug, topic_slug=row.topic_slug)
                sections[row.topic_slug] = section
            section.articles.append(row.article)

        topics = await self._topics.get_by_slugs(sections.keys())
        names = {t.slug: t.name for t in topics}
        for slug, section in sections.items():
            section.topic_name = names.get(slug, slug)

        return CompiledBriefing(
            briefing_id=briefing.id,
            user_id=briefing.user_id,
            sections=list(sections.values()),
            briefing_date=briefing.briefing_date,
        )


@dataclass
class ChatPostResult:
    """Outcome of one chat webhook run."""

    posted: int = 0
    failed_batches: int = 0


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def build_article_embed(article: Article, topic_name: str | None = None) -> dict[str, Any]:
    """Build one rich embed for an article."""
    footer = article.source_name or "Unknown"
    if topic_name:
        footer = f"{topic_name} - {footer}"
    timestamp = article.published_at or article.created_at
    return {
        "title": _truncate(article.title, EMBED_TITLE_LIMIT),
        "url": article.url,
        "description": _truncate(article.summary or "", EMBED_DESCRIPTION_LIMIT),
        "footer": {"text": footer},
        "timestamp": timestamp.isoformat(),
        "color": EMBED_COLOR,
    }


class ChatPoster:
    """Posts recently summarized articles to the chat webhook."""

    def __init__(
        self,
        webhook: ChatWebhookClient,
        articles: ArticleRepository,
        topics: TopicRepository,
        group_by_topic: bool = False,
        batch_pause: float = CHAT_BATCH_PAUSE_SECONDS,
    ) -> None:
        self._webhook = webhook
        self._articles = articles
        self._topics = topics
        self._group_by_topic = group_by_topic
        self._batch_pause = batch_pause

    async def post(self, now: datetime | None = None) -> ChatPostResult:
        """Post the last day's summaries.

        Raises:
            WebhookNotConfiguredError: If no webhook URL is configured; raised
                before any query or network call.
            WebhookError: If the header message is rejected.
        """
        if not self._webhook.configured:
            raise WebhookNotConfiguredError(
                "BRIEFLY_CHAT_WEBHOOK_URL is not set. Configure it in your environment."
            )

        now = now or datetime.now(UTC)
        articles = await self._articles.find_recent_completed(
            since=now - CHAT_LOOKBACK, limit=CHAT_ARTICLE_LIMIT
        )
        if not articles:
            logger.info("No articles to post to chat")
            return ChatPostResult()

        embeds = await self._build_embeds(articles)

        # The header must land; everything after it is best effort
        await self._webhook.post_message(
            f"**Briefly** - {format_long_date(now)} - {len(articles)} articles"
        )

        result = ChatPostResult()
        for start in range(0, len(embeds), MAX_EMBEDS_PER_MESSAGE):
            batch = embeds[start : start + MAX_EMBEDS_PER_MESSAGE]
            await asyncio.sleep(self._batch_pause)
            try:
                await self._webhook.post_embeds(batch)
            except (WebhookError, httpx.HTTPError) as e:
                logger.error(
                    "Chat webhook batch failed",
                    batch_start=start,
                    batch_size=len(batch),
                    error=str(e),
                )
                result.failed_batches += 1
                continue
            result.posted += len(batch)

        logger.info(
            "Posted articles to chat", posted=result.posted, failed_batches=result.failed_batches
        )
        return result

    async def _build_embeds(self, articles: list[Article]) -> list[dict[str, Any]]:
        if not self._group_by_topic:
            return [build_article_embed(a) for a in articles]

        # Group under each source's first topic, topics in order of first appearance
        topic_cache: dict[int, str] = {}
        groups: dict[str, list[Article]] = {}
        for article in articles:
            if article.source_id not in topic_cache:
                topics = await self._topics.list_for_source(article.source_id)
                topic_cache[article.source_id] = topics[0].name if topics else "Other"
            groups.setdefault(topic_cache[article.source_id], []).append(article)

        return [
            build_article_embed(article, topic_name)
            for topic_name, grouped in groups.items()
            for article in grouped
        ]
