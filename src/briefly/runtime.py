"""Process-wide handles, built once at startup and closed on shutdown."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from briefly.clients.article import PageTextExtractor
from briefly.clients.feed import FeedClient
from briefly.clients.gemini import GeminiClient
from briefly.clients.mailer import SmtpMailer
from briefly.clients.webhook import ChatWebhookClient
from briefly.config import SecretsConfig, Settings, get_secrets
from briefly.jobs.handlers import PipelineHandlers
from briefly.jobs.queue import InMemoryJobQueue
from briefly.jobs.scheduler import CronScheduler, default_schedules
from briefly.repositories.base import Repositories
from briefly.repositories.sql import Database, create_database, create_repositories
from briefly.services.compiler import DigestCompiler
from briefly.services.delivery import BriefingDelivery, ChatPoster
from briefly.services.digest import BriefingRenderer
from briefly.services.enrichment import EnrichmentWorker
from briefly.services.ingestion import ContentFetcher, FeedFanout
from briefly.services.maintenance import RetentionSweeper
from briefly.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class Runtime:
    """Everything a worker process shares: storage, clients, queue and scheduler."""

    settings: Settings
    db: Database
    repos: Repositories
    feed_client: FeedClient
    extractor: PageTextExtractor | None
    gemini: GeminiClient
    mailer: SmtpMailer
    webhook: ChatWebhookClient
    queue: InMemoryJobQueue
    scheduler: CronScheduler

    @classmethod
    def build(cls, settings: Settings, secrets: SecretsConfig | None = None) -> "Runtime":
        """Wire storage, clients and pipeline services from settings."""
        secrets = secrets or get_secrets(settings)

        db = create_database(settings.database_url)
        if db.engine.dialect.name == "sqlite":
            db.create_schema()
        repos = create_repositories(db)

        feed_client = FeedClient()
        extractor = PageTextExtractor() if settings.fetch_full_text else None
        gemini = GeminiClient(
            project_id=settings.gcp_project_id,
            region=settings.gcp_region,
            model_name=settings.gemini_model,
        )
        mailer = SmtpMailer(
            host=settings.smtp_host,
            port=settings.smtp_port,
            sender=settings.smtp_from,
            username=settings.smtp_user,
            password=secrets.smtp_password,
        )
        webhook = ChatWebhookClient(secrets.chat_webhook_url)

        queue = InMemoryJobQueue(
            concurrency=settings.worker_concurrency,
            max_attempts=settings.job_max_attempts,
        )
        handlers = PipelineHandlers(
            queue=queue,
            fanout=FeedFanout(ContentFetcher(feed_client, repos.sources, repos.articles), repos.sources),
            enrichment=EnrichmentWorker(gemini, repos.articles, extractor=extractor),
            compiler=DigestCompiler(repos.users, repos.articles, repos.briefings),
            delivery=BriefingDelivery(
                mailer,
                BriefingRenderer(settings.app_url),
                repos.briefings,
                repos.users,
                repos.topics,
                dry_run=settings.dry_run,
            ),
            chat=ChatPoster(webhook, repos.articles, repos.topics, settings.chat_group_by_topic),
            sweeper=RetentionSweeper(repos.articles, repos.briefings),
        )
        for kind, handler in handlers.as_mapping().items():
            queue.register(kind, handler)

        return cls(
            settings=settings,
            db=db,
            repos=repos,
            feed_client=feed_client,
            extractor=extractor,
            gemini=gemini,
            mailer=mailer,
            webhook=webhook,
            queue=queue,
            scheduler=CronScheduler(queue, default_schedules(settings)),
        )

    @classmethod
    @asynccontextmanager
    async def open(
        cls, settings: Settings, secrets: SecretsConfig | None = None
    ) -> AsyncIterator["Runtime"]:
        """Build a runtime, start its workers and scheduler, and close it on exit."""
        runtime = cls.build(settings, secrets)
        try:
            await runtime.start()
            yield runtime
        finally:
            await runtime.close()

    async def start(self) -> None:
        await self.queue.start()
        if self.settings.scheduler_enabled:
            self.scheduler.start()
        else:
            logger.info("Scheduler disabled, jobs run only when enqueued manually")

    async def close(self) -> None:
        await self.scheduler.stop()
        await self.queue.stop()
        await self.feed_client.close()
        if self.extractor is not None:
            await self.extractor.close()
        await self.webhook.close()
        self.db.dispose()
        logger.info("Runtime closed")
