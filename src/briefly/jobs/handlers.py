"""Job handlers for every queue, including the hand-offs between stages."""

from briefly.jobs.queue import Handler, Job, JobKind, JobQueue
from briefly.services.compiler import DigestCompiler
from briefly.services.delivery import BriefingDelivery, ChatPoster
from briefly.services.enrichment import EnrichmentWorker
from briefly.services.ingestion import FeedFanout
from briefly.services.maintenance import RetentionSweeper
from briefly.utils.logging import get_logger

logger = get_logger(__name__)


class PipelineHandlers:
    """Runs each job kind against the pipeline services.

    Ingestion that stores new articles enqueues one enrichment job, and each
    briefing compiled enqueues its own delivery job.
    """

    def __init__(
        self,
        queue: JobQueue,
        fanout: FeedFanout,
        enrichment: EnrichmentWorker,
        compiler: DigestCompiler,
        delivery: BriefingDelivery,
        chat: ChatPoster,
        sweeper: RetentionSweeper,
    ) -> None:
        self._queue = queue
        self._fanout = fanout
        self._enrichment = enrichment
        self._compiler = compiler
        self._delivery = delivery
        self._chat = chat
        self._sweeper = sweeper

    def as_mapping(self) -> dict[JobKind, Handler]:
        return {
            JobKind.FETCH_ARTICLES: self.fetch_articles,
            JobKind.SUMMARIZE_ARTICLES: self.summarize_articles,
            JobKind.COMPILE_BRIEFINGS: self.compile_briefings,
            JobKind.CLEANUP: self.cleanup,
            JobKind.SEND_BRIEFING: self.send_briefing,
            JobKind.POST_TO_CHAT: self.post_to_chat,
        }

    async def fetch_articles(self, job: Job) -> None:
        results = await self._fanout.fetch_all()
        new_articles = sum(r.new_articles for r in results)
        if new_articles > 0:
            await self._queue.enqueue(JobKind.SUMMARIZE_ARTICLES, {})
        else:
            logger.info("No new articles, enrichment not scheduled")

    async def summarize_articles(self, job: Job) -> None:
        await self._enrichment.summarize_pending()

    async def compile_briefings(self, job: Job) -> None:
        compiled = await self._compiler.compile_all()
        for briefing in compiled:
            await self._queue.enqueue(
                JobKind.SEND_BRIEFING,
                {"briefing_id": briefing.briefing_id, "user_id": briefing.user_id},
            )

    async def send_briefing(self, job: Job) -> None:
        briefing_id = job.payload.get("briefing_id")
        if not isinstance(briefing_id, int):
            raise ValueError(f"sendBriefing job requires an integer briefing_id, got {briefing_id!r}")
        await self._delivery.send(briefing_id)

    async def post_to_chat(self, job: Job) -> None:
        await self._chat.post()

    async def cleanup(self, job: Job) -> None:
        await self._sweeper.sweep()
