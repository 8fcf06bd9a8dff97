"""Unit tests for the SQLAlchemy repositories."""

from datetime import UTC, date, datetime, timedelta, timezone

import pytest

from briefly.models import BriefingStatus, NewArticle, SummaryStatus
from briefly.repositories.base import DuplicateArticleError, Repositories
from briefly.repositories.sql import Database
from briefly.repositories.tables import ArticleRow, BriefingArticleRow, SourceRow
from tests.conftest import Seeder


def _new_article(source_id: int, guid: str = "guid-1") -> NewArticle:
    return NewArticle(
        source_id=source_id,
        guid=guid,
        title="Story",
        url=f"https://example.com/{guid}",
        content="Snippet",
        content_hash="abc",
    )


class TestSourceRepository:
    """Tests for SqlSourceRepository."""

    async def test_list_active_skips_inactive(self, repos: Repositories, seed: Seeder) -> None:
        active = seed.source("Active")
        seed.source("Paused", active=False)

        sources = await repos.sources.list_active()

        assert [s.id for s in sources] == [active]

    async def test_mark_fetched_stores_validators_and_resets_failures(
        self, repos: Repositories, seed: Seeder, now: datetime
    ) -> None:
        source_id = seed.source(fetch_failures=3)

        await repos.sources.mark_fetched(
            source_id, etag='"v2"', last_modified="Mon, 19 Oct 2026", fetched_at=now
        )

        source = await repos.sources.get(source_id)
        assert source is not None
        assert source.etag == '"v2"'
        assert source.last_modified == "Mon, 19 Oct 2026"
        assert source.last_fetched_at == now
        assert source.fetch_failures == 0

    async def test_record_failure_keeps_validators(
        self, repos: Repositories, seed: Seeder, now: datetime
    ) -> None:
        """A failed fetch bumps the counter and leaves etag/last-modified alone."""
        source_id = seed.source(etag='"v1"', last_modified="yesterday")

        await repos.sources.record_failure(source_id, now)
        await repos.sources.record_failure(source_id, now)

        source = await repos.sources.get(source_id)
        assert source is not None
        assert source.fetch_failures == 2
        assert source.etag == '"v1"'
        assert source.last_modified == "yesterday"

    async def test_mark_not_modified_only_touches_fetch_time(
        self, repos: Repositories, seed: Seeder, now: datetime
    ) -> None:
        source_id = seed.source(etag='"v1"', fetch_failures=1)

        await repos.sources.mark_not_modified(source_id, now)

        source = await repos.sources.get(source_id)
        assert source is not None
        assert source.last_fetched_at == now
        assert source.etag == '"v1"'
        assert source.fetch_failures == 1


class TestArticleRepository:
    """Tests for SqlArticleRepository."""

    async def test_create_starts_pending(self, repos: Repositories, seed: Seeder) -> None:
        source_id = seed.source()

        article = await repos.articles.create(_new_article(source_id))

        assert article.summary_status == SummaryStatus.PENDING
        assert article.created_at.tzinfo is not None

    async def test_duplicate_guid_raises(self, repos: Repositories, seed: Seeder) -> None:
        """The (source, guid) pair is unique."""
        source_id = seed.source()
        await repos.articles.create(_new_article(source_id))

        with pytest.raises(DuplicateArticleError):
            await repos.articles.create(_new_article(source_id))

    async def test_same_guid_other_source_allowed(
        self, repos: Repositories, seed: Seeder
    ) -> None:
        first = seed.source("One")
        second = seed.source("Two")

        await repos.articles.create(_new_article(first))
        await repos.articles.create(_new_article(second))

        assert seed.count(ArticleRow) == 2

    async def test_transition_moves_forward_only(
        self, repos: Repositories, seed: Seeder
    ) -> None:
        """pending -> processing -> completed; nothing goes back."""
        source_id = seed.source()
        article = await repos.articles.create(_new_article(source_id))

        assert await repos.articles.transition(article.id, SummaryStatus.COMPLETED) is False
        assert await repos.articles.transition(article.id, SummaryStatus.PROCESSING) is True
        assert await repos.articles.transition(article.id, SummaryStatus.PROCESSING) is False
        assert (
            await repos.articles.transition(article.id, SummaryStatus.COMPLETED, summary="Done.")
            is True
        )
        assert await repos.articles.transition(article.id, SummaryStatus.FAILED) is False

        stored = await repos.articles.get(article.id)
        assert stored is not None
        assert stored.summary_status == SummaryStatus.COMPLETED
        assert stored.summary == "Done."

    async def test_list_pending_oldest_first(
        self, repos: Repositories, seed: Seeder, now: datetime
    ) -> None:
        source_id = seed.source()
        newer = seed.article(source_id, "b", status="pending", created_at=now)
        older = seed.article(
            source_id, "a", status="pending", created_at=now - timedelta(hours=1)
        )
        seed.article(source_id, "c", status="completed", created_at=now)

        pending = await repos.articles.list_pending()

        assert [a.id for a in pending] == [older, newer]

    async def test_find_completed_for_topic(
        self, repos: Repositories, seed: Seeder, now: datetime
    ) -> None:
        """Only completed, recent, unclaimed articles of the topic's sources, newest first."""
        tech_source = seed.source("Tech")
        other_source = seed.source("Other")
        topic_id = seed.topic("tech", sources=(tech_source,))

        old = seed.article(tech_source, "old", published_at=now - timedelta(hours=30))
        newest = seed.article(tech_source, "newest", published_at=now - timedelta(hours=1))
        middle = seed.article(tech_source, "middle", published_at=now - timedelta(hours=2))
        claimed = seed.article(tech_source, "claimed", published_at=now - timedelta(hours=3))
        seed.article(tech_source, "pending", status="pending", published_at=now)
        seed.article(other_source, "elsewhere", published_at=now)
        undated = seed.article(tech_source, "undated", created_at=now - timedelta(hours=5))

        articles = await repos.articles.find_completed_for_topic(
            topic_id, since=now - timedelta(hours=24), exclude_ids={claimed}, limit=10
        )

        assert [a.id for a in articles] == [newest, middle, undated]
        assert old not in [a.id for a in articles]
        assert articles[0].source_name == "Tech"

    async def test_find_completed_for_topic_respects_limit(
        self, repos: Repositories, seed: Seeder, now: datetime
    ) -> None:
        source_id = seed.source()
        topic_id = seed.topic("tech", sources=(source_id,))
        for i in range(4):
            seed.article(source_id, f"a{i}", published_at=now - timedelta(minutes=i))

        articles = await repos.articles.find_completed_for_topic(
            topic_id, since=now - timedelta(hours=24), exclude_ids=[], limit=2
        )

        assert len(articles) == 2

    async def test_delete_created_before_removes_briefing_links(
        self, repos: Repositories, seed: Seeder, now: datetime
    ) -> None:
        source_id = seed.source()
        user_id = seed.user("reader@example.com")
        stale = seed.article(source_id, "stale", created_at=now - timedelta(days=31))
        fresh = seed.article(source_id, "fresh", created_at=now)
        briefing_id = seed.briefing(user_id, date(2026, 9, 18))
        await repos.briefings.add_article(briefing_id, stale, 0, "tech")

        deleted = await repos.articles.delete_created_before(now - timedelta(days=30))

        assert deleted == 1
        assert await repos.articles.get(stale) is None
        assert await repos.articles.get(fresh) is not None
        assert seed.count(BriefingArticleRow) == 0


class TestUserRepository:
    """Tests for SqlUserRepository."""

    async def test_subscriptions_by_priority(self, repos: Repositories, seed: Seeder) -> None:
        low = seed.topic("news")
        high = seed.topic("tech")
        user_id = seed.user("reader@example.com", topics={low: 1, high: 10})

        subscriptions = await repos.users.subscriptions(user_id)

        assert [s.topic.slug for s in subscriptions] == ["tech", "news"]
        assert subscriptions[0].priority == 10

    async def test_list_active(self, repos: Repositories, seed: Seeder) -> None:
        active = seed.user("a@example.com")
        seed.user("b@example.com", active=False)

        users = await repos.users.list_active()

        assert [u.id for u in users] == [active]


class TestBriefingRepository:
    """Tests for SqlBriefingRepository."""

    async def test_upsert_compiled_creates_row(
        self, repos: Repositories, seed: Seeder, now: datetime
    ) -> None:
        user_id = seed.user("reader@example.com")

        briefing = await repos.briefings.upsert_compiled(
            user_id, now.date(), article_count=3, compiled_at=now
        )

        assert briefing.status == BriefingStatus.COMPILED
        assert briefing.article_count == 3
        assert briefing.compiled_at == now

    async def test_upsert_compiled_promotes_pending(
        self, repos: Repositories, seed: Seeder, now: datetime
    ) -> None:
        user_id = seed.user("reader@example.com")
        existing = seed.briefing(user_id, now.date())

        briefing = await repos.briefings.upsert_compiled(
            user_id, now.date(), article_count=2, compiled_at=now
        )

        assert briefing.id == existing
        assert briefing.status == BriefingStatus.COMPILED

    async def test_upsert_compiled_leaves_sent_briefing_alone(
        self, repos: Repositories, seed: Seeder, now: datetime
    ) -> None:
        user_id = seed.user("reader@example.com")
        seed.briefing(user_id, now.date(), status="sent")

        briefing = await repos.briefings.upsert_compiled(
            user_id, now.date(), article_count=5, compiled_at=now
        )

        assert briefing.status == BriefingStatus.SENT
        assert briefing.article_count == 0
        assert briefing.compiled_at is None

    async def test_add_article_is_unique_per_briefing(
        self, repos: Repositories, seed: Seeder, now: datetime
    ) -> None:
        source_id = seed.source()
        user_id = seed.user("reader@example.com")
        article_id = seed.article(source_id, "a")
        briefing_id = seed.briefing(user_id, now.date())

        assert await repos.briefings.add_article(briefing_id, article_id, 0, "tech") is True
        assert await repos.briefings.add_article(briefing_id, article_id, 1, "tech") is False

        rows = await repos.briefings.list_articles(briefing_id)
        assert len(rows) == 1
        assert rows[0].position == 0
        assert rows[0].article is not None
        assert rows[0].article.source_name == "Tech Daily"

    async def test_transition_sequence(
        self, repos: Repositories, seed: Seeder, now: datetime
    ) -> None:
        """compiled -> sending -> sent, with no way back."""
        user_id = seed.user("reader@example.com")
        briefing_id = seed.briefing(user_id, now.date(), status="compiled")

        assert await repos.briefings.transition(briefing_id, BriefingStatus.SENT) is False
        assert await repos.briefings.transition(briefing_id, BriefingStatus.SENDING) is True
        assert await repos.briefings.transition(briefing_id, BriefingStatus.SENDING) is False
        assert (
            await repos.briefings.transition(briefing_id, BriefingStatus.SENT, sent_at=now)
            is True
        )
        assert await repos.briefings.transition(briefing_id, BriefingStatus.FAILED) is False

        briefing = await repos.briefings.get(briefing_id)
        assert briefing is not None
        assert briefing.status == BriefingStatus.SENT
        assert briefing.sent_at == now

    async def test_delete_created_before(
        self, repos: Repositories, seed: Seeder, now: datetime
    ) -> None:
        user_id = seed.user("reader@example.com")
        old = seed.briefing(user_id, date(2026, 7, 1), created_at=now - timedelta(days=91))
        recent = seed.briefing(user_id, now.date(), created_at=now)

        deleted = await repos.briefings.delete_created_before(now - timedelta(days=90))

        assert deleted == 1
        assert await repos.briefings.get(old) is None
        assert await repos.briefings.get(recent) is not None


def test_utc_round_trip(seed: Seeder, db: Database) -> None:
    """Aware datetimes in any zone come back as the same instant in UTC."""
    when = datetime(2026, 10, 19, 9, 0, tzinfo=timezone(timedelta(hours=2)))
    source_id = seed.source(last_fetched_at=when)

    with db.session() as session:
        row = session.get(SourceRow, source_id)
        assert row is not None
        stored = row.last_fetched_at

    assert stored == when
    assert stored is not None
    assert stored.tzinfo == UTC
