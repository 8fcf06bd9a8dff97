"""SQLAlchemy-backed repositories.

Sessions are synchronous; every repository call hops to a worker thread with
``asyncio.to_thread`` so the event loop is never blocked on the database.
"""

import asyncio
from collections.abc import Callable, Iterable
from datetime import date, datetime
from typing import Any, TypeVar

from sqlalchemy import Engine, create_engine, delete, event, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from briefly.models import (
    BRIEFING_TRANSITIONS,
    SUMMARY_TRANSITIONS,
    Article,
    Briefing,
    BriefingArticle,
    BriefingStatus,
    NewArticle,
    Source,
    Subscription,
    SummaryStatus,
    Topic,
    User,
)
from briefly.repositories.base import DuplicateArticleError, Repositories
from briefly.repositories.tables import (
    ArticleRow,
    Base,
    BriefingArticleRow,
    BriefingRow,
    SourceRow,
    SourceTopicRow,
    TopicRow,
    UserRow,
    UserTopicRow,
)
from briefly.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class Database:
    """Owns the engine and runs unit-of-work callables off the event loop."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._session_factory = sessionmaker(engine, expire_on_commit=False)

    def create_schema(self) -> None:
        """Create missing tables. Production schemas are provisioned externally."""
        Base.metadata.create_all(self.engine)

    def session(self) -> Session:
        return self._session_factory()

    async def run(self, work: Callable[[Session], T]) -> T:
        """Run ``work`` inside a committed transaction on a worker thread."""
        return await asyncio.to_thread(self._run_sync, work)

    def _run_sync(self, work: Callable[[Session], T]) -> T:
        with self._session_factory.begin() as session:
            return work(session)

    def dispose(self) -> None:
        self.engine.dispose()


def _enable_sqlite_foreign_keys(dbapi_connection: Any, _: object) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_database(url: str) -> Database:
    """Create a Database for a SQLAlchemy URL."""
    kwargs: dict[str, Any] = {}
    is_sqlite = url.startswith("sqlite")
    if is_sqlite:
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise each thread sees an empty database
            kwargs["poolclass"] = StaticPool
    engine = create_engine(url, **kwargs)
    if is_sqlite:
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    logger.info("Database engine created", dialect=engine.dialect.name)
    return Database(engine)


def _to_source(row: SourceRow) -> Source:
    return Source(
        id=row.id,
        name=row.name,
        url=row.url,
        feed_url=row.feed_url,
        etag=row.etag,
        last_modified=row.last_modified,
        last_fetched_at=row.last_fetched_at,
        fetch_failures=row.fetch_failures,
        active=row.active,
    )


def _to_article(row: ArticleRow, source_name: str | None = None) -> Article:
    return Article(
        id=row.id,
        source_id=row.source_id,
        guid=row.guid,
        title=row.title,
        url=row.url,
        created_at=row.created_at,
        author=row.author,
        content=row.content,
        content_hash=row.content_hash,
        published_at=row.published_at,
        summary=row.summary,
        summary_status=SummaryStatus(row.summary_status),
        source_name=source_name,
    )


def _to_topic(row: TopicRow) -> Topic:
    return Topic(
        id=row.id,
        name=row.name,
        slug=row.slug,
        description=row.description,
        keywords=list(row.keywords or []),
    )


def _to_user(row: UserRow) -> User:
    return User(id=row.id, email=row.email, name=row.name, active=row.active)


def _to_briefing(row: BriefingRow) -> Briefing:
    return Briefing(
        id=row.id,
        user_id=row.user_id,
        briefing_date=row.briefing_date,
        status=BriefingStatus(row.status),
        article_count=row.article_count,
        compiled_at=row.compiled_at,
        sent_at=row.sent_at,
        created_at=row.created_at,
    )


class SqlSourceRepository:
    """Feed sources and their conditional-fetch bookkeeping."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def list_active(self) -> list[Source]:
        """Return active sources in id order."""

        def work(session: Session) -> list[Source]:
            rows = session.scalars(
                select(SourceRow).where(SourceRow.active.is_(True)).order_by(SourceRow.id)
            )
            return [_to_source(r) for r in rows]

        return await self._db.run(work)

    async def get(self, source_id: int) -> Source | None:
        def work(session: Session) -> Source | None:
            row = session.get(SourceRow, source_id)
            return _to_source(row) if row else None

        return await self._db.run(work)

    async def mark_not_modified(self, source_id: int, fetched_at: datetime) -> None:
        """Record an unchanged fetch. Validators and counters are left as they are."""
        await self._db.run(
            lambda session: session.execute(
                update(SourceRow)
                .execution_options(synchronize_session=False)
                .where(SourceRow.id == source_id)
                .values(last_fetched_at=fetched_at)
            )
        )

    async def mark_fetched(
        self,
        source_id: int,
        *,
        etag: str | None,
        last_modified: str | None,
        fetched_at: datetime,
    ) -> None:
        """Store new validators after a successful fetch and reset the failure counter."""
        await self._db.run(
            lambda session: session.execute(
                update(SourceRow)
                .execution_options(synchronize_session=False)
                .where(SourceRow.id == source_id)
                .values(
                    etag=etag,
                    last_modified=last_modified,
                    last_fetched_at=fetched_at,
                    fetch_failures=0,
                )
            )
        )

    async def record_failure(self, source_id: int, fetched_at: datetime) -> None:
        """Count a failed fetch. Validators are kept so the next request stays conditional."""
        await self._db.run(
            lambda session: session.execute(
                update(SourceRow)
                .execution_options(synchronize_session=False)
                .where(SourceRow.id == source_id)
                .values(
                    fetch_failures=SourceRow.fetch_failures + 1,
                    last_fetched_at=fetched_at,
                )
            )
        )


class SqlArticleRepository:
    """Articles, deduplicated on (source_id, guid)."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def create(self, article: NewArticle) -> Article:
        """Insert a pending article.

        Raises:
            DuplicateArticleError: If the source already has an article with this guid.
        """

        def work(session: Session) -> Article:
            row = ArticleRow(
                source_id=article.source_id,
                guid=article.guid,
                title=article.title,
                url=article.url,
                author=article.author,
                content=article.content,
                content_hash=article.content_hash,
                published_at=article.published_at,
                summary_status=SummaryStatus.PENDING.value,
            )
            session.add(row)
            session.flush()
            return _to_article(row)

        try:
            return await self._db.run(work)
        except IntegrityError as e:
            raise DuplicateArticleError(article.source_id, article.guid) from e

    async def get(self, article_id: int) -> Article | None:
        def work(session: Session) -> Article | None:
            row = session.get(ArticleRow, article_id)
            return _to_article(row) if row else None

        return await self._db.run(work)

    async def list_pending(self) -> list[Article]:
        """Return articles awaiting a summary, oldest first."""

        def work(session: Session) -> list[Article]:
            rows = session.scalars(
                select(ArticleRow)
                .where(ArticleRow.summary_status == SummaryStatus.PENDING.value)
                .order_by(ArticleRow.created_at, ArticleRow.id)
            )
            return [_to_article(r) for r in rows]

        return await self._db.run(work)

    async def transition(
        self,
        article_id: int,
        status: SummaryStatus,
        *,
        summary: str | None = None,
    ) -> bool:
        """Move an article's summary status forward.

        Returns:
            False if the article was not in a state that may move to ``status``.
        """

        allowed = [s.value for s in SUMMARY_TRANSITIONS[status]]
        values: dict[str, Any] = {"summary_status": status.value}
        if summary is not None:
            values["summary"] = summary

        def work(session: Session) -> bool:
            result = session.execute(
                update(ArticleRow)
                .execution_options(synchronize_session=False)
                .where(ArticleRow.id == article_id, ArticleRow.summary_status.in_(allowed))
                .values(**values)
            )
            return result.rowcount > 0

        return await self._db.run(work)

    async def update_content(self, article_id: int, content: str) -> None:
        """Replace the stored body, e.g. with extracted full text."""
        await self._db.run(
            lambda session: session.execute(
                update(ArticleRow)
                .execution_options(synchronize_session=False)
                .where(ArticleRow.id == article_id)
                .values(content=content)
            )
        )

    async def find_completed_for_topic(
        self,
        topic_id: int,
        *,
        since: datetime,
        exclude_ids: Iterable[int],
        limit: int,
    ) -> list[Article]:
        """Return summarized articles from sources linked to a topic, newest first."""

        excluded = list(exclude_ids)

        def work(session: Session) -> list[Article]:
            published = func.coalesce(ArticleRow.published_at, ArticleRow.created_at)
            stmt = (
                select(ArticleRow, SourceRow.name)
                .join(SourceRow, SourceRow.id == ArticleRow.source_id)
                .join(SourceTopicRow, SourceTopicRow.source_id == ArticleRow.source_id)
                .where(
                    SourceTopicRow.topic_id == topic_id,
                    ArticleRow.summary_status == SummaryStatus.COMPLETED.value,
                    published >= since,
                )
            )
            if excluded:
                stmt = stmt.where(ArticleRow.id.not_in(excluded))
            stmt = stmt.order_by(published.desc(), ArticleRow.id.desc()).limit(limit)
            return [_to_article(row, name) for row, name in session.execute(stmt)]

        return await self._db.run(work)

    async def find_recent_completed(self, *, since: datetime, limit: int) -> list[Article]:
        """Return summarized articles stored since ``since``, newest first."""

        def work(session: Session) -> list[Article]:
            published = func.coalesce(ArticleRow.published_at, ArticleRow.created_at)
            stmt = (
                select(ArticleRow, SourceRow.name)
                .join(SourceRow, SourceRow.id == ArticleRow.source_id)
                .where(
                    ArticleRow.summary_status == SummaryStatus.COMPLETED.value,
                    ArticleRow.created_at >= since,
                )
                .order_by(published.desc(), ArticleRow.id.desc())
                .limit(limit)
            )
            return [_to_article(row, name) for row, name in session.execute(stmt)]

        return await self._db.run(work)

    async def delete_created_before(self, cutoff: datetime) -> int:
        """Delete old articles and their briefing rows; returns the article count."""

        def work(session: Session) -> int:
            stale = select(ArticleRow.id).where(ArticleRow.created_at < cutoff)
            session.execute(
                delete(BriefingArticleRow)
                .execution_options(synchronize_session=False)
                .where(BriefingArticleRow.article_id.in_(stale))
            )
            result = session.execute(
                delete(ArticleRow)
                .execution_options(synchronize_session=False)
                .where(ArticleRow.created_at < cutoff)
            )
            return result.rowcount

        return await self._db.run(work)


class SqlTopicRepository:
    """Topics and their source links."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def get_by_slugs(self, slugs: Iterable[str]) -> list[Topic]:
        wanted = list(slugs)

        def work(session: Session) -> list[Topic]:
            rows = session.scalars(select(TopicRow).where(TopicRow.slug.in_(wanted)))
            return [_to_topic(r) for r in rows]

        return await self._db.run(work)

    async def list_for_source(self, source_id: int) -> list[Topic]:
        """Return the topics a source is filed under."""

        def work(session: Session) -> list[Topic]:
            rows = session.scalars(
                select(TopicRow)
                .join(SourceTopicRow, SourceTopicRow.topic_id == TopicRow.id)
                .where(SourceTopicRow.source_id == source_id)
                .order_by(TopicRow.id)
            )
            return [_to_topic(r) for r in rows]

        return await self._db.run(work)


class SqlUserRepository:
    """Briefing recipients and their topic subscriptions."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def list_active(self) -> list[User]:
        """Return active users in id order."""

        def work(session: Session) -> list[User]:
            rows = session.scalars(
                select(UserRow).where(UserRow.active.is_(True)).order_by(UserRow.id)
            )
            return [_to_user(r) for r in rows]

        return await self._db.run(work)

    async def get(self, user_id: int) -> User | None:
        def work(session: Session) -> User | None:
            row = session.get(UserRow, user_id)
            return _to_user(row) if row else None

        return await self._db.run(work)

    async def subscriptions(self, user_id: int) -> list[Subscription]:
        """Return a user's topics, highest priority first."""

        def work(session: Session) -> list[Subscription]:
            stmt = (
                select(TopicRow, UserTopicRow.priority)
                .join(UserTopicRow, UserTopicRow.topic_id == TopicRow.id)
                .where(UserTopicRow.user_id == user_id)
                .order_by(UserTopicRow.priority.desc(), TopicRow.id)
            )
            return [
                Subscription(topic=_to_topic(topic), priority=priority)
                for topic, priority in session.execute(stmt)
            ]

        return await self._db.run(work)


class SqlBriefingRepository:
    """Daily briefings, one per (user, date), and their article rows."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def get(self, briefing_id: int) -> Briefing | None:
        def work(session: Session) -> Briefing | None:
            row = session.get(BriefingRow, briefing_id)
            return _to_briefing(row) if row else None

        return await self._db.run(work)

    async def get_for_date(self, user_id: int, briefing_date: date) -> Briefing | None:
        """Return a user's briefing for a calendar date, if any."""

        def work(session: Session) -> Briefing | None:
            row = session.scalar(
                select(BriefingRow).where(
                    BriefingRow.user_id == user_id,
                    BriefingRow.briefing_date == briefing_date,
                )
            )
            return _to_briefing(row) if row else None

        return await self._db.run(work)

    async def upsert_compiled(
        self,
        user_id: int,
        briefing_date: date,
        *,
        article_count: int,
        compiled_at: datetime,
    ) -> Briefing:
        """Mark the (user, date) briefing compiled, creating it if needed.

        A briefing already past pending is returned untouched.
        """

        def work(session: Session) -> Briefing:
            row = session.scalar(
                select(BriefingRow).where(
                    BriefingRow.user_id == user_id,
                    BriefingRow.briefing_date == briefing_date,
                )
            )
            if row is None:
                row = BriefingRow(user_id=user_id, briefing_date=briefing_date)
                session.add(row)
            elif row.status != BriefingStatus.PENDING.value:
                # Another run got here first; leave its record alone
                return _to_briefing(row)
            row.status = BriefingStatus.COMPILED.value
            row.article_count = article_count
            row.compiled_at = compiled_at
            session.flush()
            return _to_briefing(row)

        try:
            return await self._db.run(work)
        except IntegrityError:
            # Lost an insert race on (user, date): the winner's row is authoritative
            existing = await self.get_for_date(user_id, briefing_date)
            if existing is None:
                raise
            return existing

    async def add_article(
        self, briefing_id: int, article_id: int, position: int, topic_slug: str
    ) -> bool:
        """Attach an article at a position; returns False if it was already attached."""

        def work(session: Session) -> bool:
            session.add(
                BriefingArticleRow(
                    briefing_id=briefing_id,
                    article_id=article_id,
                    position=position,
                    topic_slug=topic_slug,
                )
            )
            session.flush()
            return True

        try:
            return await self._db.run(work)
        except IntegrityError:
            logger.debug(
                "Briefing article already present",
                briefing_id=briefing_id,
                article_id=article_id,
            )
            return False

    async def list_articles(self, briefing_id: int) -> list[BriefingArticle]:
        """Return the briefing rows with their articles, in position order."""

        def work(session: Session) -> list[BriefingArticle]:
            stmt = (
                select(BriefingArticleRow, ArticleRow, SourceRow.name)
                .join(ArticleRow, ArticleRow.id == BriefingArticleRow.article_id)
                .join(SourceRow, SourceRow.id == ArticleRow.source_id)
                .where(BriefingArticleRow.briefing_id == briefing_id)
                .order_by(BriefingArticleRow.position)
            )
            return [
                BriefingArticle(
                    briefing_id=ba.briefing_id,
                    article_id=ba.article_id,
                    position=ba.position,
                    topic_slug=ba.topic_slug,
                    article=_to_article(article, source_name),
                )
                for ba, article, source_name in session.execute(stmt)
            ]

        return await self._db.run(work)

    async def transition(
        self,
        briefing_id: int,
        status: BriefingStatus,
        *,
        sent_at: datetime | None = None,
    ) -> bool:
        """Move a briefing's status forward.

        Returns:
            False if the briefing was not in a state that may move to ``status``.
        """

        allowed = [s.value for s in BRIEFING_TRANSITIONS[status]]
        values: dict[str, Any] = {"status": status.value}
        if sent_at is not None:
            values["sent_at"] = sent_at

        def work(session: Session) -> bool:
            result = session.execute(
                update(BriefingRow)
                .execution_options(synchronize_session=False)
                .where(BriefingRow.id == briefing_id, BriefingRow.status.in_(allowed))
                .values(**values)
            )
            return result.rowcount > 0

        return await self._db.run(work)

    async def delete_created_before(self, cutoff: datetime) -> int:
        """Delete old briefings and their rows; returns the briefing count."""

        def work(session: Session) -> int:
            stale = select(BriefingRow.id).where(BriefingRow.created_at < cutoff)
            session.execute(
                delete(BriefingArticleRow)
                .execution_options(synchronize_session=False)
                .where(BriefingArticleRow.briefing_id.in_(stale))
            )
            result = session.execute(
                delete(BriefingRow)
                .execution_options(synchronize_session=False)
                .where(BriefingRow.created_at < cutoff)
            )
            return result.rowcount

        return await self._db.run(work)


def create_repositories(db: Database) -> Repositories:
    """Bind the SQL implementations to the repository interfaces."""
    return Repositories(
        sources=SqlSourceRepository(db),
        articles=SqlArticleRepository(db),
        topics=SqlTopicRepository(db),
        users=SqlUserRepository(db),
        briefings=SqlBriefingRepository(db),
    )


