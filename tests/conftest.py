"""Shared fixtures: an in-memory SQLite store and helpers to seed it."""

from collections.abc import Iterator
from datetime import UTC, date, datetime

import pytest

from briefly.repositories.base import Repositories
from briefly.repositories.sql import Database, create_database, create_repositories
from briefly.repositories.tables import (
    ArticleRow,
    BriefingRow,
    SourceRow,
    SourceTopicRow,
    TopicRow,
    UserRow,
    UserTopicRow,
)


class Seeder:
    """Inserts rows directly, bypassing the repositories under test."""

    def __init__(self, db: Database) -> None:
        self._db = db
        self._counter = 0

    def _add(self, row: object) -> int:
        with self._db.session() as session, session.begin():
            session.add(row)
            session.flush()
            return row.id  # type: ignore[attr-defined]

    def source(self, name: str = "Tech Daily", **kwargs: object) -> int:
        self._counter += 1
        values: dict[str, object] = {
            "name": name,
            "url": f"https://source{self._counter}.example.com",
            "feed_url": f"https://source{self._counter}.example.com/feed.xml",
        }
        values.update(kwargs)
        return self._add(SourceRow(**values))

    def topic(self, slug: str, name: str | None = None, sources: tuple[int, ...] = ()) -> int:
        topic_id = self._add(TopicRow(slug=slug, name=name or slug.title(), keywords=[]))
        with self._db.session() as session, session.begin():
            for source_id in sources:
                session.add(SourceTopicRow(source_id=source_id, topic_id=topic_id))
        return topic_id

    def user(
        self,
        email: str,
        name: str | None = None,
        topics: dict[int, int] | None = None,
        active: bool = True,
    ) -> int:
        """Add a user subscribed to ``topics`` (topic id -> priority)."""
        user_id = self._add(UserRow(email=email, name=name, active=active))
        with self._db.session() as session, session.begin():
            for topic_id, priority in (topics or {}).items():
                session.add(UserTopicRow(user_id=user_id, topic_id=topic_id, priority=priority))
        return user_id

    def article(
        self,
        source_id: int,
        guid: str,
        *,
        status: str = "completed",
        summary: str | None = "A summary.",
        published_at: datetime | None = None,
        created_at: datetime | None = None,
        title: str | None = None,
        content: str | None = None,
    ) -> int:
        values: dict[str, object] = {
            "source_id": source_id,
            "guid": guid,
            "title": title or f"Article {guid}",
            "url": f"https://example.com/{guid}",
            "content": content,
            "summary": summary if status == "completed" else None,
            "summary_status": status,
            "published_at": published_at,
        }
        if created_at is not None:
            values["created_at"] = created_at
        return self._add(ArticleRow(**values))

    def briefing(
        self,
        user_id: int,
        briefing_date: date,
        status: str = "pending",
        created_at: datetime | None = None,
    ) -> int:
        values: dict[str, object] = {
            "user_id": user_id,
            "briefing_date": briefing_date,
            "status": status,
        }
        if created_at is not None:
            values["created_at"] = created_at
        return self._add(BriefingRow(**values))

    def count(self, model: type) -> int:
        with self._db.session() as session:
            return session.query(model).count()


@pytest.fixture
def db() -> Iterator[Database]:
    """Fresh in-memory database with the schema created."""
    database = create_database("sqlite://")
    database.create_schema()
    yield database
    database.dispose()


@pytest.fixture
def repos(db: Database) -> Repositories:
    return create_repositories(db)


@pytest.fixture
def seed(db: Database) -> Seeder:
    return Seeder(db)


@pytest.fixture
def now() -> datetime:
    return datetime(2026, 10, 19, 7, 0, tzinfo=UTC)
