"""Repository interfaces the pipeline depends on.

Each entity gets one narrow protocol. Exactly one implementation is bound at
process start (see ``briefly.repositories.sql``); pipeline components only ever
see these interfaces.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime
from typing import Protocol

from briefly.models import (
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


class DuplicateArticleError(Exception):
    """Raised when an article with the same (source, guid) already exists."""

    def __init__(self, source_id: int, guid: str) -> None:
        self.source_id = source_id
        self.guid = guid
        super().__init__(f"article {guid!r} already exists for source {source_id}")


class SourceRepository(Protocol):
    async def list_active(self) -> list[Source]: ...

    async def get(self, source_id: int) -> Source | None: ...

    async def mark_not_modified(self, source_id: int, fetched_at: datetime) -> None: ...

    async def mark_fetched(
        self,
        source_id: int,
        *,
        etag: str | None,
        last_modified: str | None,
        fetched_at: datetime,
    ) -> None:
        """Store new validators and reset the failure counter."""
        ...

    async def record_failure(self, source_id: int, fetched_at: datetime) -> None:
        """Increment the failure counter, leaving validators untouched."""
        ...


class ArticleRepository(Protocol):
    async def create(self, article: NewArticle) -> Article:
        """Insert an article.

        Raises:
            DuplicateArticleError: If (source_id, guid) is already stored.
        """
        ...

    async def get(self, article_id: int) -> Article | None: ...

    async def list_pending(self) -> list[Article]:
        """Pending articles, oldest first."""
        ...

    async def transition(
        self,
        article_id: int,
        status: SummaryStatus,
        *,
        summary: str | None = None,
    ) -> bool:
        """Move an article forward to ``status``.

        Returns:
            False if the article was not in an allowed predecessor state.
        """
        ...

    async def update_content(self, article_id: int, content: str) -> None: ...

    async def find_completed_for_topic(
        self,
        topic_id: int,
        *,
        since: datetime,
        exclude_ids: Iterable[int],
        limit: int,
    ) -> list[Article]:
        """Completed articles from sources linked to a topic, newest first."""
        ...

    async def find_recent_completed(self, *, since: datetime, limit: int) -> list[Article]: ...

    async def delete_created_before(self, cutoff: datetime) -> int: ...


class TopicRepository(Protocol):
    async def get_by_slugs(self, slugs: Iterable[str]) -> list[Topic]: ...

    async def list_for_source(self, source_id: int) -> list[Topic]: ...


class UserRepository(Protocol):
    async def list_active(self) -> list[User]: ...

    async def get(self, user_id: int) -> User | None: ...

    async def subscriptions(self, user_id: int) -> list[Subscription]:
        """Topic subscriptions in descending priority."""
        ...


class BriefingRepository(Protocol):
    async def get(self, briefing_id: int) -> Briefing | None: ...

    async def get_for_date(self, user_id: int, briefing_date: date) -> Briefing | None: ...

    async def upsert_compiled(
        self,
        user_id: int,
        briefing_date: date,
        *,
        article_count: int,
        compiled_at: datetime,
    ) -> Briefing: ...

    async def add_article(
        self, briefing_id: int, article_id: int, position: int, topic_slug: str
    ) -> bool:
        """Materialize one briefing article row.

        Returns:
            False if the row already existed.
        """
        ...

    async def list_articles(self, briefing_id: int) -> list[BriefingArticle]:
        """Briefing rows with their articles loaded, in position order."""
        ...

    async def transition(
        self,
        briefing_id: int,
        status: BriefingStatus,
        *,
        sent_at: datetime | None = None,
    ) -> bool: ...

    async def delete_created_before(self, cutoff: datetime) -> int: ...


@dataclass
class Repositories:
    """The repository set bound at process start."""

    sources: SourceRepository
    articles: ArticleRepository
    topics: TopicRepository
    users: UserRepository
    briefings: BriefingRepository
