"""Shared data models for Briefly."""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import StrEnum


class SummaryStatus(StrEnum):
    """Enrichment lifecycle of an article."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class BriefingStatus(StrEnum):
    """Delivery lifecycle of a briefing."""

    PENDING = "pending"
    COMPILED = "compiled"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"


# Allowed predecessors for each status; transitions only move forward.
SUMMARY_TRANSITIONS: dict[SummaryStatus, tuple[SummaryStatus, ...]] = {
    SummaryStatus.PROCESSING: (SummaryStatus.PENDING,),
    SummaryStatus.COMPLETED: (SummaryStatus.PROCESSING,),
    SummaryStatus.FAILED: (SummaryStatus.PROCESSING,),
}

BRIEFING_TRANSITIONS: dict[BriefingStatus, tuple[BriefingStatus, ...]] = {
    BriefingStatus.COMPILED: (BriefingStatus.PENDING,),
    BriefingStatus.SENDING: (BriefingStatus.COMPILED,),
    BriefingStatus.SENT: (BriefingStatus.SENDING,),
    BriefingStatus.FAILED: (BriefingStatus.COMPILED, BriefingStatus.SENDING),
}


@dataclass
class Source:
    """A configured feed endpoint with its cached conditional-fetch validators."""

    id: int
    name: str
    url: str
    feed_url: str
    etag: str | None = None
    last_modified: str | None = None
    last_fetched_at: datetime | None = None
    fetch_failures: int = 0
    active: bool = True


@dataclass
class NewArticle:
    """A parsed feed entry ready to be inserted."""

    source_id: int
    guid: str
    title: str
    url: str
    author: str | None = None
    content: str | None = None
    content_hash: str | None = None
    published_at: datetime | None = None


@dataclass
class Article:
    """One deduplicated feed entry plus its enrichment state."""

    id: int
    source_id: int
    guid: str
    title: str
    url: str
    created_at: datetime
    author: str | None = None
    content: str | None = None
    content_hash: str | None = None
    published_at: datetime | None = None
    summary: str | None = None
    summary_status: SummaryStatus = SummaryStatus.PENDING
    source_name: str | None = None


@dataclass
class Topic:
    """A subject users subscribe to and sources are linked to."""

    id: int
    name: str
    slug: str
    description: str | None = None
    keywords: list[str] = field(default_factory=list)


@dataclass
class Subscription:
    """A user's subscription to a topic, ranked by priority (higher first)."""

    topic: Topic
    priority: int = 0


@dataclass
class User:
    """A briefing subscriber."""

    id: int
    email: str
    name: str | None = None
    active: bool = True


@dataclass
class Briefing:
    """One user's daily digest record."""

    id: int
    user_id: int
    briefing_date: date
    status: BriefingStatus = BriefingStatus.PENDING
    article_count: int = 0
    compiled_at: datetime | None = None
    sent_at: datetime | None = None
    created_at: datetime | None = None


@dataclass
class BriefingArticle:
    """An article placed in a briefing, with its position and topic attribution."""

    briefing_id: int
    article_id: int
    position: int
    topic_slug: str
    article: Article | None = None


@dataclass
class FetchResult:
    """Outcome of fetching one source."""

    source: Source
    new_articles: int = 0
    skipped: int = 0
    error: str | None = None


@dataclass
class EnrichmentResult:
    """Outcome of one enrichment batch."""

    processed: int = 0
    failed: int = 0


@dataclass
class BriefingSection:
    """One topic's articles within a compiled briefing."""

    topic_name: str
    topic_slug: str
    articles: list[Article] = field(default_factory=list)


@dataclass
class CompiledBriefing:
    """A compiled briefing, grouped into topic sections in display order."""

    briefing_id: int
    user_id: int
    sections: list[BriefingSection] = field(default_factory=list)
    briefing_date: date | None = None

    @property
    def article_count(self) -> int:
        return sum(len(s.articles) for s in self.sections)
