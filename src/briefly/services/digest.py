"""Briefing email rendering for Briefly."""

import html
from datetime import UTC, date, datetime

from briefly.models import Article, CompiledBriefing, User
from briefly.utils.logging import get_logger

logger = get_logger(__name__)


def format_long_date(value: date) -> str:
    """Format a date like 'Monday, October 19, 2026'."""
    return f"{value:%A}, {value:%B} {value.day}, {value.year}"


class BriefingRenderer:
    """Renders a compiled briefing into an email subject, HTML and text body."""

    def __init__(self, app_url: str) -> None:
        self._app_url = app_url.rstrip("/")

    def render(
        self, user: User, briefing: CompiledBriefing, now: datetime | None = None
    ) -> tuple[str, str, str]:
        """Render the briefing email.

        Args:
            user: The recipient.
            briefing: The compiled briefing, sections in display order.
            now: Date line fallback when the briefing carries no date; defaults
                to now (UTC).

        Returns:
            Tuple of (subject, html_content, text_content).
        """
        date_str = format_long_date(briefing.briefing_date or now or datetime.now(UTC))
        logger.info(
            "Rendering briefing",
            briefing_id=briefing.briefing_id,
            sections=len(briefing.sections),
            article_count=briefing.article_count,
        )

        subject = f"Briefly - Your briefing for {date_str}"
        greeting_name = user.name or user.email
        return (
            subject,
            self._render_html(greeting_name, date_str, briefing),
            self._render_text(greeting_name, date_str, briefing),
        )

    @property
    def _preferences_url(self) -> str:
        return f"{self._app_url}/preferences"

    def _render_html(self, name: str, date_str: str, briefing: CompiledBriefing) -> str:
        """Render the briefing as HTML."""
        sections_html = "\n".join(
            f"""<h2>{html.escape(section.topic_name)}</h2>
{"".join(self._render_article(a) for a in section.articles)}"""
            for section in briefing.sections
        )
        safe_name = html.escape(name)
        safe_prefs = html.escape(self._preferences_url)

        return f"""<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<style>
body {{
    font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
    font-size: 17px;
    max-width: 600px;
    margin: 0 auto;
    padding: 20px;
    color: #333;
    line-height: 1.7;
}}
h1 {{
    color: #1a1a1a;
    font-size: 26px;
    border-bottom: 2px solid #e0e0e0;
    padding-bottom: 10px;
}}
h2 {{
    color: #2c2c2c;
    font-size: 22px;
    margin-top: 30px;
    margin-bottom: 20px;
}}
.article {{
    margin-bottom: 30px;
    padding-bottom: 20px;
    border-bottom: 1px solid #e0e0e0;
}}
.article-title {{
    color: #1a73e8;
    text-decoration: none;
    font-size: 1.1em;
    font-weight: 600;
}}
.meta {{
    font-size: 0.85em;
    color: #666;
}}
.footer {{
    margin-top: 40px;
    padding-top: 20px;
    border-top: 1px solid #e0e0e0;
    font-size: 0.9em;
    color: #666;
}}
</style>
</head>
<body>
<h1>Your briefing for {html.escape(date_str)}</h1>
<p>Hello {safe_name}, here is what happened in the topics you follow.</p>

{sections_html}

<div class="footer">
<p>Summaries were generated automatically and may contain mistakes.</p>
<p><a href="{safe_prefs}">Manage your topics</a></p>
</div>
</body>
</html>"""

    def _render_article(self, article: Article) -> str:
        """Render a single article as HTML."""
        # Escape all external content: titles and summaries come from feeds and the model
        safe_title = html.escape(article.title)
        safe_url = html.escape(article.url)
        safe_summary = html.escape(article.summary or "")
        meta = html.escape(self._meta_line(article))

        return f"""<div class="article">
<a href="{safe_url}" class="article-title">{safe_title}</a>
<div class="meta">{meta}</div>
<p>{safe_summary}</p>
</div>
"""

    def _render_text(self, name: str, date_str: str, briefing: CompiledBriefing) -> str:
        """Render the plain text alternative."""
        lines = [f"Your briefing for {date_str}", "", f"Hello {name},", ""]
        for section in briefing.sections:
            lines.append(section.topic_name.upper())
            lines.append("=" * len(section.topic_name))
            for article in section.articles:
                lines.append(f"* {article.title}")
                lines.append(f"  {self._meta_line(article)}")
                if article.summary:
                    lines.append(f"  {article.summary}")
                lines.append(f"  {article.url}")
                lines.append("")
        lines.append(f"Manage your topics: {self._preferences_url}")
        return "\n".join(lines)

    @staticmethod
    def _meta_line(article: Article) -> str:
        source = article.source_name or "Unknown source"
        if article.author:
            return f"{source} - {article.author}"
        return source
