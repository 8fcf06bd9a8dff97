"""Vertex AI Gemini client for Briefly."""

import vertexai
from vertexai.generative_models import GenerationConfig, GenerativeModel

from briefly.utils.logging import get_logger

logger = get_logger(__name__)

SYSTEM_INSTRUCTION = """You are a news summarizer. Your job is to create concise, informative summaries of news articles.

Rules:
- Write the summary in the same language as the original article.
- Keep summaries to 2-3 sentences (max 100 words).
- Focus on the key facts: who, what, when, where, why.
- Be neutral and factual, with no opinions or editorializing.
- If the article content is too short or unclear, summarize what is available."""

SUMMARY_TEMPERATURE = 0.3
SUMMARY_MAX_OUTPUT_TOKENS = 200


class SummarizationError(Exception):
    """Raised when the model produces no usable summary."""


def build_article_prompt(title: str, content: str | None, author: str | None = None) -> str:
    """Build the per-article prompt sent alongside the system instruction."""
    parts = [f"Title: {title}"]
    if author:
        parts.append(f"Author: {author}")
    if content:
        parts.append(f"Content: {content}")
    parts.append("\nPlease provide a concise summary of this article.")
    return "\n".join(parts)


class GeminiClient:
    """Client for generating article summaries using Vertex AI Gemini."""

    def __init__(
        self,
        project_id: str | None,
        region: str = "europe-west1",
        model_name: str = "gemini-2.0-flash-001",
    ) -> None:
        self._project_id = project_id
        self._region = region
        self._model_name = model_name
        self._model: GenerativeModel | None = None

    def _get_model(self) -> GenerativeModel:
        """Get the Gemini model instance, initializing Vertex AI on first use."""
        if self._model is None:
            vertexai.init(project=self._project_id, location=self._region)
            self._model = GenerativeModel(
                self._model_name,
                system_instruction=SYSTEM_INSTRUCTION,
            )
            logger.info("Vertex AI initialized", project=self._project_id, region=self._region)
        return self._model

    async def summarize_article(
        self,
        title: str,
        content: str | None,
        author: str | None = None,
    ) -> str:
        """Generate a summary for an article.

        Args:
            title: The article title.
            content: The article body or snippet, if any.
            author: The article author, if known.

        Returns:
            The generated summary, stripped of surrounding whitespace.

        Raises:
            SummarizationError: If the model returns an empty response.
        """
        logger.info("Summarizing article", title=title)

        model = self._get_model()
        prompt = build_article_prompt(title, content, author)
        config = GenerationConfig(
            temperature=SUMMARY_TEMPERATURE,
            max_output_tokens=SUMMARY_MAX_OUTPUT_TOKENS,
        )

        response = await model.generate_content_async(prompt, generation_config=config)
        try:
            summary = (response.text or "").strip()
        except ValueError as e:
            # Raised by the SDK when the candidate was blocked or has no text part
            raise SummarizationError(f"model returned no text: {e}") from e

        if not summary:
            raise SummarizationError("model returned empty response")

        logger.info("Article summarized", title=title, summary_length=len(summary))
        return summary
