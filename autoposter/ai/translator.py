"""Summarize-and-rewrite of extracted articles through the text-generation service."""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from tenacity import RetryError, Retrying, stop_after_attempt, wait_exponential

from autoposter.ai.text_generation import GenerationResult, TextGenerator
from autoposter.contracts.translated_article import validate_seo_metadata, validate_translated_article
from autoposter.storage.records import ContentStyle

logger = logging.getLogger(__name__)

MAX_SOURCE_CHARS = 8000
SEO_SOURCE_CHARS = 2000
DEFAULT_MAX_TOKENS = 4096
SEO_MAX_TOKENS = 500
META_TITLE_CHARS = 60
META_DESCRIPTION_CHARS = 160

_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*|\s*```\s*$", re.IGNORECASE)

DEFAULT_INSTRUCTIONS = """Rewrite the source article as an original magazine piece:
- Summarize the key facts in your own words; do not copy sentences verbatim
- Keep names, numbers and quotes accurate
- Structure the body as HTML using <p>, <h2> and <ul>/<li> only
- Write an engaging excerpt of one or two sentences"""

RESPONSE_FORMAT = """Respond with ONLY a JSON object, no commentary, in this exact shape:
{
  "title": "article title",
  "content": "<p>HTML body</p>",
  "excerpt": "short summary of at least 30 characters",
  "seo": {
    "meta_title": "SEO title, max 60 characters",
    "meta_description": "SEO description, max 160 characters",
    "keywords": ["keyword", "keyword"]
  }
}"""


class TranslationError(Exception):
    """The text-generation service did not produce a usable article."""


@dataclass(frozen=True)
class SEOMetadata:
    meta_title: str
    meta_description: str
    keywords: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class TranslatedArticle:
    title: str
    content: str
    excerpt: str
    seo: SEOMetadata
    tokens_used: int = 0


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text or "").strip()


def parse_json_response(text: str) -> Dict[str, Any]:
    """Parse a JSON object out of a model reply, tolerating Markdown fences."""
    cleaned = strip_code_fences(text)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start:
            raise TranslationError("Response did not contain a JSON object")
        try:
            data = json.loads(cleaned[start : end + 1])
        except json.JSONDecodeError as e:
            raise TranslationError(f"Invalid JSON in response: {e}") from e
    if not isinstance(data, dict):
        raise TranslationError("Response JSON is not an object")
    return data


class Translator:
    def __init__(
        self,
        generator: TextGenerator,
        *,
        target_language: str = "Croatian",
        max_attempts: int = 3,
        default_max_tokens: int = DEFAULT_MAX_TOKENS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.generator = generator
        self.target_language = target_language
        self.max_attempts = max_attempts
        self.default_max_tokens = default_max_tokens
        self._sleep = sleep

    def build_translation_prompt(self, content: str, title: str, style: Optional[ContentStyle] = None) -> str:
        instructions = style.prompt.strip() if style and style.prompt else DEFAULT_INSTRUCTIONS
        source = (content or "")[:MAX_SOURCE_CHARS]
        return (
            f"You are writing for a {self.target_language}-language magazine. "
            f"Write the entire output in {self.target_language}.\n\n"
            f"{instructions}\n\n"
            f"SOURCE TITLE: {title}\n\n"
            f"SOURCE CONTENT:\n{source}\n\n"
            f"{RESPONSE_FORMAT}"
        )

    def _with_retries(self, fn: Callable[[], Any], what: str) -> Any:
        def log_retry(retry_state) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            delay = retry_state.next_action.sleep if retry_state.next_action else 0
            logger.warning(
                f"{what} attempt {retry_state.attempt_number} failed: {exc}. Retrying in {delay:.1f}s"
            )

        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=2, max=8),
            sleep=self._sleep,
            before_sleep=log_retry,
        )
        try:
            return retrying(fn)
        except RetryError as e:
            last = e.last_attempt.exception()
            logger.error(f"{what} failed after {self.max_attempts} attempts: {last}")
            raise TranslationError(f"{what} failed after {self.max_attempts} attempts: {last}") from last

    def translate_article(self, content: str, title: str, style: Optional[ContentStyle] = None) -> TranslatedArticle:
        """Rewrite ``content`` into the target language; retried with backoff."""
        prompt = self.build_translation_prompt(content, title, style)
        max_tokens = style.max_tokens if style and style.max_tokens else self.default_max_tokens

        def attempt() -> TranslatedArticle:
            result: GenerationResult = self.generator.generate(prompt, max_tokens)
            payload = parse_json_response(result.text)
            errors = validate_translated_article(payload)
            if errors:
                raise TranslationError("Invalid translation: " + "; ".join(errors))
            seo = payload["seo"]
            return TranslatedArticle(
                title=payload["title"].strip(),
                content=payload["content"],
                excerpt=payload["excerpt"].strip(),
                seo=SEOMetadata(
                    meta_title=seo["meta_title"],
                    meta_description=seo["meta_description"],
                    keywords=list(seo["keywords"]),
                ),
                tokens_used=result.tokens_used,
            )

        return self._with_retries(attempt, "Translation")

    def generate_seo_metadata(self, content: str, title: str) -> SEOMetadata:
        prompt = (
            f"Create SEO metadata in {self.target_language} for this article.\n\n"
            f"TITLE: {title}\n\n"
            f"CONTENT:\n{(content or '')[:SEO_SOURCE_CHARS]}\n\n"
            'Respond with ONLY a JSON object: {"meta_title": "max 60 characters", '
            '"meta_description": "max 160 characters", "keywords": ["keyword", "keyword"]}'
        )

        def attempt() -> SEOMetadata:
            payload = parse_json_response(self.generator.generate(prompt, SEO_MAX_TOKENS).text)
            errors = validate_seo_metadata(payload)
            if errors:
                raise TranslationError("Invalid SEO metadata: " + "; ".join(errors))
            return SEOMetadata(
                meta_title=payload["meta_title"][:META_TITLE_CHARS],
                meta_description=payload["meta_description"][:META_DESCRIPTION_CHARS],
                keywords=list(payload["keywords"]),
            )

        return self._with_retries(attempt, "SEO metadata generation")

    def test_connection(self) -> bool:
        try:
            return self.generator.ping()
        except Exception as e:
            logger.warning(f"Text generation connection test failed: {e}")
            return False
