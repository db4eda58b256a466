"""Text-generation service used by the translator.

``OpenAITextGenerator`` talks to any OpenAI-compatible chat completions API
(OpenAI directly, or OpenRouter via ``AI_BASE_URL``).
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import openai

from autoposter.config import ConfigurationError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an experienced magazine editor. You rewrite source articles into original, "
    "well structured pieces and always answer with a single JSON object."
)


@dataclass(frozen=True)
class GenerationResult:
    text: str
    tokens_used: int = 0


class TextGenerator(ABC):
    @abstractmethod
    def generate(self, prompt: str, max_tokens: int) -> GenerationResult:
        raise NotImplementedError

    @abstractmethod
    def ping(self) -> bool:
        raise NotImplementedError


class OpenAITextGenerator(TextGenerator):
    def __init__(
        self,
        api_key: str,
        *,
        model: str = "gpt-4o-mini",
        base_url: Optional[str] = None,
        temperature: float = 0.3,
        timeout: float = 120.0,
        system_prompt: str = SYSTEM_PROMPT,
    ):
        if not api_key:
            raise ConfigurationError("OPENAI_API_KEY is required for text generation")
        self.model = model
        self.temperature = temperature
        self.system_prompt = system_prompt
        # Retries are handled by the translator
        self.client = openai.OpenAI(api_key=api_key, base_url=base_url or None, timeout=timeout, max_retries=0)
        masked_key = f"...{api_key[-6:]}" if len(api_key) > 6 else "***"
        logger.info(f"Using model {model} via {base_url or 'api.openai.com'}, key: {masked_key}")

    @classmethod
    def from_config(cls, config) -> "OpenAITextGenerator":
        return cls(
            config.openai_api_key,
            model=config.ai_model,
            base_url=config.ai_base_url or None,
            temperature=config.ai_temperature,
            timeout=config.ai_timeout,
        )

    def generate(self, prompt: str, max_tokens: int) -> GenerationResult:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": self.system_prompt},
                {"role": "user", "content": prompt},
            ],
            temperature=self.temperature,
            max_tokens=max_tokens,
        )
        text = response.choices[0].message.content or ""
        usage = getattr(response, "usage", None)
        tokens = 0
        if usage is not None:
            tokens = int(getattr(usage, "total_tokens", 0) or 0) or (
                int(getattr(usage, "prompt_tokens", 0) or 0) + int(getattr(usage, "completion_tokens", 0) or 0)
            )
        return GenerationResult(text=text, tokens_used=tokens)

    def ping(self) -> bool:
        try:
            result = self.generate("Reply with OK", max_tokens=10)
        except openai.OpenAIError as e:
            logger.warning(f"Text generation service unreachable: {e}")
            return False
        return bool(result.text)
