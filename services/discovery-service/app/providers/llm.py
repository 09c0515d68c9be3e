"""OpenAI chat-completions adapter used by the exercise enricher."""

from __future__ import annotations

import logging
from typing import Protocol

import openai
from openai import OpenAI

from .errors import MalformedResponseError, ProviderError, TransientProviderError

logger = logging.getLogger(__name__)


class TextGenerationProvider(Protocol):
    """Narrow contract the enricher needs from an LLM backend."""

    name: str

    def complete(self, system: str, prompt: str, *, temperature: float, max_tokens: int) -> str:
        """Return the raw text of a single completion."""
        ...


class OpenAIProvider:
    """Chat-completions client returning the first choice as text."""

    name = "openai"

    def __init__(self, api_key: str, model: str = "gpt-4o-mini", client: OpenAI | None = None) -> None:
        # retries are owned by providers.retry, not the SDK
        self._client = client or OpenAI(api_key=api_key, max_retries=0, timeout=60.0)
        self._model = model

    def complete(self, system: str, prompt: str, *, temperature: float, max_tokens: int) -> str:
        try:
            response = self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
                response_format={"type": "json_object"},
            )
        except (openai.APIConnectionError, openai.RateLimitError, openai.InternalServerError) as exc:
            raise TransientProviderError(self.name, str(exc)) from exc
        except openai.APIStatusError as exc:
            raise ProviderError(self.name, f"status {exc.status_code}: {exc.message}") from exc
        except openai.OpenAIError as exc:
            raise ProviderError(self.name, f"{type(exc).__name__}: {exc}") from exc

        if not response.choices:
            raise MalformedResponseError(self.name, "response contained no choices")
        content = response.choices[0].message.content
        if not content:
            raise MalformedResponseError(self.name, "empty completion")
        logger.debug("openai completion received (%d chars)", len(content))
        return content
