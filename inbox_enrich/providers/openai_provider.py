"""OpenAI-backed provider adapter."""

from __future__ import annotations

import logging

import openai
from openai import AsyncOpenAI

from inbox_enrich.providers.base import (
    JSON_SYSTEM_PROMPT,
    ClientCache,
    GenerateOptions,
    ProviderError,
    ProviderRateLimit,
    ProviderTimeout,
    with_deadline,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4.1-mini"
DEFAULT_MAX_TOKENS = 4096


class OpenAIProvider:
    """Chat-completions adapter with the same error mapping as AnthropicProvider.

    ``response_format`` is not used for JSON requests: JSON mode only
    produces objects, and both passes expect a top-level array.
    """

    name = "openai"

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        base_url: str | None = None,
    ) -> None:
        self._model = model
        self._max_tokens = max_tokens
        self._clients: ClientCache[AsyncOpenAI] = ClientCache(
            lambda key: AsyncOpenAI(api_key=key, base_url=base_url, max_retries=0)
        )

    def _client_for(self, credential: str) -> AsyncOpenAI:
        return self._clients.get(credential)

    async def generate(
        self,
        prompt: str,
        credential: str,
        options: GenerateOptions = GenerateOptions(),
    ) -> str:
        client = self._client_for(credential)
        messages: list[dict[str, str]] = []
        if options.json_response:
            messages.append({"role": "system", "content": JSON_SYSTEM_PROMPT})
        messages.append({"role": "user", "content": prompt})

        try:
            response = await with_deadline(
                client.chat.completions.create(
                    model=self._model,
                    messages=messages,  # type: ignore[arg-type]
                    max_tokens=self._max_tokens,
                ),
                options.timeout,
            )
        except openai.RateLimitError as exc:
            raise ProviderRateLimit(str(exc)) from exc
        except openai.APITimeoutError as exc:
            raise ProviderTimeout(str(exc)) from exc
        except openai.APIStatusError as exc:
            if exc.status_code == 429:
                raise ProviderRateLimit(str(exc)) from exc
            raise ProviderError(f"OpenAI returned {exc.status_code}: {exc}") from exc
        except openai.APIError as exc:
            raise ProviderError(str(exc)) from exc

        if not response.choices:
            raise ProviderError(f"OpenAI returned no choices (model={self._model})")
        text = response.choices[0].message.content or ""
        logger.debug("openai model=%s chars=%d", self._model, len(text))
        return text
