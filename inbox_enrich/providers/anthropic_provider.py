"""Anthropic-backed provider adapter."""

from __future__ import annotations

import logging

import anthropic
from anthropic import AsyncAnthropic

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

# Haiku: fast and cheap enough to run over every chunk of an inbox.
DEFAULT_MODEL = "claude-haiku-4-5-20251001"
DEFAULT_MAX_TOKENS = 4096


class AnthropicProvider:
    """Sends a prompt to Claude and returns the concatenated text blocks.

    SDK retries are disabled: the batch scheduler owns pacing, and a 429 has
    to reach it as ProviderRateLimit rather than be retried silently.

    Usage::

        provider = AnthropicProvider()
        text = await provider.generate(prompt, api_key, GenerateOptions(timeout=20))
    """

    name = "anthropic"

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ) -> None:
        self._model = model
        self._max_tokens = max_tokens
        self._clients: ClientCache[AsyncAnthropic] = ClientCache(
            lambda key: AsyncAnthropic(api_key=key, max_retries=0)
        )

    def _client_for(self, credential: str) -> AsyncAnthropic:
        return self._clients.get(credential)

    async def generate(
        self,
        prompt: str,
        credential: str,
        options: GenerateOptions = GenerateOptions(),
    ) -> str:
        client = self._client_for(credential)
        kwargs: dict[str, object] = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if options.json_response:
            kwargs["system"] = JSON_SYSTEM_PROMPT

        try:
            response = await with_deadline(
                client.messages.create(**kwargs),  # type: ignore[call-overload]
                options.timeout,
            )
        except anthropic.RateLimitError as exc:
            raise ProviderRateLimit(str(exc)) from exc
        except anthropic.APITimeoutError as exc:
            raise ProviderTimeout(str(exc)) from exc
        except anthropic.APIStatusError as exc:
            if exc.status_code == 429:
                raise ProviderRateLimit(str(exc)) from exc
            raise ProviderError(f"Anthropic returned {exc.status_code}: {exc}") from exc
        except anthropic.APIError as exc:
            raise ProviderError(str(exc)) from exc

        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        logger.debug(
            "anthropic model=%s stop_reason=%s chars=%d",
            self._model,
            response.stop_reason,
            len(text),
        )
        return text
