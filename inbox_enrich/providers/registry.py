"""Provider lookup by name, so each request can pick its backing model."""

from __future__ import annotations

from collections.abc import Iterable

from inbox_enrich.processing.types import FailureKind, ValidationError
from inbox_enrich.providers.base import AIProvider


class ProviderRegistry:
    """Maps provider names (``request.provider``) to adapter instances."""

    def __init__(self, providers: Iterable[AIProvider] = ()) -> None:
        self._providers: dict[str, AIProvider] = {}
        for provider in providers:
            self.register(provider)

    def register(self, provider: AIProvider) -> None:
        self._providers[provider.name] = provider

    def names(self) -> list[str]:
        return sorted(self._providers)

    def get(self, name: str) -> AIProvider:
        """Return the adapter for ``name`` or raise ValidationError."""
        try:
            return self._providers[name]
        except KeyError:
            raise ValidationError(
                f"Unknown provider {name!r}; expected one of {self.names()}",
                FailureKind.INVALID_REQUEST,
            ) from None


def default_registry(
    anthropic_model: str | None = None,
    openai_model: str | None = None,
    max_tokens: int | None = None,
) -> ProviderRegistry:
    """Registry with the Anthropic and OpenAI adapters."""
    from inbox_enrich.providers import anthropic_provider, openai_provider

    return ProviderRegistry([
        anthropic_provider.AnthropicProvider(
            model=anthropic_model or anthropic_provider.DEFAULT_MODEL,
            max_tokens=max_tokens or anthropic_provider.DEFAULT_MAX_TOKENS,
        ),
        openai_provider.OpenAIProvider(
            model=openai_model or openai_provider.DEFAULT_MODEL,
            max_tokens=max_tokens or openai_provider.DEFAULT_MAX_TOKENS,
        ),
    ])
