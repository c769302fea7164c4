"""AI provider adapter contract: prompt in, text out."""

from __future__ import annotations

import asyncio
import hashlib
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, Protocol, TypeVar, runtime_checkable

T = TypeVar("T")
C = TypeVar("C")

#: SDK clients kept alive per adapter; the least recently used is dropped past this.
MAX_CACHED_CLIENTS = 32

#: System instruction sent when a caller asks for JSON-only output.
JSON_SYSTEM_PROMPT = (
    "You are a helpful assistant that returns structured data. "
    "Always respond with valid JSON only."
)


class ProviderError(Exception):
    """Any provider failure; the message is preserved for diagnostics."""


class ProviderTimeout(ProviderError):
    """The caller's deadline elapsed before the provider answered."""


class ProviderRateLimit(ProviderError):
    """The provider signalled HTTP 429 or an equivalent quota error."""


@dataclass(frozen=True)
class GenerateOptions:
    """Per-call knobs. ``timeout=None`` leaves the SDK default in place."""

    timeout: float | None = None
    json_response: bool = False


@runtime_checkable
class AIProvider(Protocol):
    """Interface every backing model implements."""

    name: str

    async def generate(
        self,
        prompt: str,
        credential: str,
        options: GenerateOptions = GenerateOptions(),
    ) -> str:
        """Return the model's raw text for ``prompt``.

        Raises:
            ProviderTimeout, ProviderRateLimit, ProviderError
        """
        ...


class ClientCache(Generic[C]):
    """Bounded LRU of SDK clients keyed by a digest of the credential.

    The plaintext key is only ever held by the client object itself.
    """

    def __init__(self, factory: Callable[[str], C], max_size: int = MAX_CACHED_CLIENTS) -> None:
        if max_size < 1:
            raise ValueError("max_size must be positive")
        self._factory = factory
        self._max_size = max_size
        self._clients: OrderedDict[str, C] = OrderedDict()

    def __len__(self) -> int:
        return len(self._clients)

    def get(self, credential: str) -> C:
        key = hashlib.sha256(credential.encode()).hexdigest()
        client = self._clients.get(key)
        if client is None:
            client = self._factory(credential)
            self._clients[key] = client
            if len(self._clients) > self._max_size:
                self._clients.popitem(last=False)
        else:
            self._clients.move_to_end(key)
        return client


async def with_deadline(call: Awaitable[T], timeout: float | None) -> T:
    """Await ``call``, cancelling it once ``timeout`` seconds have elapsed.

    A cancelled call's result is never observed by the caller.
    """
    if timeout is None:
        return await call
    try:
        return await asyncio.wait_for(call, timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise ProviderTimeout(f"Provider did not answer within {timeout:g}s") from exc
