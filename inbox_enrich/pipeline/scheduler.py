"""Batch scheduler — feeds fixed-size chunks to an enrichment pass, one at a time."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeVar, runtime_checkable

from inbox_enrich.processing.types import (
    Classification,
    EnrichmentOutcome,
    EnrichmentRequest,
    FailureKind,
    InboundEmail,
    LabelResult,
    OutcomeStatus,
    ValidationError,
)

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 10
DEFAULT_CHUNK_DELAY_SECONDS = 2.0

T = TypeVar("T")


# ── Pass interface ─────────────────────────────────────────────────────────────


@runtime_checkable
class EnrichmentPass(Protocol):
    """Interface shared by EnrichmentService and TaskExtractionService."""

    async def enrich(
        self,
        emails: Sequence[InboundEmail],
        request: EnrichmentRequest,
    ) -> EnrichmentOutcome[Any]:
        ...


# ── Working set ────────────────────────────────────────────────────────────────


@dataclass
class EnrichedEmail:
    """The caller's view of one email as passes complete.

    ``classification`` None means "not yet enriched", not "confirmed empty".
    """

    id: str
    classification: Classification | None = None
    applied_labels: set[str] = field(default_factory=set)

    def apply(self, result: Classification | LabelResult) -> None:
        if isinstance(result, Classification):
            self.classification = result
        self.applied_labels |= result.applied_labels


WorkingSet = dict[str, EnrichedEmail]


@dataclass(frozen=True)
class ChunkReport:
    index: int
    size: int
    status: OutcomeStatus
    failure: FailureKind | None = None
    merged: int = 0


@dataclass
class BatchReport:
    """What happened to each chunk of one scheduler run."""

    chunks: list[ChunkReport] = field(default_factory=list)
    cancelled: bool = False

    @property
    def merged(self) -> int:
        return sum(c.merged for c in self.chunks)

    @property
    def failed_chunks(self) -> list[ChunkReport]:
        return [c for c in self.chunks if c.status is OutcomeStatus.FAILED]


def chunked(items: Sequence[T], size: int) -> list[list[T]]:
    """Split ``items`` into contiguous chunks of at most ``size``."""
    if size < 1:
        raise ValueError(f"chunk size must be positive, got {size}")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


# ── Scheduler ──────────────────────────────────────────────────────────────────


class BatchScheduler:
    """Dispatches chunks strictly sequentially with a pause between them.

    The pause is crude admission control against the provider's request-rate
    ceiling. A chunk that fails (rate limit, timeout, provider or parse error,
    or an unexpected exception) is logged and skipped, never retried, and
    never raised: the caller gets whatever the other chunks produced. A
    ValidationError is the exception, since every chunk would fail alike.

    ``cancel()`` stops the run before the next chunk and cuts the current
    pause short.

    Usage::

        scheduler = BatchScheduler()
        working_set: WorkingSet = {}
        report = await scheduler.run(emails, classifier, request, working_set)
    """

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        delay_seconds: float = DEFAULT_CHUNK_DELAY_SECONDS,
    ) -> None:
        if chunk_size < 1:
            raise ValueError(f"chunk size must be positive, got {chunk_size}")
        self._chunk_size = chunk_size
        self._delay = delay_seconds
        self._stop_event = asyncio.Event()

    def cancel(self) -> None:
        """Signal the scheduler to stop after the in-flight chunk."""
        logger.info("Batch cancellation requested")
        self._stop_event.set()

    @property
    def cancelled(self) -> bool:
        return self._stop_event.is_set()

    async def run(
        self,
        emails: Sequence[InboundEmail],
        service: EnrichmentPass,
        request: EnrichmentRequest,
        working_set: WorkingSet | None = None,
    ) -> BatchReport:
        """Enrich ``emails`` chunk by chunk, folding results into ``working_set``.

        Raises:
            ValidationError: up front if the request can never succeed, or from
                the first chunk if the pass rejects the request itself.
        """
        request.validate()
        if working_set is None:
            working_set = {}
        report = BatchReport()
        chunks = chunked(emails, self._chunk_size)

        for index, chunk in enumerate(chunks):
            if self._stop_event.is_set():
                report.cancelled = True
                break
            report.chunks.append(await self._dispatch(index, chunk, service, request, working_set))
            if index < len(chunks) - 1:
                await self._interruptible_sleep(self._delay)

        logger.info(
            "Batch finished: %d/%d chunk(s) run, %d failed, %d result(s) merged%s",
            len(report.chunks),
            len(chunks),
            len(report.failed_chunks),
            report.merged,
            " (cancelled)" if report.cancelled else "",
        )
        return report

    # ── Internal ───────────────────────────────────────────────────────────────

    async def _dispatch(
        self,
        index: int,
        chunk: list[InboundEmail],
        service: EnrichmentPass,
        request: EnrichmentRequest,
        working_set: WorkingSet,
    ) -> ChunkReport:
        """Run one chunk and merge its results.

        Only cancellation and request-level ValidationError propagate.
        """
        try:
            outcome = await service.enrich(chunk, request)
        except (asyncio.CancelledError, ValidationError):
            raise
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "Chunk %d (%d emails) failed unexpectedly: %s",
                index,
                len(chunk),
                exc,
                exc_info=True,
            )
            return ChunkReport(index, len(chunk), OutcomeStatus.FAILED, FailureKind.PROVIDER)

        if outcome.status is OutcomeStatus.FAILED:
            if outcome.failure is FailureKind.RATE_LIMITED:
                logger.warning("Chunk %d rate limited; skipping to the next chunk", index)
            else:
                logger.error(
                    "Chunk %d failed (%s): %s",
                    index,
                    outcome.failure.value if outcome.failure else "unknown",
                    outcome.message,
                )
            return ChunkReport(index, len(chunk), outcome.status, outcome.failure)

        merged = merge_results(chunk, outcome.results, working_set)
        if outcome.status is OutcomeStatus.CACHED_FALLBACK:
            logger.warning(
                "Chunk %d served from cache only (%s): %s",
                index,
                outcome.failure.value if outcome.failure else "unknown",
                outcome.message,
            )
        else:
            logger.info("Chunk %d: %d/%d email(s) enriched", index, merged, len(chunk))
        return ChunkReport(index, len(chunk), outcome.status, outcome.failure, merged)

    async def _interruptible_sleep(self, seconds: float) -> None:
        """Sleep for `seconds` but wake immediately if cancel() is called."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass


def merge_results(
    chunk: Sequence[InboundEmail],
    results: Sequence[Classification | LabelResult],
    working_set: WorkingSet,
) -> int:
    """Fold results into ``working_set`` by id; ids outside ``chunk`` are ignored."""
    chunk_ids = {e.id for e in chunk}
    merged = 0
    for result in results:
        if result.id not in chunk_ids:
            continue
        working_set.setdefault(result.id, EnrichedEmail(result.id)).apply(result)
        merged += 1
    return merged
