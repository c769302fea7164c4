"""Tests for BatchScheduler — the enrichment pass is mocked, sleeps are recorded."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import make_email

from inbox_enrich.pipeline.scheduler import (
    BatchScheduler,
    EnrichedEmail,
    WorkingSet,
    chunked,
    merge_results,
)
from inbox_enrich.processing.types import (
    Category,
    Classification,
    EnrichmentOutcome,
    EnrichmentRequest,
    FailureKind,
    InboundEmail,
    LabelResult,
    OutcomeStatus,
    ValidationError,
)


# ── Helpers ────────────────────────────────────────────────────────────────────


def classified(email_id: str, labels: frozenset[str] = frozenset()) -> Classification:
    return Classification(
        id=email_id,
        category=Category.GENERAL,
        summary=f"Summary of {email_id}",
        requires_reply=False,
        applied_labels=labels,
    )


def echo_service(*overrides: object) -> MagicMock:
    """Mock pass that classifies every email in the chunk it is given.

    ``overrides`` are consumed per call: an exception is raised, an outcome
    is returned as-is, ``None`` falls through to the echo behaviour.
    """
    queue = list(overrides)

    async def _enrich(
        emails: list[InboundEmail], request: EnrichmentRequest
    ) -> EnrichmentOutcome[Classification]:
        override = queue.pop(0) if queue else None
        if isinstance(override, BaseException):
            raise override
        if isinstance(override, EnrichmentOutcome):
            return override
        return EnrichmentOutcome.fresh([classified(e.id) for e in emails])

    service = MagicMock()
    service.enrich = AsyncMock(side_effect=_enrich)
    return service


def emails(n: int) -> list[InboundEmail]:
    return [make_email(f"msg_{i}") for i in range(n)]


def no_sleep(scheduler: BatchScheduler) -> AsyncMock:
    sleep = AsyncMock()
    scheduler._interruptible_sleep = sleep  # type: ignore[method-assign]
    return sleep


# ── chunked ────────────────────────────────────────────────────────────────────


class TestChunked:
    def test_splits_with_short_tail(self) -> None:
        assert [len(c) for c in chunked(list(range(25)), 10)] == [10, 10, 5]

    def test_exact_multiple(self) -> None:
        assert [len(c) for c in chunked(list(range(20)), 10)] == [10, 10]

    def test_empty(self) -> None:
        assert chunked([], 10) == []

    def test_preserves_order(self) -> None:
        assert chunked([1, 2, 3], 2) == [[1, 2], [3]]

    def test_rejects_non_positive_size(self) -> None:
        with pytest.raises(ValueError):
            chunked([1], 0)


# ── Dispatch ───────────────────────────────────────────────────────────────────


class TestRun:
    async def test_twenty_five_emails_three_chunks_two_pauses(
        self, request_ctx: EnrichmentRequest
    ) -> None:
        scheduler = BatchScheduler(chunk_size=10, delay_seconds=2.0)
        sleep = no_sleep(scheduler)
        service = echo_service()
        working_set: WorkingSet = {}

        report = await scheduler.run(emails(25), service, request_ctx, working_set)

        sizes = [len(c.args[0]) for c in service.enrich.await_args_list]
        assert sizes == [10, 10, 5]
        assert sleep.await_count == 2
        sleep.assert_awaited_with(2.0)
        assert len(working_set) == 25
        assert report.merged == 25
        assert report.cancelled is False

    async def test_chunks_are_contiguous_and_ordered(
        self, request_ctx: EnrichmentRequest
    ) -> None:
        scheduler = BatchScheduler(chunk_size=2)
        no_sleep(scheduler)
        service = echo_service()

        await scheduler.run(emails(5), service, request_ctx)

        ids = [[e.id for e in c.args[0]] for c in service.enrich.await_args_list]
        assert ids == [["msg_0", "msg_1"], ["msg_2", "msg_3"], ["msg_4"]]

    async def test_single_chunk_does_not_pause(self, request_ctx: EnrichmentRequest) -> None:
        scheduler = BatchScheduler(chunk_size=10)
        sleep = no_sleep(scheduler)
        await scheduler.run(emails(3), echo_service(), request_ctx)
        sleep.assert_not_awaited()

    async def test_empty_input_makes_no_calls(self, request_ctx: EnrichmentRequest) -> None:
        scheduler = BatchScheduler()
        service = echo_service()
        report = await scheduler.run([], service, request_ctx)
        service.enrich.assert_not_awaited()
        assert report.chunks == []

    async def test_calls_never_overlap(self, request_ctx: EnrichmentRequest) -> None:
        scheduler = BatchScheduler(chunk_size=1)
        no_sleep(scheduler)
        in_flight = 0
        peak = 0

        async def _enrich(chunk: list[InboundEmail], request: EnrichmentRequest):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0)
            in_flight -= 1
            return EnrichmentOutcome.fresh([classified(e.id) for e in chunk])

        service = MagicMock()
        service.enrich = AsyncMock(side_effect=_enrich)
        await scheduler.run(emails(4), service, request_ctx)
        assert peak == 1

    async def test_invalid_request_raises_before_any_chunk(self) -> None:
        scheduler = BatchScheduler()
        service = echo_service()
        with pytest.raises(ValidationError):
            await scheduler.run(
                emails(3), service, EnrichmentRequest(credential="", user_email="me@example.com")
            )
        service.enrich.assert_not_awaited()

    def test_rejects_non_positive_chunk_size(self) -> None:
        with pytest.raises(ValueError):
            BatchScheduler(chunk_size=0)


# ── Failure isolation ──────────────────────────────────────────────────────────


class TestFailureIsolation:
    async def test_rate_limited_chunk_skipped_others_merged(
        self, request_ctx: EnrichmentRequest
    ) -> None:
        scheduler = BatchScheduler(chunk_size=10)
        sleep = no_sleep(scheduler)
        service = echo_service(
            None, EnrichmentOutcome.failed(FailureKind.RATE_LIMITED, "429")
        )
        working_set: WorkingSet = {}

        report = await scheduler.run(emails(25), service, request_ctx, working_set)

        assert service.enrich.await_count == 3
        assert sleep.await_count == 2
        assert set(working_set) == {f"msg_{i}" for i in list(range(10)) + list(range(20, 25))}
        assert [c.status for c in report.chunks] == [
            OutcomeStatus.FRESH, OutcomeStatus.FAILED, OutcomeStatus.FRESH
        ]
        assert report.failed_chunks[0].failure is FailureKind.RATE_LIMITED

    async def test_unexpected_exception_contained(self, request_ctx: EnrichmentRequest) -> None:
        scheduler = BatchScheduler(chunk_size=2)
        no_sleep(scheduler)
        service = echo_service(RuntimeError("kaboom"))
        working_set: WorkingSet = {}

        report = await scheduler.run(emails(4), service, request_ctx, working_set)

        assert set(working_set) == {"msg_2", "msg_3"}
        assert report.chunks[0].status is OutcomeStatus.FAILED
        assert report.chunks[0].failure is FailureKind.PROVIDER

    async def test_cached_fallback_merged(self, request_ctx: EnrichmentRequest) -> None:
        scheduler = BatchScheduler(chunk_size=5)
        no_sleep(scheduler)
        service = echo_service(
            EnrichmentOutcome.fallback([classified("msg_1")], FailureKind.PARSE, "bad")
        )
        working_set: WorkingSet = {}

        report = await scheduler.run(emails(3), service, request_ctx, working_set)

        assert set(working_set) == {"msg_1"}
        assert report.chunks[0].status is OutcomeStatus.CACHED_FALLBACK
        assert report.failed_chunks == []

    async def test_validation_error_from_pass_propagates(
        self, request_ctx: EnrichmentRequest
    ) -> None:
        scheduler = BatchScheduler(chunk_size=1)
        no_sleep(scheduler)
        service = echo_service(ValidationError("Unknown provider 'x'"))

        with pytest.raises(ValidationError):
            await scheduler.run(emails(3), service, request_ctx)
        assert service.enrich.await_count == 1

    async def test_all_chunks_failing_returns_empty(self, request_ctx: EnrichmentRequest) -> None:
        scheduler = BatchScheduler(chunk_size=1)
        no_sleep(scheduler)
        failure = EnrichmentOutcome.failed(FailureKind.TIMEOUT, "late")
        service = echo_service(failure, failure)
        working_set: WorkingSet = {}

        report = await scheduler.run(emails(2), service, request_ctx, working_set)

        assert working_set == {}
        assert len(report.failed_chunks) == 2


# ── Cancellation ───────────────────────────────────────────────────────────────


class TestCancellation:
    async def test_cancel_stops_before_next_chunk(self, request_ctx: EnrichmentRequest) -> None:
        scheduler = BatchScheduler(chunk_size=1)
        no_sleep(scheduler)

        async def _enrich(chunk: list[InboundEmail], request: EnrichmentRequest):
            scheduler.cancel()
            return EnrichmentOutcome.fresh([classified(e.id) for e in chunk])

        service = MagicMock()
        service.enrich = AsyncMock(side_effect=_enrich)
        working_set: WorkingSet = {}

        report = await scheduler.run(emails(3), service, request_ctx, working_set)

        assert service.enrich.await_count == 1
        assert report.cancelled is True
        assert set(working_set) == {"msg_0"}

    async def test_cancel_cuts_pause_short(self) -> None:
        scheduler = BatchScheduler(delay_seconds=30.0)
        loop = asyncio.get_running_loop()
        loop.call_later(0.01, scheduler.cancel)
        started = loop.time()
        await scheduler._interruptible_sleep(30.0)
        assert loop.time() - started < 5.0
        assert scheduler.cancelled

    async def test_pause_elapses_without_cancel(self) -> None:
        scheduler = BatchScheduler()
        await scheduler._interruptible_sleep(0.01)
        assert not scheduler.cancelled


# ── Merging ────────────────────────────────────────────────────────────────────


class TestMergeResults:
    def test_ignores_ids_outside_chunk(self) -> None:
        working_set: WorkingSet = {}
        merged = merge_results(
            [make_email("a")], [classified("a"), classified("intruder")], working_set
        )
        assert merged == 1
        assert set(working_set) == {"a"}

    def test_classification_then_labels_accumulate(self) -> None:
        working_set: WorkingSet = {}
        merge_results([make_email("a")], [classified("a", frozenset({"X"}))], working_set)
        merge_results([make_email("a")], [LabelResult("a", frozenset({"Y"}))], working_set)

        enriched = working_set["a"]
        assert enriched.classification is not None
        assert enriched.classification.summary == "Summary of a"
        assert enriched.applied_labels == {"X", "Y"}

    def test_label_result_does_not_clear_classification(self) -> None:
        enriched = EnrichedEmail("a", classification=classified("a"))
        enriched.apply(LabelResult("a"))
        assert enriched.classification is not None
