"""Task-extraction pass — action items and smart labels, at most once per email."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime

from inbox_enrich.processing.contract import (
    ParseError,
    coerce_extraction,
    parse_response_array,
)
from inbox_enrich.processing.prompts import build_extraction_prompt
from inbox_enrich.processing.types import (
    EnrichmentOutcome,
    EnrichmentRequest,
    Extraction,
    FailureKind,
    InboundEmail,
    LabelResult,
)
from inbox_enrich.providers.base import (
    GenerateOptions,
    ProviderError,
    ProviderRateLimit,
    ProviderTimeout,
)
from inbox_enrich.providers.registry import ProviderRegistry
from inbox_enrich.storage.cache import EnrichmentCache
from inbox_enrich.storage.db import EnrichmentDatabase
from inbox_enrich.storage.models import TaskRecord
from inbox_enrich.storage.tasks import TaskStore

logger = logging.getLogger(__name__)


def _local_now() -> datetime:
    return datetime.now().astimezone()


class TaskExtractionService:
    """Runs one extract-tasks-and-labels pass over a batch.

    Dedup is by the ``tasks_extracted`` flag rather than record existence: an
    email classified earlier still gets one extraction. Tasks for an email are
    appended only when

      1. this call is the one that flipped its flag (conditional update), and
      2. the user's task list had no task for it when the call started.

    Labels are unioned on every pass regardless.

    Usage::

        service = TaskExtractionService(db, cache, tasks, registry)
        outcome = await service.enrich(emails, request)
    """

    def __init__(
        self,
        db: EnrichmentDatabase,
        cache: EnrichmentCache,
        tasks: TaskStore,
        providers: ProviderRegistry,
        clock: Callable[[], datetime] = _local_now,
    ) -> None:
        self._db = db
        self._cache = cache
        self._tasks = tasks
        self._providers = providers
        self._clock = clock

    async def enrich(
        self,
        emails: Sequence[InboundEmail],
        request: EnrichmentRequest,
    ) -> EnrichmentOutcome[LabelResult]:
        """Extract tasks and labels for ``emails``; tasks are persisted, not returned.

        Raises:
            ValidationError: missing credential, user email or unknown provider.
        """
        request.validate()
        provider = self._providers.get(request.provider)
        if not emails:
            return EnrichmentOutcome.fresh([])

        records = self._cache.get_many((e.id for e in emails), request.user_email)
        already_done = [
            LabelResult(id=r.email_id, applied_labels=r.applied_labels)
            for r in records.values()
            if r.tasks_extracted
        ]
        done_ids = {r.id for r in already_done}
        to_process = list({e.id: e for e in emails if e.id not in done_ids}.values())
        logger.debug(
            "extract user=%s already_done=%d to_process=%d",
            request.user_email,
            len(already_done),
            len(to_process),
        )
        if not to_process:
            return EnrichmentOutcome.fresh(already_done)

        # Loaded once, before the provider call, as the second duplicate guard.
        emails_with_tasks = self._tasks.email_ids_with_tasks(request.user_email)

        prompt = build_extraction_prompt(to_process, request.custom_labels, self._clock())
        try:
            text = await provider.generate(
                prompt, request.credential, GenerateOptions(json_response=True)
            )
        except ProviderRateLimit as exc:
            logger.warning("Extraction rate limited (%s): %s", provider.name, exc)
            return EnrichmentOutcome.failed(FailureKind.RATE_LIMITED, str(exc))
        except ProviderTimeout as exc:
            logger.error("Extraction timed out (%s): %s", provider.name, exc)
            return EnrichmentOutcome.failed(FailureKind.TIMEOUT, str(exc))
        except ProviderError as exc:
            logger.error("Extraction provider error (%s): %s", provider.name, exc)
            return EnrichmentOutcome.failed(FailureKind.PROVIDER, str(exc))

        try:
            entries = parse_response_array(text, expected_count=len(to_process))
        except ParseError as exc:
            logger.error("Extraction response unparseable: %s — raw: %r", exc, exc.excerpt)
            return EnrichmentOutcome.fallback(already_done, FailureKind.PARSE, str(exc))

        wanted = {e.id for e in to_process}
        extractions: dict[str, Extraction] = {}
        for entry in entries:
            extraction = coerce_extraction(entry)
            if extraction is None:
                continue
            if extraction.id not in wanted:
                logger.warning("Ignoring extraction entry for unrequested id %r", extraction.id)
                continue
            extractions[extraction.id] = extraction

        new_tasks = self._persist(
            request.user_email, list(extractions.values()), emails_with_tasks
        )
        logger.info(
            "Extraction for %s: %d email(s) processed, %d task(s) created",
            request.user_email,
            len(extractions),
            len(new_tasks),
        )
        return EnrichmentOutcome.fresh(
            already_done
            + [LabelResult(id=x.id, applied_labels=x.applied_labels) for x in extractions.values()]
        )

    def _persist(
        self,
        user_email: str,
        extractions: Iterable[Extraction],
        emails_with_tasks: set[str],
    ) -> list[TaskRecord]:
        """Claim, label and append tasks for every extraction in one transaction."""
        new_tasks: list[TaskRecord] = []
        with self._db.transaction():
            for extraction in extractions:
                claimed = self._cache.claim_extraction(
                    extraction.id, user_email, extraction.applied_labels
                )
                if not claimed:
                    logger.info(
                        "Email %s was extracted by a concurrent call; skipping its tasks",
                        extraction.id,
                    )
                    continue
                if not extraction.tasks:
                    continue
                if extraction.id in emails_with_tasks:
                    logger.info("Email %s already has tasks; not adding more", extraction.id)
                    continue
                new_tasks.extend(self._tasks.build(user_email, extraction.id, extraction.tasks))
            self._tasks.append(new_tasks)
        return new_tasks
