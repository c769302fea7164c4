"""Classify pass — category, summary and reply draft per email, cache-first."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import replace

from inbox_enrich.processing.contract import (
    ParseError,
    coerce_classification,
    parse_response_array,
)
from inbox_enrich.processing.prompts import build_classify_prompt
from inbox_enrich.processing.types import (
    Category,
    Classification,
    EnrichmentOutcome,
    EnrichmentRequest,
    FailureKind,
    InboundEmail,
)
from inbox_enrich.providers.base import (
    GenerateOptions,
    ProviderError,
    ProviderRateLimit,
    ProviderTimeout,
)
from inbox_enrich.providers.registry import ProviderRegistry
from inbox_enrich.storage.cache import EnrichmentCache
from inbox_enrich.storage.models import CacheRecord

logger = logging.getLogger(__name__)

CLASSIFY_TIMEOUT_SECONDS = 20.0


def _from_record(record: CacheRecord) -> Classification:
    return Classification(
        id=record.email_id,
        category=Category.parse(record.category) or Category.GENERAL,
        summary=record.summary,
        requires_reply=record.requires_reply,
        draft_reply=record.draft_reply,
        applied_labels=record.applied_labels,
    )


class EnrichmentService:
    """Runs one classify pass over a batch.

    Only emails without a stored classification reach the provider; the rest
    are answered from the cache. Provider output is persisted only after it
    has parsed as a whole, so a bad response never leaves partial records.

    Usage::

        service = EnrichmentService(cache, registry)
        outcome = await service.enrich(emails, request)
    """

    def __init__(
        self,
        cache: EnrichmentCache,
        providers: ProviderRegistry,
        timeout: float = CLASSIFY_TIMEOUT_SECONDS,
    ) -> None:
        self._cache = cache
        self._providers = providers
        self._timeout = timeout

    async def enrich(
        self,
        emails: Sequence[InboundEmail],
        request: EnrichmentRequest,
    ) -> EnrichmentOutcome[Classification]:
        """Classify ``emails`` for ``request.user_email``.

        Raises:
            ValidationError: missing credential, user email or unknown provider.
        """
        request.validate()
        provider = self._providers.get(request.provider)
        if not emails:
            return EnrichmentOutcome.fresh([])

        records = self._cache.get_many((e.id for e in emails), request.user_email)
        cached = [_from_record(r) for r in records.values() if r.is_classified]
        cached_ids = {c.id for c in cached}
        uncached = list({e.id: e for e in emails if e.id not in cached_ids}.values())
        logger.debug(
            "classify user=%s cached=%d uncached=%d",
            request.user_email,
            len(cached),
            len(uncached),
        )
        if not uncached:
            return EnrichmentOutcome.fresh(cached)

        prompt = build_classify_prompt(uncached, request.custom_labels)
        try:
            text = await provider.generate(
                prompt,
                request.credential,
                GenerateOptions(timeout=self._timeout, json_response=True),
            )
        except ProviderRateLimit as exc:
            logger.warning("Classify rate limited (%s): %s", provider.name, exc)
            return EnrichmentOutcome.failed(FailureKind.RATE_LIMITED, str(exc))
        except ProviderTimeout as exc:
            logger.error("Classify timed out (%s): %s", provider.name, exc)
            return EnrichmentOutcome.failed(FailureKind.TIMEOUT, str(exc))
        except ProviderError as exc:
            logger.error("Classify provider error (%s): %s", provider.name, exc)
            return EnrichmentOutcome.failed(FailureKind.PROVIDER, str(exc))

        try:
            entries = parse_response_array(text, expected_count=len(uncached))
        except ParseError as exc:
            logger.error("Classify response unparseable: %s — raw: %r", exc, exc.excerpt)
            if cached:
                return EnrichmentOutcome.fallback(cached, FailureKind.PARSE, str(exc))
            return EnrichmentOutcome.failed(FailureKind.PARSE, str(exc))

        wanted = {e.id for e in uncached}
        fresh: dict[str, Classification] = {}
        for entry in entries:
            classification = coerce_classification(entry)
            if classification is None:
                continue
            if classification.id not in wanted:
                logger.warning("Ignoring classify entry for unrequested id %r", classification.id)
                continue
            known = records.get(classification.id)
            if known is not None:
                # Report the stored union, not just this response's labels.
                classification = replace(
                    classification,
                    applied_labels=classification.applied_labels | known.applied_labels,
                )
            fresh[classification.id] = classification

        self._cache.upsert_classifications(request.user_email, list(fresh.values()))
        missing = wanted - fresh.keys()
        if missing:
            logger.info("Classify left %d email(s) un-enriched: %s", len(missing), sorted(missing))
        return EnrichmentOutcome.fresh(cached + list(fresh.values()))
