"""Runtime — wires storage, providers and services from an EnrichmentConfig."""

from __future__ import annotations

from inbox_enrich.config import EnrichmentConfig
from inbox_enrich.pipeline.scheduler import BatchScheduler
from inbox_enrich.processing.classifier import EnrichmentService
from inbox_enrich.processing.extractor import TaskExtractionService
from inbox_enrich.providers.registry import ProviderRegistry, default_registry
from inbox_enrich.storage.cache import EnrichmentCache
from inbox_enrich.storage.db import EnrichmentDatabase
from inbox_enrich.storage.tasks import TaskStore


class Runtime:
    """Owns the database and the two services built on top of it.

    The stores and services are public attributes so commands can reach the
    task list directly without building duplicates.

    Usage::

        runtime = Runtime(EnrichmentConfig.from_env())
        report = await runtime.scheduler().run(emails, runtime.classifier, request)
        runtime.close()
    """

    def __init__(
        self,
        config: EnrichmentConfig,
        providers: ProviderRegistry | None = None,
    ) -> None:
        self.config = config
        self.db = EnrichmentDatabase(config.db_path)
        self.cache = EnrichmentCache(self.db)
        self.tasks = TaskStore(self.db)
        self.providers = providers or default_registry(
            anthropic_model=config.anthropic_model,
            openai_model=config.openai_model,
            max_tokens=config.max_tokens,
        )
        self.classifier = EnrichmentService(
            self.cache, self.providers, timeout=config.classify_timeout_seconds
        )
        self.extractor = TaskExtractionService(self.db, self.cache, self.tasks, self.providers)

    def scheduler(self) -> BatchScheduler:
        """Return a fresh scheduler; each one has its own cancellation scope."""
        return BatchScheduler(
            chunk_size=self.config.chunk_size,
            delay_seconds=self.config.chunk_delay_seconds,
        )

    def close(self) -> None:
        """Release the database connection."""
        self.db.close()
