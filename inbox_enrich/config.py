"""Runtime settings read from the environment (after load_dotenv)."""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)


def _env_number(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        value = math.nan
    if not math.isfinite(value):
        logger.warning("Invalid %s %r; defaulting to %g", name, raw, default)
        return default
    return value


def _env_count(name: str, default: int) -> int:
    value = int(_env_number(name, default))
    if value < 1:
        logger.warning("%s must be positive; defaulting to %d", name, default)
        return default
    return value


@dataclass(frozen=True)
class EnrichmentConfig:
    """Pacing, timeouts, storage location and model choices.

    Credentials are deliberately absent: they travel per call in an
    EnrichmentRequest.
    """

    chunk_size: int = 10
    chunk_delay_seconds: float = 2.0
    classify_timeout_seconds: float = 20.0
    db_path: Path = field(default_factory=lambda: Path("data/enrichment.db"))
    default_provider: str = "anthropic"
    anthropic_model: str | None = None
    openai_model: str | None = None
    max_tokens: int = 4096

    @classmethod
    def from_env(cls) -> EnrichmentConfig:
        """Build EnrichmentConfig from environment variables."""
        return cls(
            chunk_size=_env_count("ENRICH_CHUNK_SIZE", 10),
            chunk_delay_seconds=max(0.0, _env_number("ENRICH_CHUNK_DELAY_SECONDS", 2.0)),
            classify_timeout_seconds=_env_number("ENRICH_CLASSIFY_TIMEOUT_SECONDS", 20.0),
            db_path=Path(os.environ.get("ENRICH_DB_PATH", "data/enrichment.db")),
            default_provider=os.environ.get("ENRICH_PROVIDER", "anthropic").strip().lower(),
            anthropic_model=os.environ.get("ANTHROPIC_MODEL") or None,
            openai_model=os.environ.get("OPENAI_MODEL") or None,
            max_tokens=_env_count("ENRICH_MAX_TOKENS", 4096),
        )
