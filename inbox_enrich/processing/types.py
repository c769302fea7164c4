"""Types for the enrichment pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class Category(str, Enum):
    """Closed set of inbox categories the classify pass may assign."""

    IMPORTANT = "Important"
    PROMOTIONS = "Promotions"
    SOCIAL = "Social"
    SPAM = "Spam"
    GENERAL = "General"

    @classmethod
    def parse(cls, value: object) -> Category | None:
        """Case-insensitive lookup; None for anything outside the enum."""
        if not isinstance(value, str):
            return None
        wanted = value.strip().lower()
        for member in cls:
            if member.value.lower() == wanted:
                return member
        return None


class TaskStatus(str, Enum):
    ACTIVE = "active"
    DONE = "done"


class FailureKind(str, Enum):
    """Why a pass produced nothing fresh, with its HTTP-equivalent status."""

    UNAUTHORIZED = "unauthorized"
    INVALID_REQUEST = "invalid_request"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    PROVIDER = "provider_error"
    PARSE = "parse_error"

    @property
    def http_status(self) -> int:
        return HTTP_STATUS[self]


HTTP_STATUS: dict[FailureKind, int] = {
    FailureKind.UNAUTHORIZED: 401,
    FailureKind.INVALID_REQUEST: 400,
    FailureKind.RATE_LIMITED: 429,
    FailureKind.TIMEOUT: 504,
    FailureKind.PROVIDER: 500,
    FailureKind.PARSE: 500,
}


class OutcomeStatus(str, Enum):
    FRESH = "fresh"
    CACHED_FALLBACK = "cached_fallback"
    FAILED = "failed"


class ValidationError(Exception):
    """Raised before any provider call when a request cannot be served."""

    def __init__(self, message: str, kind: FailureKind = FailureKind.INVALID_REQUEST) -> None:
        super().__init__(message)
        self.kind = kind


# ── Inputs ─────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class InboundEmail:
    """An email handed to the pipeline by the mail-retrieval layer.

    ``content`` may be raw HTML; ``snippet`` is used when no content is
    available.
    """

    id: str
    sender: str
    content: str = ""
    subject: str = ""
    snippet: str = ""

    @property
    def body(self) -> str:
        return self.content or self.snippet or ""


@dataclass(frozen=True)
class CustomLabel:
    """A user-defined smart label: a name plus a natural-language rule."""

    name: str
    prompt: str
    color: str = ""
    apply_retroactively: bool = False


@dataclass(frozen=True)
class EnrichmentRequest:
    """Per-call context threaded through every service call.

    The credential is already decrypted; nothing in the pipeline reads it
    from the environment.
    """

    credential: str
    user_email: str
    custom_labels: tuple[CustomLabel, ...] = ()
    provider: str = "anthropic"

    def validate(self) -> None:
        """Raise ValidationError if the request can never reach a provider."""
        if not self.credential or not self.credential.strip():
            raise ValidationError("No API key provided.", FailureKind.UNAUTHORIZED)
        if not self.user_email or not self.user_email.strip():
            raise ValidationError("No user email provided.")


# ── Results ────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Classification:
    """Result of the classify pass for one email (fresh or from cache)."""

    id: str
    category: Category
    summary: str
    requires_reply: bool
    draft_reply: str = ""
    applied_labels: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class ExtractedTask:
    title: str
    date: str = "No due date"
    is_urgent: bool = False
    is_past_due: bool = False


@dataclass(frozen=True)
class Extraction:
    """One validated entry of a task-extraction response."""

    id: str
    tasks: tuple[ExtractedTask, ...] = ()
    applied_labels: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class LabelResult:
    """What the task-extraction pass reports back per email."""

    id: str
    applied_labels: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class EnrichmentOutcome(Generic[T]):
    """Explicit result of one service pass.

    FRESH            every result came from this pass or from cache
    CACHED_FALLBACK  the provider output was unusable; results are cache only
    FAILED           nothing usable; ``failure`` says why
    """

    status: OutcomeStatus
    results: list[T] = field(default_factory=list)
    failure: FailureKind | None = None
    message: str = ""

    @classmethod
    def fresh(cls, results: list[T]) -> EnrichmentOutcome[T]:
        return cls(OutcomeStatus.FRESH, list(results))

    @classmethod
    def fallback(cls, results: list[T], kind: FailureKind, message: str) -> EnrichmentOutcome[T]:
        return cls(OutcomeStatus.CACHED_FALLBACK, list(results), kind, message)

    @classmethod
    def failed(cls, kind: FailureKind, message: str) -> EnrichmentOutcome[T]:
        return cls(OutcomeStatus.FAILED, [], kind, message)

    @property
    def ok(self) -> bool:
        return self.status is not OutcomeStatus.FAILED
