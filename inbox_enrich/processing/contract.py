"""Strict JSON-array contract for provider responses.

Providers are asked for a bare JSON array with one object per input email.
``parse_response_array`` enforces the array part; the ``coerce_*`` helpers
enforce the per-kind object shape and drop entries that do not fit. Merging
is by ``id``, never by position, so a short or long array is tolerated.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from inbox_enrich.processing.types import (
    Category,
    Classification,
    ExtractedTask,
    Extraction,
)

logger = logging.getLogger(__name__)

NO_DUE_DATE = "No due date"

_LEADING_FENCE = re.compile(r"^\s*```[a-z0-9_-]*[ \t]*\n?", re.IGNORECASE)
_TRAILING_FENCE = re.compile(r"\n?[ \t]*```\s*$")

# Raw text kept on a ParseError is capped so log lines stay readable.
_EXCERPT_CHARS = 500


class ParseError(Exception):
    """Raised when provider output is not a JSON array."""

    def __init__(self, message: str, raw_text: str) -> None:
        super().__init__(message)
        self.raw_text = raw_text

    @property
    def excerpt(self) -> str:
        return self.raw_text[:_EXCERPT_CHARS]


def strip_fences(raw_text: str) -> str:
    """Remove a leading and a trailing code-fence marker, case-insensitively."""
    text = _LEADING_FENCE.sub("", raw_text, count=1)
    text = _TRAILING_FENCE.sub("", text, count=1)
    return text.strip()


def parse_response_array(raw_text: str, expected_count: int) -> list[Any]:
    """Parse provider text into a list, or raise ParseError.

    A length different from ``expected_count`` is logged, not rejected.
    """
    text = strip_fences(raw_text or "")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ParseError(f"Response is not valid JSON: {exc}", raw_text) from exc
    if not isinstance(data, list):
        raise ParseError(
            f"Expected a JSON array, got {type(data).__name__}", raw_text
        )
    if len(data) != expected_count:
        logger.warning(
            "Response has %d entries for %d emails; unmatched ids will stay un-enriched",
            len(data),
            expected_count,
        )
    return data


# ── Per-kind shapes ────────────────────────────────────────────────────────────


def _entry_id(entry: dict[str, Any]) -> str | None:
    raw_id = entry.get("id")
    if isinstance(raw_id, (str, int)) and not isinstance(raw_id, bool) and str(raw_id):
        return str(raw_id)
    return None


def _as_bool(value: object) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def _label_set(value: object) -> frozenset[str] | None:
    if value is None:
        return frozenset()
    if not isinstance(value, list):
        return None
    return frozenset(str(v).strip() for v in value if isinstance(v, str) and v.strip())


def coerce_classification(entry: object) -> Classification | None:
    """Validate one classify entry; None if it does not match the shape."""
    if not isinstance(entry, dict):
        logger.warning("Dropping classify entry that is not an object: %r", entry)
        return None
    email_id = _entry_id(entry)
    if email_id is None:
        logger.warning("Dropping classify entry without an id: %r", entry)
        return None

    category = Category.parse(entry.get("category"))
    if category is None:
        logger.warning(
            "Dropping classify entry %s: unknown category %r", email_id, entry.get("category")
        )
        return None

    labels = _label_set(entry.get("appliedLabels"))
    if labels is None:
        logger.warning("Dropping classify entry %s: appliedLabels is not a list", email_id)
        return None

    requires_reply = _as_bool(entry.get("requiresReply", False))
    draft = entry.get("draftReply") or ""
    return Classification(
        id=email_id,
        category=category,
        summary=str(entry.get("summary") or ""),
        requires_reply=requires_reply,
        draft_reply=str(draft) if requires_reply else "",
        applied_labels=labels,
    )


def _coerce_task(item: object) -> ExtractedTask | None:
    if not isinstance(item, dict):
        return None
    title = item.get("title")
    if not isinstance(title, str) or not title.strip():
        return None
    date = item.get("date")
    return ExtractedTask(
        title=title.strip(),
        date=str(date).strip() if date else NO_DUE_DATE,
        is_urgent=_as_bool(item.get("isUrgent", False)),
        is_past_due=_as_bool(item.get("isPastDue", False)),
    )


def coerce_extraction(entry: object) -> Extraction | None:
    """Validate one task-extraction entry; None if it does not match the shape."""
    if not isinstance(entry, dict):
        logger.warning("Dropping extraction entry that is not an object: %r", entry)
        return None
    email_id = _entry_id(entry)
    if email_id is None:
        logger.warning("Dropping extraction entry without an id: %r", entry)
        return None

    raw_tasks = entry.get("tasks") or []
    if not isinstance(raw_tasks, list):
        logger.warning("Dropping extraction entry %s: tasks is not a list", email_id)
        return None
    tasks = [task for task in (_coerce_task(item) for item in raw_tasks) if task is not None]
    if len(tasks) != len(raw_tasks):
        logger.warning(
            "Extraction entry %s: ignored %d malformed task(s)",
            email_id,
            len(raw_tasks) - len(tasks),
        )

    labels = _label_set(entry.get("appliedLabels"))
    if labels is None:
        logger.warning("Dropping extraction entry %s: appliedLabels is not a list", email_id)
        return None

    return Extraction(id=email_id, tasks=tuple(tasks), applied_labels=labels)
