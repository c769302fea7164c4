"""SQLite table schemas and typed row types for the storage layer."""

from dataclasses import dataclass, field


# ── DDL ────────────────────────────────────────────────────────────────────────

_CREATE_ENRICHMENT_RECORDS = """
CREATE TABLE IF NOT EXISTS enrichment_records (
    email_id        TEXT NOT NULL,
    user_email      TEXT NOT NULL,
    category        TEXT,
    summary         TEXT NOT NULL DEFAULT '',
    requires_reply  INTEGER NOT NULL DEFAULT 0,
    draft_reply     TEXT NOT NULL DEFAULT '',
    tasks_extracted INTEGER NOT NULL DEFAULT 0,
    created_at      TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at      TEXT NOT NULL DEFAULT (datetime('now')),
    PRIMARY KEY (email_id, user_email)
)
"""

# One row per label; the primary key gives set semantics for free.
_CREATE_APPLIED_LABELS = """
CREATE TABLE IF NOT EXISTS applied_labels (
    email_id    TEXT NOT NULL,
    user_email  TEXT NOT NULL,
    label       TEXT NOT NULL,
    PRIMARY KEY (email_id, user_email, label),
    FOREIGN KEY (email_id, user_email)
        REFERENCES enrichment_records(email_id, user_email)
)
"""

_CREATE_TASKS = """
CREATE TABLE IF NOT EXISTS tasks (
    id          TEXT PRIMARY KEY,
    user_email  TEXT NOT NULL,
    email_id    TEXT NOT NULL,
    title       TEXT NOT NULL,
    date        TEXT NOT NULL DEFAULT 'No due date',
    is_urgent   INTEGER NOT NULL DEFAULT 0,
    is_past_due INTEGER NOT NULL DEFAULT 0,
    status      TEXT NOT NULL DEFAULT 'active'
                CHECK (status IN ('active', 'done')),
    created_at  TEXT NOT NULL DEFAULT (datetime('now'))
)
"""

_CREATE_TASKS_INDEX = """
CREATE INDEX IF NOT EXISTS idx_tasks_user_email ON tasks (user_email, email_id)
"""

#: All DDL statements in creation order (respects FK dependencies).
ALL_TABLES: list[str] = [
    _CREATE_ENRICHMENT_RECORDS,
    _CREATE_APPLIED_LABELS,
    _CREATE_TASKS,
    _CREATE_TASKS_INDEX,
]


# ── Row types ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CacheRecord:
    """One enrichment record for an (email_id, user_email) pair.

    ``category`` is None until the classify pass has run; a record can exist
    earlier because task extraction creates it to hold labels and the flag.
    """

    email_id: str
    user_email: str
    category: str | None
    summary: str
    requires_reply: bool
    draft_reply: str
    tasks_extracted: bool
    applied_labels: frozenset[str] = field(default_factory=frozenset)
    created_at: str = ""
    updated_at: str = ""

    @property
    def is_classified(self) -> bool:
        return self.category is not None


@dataclass(frozen=True)
class TaskRecord:
    """A row from the tasks table."""

    id: str
    user_email: str
    email_id: str
    title: str
    date: str
    is_urgent: bool
    is_past_due: bool
    status: str
    created_at: str = ""
