"""EnrichmentCache — one durable record per (email_id, user_email)."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from inbox_enrich.processing.types import Classification
from inbox_enrich.storage.db import EnrichmentDatabase
from inbox_enrich.storage.models import CacheRecord

logger = logging.getLogger(__name__)

# SQLite's default host-parameter limit is 999; stay well under it.
_LOOKUP_BATCH = 500


class EnrichmentCache:
    """Point lookups, classification upserts and label/flag updates.

    Records are created on first write and never deleted. ``applied_labels``
    only ever grows: every write path inserts labels with INSERT OR IGNORE.

    Usage::

        cache = EnrichmentCache(db)
        records = cache.get_many(["msg_1", "msg_2"], "me@example.com")
        cache.upsert_classifications("me@example.com", classifications)
    """

    def __init__(self, db: EnrichmentDatabase) -> None:
        self._db = db

    # ── Read API ───────────────────────────────────────────────────────────────

    def get(self, email_id: str, user_email: str) -> CacheRecord | None:
        return self.get_many([email_id], user_email).get(email_id)

    def get_many(self, email_ids: Iterable[str], user_email: str) -> dict[str, CacheRecord]:
        """Return the stored records for ``email_ids`` keyed by email id.

        Ids with no record are simply absent from the result.
        """
        ids = list(dict.fromkeys(email_ids))
        records: dict[str, CacheRecord] = {}
        conn = self._db.conn
        for start in range(0, len(ids), _LOOKUP_BATCH):
            chunk = ids[start:start + _LOOKUP_BATCH]
            placeholders = ", ".join("?" for _ in chunk)
            labels: dict[str, set[str]] = {}
            for row in conn.execute(
                f"SELECT email_id, label FROM applied_labels "
                f"WHERE user_email = ? AND email_id IN ({placeholders})",
                (user_email, *chunk),
            ):
                labels.setdefault(row["email_id"], set()).add(row["label"])
            for row in conn.execute(
                f"""SELECT email_id, user_email, category, summary, requires_reply,
                           draft_reply, tasks_extracted, created_at, updated_at
                    FROM enrichment_records
                    WHERE user_email = ? AND email_id IN ({placeholders})""",
                (user_email, *chunk),
            ):
                d = dict(row)
                d["requires_reply"] = bool(d["requires_reply"])
                d["tasks_extracted"] = bool(d["tasks_extracted"])
                records[d["email_id"]] = CacheRecord(
                    **d, applied_labels=frozenset(labels.get(d["email_id"], ()))
                )
        return records

    # ── Write API ──────────────────────────────────────────────────────────────

    def upsert_classifications(
        self, user_email: str, classifications: Sequence[Classification]
    ) -> None:
        """Create-or-update classification fields for every entry in one transaction.

        Idempotent: writing the same batch twice leaves the same state.
        Labels are merged into the existing set, never replaced.
        """
        if not classifications:
            return
        with self._db.transaction() as conn:
            for c in classifications:
                conn.execute(
                    """
                    INSERT INTO enrichment_records
                        (email_id, user_email, category, summary,
                         requires_reply, draft_reply)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(email_id, user_email) DO UPDATE SET
                        category       = excluded.category,
                        summary        = excluded.summary,
                        requires_reply = excluded.requires_reply,
                        draft_reply    = excluded.draft_reply,
                        updated_at     = datetime('now')
                    """,
                    (
                        c.id,
                        user_email,
                        c.category.value,
                        c.summary,
                        int(c.requires_reply),
                        c.draft_reply,
                    ),
                )
                self._add_labels(c.id, user_email, c.applied_labels)
        logger.debug("Upserted %d classification(s) for %s", len(classifications), user_email)

    def claim_extraction(self, email_id: str, user_email: str, labels: Iterable[str]) -> bool:
        """Union labels and flip ``tasks_extracted`` false → true atomically.

        Returns True only for the caller whose conditional update applied, so
        at most one caller per record ever gets to append tasks.
        """
        with self._db.transaction() as conn:
            self._ensure_record(email_id, user_email)
            self._add_labels(email_id, user_email, labels)
            cursor = conn.execute(
                """UPDATE enrichment_records
                   SET tasks_extracted = 1, updated_at = datetime('now')
                   WHERE email_id = ? AND user_email = ? AND tasks_extracted = 0""",
                (email_id, user_email),
            )
            return cursor.rowcount == 1

    # ── Private ────────────────────────────────────────────────────────────────

    def _ensure_record(self, email_id: str, user_email: str) -> None:
        self._db.conn.execute(
            """INSERT INTO enrichment_records (email_id, user_email)
               VALUES (?, ?)
               ON CONFLICT(email_id, user_email) DO NOTHING""",
            (email_id, user_email),
        )

    def _add_labels(self, email_id: str, user_email: str, labels: Iterable[str]) -> None:
        self._db.conn.executemany(
            "INSERT OR IGNORE INTO applied_labels (email_id, user_email, label) VALUES (?, ?, ?)",
            [(email_id, user_email, label) for label in sorted(set(labels))],
        )
