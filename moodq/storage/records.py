"""
Records sources: read an owner's recent mood and journal entries, newest first.
"""

from __future__ import annotations

import asyncio
import json
from collections import defaultdict
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from pathlib import Path

from moodq.infrastructure.database import db_transaction, get_db_connection, retry_on_db_lock
from moodq.insights.models import JournalRecord, MoodRecord, RecordKind
from moodq.observability.logging import get_logger

logger = get_logger(__name__)

Record = MoodRecord | JournalRecord


def _parse_time(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _parse_tags(value: str | None) -> list[str]:
    if not value:
        return []
    try:
        tags = json.loads(value)
    except ValueError:
        # Legacy comma-separated tags
        return [tag.strip() for tag in value.split(",") if tag.strip()]
    return tags if isinstance(tags, list) else []


class SQLiteRecordsSource:
    """mood_entries / journal_entries tables in the central moodq database."""

    def __init__(self, db_path: Path | str | None = None):
        self.db_path = db_path

    @retry_on_db_lock()
    def _read_moods(self, owner_id: str, limit: int) -> list[MoodRecord]:
        with get_db_connection(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT mood, energy_level, notes, created_at
                FROM mood_entries
                WHERE owner_id = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (owner_id, limit),
            ).fetchall()
        return [
            MoodRecord(
                mood=row["mood"],
                energy_level=row["energy_level"],
                notes=row["notes"],
                occurred_at=_parse_time(row["created_at"]),
            )
            for row in rows
        ]

    @retry_on_db_lock()
    def _read_journals(self, owner_id: str, limit: int) -> list[JournalRecord]:
        with get_db_connection(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT title, content, mood, tags, created_at
                FROM journal_entries
                WHERE owner_id = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (owner_id, limit),
            ).fetchall()
        return [
            JournalRecord(
                title=row["title"],
                content=row["content"] or "",
                mood=row["mood"],
                tags=_parse_tags(row["tags"]),
                occurred_at=_parse_time(row["created_at"]),
            )
            for row in rows
        ]

    async def list_recent(self, owner_id: str, kind: RecordKind, limit: int) -> Sequence[Record]:
        if kind == RecordKind.MOOD:
            return await asyncio.to_thread(self._read_moods, owner_id, limit)
        return await asyncio.to_thread(self._read_journals, owner_id, limit)

    def add_mood(self, owner_id: str, record: MoodRecord) -> None:
        """
        Insert one mood entry.

        Side Effects:
            - Writes to mood_entries (committed immediately)
        """
        with db_transaction(self.db_path) as conn:
            conn.execute(
                "INSERT INTO mood_entries (owner_id, mood, energy_level, notes, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    owner_id,
                    record.mood,
                    record.energy_level,
                    record.notes,
                    record.occurred_at.astimezone(UTC).isoformat(),
                ),
            )

    def add_journal(self, owner_id: str, record: JournalRecord) -> None:
        """
        Insert one journal entry.

        Side Effects:
            - Writes to journal_entries (committed immediately)
        """
        with db_transaction(self.db_path) as conn:
            conn.execute(
                "INSERT INTO journal_entries (owner_id, title, content, mood, tags, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    owner_id,
                    record.title,
                    record.content,
                    record.mood,
                    json.dumps(list(record.tags)),
                    record.occurred_at.astimezone(UTC).isoformat(),
                ),
            )


class InMemoryRecordsSource:
    """Records held in memory; used by tests and demos."""

    def __init__(self) -> None:
        self._records: dict[tuple[str, str], list[Record]] = defaultdict(list)
        self.calls: list[tuple[str, str, int]] = []

    def add(self, owner_id: str, records: Iterable[Record]) -> None:
        for record in records:
            kind = RecordKind.MOOD if isinstance(record, MoodRecord) else RecordKind.JOURNAL
            self._records[(owner_id, kind.value)].append(record)

    def clear(self, owner_id: str) -> None:
        for kind in RecordKind:
            self._records.pop((owner_id, kind.value), None)

    async def list_recent(self, owner_id: str, kind: RecordKind, limit: int) -> Sequence[Record]:
        kind_value = RecordKind(kind).value
        self.calls.append((owner_id, kind_value, limit))
        records = self._records.get((owner_id, kind_value), [])
        return sorted(records, key=lambda r: r.occurred_at, reverse=True)[:limit]
