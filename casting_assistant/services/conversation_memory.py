"""Append-only, time-bounded per-user conversation log."""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Optional, Protocol

from sqlalchemy import delete, func, select
from sqlalchemy.orm import sessionmaker

from casting_assistant.models import ConversationLog
from casting_assistant.services.errors import StorageError
from casting_assistant.services.types import Clock, ConversationLogEntry, ensure_timezone, utc_now


class ConversationMemory(Protocol):
    def append(self, entry: ConversationLogEntry) -> ConversationLogEntry:
        ...

    def recent(self, user_id: str, limit: int) -> list[ConversationLogEntry]:
        ...

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        ...

    def count(self) -> int:
        ...


def _stamp(entry: ConversationLogEntry, now: datetime, retention: timedelta) -> ConversationLogEntry:
    return replace(entry, created_at=now, expires_at=now + retention)


class InMemoryConversationMemory:
    def __init__(self, retention_seconds: int, clock: Clock = utc_now):
        self._retention = timedelta(seconds=retention_seconds)
        self._clock = clock
        self._entries: dict[str, list[ConversationLogEntry]] = {}
        self._lock = threading.Lock()

    def append(self, entry: ConversationLogEntry) -> ConversationLogEntry:
        stamped = _stamp(entry, self._clock(), self._retention)
        with self._lock:
            self._entries.setdefault(stamped.user_id, []).append(stamped)
        return stamped

    def restore(self, entry: ConversationLogEntry) -> None:
        """Load an already-stamped entry (imports, fixtures) without re-stamping it."""
        if entry.created_at is None or entry.expires_at is None:
            raise ValueError("restore() requires created_at and expires_at")
        with self._lock:
            self._entries.setdefault(entry.user_id, []).append(entry)

    def recent(self, user_id: str, limit: int) -> list[ConversationLogEntry]:
        if limit <= 0:
            return []
        now = self._clock()
        with self._lock:
            live = [entry for entry in self._entries.get(user_id, []) if entry.expires_at > now]
        return live[-limit:]

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        now = now or self._clock()
        removed = 0
        with self._lock:
            # Lists are replaced, never edited in place, so a reader holding the old
            # list still sees a complete pre-sweep view.
            for user_id in list(self._entries):
                kept = [entry for entry in self._entries[user_id] if entry.expires_at > now]
                removed += len(self._entries[user_id]) - len(kept)
                if kept:
                    self._entries[user_id] = kept
                else:
                    del self._entries[user_id]
        return removed

    def count(self) -> int:
        with self._lock:
            return sum(len(entries) for entries in self._entries.values())


def _row_to_entry(row: ConversationLog) -> ConversationLogEntry:
    return ConversationLogEntry(
        user_id=row.user_id,
        user_text=row.user_text,
        assistant_text=row.assistant_text,
        intent=row.intent,
        confidence=row.confidence,
        action=row.action,
        event_id=row.event_id,
        created_at=ensure_timezone(row.created_at),
        expires_at=ensure_timezone(row.expires_at),
    )


class SqlConversationMemory:
    def __init__(self, session_factory: sessionmaker, retention_seconds: int, clock: Clock = utc_now):
        self._session_factory = session_factory
        self._retention = timedelta(seconds=retention_seconds)
        self._clock = clock

    def append(self, entry: ConversationLogEntry) -> ConversationLogEntry:
        stamped = _stamp(entry, self._clock(), self._retention)
        row = ConversationLog(
            user_id=stamped.user_id,
            event_id=stamped.event_id,
            user_text=stamped.user_text,
            assistant_text=stamped.assistant_text,
            intent=stamped.intent,
            confidence=stamped.confidence,
            action=stamped.action,
            created_at=stamped.created_at,
            expires_at=stamped.expires_at,
        )
        try:
            with self._session_factory() as db:
                db.add(row)
                db.commit()
        except Exception as exc:
            raise StorageError(f"Conversation log append failed for {stamped.user_id}: {exc}") from exc
        return stamped

    def recent(self, user_id: str, limit: int) -> list[ConversationLogEntry]:
        if limit <= 0:
            return []
        now = self._clock()
        stmt = (
            select(ConversationLog)
            .where(ConversationLog.user_id == user_id, ConversationLog.expires_at > now)
            .order_by(ConversationLog.id.desc())
            .limit(limit)
        )
        try:
            with self._session_factory() as db:
                rows = db.execute(stmt).scalars().all()
        except Exception as exc:
            raise StorageError(f"Conversation log read failed for {user_id}: {exc}") from exc
        return [_row_to_entry(row) for row in reversed(rows)]

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        now = now or self._clock()
        try:
            with self._session_factory() as db:
                result = db.execute(delete(ConversationLog).where(ConversationLog.expires_at <= now))
                db.commit()
        except Exception as exc:
            raise StorageError(f"Conversation log purge failed: {exc}") from exc
        return result.rowcount or 0

    def count(self) -> int:
        with self._session_factory() as db:
            return db.execute(select(func.count()).select_from(ConversationLog)).scalar_one()
