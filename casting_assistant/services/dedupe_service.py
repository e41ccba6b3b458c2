"""Processed-event registry enforcing at-most-once handling of webhook events.

Every backend exposes one atomic check-and-insert, ``seen_or_record``. It
returns ``False`` exactly once per event id inside the TTL window and
``True`` for every other delivery of that id.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta
from typing import Optional, Protocol

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import sessionmaker

from casting_assistant.logging_config import get_logger
from casting_assistant.models import ProcessedEvent
from casting_assistant.services.errors import StorageError
from casting_assistant.services.types import Clock, utc_now

logger = get_logger("dedupe_service")


class DedupeStore(Protocol):
    def seen_or_record(self, event_id: str) -> bool:
        ...

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        ...

    def count(self) -> int:
        ...


class InMemoryDedupeStore:
    def __init__(self, ttl_seconds: int, clock: Clock = utc_now):
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._processed_at: dict[str, datetime] = {}
        self._lock = threading.Lock()

    def seen_or_record(self, event_id: str) -> bool:
        now = self._clock()
        with self._lock:
            processed_at = self._processed_at.get(event_id)
            if processed_at is not None and processed_at + self._ttl > now:
                return True
            self._processed_at[event_id] = now
            return False

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        now = now or self._clock()
        with self._lock:
            expired = [event_id for event_id, ts in self._processed_at.items() if ts + self._ttl <= now]
            for event_id in expired:
                del self._processed_at[event_id]
        return len(expired)

    def count(self) -> int:
        with self._lock:
            return len(self._processed_at)


def _dialect_insert(session_factory: sessionmaker):
    dialect = session_factory.kw["bind"].dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise StorageError(f"Unsupported dialect for dedupe upsert: {dialect}")


class SqlDedupeStore:
    """Dedupe table with a single upsert per check.

    A fresh id is inserted. An expired row is overwritten. An unexpired row is
    left alone, so the statement reports zero affected rows and the event is a
    duplicate.
    """

    def __init__(self, session_factory: sessionmaker, ttl_seconds: int, clock: Clock = utc_now):
        self._session_factory = session_factory
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._insert = _dialect_insert(session_factory)

    def seen_or_record(self, event_id: str) -> bool:
        now = self._clock()
        cutoff = now - self._ttl
        stmt = (
            self._insert(ProcessedEvent)
            .values(event_id=event_id, processed_at=now)
            .on_conflict_do_update(
                index_elements=[ProcessedEvent.event_id],
                set_={"processed_at": now},
                where=ProcessedEvent.processed_at <= cutoff,
            )
        )
        try:
            with self._session_factory() as db:
                result = db.execute(stmt)
                db.commit()
        except Exception as exc:
            raise StorageError(f"Dedupe insert failed for {event_id}: {exc}") from exc
        return result.rowcount == 0

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        cutoff = (now or self._clock()) - self._ttl
        try:
            with self._session_factory() as db:
                result = db.execute(delete(ProcessedEvent).where(ProcessedEvent.processed_at <= cutoff))
                db.commit()
        except Exception as exc:
            raise StorageError(f"Dedupe purge failed: {exc}") from exc
        return result.rowcount or 0

    def count(self) -> int:
        with self._session_factory() as db:
            return db.execute(select(func.count()).select_from(ProcessedEvent)).scalar_one()


class RedisDedupeStore:
    """SET NX EX per event id; Redis expires the keys itself."""

    def __init__(self, redis_client, ttl_seconds: int, key_prefix: str = "casting:dedup"):
        self._redis = redis_client
        self._ttl_seconds = ttl_seconds
        self._key_prefix = key_prefix

    def seen_or_record(self, event_id: str) -> bool:
        key = f"{self._key_prefix}:{event_id}"
        try:
            was_set = self._redis.set(key, "1", ex=self._ttl_seconds, nx=True)
        except Exception as exc:
            raise StorageError(f"Dedupe redis unavailable for {event_id}: {exc}") from exc
        if not was_set:
            logger.info("Duplicate event_id (redis)", extra={"context": {"event_id": event_id}})
            return True
        return False

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        return 0

    def count(self) -> int:
        return sum(1 for _ in self._redis.scan_iter(match=f"{self._key_prefix}:*"))
