import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union

from casting_assistant.logging_config import get_logger
from casting_assistant.services.conversation_memory import ConversationMemory
from casting_assistant.services.dedupe_service import DedupeStore
from casting_assistant.services.types import Clock, ensure_timezone, utc_now

logger = get_logger("retention_service")


@dataclass(frozen=True)
class CleanupReport:
    removed_logs: int
    removed_dedupe_records: int
    swept_at: datetime

    def to_dict(self) -> dict:
        return {
            "removed_logs": self.removed_logs,
            "removed_dedupe_records": self.removed_dedupe_records,
            "swept_at": self.swept_at.isoformat(),
        }


def to_datetime(now: Union[datetime, int, float, None], clock: Clock = utc_now) -> datetime:
    """Accept a datetime, epoch milliseconds, or None (current time)."""
    if now is None:
        return clock()
    if isinstance(now, datetime):
        return ensure_timezone(now)
    return datetime.fromtimestamp(now / 1000, tz=timezone.utc)


class RetentionService:
    """The only component allowed to delete conversation log entries."""

    def __init__(self, memory: ConversationMemory, dedupe_store: Optional[DedupeStore] = None, clock: Clock = utc_now):
        self.memory = memory
        self.dedupe_store = dedupe_store
        self._clock = clock

    def cleanup(self, now: Union[datetime, int, float, None] = None) -> CleanupReport:
        swept_at = to_datetime(now, self._clock)
        removed_logs = self.memory.purge_expired(swept_at)
        removed_dedupe = self.dedupe_store.purge_expired(swept_at) if self.dedupe_store else 0

        if removed_logs or removed_dedupe:
            logger.info(
                "Retention sweep removed expired records",
                extra={
                    "context": {
                        "removed_logs": removed_logs,
                        "removed_dedupe_records": removed_dedupe,
                        "swept_at": swept_at.isoformat(),
                    }
                },
            )

        return CleanupReport(
            removed_logs=removed_logs,
            removed_dedupe_records=removed_dedupe,
            swept_at=swept_at,
        )


async def run_retention_worker(service: RetentionService, interval_seconds: float) -> None:
    """Sweep forever; a failed sweep is logged and retried on the next tick."""
    interval_seconds = max(interval_seconds, 0.1)
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            service.cleanup()
        except asyncio.CancelledError:
            break
        except Exception as exc:
            logger.error(
                "Retention worker sweep failed",
                extra={"context": {"error": str(exc)}},
            )
