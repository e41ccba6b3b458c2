import csv
from pathlib import Path
from typing import Optional, Protocol

import httpx

from casting_assistant.logging_config import get_logger
from casting_assistant.services.repository import InMemoryRepository
from casting_assistant.services.types import EscalationAck, EscalationItem

logger = get_logger("escalation_service")

QUEUE_COLUMNS = [
    "id",
    "created_at",
    "event_id",
    "user_id",
    "user_text",
    "intent",
    "confidence",
    "is_sensitive",
    "reason",
    "suggested_reply",
]


class EscalationSink(Protocol):
    async def record(self, item: EscalationItem) -> EscalationAck:
        ...


def append_queue_row(path: Path, item: EscalationItem) -> None:
    """Append one escalation to the CSV queue, writing the header for a new file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    new_file = not path.exists() or path.stat().st_size == 0
    row = item.to_dict()
    with path.open("a", encoding="utf-8", newline="") as fh:
        writer = csv.DictWriter(fh, fieldnames=QUEUE_COLUMNS, extrasaction="ignore")
        if new_file:
            writer.writeheader()
        writer.writerow(row)


class QueueEscalationSink:
    """Records escalations for human review.

    The repository copy is always written. The CSV queue and the webhook are
    optional outputs. A CSV write error propagates to the caller. A webhook
    error is logged and reported in the ack, since the item is already stored.
    """

    def __init__(
        self,
        repository: InMemoryRepository,
        queue_csv_path: Optional[str] = None,
        webhook_url: Optional[str] = None,
        timeout_seconds: float = 10.0,
    ):
        self.repository = repository
        self.queue_csv_path = Path(queue_csv_path) if queue_csv_path else None
        self.webhook_url = webhook_url
        self.timeout_seconds = timeout_seconds

    async def record(self, item: EscalationItem) -> EscalationAck:
        self.repository.add_escalation(item)
        modes = ["repository"]

        if self.queue_csv_path is not None:
            append_queue_row(self.queue_csv_path, item)
            modes.append("csv")

        detail = None
        if self.webhook_url:
            if await self._post_webhook(item):
                modes.append("webhook")
            else:
                detail = "webhook delivery failed"

        logger.info(
            "Escalation recorded",
            extra={
                "context": {
                    "escalation_id": item.id,
                    "event_id": item.event_id,
                    "user_id": item.user_id,
                    "intent": item.classification.intent.value,
                    "is_sensitive": item.classification.is_sensitive,
                    "mode": "+".join(modes),
                }
            },
        )
        return EscalationAck(mode="+".join(modes), stored=True, detail=detail)

    async def _post_webhook(self, item: EscalationItem) -> bool:
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(self.webhook_url, json=item.to_dict())
        except httpx.HTTPError as exc:
            logger.error(f"Escalation webhook request failed: {exc}")
            return False

        if response.status_code >= 300:
            logger.error(f"Escalation webhook error: {response.status_code} - {response.text[:200]}")
            return False
        return True
