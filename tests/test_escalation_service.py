import asyncio
import csv
from unittest.mock import AsyncMock, Mock, patch

import httpx

from casting_assistant.services.escalation_service import QUEUE_COLUMNS, QueueEscalationSink
from casting_assistant.services.repository import InMemoryRepository
from casting_assistant.services.types import Classification, EscalationItem, Intent


def make_item(text="hmm", sensitive=False, suggested="draft reply"):
    return EscalationItem(
        user_id="U1",
        user_text=text,
        classification=Classification(Intent.SENSITIVE if sensitive else Intent.UNKNOWN, 0.3, sensitive),
        suggested_reply="" if sensitive else suggested,
        event_id="evt-1",
    )


class TestQueueEscalationSink:
    def test_records_in_repository(self):
        repository = InMemoryRepository()
        ack = asyncio.run(QueueEscalationSink(repository).record(make_item()))

        assert ack.stored is True
        assert ack.mode == "repository"
        assert repository.list_escalations()[0].user_text == "hmm"

    def test_appends_csv_queue_with_single_header(self, tmp_path):
        path = tmp_path / "queue" / "escalations.csv"
        sink = QueueEscalationSink(InMemoryRepository(), queue_csv_path=str(path))

        asyncio.run(sink.record(make_item("first")))
        ack = asyncio.run(sink.record(make_item("second", sensitive=True)))

        assert ack.mode == "repository+csv"
        with path.open(encoding="utf-8", newline="") as fh:
            rows = list(csv.DictReader(fh))
        assert list(rows[0].keys()) == QUEUE_COLUMNS
        assert [row["user_text"] for row in rows] == ["first", "second"]
        assert rows[1]["suggested_reply"] == ""

    def test_posts_to_webhook(self):
        sink = QueueEscalationSink(InMemoryRepository(), webhook_url="https://queue.example.com/hook")
        with patch("casting_assistant.services.escalation_service.httpx.AsyncClient") as client_cls:
            client = client_cls.return_value.__aenter__.return_value
            client.post = AsyncMock(return_value=Mock(status_code=200, text="ok"))
            ack = asyncio.run(sink.record(make_item()))

        assert ack.mode == "repository+webhook"
        assert ack.detail is None
        url = client.post.call_args.args[0]
        payload = client.post.call_args.kwargs["json"]
        assert url == "https://queue.example.com/hook"
        assert payload["suggested_reply"] == "draft reply"

    def test_webhook_failure_is_reported_not_raised(self):
        repository = InMemoryRepository()
        sink = QueueEscalationSink(repository, webhook_url="https://queue.example.com/hook")
        with patch("casting_assistant.services.escalation_service.httpx.AsyncClient") as client_cls:
            client = client_cls.return_value.__aenter__.return_value
            client.post = AsyncMock(side_effect=httpx.ConnectError("refused"))
            ack = asyncio.run(sink.record(make_item()))

        assert ack.mode == "repository"
        assert ack.detail == "webhook delivery failed"
        assert len(repository.list_escalations()) == 1

    def test_webhook_error_status(self):
        sink = QueueEscalationSink(InMemoryRepository(), webhook_url="https://queue.example.com/hook")
        with patch("casting_assistant.services.escalation_service.httpx.AsyncClient") as client_cls:
            client = client_cls.return_value.__aenter__.return_value
            client.post = AsyncMock(return_value=Mock(status_code=500, text="err"))
            ack = asyncio.run(sink.record(make_item()))

        assert ack.detail == "webhook delivery failed"
