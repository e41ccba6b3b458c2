import json
import logging
import sys

from casting_assistant.logging_config import JSONFormatter, LoggerAdapter, get_logger, preview_text


def record_for(message, context=None, exc_info=None):
    record = logging.LogRecord("casting_assistant.test", logging.INFO, __file__, 1, message, None, exc_info)
    if context is not None:
        record.context = context
    return record


class TestJSONFormatter:
    def test_basic_fields(self):
        data = json.loads(JSONFormatter("Casting Assistant").format(record_for("hello")))
        assert data["message"] == "hello"
        assert data["level"] == "INFO"
        assert data["service"] == "Casting Assistant"
        assert "context" not in data

    def test_event_fields_are_promoted(self):
        record = record_for("Classified", {"event_id": "evt-1", "user_id": "U1", "intent": "unknown"})
        data = json.loads(JSONFormatter().format(record))
        assert data["event_id"] == "evt-1"
        assert data["user_id"] == "U1"
        assert data["context"] == {"intent": "unknown"}

    def test_conversation_text_is_truncated(self):
        record = record_for("Escalated", {"user_text": "x" * 100, "intent": "sensitive"})
        data = json.loads(JSONFormatter().format(record))
        assert data["context"]["user_text"].startswith("x" * 40)
        assert data["context"]["user_text"].endswith("(+60 chars)")

    def test_exception_is_included(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = record_for("failed", exc_info=sys.exc_info())
        data = json.loads(JSONFormatter().format(record))
        assert "ValueError: boom" in data["exception"]


def test_preview_leaves_short_text():
    assert preview_text("short") == "short"
    assert preview_text(3) == 3


def test_adapter_merges_context():
    adapter = LoggerAdapter(get_logger("test"), {"event_id": "evt-1"})
    _, kwargs = adapter.process("msg", {"context": {"intent": "unknown", "event_id": "evt-2"}})
    assert kwargs["extra"]["context"] == {"event_id": "evt-2", "intent": "unknown"}


def test_logger_namespace():
    assert get_logger("admin").name == "casting_assistant.admin"
