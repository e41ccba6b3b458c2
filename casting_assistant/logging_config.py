"""JSON logging for the casting assistant.

Every record is one JSON object on stdout. Structured fields go through
``extra={"context": {...}}`` (or ``LoggerAdapter(..., context=...)``).
Conversation text is cut to a short preview so full messages never outlive
the conversation retention window inside log storage.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional

LOGGER_NAMESPACE = "casting_assistant"
TEXT_PREVIEW_CHARS = 40

# Context keys lifted to the top level so log search can filter on them.
PROMOTED_KEYS = ("event_id", "user_id")
CONVERSATION_TEXT_KEYS = frozenset({"user_text", "assistant_text", "suggested_reply", "reply_text"})


def preview_text(value: Any, limit: int = TEXT_PREVIEW_CHARS) -> Any:
    if not isinstance(value, str) or len(value) <= limit:
        return value
    return f"{value[:limit]}…(+{len(value) - limit} chars)"


def scrub_context(context: dict[str, Any]) -> dict[str, Any]:
    return {key: preview_text(value) if key in CONVERSATION_TEXT_KEYS else value for key, value in context.items()}


class JSONFormatter(logging.Formatter):
    def __init__(self, service: Optional[str] = None):
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.service:
            log_data["service"] = self.service

        context = getattr(record, "context", None)
        if isinstance(context, dict) and context:
            context = scrub_context(context)
            for key in PROMOTED_KEYS:
                if context.get(key) is not None:
                    log_data[key] = context.pop(key)
            if context:
                log_data["context"] = context

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", service: Optional[str] = None) -> None:
    """Route the root logger to stdout as JSON. Safe to call more than once."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter(service))
    root_logger.addHandler(handler)

    for noisy in ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")


class LoggerAdapter(logging.LoggerAdapter):
    """Adds per-event fields (event id, user id) to every record.

    Extra fields for one call go in ``context=``; they override the bound ones.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        context = kwargs.pop("context", None)
        if context or self.extra:
            kwargs["extra"] = {"context": {**self.extra, **(context or {})}}
        return msg, kwargs
