from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional
from unittest.mock import AsyncMock, Mock

import pytest

from casting_assistant.config import Settings
from casting_assistant.container import build_container
from casting_assistant.services.casting_service import CastingCatalog
from casting_assistant.services.types import InboundEvent

DATA_DIR = Path(__file__).resolve().parents[1] / "data"


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


def make_event(
    text: str,
    event_id: str = "evt-1",
    user_id: Optional[str] = "U-test",
    reply_token: Optional[str] = "reply-token",
    event_type: str = "message",
    message_type: Optional[str] = "text",
) -> InboundEvent:
    return InboundEvent(
        event_id=event_id,
        user_id=user_id,
        text=text,
        received_at=datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc),
        reply_token=reply_token,
        event_type=event_type,
        message_type=message_type,
    )


def make_settings(**overrides) -> Settings:
    values = {
        "disable_external_ai": True,
        "openai_api_key": "",
        "data_dir": str(DATA_DIR),
        "admin_api_key": "admin-secret",
        "allow_unsigned_webhook": True,
        "line_channel_secret": "",
        "line_channel_access_token": "",
        "retention_worker_enabled": False,
        "storage_backend": "memory",
        "dedupe_backend": "memory",
        "profiles_csv_path": None,
        "knowledge_csv_path": None,
        "escalation_queue_csv_path": None,
        "escalation_sheet_webhook_url": None,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def catalog():
    return CastingCatalog(DATA_DIR)


@pytest.fixture
def line_client():
    client = Mock()
    client.is_configured.return_value = True
    client.reply = AsyncMock(return_value=True)
    return client


@pytest.fixture
def container(settings, clock, line_client):
    return build_container(settings, clock=clock, line_client=line_client)


@pytest.fixture
def orchestrator(container):
    return container.orchestrator
