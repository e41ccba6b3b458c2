from casting_assistant.schemas.admin import (
    CatalogReloadResponse,
    EscalationListResponse,
    ProfilesSyncRequest,
    ProfilesSyncResponse,
    RetentionCleanupRequest,
    RetentionCleanupResponse,
)
from casting_assistant.schemas.line import EventOutcome, LineEvent, LineWebhookBody, WebhookSummary

__all__ = [
    "CatalogReloadResponse",
    "EscalationListResponse",
    "EventOutcome",
    "LineEvent",
    "LineWebhookBody",
    "ProfilesSyncRequest",
    "ProfilesSyncResponse",
    "RetentionCleanupRequest",
    "RetentionCleanupResponse",
    "WebhookSummary",
]
