from casting_assistant.models.conversation_log import ConversationLog
from casting_assistant.models.processed_event import ProcessedEvent

__all__ = [
    "ConversationLog",
    "ProcessedEvent",
]
