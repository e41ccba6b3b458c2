from casting_assistant.services.assistant_service import AssistantOrchestrator
from casting_assistant.services.casting_service import CastingCatalog
from casting_assistant.services.conversation_memory import (
    ConversationMemory,
    InMemoryConversationMemory,
    SqlConversationMemory,
)
from casting_assistant.services.dedupe_service import (
    DedupeStore,
    InMemoryDedupeStore,
    RedisDedupeStore,
    SqlDedupeStore,
)
from casting_assistant.services.errors import AssistantError, LLMError, ProcessingError, StorageError
from casting_assistant.services.intent_service import HeuristicClassifier, LLMClassifier, heuristic_classify
from casting_assistant.services.retention_service import CleanupReport, RetentionService
