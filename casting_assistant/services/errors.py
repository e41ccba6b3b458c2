class AssistantError(Exception):
    """Base error for per-event failures surfaced to the transport layer."""


class StorageError(AssistantError):
    """Dedupe store or conversation memory could not be read or written."""


class LLMError(AssistantError):
    """Remote model call failed or returned an unusable payload."""


class ProcessingError(AssistantError):
    def __init__(self, event_id: str, stage: str, cause: Exception):
        self.event_id = event_id
        self.stage = stage
        self.cause = cause
        super().__init__(f"Event {event_id} failed at {stage}: {cause}")
