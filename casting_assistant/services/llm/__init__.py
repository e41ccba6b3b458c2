from casting_assistant.services.llm.base import LLMProvider, LLMResponse
from casting_assistant.services.llm.openai_provider import OpenAIProvider

__all__ = ["LLMProvider", "LLMResponse", "OpenAIProvider"]
