import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from casting_assistant.services.errors import LLMError


@dataclass
class LLMResponse:
    content: str
    model: str
    usage: Optional[dict] = None


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    @abstractmethod
    def is_configured(self) -> bool:
        """Whether the provider has credentials to make calls."""

    @abstractmethod
    async def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        json_mode: bool = False,
    ) -> LLMResponse:
        """Generate response from LLM."""

    async def chat_json(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.2,
        max_tokens: int = 400,
    ) -> dict:
        """Run a JSON-mode completion and decode the object it returns."""
        response = await self.generate(
            [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=temperature,
            max_tokens=max_tokens,
            json_mode=True,
        )
        try:
            parsed = json.loads(response.content)
        except json.JSONDecodeError as exc:
            raise LLMError(f"LLM returned non-JSON content: {response.content[:100]}") from exc
        if not isinstance(parsed, dict):
            raise LLMError("LLM JSON content is not an object")
        return parsed
