import asyncio
from unittest.mock import AsyncMock, Mock, patch

import httpx
import pytest

from casting_assistant.services.errors import LLMError
from casting_assistant.services.llm import OpenAIProvider

MESSAGES = [{"role": "user", "content": "hi"}]


def completion(content, status_code=200):
    return Mock(
        status_code=status_code,
        text="error body",
        json=Mock(return_value={"model": "gpt-test", "choices": [{"message": {"content": content}}], "usage": {"total_tokens": 5}}),
    )


@pytest.fixture
def http_client():
    with patch("casting_assistant.services.llm.openai_provider.httpx.AsyncClient") as client_cls:
        yield client_cls.return_value.__aenter__.return_value


class TestOpenAIProvider:
    def test_is_configured(self):
        assert OpenAIProvider("key").is_configured()
        assert not OpenAIProvider("").is_configured()

    def test_generate_payload(self, http_client):
        http_client.post = AsyncMock(return_value=completion("hello"))
        provider = OpenAIProvider("key", base_url="https://llm.local/v1/", default_model="m1")

        response = asyncio.run(provider.generate(MESSAGES, temperature=0, max_tokens=50, json_mode=True))

        assert response.content == "hello"
        assert response.model == "gpt-test"
        assert response.usage == {"total_tokens": 5}
        url = http_client.post.call_args.args[0]
        payload = http_client.post.call_args.kwargs["json"]
        assert url == "https://llm.local/v1/chat/completions"
        assert payload["model"] == "m1"
        assert payload["max_tokens"] == 50
        assert payload["response_format"] == {"type": "json_object"}
        assert http_client.post.call_args.kwargs["headers"]["Authorization"] == "Bearer key"

    def test_plain_mode_has_no_response_format(self, http_client):
        http_client.post = AsyncMock(return_value=completion("hello"))
        asyncio.run(OpenAIProvider("key").generate(MESSAGES))
        assert "response_format" not in http_client.post.call_args.kwargs["json"]

    def test_error_status_raises(self, http_client):
        http_client.post = AsyncMock(return_value=completion("", status_code=429))
        with pytest.raises(LLMError, match="429"):
            asyncio.run(OpenAIProvider("key").generate(MESSAGES))

    def test_transport_error_raises(self, http_client):
        http_client.post = AsyncMock(side_effect=httpx.ReadTimeout("timed out"))
        with pytest.raises(LLMError):
            asyncio.run(OpenAIProvider("key").generate(MESSAGES))


class TestChatJson:
    def test_decodes_object(self, http_client):
        http_client.post = AsyncMock(return_value=completion('{"intent": "unknown", "confidence": 0.4}'))
        data = asyncio.run(OpenAIProvider("key").chat_json("system", "user"))
        assert data == {"intent": "unknown", "confidence": 0.4}
        assert http_client.post.call_args.kwargs["json"]["messages"][0] == {"role": "system", "content": "system"}

    def test_non_json_raises(self, http_client):
        http_client.post = AsyncMock(return_value=completion("sure, here you go"))
        with pytest.raises(LLMError, match="non-JSON"):
            asyncio.run(OpenAIProvider("key").chat_json("system", "user"))

    def test_non_object_raises(self, http_client):
        http_client.post = AsyncMock(return_value=completion("[1, 2]"))
        with pytest.raises(LLMError):
            asyncio.run(OpenAIProvider("key").chat_json("system", "user"))
