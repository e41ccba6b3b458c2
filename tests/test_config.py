import pytest
from pydantic import ValidationError

from casting_assistant.config import DAY_SECONDS, Settings


def settings(**values):
    return Settings(_env_file=None, **values)


class TestSettings:
    def test_defaults(self, monkeypatch):
        for name in ("CONFIDENCE_ANSWER_THRESHOLD", "CONFIDENCE_CLARIFY_THRESHOLD", "OPENAI_API_KEY", "STORAGE_BACKEND"):
            monkeypatch.delenv(name, raising=False)
        config = settings()

        assert config.answer_threshold == 0.70
        assert config.clarify_threshold == 0.45
        assert config.retention_seconds == 30 * DAY_SECONDS
        assert config.dedupe_ttl_seconds == DAY_SECONDS
        assert config.storage_backend == "memory"
        assert config.use_external_ai is False

    def test_environment_aliases(self, monkeypatch):
        monkeypatch.setenv("CONFIDENCE_ANSWER_THRESHOLD", "0.8")
        monkeypatch.setenv("CONFIDENCE_CLARIFY_THRESHOLD", "0.5")
        monkeypatch.setenv("CONVERSATION_RETENTION_SECONDS", "60")
        monkeypatch.setenv("DEDUPE_BACKEND", "redis")
        config = settings()

        assert config.answer_threshold == 0.8
        assert config.clarify_threshold == 0.5
        assert config.retention_seconds == 60
        assert config.dedupe_backend == "redis"

    @pytest.mark.parametrize(
        "values",
        [
            {"answer_threshold": 0.4, "clarify_threshold": 0.6},
            {"answer_threshold": 1.2},
            {"clarify_threshold": -0.1},
            {"storage_backend": "mongo"},
            {"dedupe_backend": "memcached"},
        ],
    )
    def test_invalid_values(self, values):
        with pytest.raises(ValidationError):
            settings(**values)

    def test_external_ai_needs_key(self):
        assert settings(openai_api_key="sk-test").use_external_ai is True
        assert settings(openai_api_key="sk-test", disable_external_ai=True).use_external_ai is False
        assert settings(openai_api_key="").use_external_ai is False
