from typing import Optional

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings

DAY_SECONDS = 24 * 60 * 60


class Settings(BaseSettings):
    app_name: str = "Casting Assistant"
    log_level: str = "INFO"

    # Decision policy
    answer_threshold: float = Field(
        default=0.70,
        validation_alias=AliasChoices("confidence_answer_threshold", "answer_threshold"),
    )
    clarify_threshold: float = Field(
        default=0.45,
        validation_alias=AliasChoices("confidence_clarify_threshold", "clarify_threshold"),
    )
    recent_context_limit: int = 5
    contract_alert_days: int = 30

    # Retention
    retention_seconds: int = Field(
        default=30 * DAY_SECONDS,
        validation_alias=AliasChoices("conversation_retention_seconds", "retention_seconds"),
    )
    dedupe_ttl_seconds: int = DAY_SECONDS
    retention_worker_enabled: bool = True
    retention_sweep_interval_seconds: float = 3600.0

    # Storage
    storage_backend: str = "memory"  # memory, sql
    dedupe_backend: str = "memory"  # memory, sql, redis
    database_url: str = "sqlite:///./data/casting_assistant.db"
    redis_url: str = "redis://localhost:6379/0"

    # OpenAI
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4.1-mini"
    openai_timeout_seconds: float = 20.0
    disable_external_ai: bool = False

    # LINE
    line_channel_secret: str = ""
    line_channel_access_token: str = ""
    allow_unsigned_webhook: bool = False

    # Admin / data
    admin_api_key: str = ""
    data_dir: str = "data"
    profiles_csv_path: Optional[str] = None
    knowledge_csv_path: Optional[str] = None
    escalation_queue_csv_path: Optional[str] = None
    escalation_sheet_webhook_url: Optional[str] = None

    class Config:
        env_file = ".env"
        extra = "ignore"

    @model_validator(mode="after")
    def check_thresholds(self) -> "Settings":
        if not 0.0 <= self.clarify_threshold <= self.answer_threshold <= 1.0:
            raise ValueError(
                "thresholds must satisfy 0 <= clarify_threshold <= answer_threshold <= 1 "
                f"(got clarify={self.clarify_threshold}, answer={self.answer_threshold})"
            )
        if self.storage_backend not in {"memory", "sql"}:
            raise ValueError(f"Unsupported storage_backend: {self.storage_backend}")
        if self.dedupe_backend not in {"memory", "sql", "redis"}:
            raise ValueError(f"Unsupported dedupe_backend: {self.dedupe_backend}")
        return self

    @property
    def use_external_ai(self) -> bool:
        return bool(self.openai_api_key) and not self.disable_external_ai


def get_settings() -> Settings:
    return Settings()
