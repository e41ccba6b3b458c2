"""Composition root: every component is built once here and passed by reference."""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import redis

from casting_assistant.config import Settings, get_settings
from casting_assistant.database import build_engine, build_session_factory, init_db
from casting_assistant.logging_config import get_logger
from casting_assistant.services.assistant_service import AssistantOrchestrator
from casting_assistant.services.casting_service import CastingCatalog, load_csv
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
from casting_assistant.services.escalation_service import EscalationSink, QueueEscalationSink
from casting_assistant.services.intent_service import Classifier, build_classifier
from casting_assistant.services.line_service import LineClient
from casting_assistant.services.llm import LLMProvider, OpenAIProvider
from casting_assistant.services.repository import InMemoryRepository
from casting_assistant.services.responder_service import CastingResponder, Responder
from casting_assistant.services.retention_service import RetentionService
from casting_assistant.services.types import Clock, utc_now

logger = get_logger("container")

REDIS_SOCKET_TIMEOUT_SECONDS = 0.5


@dataclass
class Container:
    settings: Settings
    repository: InMemoryRepository
    catalog: CastingCatalog
    dedupe_store: DedupeStore
    memory: ConversationMemory
    llm: LLMProvider
    classifier: Classifier
    responder: Responder
    escalation_sink: EscalationSink
    line_client: LineClient
    orchestrator: AssistantOrchestrator
    retention: RetentionService


def load_profiles_csv(repository: InMemoryRepository, path: Optional[str]) -> dict[str, int]:
    if not path:
        return {"upserted": 0, "skipped": 0}
    return repository.upsert_profiles(load_csv(Path(path)))


def build_container(settings: Optional[Settings] = None, clock: Clock = utc_now, **overrides: Any) -> Container:
    """Build the object graph from settings.

    Keyword overrides replace a component by field name (``classifier=...``,
    ``line_client=...``), which is how tests inject fakes.
    """
    settings = settings or get_settings()

    session_factory = None
    if settings.storage_backend == "sql" or settings.dedupe_backend == "sql":
        engine = build_engine(settings.database_url)
        init_db(engine)
        session_factory = build_session_factory(engine)

    repository = overrides.get("repository") or InMemoryRepository()
    if "repository" not in overrides:
        load_profiles_csv(repository, settings.profiles_csv_path)
        if settings.knowledge_csv_path:
            repository.upsert_knowledge(load_csv(Path(settings.knowledge_csv_path)))

    catalog = overrides.get("catalog") or CastingCatalog(settings.data_dir)

    dedupe_store = overrides.get("dedupe_store")
    if dedupe_store is None:
        if settings.dedupe_backend == "redis":
            client = redis.Redis.from_url(
                settings.redis_url,
                decode_responses=True,
                socket_timeout=REDIS_SOCKET_TIMEOUT_SECONDS,
                socket_connect_timeout=REDIS_SOCKET_TIMEOUT_SECONDS,
            )
            dedupe_store = RedisDedupeStore(client, settings.dedupe_ttl_seconds)
        elif settings.dedupe_backend == "sql":
            dedupe_store = SqlDedupeStore(session_factory, settings.dedupe_ttl_seconds, clock)
        else:
            dedupe_store = InMemoryDedupeStore(settings.dedupe_ttl_seconds, clock)

    memory = overrides.get("memory")
    if memory is None:
        if settings.storage_backend == "sql":
            memory = SqlConversationMemory(session_factory, settings.retention_seconds, clock)
        else:
            memory = InMemoryConversationMemory(settings.retention_seconds, clock)

    llm = overrides.get("llm") or OpenAIProvider(
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        default_model=settings.openai_model,
        timeout_seconds=settings.openai_timeout_seconds,
    )
    classifier = overrides.get("classifier") or build_classifier(llm, settings.use_external_ai)
    responder = overrides.get("responder") or CastingResponder(
        catalog, repository, llm=llm, use_external_ai=settings.use_external_ai
    )
    escalation_sink = overrides.get("escalation_sink") or QueueEscalationSink(
        repository,
        queue_csv_path=settings.escalation_queue_csv_path,
        webhook_url=settings.escalation_sheet_webhook_url,
    )
    line_client = overrides.get("line_client") or LineClient(settings.line_channel_access_token)

    orchestrator = overrides.get("orchestrator") or AssistantOrchestrator(
        dedupe_store=dedupe_store,
        memory=memory,
        classifier=classifier,
        responder=responder,
        escalation_sink=escalation_sink,
        repository=repository,
        catalog=catalog,
        answer_threshold=settings.answer_threshold,
        clarify_threshold=settings.clarify_threshold,
        recent_context_limit=settings.recent_context_limit,
        contract_alert_days=settings.contract_alert_days,
    )
    retention = overrides.get("retention") or RetentionService(memory, dedupe_store, clock)

    logger.info(
        "Container built",
        extra={
            "context": {
                "storage_backend": settings.storage_backend,
                "dedupe_backend": settings.dedupe_backend,
                "external_ai": settings.use_external_ai,
            }
        },
    )

    return Container(
        settings=settings,
        repository=repository,
        catalog=catalog,
        dedupe_store=dedupe_store,
        memory=memory,
        llm=llm,
        classifier=classifier,
        responder=responder,
        escalation_sink=escalation_sink,
        line_client=line_client,
        orchestrator=orchestrator,
        retention=retention,
    )
