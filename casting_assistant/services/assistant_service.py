"""Per-event pipeline: dedupe, utility commands, classify, decide, reply, log."""

import threading
import time
from dataclasses import replace
from datetime import date
from typing import Callable, Optional

from casting_assistant.logging_config import LoggerAdapter, get_logger
from casting_assistant.services.casting_service import CastingCatalog, format_alerts
from casting_assistant.services.conversation_memory import ConversationMemory
from casting_assistant.services.dedupe_service import DedupeStore
from casting_assistant.services.errors import ProcessingError, StorageError
from casting_assistant.services.escalation_service import EscalationSink
from casting_assistant.services.intent_service import Classifier, heuristic_classify
from casting_assistant.services.repository import InMemoryRepository
from casting_assistant.services.responder_service import Responder
from casting_assistant.services.types import (
    Action,
    Classification,
    ClassificationRequest,
    ConversationLogEntry,
    EscalationItem,
    EventStatus,
    InboundEvent,
    Intent,
    ProcessResult,
    ReplyContext,
)

logger = get_logger("assistant_service")

WHOAMI_COMMANDS = {"whoami", "userid", "my id"}
HELP_COMMANDS = {"help", "menu", "start", "hi", "hello", "ヘルプ", "メニュー", "こんにちは"}
ALERT_COMMANDS = {"alerts", "アラート", "契約アラート"}

WELCOME_TEXT = """👋 Welcome to the Casting Assistant!
ようこそ！キャスティングアシスタントです。

I can help you with:
• 🔍 Talent availability check / タレント起用確認
• ⚠️ Contract alerts / 契約アラート
• ⚡ Scandal risk assessment / リスク評価
• 👤 Find internal experts / 専門家検索

Try asking:
• "Can Taro Tanaka do a beer ad?"
• "田中太郎はビールのCMに使えますか？"
• "alerts" / "アラート"
• "Korean talent expert" / "韓国タレントに詳しい人"
"""


def whoami_text(user_id: str) -> str:
    return f"Your LINE user ID / あなたのLINEユーザーID:\n{user_id}"


class AssistantOrchestrator:
    def __init__(
        self,
        dedupe_store: DedupeStore,
        memory: ConversationMemory,
        classifier: Classifier,
        responder: Responder,
        escalation_sink: EscalationSink,
        repository: InMemoryRepository,
        catalog: CastingCatalog,
        answer_threshold: float = 0.70,
        clarify_threshold: float = 0.45,
        recent_context_limit: int = 5,
        contract_alert_days: int = 30,
        today: Callable[[], date] = date.today,
    ):
        if not 0.0 <= clarify_threshold <= answer_threshold <= 1.0:
            raise ValueError("thresholds must satisfy 0 <= clarify <= answer <= 1")
        self.dedupe_store = dedupe_store
        self.memory = memory
        self.classifier = classifier
        self.responder = responder
        self.escalation_sink = escalation_sink
        self.repository = repository
        self.catalog = catalog
        self.answer_threshold = answer_threshold
        self.clarify_threshold = clarify_threshold
        self.recent_context_limit = recent_context_limit
        self.contract_alert_days = contract_alert_days
        self._today = today
        self._escalation_count = 0
        self._count_lock = threading.Lock()

    @property
    def escalation_count(self) -> int:
        return self._escalation_count

    def decide(self, classification: Classification) -> Action:
        if classification.is_sensitive:
            return Action.ESCALATE
        if classification.confidence >= self.answer_threshold:
            return Action.ANSWER
        if classification.confidence >= self.clarify_threshold:
            return Action.CLARIFY
        return Action.ESCALATE

    async def handle(self, event: InboundEvent) -> ProcessResult:
        log = LoggerAdapter(logger, {"event_id": event.event_id, "user_id": event.user_id})

        if not event.is_text_message:
            log.info("Ignored non-text event", context={"event_type": event.event_type})
            return ProcessResult(status=EventStatus.IGNORED, event_id=event.event_id, user_id=event.user_id)

        try:
            seen = self.dedupe_store.seen_or_record(event.event_id)
        except StorageError:
            log.error("Dedupe store unavailable, refusing event")
            raise

        if seen:
            log.info("Duplicate event skipped")
            return ProcessResult(status=EventStatus.DUPLICATE, event_id=event.event_id, user_id=event.user_id)

        utility = self._utility_reply(event)
        if utility is not None:
            classification, reply_text = utility
            self._log_turn(event, reply_text, classification, Action.ANSWER)
            log.info("Utility command answered", context={"intent": classification.intent.value})
            return ProcessResult(
                status=EventStatus.PROCESSED,
                event_id=event.event_id,
                user_id=event.user_id,
                action=Action.ANSWER,
                reply_text=reply_text,
                classification=classification,
            )

        profile = self.repository.get_profile(event.user_id)
        recent_context = [entry.to_context() for entry in self.memory.recent(event.user_id, self.recent_context_limit)]

        classify_start = time.monotonic()
        try:
            classification = await self.classifier.classify(
                ClassificationRequest(message=event.text, profile=profile, recent_context=recent_context)
            )
        except Exception as exc:
            log.warning(f"Classifier failed, using heuristic: {exc}")
            classification = replace(heuristic_classify(event.text), reason=f"Fallback after classifier error: {exc}")

        action = self.decide(classification)
        log.info(
            "Classified",
            context={
                "intent": classification.intent.value,
                "confidence": classification.confidence,
                "is_sensitive": classification.is_sensitive,
                "action": action.value,
                "classify_ms": round((time.monotonic() - classify_start) * 1000, 2),
            },
        )

        context = ReplyContext(
            user_text=event.text,
            classification=classification,
            profile=profile,
            recent_context=recent_context,
        )

        escalation = None
        stage = action.value
        try:
            if action == Action.ANSWER:
                reply_text = await self.responder.answer(context)
            elif action == Action.CLARIFY:
                reply_text = await self.responder.clarify(context)
            else:
                suggested_reply = "" if classification.is_sensitive else await self._draft_reply(context, log)
                escalation = EscalationItem(
                    user_id=event.user_id,
                    user_text=event.text,
                    classification=classification,
                    suggested_reply=suggested_reply,
                    event_id=event.event_id,
                )
                stage = "escalation_sink"
                ack = await self.escalation_sink.record(escalation)
                with self._count_lock:
                    self._escalation_count += 1
                log.info("Escalated", context={"escalation_id": escalation.id, "sink_mode": ack.mode})
                stage = "escalation_notice"
                reply_text = await self.responder.escalation_notice(context)
        except Exception as exc:
            log.error(f"Processing failed at {stage}: {exc}")
            raise ProcessingError(event.event_id, stage, exc) from exc

        self._log_turn(event, reply_text, classification, action)

        return ProcessResult(
            status=EventStatus.PROCESSED,
            event_id=event.event_id,
            user_id=event.user_id,
            action=action,
            reply_text=reply_text,
            classification=classification,
            escalation=escalation,
        )

    async def _draft_reply(self, context: ReplyContext, log: LoggerAdapter) -> str:
        """Reviewer draft for a low-confidence escalation; an empty draft never blocks the hand-off."""
        try:
            return await self.responder.answer(context)
        except Exception as exc:
            log.warning(f"Draft reply failed, escalating without one: {exc}")
            return ""

    def _utility_reply(self, event: InboundEvent) -> Optional[tuple[Classification, str]]:
        command = event.text.strip().lower()
        if command in WHOAMI_COMMANDS:
            return Classification(Intent.UTILITY_WHOAMI, 1.0, False, "Utility command"), whoami_text(event.user_id)
        if command in HELP_COMMANDS:
            return Classification(Intent.UTILITY_HELP, 1.0, False, "Utility command"), WELCOME_TEXT
        if command in ALERT_COMMANDS:
            alerts = self.catalog.contract_alerts(self.contract_alert_days, self._today())
            return (
                Classification(Intent.UTILITY_CONTRACT_ALERTS, 1.0, False, "Utility command"),
                format_alerts(alerts),
            )
        return None

    def _log_turn(self, event: InboundEvent, reply_text: str, classification: Classification, action: Action) -> None:
        self.memory.append(
            ConversationLogEntry(
                user_id=event.user_id,
                user_text=event.text,
                assistant_text=reply_text,
                intent=classification.intent.value,
                confidence=classification.confidence,
                action=action.value,
                event_id=event.event_id,
            )
        )
