import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from casting_assistant.services.assistant_service import AssistantOrchestrator
from casting_assistant.services.conversation_memory import InMemoryConversationMemory
from casting_assistant.services.dedupe_service import InMemoryDedupeStore
from casting_assistant.services.errors import ProcessingError, StorageError
from casting_assistant.services.repository import InMemoryRepository
from casting_assistant.services.types import Action, Classification, EscalationAck, EventStatus, Intent
from conftest import FakeClock, make_event


def fake_classifier(classification=None, error=None):
    classifier = Mock()
    classifier.classify = AsyncMock(return_value=classification, side_effect=error)
    return classifier


def fake_responder():
    responder = Mock()
    responder.answer = AsyncMock(return_value="answer text")
    responder.clarify = AsyncMock(return_value="clarify text")
    responder.escalation_notice = AsyncMock(return_value="escalation text")
    return responder


def fake_sink():
    sink = Mock()
    sink.record = AsyncMock(return_value=EscalationAck(mode="test"))
    return sink


def build(catalog, classifier=None, responder=None, sink=None, dedupe=None, memory=None):
    clock = FakeClock()
    return AssistantOrchestrator(
        dedupe_store=dedupe or InMemoryDedupeStore(3600, clock),
        memory=memory or InMemoryConversationMemory(86400, clock),
        classifier=classifier or fake_classifier(Classification(Intent.GENERAL_CASTING_QUERY, 0.9)),
        responder=responder or fake_responder(),
        escalation_sink=sink or fake_sink(),
        repository=InMemoryRepository(),
        catalog=catalog,
    )


def handle(orchestrator, event):
    return asyncio.run(orchestrator.handle(event))


class TestScenarios:
    def test_short_message_escalates(self, orchestrator, container):
        result = handle(orchestrator, make_event("hmm"))

        assert result.status == EventStatus.PROCESSED
        assert result.action == Action.ESCALATE
        assert orchestrator.escalation_count == 1
        assert len(container.repository.list_escalations()) == 1
        assert result.escalation.suggested_reply != ""

    def test_vague_question_clarifies(self, orchestrator):
        result = handle(orchestrator, make_event("Can you help?"))
        assert result.action == Action.CLARIFY
        assert "share" in result.reply_text

    def test_sensitive_message_escalates_without_draft(self, orchestrator, container):
        result = handle(orchestrator, make_event("I have a legal contract dispute"))

        assert result.action == Action.ESCALATE
        assert result.escalation.suggested_reply == ""
        assert container.repository.list_escalations()[0].classification.is_sensitive is True

    def test_duplicate_event_is_skipped(self, orchestrator, container):
        first = handle(orchestrator, make_event("Can you help?", event_id="evt-dup"))
        second = handle(orchestrator, make_event("Can you help?", event_id="evt-dup"))

        assert first.status == EventStatus.PROCESSED
        assert second.status == EventStatus.DUPLICATE
        assert second.reply_text is None
        assert container.memory.count() == 1

    def test_talent_question_is_answered_from_catalog(self, orchestrator):
        result = handle(orchestrator, make_event("田中太郎はビールのCMに使えますか？"))
        assert result.action == Action.ANSWER
        assert result.classification.intent == Intent.TALENT_NG_CHECK
        assert "起用できません" in result.reply_text

    def test_contract_question_is_answered(self, orchestrator):
        result = handle(orchestrator, make_event("タレントの契約について"))
        assert result.action == Action.ANSWER
        assert result.classification.intent == Intent.CONTRACT_STATUS


class TestUtilityCommands:
    def test_whoami(self, orchestrator, container):
        result = handle(orchestrator, make_event("  WhoAmI ", user_id="U-abc"))

        assert result.action == Action.ANSWER
        assert result.classification.intent == Intent.UTILITY_WHOAMI
        assert result.classification.confidence == 1.0
        assert "U-abc" in result.reply_text
        assert container.memory.count() == 1

    def test_help(self, orchestrator):
        result = handle(orchestrator, make_event("ヘルプ"))
        assert result.classification.intent == Intent.UTILITY_HELP
        assert "Welcome" in result.reply_text

    def test_alerts(self, orchestrator):
        result = handle(orchestrator, make_event("アラート"))
        assert result.classification.intent == Intent.UTILITY_CONTRACT_ALERTS
        assert "HIGH-RISK TALENTS" in result.reply_text

    def test_utility_bypasses_classifier(self, catalog):
        classifier = fake_classifier(Classification(Intent.UNKNOWN, 0.1))
        handle(build(catalog, classifier=classifier), make_event("help"))
        classifier.classify.assert_not_awaited()

    def test_greeting_inside_sentence_is_not_a_command(self, orchestrator):
        result = handle(orchestrator, make_event("hello, who handles sports?"))
        assert result.classification.intent != Intent.UTILITY_HELP


class TestDecisionPolicy:
    @pytest.mark.parametrize(
        "confidence,action",
        [(1.0, Action.ANSWER), (0.70, Action.ANSWER), (0.69, Action.CLARIFY), (0.45, Action.CLARIFY), (0.44, Action.ESCALATE), (0.0, Action.ESCALATE)],
    )
    def test_confidence_bands(self, catalog, confidence, action):
        orchestrator = build(catalog, classifier=fake_classifier(Classification(Intent.GENERAL_CASTING_QUERY, confidence)))
        assert handle(orchestrator, make_event("question text")).action == action

    def test_sensitivity_overrides_confidence(self, catalog):
        responder = fake_responder()
        orchestrator = build(
            catalog,
            classifier=fake_classifier(Classification(Intent.TALENT_NG_CHECK, 0.99, is_sensitive=True)),
            responder=responder,
        )
        result = handle(orchestrator, make_event("question text"))

        assert result.action == Action.ESCALATE
        assert result.escalation.suggested_reply == ""
        responder.answer.assert_not_awaited()
        assert result.reply_text == "escalation text"

    def test_low_confidence_escalation_carries_draft(self, catalog):
        sink = fake_sink()
        orchestrator = build(
            catalog, classifier=fake_classifier(Classification(Intent.UNKNOWN, 0.1)), sink=sink
        )
        result = handle(orchestrator, make_event("question text"))

        recorded = sink.record.call_args.args[0]
        assert recorded.suggested_reply == "answer text"
        assert recorded.event_id == result.event_id

    def test_thresholds_are_validated(self, catalog):
        with pytest.raises(ValueError):
            AssistantOrchestrator(
                dedupe_store=Mock(),
                memory=Mock(),
                classifier=Mock(),
                responder=Mock(),
                escalation_sink=Mock(),
                repository=Mock(),
                catalog=catalog,
                answer_threshold=0.4,
                clarify_threshold=0.6,
            )


class TestContext:
    def test_recent_context_is_passed_to_classifier(self, catalog):
        classifier = fake_classifier(Classification(Intent.GENERAL_CASTING_QUERY, 0.9))
        orchestrator = build(catalog, classifier=classifier)
        handle(orchestrator, make_event("first question", event_id="evt-1"))
        handle(orchestrator, make_event("second question", event_id="evt-2"))

        request = classifier.classify.call_args.args[0]
        assert request.message == "second question"
        assert [turn["user_text"] for turn in request.recent_context] == ["first question"]

    def test_memory_entry_records_turn(self, orchestrator, container):
        handle(orchestrator, make_event("Can you help?", event_id="evt-log", user_id="U-log"))
        [logged] = container.memory.recent("U-log", 5)
        assert logged.action == "clarify"
        assert logged.intent == "general_casting_query"
        assert logged.event_id == "evt-log"


class TestFailureHandling:
    def test_non_text_event_is_ignored(self, orchestrator, container):
        result = handle(orchestrator, make_event("", message_type="image"))
        assert result.status == EventStatus.IGNORED
        assert container.memory.count() == 0

    def test_event_without_user_is_ignored(self, orchestrator):
        assert handle(orchestrator, make_event("hi", user_id=None)).status == EventStatus.IGNORED

    def test_classifier_error_falls_back_to_heuristic(self, catalog):
        orchestrator = build(catalog, classifier=fake_classifier(error=RuntimeError("model down")))
        result = handle(orchestrator, make_event("hmm"))

        assert result.status == EventStatus.PROCESSED
        assert result.classification.intent == Intent.UNKNOWN
        assert result.classification.reason.startswith("Fallback after classifier error")

    def test_responder_error_raises_and_keeps_dedupe_record(self, catalog):
        responder = fake_responder()
        responder.answer.side_effect = RuntimeError("formatter broke")
        memory = InMemoryConversationMemory(86400, FakeClock())
        orchestrator = build(catalog, responder=responder, memory=memory)

        with pytest.raises(ProcessingError) as exc_info:
            handle(orchestrator, make_event("question text", event_id="evt-fail"))

        assert exc_info.value.stage == "answer"
        assert memory.count() == 0
        assert handle(orchestrator, make_event("question text", event_id="evt-fail")).status == EventStatus.DUPLICATE

    def test_sink_error_raises_processing_error(self, catalog):
        sink = fake_sink()
        sink.record.side_effect = OSError("disk full")
        orchestrator = build(catalog, classifier=fake_classifier(Classification(Intent.UNKNOWN, 0.1)), sink=sink)

        with pytest.raises(ProcessingError) as exc_info:
            handle(orchestrator, make_event("question text"))

        assert exc_info.value.stage == "escalation_sink"
        assert orchestrator.escalation_count == 0

    def test_dedupe_failure_fails_closed(self, catalog):
        dedupe = Mock()
        dedupe.seen_or_record.side_effect = StorageError("store down")
        classifier = fake_classifier(Classification(Intent.GENERAL_CASTING_QUERY, 0.9))
        orchestrator = build(catalog, classifier=classifier, dedupe=dedupe)

        with pytest.raises(StorageError):
            handle(orchestrator, make_event("question text"))
        classifier.classify.assert_not_awaited()

    def test_memory_failure_raises_storage_error(self, catalog):
        memory = Mock()
        memory.recent.return_value = []
        memory.append.side_effect = StorageError("log down")
        orchestrator = build(catalog, memory=memory)

        with pytest.raises(StorageError):
            handle(orchestrator, make_event("question text"))

    def test_draft_failure_still_escalates(self, catalog):
        responder = fake_responder()
        responder.answer.side_effect = RuntimeError("draft broke")
        sink = fake_sink()
        orchestrator = build(
            catalog, classifier=fake_classifier(Classification(Intent.UNKNOWN, 0.1)), responder=responder, sink=sink
        )

        result = handle(orchestrator, make_event("question text", event_id="e1"))

        assert result.status == EventStatus.PROCESSED
        assert result.action == Action.ESCALATE
        assert result.escalation.suggested_reply == ""
        assert result.reply_text == "escalation text"
        sink.record.assert_awaited_once()
        assert orchestrator.escalation_count == 1


class TestConcurrentDelivery:
    def test_same_event_id_is_processed_once(self, orchestrator, container):
        async def deliver_all():
            return await asyncio.gather(
                *(orchestrator.handle(make_event("Can you help?", event_id="same")) for _ in range(10))
            )

        results = asyncio.run(deliver_all())

        statuses = [result.status for result in results]
        assert statuses.count(EventStatus.PROCESSED) == 1
        assert statuses.count(EventStatus.DUPLICATE) == 9
        assert container.memory.count() == 1
