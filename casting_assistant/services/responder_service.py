import json
import re
from typing import Optional, Protocol

from casting_assistant.logging_config import get_logger
from casting_assistant.services.casting_service import (
    CastingCatalog,
    extract_category,
    extract_specialization,
    extract_talent_name,
    format_availability,
    format_conflicts,
    format_contract_status,
    format_experts,
    format_risk,
)
from casting_assistant.services.llm import LLMProvider
from casting_assistant.services.repository import InMemoryRepository, KnowledgeItem
from casting_assistant.services.types import Intent, Profile, ReplyContext

logger = get_logger("responder_service")

JAPANESE_CHARS = re.compile(r"[\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uff66-\uff9f]")

ANSWER_SYSTEM_PROMPT = """You are a professional casting assistant for an advertising agency.

Your role:
- Answer questions about talent availability and NG conditions
- Assess scandal risks for brand safety
- Help staff find internal experts for specific talents
- Alert about contract conflicts and expirations

Reply in the requested language. Keep it short and factual, and use only the
knowledge matches provided. Return JSON: {"reply": string}."""


def detect_language(text: str, preferred: Optional[str] = None) -> str:
    if text and JAPANESE_CHARS.search(text):
        return "ja"
    if preferred in ("ja", "en"):
        return preferred
    return "en"


def _display_name(profile: Optional[Profile]) -> str:
    if profile and profile.display_name:
        return profile.display_name
    return "there"


def fallback_answer(language: str, profile: Optional[Profile], matches: list[KnowledgeItem]) -> str:
    name = _display_name(profile)
    if language == "ja":
        text = f"{name}さん、お問い合わせありがとうございます。詳細を確認してご回答いたします。"
    else:
        text = f"Hi {name}, thank you for your inquiry. I will check the details and respond."
    if matches:
        header = "参考情報:" if language == "ja" else "Related information:"
        lines = [f"・{item.title}" + (f" ({item.url})" if item.url else "") for item in matches]
        text = "\n".join([text, "", header, *lines])
    return text


def clarifying_question(language: str) -> str:
    if language == "ja":
        return "詳しく確認したいので、タレント名・ブランド名・カテゴリを教えてください。"
    return "To help accurately, could you share the talent name, brand, and category?"


def escalation_notice(language: str) -> str:
    if language == "ja":
        return "確認が必要な内容のため、担当者に引き継ぎます。追ってご連絡します。"
    return "This needs specialist review, so I have escalated it. You will receive a follow-up soon."


class Responder(Protocol):
    async def answer(self, context: ReplyContext) -> str:
        ...

    async def clarify(self, context: ReplyContext) -> str:
        ...

    async def escalation_notice(self, context: ReplyContext) -> str:
        ...


class CastingResponder:
    """Formats replies from catalog lookups, knowledge matches and, if enabled, the LLM."""

    def __init__(
        self,
        catalog: CastingCatalog,
        repository: InMemoryRepository,
        llm: Optional[LLMProvider] = None,
        use_external_ai: bool = False,
    ):
        self.catalog = catalog
        self.repository = repository
        self.llm = llm
        self.use_external_ai = use_external_ai

    def _language(self, context: ReplyContext) -> str:
        preferred = context.profile.language_pref if context.profile else None
        return detect_language(context.user_text, preferred)

    def casting_reply(self, intent: Intent, text: str) -> Optional[str]:
        """Catalog-backed reply for the casting intents; None for anything else."""
        if intent == Intent.TALENT_NG_CHECK:
            result = self.catalog.check_availability(extract_talent_name(text), category=extract_category(text))
            return format_availability(result)
        if intent == Intent.SCANDAL_RISK_CHECK:
            return format_risk(self.catalog.scandal_risk(extract_talent_name(text)))
        if intent == Intent.CONTRACT_STATUS:
            return format_contract_status(self.catalog.contract_status(extract_talent_name(text)))
        if intent == Intent.EXPERT_FINDER:
            specialization = extract_specialization(text)
            return format_experts(self.catalog.find_experts(specialization), specialization)
        if intent == Intent.CONFLICT_CHECK:
            return format_conflicts(self.catalog.check_conflicts(extract_talent_name(text)))
        return None

    async def answer(self, context: ReplyContext) -> str:
        reply = self.casting_reply(context.classification.intent, context.user_text)
        if reply is not None:
            return reply

        language = self._language(context)
        matches = self.repository.search_knowledge(context.user_text, context.profile)

        if self.use_external_ai and self.llm is not None and self.llm.is_configured():
            user_prompt = json.dumps(
                {
                    "language": language,
                    "user_message": context.user_text,
                    "profile": context.profile.to_dict() if context.profile else None,
                    "intent": context.classification.intent.value,
                    "recent_context": context.recent_context,
                    "knowledge_matches": [item.to_dict() for item in matches],
                },
                ensure_ascii=False,
            )
            try:
                data = await self.llm.chat_json(ANSWER_SYSTEM_PROMPT, user_prompt, temperature=0.4, max_tokens=500)
                reply = str(data.get("reply") or "").strip()
                if reply:
                    return reply
            except Exception as exc:
                logger.warning(f"Answer LLM failed, using fallback: {exc}")

        return fallback_answer(language, context.profile, matches)

    async def clarify(self, context: ReplyContext) -> str:
        return clarifying_question(self._language(context))

    async def escalation_notice(self, context: ReplyContext) -> str:
        return escalation_notice(self._language(context))
