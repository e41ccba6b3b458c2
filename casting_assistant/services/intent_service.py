import json
import re
import time
from dataclasses import replace
from typing import Iterable, Optional, Protocol

from casting_assistant.logging_config import get_logger
from casting_assistant.services.llm import LLMProvider
from casting_assistant.services.types import (
    CLASSIFIER_INTENTS,
    Classification,
    ClassificationRequest,
    Intent,
    clamp_confidence,
)

logger = get_logger("intent_service")

SHORT_MESSAGE_CHARS = 8

SENSITIVE_KEYWORDS = (
    "legal",
    "illegal",
    "lawyer",
    "contract dispute",
    "payment issue",
    "lawsuit",
    "harassment",
    "abuse",
    "違法",
    "訴訟",
    "弁護士",
    "契約トラブル",
    "支払いトラブル",
    "ハラスメント",
)

TALENT_NG_KEYWORDS = (
    "使える",
    "使えますか",
    "起用",
    "キャスティング",
    "ng",
    "cm",
    "広告",
    "出演可能",
    "available",
    "can we use",
    "cast",
)

SCANDAL_RISK_KEYWORDS = (
    "リスク",
    "スキャンダル",
    "炎上",
    "週刊誌",
    "問題",
    "過去",
    "評判",
    "risk",
    "scandal",
    "controversy",
    "reputation",
)

CONTRACT_STATUS_KEYWORDS = (
    "契約",
    "状況",
    "期限",
    "更新",
    "いつまで",
    "満了",
    "contract",
    "status",
    "expir",
    "renew",
)

EXPERT_FINDER_KEYWORDS = (
    "詳しい",
    "専門",
    "担当",
    "相談",
    "誰に聞けば",
    "韓国",
    "expert",
    "specialist",
    "who knows",
    "contact",
)

CONFLICT_CHECK_KEYWORDS = (
    "競合",
    "抵触",
    "バッティング",
    "かぶり",
    "重複",
    "conflict",
    "overlap",
    "competing",
)


def _compile_terms(terms: Iterable[str]) -> tuple[re.Pattern, ...]:
    # Latin terms must start a word ("cast" matches "casting", not "broadcast").
    # Japanese has no word breaks, so those match anywhere.
    patterns = []
    for term in terms:
        if term.isascii():
            patterns.append(re.compile(r"(?<![a-z0-9])" + re.escape(term)))
        else:
            patterns.append(re.compile(re.escape(term)))
    return tuple(patterns)


SENSITIVE_PATTERNS = _compile_terms(SENSITIVE_KEYWORDS)

# Checked in order; the first matching table wins.
INTENT_RULES = (
    (Intent.CONFLICT_CHECK, _compile_terms(CONFLICT_CHECK_KEYWORDS), 0.82, "Conflict check keywords matched"),
    (Intent.SCANDAL_RISK_CHECK, _compile_terms(SCANDAL_RISK_KEYWORDS), 0.80, "Scandal/risk keywords matched"),
    (Intent.TALENT_NG_CHECK, _compile_terms(TALENT_NG_KEYWORDS), 0.85, "Talent NG/availability keywords matched"),
    (Intent.CONTRACT_STATUS, _compile_terms(CONTRACT_STATUS_KEYWORDS), 0.78, "Contract status keywords matched"),
    (Intent.EXPERT_FINDER, _compile_terms(EXPERT_FINDER_KEYWORDS), 0.75, "Expert finder keywords matched"),
)

CLASSIFY_SYSTEM_PROMPT = (
    "Classify casting queries for an advertising agency's casting team. "
    "Return JSON with intent, confidence (0-1), is_sensitive (bool), reason. "
    "intent must be one of: "
    "talent_ng_check (checking if talent can be used for a brand/category), "
    "scandal_risk_check (assessing talent risk), "
    "contract_status (contract info inquiry), "
    "expert_finder (finding internal specialist), "
    "conflict_check (competitive overlap), "
    "general_casting_query (other), "
    "sensitive (legal/harassment/payment issues), "
    "unknown."
)


def normalize_for_matching(text: str) -> str:
    """Casefold, collapse whitespace and trim surrounding punctuation."""
    if not text:
        return ""
    normalized = text.strip().casefold()
    normalized = re.sub(r"\s+", " ", normalized)
    normalized = re.sub(r"^[^\w]+|[^\w]+$", "", normalized)
    return normalized


def _matches_any(text: str, patterns: Iterable[re.Pattern]) -> bool:
    return any(pattern.search(text) for pattern in patterns)


def is_sensitive_message(message: str) -> bool:
    normalized = normalize_for_matching(message)
    if not normalized:
        return False
    return _matches_any(normalized, SENSITIVE_PATTERNS)


def heuristic_classify(message: str) -> Classification:
    """Deterministic keyword classification; also the fallback for remote failures."""
    text = normalize_for_matching(message)

    if not text:
        return Classification(Intent.UNKNOWN, 0.2, False, "Empty message")

    if _matches_any(text, SENSITIVE_PATTERNS):
        return Classification(Intent.SENSITIVE, 0.2, True, "Sensitive keyword detected")

    for intent, patterns, confidence, reason in INTENT_RULES:
        if _matches_any(text, patterns):
            return Classification(intent, confidence, False, reason)

    if len(text) < SHORT_MESSAGE_CHARS:
        return Classification(Intent.UNKNOWN, 0.3, False, "Message too short for intent certainty")

    return Classification(Intent.GENERAL_CASTING_QUERY, 0.5, False, "General casting inquiry")


class Classifier(Protocol):
    async def classify(self, request: ClassificationRequest) -> Classification:
        ...


class HeuristicClassifier:
    async def classify(self, request: ClassificationRequest) -> Classification:
        return heuristic_classify(request.message)


def _parse_intent(value: object) -> Optional[Intent]:
    try:
        intent = Intent(str(value).strip().lower())
    except ValueError:
        return None
    return intent if intent in CLASSIFIER_INTENTS else None


class LLMClassifier:
    """Remote-model classifier with the heuristic as its safety net.

    Sensitive keywords short-circuit before the model is called, so a model
    that misses a legal or harassment topic can never unlock an automated
    answer for it.
    """

    def __init__(self, llm: LLMProvider):
        self.llm = llm

    async def classify(self, request: ClassificationRequest) -> Classification:
        if is_sensitive_message(request.message) or not self.llm.is_configured():
            return heuristic_classify(request.message)

        user_prompt = json.dumps(
            {
                "message": request.message,
                "profile": request.profile.to_dict() if request.profile else None,
                "recent_context": request.recent_context,
            },
            ensure_ascii=False,
        )

        llm_start = time.monotonic()
        try:
            data = await self.llm.chat_json(
                CLASSIFY_SYSTEM_PROMPT,
                user_prompt,
                temperature=0,
                max_tokens=220,
            )
        except Exception as exc:
            logger.warning(f"Intent LLM failed, using heuristic: {exc}")
            return replace(heuristic_classify(request.message), reason=f"Fallback after LLM error: {exc}")

        logger.info(
            "Timing",
            extra={
                "context": {
                    "stage": "intent_llm_ms",
                    "elapsed_ms": round((time.monotonic() - llm_start) * 1000, 2),
                }
            },
        )

        intent = _parse_intent(data.get("intent"))
        if intent is None:
            logger.warning(f"Intent LLM returned unknown intent: {data.get('intent')!r}")
            return replace(heuristic_classify(request.message), reason="Fallback after invalid LLM intent")

        return Classification(
            intent=intent,
            confidence=clamp_confidence(data.get("confidence"), 0.5),
            is_sensitive=bool(data.get("is_sensitive")) or intent == Intent.SENSITIVE,
            reason=str(data.get("reason") or "LLM classification"),
        )


def build_classifier(llm: Optional[LLMProvider], use_external_ai: bool) -> Classifier:
    if use_external_ai and llm is not None:
        return LLMClassifier(llm)
    return HeuristicClassifier()
