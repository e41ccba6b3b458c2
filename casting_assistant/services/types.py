"""Core data model shared by the pipeline, its stores and its collaborators."""

from __future__ import annotations

import math
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_timezone(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


class Intent(str, Enum):
    TALENT_NG_CHECK = "talent_ng_check"  # can talent X be used for brand/category Y
    SCANDAL_RISK_CHECK = "scandal_risk_check"
    CONTRACT_STATUS = "contract_status"
    EXPERT_FINDER = "expert_finder"  # who internally knows about X
    CONFLICT_CHECK = "conflict_check"  # competing exclusivity
    GENERAL_CASTING_QUERY = "general_casting_query"
    SENSITIVE = "sensitive"  # legal, harassment, payment disputes
    UNKNOWN = "unknown"
    UTILITY_WHOAMI = "utility_whoami"
    UTILITY_HELP = "utility_help"
    UTILITY_CONTRACT_ALERTS = "utility_contract_alerts"


CLASSIFIER_INTENTS = {
    Intent.TALENT_NG_CHECK,
    Intent.SCANDAL_RISK_CHECK,
    Intent.CONTRACT_STATUS,
    Intent.EXPERT_FINDER,
    Intent.CONFLICT_CHECK,
    Intent.GENERAL_CASTING_QUERY,
    Intent.SENSITIVE,
    Intent.UNKNOWN,
}


class Action(str, Enum):
    ANSWER = "answer"
    CLARIFY = "clarify"
    ESCALATE = "escalate"


class EventStatus(str, Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


def clamp_confidence(value: Any, fallback: float) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return fallback
    if math.isnan(parsed) or math.isinf(parsed):
        return fallback
    return min(max(parsed, 0.0), 1.0)


@dataclass(frozen=True)
class Classification:
    intent: Intent
    confidence: float
    is_sensitive: bool = False
    reason: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "confidence", clamp_confidence(self.confidence, 0.0))

    def to_dict(self) -> dict[str, Any]:
        return {
            "intent": self.intent.value,
            "confidence": self.confidence,
            "is_sensitive": self.is_sensitive,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class InboundEvent:
    """One webhook delivery, normalized by the transport layer."""

    event_id: str
    user_id: Optional[str]
    text: str
    received_at: datetime
    reply_token: Optional[str] = None
    event_type: str = "message"
    message_type: Optional[str] = "text"

    @property
    def is_text_message(self) -> bool:
        return self.event_type == "message" and self.message_type == "text" and bool(self.user_id)


def split_tags(value: Any) -> tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        items = value.split("|")
    else:
        items = [str(item) for item in value]
    return tuple(item.strip() for item in items if item and item.strip())


@dataclass(frozen=True)
class Profile:
    user_id: str
    display_name: str = ""
    language_pref: Optional[str] = None
    interest_tags: tuple[str, ...] = ()
    location: str = ""
    goal: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Profile":
        user_id = str(data.get("line_user_id") or data.get("user_id") or "").strip()
        if not user_id:
            raise ValueError("profile row has no user id")
        return cls(
            user_id=user_id,
            display_name=str(data.get("display_name") or "").strip(),
            language_pref=str(data.get("language_pref") or "").strip() or None,
            interest_tags=split_tags(data.get("interest_tags")),
            location=str(data.get("location") or "").strip(),
            goal=str(data.get("career_goal") or data.get("goal") or "").strip(),
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["interest_tags"] = list(self.interest_tags)
        return data


@dataclass(frozen=True)
class ConversationLogEntry:
    user_id: str
    user_text: str
    assistant_text: str
    intent: str
    confidence: float
    action: str
    event_id: Optional[str] = None
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    def to_context(self) -> dict[str, Any]:
        return {
            "user_text": self.user_text,
            "assistant_text": self.assistant_text,
            "intent": self.intent,
            "action": self.action,
        }


@dataclass(frozen=True)
class EscalationItem:
    user_id: str
    user_text: str
    classification: Classification
    suggested_reply: str
    event_id: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "event_id": self.event_id,
            "user_id": self.user_id,
            "user_text": self.user_text,
            "intent": self.classification.intent.value,
            "confidence": self.classification.confidence,
            "is_sensitive": self.classification.is_sensitive,
            "reason": self.classification.reason,
            "suggested_reply": self.suggested_reply,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class EscalationAck:
    mode: str
    stored: bool = True
    detail: Optional[str] = None


@dataclass(frozen=True)
class ClassificationRequest:
    message: str
    profile: Optional[Profile] = None
    recent_context: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class ReplyContext:
    user_text: str
    classification: Classification
    profile: Optional[Profile] = None
    recent_context: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class ProcessResult:
    status: EventStatus
    event_id: str
    user_id: Optional[str] = None
    action: Optional[Action] = None
    reply_text: Optional[str] = None
    classification: Optional[Classification] = None
    escalation: Optional[EscalationItem] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "event_id": self.event_id,
            "user_id": self.user_id,
            "action": self.action.value if self.action else None,
            "reply_text": self.reply_text,
            "classification": self.classification.to_dict() if self.classification else None,
            "escalation": self.escalation.to_dict() if self.escalation else None,
        }
