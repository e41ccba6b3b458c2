from typing import Optional

from pydantic import BaseModel, Field


class LineSource(BaseModel):
    type: Optional[str] = None
    userId: Optional[str] = None
    groupId: Optional[str] = None
    roomId: Optional[str] = None


class LineMessage(BaseModel):
    id: Optional[str] = None
    type: Optional[str] = None
    text: Optional[str] = None


class LineDeliveryContext(BaseModel):
    isRedelivery: bool = False


class LineEvent(BaseModel):
    type: Optional[str] = None
    webhookEventId: Optional[str] = None
    timestamp: Optional[int] = None
    replyToken: Optional[str] = None
    source: Optional[LineSource] = None
    message: Optional[LineMessage] = None
    deliveryContext: Optional[LineDeliveryContext] = None


class LineWebhookBody(BaseModel):
    destination: Optional[str] = None
    events: list[LineEvent] = Field(default_factory=list)


class EventOutcome(BaseModel):
    eventId: Optional[str] = None
    userId: Optional[str] = None
    status: str
    action: Optional[str] = None
    intent: Optional[str] = None
    confidence: Optional[float] = None
    replied: bool = False
    message: Optional[str] = None


class WebhookSummary(BaseModel):
    received: int = 0
    replied: int = 0
    escalated: int = 0
    duplicates: int = 0
    ignored: int = 0
    errors: int = 0
    results: list[EventOutcome] = Field(default_factory=list)
