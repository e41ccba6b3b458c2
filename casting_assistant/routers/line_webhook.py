import hashlib
import json
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Request
from pydantic import ValidationError

from casting_assistant.container import Container
from casting_assistant.logging_config import get_logger
from casting_assistant.schemas.line import EventOutcome, LineEvent, LineWebhookBody, WebhookSummary
from casting_assistant.services.errors import AssistantError
from casting_assistant.services.line_service import QUICK_REPLIES, verify_line_signature
from casting_assistant.services.types import Action, EventStatus, InboundEvent, utc_now

logger = get_logger("line_webhook")

router = APIRouter(prefix="/api/line", tags=["line"])


def build_inbound_event_id(
    webhook_event_id: str | None,
    user_id: str | None,
    timestamp: int | None,
    message_text: str | None,
) -> str:
    """Stable id for dedupe; LINE redeliveries keep the same webhookEventId."""
    if webhook_event_id:
        return webhook_event_id.strip()
    if user_id and timestamp is not None:
        return f"{user_id}:{timestamp}"
    if user_id and message_text:
        digest = hashlib.sha256(message_text.encode("utf-8")).hexdigest()[:16]
        return f"{user_id}:{digest}"
    return str(uuid.uuid4())


def to_inbound_event(event: LineEvent) -> InboundEvent:
    user_id = event.source.userId if event.source else None
    message_type = event.message.type if event.message else None
    text = (event.message.text or "") if event.message and message_type == "text" else ""
    if event.timestamp is not None:
        received_at = datetime.fromtimestamp(event.timestamp / 1000, tz=timezone.utc)
    else:
        received_at = utc_now()
    return InboundEvent(
        event_id=build_inbound_event_id(event.webhookEventId, user_id, event.timestamp, text),
        user_id=user_id,
        text=text,
        received_at=received_at,
        reply_token=event.replyToken,
        event_type=event.type or "",
        message_type=message_type,
    )


def _check_signature(container: Container, raw_body: bytes, signature: Optional[str]) -> None:
    settings = container.settings
    if settings.line_channel_secret:
        if not verify_line_signature(raw_body, signature, settings.line_channel_secret):
            raise HTTPException(status_code=401, detail="LINE signature verification failed")
    elif not settings.allow_unsigned_webhook:
        raise HTTPException(
            status_code=503,
            detail="LINE_CHANNEL_SECRET is required unless ALLOW_UNSIGNED_WEBHOOK=true",
        )


@router.post("/webhook", response_model=WebhookSummary)
async def handle_line_webhook(
    request: Request,
    x_line_signature: Optional[str] = Header(default=None, alias="X-Line-Signature"),
) -> WebhookSummary:
    container: Container = request.app.state.container
    raw_body = await request.body()
    _check_signature(container, raw_body, x_line_signature)

    try:
        body = LineWebhookBody.model_validate(json.loads(raw_body or b"{}"))
    except (json.JSONDecodeError, UnicodeDecodeError, ValidationError) as e:
        logger.warning(f"Invalid LINE webhook payload: {e}")
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    summary = WebhookSummary(received=len(body.events))

    for line_event in body.events:
        event = to_inbound_event(line_event)
        try:
            result = await container.orchestrator.handle(event)
        except AssistantError as e:
            logger.error(
                "Event processing failed",
                extra={"context": {"event_id": event.event_id, "user_id": event.user_id, "error": str(e)}},
            )
            summary.errors += 1
            summary.results.append(
                EventOutcome(eventId=event.event_id, userId=event.user_id, status="error", message=str(e))
            )
            continue
        except Exception as e:
            logger.error(f"Unexpected error for event {event.event_id}: {e}", exc_info=True)
            summary.errors += 1
            summary.results.append(
                EventOutcome(eventId=event.event_id, userId=event.user_id, status="error", message=str(e))
            )
            continue

        replied = False
        if result.status == EventStatus.DUPLICATE:
            summary.duplicates += 1
        elif result.status == EventStatus.IGNORED:
            summary.ignored += 1
        else:
            if result.action == Action.ESCALATE:
                summary.escalated += 1
            if result.reply_text and event.reply_token:
                replied = await container.line_client.reply(event.reply_token, result.reply_text, QUICK_REPLIES)
                if replied:
                    summary.replied += 1

        summary.results.append(
            EventOutcome(
                eventId=result.event_id,
                userId=result.user_id,
                status=result.status.value,
                action=result.action.value if result.action else None,
                intent=result.classification.intent.value if result.classification else None,
                confidence=result.classification.confidence if result.classification else None,
                replied=replied,
            )
        )

    logger.info(
        "LINE webhook handled",
        extra={"context": summary.model_dump(exclude={"results"})},
    )
    return summary
