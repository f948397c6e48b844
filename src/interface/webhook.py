"""Bridge webhook endpoints."""

import logging
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Request

from src.core import admin_notifier
from src.core.container import AppContainer, get_container
from src.core.errors import classify_error_with_response
from src.domain.events import InboundEvent
from src.domain.notifications import ActorNotice
from src.interface import event_parser, webhook_security


router = APIRouter(prefix="/webhook", tags=["webhook"])
logger = logging.getLogger(__name__)


@router.post("/events")
async def receive_event(
    request: Request,
    background_tasks: BackgroundTasks,
    container: Annotated[AppContainer, Depends(get_container)],
    x_bridge_secret: Annotated[str | None, Header()] = None,
) -> dict[str, str]:
    """Receive and validate bridge event POST requests.

    This endpoint:
    1. Authenticates the bridge via its shared secret
    2. Parses the JSON payload into a domain event
    3. Drops duplicate event IDs
    4. Returns immediately and dispatches handling to a background task

    Raises:
        HTTPException: If the secret is wrong or the payload is not a JSON object
    """
    secret_result = await webhook_security.validate_webhook_secret(
        x_bridge_secret, container.settings.bridge_webhook_secret
    )
    if not secret_result.is_valid:
        raise HTTPException(
            status_code=secret_result.http_status_code or 401,
            detail=secret_result.error_message,
        )

    try:
        payload = await request.json()
    except ValueError as e:
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from e
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Payload must be a JSON object")

    event = event_parser.parse_bridge_event(payload)
    if event is None:
        return {"status": "ignored"}

    nonce_result = await webhook_security.validate_webhook_nonce(event.event_id, container.seen_events)
    if not nonce_result.is_valid:
        # 200 so the bridge does not redeliver
        return {"status": "duplicate"}

    background_tasks.add_task(process_event, container, event)
    return {"status": "received"}


async def _send_reply(container: AppContainer, event: InboundEvent, text: str) -> None:
    """Answer the interaction, or post in the event's surface when there is none.

    Delivery failures are logged and swallowed.
    """
    surface_id = getattr(event, "surface_id", None)
    try:
        if event.interaction_id:
            result = await container.gateway.reply_to_interaction(interaction_id=event.interaction_id, text=text)
        elif surface_id:
            result = await container.gateway.send_to_surface(ActorNotice(surface_id=surface_id, text=text))
        else:
            return
    except Exception as e:
        logger.error("Failed to send reply", extra={"event_id": event.event_id, "error": str(e)})
        return

    if not result.success:
        logger.error("Failed to send reply", extra={"event_id": event.event_id, "error": result.error})


async def _handle_event_error(container: AppContainer, event: InboundEvent, e: Exception) -> None:
    """Classify a handler failure, alert operators if warranted and tell the presser."""
    error_response = classify_error_with_response(e)

    logger.error(
        "Error processing event: %s",
        e,
        extra={
            "event_type": event.type,
            "event_id": event.event_id,
            "error_code": error_response.code,
            "severity": error_response.severity.value,
        },
    )

    if admin_notifier.should_notify_operators(error_response.category):
        notification_msg = (
            f"⚠️ Event error: {error_response.code}\n"
            f"Category: {error_response.category.value}\n"
            f"Event: {event.type} ({event.event_id or 'no id'})\n"
            f"Error: {str(e)[:200]}"
        )
        await admin_notifier.notify_operators(
            gateway=container.gateway,
            message=notification_msg,
            error_category=error_response.category,
            severity="critical",
            rate_limiter=container.notification_limiter,
        )

    await _send_reply(container, event, error_response.message)


async def process_event(container: AppContainer, event: InboundEvent) -> None:
    """Handle one inbound event in the background; never raises."""
    try:
        reply = await container.onboarding.handle(event)
    except Exception as e:
        await _handle_event_error(container, event, e)
        return

    if reply:
        await _send_reply(container, event, reply)
