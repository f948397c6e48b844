"""Bridge webhook payload parser.

The bridge forwards raw platform activity as JSON:

    {"event_id": "...", "kind": "member_join", "guild_id": "...", "user": {"id": "...", "name": "..."}}
    {"event_id": "...", "kind": "button", "custom_id": "verify:start:123", "interaction_id": "...", ...}
    {"event_id": "...", "kind": "modal_submit", "custom_id": "verify:email:123", "fields": {"email": "..."}}
    {"event_id": "...", "kind": "message", "channel_id": "...", "author": {...}, "attachments": [...]}

This module turns those into domain events. Anything unrecognised parses to None.
"""

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.core.config import Constants
from src.domain.events import (
    AdminDecision,
    Attachment,
    AttachmentReceived,
    EmailSubmitted,
    InboundEvent,
    MemberJoined,
    StartRequested,
)
from src.domain.records import ApprovalDecision


logger = logging.getLogger(__name__)


class _BridgeModel(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)


class BridgeUser(_BridgeModel):
    id: str
    name: str | None = None
    bot: bool = False
    avatar_url: str | None = None


class BridgeMember(_BridgeModel):
    role_ids: list[str] | None = None
    can_manage_guild: bool = False


class BridgePayload(_BridgeModel):
    """Raw bridge event envelope."""

    event_id: str | None = Field(None, description="Unique event ID used for duplicate detection")
    kind: str = Field(..., description="member_join, button, modal_submit or message")
    guild_id: str | None = None
    channel_id: str | None = None
    interaction_id: str | None = None
    custom_id: str | None = None
    user: BridgeUser | None = Field(None, description="Who triggered the interaction or joined")
    author: BridgeUser | None = Field(None, description="Message author for message events")
    member: BridgeMember | None = None
    fields: dict[str, str] = Field(default_factory=dict)
    attachments: list[Attachment] = Field(default_factory=list)


def split_custom_id(custom_id: str) -> list[str]:
    """Split an action ID into at most four parts; the last part keeps any separators."""
    return custom_id.split(Constants.ACTION_ID_SEPARATOR, 3)


def _parse_button(payload: BridgePayload) -> InboundEvent | None:
    if payload.user is None or not payload.custom_id:
        return None
    parts = split_custom_id(payload.custom_id)

    if len(parts) == 3 and parts[:2] == ["verify", "start"]:
        return StartRequested(
            event_id=payload.event_id,
            interaction_id=payload.interaction_id,
            actor_id=payload.user.id,
            target_actor_id=parts[2],
            surface_id=payload.channel_id,
        )

    if len(parts) >= 3 and parts[0] == "pending":
        try:
            decision = ApprovalDecision(parts[1])
        except ValueError:
            logger.warning("Unknown decision in action ID", extra={"custom_id": payload.custom_id})
            return None
        email = parts[3] if len(parts) == 4 else None
        if email == Constants.ACTION_EMAIL_PLACEHOLDER or not email:
            email = None
        member = payload.member or BridgeMember()
        return AdminDecision(
            event_id=payload.event_id,
            interaction_id=payload.interaction_id,
            operator_id=payload.user.id,
            operator_role_ids=member.role_ids or [],
            can_manage_guild=member.can_manage_guild,
            record_key=parts[2],
            decision=decision,
            email=email,
            surface_id=payload.channel_id,
        )

    return None


def _parse_modal_submit(payload: BridgePayload) -> InboundEvent | None:
    if payload.user is None or not payload.custom_id:
        return None
    parts = split_custom_id(payload.custom_id)
    if len(parts) != 3 or parts[:2] != ["verify", "email"]:
        return None
    return EmailSubmitted(
        event_id=payload.event_id,
        interaction_id=payload.interaction_id,
        actor_id=payload.user.id,
        target_actor_id=parts[2],
        surface_id=payload.channel_id,
        email=payload.fields.get("email", ""),
    )


def _parse_message(payload: BridgePayload) -> InboundEvent | None:
    if payload.author is None or not payload.channel_id or not payload.attachments:
        return None
    return AttachmentReceived(
        event_id=payload.event_id,
        actor_id=payload.author.id,
        surface_id=payload.channel_id,
        attachments=payload.attachments,
        is_bot=payload.author.bot,
        avatar_url=payload.author.avatar_url,
        actor_name=payload.author.name,
        member_role_ids=payload.member.role_ids if payload.member else None,
    )


def _parse_member_join(payload: BridgePayload) -> InboundEvent | None:
    if payload.user is None or payload.user.bot:
        return None
    return MemberJoined(
        event_id=payload.event_id,
        actor_id=payload.user.id,
        actor_name=payload.user.name or "member",
        guild_id=payload.guild_id,
    )


_PARSERS = {
    "member_join": _parse_member_join,
    "button": _parse_button,
    "modal_submit": _parse_modal_submit,
    "message": _parse_message,
}


def parse_bridge_event(data: dict[str, Any]) -> InboundEvent | None:
    """Parse a bridge webhook payload into a domain event.

    Args:
        data: JSON body posted by the bridge

    Returns:
        The domain event, or None if the payload is malformed or not relevant
    """
    try:
        payload = BridgePayload.model_validate(data)
    except ValidationError as e:
        logger.warning("Malformed bridge payload", extra={"error": str(e)})
        return None

    parser = _PARSERS.get(payload.kind)
    if parser is None:
        logger.debug("Ignoring bridge event kind", extra={"kind": payload.kind})
        return None

    event = parser(payload)
    if event is None:
        logger.debug("Bridge event not relevant", extra={"kind": payload.kind, "custom_id": payload.custom_id})
    return event
