"""Inbound events consumed by the onboarding workflow."""

from typing import Literal

from pydantic import BaseModel, Field

from src.domain.records import ApprovalDecision


class _InboundEvent(BaseModel):
    event_id: str | None = Field(None, description="Bridge-assigned ID used for duplicate detection")
    interaction_id: str | None = Field(None, description="Interaction to reply to, if the event came from one")


class MemberJoined(_InboundEvent):
    """A new member joined the guild."""

    type: Literal["member_joined"] = "member_joined"
    actor_id: str
    actor_name: str = "member"
    guild_id: str | None = None


class StartRequested(_InboundEvent):
    """The *Get Started* control was pressed."""

    type: Literal["start_requested"] = "start_requested"
    actor_id: str = Field(..., description="Who pressed the control")
    target_actor_id: str = Field(..., description="Actor the control was issued to")
    surface_id: str | None = None


class EmailSubmitted(_InboundEvent):
    """The email form was submitted."""

    type: Literal["email_submitted"] = "email_submitted"
    actor_id: str
    target_actor_id: str
    surface_id: str | None = None
    email: str = ""


class AdminDecision(_InboundEvent):
    """An operator pressed approve, reject or confirm on a pending report."""

    type: Literal["admin_decision"] = "admin_decision"
    operator_id: str
    operator_role_ids: list[str] = Field(default_factory=list)
    can_manage_guild: bool = False
    record_key: str
    decision: ApprovalDecision
    email: str | None = None
    surface_id: str | None = None


class Attachment(BaseModel):
    """File attached to a chat message."""

    url: str
    filename: str | None = None
    content_type: str | None = None


class AttachmentReceived(_InboundEvent):
    """A message (possibly carrying attachments) was posted in a guild channel."""

    type: Literal["attachment_received"] = "attachment_received"
    actor_id: str
    surface_id: str
    attachments: list[Attachment] = Field(default_factory=list)
    is_bot: bool = False
    avatar_url: str | None = None
    actor_name: str | None = None
    member_role_ids: list[str] | None = Field(
        None, description="Roles the actor currently holds; None when the bridge does not know"
    )


InboundEvent = MemberJoined | StartRequested | EmailSubmitted | AdminDecision | AttachmentReceived
