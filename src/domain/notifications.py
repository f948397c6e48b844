"""Outbound notifications handed to the platform gateway."""

from enum import StrEnum

from pydantic import BaseModel, Field

from src.core.config import Constants
from src.domain.records import ApprovalDecision


class ActionStyle(StrEnum):
    PRIMARY = "primary"
    SUCCESS = "success"
    DANGER = "danger"
    SECONDARY = "secondary"


class ActionButton(BaseModel):
    """An embedded action; pressing it comes back to us as an inbound event."""

    custom_id: str
    label: str
    style: ActionStyle = ActionStyle.PRIMARY


class ReportField(BaseModel):
    name: str
    value: str
    inline: bool = False


class ActorNotice(BaseModel):
    """Guidance or status message posted in an actor's surface."""

    surface_id: str
    text: str = ""
    title: str | None = None
    mention_actor_id: str | None = None
    image_urls: list[str] = Field(default_factory=list)
    actions: list[ActionButton] = Field(default_factory=list)


class OperatorReport(BaseModel):
    """Summary or detail report posted to the operator channel."""

    title: str | None = None
    text: str = ""
    fields: list[ReportField] = Field(default_factory=list)
    footer: str | None = None
    mention_role_id: str | None = None
    success: bool | None = Field(None, description="Colours the report when it reflects an outcome")
    actions: list[ActionButton] = Field(default_factory=list)


class AdmissionCard(BaseModel):
    """Final welcome card combining profile fields and the uploaded photo."""

    actor_id: str
    title: str
    description: str = "🎉 New Member Onboarding Card"
    fields: list[ReportField] = Field(default_factory=list)
    image_url: str | None = None
    fallback_image_url: str | None = None
    footer: str | None = None


def start_action_id(actor_id: str) -> str:
    return Constants.ACTION_ID_SEPARATOR.join(("verify", "start", actor_id))


def email_form_id(actor_id: str) -> str:
    return Constants.ACTION_ID_SEPARATOR.join(("verify", "email", actor_id))


def decision_action_id(decision: ApprovalDecision, record_key: str, email: str | None) -> str:
    """Build the ID of an approve/reject/confirm control for a record."""
    safe_key = str(record_key or "unknown")
    safe_email = email.strip() if email and email.strip() else Constants.ACTION_EMAIL_PLACEHOLDER
    return Constants.ACTION_ID_SEPARATOR.join(("pending", decision.value, safe_key, safe_email))


def decision_actions(record_key: str, email: str | None) -> list[ActionButton]:
    """Approve and reject controls for one pending record."""
    return [
        ActionButton(
            custom_id=decision_action_id(ApprovalDecision.APPROVE, record_key, email),
            label="Approve ✅",
            style=ActionStyle.SUCCESS,
        ),
        ActionButton(
            custom_id=decision_action_id(ApprovalDecision.REJECT, record_key, email),
            label="Reject ❌",
            style=ActionStyle.DANGER,
        ),
    ]
