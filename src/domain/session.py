"""Onboarding session domain models and enums."""

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field

from src.domain.records import ApprovedRecord


class SessionStage(StrEnum):
    """Stage of an actor's onboarding session."""

    AWAITING_START = "awaiting_start"
    AWAITING_EMAIL = "awaiting_email"
    INVITE_SUBMITTED = "invite_submitted"
    PENDING_APPROVAL = "pending_approval"
    AWAITING_PHOTO = "awaiting_photo"
    COMPLETED = "completed"
    REJECTED = "rejected"
    EXPIRED = "expired"


TERMINAL_STAGES = frozenset({SessionStage.COMPLETED, SessionStage.REJECTED, SessionStage.EXPIRED})

# Collected fields each stage is allowed to append
STAGE_FIELDS: dict[SessionStage, frozenset[str]] = {
    SessionStage.AWAITING_EMAIL: frozenset({"email"}),
    SessionStage.PENDING_APPROVAL: frozenset({"record_key"}),
    SessionStage.AWAITING_PHOTO: frozenset({"photo_url"}),
}


def _now() -> datetime:
    return datetime.now(UTC)


class Session(BaseModel):
    """Workflow state for one actor."""

    actor_id: str = Field(..., description="Stable platform ID of the actor")
    surface_id: str = Field(..., description="Private channel used to talk to the actor")
    stage: SessionStage = Field(default=SessionStage.AWAITING_START, description="Current workflow stage")
    collected_fields: dict[str, str] = Field(default_factory=dict, description="Append-only collected data")
    awaiting_upload: bool = Field(default=False, description="True while a single photo upload is expected")
    approved_record: ApprovedRecord | None = Field(default=None, description="Profile resolved after approval")
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)
    expires_at: datetime | None = Field(default=None, description="When the session expires if left idle")

    @property
    def is_terminal(self) -> bool:
        return self.stage in TERMINAL_STAGES

    @property
    def email(self) -> str | None:
        return self.collected_fields.get("email")

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check if the session has passed its expiry time."""
        if self.expires_at is None:
            return False
        return (now or _now()) > self.expires_at
