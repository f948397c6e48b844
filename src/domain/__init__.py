"""Domain models and DTOs."""

from src.domain.events import (
    AdminDecision,
    AttachmentReceived,
    EmailSubmitted,
    InboundEvent,
    MemberJoined,
    StartRequested,
)
from src.domain.records import ApprovalDecision, ApprovedRecord, InvitationRecord, PendingRecord, PendingSnapshot
from src.domain.session import Session, SessionStage


__all__ = [
    "AdminDecision",
    "ApprovalDecision",
    "ApprovedRecord",
    "AttachmentReceived",
    "EmailSubmitted",
    "InboundEvent",
    "InvitationRecord",
    "MemberJoined",
    "PendingRecord",
    "PendingSnapshot",
    "Session",
    "SessionStage",
    "StartRequested",
]
