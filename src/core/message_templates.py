"""Centralized message templates for onboarding notifications.

All user-facing message strings are defined here so wording can be changed in
one place without touching the workflow.
"""

from src.domain.notifications import AdmissionCard, OperatorReport, ReportField
from src.domain.records import ApprovedRecord, InvitationRecord, PendingRecord, format_timestamp


PLACEHOLDER = "—"

WELCOME_TITLE = "Welcome! Let's get you verified"
WELCOME_TEXT = "Click **Get Started** to enter your email. We'll send you an invitation and instructions."

STEP_GUIDE = (
    ("Step 1 — Check your email", "We sent you an invitation to register."),
    ("Step 2 — Complete registration", "Fill out your basic details on the site."),
    ("Step 3 — Wait for admin approval", "Once approved, come back here to upload your profile picture."),
)

INVITE_SENT = "Invite sent! Check your email and follow the steps above."
INVITE_FAILED = "There was an issue sending your invite. Please contact a mod."
PHOTO_THANKS = "Thanks! Your welcome card has been posted."
SESSION_EXPIRED = "Your verification session expired. Please rejoin the server or contact a mod to start again."


def step_guide_text() -> str:
    return "\n\n".join(f"**{title}**\n{description}" for title, description in STEP_GUIDE)


def photo_request(*, actor_id: str) -> str:
    return f"<@{actor_id}> Approved ✅ — please upload your **profile picture** as the next message in this channel."


def rejection_notice(*, contact_email: str) -> str:
    return (
        "Your profile request was rejected by an admin. "
        f"If you believe this is an error, email **{contact_email}**."
    )


def decision_failed(*, decision: str, record_key: str, diagnostic: str | None = None) -> str:
    message = f"API {decision} failed for roll #{record_key}."
    if diagnostic:
        message += f"\n```{diagnostic}```"
    return message


def rejected(*, record_key: str) -> str:
    return f"Rejected roll #{record_key}."


def approved_photo_requested(*, record_key: str) -> str:
    return f"Approved roll #{record_key}. Asked the user for their profile picture."


def approved_actor_unknown(*, record_key: str) -> str:
    return f"Approved roll #{record_key}. I couldn't locate the member via email mapping."


def approved_needs_confirmation(*, record_key: str, candidate_key: str) -> str:
    return (
        f"Approved roll #{record_key}, but the member list has no exact match. "
        f"Confirm whether roll #{candidate_key} is the right profile."
    )


def approved_profile_unavailable(*, record_key: str, reason: str) -> str:
    return (
        f"Approved roll #{record_key}, but the approved profile could not be loaded ({reason}). "
        "Use **Retry lookup** once the directory is reachable."
    )


def pending_summary(*, count: int, mention: str = "") -> str:
    return f"{mention}Pending invitations update — **{count}** waiting."


def format_pending_item(record: PendingRecord) -> str:
    """Multi-line detail block for one pending application."""
    majors = ", ".join(record.majors) if record.majors else PLACEHOLDER
    return "\n".join(
        [
            f"**Name:** {record.full_name or PLACEHOLDER}",
            f"**Roll #:** {record.roll_no or PLACEHOLDER} | **Year:** {record.grad_year or PLACEHOLDER}",
            f"**Status:** {record.status or 'pending'}",
            f"**Email:** {record.email or PLACEHOLDER}",
            f"**Majors:** {majors}",
            f"**Family:** {record.family_line or PLACEHOLDER}",
            f"Submitted: {format_timestamp(record.submitted_at)}",
            f"ID: `{record.record_id or PLACEHOLDER}`",
        ]
    )


def invite_report(
    *,
    email: str,
    invitation: InvitationRecord | None,
    success: bool,
    actor_id: str | None,
    mention_role_id: str | None,
) -> OperatorReport:
    """Operator report for a submitted invitation; directory fields are surfaced verbatim."""
    fields: list[ReportField] = []
    if invitation and invitation.id:
        fields.append(ReportField(name="ID", value=invitation.id))
    fields.append(ReportField(name="Email", value=(invitation and invitation.email_address) or email, inline=True))
    if invitation and invitation.status:
        fields.append(ReportField(name="Status", value=invitation.status, inline=True))
    if invitation and invitation.created_at:
        fields.append(ReportField(name="Created", value=format_timestamp(invitation.created_at), inline=True))
    if invitation and invitation.updated_at:
        fields.append(ReportField(name="Updated", value=format_timestamp(invitation.updated_at), inline=True))

    return OperatorReport(
        title="🎟️ Invitation Created" if success else "⚠️ Invitation Failed",
        text=f"User: <@{actor_id}>" if actor_id else "New invitation submitted",
        fields=fields,
        mention_role_id=mention_role_id,
        success=success,
    )


def pending_item_report(record: PendingRecord) -> OperatorReport:
    return OperatorReport(
        title=f"⏳ Pending — {record.display_name}",
        text=format_pending_item(record),
        footer=f"Roll # {record.roll_no or PLACEHOLDER}",
    )


def admission_card(
    *,
    actor_id: str,
    fallback_name: str,
    record: ApprovedRecord,
    photo_url: str | None,
    avatar_url: str | None,
) -> AdmissionCard:
    """Welcome card built from the approved profile and uploaded photo."""
    majors = ", ".join(record.majors) if record.majors else PLACEHOLDER
    links = record.social_links
    return AdmissionCard(
        actor_id=actor_id,
        title=record.full_name or fallback_name,
        fields=[
            ReportField(name="Roll #", value=record.roll_no or PLACEHOLDER, inline=True),
            ReportField(name="Status", value=record.status or PLACEHOLDER, inline=True),
            ReportField(name="Family Line", value=record.family_line or PLACEHOLDER, inline=True),
            ReportField(name="Grad Year", value=record.grad_year or PLACEHOLDER, inline=True),
            ReportField(name="Major(s)", value=majors),
            ReportField(name="Hometown", value=record.hometown or PLACEHOLDER, inline=True),
            ReportField(name="ECouncil", value="Yes" if record.is_ecouncil else "No", inline=True),
            ReportField(name="GitHub", value=links.github or PLACEHOLDER, inline=True),
            ReportField(name="LinkedIn", value=links.linkedin or PLACEHOLDER, inline=True),
        ],
        image_url=photo_url,
        fallback_image_url=avatar_url,
        footer=f"Created: {format_timestamp(record.created_at)}",
    )
