"""Member directory record models.

The directory speaks camelCase and is loose about field names (``rollNo`` vs
``rollNumber``, ``email`` vs ``emailAddress``), so every model accepts the known
aliases and keeps unknown fields.
"""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import AliasChoices, AliasPath, BaseModel, ConfigDict, Field, field_validator


class ApprovalDecision(StrEnum):
    """Operator decision on a pending application."""

    APPROVE = "approve"
    REJECT = "reject"
    CONFIRM = "confirm"  # local only: confirm an ambiguous profile match


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an epoch-milliseconds or ISO-8601 timestamp from the directory."""
    if not value:
        return None
    text = str(value).strip()
    try:
        if text.lstrip("-").isdigit():
            return datetime.fromtimestamp(int(text) / 1000, tz=UTC)
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except (ValueError, OverflowError, OSError):
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def format_timestamp(value: str | None) -> str:
    """Render a directory timestamp for display, or an em placeholder."""
    parsed = parse_timestamp(value)
    return parsed.strftime("%Y-%m-%d %H:%M UTC") if parsed else "—"


class _DirectoryModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True, coerce_numbers_to_str=True)


class SocialLinks(_DirectoryModel):
    """Social profile links attached to an approved member."""

    github: str | None = None
    linkedin: str | None = None


class MemberRecord(_DirectoryModel):
    """Fields shared by pending and approved directory records."""

    roll_no: str | None = Field(default=None, validation_alias=AliasChoices("rollNo", "rollNumber", "roll_no"))
    record_id: str | None = Field(default=None, validation_alias=AliasChoices("_id", "id", "record_id"))
    first_name: str | None = Field(default=None, validation_alias=AliasChoices("fName", "first_name"))
    last_name: str | None = Field(default=None, validation_alias=AliasChoices("lName", "last_name"))
    email: str | None = Field(
        default=None, validation_alias=AliasChoices("email", "emailAddress", AliasPath("user", "email"))
    )
    status: str | None = None
    grad_year: str | None = Field(default=None, validation_alias=AliasChoices("gradYear", "grad_year"))
    majors: list[str] = Field(default_factory=list)
    family_line: str | None = Field(default=None, validation_alias=AliasChoices("familyLine", "family_line"))

    @field_validator("majors", mode="before")
    @classmethod
    def coerce_majors(cls, v: Any) -> list[str]:  # noqa: ANN401
        """Accept a list of majors or a single major string."""
        if v is None:
            return []
        if isinstance(v, str):
            return [v] if v.strip() else []
        if isinstance(v, list | tuple):
            return [str(item) for item in v]
        raise ValueError(f"majors must be a list or a string, got {type(v).__name__}")

    def model_post_init(self, context: Any, /) -> None:  # noqa: ANN401
        # Older records carry a single "major" field
        if not self.majors and self.model_extra and self.model_extra.get("major"):
            self.majors = [str(self.model_extra["major"])]

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)

    @property
    def record_key(self) -> str:
        """Key used in approval actions (the roll number)."""
        return self.roll_no or "unknown"


class PendingRecord(MemberRecord):
    """One application awaiting approval. Read-only snapshot."""

    submitted_at: str | None = Field(
        default=None, validation_alias=AliasChoices("submittedAt", "createdAt", "updatedAt")
    )

    @property
    def digest_key(self) -> str:
        """Stable key used for change detection."""
        return self.roll_no or self.record_id or self.email or ""

    @property
    def display_name(self) -> str:
        return self.full_name or self.email or "Pending Member"


class ApprovedRecord(MemberRecord):
    """Authoritative member profile returned after approval."""

    hometown: str | None = None
    is_ecouncil: bool = Field(default=False, validation_alias=AliasChoices("isECouncil", "is_ecouncil"))
    social_links: SocialLinks = Field(
        default_factory=SocialLinks, validation_alias=AliasChoices("socialLinks", "social_links")
    )
    created_at: str | None = Field(default=None, validation_alias=AliasChoices("createdAt", "created_at"))

    @field_validator("is_ecouncil", mode="before")
    @classmethod
    def coerce_ecouncil(cls, v: Any) -> bool:  # noqa: ANN401
        if isinstance(v, str):
            return v.strip().lower() in {"true", "yes", "1"}
        return bool(v)

    @field_validator("social_links", mode="before")
    @classmethod
    def coerce_social_links(cls, v: Any) -> Any:  # noqa: ANN401
        return v or {}


class InvitationRecord(_DirectoryModel):
    """Opaque invitation object returned by the invite endpoint."""

    id: str | None = None
    email_address: str | None = Field(default=None, validation_alias=AliasChoices("emailAddress", "email_address"))
    status: str | None = None
    created_at: str | None = Field(default=None, validation_alias=AliasChoices("createdAt", "created_at"))
    updated_at: str | None = Field(default=None, validation_alias=AliasChoices("updatedAt", "updated_at"))


class PendingItems(BaseModel):
    """Pending list with item-level detail."""

    kind: Literal["items"] = "items"
    items: list[PendingRecord] = Field(default_factory=list)


class PendingCount(BaseModel):
    """Pending list where only the number of waiting applications is known."""

    kind: Literal["count"] = "count"
    count: int


PendingSnapshot = PendingItems | PendingCount
