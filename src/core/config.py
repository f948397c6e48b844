"""Configuration management for rollcall."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Guild Configuration
    guild_id: str | None = Field(default=None, description="ID of the single guild this bot onboards members into")
    mod_role_id: str | None = Field(default=None, description="Role that can see verification surfaces")
    admin_role_id: str | None = Field(default=None, description="Role allowed to approve/reject applications")
    pending_role_id: str | None = Field(default=None, description="Role granted while a member is being verified")
    ecouncil_role_id: str | None = Field(default=None, description="Role granted when the profile has isECouncil")
    alumni_role_id: str | None = Field(default=None, description="Role for alumni status")
    active_role_id: str | None = Field(default=None, description="Role for active status")
    pnm_role_id: str | None = Field(default=None, description="Role for prospect/new-pledge status")
    category_id: str | None = Field(default=None, description="Category that verification surfaces are created in")
    admin_channel_id: str | None = Field(default=None, description="Channel receiving operator reports")
    welcome_cards_channel_id: str | None = Field(default=None, description="Channel receiving admission cards")

    # Member Directory API Configuration
    invite_api_url: str | None = Field(default=None, description="Invitation endpoint (POST {email, secret})")
    invite_api_secret: str = Field(default="", description="Shared secret sent with every directory API call")
    pending_check_url: str | None = Field(
        default=None, description="Pending list endpoint; derived from INVITE_API_URL when unset"
    )
    approval_api_base: str = Field(
        default="https://thetatau-dg.org/api/members/pending", description="Base URL for approval PATCH calls"
    )
    members_api_url: str = Field(
        default="https://thetatau-dg.org/api/members", description="Approved member list endpoint"
    )
    pending_poll_seconds: float = Field(default=60.0, description="Delay between pending-queue polls")

    # Onboarding Content
    step_image_1: str | None = Field(default=None, description="Image for step 1 of the onboarding guide")
    step_image_2: str | None = Field(default=None, description="Image for step 2 of the onboarding guide")
    step_image_3: str | None = Field(default=None, description="Image for step 3 of the onboarding guide")
    rejection_contact_email: str = Field(
        default="regent@thetatau-dg.org", description="Contact address included in rejection messages"
    )

    # Session Configuration
    session_expiry_hours: int = Field(default=168, description="Hours of inactivity before a session expires")
    session_sweep_minutes: int = Field(default=15, description="Interval of the expired-session sweep job")

    # Bridge Configuration
    bridge_base_url: str = Field(default="http://bridge:3000", description="Chat platform bridge base URL")
    bridge_api_key: str | None = Field(default=None, description="API key sent to the bridge (optional)")
    bridge_webhook_secret: str | None = Field(
        default=None, description="Shared secret the bridge sends with inbound events"
    )

    # Admin API Configuration
    admin_api_key: str | None = Field(default=None, description="Key required by the /admin endpoints")

    # Pydantic Logfire Configuration (optional)
    logfire_token: str | None = Field(default=None, description="Pydantic Logfire token for observability")

    # Admin Notification Configuration
    enable_admin_notifications: bool = Field(
        default=True, description="Enable/disable operator alerts for failed events"
    )
    admin_notification_cooldown_minutes: int = Field(
        default=60, description="Cooldown period between alerts for the same error category (in minutes)"
    )

    def require_credential(self, field_name: str, service_name: str) -> str:
        """Validate that a required credential is set, raising a clear error if missing.

        Args:
            field_name: Name of the field to check
            service_name: Human-readable service name for error message

        Returns:
            The credential value

        Raises:
            ValueError: If the credential is None or empty
        """
        value = getattr(self, field_name)
        if not value:
            raise ValueError(
                f"{service_name} credential not configured. "
                f"Set {field_name.upper()} environment variable or add to .env file."
            )
        return value

    @property
    def step_images(self) -> list[str]:
        """Configured step guide images, in order."""
        return [image for image in (self.step_image_1, self.step_image_2, self.step_image_3) if image]


# Application Constants
class Constants:
    """Application-wide constants."""

    # API Configuration
    API_TIMEOUT_SECONDS: float = 10.0
    BRIDGE_TIMEOUT_SECONDS: float = 10.0

    # Approval PATCH retry (content-length mismatch only)
    APPROVAL_RETRY_DELAY_SECONDS: float = 0.2

    # Bridge sender retries
    BRIDGE_MAX_RETRIES: int = 3
    BRIDGE_RETRY_DELAY_SECONDS: float = 1.0

    # Action identifiers
    ACTION_ID_SEPARATOR: str = ":"
    ACTION_EMAIL_PLACEHOLDER: str = "none"

    # Webhook dedupe window
    WEBHOOK_SEEN_EVENTS_MAXLEN: int = 5000

    # Logging
    MASKED_SECRET_VISIBLE_CHARS: int = 4
    MAX_DIAGNOSTIC_BODY_CHARS: int = 500


def get_settings() -> Settings:
    """Get application settings (singleton pattern)."""
    return Settings()


# Global settings instance
settings = get_settings()
constants = Constants()
