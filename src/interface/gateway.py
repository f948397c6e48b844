"""Outbound requests to the chat platform bridge.

The bridge process owns the platform connection. We hand it typed
notifications and membership changes as JSON; it renders them.
"""

import asyncio
import logging
import re
from typing import Any, Protocol

import httpx
from pydantic import BaseModel, Field

from src.core.config import Settings, constants
from src.domain.notifications import ActorNotice, AdmissionCard, OperatorReport, email_form_id


logger = logging.getLogger(__name__)


# HTTP status code constants for error handling
HTTP_CLIENT_ERROR_START = 400
HTTP_CLIENT_ERROR_END = 500

_SURFACE_NAME_PATTERN = re.compile(r"[^a-z0-9-]+")


class SendResult(BaseModel):
    """Result of one bridge request."""

    success: bool = Field(..., description="Whether the bridge accepted the request")
    id: str | None = Field(None, description="ID of the created message or channel, if any")
    error: str | None = Field(None, description="Error message if failed")


class PlatformGateway(Protocol):
    """Everything the onboarding workflow asks of the chat platform."""

    async def reply_to_interaction(self, *, interaction_id: str, text: str) -> SendResult: ...

    async def open_email_form(self, *, interaction_id: str, actor_id: str) -> SendResult: ...

    async def send_to_surface(self, notice: ActorNotice) -> SendResult: ...

    async def send_direct(self, *, actor_id: str, text: str) -> SendResult: ...

    async def send_operator_report(self, report: OperatorReport) -> SendResult: ...

    async def publish_admission_card(self, card: AdmissionCard) -> SendResult: ...

    async def create_verification_surface(self, *, actor_id: str, actor_name: str) -> SendResult: ...

    async def add_role(self, *, actor_id: str, role_id: str) -> SendResult: ...

    async def remove_role(self, *, actor_id: str, role_id: str) -> SendResult: ...

    async def remove_member(self, *, actor_id: str, reason: str) -> SendResult: ...


def surface_name(actor_name: str) -> str:
    """Channel name for an actor's verification surface (e.g. ``verify-jane-doe``)."""
    slug = _SURFACE_NAME_PATTERN.sub("-", actor_name.strip().lower()).strip("-")
    return f"verify-{slug or 'member'}"[:100]


def _extract_id(data: Any) -> str | None:  # noqa: ANN401
    if not isinstance(data, dict):
        return None
    raw_id = data.get("id") or data.get("channel_id") or data.get("message_id")
    return str(raw_id) if raw_id is not None else None


class BridgeGateway:
    """PlatformGateway implementation that posts JSON commands to the bridge."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str | None = None,
        guild_id: str | None = None,
        admin_channel_id: str | None = None,
        welcome_cards_channel_id: str | None = None,
        category_id: str | None = None,
        staff_role_ids: list[str] | None = None,
        max_retries: int = constants.BRIDGE_MAX_RETRIES,
        retry_delay: float = constants.BRIDGE_RETRY_DELAY_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._guild_id = guild_id
        self._admin_channel_id = admin_channel_id
        self._welcome_cards_channel_id = welcome_cards_channel_id
        self._category_id = category_id
        self._staff_role_ids = staff_role_ids or []
        self._max_retries = max(1, max_retries)
        self._retry_delay = retry_delay
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None) -> "BridgeGateway":
        return cls(
            base_url=settings.bridge_base_url,
            api_key=settings.bridge_api_key,
            guild_id=settings.guild_id,
            admin_channel_id=settings.admin_channel_id,
            welcome_cards_channel_id=settings.welcome_cards_channel_id,
            category_id=settings.category_id,
            staff_role_ids=[role for role in (settings.mod_role_id, settings.admin_role_id) if role],
            transport=transport,
        )

    async def _post(self, path: str, payload: dict[str, Any]) -> SendResult:
        """Core request logic with retry on 5xx and transport failures."""
        url = f"{self._base_url}{path}"
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["X-Api-Key"] = self._api_key

        last_error = ""
        for attempt in range(self._max_retries):
            try:
                async with httpx.AsyncClient(
                    timeout=constants.BRIDGE_TIMEOUT_SECONDS, transport=self._transport
                ) as client:
                    response = await client.post(url, json=payload, headers=headers)

                if response.is_success:
                    try:
                        data = response.json()
                    except ValueError:
                        data = None
                    return SendResult(success=True, id=_extract_id(data))

                if HTTP_CLIENT_ERROR_START <= response.status_code < HTTP_CLIENT_ERROR_END:
                    logger.warning("Bridge rejected request", extra={"path": path, "status": response.status_code})
                    return SendResult(success=False, error=f"Client error: {response.text}")

                logger.warning(
                    "Bridge server error",
                    extra={"path": path, "status": response.status_code, "attempt": attempt + 1},
                )
                last_error = f"Server error: {response.status_code}"
            except httpx.HTTPError as e:
                logger.warning("Bridge request failed", extra={"path": path, "error": str(e), "attempt": attempt + 1})
                last_error = f"Transport error: {e!s}"

            if attempt < self._max_retries - 1:
                await asyncio.sleep(self._retry_delay * (2**attempt))

        return SendResult(success=False, error=f"Failed after retries: {last_error}")

    async def reply_to_interaction(self, *, interaction_id: str, text: str) -> SendResult:
        return await self._post(
            "/api/interactions/reply",
            {"interaction_id": interaction_id, "content": text, "ephemeral": True},
        )

    async def open_email_form(self, *, interaction_id: str, actor_id: str) -> SendResult:
        return await self._post(
            "/api/interactions/modal",
            {
                "interaction_id": interaction_id,
                "custom_id": email_form_id(actor_id),
                "title": "Verify Email",
                "inputs": [{"custom_id": "email", "label": "Email", "style": "short", "required": True}],
            },
        )

    async def send_to_surface(self, notice: ActorNotice) -> SendResult:
        return await self._post("/api/channels/message", notice.model_dump(mode="json"))

    async def send_direct(self, *, actor_id: str, text: str) -> SendResult:
        return await self._post("/api/users/message", {"user_id": actor_id, "content": text})

    async def send_operator_report(self, report: OperatorReport) -> SendResult:
        if not self._admin_channel_id:
            logger.warning("ADMIN_CHANNEL_ID not configured, dropping operator report", extra={"title": report.title})
            return SendResult(success=False, error="Operator channel not configured")
        payload = {"channel_id": self._admin_channel_id, **report.model_dump(mode="json")}
        return await self._post("/api/channels/report", payload)

    async def publish_admission_card(self, card: AdmissionCard) -> SendResult:
        if not self._welcome_cards_channel_id:
            logger.warning("WELCOME_CARDS_CHANNEL_ID not configured, dropping admission card")
            return SendResult(success=False, error="Welcome channel not configured")
        payload = {"channel_id": self._welcome_cards_channel_id, **card.model_dump(mode="json")}
        return await self._post("/api/channels/card", payload)

    async def create_verification_surface(self, *, actor_id: str, actor_name: str) -> SendResult:
        return await self._post(
            "/api/channels/create",
            {
                "guild_id": self._guild_id,
                "category_id": self._category_id,
                "name": surface_name(actor_name),
                "private": True,
                "allow_user_ids": [actor_id],
                "allow_role_ids": self._staff_role_ids,
            },
        )

    async def add_role(self, *, actor_id: str, role_id: str) -> SendResult:
        return await self._post(
            "/api/members/roles/add",
            {"guild_id": self._guild_id, "user_id": actor_id, "role_id": role_id},
        )

    async def remove_role(self, *, actor_id: str, role_id: str) -> SendResult:
        return await self._post(
            "/api/members/roles/remove",
            {"guild_id": self._guild_id, "user_id": actor_id, "role_id": role_id},
        )

    async def remove_member(self, *, actor_id: str, reason: str) -> SendResult:
        return await self._post(
            "/api/members/remove",
            {"guild_id": self._guild_id, "user_id": actor_id, "reason": reason},
        )
