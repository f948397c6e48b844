"""Member directory API client.

Wraps the four directory calls the onboarding workflow depends on. Every call
is a single HTTP round trip; the approval PATCH is retried once, and only when
the connection reports a content-length mismatch.
"""

import asyncio
import json
import logging
import re
from datetime import UTC, datetime
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import BaseModel, Field, ValidationError

from src.core.config import Settings, constants
from src.core.errors import AmbiguousMatchError, FailureKind, RecordNotFoundError, WorkflowAPIError
from src.core.logging import mask_secret, span
from src.domain.records import (
    ApprovalDecision,
    ApprovedRecord,
    InvitationRecord,
    PendingCount,
    PendingItems,
    PendingRecord,
    PendingSnapshot,
    parse_timestamp,
)


logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
DEFAULT_PENDING_PATH = "/api/members/pending"

_CONTENT_LENGTH_MARKERS = ("content-length", "content length", "complete message body", "incomplete")


def is_valid_email(value: str | None) -> bool:
    """Strict local@domain.tld shape check."""
    return bool(EMAIL_PATTERN.match((value or "").strip()))


def is_content_length_mismatch(exc: Exception) -> bool:
    """True for the transient transport fault the approval PATCH may retry."""
    if not isinstance(exc, httpx.ProtocolError):
        return False
    message = str(exc).lower()
    return any(marker in message for marker in _CONTENT_LENGTH_MARKERS)


def _truncate(text: str | None) -> str | None:
    if text is None:
        return None
    return text[: constants.MAX_DIAGNOSTIC_BODY_CHARS]


class WorkflowCallResult(BaseModel):
    """Outcome of a directory write; never partial."""

    success: bool = Field(..., description="Whether the directory accepted the call")
    status_code: int | None = Field(None, description="HTTP status, when a response arrived")
    failure_kind: FailureKind | None = Field(None, description="transport, status or decode")
    error: str | None = Field(None, description="Error message if failed")
    raw_body: str | None = Field(None, description="Raw response body for diagnostics")


class InvitationResult(WorkflowCallResult):
    skipped: bool = Field(False, description="True when the email shape was invalid and no call was made")
    record: InvitationRecord | None = None


class ApprovalResult(WorkflowCallResult):
    record: ApprovedRecord | None = Field(None, description="Approved profile, if the directory returned one")


def decode_pending(payload: Any) -> PendingSnapshot:  # noqa: ANN401
    """Decode the pending endpoint's response into a snapshot.

    Accepted shapes: a bare array, ``{"data": [...]}``, ``{"list": [...]}``, a
    bare number, or ``{"count": n}`` when item detail is unavailable.

    Raises:
        ValueError: If the payload matches none of the accepted shapes
    """
    items: Any = None
    if isinstance(payload, list):
        items = payload
    elif isinstance(payload, dict):
        for key in ("data", "list"):
            if isinstance(payload.get(key), list):
                items = payload[key]
                break
        else:
            count = payload.get("count", payload.get("total"))
            if isinstance(count, int) and not isinstance(count, bool):
                return PendingCount(count=count)
    elif isinstance(payload, int | float) and not isinstance(payload, bool):
        return PendingCount(count=int(payload))

    if items is None:
        raise ValueError(f"Unrecognised pending payload: {type(payload).__name__}")

    records: list[PendingRecord] = []
    for index, item in enumerate(items):
        if isinstance(item, str):
            item = {"id": item}
        if not isinstance(item, dict):
            logger.warning("Skipping malformed pending item", extra={"item_type": type(item).__name__})
            continue
        try:
            records.append(PendingRecord.model_validate(item))
        except ValidationError as e:
            logger.warning("Skipping undecodable pending item", extra={"index": index, "error": str(e)})
    return PendingItems(items=records)


def decode_approved(payload: Any) -> list[ApprovedRecord]:  # noqa: ANN401
    """Decode the member list (bare array or ``{"data": [...]}``).

    Records that do not fit the member model are logged and skipped so one
    malformed entry cannot hide the rest of the list.
    """
    if isinstance(payload, dict) and isinstance(payload.get("data"), list):
        payload = payload["data"]
    if not isinstance(payload, list):
        raise ValueError(f"Unrecognised member list payload: {type(payload).__name__}")

    records: list[ApprovedRecord] = []
    for index, item in enumerate(payload):
        if not isinstance(item, dict):
            continue
        try:
            records.append(ApprovedRecord.model_validate(item))
        except ValidationError as e:
            logger.warning("Skipping undecodable member record", extra={"index": index, "error": str(e)})
    return records


def _created_at_sort_key(record: ApprovedRecord) -> datetime:
    return parse_timestamp(record.created_at) or datetime.min.replace(tzinfo=UTC)


def match_approved_record(records: list[ApprovedRecord], record_key: str) -> ApprovedRecord:
    """Find the approved record for ``record_key``.

    Raises:
        RecordNotFoundError: If the member list is empty
        AmbiguousMatchError: If no record has the key; carries the newest record as the candidate
    """
    key = str(record_key)
    for record in records:
        if record.roll_no is not None and record.roll_no == key:
            return record

    if not records:
        raise RecordNotFoundError(f"Member list is empty; cannot resolve roll #{key}")

    candidate = max(records, key=_created_at_sort_key)
    raise AmbiguousMatchError(
        f"No member with roll #{key}; newest record is roll #{candidate.record_key}",
        record_key=key,
        candidate=candidate,
    )


class WorkflowClient:
    """Typed operations against the member directory service."""

    def __init__(
        self,
        *,
        invite_api_url: str | None,
        secret: str = "",
        pending_check_url: str | None = None,
        approval_api_base: str,
        members_api_url: str,
        timeout: float = constants.API_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._invite_api_url = invite_api_url
        self._secret = secret
        self._pending_check_url = pending_check_url
        self._approval_api_base = approval_api_base
        self._members_api_url = members_api_url
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None) -> "WorkflowClient":
        return cls(
            invite_api_url=settings.invite_api_url,
            secret=settings.invite_api_secret,
            pending_check_url=settings.pending_check_url,
            approval_api_base=settings.approval_api_base,
            members_api_url=settings.members_api_url,
            transport=transport,
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    @property
    def pending_url(self) -> str:
        """Explicit pending URL, else the invite URL's host with the default pending path."""
        if self._pending_check_url and self._pending_check_url.strip():
            return self._pending_check_url.strip()
        if not self._invite_api_url:
            raise ValueError("Neither PENDING_CHECK_URL nor INVITE_API_URL is configured")
        return str(httpx.URL(self._invite_api_url).copy_with(path=DEFAULT_PENDING_PATH, query=None))

    def approval_url(self, record_key: str) -> str:
        return f"{self._approval_api_base.rstrip('/')}/{quote(str(record_key), safe='')}/"

    def _secret_params(self) -> dict[str, str]:
        return {"secret": self._secret} if self._secret else {}

    async def _get_json(self, *, operation: str, url: str, params: dict[str, str] | None = None) -> Any:  # noqa: ANN401
        """GET ``url`` and decode JSON, mapping every failure to WorkflowAPIError."""
        # Merge so a query already on the configured URL survives
        request_url = httpx.URL(url).copy_merge_params(params) if params else httpx.URL(url)
        try:
            async with self._client() as client:
                response = await client.get(request_url)
        except httpx.HTTPError as e:
            logger.error("Directory request failed", extra={"operation": operation, "error": str(e)})
            raise WorkflowAPIError(
                f"{operation} transport failure: {e!s}",
                operation=operation,
                failure_kind=FailureKind.TRANSPORT,
            ) from e

        if not response.is_success:
            logger.error(
                "Directory returned error status",
                extra={"operation": operation, "status": response.status_code},
            )
            raise WorkflowAPIError(
                f"{operation} returned HTTP {response.status_code}",
                operation=operation,
                failure_kind=FailureKind.STATUS,
                status_code=response.status_code,
                raw_body=_truncate(response.text),
            )

        try:
            return response.json()
        except ValueError as e:
            raise WorkflowAPIError(
                f"{operation} returned undecodable body",
                operation=operation,
                failure_kind=FailureKind.DECODE,
                status_code=response.status_code,
                raw_body=_truncate(response.text),
            ) from e

    async def submit_invitation(self, email: str) -> InvitationResult:
        """POST an invitation for ``email``; invalid shapes are skipped without a call."""
        with span("workflow_client.submit_invitation"):
            email = (email or "").strip()
            if not is_valid_email(email):
                logger.info("Skipping invitation for invalid email shape")
                return InvitationResult(success=False, skipped=True, error="Invalid email address")

            if not self._invite_api_url:
                return InvitationResult(success=False, error="INVITE_API_URL is not configured")

            body = {"email": email, "secret": self._secret}
            try:
                async with self._client() as client:
                    response = await client.post(self._invite_api_url, json=body)
            except httpx.HTTPError as e:
                logger.error("Invitation request failed", extra={"error": str(e)})
                return InvitationResult(success=False, failure_kind=FailureKind.TRANSPORT, error=str(e))

            try:
                payload = response.json()
            except ValueError:
                payload = None

            record: InvitationRecord | None = None
            if isinstance(payload, dict):
                try:
                    record = InvitationRecord.model_validate(payload)
                except ValidationError as e:
                    logger.warning("Invitation response did not decode", extra={"status": response.status_code})
                    return InvitationResult(
                        success=False,
                        status_code=response.status_code,
                        failure_kind=FailureKind.DECODE,
                        error=f"Invitation response could not be decoded: {e!s}",
                        raw_body=_truncate(response.text),
                    )

            if not response.is_success:
                logger.warning("Invitation rejected by directory", extra={"status": response.status_code})
                return InvitationResult(
                    success=False,
                    status_code=response.status_code,
                    failure_kind=FailureKind.STATUS,
                    error=f"Invitation returned HTTP {response.status_code}",
                    raw_body=_truncate(response.text),
                    record=record,
                )

            logger.info("Invitation created", extra={"status": response.status_code})
            return InvitationResult(success=True, status_code=response.status_code, record=record)

    async def list_pending(self) -> PendingSnapshot:
        """Fetch a fresh snapshot of the applications awaiting approval.

        Raises:
            WorkflowAPIError: On transport failure, error status, or an unrecognised payload
        """
        with span("workflow_client.list_pending"):
            payload = await self._get_json(
                operation="list_pending",
                url=self.pending_url,
                params=self._secret_params(),
            )
            try:
                return decode_pending(payload)
            except (ValueError, ValidationError) as e:
                raise WorkflowAPIError(
                    f"list_pending payload could not be decoded: {e!s}",
                    operation="list_pending",
                    failure_kind=FailureKind.DECODE,
                    raw_body=_truncate(json.dumps(payload, default=str)),
                ) from e

    async def _patch_approval(self, *, url: str, body: dict[str, str]) -> httpx.Response:
        logger.debug("Approval PATCH", extra={"url": url, "body": mask_secret(json.dumps(body))})
        async with self._client() as client:
            response = await client.patch(url, json=body)
        logger.debug("Approval PATCH response", extra={"url": url, "status": response.status_code})
        return response

    async def _patch_approval_with_retry(self, *, url: str, body: dict[str, str]) -> httpx.Response:
        try:
            return await self._patch_approval(url=url, body=body)
        except httpx.ProtocolError as e:
            if not is_content_length_mismatch(e):
                raise
            logger.warning("Approval PATCH hit content-length mismatch, retrying once", extra={"url": url})
            await asyncio.sleep(constants.APPROVAL_RETRY_DELAY_SECONDS)
            return await self._patch_approval(url=url, body=body)

    async def submit_approval(self, record_key: str, decision: ApprovalDecision) -> ApprovalResult:
        """PATCH an approve/reject decision for ``record_key``."""
        if decision not in (ApprovalDecision.APPROVE, ApprovalDecision.REJECT):
            raise ValueError(f"Invalid decision '{decision}', must be approve or reject")

        with span("workflow_client.submit_approval"):
            url = self.approval_url(record_key)
            body = {"action": decision.value, "secret": self._secret}
            try:
                response = await self._patch_approval_with_retry(url=url, body=body)
            except httpx.HTTPError as e:
                logger.error(
                    "Approval request failed",
                    extra={"record_key": record_key, "decision": decision.value, "error": str(e)},
                )
                return ApprovalResult(success=False, failure_kind=FailureKind.TRANSPORT, error=str(e))

            if not response.is_success:
                logger.warning(
                    "Approval rejected by directory",
                    extra={"record_key": record_key, "decision": decision.value, "status": response.status_code},
                )
                return ApprovalResult(
                    success=False,
                    status_code=response.status_code,
                    failure_kind=FailureKind.STATUS,
                    error=f"Approval returned HTTP {response.status_code}",
                    raw_body=_truncate(response.text),
                )

            record: ApprovedRecord | None = None
            try:
                payload = response.json()
            except ValueError:
                payload = None
            if isinstance(payload, dict):
                try:
                    record = ApprovedRecord.model_validate(payload)
                except ValidationError:
                    logger.warning("Approval response did not decode as a member record")

            logger.info("Approval accepted", extra={"record_key": record_key, "decision": decision.value})
            return ApprovalResult(success=True, status_code=response.status_code, record=record)

    async def list_approved(self) -> list[ApprovedRecord]:
        """Fetch the approved member list.

        Raises:
            WorkflowAPIError: On transport failure, error status, or an unrecognised payload
        """
        with span("workflow_client.list_approved"):
            payload = await self._get_json(operation="list_approved", url=self._members_api_url)
            try:
                return decode_approved(payload)
            except (ValueError, ValidationError) as e:
                raise WorkflowAPIError(
                    f"list_approved payload could not be decoded: {e!s}",
                    operation="list_approved",
                    failure_kind=FailureKind.DECODE,
                ) from e

    async def resolve_approved_record(self, record_key: str) -> ApprovedRecord:
        """Fetch the member list and return the exact match for ``record_key``.

        Raises:
            WorkflowAPIError: If the member list cannot be fetched
            RecordNotFoundError: If the member list is empty
            AmbiguousMatchError: If there is no exact match
        """
        records = await self.list_approved()
        return match_approved_record(records, record_key)
