"""Tests for the member directory client using httpx.MockTransport."""

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from src.core.errors import AmbiguousMatchError, FailureKind, RecordNotFoundError, WorkflowAPIError
from src.domain.records import ApprovalDecision, ApprovedRecord, PendingCount, PendingItems
from src.services.workflow_client import (
    WorkflowClient,
    decode_approved,
    decode_pending,
    is_content_length_mismatch,
    is_valid_email,
    match_approved_record,
)
from tests.conftest import make_settings
from tests.unit.mocks import DirectoryStub


class TestIsValidEmail:
    @pytest.mark.parametrize("value", ["a@b.co", "jane.doe+tt@school.edu", "  a@b.co  "])
    def test_accepts_well_formed(self, value: str) -> None:
        assert is_valid_email(value) is True

    @pytest.mark.parametrize("value", ["not-an-email", "", "a@", "a@b", "a b@c.de", None])
    def test_rejects_malformed(self, value: str | None) -> None:
        assert is_valid_email(value) is False


class TestSubmitInvitation:
    @pytest.mark.asyncio
    async def test_posts_email_and_secret(self, workflow: WorkflowClient, directory: DirectoryStub) -> None:
        result = await workflow.submit_invitation("new@member.org")

        assert result.success is True
        assert result.record is not None
        assert result.record.id == "inv_1"
        assert result.record.email_address == "new@member.org"
        request = directory.requests_to("POST")[0]
        assert json.loads(request.content) == {"email": "new@member.org", "secret": "s3cret-token"}

    @pytest.mark.asyncio
    async def test_invalid_email_skips_call(self, workflow: WorkflowClient, directory: DirectoryStub) -> None:
        result = await workflow.submit_invitation("not-an-email")

        assert result.success is False
        assert result.skipped is True
        assert directory.requests == []

    @pytest.mark.asyncio
    async def test_server_error_is_status_failure(self, workflow: WorkflowClient, directory: DirectoryStub) -> None:
        directory.invite_status = 500
        directory.invite_body = {"error": "boom"}

        result = await workflow.submit_invitation("new@member.org")

        assert result.success is False
        assert result.skipped is False
        assert result.failure_kind == FailureKind.STATUS
        assert result.status_code == 500
        assert result.raw_body is not None
        assert "boom" in result.raw_body

    @pytest.mark.asyncio
    async def test_transport_error_is_transport_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = WorkflowClient.from_settings(make_settings(), transport=httpx.MockTransport(handler))
        result = await client.submit_invitation("new@member.org")

        assert result.success is False
        assert result.failure_kind == FailureKind.TRANSPORT

    @pytest.mark.asyncio
    async def test_undecodable_response_is_decode_failure(
        self, workflow: WorkflowClient, directory: DirectoryStub
    ) -> None:
        directory.invite_body = {"id": {"$oid": "65f0"}, "emailAddress": "new@member.org"}

        result = await workflow.submit_invitation("new@member.org")

        assert result.success is False
        assert result.failure_kind == FailureKind.DECODE
        assert result.record is None
        assert result.raw_body is not None
        assert "$oid" in result.raw_body


class TestListPending:
    @pytest.mark.asyncio
    async def test_derives_pending_url_and_sends_secret(
        self, workflow: WorkflowClient, directory: DirectoryStub
    ) -> None:
        directory.pending_body = [{"rollNo": "R-1", "fName": "A"}]

        snapshot = await workflow.list_pending()

        assert isinstance(snapshot, PendingItems)
        assert [record.roll_no for record in snapshot.items] == ["R-1"]
        request = directory.requests_to("GET")[0]
        assert request.url.path == "/api/members/pending"
        assert request.url.params["secret"] == "s3cret-token"

    @pytest.mark.asyncio
    async def test_explicit_pending_url_wins(self, directory: DirectoryStub) -> None:
        settings = make_settings(pending_check_url="https://directory.test/api/members/pending?view=all")
        client = WorkflowClient.from_settings(settings, transport=directory.transport)

        await client.list_pending()

        request = directory.requests_to("GET")[0]
        assert request.url.params["view"] == "all"
        assert request.url.params["secret"] == "s3cret-token"

    @pytest.mark.asyncio
    async def test_error_status_raises(self, workflow: WorkflowClient, directory: DirectoryStub) -> None:
        directory.pending_status = 503

        with pytest.raises(WorkflowAPIError) as exc_info:
            await workflow.list_pending()

        assert exc_info.value.failure_kind == FailureKind.STATUS
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_unknown_shape_raises_decode(self, workflow: WorkflowClient, directory: DirectoryStub) -> None:
        directory.pending_body = {"unexpected": True}

        with pytest.raises(WorkflowAPIError) as exc_info:
            await workflow.list_pending()

        assert exc_info.value.failure_kind == FailureKind.DECODE

    @pytest.mark.asyncio
    async def test_non_json_body_raises_decode(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>maintenance</html>")

        client = WorkflowClient.from_settings(make_settings(), transport=httpx.MockTransport(handler))
        with pytest.raises(WorkflowAPIError) as exc_info:
            await client.list_pending()

        assert exc_info.value.failure_kind == FailureKind.DECODE
        assert exc_info.value.raw_body == "<html>maintenance</html>"


class TestDecodePending:
    def test_bare_array(self) -> None:
        snapshot = decode_pending([{"rollNo": "R-1"}, {"_id": "abc"}])
        assert isinstance(snapshot, PendingItems)
        assert [record.digest_key for record in snapshot.items] == ["R-1", "abc"]

    @pytest.mark.parametrize("key", ["data", "list"])
    def test_wrapped_array(self, key: str) -> None:
        snapshot = decode_pending({key: [{"rollNumber": 7}]})
        assert isinstance(snapshot, PendingItems)
        assert snapshot.items[0].roll_no == "7"

    def test_bare_number(self) -> None:
        assert decode_pending(3) == PendingCount(count=3)

    def test_count_object(self) -> None:
        assert decode_pending({"count": 2}) == PendingCount(count=2)

    def test_string_items_are_ids(self) -> None:
        snapshot = decode_pending(["abc"])
        assert isinstance(snapshot, PendingItems)
        assert snapshot.items[0].record_id == "abc"

    @pytest.mark.parametrize("payload", [None, "text", True, {"count": "many"}])
    def test_rejects_unknown_shapes(self, payload: object) -> None:
        with pytest.raises(ValueError):
            decode_pending(payload)

    def test_undecodable_item_is_skipped(self) -> None:
        snapshot = decode_pending([{"rollNo": "R-1"}, {"rollNo": "R-2", "majors": 5}, {"rollNo": "R-3"}])
        assert isinstance(snapshot, PendingItems)
        assert [record.roll_no for record in snapshot.items] == ["R-1", "R-3"]


class TestSubmitApproval:
    @pytest.mark.asyncio
    async def test_patches_record_with_action(self, workflow: WorkflowClient, directory: DirectoryStub) -> None:
        result = await workflow.submit_approval("R-42", ApprovalDecision.APPROVE)

        assert result.success is True
        request = directory.requests_to("PATCH")[0]
        assert str(request.url) == "https://directory.test/api/members/pending/R-42/"
        assert json.loads(request.content) == {"action": "approve", "secret": "s3cret-token"}

    @pytest.mark.asyncio
    async def test_failure_keeps_raw_body(self, workflow: WorkflowClient, directory: DirectoryStub) -> None:
        directory.approval_status = 404
        directory.approval_body = {"error": "no such roll"}

        result = await workflow.submit_approval("R-42", ApprovalDecision.REJECT)

        assert result.success is False
        assert result.failure_kind == FailureKind.STATUS
        assert result.raw_body is not None
        assert "no such roll" in result.raw_body

    @pytest.mark.asyncio
    async def test_confirm_is_not_a_directory_decision(self, workflow: WorkflowClient) -> None:
        with pytest.raises(ValueError):
            await workflow.submit_approval("R-42", ApprovalDecision.CONFIRM)

    @pytest.mark.asyncio
    async def test_retries_once_on_content_length_mismatch(self, mock_sleep: AsyncMock) -> None:
        attempts: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            if len(attempts) == 1:
                raise httpx.RemoteProtocolError(
                    "peer closed connection without sending complete message body", request=request
                )
            return httpx.Response(200, json={"rollNo": "R-42"})

        client = WorkflowClient.from_settings(make_settings(), transport=httpx.MockTransport(handler))
        result = await client.submit_approval("R-42", ApprovalDecision.APPROVE)

        assert result.success is True
        assert result.record is not None
        assert result.record.roll_no == "R-42"
        assert len(attempts) == 2
        mock_sleep.assert_awaited_once_with(0.2)

    @pytest.mark.asyncio
    async def test_gives_up_after_second_mismatch(self, mock_sleep: AsyncMock) -> None:
        attempts: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            raise httpx.RemoteProtocolError("Content-Length mismatch", request=request)

        client = WorkflowClient.from_settings(make_settings(), transport=httpx.MockTransport(handler))
        result = await client.submit_approval("R-42", ApprovalDecision.APPROVE)

        assert result.success is False
        assert result.failure_kind == FailureKind.TRANSPORT
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_other_faults_are_not_retried(self, mock_sleep: AsyncMock) -> None:
        attempts: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        client = WorkflowClient.from_settings(make_settings(), transport=httpx.MockTransport(handler))
        result = await client.submit_approval("R-42", ApprovalDecision.REJECT)

        assert result.success is False
        assert len(attempts) == 1
        mock_sleep.assert_not_awaited()


def test_is_content_length_mismatch() -> None:
    assert is_content_length_mismatch(httpx.RemoteProtocolError("Content-Length mismatch")) is True
    assert is_content_length_mismatch(httpx.RemoteProtocolError("Server disconnected")) is False
    assert is_content_length_mismatch(ValueError("content-length")) is False


class TestApprovedRecords:
    @pytest.mark.asyncio
    async def test_list_approved_accepts_data_wrapper(
        self, workflow: WorkflowClient, directory: DirectoryStub
    ) -> None:
        directory.members_body = {"data": [{"rollNo": "R-1"}, {"rollNo": "R-2"}]}

        records = await workflow.list_approved()

        assert [record.roll_no for record in records] == ["R-1", "R-2"]

    def test_undecodable_member_is_skipped(self) -> None:
        records = decode_approved(
            [
                {"rollNo": "R-42", "email": "new@member.org"},
                {"rollNo": "R-7", "socialLinks": "https://github.com/x"},
            ]
        )
        assert [record.roll_no for record in records] == ["R-42"]

    @pytest.mark.asyncio
    async def test_one_bad_member_does_not_block_lookup(
        self, workflow: WorkflowClient, directory: DirectoryStub
    ) -> None:
        directory.members_body = [{"rollNo": "R-7", "socialLinks": "https://github.com/x"}, {"rollNo": "R-42"}]

        record = await workflow.resolve_approved_record("R-42")

        assert record.roll_no == "R-42"

    def test_exact_match(self) -> None:
        records = [ApprovedRecord(roll_no="R-1"), ApprovedRecord(roll_no="R-2")]
        assert match_approved_record(records, "R-2").roll_no == "R-2"

    def test_no_match_offers_newest_candidate(self) -> None:
        records = [
            ApprovedRecord.model_validate({"rollNo": "R-1", "createdAt": "2024-01-01T00:00:00Z"}),
            ApprovedRecord.model_validate({"rollNo": "R-9", "createdAt": "2025-06-01T00:00:00Z"}),
            ApprovedRecord.model_validate({"rollNo": "R-5"}),
        ]

        with pytest.raises(AmbiguousMatchError) as exc_info:
            match_approved_record(records, "R-42")

        assert exc_info.value.record_key == "R-42"
        assert exc_info.value.candidate.roll_no == "R-9"

    def test_empty_list_raises_not_found(self) -> None:
        with pytest.raises(RecordNotFoundError):
            match_approved_record([], "R-42")
