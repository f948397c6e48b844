"""End-to-end tests for the bridge webhook: from HTTP payload to bridge commands."""

from collections.abc import Generator
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from src.core import message_templates as templates
from src.core.container import AppContainer
from src.domain.session import SessionStage
from tests.conftest import make_settings
from tests.integration.conftest import BRIDGE_HEADERS
from tests.unit.mocks import DirectoryStub, RecordingGateway


EMAIL = "new@member.org"
APPROVED = {
    "rollNo": "R-42",
    "fName": "Jane",
    "lName": "Doe",
    "email": EMAIL,
    "status": "Alumni",
    "isECouncil": True,
    "createdAt": "2025-01-05T10:00:00Z",
}


@pytest.fixture(autouse=True)
def notifier_settings() -> Generator[None, None, None]:
    """Pin operator alerts on regardless of the developer's environment."""
    with patch("src.core.admin_notifier.settings", make_settings()):
        yield


def post(client: TestClient, payload: object, headers: dict[str, str] | None = None) -> dict[str, str]:
    response = client.post("/webhook/events", json=payload, headers=BRIDGE_HEADERS if headers is None else headers)
    assert response.status_code == 200
    return response.json()


def join_payload(event_id: str = "evt-join", user_id: str = "u1") -> dict[str, object]:
    return {
        "event_id": event_id,
        "kind": "member_join",
        "guild_id": "guild-1",
        "user": {"id": user_id, "name": "Jane Doe"},
    }


def button_payload(event_id: str, custom_id: str, user_id: str = "u1", **extra: object) -> dict[str, object]:
    payload: dict[str, object] = {
        "event_id": event_id,
        "kind": "button",
        "custom_id": custom_id,
        "interaction_id": f"int-{event_id}",
        "user": {"id": user_id},
    }
    payload.update(extra)
    return payload


def replies(bridge: RecordingGateway) -> list[str]:
    return [call["text"] for call in bridge.calls_to("reply_to_interaction")]


class TestAuthentication:
    def test_missing_secret_is_401(self, client: TestClient) -> None:
        response = client.post("/webhook/events", json=join_payload())
        assert response.status_code == 401

    def test_wrong_secret_is_403(self, client: TestClient) -> None:
        response = client.post("/webhook/events", json=join_payload(), headers={"X-Bridge-Secret": "nope"})
        assert response.status_code == 403

    def test_rejected_request_is_not_processed(self, client: TestClient, container: AppContainer) -> None:
        client.post("/webhook/events", json=join_payload(), headers={"X-Bridge-Secret": "nope"})
        assert len(container.registry) == 0


class TestPayloads:
    def test_invalid_json_is_400(self, client: TestClient) -> None:
        response = client.post(
            "/webhook/events",
            content=b"{not json",
            headers={**BRIDGE_HEADERS, "Content-Type": "application/json"},
        )
        assert response.status_code == 400

    def test_non_object_is_400(self, client: TestClient) -> None:
        response = client.post("/webhook/events", json=[1, 2], headers=BRIDGE_HEADERS)
        assert response.status_code == 400

    def test_irrelevant_event_is_ignored(self, client: TestClient, bridge: RecordingGateway) -> None:
        assert post(client, {"kind": "typing_start", "user": {"id": "u1"}}) == {"status": "ignored"}
        assert bridge.calls == []

    def test_duplicate_event_is_processed_once(
        self, client: TestClient, bridge: RecordingGateway, container: AppContainer
    ) -> None:
        assert post(client, join_payload()) == {"status": "received"}
        assert post(client, join_payload()) == {"status": "duplicate"}

        assert len(bridge.calls_to("create_verification_surface")) == 1
        assert len(container.registry) == 1


class TestOnboardingFlow:
    def test_join_to_admission(
        self,
        client: TestClient,
        bridge: RecordingGateway,
        member_directory: DirectoryStub,
        container: AppContainer,
    ) -> None:
        post(client, join_payload())
        assert container.registry.require("u1").stage == SessionStage.AWAITING_START

        post(client, button_payload("evt-start", "verify:start:u1"))
        assert bridge.calls_to("open_email_form") == [{"interaction_id": "int-evt-start", "actor_id": "u1"}]

        post(
            client,
            {
                "event_id": "evt-email",
                "kind": "modal_submit",
                "custom_id": "verify:email:u1",
                "interaction_id": "int-email",
                "user": {"id": "u1"},
                "fields": {"email": EMAIL},
            },
        )
        assert replies(bridge)[-1] == templates.INVITE_SENT
        assert container.registry.require("u1").stage == SessionStage.PENDING_APPROVAL

        member_directory.members_body = [APPROVED]
        post(
            client,
            button_payload(
                "evt-approve",
                f"pending:approve:R-42:{EMAIL}",
                user_id="op-1",
                member={"role_ids": ["role-admin"]},
            ),
        )
        assert replies(bridge)[-1] == "Approved roll #R-42. Asked the user for their profile picture."
        assert container.registry.require("u1").stage == SessionStage.AWAITING_PHOTO

        bridge.reset()
        post(
            client,
            {
                "event_id": "evt-photo",
                "kind": "message",
                "channel_id": "surface-u1",
                "author": {"id": "u1", "name": "Jane Doe"},
                "attachments": [{"url": "https://cdn.test/me.png"}],
            },
        )

        assert container.registry.get("u1") is None
        assert bridge.calls_to("publish_admission_card")[0]["card"].image_url == "https://cdn.test/me.png"
        assert [call["role_id"] for call in bridge.calls_to("add_role")] == ["role-alumni", "role-ecouncil"]
        thanks = bridge.calls_to("send_to_surface")[-1]["notice"]
        assert thanks.surface_id == "surface-u1"
        assert thanks.text == templates.PHOTO_THANKS

    def test_rejection_removes_member(
        self, client: TestClient, bridge: RecordingGateway, container: AppContainer
    ) -> None:
        post(client, join_payload())
        post(client, button_payload("evt-start", "verify:start:u1"))
        post(
            client,
            {
                "event_id": "evt-email",
                "kind": "modal_submit",
                "custom_id": "verify:email:u1",
                "user": {"id": "u1"},
                "fields": {"email": EMAIL},
            },
        )

        post(
            client,
            button_payload(
                "evt-reject", f"pending:reject:R-42:{EMAIL}", user_id="op-1", member={"can_manage_guild": True}
            ),
        )

        assert replies(bridge)[-1] == "Rejected roll #R-42."
        assert container.registry.get("u1") is None
        assert len(bridge.calls_to("send_direct")) == 1
        assert len(bridge.calls_to("remove_member")) == 1


class TestErrors:
    def test_foreign_button_gets_error_reply(self, client: TestClient, bridge: RecordingGateway) -> None:
        post(client, join_payload())

        post(client, button_payload("evt-start", "verify:start:u1", user_id="u2"))

        assert replies(bridge) == ["This button is not for you."]
        assert bridge.calls_to("send_operator_report") == []

    def test_non_operator_decision_is_refused(
        self, client: TestClient, bridge: RecordingGateway, member_directory: DirectoryStub
    ) -> None:
        post(client, button_payload("evt-approve", "pending:approve:R-42:none", user_id="u9"))

        assert replies(bridge) == ["You lack permission to do this."]
        assert member_directory.requests == []

    def test_expired_session_reply(self, client: TestClient, bridge: RecordingGateway) -> None:
        post(client, button_payload("evt-start", "verify:start:u1"))

        assert "expired" in replies(bridge)[0]

    def test_unexpected_failure_alerts_operators(self, client: TestClient, bridge: RecordingGateway) -> None:
        bridge.failing = {"create_verification_surface"}

        post(client, join_payload())

        reports = [call["report"] for call in bridge.calls_to("send_operator_report")]
        assert len(reports) == 1
        assert reports[0].title == "[CRITICAL] Onboarding error"
        assert "ERR_UNKNOWN" in reports[0].text
        # Joins carry no interaction or surface to answer
        assert bridge.calls_to("reply_to_interaction") == []

    def test_operator_alerts_are_rate_limited(self, client: TestClient, bridge: RecordingGateway) -> None:
        bridge.failing = {"create_verification_surface"}

        post(client, join_payload("evt-1", "u1"))
        post(client, join_payload("evt-2", "u2"))

        assert len(bridge.calls_to("send_operator_report")) == 1

    def test_reply_failure_is_swallowed(self, client: TestClient, bridge: RecordingGateway) -> None:
        bridge.raising = {"reply_to_interaction"}

        assert post(client, button_payload("evt-start", "verify:start:u1")) == {"status": "received"}
