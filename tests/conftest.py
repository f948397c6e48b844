"""Pytest configuration and shared fixtures."""

from collections.abc import Generator
from unittest.mock import AsyncMock, patch

import pytest

from src.core.config import Settings
from src.domain.records import ApprovedRecord
from src.services.correlation_store import CorrelationStore
from src.services.onboarding_service import OnboardingService
from src.services.session_registry import SessionRegistry
from src.services.workflow_client import WorkflowClient
from tests.unit.mocks import INVITE_URL, MEMBERS_URL, DirectoryStub, RecordingGateway


def make_settings(**overrides: object) -> Settings:
    """Settings isolated from the developer's .env file."""
    values: dict[str, object] = {
        "guild_id": "guild-1",
        "mod_role_id": "role-mod",
        "admin_role_id": "role-admin",
        "pending_role_id": "role-pending",
        "ecouncil_role_id": "role-ecouncil",
        "alumni_role_id": "role-alumni",
        "active_role_id": "role-active",
        "pnm_role_id": "role-pnm",
        "category_id": "category-1",
        "admin_channel_id": "channel-admin",
        "welcome_cards_channel_id": "channel-welcome",
        "invite_api_url": INVITE_URL,
        "invite_api_secret": "s3cret-token",
        "pending_check_url": None,
        "approval_api_base": "https://directory.test/api/members/pending",
        "members_api_url": MEMBERS_URL,
        "pending_poll_seconds": 60.0,
        "step_image_1": "https://img.test/1.png",
        "step_image_2": None,
        "step_image_3": "https://img.test/3.png",
        "session_expiry_hours": 168,
        "bridge_base_url": "https://bridge.test",
        "bridge_webhook_secret": "bridge-secret",
        "admin_api_key": "admin-key",
        "enable_admin_notifications": True,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)  # type: ignore[arg-type]


@pytest.fixture
def test_settings() -> Settings:
    return make_settings()


@pytest.fixture
def gateway() -> RecordingGateway:
    return RecordingGateway()


@pytest.fixture
def directory() -> DirectoryStub:
    return DirectoryStub()


@pytest.fixture
def workflow(test_settings: Settings, directory: DirectoryStub) -> WorkflowClient:
    return WorkflowClient.from_settings(test_settings, transport=directory.transport)


@pytest.fixture
def registry(test_settings: Settings) -> SessionRegistry:
    return SessionRegistry(expiry_hours=test_settings.session_expiry_hours)


@pytest.fixture
def correlations() -> CorrelationStore:
    return CorrelationStore()


@pytest.fixture
def onboarding(
    registry: SessionRegistry,
    correlations: CorrelationStore,
    workflow: WorkflowClient,
    gateway: RecordingGateway,
    test_settings: Settings,
) -> OnboardingService:
    return OnboardingService(
        registry=registry,
        correlations=correlations,
        workflow=workflow,
        gateway=gateway,
        settings=test_settings,
    )


@pytest.fixture
def approved_member() -> ApprovedRecord:
    return ApprovedRecord.model_validate(
        {
            "rollNo": "R-42",
            "fName": "Jane",
            "lName": "Doe",
            "email": "new@member.org",
            "status": "Active Brother",
            "gradYear": 2027,
            "majors": ["Computer Science"],
            "familyLine": "Oak",
            "hometown": "Austin",
            "isECouncil": True,
            "socialLinks": {"github": "https://github.com/jane"},
            "createdAt": "2025-01-05T10:00:00Z",
        }
    )


@pytest.fixture
def mock_sleep() -> Generator[AsyncMock, None, None]:
    """Mock asyncio.sleep in the directory client so retries are instant."""
    with patch("src.services.workflow_client.asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep
