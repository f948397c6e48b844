"""Pytest configuration and fixtures for integration tests.

The app is assembled from the real routers and container; only the bridge
(RecordingGateway) and the member directory (DirectoryStub over
httpx.MockTransport) are replaced.
"""

from collections.abc import Generator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.core.container import AppContainer, build_container
from src.interface.admin_router import router as admin_router
from src.interface.webhook import router as webhook_router
from tests.conftest import make_settings
from tests.unit.mocks import DirectoryStub, RecordingGateway


BRIDGE_HEADERS = {"X-Bridge-Secret": "bridge-secret"}
ADMIN_HEADERS = {"X-Admin-Key": "admin-key"}


@pytest.fixture
def bridge() -> RecordingGateway:
    return RecordingGateway()


@pytest.fixture
def member_directory() -> DirectoryStub:
    return DirectoryStub()


@pytest.fixture
def container(bridge: RecordingGateway, member_directory: DirectoryStub) -> AppContainer:
    return build_container(make_settings(), gateway=bridge, workflow_transport=member_directory.transport)


@pytest.fixture
def client(container: AppContainer) -> Generator[TestClient, None, None]:
    """TestClient over the webhook and admin routers without the startup lifespan."""
    app = FastAPI()
    app.include_router(webhook_router)
    app.include_router(admin_router)
    app.state.container = container
    with TestClient(app) as test_client:
        yield test_client
