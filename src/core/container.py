"""Wiring of the long-lived onboarding objects."""

from dataclasses import dataclass

import httpx
from fastapi import Request

from src.core.admin_notifier import NotificationRateLimiter
from src.core.config import Settings
from src.interface.gateway import BridgeGateway, PlatformGateway
from src.interface.webhook_security import SeenEventTracker
from src.services.correlation_store import CorrelationStore
from src.services.onboarding_service import OnboardingService
from src.services.pending_poller import PendingPoller
from src.services.session_registry import SessionRegistry
from src.services.workflow_client import WorkflowClient


@dataclass
class AppContainer:
    """Everything a request handler or background job needs.

    State lives here rather than in module globals so tests can build
    isolated instances.
    """

    settings: Settings
    registry: SessionRegistry
    correlations: CorrelationStore
    workflow: WorkflowClient
    gateway: PlatformGateway
    onboarding: OnboardingService
    poller: PendingPoller
    notification_limiter: NotificationRateLimiter
    seen_events: SeenEventTracker


def build_container(
    settings: Settings,
    *,
    gateway: PlatformGateway | None = None,
    workflow_transport: httpx.AsyncBaseTransport | None = None,
) -> AppContainer:
    """Build the object graph from settings; ``gateway`` and the transport are overridable for tests."""
    registry = SessionRegistry(expiry_hours=settings.session_expiry_hours)
    correlations = CorrelationStore()
    workflow = WorkflowClient.from_settings(settings, transport=workflow_transport)
    gateway = gateway or BridgeGateway.from_settings(settings)
    onboarding = OnboardingService(
        registry=registry,
        correlations=correlations,
        workflow=workflow,
        gateway=gateway,
        settings=settings,
    )
    poller = PendingPoller(workflow=workflow, gateway=gateway, settings=settings)
    return AppContainer(
        settings=settings,
        registry=registry,
        correlations=correlations,
        workflow=workflow,
        gateway=gateway,
        onboarding=onboarding,
        poller=poller,
        notification_limiter=NotificationRateLimiter(settings.admin_notification_cooldown_minutes),
        seen_events=SeenEventTracker(),
    )


def get_container(request: Request) -> AppContainer:
    """FastAPI dependency returning the container built at startup."""
    return request.app.state.container
