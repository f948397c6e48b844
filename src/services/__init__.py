from src.services import (
    correlation_store,
    onboarding_service,
    pending_poller,
    role_service,
    session_registry,
    workflow_client,
)


__all__ = [
    "correlation_store",
    "onboarding_service",
    "pending_poller",
    "role_service",
    "session_registry",
    "workflow_client",
]
