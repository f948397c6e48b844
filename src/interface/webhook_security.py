"""Webhook security utilities: shared-secret check and replay protection."""

import logging
import secrets
from collections import OrderedDict
from typing import NamedTuple

from src.core.config import constants


logger = logging.getLogger(__name__)


class WebhookSecurityResult(NamedTuple):
    """Result of webhook security validation."""

    is_valid: bool
    error_message: str | None
    http_status_code: int | None


class SeenEventTracker:
    """Bounded memory of recently processed bridge event IDs."""

    def __init__(self, maxlen: int = constants.WEBHOOK_SEEN_EVENTS_MAXLEN) -> None:
        self._seen: OrderedDict[str, None] = OrderedDict()
        self._maxlen = maxlen

    def mark_seen(self, event_id: str) -> bool:
        """Record an event ID. Returns False if it was already seen."""
        if event_id in self._seen:
            self._seen.move_to_end(event_id)
            return False
        self._seen[event_id] = None
        while len(self._seen) > self._maxlen:
            self._seen.popitem(last=False)
        return True

    def __len__(self) -> int:
        return len(self._seen)


async def validate_webhook_secret(received_secret: str | None, expected_secret: str | None) -> WebhookSecurityResult:
    """Validate webhook secret (authentication).

    Args:
        received_secret: Secret received in request header
        expected_secret: Secret configured in settings

    Returns:
        WebhookSecurityResult indicating if secret is valid
    """
    if not expected_secret:
        # Secret not configured, skip validation (fail open for local development)
        return WebhookSecurityResult(is_valid=True, error_message=None, http_status_code=None)

    if not received_secret:
        logger.warning("Missing webhook secret")
        return WebhookSecurityResult(
            is_valid=False,
            error_message="Missing webhook secret",
            http_status_code=401,
        )

    if not secrets.compare_digest(received_secret, expected_secret):
        logger.warning("Invalid webhook secret")
        return WebhookSecurityResult(
            is_valid=False,
            error_message="Invalid webhook secret",
            http_status_code=403,
        )

    return WebhookSecurityResult(is_valid=True, error_message=None, http_status_code=None)


async def validate_webhook_nonce(event_id: str | None, tracker: SeenEventTracker) -> WebhookSecurityResult:
    """Validate the event hasn't been processed before (nonce check).

    Events without an ID cannot be deduplicated and are let through.

    Args:
        event_id: Bridge-assigned event ID
        tracker: Recently seen event IDs

    Returns:
        WebhookSecurityResult indicating if nonce is valid (not a duplicate)
    """
    if not event_id:
        return WebhookSecurityResult(is_valid=True, error_message=None, http_status_code=None)

    if not tracker.mark_seen(event_id):
        logger.debug("Duplicate webhook detected: %s", event_id, extra={"event_id": event_id})
        return WebhookSecurityResult(
            is_valid=False,
            error_message="Duplicate webhook",
            http_status_code=200,
        )

    return WebhookSecurityResult(is_valid=True, error_message=None, http_status_code=None)
