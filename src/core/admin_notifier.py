"""Operator notification system for failed events."""

import logging
from datetime import datetime, timedelta

from src.core.config import settings
from src.core.errors import ErrorCategory
from src.domain.notifications import OperatorReport
from src.interface.gateway import PlatformGateway


logger = logging.getLogger(__name__)


class NotificationRateLimiter:
    """Rate limiter for operator notifications to prevent spam.

    Tracks the last notification per error category so operators are not
    overwhelmed with duplicate alerts.
    """

    def __init__(self, cooldown_minutes: int | None = None) -> None:
        self._notifications: dict[str, datetime] = {}
        self._cooldown_minutes = cooldown_minutes

    @property
    def cooldown(self) -> timedelta:
        minutes = self._cooldown_minutes
        if minutes is None:
            minutes = settings.admin_notification_cooldown_minutes
        return timedelta(minutes=minutes)

    def can_notify(self, error_category: ErrorCategory) -> bool:
        """Check if a notification can be sent for the given error category.

        Args:
            error_category: The category of error to check

        Returns:
            True if notification is allowed, False if rate limited
        """
        last_notification = self._notifications.get(error_category.value)
        if last_notification is None:
            return True
        return datetime.now() - last_notification >= self.cooldown

    def record_notification(self, error_category: ErrorCategory) -> None:
        """Record a notification for rate limiting.

        Args:
            error_category: The category of error that was notified
        """
        self._notifications[error_category.value] = datetime.now()


# Global rate limiter instance (in-memory, per process)
notification_rate_limiter = NotificationRateLimiter()


def should_notify_operators(error_category: ErrorCategory) -> bool:
    """Determine if operators should be alerted for a given error category.

    Failures outside anyone's control (directory outages, unexpected errors,
    credentials) are worth an alert. Actor mistakes and stale clicks are not.

    Args:
        error_category: The category of error to evaluate

    Returns:
        True if operators should be notified, False otherwise
    """
    critical_errors = {
        ErrorCategory.EXTERNAL_SERVICE,
        ErrorCategory.AUTHENTICATION_FAILED,
        ErrorCategory.UNKNOWN,
    }

    return error_category in critical_errors


async def notify_operators(
    *,
    gateway: PlatformGateway,
    message: str,
    error_category: ErrorCategory,
    severity: str = "warning",
    rate_limiter: NotificationRateLimiter | None = None,
) -> bool:
    """Post an alert to the operator channel.

    Args:
        gateway: Platform gateway used to reach the operator channel
        message: The notification message to send
        error_category: Category used for the per-category cooldown
        severity: Severity level (e.g., "warning", "critical", "info")
        rate_limiter: Limiter to use; defaults to the process-wide one

    Returns:
        True if the alert was delivered
    """
    if not settings.enable_admin_notifications:
        logger.debug(
            "Operator notifications disabled, skipping notification",
            extra={"alert": message, "severity": severity},
        )
        return False

    limiter = rate_limiter or notification_rate_limiter
    if not limiter.can_notify(error_category):
        logger.debug("Operator notification rate limited", extra={"category": error_category.value})
        return False

    logger.info("admin_notifier.notify_operators", extra={"severity": severity, "category": error_category.value})
    try:
        result = await gateway.send_operator_report(
            OperatorReport(
                title=f"[{severity.upper()}] Onboarding error",
                text=message,
                success=False,
            )
        )
    except Exception as e:
        logger.error("Failed to notify operators", extra={"error": str(e)})
        return False

    if not result.success:
        logger.error("Failed to notify operators", extra={"error": result.error})
        return False

    limiter.record_notification(error_category)
    return True
