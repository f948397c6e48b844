"""Role reconciliation after onboarding completes."""

import logging
import re
from enum import StrEnum

from src.core.config import Settings
from src.domain.records import ApprovedRecord
from src.interface.gateway import PlatformGateway


logger = logging.getLogger(__name__)


class StatusCategory(StrEnum):
    """Membership category derived from a free-text directory status."""

    ALUMNI = "alumni"
    ACTIVE = "active"
    PROSPECT = "prospect"


# Order matters: "Alumni Active" is an alum
_STATUS_PATTERNS: tuple[tuple[re.Pattern[str], StatusCategory], ...] = (
    (re.compile(r"alum", re.IGNORECASE), StatusCategory.ALUMNI),
    (re.compile(r"active", re.IGNORECASE), StatusCategory.ACTIVE),
    (re.compile(r"pnm|interest|prospect|new|pledge", re.IGNORECASE), StatusCategory.PROSPECT),
)


def category_for_status(status: str | None) -> StatusCategory | None:
    """Map a directory status string to a category, or None when nothing matches."""
    if not status:
        return None
    for pattern, category in _STATUS_PATTERNS:
        if pattern.search(status):
            return category
    return None


def role_for_status(status: str | None, *, settings: Settings) -> str | None:
    """Configured role ID for a status, or None when unmapped or unconfigured."""
    category = category_for_status(status)
    if category is None:
        return None
    return {
        StatusCategory.ALUMNI: settings.alumni_role_id,
        StatusCategory.ACTIVE: settings.active_role_id,
        StatusCategory.PROSPECT: settings.pnm_role_id,
    }[category]


async def reconcile_roles(
    *,
    gateway: PlatformGateway,
    settings: Settings,
    actor_id: str,
    record: ApprovedRecord,
    current_role_ids: list[str] | None = None,
) -> list[str]:
    """Bring the actor's roles in line with their approved profile.

    Removes the pending role, adds the status role and the ECouncil role when
    flagged. When ``current_role_ids`` is known, roles already in the desired
    state are skipped. Gateway failures are logged, never raised.

    Args:
        gateway: Platform gateway used for role changes
        settings: Role ID configuration
        actor_id: Member whose roles change
        record: Approved profile (status, isECouncil)
        current_role_ids: Roles the member holds now, if known

    Returns:
        Descriptions of the role changes that succeeded (e.g. ``["-pending", "+active"]``)
    """
    held = set(current_role_ids) if current_role_ids is not None else None
    applied: list[str] = []

    async def _change(role_id: str, *, add: bool, label: str) -> None:
        if held is not None and (role_id in held) == add:
            return
        try:
            if add:
                result = await gateway.add_role(actor_id=actor_id, role_id=role_id)
            else:
                result = await gateway.remove_role(actor_id=actor_id, role_id=role_id)
        except Exception as e:
            logger.warning(
                "Role change raised",
                extra={"actor_id": actor_id, "role_id": role_id, "add": add, "error": str(e)},
            )
            return
        if result.success:
            applied.append(f"{'+' if add else '-'}{label}")
        else:
            logger.warning(
                "Role change failed",
                extra={"actor_id": actor_id, "role_id": role_id, "add": add, "error": result.error},
            )

    if settings.pending_role_id:
        await _change(settings.pending_role_id, add=False, label="pending")

    category = category_for_status(record.status)
    status_role = role_for_status(record.status, settings=settings)
    if status_role and category:
        await _change(status_role, add=True, label=category.value)
    elif record.status:
        logger.info("No role mapped for status", extra={"actor_id": actor_id, "status": record.status})

    if record.is_ecouncil and settings.ecouncil_role_id:
        await _change(settings.ecouncil_role_id, add=True, label="ecouncil")

    logger.info("Roles reconciled", extra={"actor_id": actor_id, "changes": applied})
    return applied
