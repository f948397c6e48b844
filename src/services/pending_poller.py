"""Pending-queue change detector.

Polls the directory's pending list and reports it to operators only when the
set of pending applications differs from the last reported one.
"""

import asyncio
import logging
from collections.abc import Iterable
from datetime import UTC, datetime

from src.core import message_templates as templates
from src.core.config import Settings
from src.core.errors import WorkflowAPIError
from src.core.logging import span
from src.domain.notifications import OperatorReport, decision_actions
from src.domain.records import PendingCount, PendingRecord, PendingSnapshot
from src.interface.gateway import PlatformGateway
from src.services.workflow_client import WorkflowClient


logger = logging.getLogger(__name__)


def pending_digest(records: Iterable[PendingRecord]) -> str:
    """Order-independent fingerprint of a pending set."""
    return "|".join(sorted(record.digest_key for record in records))


def snapshot_digest(snapshot: PendingSnapshot) -> str:
    if isinstance(snapshot, PendingCount):
        return f"count:{snapshot.count}"
    return pending_digest(snapshot.items)


class PendingPoller:
    """Emits operator reports for each distinct pending set, exactly once."""

    def __init__(
        self,
        *,
        workflow: WorkflowClient,
        gateway: PlatformGateway,
        settings: Settings,
    ) -> None:
        self._workflow = workflow
        self._gateway = gateway
        self._settings = settings
        self._lock = asyncio.Lock()
        self._last_digest: str | None = None
        self.last_polled_at: datetime | None = None
        self.last_error: str | None = None

    @property
    def last_digest(self) -> str | None:
        return self._last_digest

    @property
    def is_running_tick(self) -> bool:
        return self._lock.locked()

    async def tick(self) -> int:
        """Run one poll.

        Returns:
            Number of operator reports issued; 0 when unchanged, skipped, or on fetch failure
        """
        # Guard: Never overlap ticks
        if self._lock.locked():
            logger.info("Pending poll already in flight, skipping tick")
            return 0

        async with self._lock:
            with span("pending_poller.tick"):
                try:
                    snapshot = await self._workflow.list_pending()
                except WorkflowAPIError as e:
                    self.last_error = str(e)
                    logger.error(
                        "Pending poll failed",
                        extra={"failure_kind": e.failure_kind, "status": e.status_code, "error": str(e)},
                    )
                    return 0

                self.last_polled_at = datetime.now(UTC)
                self.last_error = None
                digest = snapshot_digest(snapshot)
                if digest == self._last_digest:
                    logger.debug("Pending set unchanged")
                    return 0

                self._last_digest = digest
                return await self._report(snapshot)

    async def _report(self, snapshot: PendingSnapshot) -> int:
        mention = f"<@&{self._settings.admin_role_id}> " if self._settings.admin_role_id else ""

        if isinstance(snapshot, PendingCount):
            reports = [OperatorReport(text=templates.pending_summary(count=snapshot.count, mention=mention))]
        elif not snapshot.items:
            logger.info("Pending set is now empty")
            return 0
        else:
            reports = [OperatorReport(text=templates.pending_summary(count=len(snapshot.items), mention=mention))]
            for record in snapshot.items:
                report = templates.pending_item_report(record)
                # Approval is addressed by roll number; items without one get no controls
                if record.roll_no:
                    report.actions = decision_actions(record.record_key, record.email)
                reports.append(report)

        emitted = 0
        for report in reports:
            try:
                result = await self._gateway.send_operator_report(report)
            except Exception as e:
                logger.warning("Pending report raised", extra={"title": report.title, "error": str(e)})
                continue
            if result.success:
                emitted += 1
            else:
                logger.warning("Pending report not delivered", extra={"title": report.title, "error": result.error})

        logger.info("Pending set changed", extra={"reports": len(reports), "delivered": emitted})
        return len(reports)

    async def run_forever(self, stop_event: asyncio.Event | None = None) -> None:
        """Poll until ``stop_event`` is set; each tick finishes before the next sleep starts."""
        stop_event = stop_event or asyncio.Event()
        interval = self._settings.pending_poll_seconds
        logger.info("Pending poller started", extra={"interval_seconds": interval})

        while not stop_event.is_set():
            try:
                await self.tick()
            except Exception as e:
                logger.exception("Pending poll tick crashed", extra={"error": str(e)})

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except TimeoutError:
                continue

        logger.info("Pending poller stopped")
