"""Unit tests for status-to-role mapping and role reconciliation."""

import pytest

from src.core.config import Settings
from src.domain.records import ApprovedRecord
from src.services.role_service import StatusCategory, category_for_status, reconcile_roles, role_for_status
from tests.conftest import make_settings
from tests.unit.mocks import RecordingGateway


class TestCategoryForStatus:
    @pytest.mark.parametrize(
        ("status", "expected"),
        [
            ("Active Brother", StatusCategory.ACTIVE),
            ("Alumni", StatusCategory.ALUMNI),
            ("alumnus", StatusCategory.ALUMNI),
            ("PNM", StatusCategory.PROSPECT),
            ("Interested", StatusCategory.PROSPECT),
            ("New Member", StatusCategory.PROSPECT),
            ("pledge", StatusCategory.PROSPECT),
            ("banana", None),
            ("", None),
            (None, None),
        ],
    )
    def test_maps_status(self, status: str | None, expected: StatusCategory | None) -> None:
        assert category_for_status(status) == expected

    def test_alum_takes_precedence_over_active(self) -> None:
        assert category_for_status("Alumni (formerly Active)") == StatusCategory.ALUMNI


def test_role_for_status_uses_configured_ids(test_settings: Settings) -> None:
    assert role_for_status("Active", settings=test_settings) == "role-active"
    assert role_for_status("Alumni", settings=test_settings) == "role-alumni"
    assert role_for_status("PNM", settings=test_settings) == "role-pnm"
    assert role_for_status("banana", settings=test_settings) is None


def test_role_for_status_unconfigured_role() -> None:
    assert role_for_status("Active", settings=make_settings(active_role_id=None)) is None


class TestReconcileRoles:
    @pytest.mark.asyncio
    async def test_swaps_pending_for_status_role(self, gateway: RecordingGateway, test_settings: Settings) -> None:
        record = ApprovedRecord(status="Active Brother")

        applied = await reconcile_roles(gateway=gateway, settings=test_settings, actor_id="u1", record=record)

        assert gateway.calls_to("remove_role") == [{"actor_id": "u1", "role_id": "role-pending"}]
        assert gateway.calls_to("add_role") == [{"actor_id": "u1", "role_id": "role-active"}]
        assert applied == ["-pending", "+active"]

    @pytest.mark.asyncio
    async def test_unknown_status_only_removes_pending(
        self, gateway: RecordingGateway, test_settings: Settings
    ) -> None:
        record = ApprovedRecord(status="banana")

        await reconcile_roles(gateway=gateway, settings=test_settings, actor_id="u1", record=record)

        assert gateway.calls_to("add_role") == []
        assert len(gateway.calls_to("remove_role")) == 1

    @pytest.mark.asyncio
    async def test_adds_ecouncil_role(self, gateway: RecordingGateway, test_settings: Settings) -> None:
        record = ApprovedRecord.model_validate({"status": "Alumni", "isECouncil": "true"})

        await reconcile_roles(gateway=gateway, settings=test_settings, actor_id="u1", record=record)

        added = [call["role_id"] for call in gateway.calls_to("add_role")]
        assert added == ["role-alumni", "role-ecouncil"]

    @pytest.mark.asyncio
    async def test_skips_roles_already_in_place(self, gateway: RecordingGateway, test_settings: Settings) -> None:
        record = ApprovedRecord(status="Active")

        applied = await reconcile_roles(
            gateway=gateway,
            settings=test_settings,
            actor_id="u1",
            record=record,
            current_role_ids=["role-active"],
        )

        assert gateway.calls == []
        assert applied == []

    @pytest.mark.asyncio
    async def test_failures_are_logged_not_raised(self, gateway: RecordingGateway, test_settings: Settings) -> None:
        gateway.failing = {"remove_role"}
        record = ApprovedRecord(status="PNM")

        applied = await reconcile_roles(gateway=gateway, settings=test_settings, actor_id="u1", record=record)

        assert applied == ["+prospect"]
