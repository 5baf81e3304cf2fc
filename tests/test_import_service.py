"""
Unit tests for ImportService — CSV rows written through the regular services.
"""

from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from captable.core.events import INSERT, ChangeEvent, change_feed
from captable.core.exceptions import ConflictException, NotFoundException
from captable.services.import_service import ImportService

from .conftest import CAP_TABLE_ID, INVESTOR_ID, WALLET, WALLET_2, make_cap_table, make_investor

INVESTOR_CSV = (
    "Name,Email,Type,Wallet,KYC Status\n"
    f"John Doe,john@example.com,Individual,{WALLET},Verified\n"
    f"Acme Corp,ops@acme.com,Institution,{WALLET_2},Pending\n"
    "Broken,broken@example.com,Individual,0x12,Pending\n"
)

SUBSCRIPTION_CSV = (
    "Investor Name,FIAT Amount,Currency,Status,Subscription ID\n"
    "John Doe,1000,USD,Confirmed,SUB-1\n"
    "Nobody,500,USD,,SUB-2\n"
    "John Doe,-1,USD,,SUB-3\n"
)


@pytest.fixture()
def investor_service():
    return AsyncMock()


@pytest.fixture()
def subscription_service():
    return AsyncMock()


@pytest.fixture()
def investor_repo():
    repo = AsyncMock()
    repo.get_by_email.return_value = None
    return repo


@pytest.fixture()
def cap_table_repo():
    repo = AsyncMock()
    repo.get.return_value = make_cap_table()
    return repo


@pytest.fixture()
def service(investor_service, subscription_service, investor_repo, cap_table_repo):
    return ImportService(investor_service, subscription_service, investor_repo, cap_table_repo)


class TestImportInvestors:
    @pytest.mark.asyncio
    async def test_creates_valid_rows_and_reports_invalid(self, service, investor_service):
        result = await service.import_investors(INVESTOR_CSV, CAP_TABLE_ID)

        assert result.total_rows == 3
        assert result.created == 2
        assert result.failed == 1
        assert result.errors[0].row == 4
        payloads = [c.args[0] for c in investor_service.create_investor.await_args_list]
        assert [p.email for p in payloads] == ["john@example.com", "ops@acme.com"]
        assert all(p.cap_table_id == CAP_TABLE_ID for p in payloads)

    @pytest.mark.asyncio
    async def test_existing_email_skipped_and_linked(
        self, service, investor_service, investor_repo, cap_table_repo
    ):
        existing = make_investor()
        investor_repo.get_by_email.side_effect = lambda email: (
            existing if email == "john@example.com" else None
        )
        cap_table_repo.get_link.return_value = None

        result = await service.import_investors(INVESTOR_CSV, CAP_TABLE_ID)

        assert result.created == 1
        assert result.skipped == 1
        assert any("already exists" in w for w in result.warnings)
        cap_table_repo.add_link.assert_awaited_once_with(CAP_TABLE_ID, INVESTOR_ID)

    @pytest.mark.asyncio
    async def test_link_to_existing_investor_publishes_membership_change(
        self, service, investor_repo, cap_table_repo
    ):
        investor_repo.get_by_email.return_value = make_investor()
        cap_table_repo.get_link.return_value = None
        received = []
        unsubscribe = change_feed.on_change(received.append, tables=["cap_table_investors"])

        try:
            await service.import_investors(INVESTOR_CSV, CAP_TABLE_ID)
        finally:
            unsubscribe()

        assert ChangeEvent("cap_table_investors", INSERT, str(CAP_TABLE_ID)) in received

    @pytest.mark.asyncio
    async def test_existing_member_not_linked_twice(
        self, service, investor_repo, cap_table_repo
    ):
        investor_repo.get_by_email.return_value = make_investor()
        cap_table_repo.get_link.return_value = object()

        await service.import_investors(INVESTOR_CSV, CAP_TABLE_ID)

        cap_table_repo.add_link.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_conflict_during_create_counts_as_failed(self, service, investor_service):
        investor_service.create_investor.side_effect = [
            None,
            ConflictException("An investor with this email or investor id already exists"),
        ]

        result = await service.import_investors(INVESTOR_CSV)

        assert result.created == 1
        assert result.failed == 2
        assert result.errors[-1].field == "email"

    @pytest.mark.asyncio
    async def test_unknown_cap_table(self, service, cap_table_repo, investor_service):
        cap_table_repo.get.return_value = None

        with pytest.raises(NotFoundException):
            await service.import_investors(INVESTOR_CSV, CAP_TABLE_ID)
        investor_service.create_investor.assert_not_awaited()


class TestImportSubscriptions:
    @pytest.mark.asyncio
    async def test_matches_by_name(self, service, investor_repo, subscription_service):
        john = make_investor()
        investor_repo.find_by_name.side_effect = lambda name, cap_table_id: (
            [john] if name == "John Doe" else []
        )

        result = await service.import_subscriptions(SUBSCRIPTION_CSV, CAP_TABLE_ID)

        assert result.total_rows == 3
        assert result.created == 1
        assert result.failed == 2
        assert {e.field for e in result.errors} == {"fiat amount", "investor name"}
        investor_id, payload = subscription_service.create_subscription.await_args.args
        assert investor_id == INVESTOR_ID
        assert payload.subscription_id == "SUB-1"
        assert payload.confirmed is True

    @pytest.mark.asyncio
    async def test_ambiguous_name_uses_first_and_warns(
        self, service, investor_repo, subscription_service
    ):
        first = make_investor()
        second = make_investor(id=uuid4(), investor_id="INV-0002", email="john2@example.com")
        investor_repo.find_by_name.return_value = [first, second]

        result = await service.import_subscriptions(
            "Investor Name,FIAT Amount,Currency,Subscription ID\nJohn Doe,1,USD,S-1\n"
        )

        assert result.created == 1
        assert "2 investors named 'John Doe'" in result.warnings[0]
        assert subscription_service.create_subscription.await_args.args[0] == first.id

    @pytest.mark.asyncio
    async def test_duplicate_code_skipped(self, service, investor_repo, subscription_service):
        investor_repo.find_by_name.return_value = [make_investor()]
        subscription_service.create_subscription.side_effect = ConflictException(
            "Subscription 'S-1' already exists"
        )

        result = await service.import_subscriptions(
            "Investor Name,FIAT Amount,Currency,Subscription ID\nJohn Doe,1,USD,S-1\n"
        )

        assert result.skipped == 1
        assert result.failed == 0
        assert result.warnings == ["Row 2: Subscription 'S-1' already exists, skipped"]
