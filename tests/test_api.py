"""
Integration tests for the API endpoints using httpx AsyncClient.

These tests exercise the full FastAPI request → endpoint → service pipeline,
with mocked service layers to isolate from the database.
"""

from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from captable.core.exceptions import (
    ConflictException,
    NotFoundException,
    ValidationException,
    add_exception_handlers,
)
from captable.models.enums import InvestorType, KycStatus, SubscriptionStatus
from captable.schemas.distribution import DistributionBatch, DistributionItemResult
from captable.schemas.imports import ImportResult, RowError

from .conftest import (
    CAP_TABLE_ID,
    CAP_TABLE_ID_2,
    INVESTOR_ID,
    PROJECT_ID,
    PROJECT_ID_2,
    SUBSCRIPTION_ID,
    WALLET,
    make_cap_table,
    make_investor,
    make_investor_view,
    make_project,
    make_subscription_view,
)

# ────────────────────────────────────────────────────────────────────────────
# Test app factory
# ────────────────────────────────────────────────────────────────────────────


def _make_test_app() -> FastAPI:
    """
    Build a minimal FastAPI app with the real routers but
    NO database or lifespan — services will be injected via overrides.
    """
    from captable.api.v1.api import api_router

    app = FastAPI()
    add_exception_handlers(app)
    app.include_router(api_router, prefix="/api/v1")
    return app


class _EndpointTest:
    """Shared setup: one mocked service bound to a module's DI factories."""

    @pytest.fixture(autouse=True)
    def _setup(self):
        self.app = _make_test_app()
        self.mock_service = AsyncMock()

    def _override(self, *factories):
        for factory in factories:
            self.app.dependency_overrides[factory] = lambda: self.mock_service

    async def _request(self, method: str, url: str, **kwargs):
        transport = ASGITransport(app=self.app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            return await client.request(method, url, **kwargs)


# ────────────────────────────────────────────────────────────────────────────
# Projects
# ────────────────────────────────────────────────────────────────────────────


class TestProjectsEndpoints(_EndpointTest):
    @pytest.fixture(autouse=True)
    def _bind(self, _setup):
        from captable.api.v1.endpoints.projects import _get_cap_table_service

        self._override(_get_cap_table_service)

    @pytest.mark.asyncio
    async def test_list_projects(self):
        self.mock_service.list_projects.return_value = [make_project()]

        resp = await self._request("GET", "/api/v1/projects")

        assert resp.status_code == 200
        assert resp.json()[0]["name"] == "Main Project"

    @pytest.mark.asyncio
    async def test_create_project_201(self):
        self.mock_service.create_project.return_value = make_project(name="Series B")

        resp = await self._request("POST", "/api/v1/projects", json={"name": "Series B"})

        assert resp.status_code == 201
        assert resp.json()["name"] == "Series B"

    @pytest.mark.asyncio
    async def test_create_project_blank_name_422(self):
        resp = await self._request("POST", "/api/v1/projects", json={"name": "   "})

        assert resp.status_code == 422
        self.mock_service.create_project.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delete_last_project_409(self):
        self.mock_service.delete_project.side_effect = ConflictException(
            "Cannot delete the last remaining project"
        )

        resp = await self._request("DELETE", f"/api/v1/projects/{PROJECT_ID}")

        assert resp.status_code == 409
        assert resp.json() == {"error": True, "message": "Cannot delete the last remaining project"}

    @pytest.mark.asyncio
    async def test_delete_project_returns_selection(self):
        self.mock_service.delete_project.return_value = PROJECT_ID_2

        resp = await self._request("DELETE", f"/api/v1/projects/{PROJECT_ID}")

        assert resp.status_code == 200
        assert resp.json() == {
            "deleted_id": str(PROJECT_ID),
            "selected_project_id": str(PROJECT_ID_2),
        }

    @pytest.mark.asyncio
    async def test_create_cap_table(self):
        self.mock_service.create_cap_table.return_value = make_cap_table(name="Series B")

        resp = await self._request(
            "POST", f"/api/v1/projects/{PROJECT_ID}/cap-tables", json={"name": "Series B"}
        )

        assert resp.status_code == 201
        assert resp.json()["project_id"] == str(PROJECT_ID)

    @pytest.mark.asyncio
    async def test_get_project_404(self):
        self.mock_service.get_project.side_effect = NotFoundException("Project", PROJECT_ID)

        resp = await self._request("GET", f"/api/v1/projects/{PROJECT_ID}")

        assert resp.status_code == 404
        assert resp.json()["error"] is True


# ────────────────────────────────────────────────────────────────────────────
# Cap tables
# ────────────────────────────────────────────────────────────────────────────


class TestCapTablesEndpoints(_EndpointTest):
    @pytest.fixture(autouse=True)
    def _bind(self, _setup):
        from captable.api.v1.endpoints.cap_tables import (
            _get_cap_table_service,
            _get_investor_service,
        )

        self._override(_get_cap_table_service, _get_investor_service)

    def _members(self):
        return [
            make_investor_view(
                name="John Doe",
                kyc_status=KycStatus.VERIFIED,
                subscriptions=[
                    make_subscription_view(
                        status=SubscriptionStatus.DISTRIBUTED, token_amount="500"
                    ),
                    make_subscription_view(
                        status=SubscriptionStatus.ALLOCATED,
                        token_amount="300",
                        subscription_id="SUB-002",
                    ),
                ],
            ),
            make_investor_view(
                name="Acme Corp", email="ops@acme.com", investor_type=InvestorType.INSTITUTION
            ),
        ]

    @pytest.mark.asyncio
    async def test_list_members_with_filters(self):
        self.mock_service.list_cap_table_investors.return_value = self._members()

        resp = await self._request(
            "GET",
            f"/api/v1/cap-tables/{CAP_TABLE_ID}/investors",
            params={"type": "institution"},
        )

        assert resp.status_code == 200
        assert [i["name"] for i in resp.json()] == ["Acme Corp"]

    @pytest.mark.asyncio
    async def test_member_view_shape(self):
        self.mock_service.list_cap_table_investors.return_value = self._members()

        resp = await self._request("GET", f"/api/v1/cap-tables/{CAP_TABLE_ID}/investors")

        sub = resp.json()[0]["subscriptions"][0]
        assert sub["distributed"] is True
        assert sub["token_type"] == "ERC-20"
        assert sub["fiat_amount"] == 10000.0

    @pytest.mark.asyncio
    async def test_summary(self):
        self.mock_service.list_cap_table_investors.return_value = self._members()

        resp = await self._request("GET", f"/api/v1/cap-tables/{CAP_TABLE_ID}/summary")

        assert resp.status_code == 200
        data = resp.json()
        assert data["investor_count"] == 2
        assert data["distribution_progress"] == 63
        assert data["kyc"] == {"verified": 1, "pending": 1, "expired": 0, "not_started": 0}
        assert data["type_categories"]["Institutional Investors"] == 1

    @pytest.mark.asyncio
    async def test_token_summary(self):
        members = self._members()
        self.mock_service.list_cap_table_investors.return_value = members

        resp = await self._request(
            "GET",
            f"/api/v1/cap-tables/{CAP_TABLE_ID}/token-summary",
            params={"investor_ids": str(members[0].id)},
        )

        assert resp.status_code == 200
        assert resp.json() == {"ERC-20": {"to_mint": 20000.0, "minted": True}}

    @pytest.mark.asyncio
    async def test_export_csv(self):
        self.mock_service.list_cap_table_investors.return_value = self._members()

        resp = await self._request(
            "GET", f"/api/v1/cap-tables/{CAP_TABLE_ID}/export.csv", params={"include_kyc": "false"}
        )

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        assert 'attachment; filename="cap-table-' in resp.headers["content-disposition"]
        header = resp.text.splitlines()[0]
        assert "KYC Status" not in header
        assert '"TOTAL (2 investors, 2 subscriptions)"' in resp.text

    @pytest.mark.asyncio
    async def test_add_member_204(self):
        resp = await self._request(
            "POST",
            f"/api/v1/cap-tables/{CAP_TABLE_ID}/investors",
            json={"investor_id": str(INVESTOR_ID)},
        )

        assert resp.status_code == 204
        self.mock_service.add_investor_to_cap_table.assert_awaited_once_with(
            CAP_TABLE_ID, INVESTOR_ID
        )

    @pytest.mark.asyncio
    async def test_add_member_twice_409(self):
        self.mock_service.add_investor_to_cap_table.side_effect = ConflictException(
            "Investor is already in this cap table"
        )

        resp = await self._request(
            "POST",
            f"/api/v1/cap-tables/{CAP_TABLE_ID}/investors",
            json={"investor_id": str(INVESTOR_ID)},
        )

        assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_remove_member_204(self):
        resp = await self._request(
            "DELETE", f"/api/v1/cap-tables/{CAP_TABLE_ID}/investors/{INVESTOR_ID}"
        )

        assert resp.status_code == 204

    @pytest.mark.asyncio
    async def test_delete_cap_table_returns_selection(self):
        self.mock_service.delete_cap_table.return_value = CAP_TABLE_ID_2

        resp = await self._request("DELETE", f"/api/v1/cap-tables/{CAP_TABLE_ID}")

        assert resp.json()["selected_cap_table_id"] == str(CAP_TABLE_ID_2)


# ────────────────────────────────────────────────────────────────────────────
# Investors
# ────────────────────────────────────────────────────────────────────────────


class TestInvestorsEndpoints(_EndpointTest):
    @pytest.fixture(autouse=True)
    def _bind(self, _setup):
        from captable.api.v1.endpoints.investors import (
            _get_investor_service,
            _get_subscription_service,
        )

        self._override(_get_investor_service, _get_subscription_service)

    @pytest.mark.asyncio
    async def test_create_investor_201(self):
        self.mock_service.create_investor.return_value = make_investor()

        resp = await self._request(
            "POST",
            "/api/v1/investors",
            json={
                "name": "John Doe",
                "email": "john@example.com",
                "investor_type": "individual",
                "wallet": WALLET,
            },
        )

        assert resp.status_code == 201
        assert resp.json()["investor_type"] == "Individual"
        payload = self.mock_service.create_investor.await_args.args[0]
        assert payload.investor_type == InvestorType.INDIVIDUAL

    @pytest.mark.asyncio
    async def test_create_investor_bad_wallet_422(self):
        resp = await self._request(
            "POST",
            "/api/v1/investors",
            json={"name": "John Doe", "email": "john@example.com", "wallet": "0x123"},
        )

        assert resp.status_code == 422
        body = resp.json()
        assert body["message"] == "Validation failed"
        assert body["details"][0]["field"] == "body -> wallet"

    @pytest.mark.asyncio
    async def test_create_investor_duplicate_409(self):
        self.mock_service.create_investor.side_effect = ConflictException(
            "An investor with email 'john@example.com' already exists"
        )

        resp = await self._request(
            "POST",
            "/api/v1/investors",
            json={"name": "John Doe", "email": "john@example.com", "wallet": WALLET},
        )

        assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_list_pagination_bounds(self):
        resp = await self._request("GET", "/api/v1/investors", params={"limit": 0})
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_get_investor(self):
        self.mock_service.get_investor.return_value = make_investor_view(
            id=INVESTOR_ID, subscriptions=[make_subscription_view()]
        )

        resp = await self._request("GET", f"/api/v1/investors/{INVESTOR_ID}")

        assert resp.status_code == 200
        assert len(resp.json()["subscriptions"]) == 1

    @pytest.mark.asyncio
    async def test_patch_investor(self):
        self.mock_service.update_investor.return_value = make_investor(
            kyc_status=KycStatus.VERIFIED
        )

        resp = await self._request(
            "PATCH", f"/api/v1/investors/{INVESTOR_ID}", json={"kyc_status": "verified"}
        )

        assert resp.status_code == 200
        update = self.mock_service.update_investor.await_args.args[1]
        assert update.model_dump(exclude_unset=True) == {"kyc_status": KycStatus.VERIFIED}

    @pytest.mark.asyncio
    async def test_create_subscription_201(self):
        self.mock_service.create_subscription.return_value = make_subscription_view()

        resp = await self._request(
            "POST",
            f"/api/v1/investors/{INVESTOR_ID}/subscriptions",
            json={"fiat_amount": 10000, "currency": "USD"},
        )

        assert resp.status_code == 201
        assert resp.json()["status"] == "Pending"

    @pytest.mark.asyncio
    async def test_create_subscription_zero_amount_422(self):
        resp = await self._request(
            "POST",
            f"/api/v1/investors/{INVESTOR_ID}/subscriptions",
            json={"fiat_amount": 0},
        )

        assert resp.status_code == 422


# ────────────────────────────────────────────────────────────────────────────
# Subscriptions, distributions, KYC
# ────────────────────────────────────────────────────────────────────────────


class TestSubscriptionsEndpoints(_EndpointTest):
    @pytest.fixture(autouse=True)
    def _bind(self, _setup):
        from captable.api.v1.endpoints.distributions import (
            _get_subscription_service as distribution_factory,
        )
        from captable.api.v1.endpoints.kyc import _get_investor_service
        from captable.api.v1.endpoints.subscriptions import _get_subscription_service

        self._override(_get_subscription_service, distribution_factory, _get_investor_service)

    @pytest.mark.asyncio
    async def test_confirm(self):
        self.mock_service.confirm_subscription.return_value = make_subscription_view(
            status=SubscriptionStatus.CONFIRMED
        )

        resp = await self._request("POST", f"/api/v1/subscriptions/{SUBSCRIPTION_ID}/confirm")

        assert resp.status_code == 200
        assert resp.json()["confirmed"] is True

    @pytest.mark.asyncio
    async def test_allocate_unconfirmed_409(self):
        self.mock_service.allocate_tokens.side_effect = ConflictException(
            "Subscription must be confirmed before tokens can be allocated"
        )

        resp = await self._request(
            "POST",
            f"/api/v1/subscriptions/{SUBSCRIPTION_ID}/allocation",
            json={"token_type": "ERC-20", "token_amount": 1000},
        )

        assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_allocate_negative_amount_422(self):
        self.mock_service.allocate_tokens.side_effect = ValidationException(
            "token_amount", "Token amount must be greater than zero"
        )

        resp = await self._request(
            "POST",
            f"/api/v1/subscriptions/{SUBSCRIPTION_ID}/allocation",
            json={"token_type": "ERC-20", "token_amount": -5},
        )

        assert resp.status_code == 422
        assert resp.json()["details"] == [
            {"field": "token_amount", "message": "Token amount must be greater than zero"}
        ]

    @pytest.mark.asyncio
    async def test_allocate_unknown_token_type_422(self):
        resp = await self._request(
            "POST",
            f"/api/v1/subscriptions/{SUBSCRIPTION_ID}/allocation",
            json={"token_type": "ERC-999", "token_amount": 10},
        )

        assert resp.status_code == 422
        self.mock_service.allocate_tokens.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_remove_allocation(self):
        self.mock_service.remove_allocation.return_value = make_subscription_view(
            status=SubscriptionStatus.CONFIRMED
        )

        resp = await self._request("DELETE", f"/api/v1/subscriptions/{SUBSCRIPTION_ID}/allocation")

        assert resp.status_code == 200
        assert resp.json()["token_allocation"] is None

    @pytest.mark.asyncio
    async def test_delete_204(self):
        resp = await self._request("DELETE", f"/api/v1/subscriptions/{SUBSCRIPTION_ID}")
        assert resp.status_code == 204

    @pytest.mark.asyncio
    async def test_distribute(self):
        item = DistributionItemResult(
            allocation_id=SUBSCRIPTION_ID, success=False, status="failed", error="not found"
        )
        self.mock_service.distribute_tokens.return_value = DistributionBatch(
            success=False, distributed=0, results=[item]
        )

        resp = await self._request(
            "POST", "/api/v1/distributions", json={"allocation_ids": [str(SUBSCRIPTION_ID)]}
        )

        assert resp.status_code == 200
        assert resp.json()["results"][0]["error"] == "not found"

    @pytest.mark.asyncio
    async def test_kyc_sweep(self):
        self.mock_service.check_kyc_expirations.return_value = 2

        resp = await self._request("POST", "/api/v1/kyc/expire")

        assert resp.json() == {"count": 2, "message": "2 investor(s) marked as Expired"}


# ────────────────────────────────────────────────────────────────────────────
# Imports and templates
# ────────────────────────────────────────────────────────────────────────────


class TestImportEndpoints(_EndpointTest):
    @pytest.fixture(autouse=True)
    def _bind(self, _setup):
        from captable.api.v1.endpoints.imports import _get_import_service

        self._override(_get_import_service)

    @pytest.mark.asyncio
    async def test_import_investors(self):
        self.mock_service.import_investors.return_value = ImportResult(
            total_rows=2,
            created=1,
            failed=1,
            errors=[RowError(row=3, field="wallet", message="bad wallet")],
        )

        resp = await self._request(
            "POST",
            "/api/v1/imports/investors",
            params={"cap_table_id": str(CAP_TABLE_ID)},
            files={"file": ("investors.csv", b"\xef\xbb\xbfName,Email,Wallet\n", "text/csv")},
        )

        assert resp.status_code == 200
        assert resp.json()["errors"][0]["row"] == 3
        text, cap_table_id = self.mock_service.import_investors.await_args.args
        assert text == "Name,Email,Wallet\n"
        assert cap_table_id == CAP_TABLE_ID

    @pytest.mark.asyncio
    async def test_non_utf8_upload_422(self):
        resp = await self._request(
            "POST",
            "/api/v1/imports/subscriptions",
            files={"file": ("subs.csv", b"\xff\xfe\x00bad", "text/csv")},
        )

        assert resp.status_code == 422
        self.mock_service.import_subscriptions.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_investor_template_download(self):
        resp = await self._request("GET", "/api/v1/templates/investors.csv")

        assert resp.status_code == 200
        assert resp.text.startswith("Name,Email,Type,Wallet")
        assert "investor-template.csv" in resp.headers["content-disposition"]

    @pytest.mark.asyncio
    async def test_subscription_template_download(self):
        resp = await self._request("GET", "/api/v1/templates/subscriptions.csv")

        assert resp.text.splitlines()[0].startswith("Investor Name,FIAT Amount")
