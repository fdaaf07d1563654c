"""
Integration tests for the admin payout endpoints.
"""

import pytest
from httpx import AsyncClient

from core.domain.subscription import PayoutStatus

BASE = "/api/v1/payouts"


class TestPayoutAccess:
    @pytest.mark.asyncio
    async def test_requires_token(self, async_client: AsyncClient):
        response = await async_client.get(BASE)
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_requires_admin(self, async_client: AsyncClient, auth_headers):
        response = await async_client.post(BASE, json={"amount": 100}, headers=auth_headers)
        assert response.status_code == 403


class TestCreatePayout:
    @pytest.mark.asyncio
    async def test_create_within_buffer(self, async_client: AsyncClient, admin_headers, processor):
        processor.balance.available["usd"] = 10_000

        response = await async_client.post(
            BASE, json={"amount": 9_000, "description": "Mid-week payout"}, headers=admin_headers
        )

        assert response.status_code == 201
        data = response.json()
        assert data["amount"] == 9_000
        assert data["status"] == "pending"
        assert data["statement_descriptor"] == "PREPACADEMY PAYOUT"
        assert processor.balance.available["usd"] == 1_000

    @pytest.mark.asyncio
    async def test_over_buffer_refused(self, async_client: AsyncClient, admin_headers, processor):
        processor.balance.available["usd"] = 10_000

        response = await async_client.post(BASE, json={"amount": 9_500}, headers=admin_headers)

        assert response.status_code == 400
        assert response.json()["code"] == "validation"
        assert processor.called("create_payout") == []

    @pytest.mark.asyncio
    async def test_non_positive_amount(self, async_client: AsyncClient, admin_headers):
        response = await async_client.post(BASE, json={"amount": 0}, headers=admin_headers)
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_payouts_disabled(self, async_client: AsyncClient, admin_headers, processor):
        processor.balance.available["usd"] = 10_000
        processor.account.payouts_enabled = False
        processor.account.failure_message = "Bank account verification pending"

        response = await async_client.post(BASE, json={"amount": 100}, headers=admin_headers)

        assert response.status_code == 400
        assert response.json()["code"] == "payouts_disabled"
        assert "verification pending" in response.json()["detail"]


class TestReadPayouts:
    @pytest.mark.asyncio
    async def test_list_with_status_filter(self, async_client: AsyncClient, admin_headers, processor):
        processor.add_payout("po_a", 1_000, PayoutStatus.PAID)
        processor.add_payout("po_b", 2_000, PayoutStatus.PENDING)

        response = await async_client.get(BASE, params={"status": "paid"}, headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 1
        assert data["payouts"][0]["id"] == "po_a"

    @pytest.mark.asyncio
    async def test_list_invalid_status(self, async_client: AsyncClient, admin_headers):
        response = await async_client.get(BASE, params={"status": "lost"}, headers=admin_headers)

        assert response.status_code == 400
        assert response.json()["code"] == "validation"

    @pytest.mark.asyncio
    async def test_list_limit_bounds(self, async_client: AsyncClient, admin_headers):
        response = await async_client.get(BASE, params={"limit": 101}, headers=admin_headers)
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_get_payout(self, async_client: AsyncClient, admin_headers, processor):
        processor.add_payout("po_a", 1_000, PayoutStatus.IN_TRANSIT)

        response = await async_client.get(f"{BASE}/po_a", headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["status"] == "in_transit"

    @pytest.mark.asyncio
    async def test_get_missing_payout(self, async_client: AsyncClient, admin_headers):
        response = await async_client.get(f"{BASE}/po_missing", headers=admin_headers)

        assert response.status_code == 404
        assert response.json()["code"] == "not_found"

    @pytest.mark.asyncio
    async def test_schedule(self, async_client: AsyncClient, admin_headers, processor):
        processor.balance.available["usd"] = 5_000

        response = await async_client.get(f"{BASE}/schedule", headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["enabled"] is True
        assert data["estimated_amount"] == 4_500
        assert data["currency"] == "usd"
        assert data["bank_last4"] == "6789"


class TestCancelPayout:
    @pytest.mark.asyncio
    async def test_cancel_pending(self, async_client: AsyncClient, admin_headers, processor):
        processor.add_payout("po_a", 1_000, PayoutStatus.PENDING)

        response = await async_client.post(f"{BASE}/po_a/cancel", headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["status"] == "canceled"

    @pytest.mark.asyncio
    async def test_cancel_paid_refused(self, async_client: AsyncClient, admin_headers, processor):
        processor.add_payout("po_a", 1_000, PayoutStatus.PAID)

        response = await async_client.post(f"{BASE}/po_a/cancel", headers=admin_headers)

        assert response.status_code == 409
        assert response.json()["code"] == "payout_not_cancelable"
        assert processor.called("cancel_payout") == []
