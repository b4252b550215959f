"""
E2E: Dispatch REST API.

Drives the HTTP surface through httpx against the in-process app:
- authentication and role checks
- work order lifecycle endpoints, including 410 on a late response
- payment verification, wallets and back-office payout endpoints
- response deadline views and manual reconcile
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from src.models import UserRole
from src.services.tokenService import create_access_token
from src.services.workOrderStateMachine import Actor
from tests.e2e.conftest import (
    ADMIN,
    BLOCKED_TECH_ID,
    CUSTOMER,
    CUSTOMER_ID,
    DISPATCHER,
    FREELANCER,
    FREELANCER_ID,
    OTHER_CUSTOMER,
    OTHER_CUSTOMER_ID,
    SECOND_FREELANCER,
    SECOND_FREELANCER_ID,
    SITE_LAT,
    SITE_LNG,
    auth_headers,
    create_assigned,
    create_completed,
    create_paid,
)


pytestmark = pytest.mark.asyncio

API = "/api/v1"


async def _create(client, **overrides) -> dict:
    body = {
        "customer_id": CUSTOMER_ID,
        "technician_id": FREELANCER_ID,
        "address": "100 Queen St W, Toronto, ON",
    }
    body.update(overrides)
    resp = await client.post(f"{API}/work-orders", json=body, headers=auth_headers(DISPATCHER))
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestAuth:

    async def test_missing_token_is_rejected(self, client):
        resp = await client.get(f"{API}/work-orders")
        assert resp.status_code in (401, 403)

    async def test_invalid_token_is_401(self, client):
        resp = await client.get(
            f"{API}/work-orders", headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert resp.status_code == 401

    async def test_unknown_user_is_401(self, client):
        token, _ = create_access_token(999, UserRole.DISPATCHER)
        resp = await client.get(f"{API}/work-orders", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    async def test_blocked_user_is_403(self, client):
        blocked = Actor(BLOCKED_TECH_ID, UserRole.TECH_FREELANCER)
        resp = await client.get(f"{API}/work-orders", headers=auth_headers(blocked))
        assert resp.status_code == 403


class TestWorkOrderEndpoints:

    async def test_create_assigned_returns_deadline(self, client):
        data = await _create(client)

        assert data["work_order"]["status"] == "ASSIGNED"
        assert data["work_order"]["technician_id"] == FREELANCER_ID
        assert data["deadline"] is not None

    async def test_customer_cannot_create(self, client):
        resp = await client.post(
            f"{API}/work-orders",
            json={"customer_id": CUSTOMER_ID},
            headers=auth_headers(CUSTOMER),
        )
        assert resp.status_code == 403

    async def test_unknown_work_order_is_404(self, client):
        resp = await client.get(f"{API}/work-orders/424242", headers=auth_headers(DISPATCHER))
        assert resp.status_code == 404
        assert resp.json()["detail"]["code"] == "WORK_ORDER_NOT_FOUND"

    async def test_full_lifecycle(self, client):
        wo_id = (await _create(client))["work_order"]["id"]
        tech = auth_headers(FREELANCER)

        resp = await client.post(
            f"{API}/work-orders/{wo_id}/respond", json={"action": "ACCEPT"}, headers=tech,
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["work_order"]["status"] == "ACCEPTED"

        resp = await client.post(
            f"{API}/work-orders/{wo_id}/start",
            json={"latitude": str(SITE_LAT), "longitude": str(SITE_LNG)},
            headers=tech,
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["work_order"]["status"] == "IN_PROGRESS"

        resp = await client.post(
            f"{API}/work-orders/{wo_id}/complete",
            json={"notes": "Replaced valve", "materials": [{"name": "valve", "qty": 1}]},
            headers=tech,
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["work_order"]["status"] == "COMPLETED_PENDING_PAYMENT"

        resp = await client.post(
            f"{API}/payments",
            json={"work_order_id": wo_id, "amount": "1000.00", "method": "CASH"},
            headers=tech,
        )
        assert resp.status_code == 201, resp.text
        payment_id = resp.json()["id"]

        resp = await client.post(
            f"{API}/payments/{payment_id}/verify",
            json={"action": "APPROVE"},
            headers=auth_headers(DISPATCHER),
        )
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["created"] is True
        assert Decimal(body["commission"]["amount"]) == Decimal("100.00")
        assert Decimal(body["wallet_balance"]) == Decimal("100.00")

        resp = await client.get(f"{API}/work-orders/{wo_id}", headers=tech)
        assert resp.json()["status"] == "PAID_VERIFIED"

    async def test_decline_returns_order_to_dispatch(self, client):
        wo_id = (await _create(client))["work_order"]["id"]

        resp = await client.post(
            f"{API}/work-orders/{wo_id}/respond",
            json={"action": "DECLINE", "decline_reason": "Out of town"},
            headers=auth_headers(FREELANCER),
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["work_order"]["status"] == "UNASSIGNED"
        assert resp.json()["work_order"]["technician_id"] is None

    async def test_other_technician_cannot_respond(self, client):
        wo_id = (await _create(client))["work_order"]["id"]

        resp = await client.post(
            f"{API}/work-orders/{wo_id}/respond",
            json={"action": "ACCEPT"},
            headers=auth_headers(SECOND_FREELANCER),
        )
        assert resp.status_code == 403
        assert resp.json()["detail"]["code"] == "NOT_ASSIGNED_TO_YOU"

    async def test_late_response_is_410(self, client, scheduler, clock):
        wo_id = (await _create(client))["work_order"]["id"]
        clock.advance(minutes=101)
        await scheduler.handle_expiry(wo_id)

        resp = await client.post(
            f"{API}/work-orders/{wo_id}/respond",
            json={"action": "ACCEPT"},
            headers=auth_headers(FREELANCER),
        )
        assert resp.status_code == 410
        assert resp.json()["detail"]["code"] == "RESPONSE_WINDOW_EXPIRED"

    async def test_invalid_transition_is_409(self, client):
        wo_id = (await _create(client))["work_order"]["id"]

        resp = await client.post(
            f"{API}/work-orders/{wo_id}/complete", json={}, headers=auth_headers(FREELANCER),
        )
        assert resp.status_code == 409

    async def test_reassign_to_unassigned_with_null(self, client):
        wo_id = (await _create(client))["work_order"]["id"]

        resp = await client.post(
            f"{API}/work-orders/{wo_id}/reassign",
            json={"technician_id": None},
            headers=auth_headers(DISPATCHER),
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["work_order"]["status"] == "UNASSIGNED"

    async def test_cancel(self, client):
        wo_id = (await _create(client))["work_order"]["id"]

        resp = await client.post(
            f"{API}/work-orders/{wo_id}/cancel",
            json={"reason": "Customer no longer home"},
            headers=auth_headers(DISPATCHER),
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["work_order"]["status"] == "CANCELLED"

    async def test_list_filters_by_status(self, client):
        await _create(client)
        await _create(client, technician_id=None)

        resp = await client.get(
            f"{API}/work-orders", params={"status": "UNASSIGNED"}, headers=auth_headers(DISPATCHER),
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["meta"]["total_items"] == 1
        assert [wo["status"] for wo in body["data"]] == ["UNASSIGNED"]

    async def test_customer_lists_only_own_orders(self, client):
        own = (await _create(client))["work_order"]["id"]
        await _create(client, customer_id=OTHER_CUSTOMER_ID)

        resp = await client.get(f"{API}/work-orders", headers=auth_headers(CUSTOMER))
        assert resp.status_code == 200
        assert [wo["id"] for wo in resp.json()["data"]] == [own]

        resp = await client.get(
            f"{API}/work-orders",
            params={"customer_id": OTHER_CUSTOMER_ID},
            headers=auth_headers(CUSTOMER),
        )
        assert resp.status_code == 403

    async def test_technician_lists_only_assigned_orders(self, client):
        mine = (await _create(client))["work_order"]["id"]
        await _create(client, technician_id=SECOND_FREELANCER_ID)
        await _create(client, technician_id=None)

        resp = await client.get(f"{API}/work-orders", headers=auth_headers(FREELANCER))
        assert [wo["id"] for wo in resp.json()["data"]] == [mine]

        resp = await client.get(
            f"{API}/work-orders",
            params={"technician_id": SECOND_FREELANCER_ID},
            headers=auth_headers(FREELANCER),
        )
        assert resp.status_code == 403

    async def test_detail_hidden_from_unrelated_users(self, client):
        wo_id = (await _create(client))["work_order"]["id"]

        for actor in (OTHER_CUSTOMER, SECOND_FREELANCER):
            resp = await client.get(f"{API}/work-orders/{wo_id}", headers=auth_headers(actor))
            assert resp.status_code == 403
            assert resp.json()["detail"]["code"] == "FORBIDDEN"
            resp = await client.get(
                f"{API}/work-orders/{wo_id}/remaining-time", headers=auth_headers(actor),
            )
            assert resp.status_code == 403

        for actor in (CUSTOMER, FREELANCER, DISPATCHER):
            resp = await client.get(f"{API}/work-orders/{wo_id}", headers=auth_headers(actor))
            assert resp.status_code == 200


class TestDeadlineEndpoints:

    async def test_remaining_time(self, client, clock):
        wo_id = (await _create(client, response_minutes=30))["work_order"]["id"]
        clock.advance(minutes=10)

        resp = await client.get(
            f"{API}/work-orders/{wo_id}/remaining-time", headers=auth_headers(FREELANCER),
        )
        assert resp.status_code == 200
        assert resp.json()["expired"] is False
        assert resp.json()["minutes"] == 20

    async def test_remaining_time_without_deadline_is_404(self, client):
        wo_id = (await _create(client, technician_id=None))["work_order"]["id"]

        resp = await client.get(
            f"{API}/work-orders/{wo_id}/remaining-time", headers=auth_headers(DISPATCHER),
        )
        assert resp.status_code == 404

    async def test_list_active_is_back_office_only(self, client, seeded):
        await create_assigned(seeded)

        resp = await client.get(f"{API}/deadlines", headers=auth_headers(DISPATCHER))
        assert resp.status_code == 200
        assert [d["technician_id"] for d in resp.json()] == [FREELANCER_ID]

        resp = await client.get(f"{API}/deadlines", headers=auth_headers(FREELANCER))
        assert resp.status_code == 403

    async def test_reconcile_expires_overdue(self, client, seeded, clock):
        wo_id = await create_assigned(seeded, response_minutes=10)
        clock.advance(minutes=15)

        resp = await client.post(f"{API}/deadlines/reconcile", headers=auth_headers(ADMIN))
        assert resp.status_code == 200, resp.text
        assert resp.json()["expired"] == [wo_id]

        resp = await client.get(f"{API}/work-orders/{wo_id}", headers=auth_headers(DISPATCHER))
        assert resp.json()["status"] == "UNASSIGNED"


class TestMoneyEndpoints:

    async def test_technician_sees_own_wallet_only(self, client, seeded):
        await create_paid(seeded)

        resp = await client.get(f"{API}/wallets/{FREELANCER_ID}", headers=auth_headers(FREELANCER))
        assert resp.status_code == 200
        assert Decimal(resp.json()["balance"]) == Decimal("100.00")
        assert len(resp.json()["transactions"]) == 1

        resp = await client.get(
            f"{API}/wallets/{FREELANCER_ID}", headers=auth_headers(SECOND_FREELANCER),
        )
        assert resp.status_code == 403

    async def test_earnings(self, client, seeded):
        await create_paid(seeded)

        resp = await client.get(f"{API}/earnings/{FREELANCER_ID}", headers=auth_headers(ADMIN))
        assert resp.status_code == 200
        body = resp.json()
        assert Decimal(body["earned"]) == Decimal("100.00")
        assert len(body["commissions"]) == 1

    async def test_payment_verify_requires_back_office(self, client, seeded):
        wo_id = await create_completed(seeded)
        resp = await client.post(
            f"{API}/payments",
            json={"work_order_id": wo_id, "amount": "80.00", "method": "CARD"},
            headers=auth_headers(FREELANCER),
        )
        payment_id = resp.json()["id"]

        resp = await client.post(
            f"{API}/payments/{payment_id}/verify",
            json={"action": "APPROVE"},
            headers=auth_headers(FREELANCER),
        )
        assert resp.status_code == 403

    async def test_early_payout_over_balance_is_400(self, client, seeded):
        await create_paid(seeded)

        resp = await client.post(
            f"{API}/payouts/requests", json={"amount": "500.00"}, headers=auth_headers(FREELANCER),
        )
        assert resp.status_code == 400
        assert resp.json()["detail"]["code"] == "INSUFFICIENT_BALANCE"

    async def test_only_technicians_request_payouts(self, client):
        resp = await client.post(
            f"{API}/payouts/requests", json={"amount": "5.00"}, headers=auth_headers(DISPATCHER),
        )
        assert resp.status_code == 403

    async def test_early_payout_flow(self, client, seeded):
        await create_paid(seeded)

        resp = await client.post(
            f"{API}/payouts/requests", json={"amount": "40.00"}, headers=auth_headers(FREELANCER),
        )
        assert resp.status_code == 201, resp.text
        request_id = resp.json()["id"]

        resp = await client.post(
            f"{API}/payouts/requests/{request_id}/review",
            json={"action": "APPROVE"},
            headers=auth_headers(FREELANCER),
        )
        assert resp.status_code == 403

        resp = await client.post(
            f"{API}/payouts/requests/{request_id}/review",
            json={"action": "APPROVE"},
            headers=auth_headers(ADMIN),
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["request"]["status"] == "APPROVED"
        assert resp.json()["payout"]["type"] == "EARLY"

        resp = await client.get(f"{API}/wallets/{FREELANCER_ID}", headers=auth_headers(FREELANCER))
        assert Decimal(resp.json()["balance"]) == Decimal("60.00")

    async def test_weekly_batch_and_process(self, client, seeded):
        await create_paid(seeded)
        admin = auth_headers(ADMIN)

        resp = await client.post(
            f"{API}/payouts/weekly-batch", json={"today": "2026-03-02"}, headers=admin,
        )
        assert resp.status_code == 201, resp.text
        batch = resp.json()
        assert batch["scheduled_for"] == "2026-03-09"
        assert batch["commission_count"] == 1
        payout_id = batch["payouts"][0]["id"]

        resp = await client.post(f"{API}/payouts/{payout_id}/process", headers=admin)
        assert resp.status_code == 200, resp.text
        assert resp.json()["payout"]["status"] == "COMPLETED"
        assert Decimal(resp.json()["wallet_balance"]) == Decimal("0.00")

        resp = await client.post(f"{API}/payouts/{payout_id}/process", headers=admin)
        assert resp.status_code == 409

    async def test_back_office_views_forbidden_to_technicians(self, client):
        tech = auth_headers(FREELANCER)
        for path in ("/payouts", "/payouts/summary", "/payouts/pending-commissions", "/payouts/requests"):
            resp = await client.get(f"{API}{path}", headers=tech)
            assert resp.status_code == 403, path

    async def test_payout_summary(self, client, seeded):
        await create_paid(seeded)

        resp = await client.get(f"{API}/payouts/summary", headers=auth_headers(DISPATCHER))
        assert resp.status_code == 200
        assert resp.json()["pending_commission_count"] == 1
        assert Decimal(resp.json()["pending_commission_amount"]) == Decimal("100.00")
