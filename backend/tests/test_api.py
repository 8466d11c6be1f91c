"""API tests through FastAPI's TestClient."""

from decimal import Decimal

import pytest


def auth(employee) -> dict:
    return {"X-User-Id": employee.id}


def _event_payload(employee, source_id="SHP-1001", **fields) -> dict:
    payload = {
        "employee_id": employee.id,
        "source": {"type": "shipment", "id": source_id},
        "service_type": "express",
        "order_value": "1000.00",
        "margin": "250.00",
        "margin_percentage": "25",
        "occurred_at": "2026-03-15T10:30:00Z",
    }
    payload.update(fields)
    return payload


def _rule_payload(employee, **fields) -> dict:
    payload = {
        "employee_id": employee.id,
        "name": "Standard 10%",
        "type": "percentage",
        "rate": "10",
        "effective_from": "2026-01-01T00:00:00Z",
    }
    payload.update(fields)
    return payload


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestIdentity:

    def test_missing_header_rejected(self, client):
        assert client.get("/api/commissions").status_code == 401

    def test_unknown_user_rejected(self, client):
        assert client.get("/api/commissions", headers={"X-User-Id": "ghost"}).status_code == 401


class TestRulesApi:

    def test_manager_creates_rule(self, client, manager, seller):
        response = client.post("/api/commission-rules", json=_rule_payload(seller), headers=auth(manager))
        assert response.status_code == 201
        body = response.json()
        assert body["rule_type_display"] == "10% of revenue"
        assert Decimal(body["rate"]) == Decimal("10")

    def test_sales_cannot_create_rules(self, client, seller):
        response = client.post("/api/commission-rules", json=_rule_payload(seller), headers=auth(seller))
        assert response.status_code == 403

    def test_malformed_tiers_rejected(self, client, manager, seller):
        payload = _rule_payload(seller, type="tiered", rate=None, tiers=[{"upper_bound": "1000", "rate": "5"}])
        response = client.post("/api/commission-rules", json=payload, headers=auth(manager))
        assert response.status_code == 422

    def test_invalid_update_rejected(self, client, manager, seller):
        rule_id = client.post("/api/commission-rules", json=_rule_payload(seller), headers=auth(manager)).json()["id"]
        response = client.patch(f"/api/commission-rules/{rule_id}", json={"rate": "120"}, headers=auth(manager))
        assert response.status_code == 422
        assert "100" in response.json()["detail"]["message"]

    def test_update_deactivate_and_history(self, client, manager, seller):
        rule_id = client.post("/api/commission-rules", json=_rule_payload(seller), headers=auth(manager)).json()["id"]

        response = client.patch(f"/api/commission-rules/{rule_id}", json={"priority": 5}, headers=auth(manager))
        assert response.json()["priority"] == 5

        response = client.post(f"/api/commission-rules/{rule_id}/deactivate", headers=auth(manager))
        assert response.json()["is_active"] is False

        history = client.get(f"/api/commission-rules/{rule_id}/history", headers=auth(manager)).json()
        assert [h["action"] for h in history] == ["rule.created", "rule.updated", "rule.deactivated"]

    def test_eligible_rules(self, client, manager, seller):
        low = client.post("/api/commission-rules", json=_rule_payload(seller, priority=1), headers=auth(manager)).json()
        high = client.post("/api/commission-rules", json=_rule_payload(seller, priority=9), headers=auth(manager)).json()

        response = client.get(
            f"/api/commission-rules/eligible/{seller.id}",
            params={"as_of": "2026-03-01T00:00:00Z"},
            headers=auth(seller),
        )
        assert response.status_code == 200
        assert response.json()["rule_ids"] == [high["id"], low["id"]]

    def test_unknown_rule(self, client, manager):
        assert client.get("/api/commission-rules/missing", headers=auth(manager)).status_code == 404


class TestCommissionsApi:

    @pytest.fixture
    def rule(self, client, manager, seller) -> dict:
        return client.post("/api/commission-rules", json=_rule_payload(seller), headers=auth(manager)).json()

    def test_create_then_replay(self, client, rule, seller):
        first = client.post("/api/commissions/events", json=_event_payload(seller), headers=auth(seller))
        assert first.status_code == 201
        assert first.json()["outcome"] == "created"
        assert first.json()["commission"]["total_amount"] == "100.00"

        replay = client.post("/api/commissions/events", json=_event_payload(seller), headers=auth(seller))
        assert replay.status_code == 200
        assert replay.json()["outcome"] == "duplicate_event_ignored"
        assert replay.json()["commission"]["id"] == first.json()["commission"]["id"]

    def test_no_eligible_commission(self, client, seller):
        response = client.post("/api/commissions/events", json=_event_payload(seller), headers=auth(seller))
        assert response.status_code == 200
        assert response.json() == {
            "outcome": "no_eligible_commission", "commission": None, "reason": "no_matching_rule",
        }

    def test_sales_cannot_post_for_others(self, client, rule, seller, other_seller):
        response = client.post("/api/commissions/events", json=_event_payload(seller), headers=auth(other_seller))
        assert response.status_code == 403

    def test_lifecycle_over_http(self, client, rule, manager, seller):
        commission_id = client.post(
            "/api/commissions/events", json=_event_payload(seller), headers=auth(seller)
        ).json()["commission"]["id"]

        assert client.post(f"/api/commissions/{commission_id}/approve", headers=auth(seller)).status_code == 403

        response = client.post(
            f"/api/commissions/{commission_id}/approve", json={"notes": "ok"}, headers=auth(manager)
        )
        assert response.status_code == 200
        assert response.json()["status"] == "approved"

        response = client.post(
            f"/api/commissions/{commission_id}/pay",
            json={"paid_by": "employee:payroll", "payment_method": "bank_transfer", "payment_reference": "PAY-1"},
            headers=auth(manager),
        )
        assert response.json()["status"] == "paid"

        response = client.post(
            f"/api/commissions/{commission_id}/cancel", json={"reason": "late"}, headers=auth(manager)
        )
        assert response.status_code == 409
        assert response.json()["detail"]["current"] == "paid"

        history = client.get(f"/api/commissions/{commission_id}/history", headers=auth(seller)).json()
        assert [h["after_status"] for h in history] == ["pending", "approved", "paid"]

    def test_sales_sees_only_own_commissions(self, client, rule, manager, seller, other_seller):
        commission_id = client.post(
            "/api/commissions/events", json=_event_payload(seller), headers=auth(seller)
        ).json()["commission"]["id"]

        assert client.get(f"/api/commissions/{commission_id}", headers=auth(other_seller)).status_code == 403
        assert client.get("/api/commissions", headers=auth(other_seller)).json() == []
        assert len(client.get("/api/commissions", headers=auth(manager)).json()) == 1
        assert len(client.get("/api/commissions", params={"status": "paid"}, headers=auth(manager)).json()) == 0

    def test_totals(self, client, rule, manager, seller):
        client.post("/api/commissions/events", json=_event_payload(seller, "SHP-1"), headers=auth(seller))
        client.post("/api/commissions/events", json=_event_payload(seller, "SHP-2"), headers=auth(seller))

        totals = client.get("/api/commissions/totals/period/2026-03", headers=auth(manager)).json()
        assert Decimal(totals["total"]) == Decimal("200.00")
        assert totals["count"] == 2

        totals = client.get(f"/api/commissions/totals/employee/{seller.id}", headers=auth(seller)).json()
        assert Decimal(totals["pending"]) == Decimal("200.00")
        assert totals["employee_name"] == "Sam Seller"

    def test_bad_period_rejected(self, client, manager):
        assert client.get("/api/commissions/totals/period/2026-13", headers=auth(manager)).status_code == 422

    def test_delete_and_restore(self, client, rule, manager, seller):
        commission_id = client.post(
            "/api/commissions/events", json=_event_payload(seller), headers=auth(seller)
        ).json()["commission"]["id"]

        assert client.delete(f"/api/commissions/{commission_id}", headers=auth(manager)).status_code == 200
        assert client.get(f"/api/commissions/{commission_id}", headers=auth(manager)).status_code == 404

        response = client.post(f"/api/commissions/{commission_id}/restore", headers=auth(manager))
        assert response.status_code == 200
        assert response.json()["deleted_at"] is None

    def test_auto_approve_invoice(self, client, manager, seller):
        client.post(
            "/api/commission-rules", json=_rule_payload(seller, auto_approve=True), headers=auth(manager)
        )
        client.post(
            "/api/commissions/events",
            json=_event_payload(seller, source={"type": "invoice", "id": "INV-1"}),
            headers=auth(seller),
        )

        response = client.post("/api/commissions/invoices/INV-1/auto-approve", headers=auth(manager))
        assert response.status_code == 200
        assert response.json()["approved_count"] == 1

    def test_unknown_commission(self, client, manager):
        assert client.post("/api/commissions/missing/approve", headers=auth(manager)).status_code == 404

    def test_sales_cannot_set_manual_amount(self, client, rule, seller):
        payload = _event_payload(seller, manual_amount="999999")
        response = client.post("/api/commissions/events", json=payload, headers=auth(seller))
        assert response.status_code == 403
        assert client.get("/api/commissions", headers=auth(seller)).json() == []

    def test_sales_cannot_confirm_invoice_payment(self, client, rule, seller):
        payload = _event_payload(seller, source={"type": "invoice", "id": "INV-1"}, trigger_kind="invoice_paid")
        response = client.post("/api/commissions/events", json=payload, headers=auth(seller))
        assert response.status_code == 403

    def test_manager_sets_manual_amount(self, client, manager, seller):
        payload = _event_payload(seller, manual_amount="50")
        response = client.post("/api/commissions/events", json=payload, headers=auth(manager))
        assert response.status_code == 201
        assert response.json()["commission"]["total_amount"] == "50.00"
        assert response.json()["commission"]["rule_id"] is None

    def test_manual_amount_with_adjustments_rejected(self, client, manager, seller):
        payload = _event_payload(seller, manual_amount="50", adjustments=[{"amount": "5"}])
        response = client.post("/api/commissions/events", json=payload, headers=auth(manager))
        assert response.status_code == 422

    def test_reused_commission_id_conflicts(self, client, rule, seller):
        first = client.post(
            "/api/commissions/events", json=_event_payload(seller, "SHP-1"), headers=auth(seller)
        ).json()["commission"]["id"]

        payload = _event_payload(seller, "SHP-2", commission_id=first)
        response = client.post("/api/commissions/events", json=payload, headers=auth(seller))
        assert response.status_code == 409
        assert first in response.json()["detail"]

    def test_restore_of_live_commission_conflicts(self, client, rule, manager, seller):
        commission_id = client.post(
            "/api/commissions/events", json=_event_payload(seller), headers=auth(seller)
        ).json()["commission"]["id"]

        response = client.post(f"/api/commissions/{commission_id}/restore", headers=auth(manager))
        assert response.status_code == 409
        assert response.json()["detail"]["message"] == "Commission is not deleted"

    def test_totals_by_currency(self, client, rule, manager, seller):
        client.post("/api/commissions/events", json=_event_payload(seller, "SHP-1"), headers=auth(seller))
        client.post("/api/commissions/events", json=_event_payload(seller, "SHP-2", currency="USD"), headers=auth(seller))

        eur = client.get("/api/commissions/totals/period/2026-03", headers=auth(manager)).json()
        assert eur["currency"] == "EUR"
        assert eur["count"] == 1

        usd = client.get(
            "/api/commissions/totals/period/2026-03", params={"currency": "USD"}, headers=auth(manager)
        ).json()
        assert usd["currency"] == "USD"
        assert Decimal(usd["total"]) == Decimal("100.00")
