"""
HTTP API tests.

Verifies:
- Gateway identity is required (401) and admin-only routes return 403 for reps
- Reps only see their own deals, pins and commissions
- Domain errors map to 400 / 404 / 409 with a stable error code
"""

import pytest

from dealflow.services import commission_service


# =============================================================================
# AUTHENTICATION / ROLES
# =============================================================================


class TestCallerIdentity:
    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/deals"),
            ("POST", "/api/deals"),
            ("GET", "/api/commissions"),
            ("GET", "/api/payment-requests"),
            ("GET", "/api/pins"),
            ("GET", "/api/pins/check-duplicate?address=1"),
        ],
    )
    def test_requires_identity(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401

    def test_unknown_rep_rejected(self, client, db_session):
        resp = client.get("/api/deals", headers={"X-User-Id": "ghost", "X-User-Role": "rep"})
        assert resp.status_code == 401

    def test_rep_id_of_other_user_rejected(self, client, rep_a, rep_b):
        headers = {"X-User-Id": rep_a.user_id, "X-User-Role": "rep", "X-Rep-Id": str(rep_b.id)}
        resp = client.get("/api/deals", headers=headers)
        assert resp.status_code == 401
        assert resp.get_json()["code"] == "UNAUTHENTICATED"

    def test_inactive_rep_rejected(self, client, inactive_rep):
        resp = client.get("/api/deals", headers={"X-User-Id": inactive_rep.user_id, "X-User-Role": "rep"})
        assert resp.status_code == 401

    def test_bad_role_rejected(self, client, db_session):
        resp = client.get("/api/deals", headers={"X-User-Id": "x", "X-User-Role": "owner"})
        assert resp.status_code == 401

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/payment-requests"),
            ("POST", "/api/commissions"),
            ("POST", "/api/commissions/1/mark-paid"),
            ("POST", "/api/payment-requests/deals/1/approve"),
            ("POST", "/api/payment-requests/deals/1/reject"),
            ("POST", "/api/pins/1/reassign"),
        ],
    )
    def test_admin_only(self, client, rep_a_headers, method, path):
        resp = getattr(client, method.lower())(path, json={}, headers=rep_a_headers)
        assert resp.status_code == 403

    def test_health(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.get_json()["checks"]["database"]["status"] == "healthy"


# =============================================================================
# DEALS
# =============================================================================


class TestDealRoutes:
    def test_rep_creates_deal_with_self_commission(self, client, rep_a, rep_a_headers):
        resp = client.post(
            "/api/deals",
            json={"homeowner_name": "Pat", "address": "9 Elm St", "total_price_cents": 1_000_000},
            headers=rep_a_headers,
        )
        assert resp.status_code == 201
        deal = resp.get_json()["deal"]
        assert deal["status"] == "lead"
        assert deal["progress_percent"] == 0
        assert deal["phase"] == "sign"
        assert deal["next_status"] == "inspection_scheduled"

        rows = commission_service.list_commissions(deal_id=deal["id"])
        assert [(c.rep_id, c.commission_type) for c in rows] == [(rep_a.id, "self_gen")]

    def test_validation_error(self, client, admin_headers):
        resp = client.post("/api/deals", json={"address": "1 A St"}, headers=admin_headers)
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "VALIDATION_ERROR"

    def test_duplicate_address_409(self, client, pin_a, admin_headers):
        resp = client.post(
            "/api/deals", json={"homeowner_name": "X", "address": "123 Main St."}, headers=admin_headers
        )
        assert resp.status_code == 409
        body = resp.get_json()
        assert body["code"] == "DUPLICATE_ADDRESS"
        assert body["matches"][0]["entity_type"] == "pin"

    def test_rep_cannot_see_foreign_deal(self, client, rep_a, rep_b_headers, admin_headers):
        created = client.post(
            "/api/deals",
            json={"homeowner_name": "X", "address": "2 B St", "commissions": [{"rep_id": rep_a.id}]},
            headers=admin_headers,
        ).get_json()["deal"]

        assert client.get(f"/api/deals/{created['id']}", headers=rep_b_headers).status_code == 404
        assert client.get("/api/deals", headers=rep_b_headers).get_json()["count"] == 0

    def test_transition_flow(self, client, rep_a_headers):
        deal = client.post(
            "/api/deals", json={"homeowner_name": "X", "address": "3 C St"}, headers=rep_a_headers
        ).get_json()["deal"]

        ok = client.post(f"/api/deals/{deal['id']}/transition", json={"status": "inspection_scheduled"},
                         headers=rep_a_headers)
        assert ok.status_code == 200
        assert ok.get_json()["deal"]["status"] == "inspection_scheduled"

        skip = client.post(f"/api/deals/{deal['id']}/transition", json={"status": "approved"},
                           headers=rep_a_headers)
        assert skip.status_code == 409
        assert skip.get_json()["code"] == "INVALID_TRANSITION"

        unknown = client.post(f"/api/deals/{deal['id']}/transition", json={"status": "nope"},
                              headers=rep_a_headers)
        assert unknown.status_code == 400
        assert unknown.get_json()["code"] == "UNKNOWN_STATUS"

        cancel = client.post(f"/api/deals/{deal['id']}/transition", json={"status": "cancelled"},
                             headers=rep_a_headers)
        assert cancel.status_code == 409

    def test_admin_cancels(self, client, admin_headers):
        deal = client.post(
            "/api/deals", json={"homeowner_name": "X", "address": "4 D St"}, headers=admin_headers
        ).get_json()["deal"]
        resp = client.post(f"/api/deals/{deal['id']}/transition", json={"status": "cancelled"},
                           headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["deal"]["phase"] == "other"

    def test_patch_rejects_status(self, client, admin_headers):
        deal = client.post(
            "/api/deals", json={"homeowner_name": "X", "address": "5 E St"}, headers=admin_headers
        ).get_json()["deal"]
        resp = client.patch(f"/api/deals/{deal['id']}", json={"status": "complete"}, headers=admin_headers)
        assert resp.status_code == 400

    def test_events(self, client, admin_headers):
        deal = client.post(
            "/api/deals", json={"homeowner_name": "X", "address": "6 F St"}, headers=admin_headers
        ).get_json()["deal"]
        client.post(f"/api/deals/{deal['id']}/transition", json={"status": "inspection_scheduled"},
                    headers=admin_headers)
        events = client.get(f"/api/deals/{deal['id']}/events", headers=admin_headers).get_json()["events"]
        assert [e["event_type"] for e in events] == ["DEAL_CREATED", "STATUS_CHANGED"]

    def test_status_catalogue(self, client, admin_headers):
        resp = client.get("/api/deals/statuses?vocabulary=legacy", headers=admin_headers)
        statuses = [row["status"] for row in resp.get_json()["statuses"]]
        assert statuses[:3] == ["lead", "signed", "permit"]

    def test_missing_deal_404(self, client, admin_headers, db_session):
        assert client.get("/api/deals/9999", headers=admin_headers).status_code == 404


# =============================================================================
# COMMISSIONS / PAYMENTS
# =============================================================================


class TestCommissionRoutes:
    def test_idempotency_header(self, client, installed_deal, rep_b, admin_headers):
        headers = dict(admin_headers, **{"Idempotency-Key": "retry-1"})
        body = {"deal_id": installed_deal.id, "rep_id": rep_b.id, "commission_type": "referral",
                "commission_percent": "1"}
        first = client.post("/api/commissions", json=body, headers=headers).get_json()["commission"]
        second = client.post("/api/commissions", json=body, headers=headers).get_json()["commission"]
        assert first["id"] == second["id"]
        assert first["commission_percent"] == "1.00"

    def test_mark_paid_twice(self, client, installed_deal, admin_headers):
        commission_id = installed_deal.commissions[0].id
        first = client.post(f"/api/commissions/{commission_id}/mark-paid", json={"paid_date": "2024-06-30"},
                            headers=admin_headers)
        assert first.get_json()["already_paid"] is False

        second = client.post(f"/api/commissions/{commission_id}/mark-paid", headers=admin_headers)
        assert second.status_code == 200
        body = second.get_json()
        assert body["already_paid"] is True
        assert body["commission"]["paid_date"] == "2024-06-30"

    def test_rep_sees_only_own_commissions(self, client, installed_deal, rep_a, rep_a_headers):
        rows = client.get("/api/commissions", headers=rep_a_headers).get_json()["commissions"]
        assert {r["rep_id"] for r in rows} == {rep_a.id}

    def test_summary(self, client, installed_deal, rep_b_headers):
        summary = client.get(f"/api/commissions/deals/{installed_deal.id}/summary",
                             headers=rep_b_headers).get_json()
        assert summary["total_owed_cents"] == 150_000
        assert summary["percent_total"] == "15.00"


class TestPaymentRoutes:
    def test_request_approve_flow(self, client, installed_deal, rep_a_headers, admin_headers):
        deal_id = installed_deal.id

        not_requested = client.post(f"/api/payment-requests/deals/{deal_id}/approve", headers=admin_headers)
        assert not_requested.status_code == 409
        assert not_requested.get_json()["code"] == "NOT_REQUESTED"

        req = client.post(f"/api/payment-requests/deals/{deal_id}/request", headers=rep_a_headers)
        assert req.status_code == 200

        queue = client.get("/api/payment-requests", headers=admin_headers).get_json()
        assert queue["count"] == 1
        assert queue["requests"][0]["unpaid_commission_cents"] == 150_000

        approved = client.post(f"/api/payment-requests/deals/{deal_id}/approve", headers=admin_headers)
        assert approved.status_code == 200
        body = approved.get_json()
        assert body["deal"]["status"] == "complete"
        assert body["commissions_paid_cents"] == 150_000
        assert body["pin_synced"] is True

        again = client.post(f"/api/payment-requests/deals/{deal_id}/approve", headers=admin_headers)
        assert again.status_code == 409
        assert again.get_json()["code"] == "ALREADY_PROCESSED"

    def test_request_too_early(self, client, rep_a_headers):
        deal = client.post(
            "/api/deals", json={"homeowner_name": "X", "address": "7 G St"}, headers=rep_a_headers
        ).get_json()["deal"]
        resp = client.post(f"/api/payment-requests/deals/{deal['id']}/request", headers=rep_a_headers)
        assert resp.status_code == 409
        assert resp.get_json()["code"] == "INVALID_TRANSITION"

    def test_reject(self, client, installed_deal, rep_a_headers, admin_headers):
        client.post(f"/api/payment-requests/deals/{installed_deal.id}/request", headers=rep_a_headers)
        resp = client.post(f"/api/payment-requests/deals/{installed_deal.id}/reject",
                           json={"reason": "Missing permit"}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["deal"]["payment_status"] == "rejected"


# =============================================================================
# PINS
# =============================================================================


class TestPinRoutes:
    def test_create_and_duplicate(self, client, rep_a_headers, rep_b_headers):
        first = client.post("/api/pins", json={"latitude": 33.0, "longitude": -96.0, "address": "1 Oak Ln"},
                            headers=rep_a_headers)
        assert first.status_code == 201

        check = client.get("/api/pins/check-duplicate?address=1%20OAK%20LN.", headers=rep_b_headers).get_json()
        assert check["duplicate"] is True
        assert check["normalized_address"] == "1 oak ln"

        dup = client.post("/api/pins", json={"latitude": 33.0, "longitude": -96.0, "address": "1 oak ln"},
                          headers=rep_b_headers)
        assert dup.status_code == 409
        assert dup.get_json()["code"] == "DUPLICATE_ADDRESS"

    def test_invalid_pin_status(self, client, pin_a, rep_a_headers):
        resp = client.post(f"/api/pins/{pin_a.id}/status", json={"status": "on_fire"}, headers=rep_a_headers)
        assert resp.status_code == 400

    def test_foreign_pin_hidden(self, client, pin_a, rep_b_headers):
        assert client.get(f"/api/pins/{pin_a.id}", headers=rep_b_headers).status_code == 404

    def test_assigned_closer_can_convert(self, client, pin_a, rep_b, rep_b_headers, db_session):
        pin_a.assigned_closer_id = rep_b.id
        db_session.commit()

        resp = client.post(f"/api/pins/{pin_a.id}/convert",
                           json={"deal": {"total_price_cents": 1_000_000}}, headers=rep_b_headers)
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["pin"]["deal_id"] == body["deal"]["id"]
        assert sorted(c["commission_type"] for c in body["commissions"]) == ["closer", "self_gen"]

        again = client.post(f"/api/pins/{pin_a.id}/convert", json={}, headers=rep_b_headers)
        assert again.status_code == 409
        assert again.get_json()["code"] == "ALREADY_CONVERTED"

    def test_admin_reassigns(self, client, pin_a, rep_b, admin_headers):
        resp = client.post(f"/api/pins/{pin_a.id}/reassign", json={"rep_id": rep_b.id}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["pin"]["rep_id"] == rep_b.id
