# Overview: Pytest coverage for the HTTP API: envelope, authentication, roles and the main workflows end to end.

"""
API tests.

Verifies:
- Every response uses the {success, message, data, meta} envelope
- Unauthenticated requests return 401, wrong roles 403
- Validation failures carry a field-level breakdown
- Sales, transfer and service workflows work end to end over HTTP
"""

import pytest

from conftest import PASSWORD, auth_headers, get_auth_token


# =============================================================================
# SYSTEM / ENVELOPE
# =============================================================================


class TestSystemEndpoints:

    def test_health(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "healthy"
        assert set(body["checks"]) == {"database", "session_service", "stock_cache"}

    def test_version(self, client):
        resp = client.get("/version")
        assert resp.status_code == 200
        assert resp.get_json()["api_version"] == "1.0.0"

    def test_unknown_route_uses_error_envelope(self, client):
        resp = client.get("/api/nothing-here")
        assert resp.status_code == 404
        body = resp.get_json()
        assert body["success"] is False
        assert "timestamp" in body["meta"]


# =============================================================================
# AUTHENTICATION
# =============================================================================


class TestAuth:

    def test_login_and_me(self, client, sales_user, branch_main):
        resp = client.post("/api/auth/login", json={"username": "ana", "password": PASSWORD})
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["success"] is True
        assert body["data"]["user"]["role"] == "salesperson"
        assert body["data"]["expires_at"].endswith("Z")

        me = client.get("/api/auth/me", headers=auth_headers(body["data"]["token"]))
        assert me.status_code == 200
        assert me.get_json()["data"]["branch"]["code"] == branch_main.code

    def test_login_by_email(self, client, sales_user):
        assert get_auth_token(client, "ana@stockledger.test") is not None

    def test_bad_credentials(self, client, sales_user):
        resp = client.post("/api/auth/login", json={"username": "ana", "password": "Wrong123!"})
        assert resp.status_code == 401
        assert resp.get_json()["success"] is False

    def test_missing_credentials(self, client, db_session):
        resp = client.post("/api/auth/login", json={"username": "ana"})
        assert resp.status_code == 400

    def test_logout_revokes_token(self, client, sales_user):
        token = get_auth_token(client, "ana")

        assert client.post("/api/auth/logout", headers=auth_headers(token)).status_code == 200
        assert client.get("/api/auth/me", headers=auth_headers(token)).status_code == 401

    def test_inactive_branch_cannot_log_in(self, client, db_session, sales_user, branch_main):
        branch_main.is_active = False
        db_session.commit()
        assert get_auth_token(client, "ana") is None

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/auth/me"),
            ("GET", "/api/stock"),
            ("POST", "/api/stock/restock"),
            ("POST", "/api/stock/adjust"),
            ("GET", "/api/stock/movements"),
            ("GET", "/api/stock/transfers"),
            ("POST", "/api/stock/transfers"),
            ("GET", "/api/sales"),
            ("POST", "/api/sales"),
            ("GET", "/api/services"),
            ("GET", "/api/transactions"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"
        assert resp.get_json()["message"] == "Authentication required"

    def test_garbage_token(self, client, db_session):
        resp = client.get("/api/stock", headers=auth_headers("not-a-token"))
        assert resp.status_code == 401
        assert resp.get_json()["message"] == "Invalid or expired token"


# =============================================================================
# ROLES
# =============================================================================


class TestRoles:

    def test_salesperson_cannot_adjust(self, client, sales_headers, stock, oil, branch_main):
        stock(oil, branch_main, 10)
        resp = client.post(
            "/api/stock/adjust",
            json={"product_id": oil.id, "branch_id": branch_main.id, "adjustment": -1, "reason": "Broken"},
            headers=sales_headers,
        )
        assert resp.status_code == 403
        assert resp.get_json()["details"]["required_roles"] == ["admin"]

    def test_mechanic_cannot_list_stock(self, client, mechanic_headers):
        assert client.get("/api/stock", headers=mechanic_headers).status_code == 403

    def test_salesperson_cannot_read_ledger(self, client, sales_headers):
        assert client.get("/api/transactions", headers=sales_headers).status_code == 403

    def test_salesperson_cannot_create_transfer(self, client, sales_headers, oil, branch_main, branch_north):
        resp = client.post(
            "/api/stock/transfers",
            json={"product_id": oil.id, "from_branch_id": branch_main.id, "to_branch_id": branch_north.id, "quantity": 1},
            headers=sales_headers,
        )
        assert resp.status_code == 403

    def test_salesperson_pinned_to_own_branch(self, client, sales_headers, branch_north):
        resp = client.get(f"/api/stock?branch_id={branch_north.id}", headers=sales_headers)
        assert resp.status_code == 403


# =============================================================================
# STOCK
# =============================================================================


class TestStockApi:

    def test_restock_then_list(self, client, sales_headers, oil, branch_main):
        resp = client.post(
            "/api/stock/restock",
            json={"product_id": oil.id, "branch_id": branch_main.id, "quantity": 12, "selling_price_cents": 260},
            headers=sales_headers,
        )
        assert resp.status_code == 200
        assert resp.get_json()["data"]["quantity"] == 12

        listing = client.get("/api/stock?page=1&limit=5", headers=sales_headers).get_json()
        assert listing["pagination"] == {"page": 1, "limit": 5, "total": 1, "pages": 1}
        assert listing["data"][0]["selling_price_cents"] == 260

    def test_restock_validation_breakdown(self, client, sales_headers):
        resp = client.post("/api/stock/restock", json={"quantity": "1.5"}, headers=sales_headers)
        assert resp.status_code == 400
        fields = {e["field"] for e in resp.get_json()["errors"]}
        assert {"product_id", "branch_id", "quantity"} <= fields

    def test_adjust_without_reason(self, client, admin_headers, stock, oil, branch_main):
        record = stock(oil, branch_main, 10)

        resp = client.post(
            "/api/stock/adjust",
            json={"product_id": oil.id, "branch_id": branch_main.id, "adjustment": -3},
            headers=admin_headers,
        )

        assert resp.status_code == 400
        assert resp.get_json()["errors"][0]["field"] == "reason"
        assert client.get(f"/api/stock/{record.id}", headers=admin_headers).get_json()["data"]["quantity"] == 10

    def test_adjust_by_id(self, client, admin_headers, stock, oil, branch_main):
        record = stock(oil, branch_main, 10)
        resp = client.put(
            f"/api/stock/{record.id}/adjust",
            json={"adjustment": -20, "reason": "Annual stock count"},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.get_json()["data"]["quantity"] == 0

    def test_product_summary(self, client, admin_headers, stock, oil, branch_main, branch_north):
        stock(oil, branch_main, 10, selling_price_cents=250)
        stock(oil, branch_north, 4, selling_price_cents=300)

        data = client.get(f"/api/stock/product/{oil.id}", headers=admin_headers).get_json()["data"]

        assert data["total_quantity"] == 14
        assert len(data["branches"]) == 2

    def test_movement_log(self, client, admin_headers, stock, oil, branch_main):
        stock(oil, branch_main, 10)
        stock(oil, branch_main, 5)

        body = client.get("/api/stock/movements?movement_type=restock", headers=admin_headers).get_json()

        assert body["pagination"]["total"] == 1
        assert body["data"][0]["quantity_after"] == 15

    def test_bad_date_filter(self, client, admin_headers):
        resp = client.get("/api/stock/movements?date_from=yesterday", headers=admin_headers)
        assert resp.status_code == 400
        assert resp.get_json()["errors"][0]["field"] == "date_from"

    @pytest.mark.parametrize("path,field", [
        ("/api/stock/movements?movement_type=theft", "movement_type"),
        ("/api/sales?status=shipped", "status"),
        ("/api/stock/transfers?status=lost", "status"),
        ("/api/transactions?type=refund", "type"),
    ])
    def test_unknown_filter_value_rejected(self, client, admin_headers, path, field):
        resp = client.get(path, headers=admin_headers)
        assert resp.status_code == 400
        assert resp.get_json()["errors"][0]["field"] == field


# =============================================================================
# WORKFLOWS
# =============================================================================


class TestSalesApi:

    def _create(self, client, headers, product, quantity, **extra):
        body = {
            "customer": {"name": "Maria Santos"},
            "items": [{"product_id": product.id, "quantity": quantity}],
            "payment_method": "cash",
            **extra,
        }
        return client.post("/api/sales", json=body, headers=headers)

    def test_paid_order_end_to_end(self, client, sales_headers, admin_headers, stock, oil, branch_main):
        stock(oil, branch_main, 100, selling_price_cents=250)

        resp = self._create(client, sales_headers, oil, 2, amount_paid_cents=500)
        assert resp.status_code == 201
        order = resp.get_json()["data"]
        assert order["branch_id"] == branch_main.id
        assert order["payment"]["status"] == "paid"

        for status in ("processing", "completed"):
            resp = client.put(f"/api/sales/{order['id']}/status", json={"status": status}, headers=sales_headers)
            assert resp.status_code == 200

        ledger = client.get("/api/transactions?type=sale", headers=admin_headers).get_json()
        assert ledger["pagination"]["total"] == 1
        assert ledger["data"][0]["amount_cents"] == 500
        assert ledger["data"][0]["reference"] == {"type": "SalesOrder", "id": order["id"]}

    def test_insufficient_stock_details(self, client, sales_headers, stock, oil, branch_main):
        stock(oil, branch_main, 3)

        resp = self._create(client, sales_headers, oil, 4)

        assert resp.status_code == 400
        assert resp.get_json()["details"]["available"] == 3

    def test_other_branch_order_forbidden(self, client, sales_headers, stock, oil, branch_north):
        stock(oil, branch_north, 3)
        resp = self._create(client, sales_headers, oil, 1, branch_id=branch_north.id)
        assert resp.status_code == 403

    def test_missing_fields(self, client, sales_headers):
        resp = client.post("/api/sales", json={}, headers=sales_headers)
        assert resp.status_code == 400
        fields = {e["field"] for e in resp.get_json()["errors"]}
        assert {"customer", "items", "payment_method"} <= fields

    def test_delete_is_admin_only(self, client, sales_headers, admin_headers, stock, oil, branch_main):
        stock(oil, branch_main, 10)
        order_id = self._create(client, sales_headers, oil, 1).get_json()["data"]["id"]

        assert client.delete(f"/api/sales/{order_id}", headers=sales_headers).status_code == 403
        resp = client.delete(f"/api/sales/{order_id}", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["data"]["status"] == "cancelled"

    def test_invoice(self, client, sales_headers, stock, oil, branch_main):
        stock(oil, branch_main, 10)
        order = self._create(client, sales_headers, oil, 1).get_json()["data"]

        invoice = client.get(f"/api/sales/{order['id']}/invoice", headers=sales_headers).get_json()["data"]

        assert invoice["invoice_number"] == order["order_number"]
        assert invoice["branch"]["id"] == branch_main.id


class TestTransfersApi:

    def test_transfer_end_to_end(self, client, admin_headers, stock, oil, branch_main, branch_north):
        stock(oil, branch_main, 100, selling_price_cents=250)

        resp = client.post(
            "/api/stock/transfers",
            json={"product_id": oil.id, "from_branch_id": branch_main.id, "to_branch_id": branch_north.id, "quantity": 30},
            headers=admin_headers,
        )
        assert resp.status_code == 201
        transfer_id = resp.get_json()["data"]["id"]

        for status in ("in-transit", "completed"):
            resp = client.put(f"/api/stock/transfers/{transfer_id}", json={"status": status}, headers=admin_headers)
            assert resp.status_code == 200

        summary = client.get(f"/api/stock/product/{oil.id}", headers=admin_headers).get_json()["data"]
        quantities = {b["branch_id"]: (b["quantity"], b["selling_price_cents"]) for b in summary["branches"]}
        assert quantities == {branch_main.id: (70, 250), branch_north.id: (30, 250)}

    def test_invalid_transition(self, client, admin_headers, stock, oil, branch_main, branch_north):
        stock(oil, branch_main, 10)
        transfer_id = client.post(
            "/api/stock/transfers",
            json={"product_id": oil.id, "from_branch_id": branch_main.id, "to_branch_id": branch_north.id, "quantity": 1},
            headers=admin_headers,
        ).get_json()["data"]["id"]

        resp = client.put(f"/api/stock/transfers/{transfer_id}", json={"status": "completed"}, headers=admin_headers)

        assert resp.status_code == 400
        assert resp.get_json()["details"] == {"current": "pending", "requested": "completed"}


class TestServicesApi:

    def test_job_end_to_end(
        self, client, sales_headers, mechanic_headers, stock, oil, branch_main, mechanic_user
    ):
        stock(oil, branch_main, 10)

        resp = client.post(
            "/api/services",
            json={
                "customer": {"name": "Jose Reyes", "phone": "09181234567"},
                "vehicle": {"make": "Toyota", "model": "Vios", "year": 2019, "plate_number": "ABC 1234"},
                "description": "Oil change",
                "parts_used": [{"product_id": oil.id, "quantity": 2, "unit_price_cents": 150}],
                "labor_cost_cents": 500,
            },
            headers=sales_headers,
        )
        assert resp.status_code == 201
        job = resp.get_json()["data"]
        assert job["total_amount_cents"] == 800
        assert job["vehicle"]["plate_number"] == "ABC 1234"

        resp = client.put(
            f"/api/services/{job['id']}/assign", json={"mechanic_id": mechanic_user.id}, headers=sales_headers
        )
        assert resp.get_json()["data"]["status"] == "scheduled"

        my_jobs = client.get("/api/services/my-jobs", headers=mechanic_headers).get_json()["data"]
        assert [j["id"] for j in my_jobs] == [job["id"]]

        for status in ("in-progress", "completed"):
            resp = client.put(f"/api/services/{job['id']}/status", json={"status": status}, headers=mechanic_headers)
            assert resp.status_code == 200

        record = client.get(f"/api/stock/branch/{branch_main.id}", headers=sales_headers).get_json()["data"][0]
        assert record["quantity"] == 8

    def test_customer_phone_required(self, client, sales_headers, branch_main):
        resp = client.post(
            "/api/services",
            json={"customer": {"name": "Jose"}, "description": "Tune up"},
            headers=sales_headers,
        )
        assert resp.status_code == 400
        assert resp.get_json()["errors"][0]["field"] == "customer.phone"

    def test_my_jobs_is_mechanic_only(self, client, sales_headers):
        assert client.get("/api/services/my-jobs", headers=sales_headers).status_code == 403
