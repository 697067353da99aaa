"""
HTTP API tests.

Verifies:
- Unauthenticated requests return 401; user management is admin-only
- Login via bearer token or session cookie, logout, password change
- Error taxonomy maps to status codes with JSON bodies
- The sell / return / void crate scenario end to end over HTTP
"""

import pytest

from cellarpos.models import Product, User

from conftest import auth_headers, get_auth_token


# =============================================================================
# UNAUTHENTICATED ACCESS (401)
# =============================================================================


class TestUnauthenticatedAccess:

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/auth/me"),
            ("POST", "/api/auth/logout"),
            ("GET", "/api/auth/users"),
            ("POST", "/api/auth/users"),
            ("GET", "/api/products"),
            ("POST", "/api/products"),
            ("GET", "/api/sales"),
            ("POST", "/api/sales"),
            ("POST", "/api/sales/1/void"),
            ("GET", "/api/deliveries"),
            ("POST", "/api/deliveries"),
            ("GET", "/api/crates/balances"),
            ("GET", "/api/crates/product/1"),
            ("POST", "/api/crates/return"),
            ("POST", "/api/crates/adjust"),
            ("GET", "/api/crates/summary"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_garbage_token(self, client, db_session):
        resp = client.get("/api/auth/me", headers=auth_headers("not-a-real-token"))
        assert resp.status_code == 401


class TestSystem:

    def test_health(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json["status"] == "OK"
        assert resp.json["checks"]["database"]["status"] == "healthy"

    def test_unknown_route(self, client, db_session):
        resp = client.get("/api/nothing-here")
        assert resp.status_code == 404
        assert resp.json == {"error": "Route not found"}


# =============================================================================
# AUTH
# =============================================================================


class TestLogin:

    def test_login_returns_token_and_cookie(self, client, staff_user):
        resp = client.post("/api/auth/login", json={"username": "STAFF", "password": "secret123"})

        assert resp.status_code == 200
        assert resp.json["user"]["username"] == "staff"
        assert resp.json["token"]
        cookies = resp.headers.getlist("Set-Cookie")
        assert any(c.startswith("session_token=") and "HttpOnly" in c for c in cookies)

    def test_cookie_authenticates(self, client, staff_user):
        client.post("/api/auth/login", json={"username": "staff", "password": "secret123"})
        resp = client.get("/api/auth/me")
        assert resp.status_code == 200
        assert resp.json["user"]["username"] == "staff"

    def test_wrong_password(self, client, staff_user):
        resp = client.post("/api/auth/login", json={"username": "staff", "password": "wrong-pass"})
        assert resp.status_code == 401

    def test_missing_fields(self, client, db_session):
        resp = client.post("/api/auth/login", json={"username": "staff"})
        assert resp.status_code == 400

    def test_inactive_user_cannot_login(self, client, db_session, staff_user):
        staff_user.is_active = False
        db_session.commit()
        assert get_auth_token(client, "staff", "secret123") is None

    def test_last_login_recorded(self, client, db_session, staff_user):
        get_auth_token(client, "staff", "secret123")
        db_session.expire_all()
        assert db_session.query(User).filter_by(username="staff").one().last_login_at is not None

    def test_logout_revokes_token(self, client, staff_user):
        token = get_auth_token(client, "staff", "secret123")
        assert client.post("/api/auth/logout", headers=auth_headers(token)).status_code == 200
        assert client.get("/api/auth/me", headers=auth_headers(token)).status_code == 401


class TestChangePassword:

    def test_change_password(self, client, staff_user):
        token = get_auth_token(client, "staff", "secret123")
        resp = client.post(
            "/api/auth/change-password",
            json={"current_password": "secret123", "new_password": "better456"},
            headers=auth_headers(token),
        )
        assert resp.status_code == 200
        assert get_auth_token(client, "staff", "better456")
        assert get_auth_token(client, "staff", "secret123") is None

    def test_wrong_current_password(self, client, staff_headers):
        resp = client.post(
            "/api/auth/change-password",
            json={"current_password": "nope-nope", "new_password": "better456"},
            headers=staff_headers,
        )
        assert resp.status_code == 401

    def test_short_new_password(self, client, staff_headers):
        resp = client.post(
            "/api/auth/change-password",
            json={"current_password": "secret123", "new_password": "abc"},
            headers=staff_headers,
        )
        assert resp.status_code == 400


class TestUserManagement:

    def test_staff_cannot_list_users(self, client, staff_headers):
        assert client.get("/api/auth/users", headers=staff_headers).status_code == 403

    def test_staff_cannot_create_user(self, client, staff_headers):
        resp = client.post(
            "/api/auth/users",
            json={"username": "x", "password": "secret123", "full_name": "X"},
            headers=staff_headers,
        )
        assert resp.status_code == 403

    def test_admin_creates_user(self, client, admin_headers):
        resp = client.post(
            "/api/auth/users",
            json={"username": "Wanjiru", "password": "secret123", "full_name": "Wanjiru K"},
            headers=admin_headers,
        )
        assert resp.status_code == 201
        assert resp.json["user"]["username"] == "wanjiru"
        assert resp.json["user"]["role"] == "staff"

        listed = client.get("/api/auth/users", headers=admin_headers)
        assert {u["username"] for u in listed.json["items"]} == {"admin", "wanjiru"}

    def test_duplicate_username(self, client, admin_headers):
        resp = client.post(
            "/api/auth/users",
            json={"username": "ADMIN", "password": "secret123", "full_name": "Impostor"},
            headers=admin_headers,
        )
        assert resp.status_code == 409


# =============================================================================
# PRODUCTS
# =============================================================================


class TestProductsApi:

    def test_create_get_and_duplicate_barcode(self, client, staff_headers):
        payload = {
            "name": "Tusker Cider Crate",
            "category": "beer",
            "unit_type": "crate",
            "cost_price_cents": 210000,
            "selling_price_cents": 260000,
            "barcode": "6161101600019",
        }
        created = client.post("/api/products", json=payload, headers=staff_headers)
        assert created.status_code == 201
        product_id = created.json["product"]["id"]

        fetched = client.get(f"/api/products/{product_id}", headers=staff_headers)
        assert fetched.json["product"]["barcode"] == "6161101600019"

        dup = client.post("/api/products", json={**payload, "name": "Copy"}, headers=staff_headers)
        assert dup.status_code == 409
        assert "error" in dup.json

    def test_validation_error_body(self, client, staff_headers):
        resp = client.post("/api/products", json={"name": "Only a name"}, headers=staff_headers)
        assert resp.status_code == 400
        assert resp.json["error"].startswith("Missing required fields")

    def test_meta(self, client, staff_headers):
        cats = client.get("/api/products/meta/categories", headers=staff_headers).json["categories"]
        units = client.get("/api/products/meta/unit-types", headers=staff_headers).json["unit_types"]
        assert "whiskey" in cats and "champagne" in cats
        assert units == ["crate", "carton", "bottle", "piece", "case"]

    def test_not_found(self, client, staff_headers):
        assert client.get("/api/products/9999", headers=staff_headers).status_code == 404

    def test_delete_reports_action(self, client, staff_headers, bottle_product):
        resp = client.delete(f"/api/products/{bottle_product.id}", headers=staff_headers)
        assert resp.status_code == 200
        assert resp.json["action"] == "deleted"


# =============================================================================
# SALES / CRATES / DELIVERIES
# =============================================================================


class TestSalesApi:

    def test_create_sale(self, client, staff_headers, crate_product):
        resp = client.post(
            "/api/sales",
            json={"items": [{"product_id": crate_product.id, "quantity": 2}], "payment_method": "cash"},
            headers=staff_headers,
        )
        assert resp.status_code == 201
        sale = resp.json["sale"]
        assert sale["total_amount_cents"] == 500000
        assert sale["items"][0]["quantity"] == 2

        fetched = client.get(f"/api/sales/{sale['id']}", headers=staff_headers)
        assert fetched.json["sale"]["receipt_number"] == sale["receipt_number"]

    def test_insufficient_stock(self, client, staff_headers, bottle_product):
        resp = client.post(
            "/api/sales",
            json={"items": [{"product_id": bottle_product.id, "quantity": 11}], "payment_method": "cash"},
            headers=staff_headers,
        )
        assert resp.status_code == 400
        assert resp.json["details"] == {
            "product_id": bottle_product.id,
            "requested_quantity": 11,
            "available": 10,
        }

    def test_unknown_product(self, client, staff_headers):
        resp = client.post(
            "/api/sales",
            json={"items": [{"product_id": 777, "quantity": 1}], "payment_method": "cash"},
            headers=staff_headers,
        )
        assert resp.status_code == 404

    def test_missing_payment_method(self, client, staff_headers, crate_product):
        resp = client.post(
            "/api/sales",
            json={"items": [{"product_id": crate_product.id, "quantity": 1}]},
            headers=staff_headers,
        )
        assert resp.status_code == 400

    @pytest.mark.parametrize(
        "item",
        [
            {"quantity": 1, "unit_price_cents": 10**20},
            {"quantity": "²"},
            {"product_id": 10**30, "quantity": 1},
        ],
    )
    def test_malformed_numbers_rejected(self, client, db_session, staff_headers, crate_product, item):
        line = {"product_id": crate_product.id, **item}
        resp = client.post("/api/sales", json={"items": [line], "payment_method": "cash"}, headers=staff_headers)
        assert resp.status_code == 400
        assert "error" in resp.json
        db_session.expire_all()
        assert db_session.get(Product, crate_product.id).current_stock == 20

    def test_void_flow(self, client, staff_headers, crate_product):
        sale_id = client.post(
            "/api/sales",
            json={"items": [{"product_id": crate_product.id, "quantity": 1}], "payment_method": "bank"},
            headers=staff_headers,
        ).json["sale"]["id"]

        assert client.post(f"/api/sales/{sale_id}/void", json={}, headers=staff_headers).status_code == 400

        voided = client.post(f"/api/sales/{sale_id}/void", json={"reason": "Duplicate"}, headers=staff_headers)
        assert voided.status_code == 200
        assert voided.json["sale"]["is_voided"] is True

        again = client.post(f"/api/sales/{sale_id}/void", json={"reason": "Again"}, headers=staff_headers)
        assert again.status_code == 400

        listed = client.get("/api/sales", headers=staff_headers)
        assert listed.json["items"] == []

    def test_void_unknown(self, client, staff_headers):
        resp = client.post("/api/sales/4242/void", json={"reason": "x"}, headers=staff_headers)
        assert resp.status_code == 404

    def test_bad_list_filters(self, client, staff_headers):
        assert client.get("/api/sales?start_date=yesterday", headers=staff_headers).status_code == 400
        assert client.get("/api/sales?payment_method=gold", headers=staff_headers).status_code == 400


class TestCrateScenario:

    def test_sell_return_void(self, client, staff_headers, crate_product):
        sale = client.post(
            "/api/sales",
            json={"items": [{"product_id": crate_product.id, "quantity": 5}], "payment_method": "cash"},
            headers=staff_headers,
        ).json["sale"]

        history = client.get(f"/api/crates/product/{crate_product.id}", headers=staff_headers).json
        assert history["current_balance"] == 5

        ret = client.post(
            "/api/crates/return",
            json={"product_id": crate_product.id, "crates_returned": 3},
            headers=staff_headers,
        )
        assert ret.status_code == 201
        assert ret.json["new_balance"] == 2

        client.post(f"/api/sales/{sale['id']}/void", json={"reason": "Cancelled"}, headers=staff_headers)

        balances = client.get("/api/crates/balances", headers=staff_headers).json["balances"]
        assert balances[0]["product_id"] == crate_product.id
        assert balances[0]["current_balance"] == 0

        history = client.get(f"/api/crates/product/{crate_product.id}", headers=staff_headers).json
        assert [e["transaction_type"] for e in history["crate_history"]] == ["adjustment", "return", "sale"]


class TestCratesApi:

    def test_adjust_requires_notes(self, client, staff_headers, crate_product):
        resp = client.post(
            "/api/crates/adjust",
            json={"product_id": crate_product.id, "adjustment": 4},
            headers=staff_headers,
        )
        assert resp.status_code == 400
        assert resp.json["error"] == "Notes are required for manual adjustments"

    def test_adjust(self, client, staff_headers, crate_product):
        resp = client.post(
            "/api/crates/adjust",
            json={"product_id": crate_product.id, "adjustment": 4, "notes": "Stock take"},
            headers=staff_headers,
        )
        assert resp.status_code == 201
        assert resp.json["new_balance"] == 4
        assert resp.json["entry"]["crates_received"] == 4

    def test_return_untracked(self, client, staff_headers, bottle_product):
        resp = client.post(
            "/api/crates/return",
            json={"product_id": bottle_product.id, "crates_returned": 1},
            headers=staff_headers,
        )
        assert resp.status_code == 400

    def test_return_unknown_product(self, client, staff_headers):
        resp = client.post(
            "/api/crates/return",
            json={"product_id": 9191, "crates_returned": 1},
            headers=staff_headers,
        )
        assert resp.status_code == 404

    @pytest.mark.parametrize("count", ["²", 10**30, 1_000_001])
    def test_return_malformed_count(self, client, staff_headers, crate_product, count):
        resp = client.post(
            "/api/crates/return",
            json={"product_id": crate_product.id, "crates_returned": count},
            headers=staff_headers,
        )
        assert resp.status_code == 400
        assert "error" in resp.json

    def test_history_unknown_product(self, client, staff_headers):
        assert client.get("/api/crates/product/9191", headers=staff_headers).status_code == 404

    def test_summary(self, client, staff_headers, crate_product):
        client.post(
            "/api/crates/adjust",
            json={"product_id": crate_product.id, "adjustment": 2, "notes": "Count"},
            headers=staff_headers,
        )
        resp = client.get("/api/crates/summary", headers=staff_headers)
        assert resp.status_code == 200
        assert resp.json["summary"][0]["net_adjustment"] == 2

        bad = client.get("/api/crates/summary?start_date=2026-13-01", headers=staff_headers)
        assert bad.status_code == 400


class TestDeliveriesApi:

    def test_create_update_and_suppliers(self, client, staff_headers, crate_product):
        created = client.post(
            "/api/deliveries",
            json={
                "supplier": "EABL",
                "delivery_date": "2026-07-01",
                "items": [{"product_id": crate_product.id, "quantity": 6}],
            },
            headers=staff_headers,
        )
        assert created.status_code == 201
        delivery = created.json["delivery"]
        assert delivery["delivery_number"] == "DEL-20260701-001"
        assert delivery["items"][0]["unit_cost_cents"] == 200000

        updated = client.put(
            f"/api/deliveries/{delivery['id']}",
            json={"notes": "Two crates damaged"},
            headers=staff_headers,
        )
        assert updated.status_code == 200
        assert updated.json["delivery"]["notes"] == "Two crates damaged"

        suppliers = client.get("/api/deliveries/meta/suppliers", headers=staff_headers)
        assert suppliers.json["suppliers"] == ["EABL"]

        product = client.get(f"/api/products/{crate_product.id}", headers=staff_headers).json["product"]
        assert product["current_stock"] == 26

    def test_validation(self, client, staff_headers):
        resp = client.post("/api/deliveries", json={"supplier": "EABL", "items": []}, headers=staff_headers)
        assert resp.status_code == 400

    def test_not_found(self, client, staff_headers):
        assert client.get("/api/deliveries/5150", headers=staff_headers).status_code == 404
