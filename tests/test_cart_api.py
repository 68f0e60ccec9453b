"""
Component tests for the Cart Service HTTP layer

These run the real FastAPI app, engine and memory collaborators together
and check the request -> engine -> store round trip plus the HTTP mapping of
every failure kind.
"""
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from cart_service.models import Product


def money(value) -> Decimal:
    return Decimal(str(value))


class TestAccessGate:
    """Requests without a valid bearer token never reach the engine."""

    def test_missing_token_is_401(self, test_client: TestClient):
        response = test_client.get("/cart")
        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_garbage_token_is_401(self, test_client: TestClient):
        response = test_client.get("/cart", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    def test_wrong_scheme_is_401(self, test_client: TestClient):
        response = test_client.get("/cart", headers={"Authorization": "Basic dTE6cHc="})
        assert response.status_code == 401

    def test_admin_routes_reject_users(self, test_client: TestClient, user_headers):
        assert test_client.get("/admin/carts", headers=user_headers).status_code == 403
        assert test_client.delete("/admin/carts/u2", headers=user_headers).status_code == 403


class TestAddItem:

    def test_first_add_creates_cart(self, test_client: TestClient, user_headers):
        """
        Validates:
        - 201 on lazy creation
        - snapshot name/price come from the catalog
        - total = quantity * price
        """
        response = test_client.post("/cart/items", json={"product_id": "p1", "quantity": 3}, headers=user_headers)

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["user_id"] == "u1"
        assert len(data["items"]) == 1
        item = data["items"][0]
        assert item["product_id"] == "p1"
        assert item["name"] == "Keyboard"
        assert money(item["price"]) == Decimal("10.0")
        assert item["quantity"] == 3
        assert money(data["total"]) == Decimal("30.0")
        assert response.headers["X-Request-ID"]

    def test_second_add_merges(self, test_client: TestClient, user_headers):
        test_client.post("/cart/items", json={"product_id": "p1", "quantity": 3}, headers=user_headers)

        response = test_client.post("/cart/items", json={"product_id": "p1", "quantity": 2}, headers=user_headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["items"][0]["quantity"] == 5
        assert money(data["total"]) == Decimal("50.0")

    def test_quantity_defaults_to_one(self, test_client: TestClient, user_headers):
        response = test_client.post("/cart/items", json={"product_id": "p2"}, headers=user_headers)
        assert response.json()["data"]["items"][0]["quantity"] == 1

    def test_unknown_product_is_404(self, test_client: TestClient, user_headers):
        response = test_client.post("/cart/items", json={"product_id": "nope", "quantity": 1}, headers=user_headers)

        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert body["details"]["kind"] == "product_not_found"

    @pytest.mark.parametrize("quantity", [0, -2])
    def test_non_positive_quantity_is_400(self, test_client: TestClient, user_headers, quantity):
        response = test_client.post(
            "/cart/items", json={"product_id": "p1", "quantity": quantity}, headers=user_headers
        )
        assert response.status_code == 400
        assert response.json()["details"]["kind"] == "invalid_quantity"

    def test_product_id_is_sanitized(self, test_client: TestClient, user_headers):
        response = test_client.post(
            "/cart/items", json={"product_id": " p1\u200b ", "quantity": 1}, headers=user_headers
        )
        assert response.status_code == 201
        assert response.json()["data"]["items"][0]["product_id"] == "p1"

    def test_blank_product_id_is_422(self, test_client: TestClient, user_headers):
        response = test_client.post("/cart/items", json={"product_id": "   ", "quantity": 1}, headers=user_headers)
        assert response.status_code == 422


class TestUpdateAndRemove:

    def test_set_quantity(self, test_client: TestClient, user_headers):
        test_client.post("/cart/items", json={"product_id": "p1", "quantity": 5}, headers=user_headers)

        response = test_client.put("/cart/items/p1", json={"quantity": 1}, headers=user_headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["items"][0]["quantity"] == 1
        assert money(data["total"]) == Decimal("10.0")

    def test_set_quantity_zero_is_rejected(self, test_client: TestClient, user_headers):
        test_client.post("/cart/items", json={"product_id": "p1", "quantity": 5}, headers=user_headers)

        response = test_client.put("/cart/items/p1", json={"quantity": 0}, headers=user_headers)

        assert response.status_code == 400
        snapshot = test_client.get("/cart/snapshot", headers=user_headers).json()["data"]
        assert snapshot["items"][0]["quantity"] == 5

    def test_set_quantity_without_cart_is_404(self, test_client: TestClient, user_headers):
        response = test_client.put("/cart/items/p1", json={"quantity": 2}, headers=user_headers)
        assert response.status_code == 404
        assert response.json()["details"]["kind"] == "cart_not_found"

    def test_remove_item_keeps_empty_cart(self, test_client: TestClient, user_headers):
        test_client.post("/cart/items", json={"product_id": "p1", "quantity": 2}, headers=user_headers)

        response = test_client.delete("/cart/items/p1", headers=user_headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["items"] == []
        assert money(data["total"]) == Decimal(0)
        assert test_client.get("/cart/snapshot", headers=user_headers).status_code == 200

    def test_remove_missing_item_is_404(self, test_client: TestClient, user_headers):
        test_client.post("/cart/items", json={"product_id": "p1", "quantity": 3}, headers=user_headers)

        response = test_client.delete("/cart/items/p9", headers=user_headers)

        assert response.status_code == 404
        assert response.json()["details"]["kind"] == "item_not_found"
        snapshot = test_client.get("/cart/snapshot", headers=user_headers).json()["data"]
        assert [i["product_id"] for i in snapshot["items"]] == ["p1"]


class TestListCart:

    def test_new_user_gets_empty_list(self, test_client: TestClient, make_headers):
        response = test_client.get("/cart", headers=make_headers("new-user"))

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["items"] == []
        assert money(data["total"]) == Decimal(0)

    def test_populated_view_omits_deleted_products(self, test_client: TestClient, user_headers, products):
        test_client.post("/cart/items", json={"product_id": "p1", "quantity": 1}, headers=user_headers)
        test_client.post("/cart/items", json={"product_id": "p2", "quantity": 2}, headers=user_headers)
        products.remove("p2")
        products.add(Product(id="p1", name="Keyboard v2", price=Decimal("12.0"), description="Low profile"))

        data = test_client.get("/cart", headers=user_headers).json()["data"]

        assert [i["product_id"] for i in data["items"]] == ["p1"]
        assert data["items"][0]["product"]["name"] == "Keyboard v2"
        assert data["items"][0]["product"]["description"] == "Low profile"
        assert data["items"][0]["quantity"] == 1
        # snapshot total still counts the removed product
        assert money(data["total"]) == Decimal("19.00")

    def test_snapshot_without_cart_is_404(self, test_client: TestClient, user_headers):
        assert test_client.get("/cart/snapshot", headers=user_headers).status_code == 404


class TestDeleteCart:

    def test_delete_then_delete_again(self, test_client: TestClient, user_headers):
        test_client.post("/cart/items", json={"product_id": "p1", "quantity": 1}, headers=user_headers)

        assert test_client.delete("/cart", headers=user_headers).status_code == 200
        response = test_client.delete("/cart", headers=user_headers)

        assert response.status_code == 404
        assert response.json()["details"]["kind"] == "cart_not_found"

    def test_carts_are_per_user(self, test_client: TestClient, user_headers, make_headers):
        test_client.post("/cart/items", json={"product_id": "p1", "quantity": 1}, headers=user_headers)
        other = make_headers("u2")

        assert test_client.get("/cart", headers=other).json()["data"]["items"] == []
        assert test_client.delete("/cart", headers=other).status_code == 404
        assert test_client.get("/cart/snapshot", headers=user_headers).status_code == 200


class TestAdministration:

    def test_list_all_carts(self, test_client: TestClient, admin_headers, make_headers):
        test_client.post("/cart/items", json={"product_id": "p1", "quantity": 2}, headers=make_headers("u1"))
        test_client.post("/cart/items", json={"product_id": "p3", "quantity": 1}, headers=make_headers("u2"))

        response = test_client.get("/admin/carts", headers=admin_headers)

        assert response.status_code == 200
        carts = {c["user_id"]: c for c in response.json()["data"]}
        assert set(carts) == {"u1", "u2"}
        assert money(carts["u1"]["total"]) == Decimal("20.0")
        assert carts["u2"]["items"][0]["product"]["name"] == "Monitor"

    def test_delete_by_owner(self, test_client: TestClient, admin_headers, make_headers):
        test_client.post("/cart/items", json={"product_id": "p1", "quantity": 2}, headers=make_headers("u2"))

        response = test_client.delete("/admin/carts/u2", headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["data"] == {"user_id": "u2"}
        assert test_client.get("/cart/snapshot", headers=make_headers("u2")).status_code == 404
        assert test_client.delete("/admin/carts/u2", headers=admin_headers).status_code == 404


class TestHealth:

    def test_health_with_memory_collaborators(self, test_client: TestClient):
        response = test_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["service"] == "cart-service"
        assert body["status"] == "healthy"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
