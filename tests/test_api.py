from datetime import datetime, timedelta, timezone

import pytest

from storefront.models.order import STORE_PICKUP_ADDRESS


def _create_category(client, headers, name="Skin Care", **extra):
    resp = client.post("/api/categories", json={"name": name, **extra}, headers=headers)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()["data"]


def _create_product(client, headers, category_id, name="Hydrating Serum", price_cents=2000, stock=5, **extra):
    body = {
        "name": name,
        "description": f"{name} description",
        "price_cents": price_cents,
        "category_id": category_id,
        "brand": "Aurora",
        "stock": stock,
        **extra,
    }
    resp = client.post("/api/products", json=body, headers=headers)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()["data"]


@pytest.fixture
def catalog(client, admin_headers):
    category = _create_category(client, admin_headers)
    serum = _create_product(client, admin_headers, category["id"])
    cleanser = _create_product(
        client, admin_headers, category["id"], name="Foaming Cleanser", price_cents=1000, stock=0
    )
    return {"category": category, "serum": serum, "cleanser": cleanser}


# ------------------------------------------------------------------ #
# Auth                                                                 #
# ------------------------------------------------------------------ #
def test_register_returns_token_and_user(client, metrics):
    resp = client.post(
        "/api/auth/register",
        json={"first_name": "Sami", "last_name": "Trabelsi", "email": "Sami@Example.com", "password": "secret123"},
    )

    assert resp.status_code == 201
    body = resp.get_json()
    assert body["success"] is True
    assert body["data"]["token"]
    assert body["data"]["user"]["email"] == "sami@example.com"
    assert "hashed_password" not in body["data"]["user"]
    assert metrics.registry.get_sample_value("user_registrations_total") == 1.0


def test_register_duplicate_email_conflicts(client, user_headers):
    resp = client.post(
        "/api/auth/register",
        json={"first_name": "A", "last_name": "B", "email": "amira@example.com", "password": "secret123"},
    )

    assert resp.status_code == 409
    assert resp.get_json()["error"]["code"] == "CONFLICT"


def test_register_validates_body(client):
    resp = client.post("/api/auth/register", json={"first_name": "A", "email": "not-an-email", "password": "x"})

    assert resp.status_code == 400
    error = resp.get_json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    assert {"last_name", "email", "password"} <= set(error["details"]["field_errors"])


def test_register_always_creates_customers(client):
    body = {"first_name": "Sami", "last_name": "T", "email": "sami@example.com", "password": "secret123"}

    resp = client.post("/api/auth/register", json={**body, "role": "admin"})
    assert resp.status_code == 400
    assert "role" in resp.get_json()["error"]["details"]["field_errors"]

    user = client.post("/api/auth/register", json=body).get_json()["data"]["user"]
    assert user["role"] == "customer"
    assert user["is_admin"] is False


def test_login_and_me(client, user_headers):
    resp = client.post("/api/auth/login", json={"email": "amira@example.com", "password": "secret123"})
    assert resp.status_code == 200
    token = resp.get_json()["data"]["token"]

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.get_json()["data"]["first_name"] == "Amira"


def test_login_with_wrong_password(client, user_headers):
    resp = client.post("/api/auth/login", json={"email": "amira@example.com", "password": "wrong-pass"})

    assert resp.status_code == 401
    assert resp.get_json()["error"]["code"] == "INVALID_CREDENTIALS"


@pytest.mark.parametrize(
    "headers, code",
    [
        ({}, "NO_TOKEN"),
        ({"Authorization": "Token abc"}, "NO_TOKEN"),
        ({"Authorization": "Bearer not-a-jwt"}, "INVALID_TOKEN"),
    ],
)
def test_me_requires_valid_token(client, headers, code):
    resp = client.get("/api/auth/me", headers=headers)

    assert resp.status_code == 401
    body = resp.get_json()
    assert body["success"] is False
    assert body["error"]["code"] == code
    assert "timestamp" in body


# ------------------------------------------------------------------ #
# Categories                                                           #
# ------------------------------------------------------------------ #
def test_category_crud(client, admin_headers):
    created = _create_category(client, admin_headers, "Sun Care", sort_order=2)
    assert created["slug"] == "sun-care"

    listed = client.get("/api/categories").get_json()["data"]
    assert [c["slug"] for c in listed["items"]] == ["sun-care"]
    assert listed["items"][0]["product_count"] == 0

    resp = client.put(f"/api/categories/{created['id']}", json={"name": "Sun Protection"}, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.get_json()["data"]["slug"] == "sun-protection"

    assert client.get("/api/categories/sun-protection").status_code == 200
    assert client.delete(f"/api/categories/{created['id']}", headers=admin_headers).status_code == 200
    assert client.get("/api/categories/sun-protection").status_code == 404


def test_duplicate_category_name_conflicts(client, admin_headers):
    _create_category(client, admin_headers, "Hair Care")
    resp = client.post("/api/categories", json={"name": "Hair Care"}, headers=admin_headers)
    assert resp.status_code == 409


def test_category_in_use_cannot_be_deleted(client, admin_headers, catalog):
    resp = client.delete(f"/api/categories/{catalog['category']['id']}", headers=admin_headers)

    assert resp.status_code == 422
    assert resp.get_json()["error"]["details"]["violated_rule"] == "category_in_use"


def test_category_admin_routes_reject_customers(client, user_headers):
    resp = client.post("/api/categories", json={"name": "Body Care"}, headers=user_headers)
    assert resp.status_code == 403
    assert resp.get_json()["error"]["code"] == "FORBIDDEN"


def test_category_name_needs_a_slug(client, admin_headers):
    resp = client.post("/api/categories", json={"name": "!!!"}, headers=admin_headers)

    assert resp.status_code == 400
    assert "name" in resp.get_json()["error"]["details"]["field_errors"]

    created = _create_category(client, admin_headers, "Body Care")
    resp = client.put(f"/api/categories/{created['id']}", json={"name": "--"}, headers=admin_headers)
    assert resp.status_code == 400


def test_category_update_with_missing_parent_is_404(client, admin_headers):
    created = _create_category(client, admin_headers, "Body Care")

    resp = client.put(f"/api/categories/{created['id']}", json={"parent_id": 9999}, headers=admin_headers)

    assert resp.status_code == 404
    assert client.get("/api/categories/body-care").get_json()["data"]["parent_id"] is None


@pytest.mark.parametrize("depth", [0, 1, 2])
def test_category_update_rejects_parent_cycles(client, admin_headers, depth):
    root = _create_category(client, admin_headers, "Level 0")
    chain = [root]
    for level in range(1, depth + 1):
        chain.append(_create_category(client, admin_headers, f"Level {level}", parent_id=chain[-1]["id"]))

    resp = client.put(
        f"/api/categories/{root['id']}", json={"parent_id": chain[-1]["id"]}, headers=admin_headers
    )

    assert resp.status_code == 422
    assert resp.get_json()["error"]["details"]["violated_rule"] == "category_parent_cycle"
    assert client.get("/api/categories/level-0").get_json()["data"]["parent_id"] is None


def test_category_can_move_under_a_sibling(client, admin_headers):
    root = _create_category(client, admin_headers, "Care")
    face = _create_category(client, admin_headers, "Face", parent_id=root["id"])
    lips = _create_category(client, admin_headers, "Lips", parent_id=root["id"])

    resp = client.put(f"/api/categories/{lips['id']}", json={"parent_id": face["id"]}, headers=admin_headers)

    assert resp.status_code == 200
    assert resp.get_json()["data"]["parent_id"] == face["id"]


# ------------------------------------------------------------------ #
# Products                                                             #
# ------------------------------------------------------------------ #
def test_list_products_filters_and_paginates(client, catalog):
    body = client.get("/api/products").get_json()["data"]
    assert body["pagination"]["total"] == 2

    in_stock = client.get("/api/products?in_stock=true").get_json()["data"]
    assert [p["name"] for p in in_stock["items"]] == ["Hydrating Serum"]

    cheap = client.get("/api/products?max_price_cents=1500").get_json()["data"]
    assert [p["name"] for p in cheap["items"]] == ["Foaming Cleanser"]

    search = client.get("/api/products?q=serum").get_json()["data"]
    assert [p["name"] for p in search["items"]] == ["Hydrating Serum"]

    by_category = client.get("/api/products?category=skin-care").get_json()["data"]
    assert by_category["pagination"]["total"] == 2

    page = client.get("/api/products?page=2&limit=1").get_json()["data"]
    assert len(page["items"]) == 1
    assert page["pagination"]["pages"] == 2
    assert page["pagination"]["has_more"] is False


@pytest.mark.parametrize(
    "query",
    ["page=0", "limit=500", "q=a", "min_price_cents=500&max_price_cents=100", "page=abc"],
)
def test_list_products_rejects_bad_query(client, query):
    resp = client.get(f"/api/products?{query}")
    assert resp.status_code == 400
    assert resp.get_json()["error"]["code"] == "VALIDATION_ERROR"


def test_unknown_category_filter_is_404(client, catalog):
    assert client.get("/api/products?category=missing").status_code == 404


def test_featured_excludes_out_of_stock(client, catalog):
    items = client.get("/api/products/featured").get_json()["data"]["items"]
    assert [p["name"] for p in items] == ["Hydrating Serum"]


def test_sale_lists_active_discounts(client, admin_headers, catalog):
    now = datetime.now(timezone.utc)
    _create_product(
        client,
        admin_headers,
        catalog["category"]["id"],
        name="Sunscreen",
        price_cents=4000,
        discount_percentage=25,
        discount_starts_at=(now - timedelta(days=1)).isoformat(),
        discount_ends_at=(now + timedelta(days=1)).isoformat(),
    )
    _create_product(
        client,
        admin_headers,
        catalog["category"]["id"],
        name="Old Promo",
        discount_percentage=50,
        discount_ends_at=(now - timedelta(days=1)).isoformat(),
    )

    items = client.get("/api/products/sale").get_json()["data"]["items"]

    assert [p["name"] for p in items] == ["Sunscreen"]
    assert items[0]["discounted_price_cents"] == 3000


def test_discount_window_must_be_ordered(client, admin_headers, catalog):
    now = datetime.now(timezone.utc)
    resp = client.post(
        "/api/products",
        json={
            "name": "Bad Promo",
            "description": "x",
            "price_cents": 100,
            "category_id": catalog["category"]["id"],
            "brand": "X",
            "stock": 1,
            "discount_percentage": 10,
            "discount_starts_at": now.isoformat(),
            "discount_ends_at": (now - timedelta(days=1)).isoformat(),
        },
        headers=admin_headers,
    )
    assert resp.status_code == 400


def test_get_product_counts_view(client, metrics, catalog):
    resp = client.get(f"/api/products/{catalog['serum']['id']}")

    assert resp.status_code == 200
    assert resp.get_json()["data"]["category"] == "skin-care"
    assert metrics.registry.get_sample_value("product_views_total") == 1.0


def test_get_missing_product_is_404(client):
    resp = client.get("/api/products/999")
    assert resp.status_code == 404
    assert resp.get_json()["error"]["code"] == "NOT_FOUND"


def test_update_and_delete_product(client, admin_headers, catalog):
    product_id = catalog["serum"]["id"]

    resp = client.put(f"/api/products/{product_id}", json={"stock": 12}, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.get_json()["data"]["stock"] == 12

    resp = client.delete(f"/api/products/{product_id}", headers=admin_headers)
    assert resp.get_json()["data"]["deleted"] is True
    assert client.get(f"/api/products/{product_id}").status_code == 404


# ------------------------------------------------------------------ #
# Cart                                                                 #
# ------------------------------------------------------------------ #
def test_cart_lifecycle(client, user_headers, metrics, catalog):
    product_id = catalog["serum"]["id"]

    empty = client.get("/api/cart", headers=user_headers).get_json()["data"]
    assert empty["is_empty"] is True

    added = client.post("/api/cart/items", json={"product_id": product_id, "quantity": 2}, headers=user_headers)
    assert added.status_code == 201
    assert added.get_json()["data"]["total_cents"] == 4000

    again = client.post("/api/cart/items", json={"product_id": product_id}, headers=user_headers)
    assert again.get_json()["data"]["items"][0]["quantity"] == 3

    updated = client.put(f"/api/cart/items/{product_id}", json={"quantity": 1}, headers=user_headers)
    assert updated.get_json()["data"]["total_quantity"] == 1

    removed = client.put(f"/api/cart/items/{product_id}", json={"quantity": 0}, headers=user_headers)
    assert removed.get_json()["data"]["is_empty"] is True

    client.post("/api/cart/items", json={"product_id": product_id}, headers=user_headers)
    cleared = client.delete("/api/cart", headers=user_headers)
    assert cleared.get_json()["data"]["is_empty"] is True

    assert metrics.registry.get_sample_value("cart_operations_total", {"operation": "add"}) == 3.0
    assert metrics.registry.get_sample_value("cart_operations_total", {"operation": "update"}) == 2.0
    assert metrics.registry.get_sample_value("cart_operations_total", {"operation": "clear"}) == 1.0


def test_cart_rejects_quantity_above_stock(client, user_headers, catalog):
    resp = client.post(
        "/api/cart/items", json={"product_id": catalog["serum"]["id"], "quantity": 6}, headers=user_headers
    )
    assert resp.status_code == 422
    assert resp.get_json()["error"]["details"]["violated_rule"] == "insufficient_stock"


def test_cart_rejects_out_of_range_quantity(client, user_headers, catalog):
    resp = client.post(
        "/api/cart/items", json={"product_id": catalog["serum"]["id"], "quantity": 100}, headers=user_headers
    )
    assert resp.status_code == 400


def test_removing_missing_cart_item_is_404(client, user_headers, catalog):
    resp = client.delete(f"/api/cart/items/{catalog['serum']['id']}", headers=user_headers)
    assert resp.status_code == 404


def test_cart_requires_login(client):
    assert client.get("/api/cart").status_code == 401


# ------------------------------------------------------------------ #
# Orders                                                               #
# ------------------------------------------------------------------ #
def _place_order(client, headers, product_id, quantity=2, **body):
    client.post("/api/cart/items", json={"product_id": product_id, "quantity": quantity}, headers=headers)
    resp = client.post("/api/orders", json=body, headers=headers)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()["data"]


def test_place_pickup_order(client, user_headers, metrics, catalog):
    product_id = catalog["serum"]["id"]

    order = _place_order(client, user_headers, product_id)

    assert order["status"] == "pending"
    assert order["delivery_type"] == "pickup"
    assert order["shipping_address"] == STORE_PICKUP_ADDRESS
    assert order["subtotal_cents"] == 4000
    assert order["tax_cents"] == 720
    assert order["total_cents"] == 4720
    assert order["items"][0]["product_name"] == "Hydrating Serum"
    assert order["status_history"][0]["status"] == "pending"

    assert client.get(f"/api/products/{product_id}").get_json()["data"]["stock"] == 3
    assert client.get("/api/cart", headers=user_headers).get_json()["data"]["is_empty"] is True
    assert metrics.registry.get_sample_value("orders_total", {"status": "pending"}) == 1.0


def test_delivery_order_requires_address(client, user_headers, catalog):
    client.post("/api/cart/items", json={"product_id": catalog["serum"]["id"]}, headers=user_headers)

    resp = client.post("/api/orders", json={"delivery_type": "delivery"}, headers=user_headers)

    assert resp.status_code == 400


def test_delivery_order_keeps_address(client, user_headers, catalog):
    address = {"street": "12 Rue de Marseille", "city": "Tunis", "state": "Tunis", "postal_code": "1001"}

    order = _place_order(
        client, user_headers, catalog["serum"]["id"], quantity=1, delivery_type="delivery", shipping_address=address
    )

    assert order["shipping_address"]["street"] == "12 Rue de Marseille"
    assert order["shipping_address"]["country"] == "Tunisia"


def test_order_from_empty_cart_is_rejected(client, user_headers):
    resp = client.post("/api/orders", json={}, headers=user_headers)

    assert resp.status_code == 422
    assert resp.get_json()["error"]["details"]["violated_rule"] == "empty_cart"


def test_list_get_and_stats(client, user_headers, catalog):
    order = _place_order(client, user_headers, catalog["serum"]["id"])

    listed = client.get("/api/orders", headers=user_headers).get_json()["data"]
    assert listed["pagination"]["total"] == 1
    assert "items" not in listed["items"][0]

    detail = client.get(f"/api/orders/{order['id']}", headers=user_headers).get_json()["data"]
    assert len(detail["items"]) == 1

    stats = client.get("/api/orders/stats", headers=user_headers).get_json()["data"]
    assert stats["total_orders"] == 1
    assert stats["total_spent_cents"] == 4720

    assert client.get("/api/orders?status=bogus", headers=user_headers).status_code == 400


def test_other_users_orders_are_hidden(client, user_headers, catalog):
    order = _place_order(client, user_headers, catalog["serum"]["id"])
    other = client.post(
        "/api/auth/register",
        json={"first_name": "Leila", "last_name": "K", "email": "leila@example.com", "password": "secret123"},
    ).get_json()["data"]["token"]

    resp = client.get(f"/api/orders/{order['id']}", headers={"Authorization": f"Bearer {other}"})
    assert resp.status_code == 404


def test_cancel_restores_stock(client, user_headers, catalog):
    product_id = catalog["serum"]["id"]
    order = _place_order(client, user_headers, product_id)

    resp = client.put(f"/api/orders/{order['id']}/cancel", json={"reason": "Changed my mind"}, headers=user_headers)

    assert resp.status_code == 200
    data = resp.get_json()["data"]
    assert data["status"] == "cancelled"
    assert data["status_history"][-1]["note"] == "Changed my mind"
    assert client.get(f"/api/products/{product_id}").get_json()["data"]["stock"] == 5

    again = client.put(f"/api/orders/{order['id']}/cancel", headers=user_headers)
    assert again.status_code == 422
    assert again.get_json()["error"]["details"]["violated_rule"] == "order_not_pending"

    stats = client.get("/api/orders/stats", headers=user_headers).get_json()["data"]
    assert stats["total_spent_cents"] == 0


def test_admin_moves_order_to_delivered(client, user_headers, admin_headers, catalog):
    order = _place_order(client, user_headers, catalog["serum"]["id"])
    url = f"/api/orders/{order['id']}/status"

    for status in ("processing", "shipped", "delivered"):
        resp = client.put(url, json={"status": status}, headers=admin_headers)
        assert resp.status_code == 200, resp.get_json()

    data = resp.get_json()["data"]
    assert data["status"] == "delivered"
    assert data["payment"]["status"] == "completed"
    assert [h["status"] for h in data["status_history"]] == ["pending", "processing", "shipped", "delivered"]

    resp = client.put(url, json={"status": "cancelled"}, headers=admin_headers)
    assert resp.status_code == 422
    assert resp.get_json()["error"]["details"]["violated_rule"] == "invalid_status_transition"


def test_customer_cannot_cancel_processing_order(client, user_headers, admin_headers, catalog):
    order = _place_order(client, user_headers, catalog["serum"]["id"])
    client.put(f"/api/orders/{order['id']}/status", json={"status": "processing"}, headers=admin_headers)

    resp = client.put(f"/api/orders/{order['id']}/cancel", headers=user_headers)
    assert resp.status_code == 422


def test_customer_cannot_change_status(client, user_headers, catalog):
    order = _place_order(client, user_headers, catalog["serum"]["id"])
    resp = client.put(f"/api/orders/{order['id']}/status", json={"status": "shipped"}, headers=user_headers)
    assert resp.status_code == 403


def test_ordered_product_is_deactivated_not_deleted(client, user_headers, admin_headers, catalog):
    product_id = catalog["serum"]["id"]
    _place_order(client, user_headers, product_id, quantity=1)

    resp = client.delete(f"/api/products/{product_id}", headers=admin_headers)

    assert resp.get_json()["data"]["deleted"] is False
    assert client.get(f"/api/products/{product_id}").status_code == 404


# ------------------------------------------------------------------ #
# Profile and wishlist                                                 #
# ------------------------------------------------------------------ #
def test_profile_read_and_update(client, user_headers):
    assert client.get("/api/auth/profile", headers=user_headers).get_json()["data"]["wishlist"] == []

    address = {"street": "1 Rue de Rome", "city": "Tunis", "state": "Tunis", "postal_code": "1000", "is_default": True}
    resp = client.put(
        "/api/auth/profile",
        json={"first_name": " Amira ", "phone_number": "+216 20 000 000", "addresses": [address]},
        headers=user_headers,
    )

    assert resp.status_code == 200
    data = resp.get_json()["data"]
    assert data["first_name"] == "Amira"
    assert data["last_name"] == "Ben Salah"
    assert data["phone_number"] == "+216 20 000 000"
    assert data["addresses"] == [{**address, "country": "Tunisia"}]
    assert data["role"] == "customer"


def test_profile_password_change_takes_effect(client, user_headers):
    resp = client.put("/api/auth/profile", json={"password": "new-secret"}, headers=user_headers)
    assert resp.status_code == 200

    old = client.post("/api/auth/login", json={"email": "amira@example.com", "password": "secret123"})
    new = client.post("/api/auth/login", json={"email": "amira@example.com", "password": "new-secret"})
    assert old.status_code == 401
    assert new.status_code == 200


def test_profile_cannot_change_role_or_take_an_email(client, user_headers, admin_headers):
    resp = client.put("/api/auth/profile", json={"role": "admin"}, headers=user_headers)
    assert resp.status_code == 400

    resp = client.put("/api/auth/profile", json={"email": "admin@example.com"}, headers=user_headers)
    assert resp.status_code == 409


def test_profile_allows_one_default_address(client, user_headers):
    address = {"street": "1 Rue", "city": "Tunis", "state": "Tunis", "postal_code": "1000", "is_default": True}
    resp = client.put("/api/auth/profile", json={"addresses": [address, address]}, headers=user_headers)

    assert resp.status_code == 400
    assert "addresses" in resp.get_json()["error"]["details"]["field_errors"]


def test_wishlist_add_list_remove(client, user_headers, catalog):
    serum, cleanser = catalog["serum"]["id"], catalog["cleanser"]["id"]

    client.post(f"/api/auth/wishlist/{serum}", headers=user_headers)
    resp = client.post(f"/api/auth/wishlist/{cleanser}", headers=user_headers)
    assert [p["id"] for p in resp.get_json()["data"]["items"]] == [serum, cleanser]

    # Adding twice keeps a single entry
    resp = client.post(f"/api/auth/wishlist/{serum}", headers=user_headers)
    assert resp.get_json()["data"]["count"] == 2

    resp = client.delete(f"/api/auth/wishlist/{serum}", headers=user_headers)
    assert [p["id"] for p in resp.get_json()["data"]["items"]] == [cleanser]
    assert client.get("/api/auth/wishlist", headers=user_headers).get_json()["data"]["count"] == 1
    assert client.delete(f"/api/auth/wishlist/{serum}", headers=user_headers).status_code == 404


def test_wishlist_rejects_unknown_products_and_hides_removed_ones(client, user_headers, admin_headers, catalog):
    assert client.post("/api/auth/wishlist/9999", headers=user_headers).status_code == 404

    serum = catalog["serum"]["id"]
    client.post(f"/api/auth/wishlist/{serum}", headers=user_headers)
    client.delete(f"/api/products/{serum}", headers=admin_headers)

    assert client.get("/api/auth/wishlist", headers=user_headers).get_json()["data"]["items"] == []


def test_wishlist_requires_login(client):
    assert client.get("/api/auth/wishlist").status_code == 401


# ------------------------------------------------------------------ #
# Admin                                                                #
# ------------------------------------------------------------------ #
def _new_user(client, headers, email="nour@example.com", **extra):
    body = {"first_name": "Nour", "last_name": "Haddad", "email": email, "password": "secret123", **extra}
    resp = client.post("/api/admin/users", json=body, headers=headers)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()["data"]


def _own_id(client, headers):
    return client.get("/api/auth/me", headers=headers).get_json()["data"]["id"]


def test_admin_routes_reject_customers(client, user_headers):
    for path in ("/api/admin/users", "/api/admin/stats", "/api/admin/orders"):
        resp = client.get(path, headers=user_headers)
        assert resp.status_code == 403, path


def test_admin_user_crud(client, admin_headers, user_headers):
    created = _new_user(client, admin_headers, role="admin")
    assert created["is_admin"] is True

    listed = client.get("/api/admin/users?role=customer", headers=admin_headers).get_json()["data"]
    assert [u["email"] for u in listed["items"]] == ["amira@example.com"]
    assert listed["pagination"]["total"] == 1

    found = client.get("/api/admin/users?search=nour", headers=admin_headers).get_json()["data"]
    assert [u["id"] for u in found["items"]] == [created["id"]]

    resp = client.put(f"/api/admin/users/{created['id']}", json={"role": "customer"}, headers=admin_headers)
    assert resp.get_json()["data"]["role"] == "customer"
    assert resp.get_json()["data"]["is_admin"] is False

    resp = client.delete(f"/api/admin/users/{created['id']}", headers=admin_headers)
    assert resp.get_json()["data"]["deleted"] is True
    assert client.get(f"/api/admin/users/{created['id']}", headers=admin_headers).status_code == 404


def test_admin_create_user_validates_and_conflicts(client, admin_headers, user_headers):
    resp = client.post(
        "/api/admin/users",
        json={"first_name": "X", "last_name": "Y", "email": "x@example.com", "password": "secret123", "role": "owner"},
        headers=admin_headers,
    )
    assert resp.status_code == 400

    resp = client.post(
        "/api/admin/users",
        json={"first_name": "X", "last_name": "Y", "email": "amira@example.com", "password": "secret123"},
        headers=admin_headers,
    )
    assert resp.status_code == 409


def test_deactivated_user_cannot_log_in(client, admin_headers):
    created = _new_user(client, admin_headers)
    client.put(f"/api/admin/users/{created['id']}", json={"is_active": False}, headers=admin_headers)

    resp = client.post("/api/auth/login", json={"email": "nour@example.com", "password": "secret123"})
    assert resp.status_code == 403


@pytest.mark.parametrize("body", [{"role": "customer"}, {"is_active": False}])
def test_admin_cannot_demote_self(client, admin_headers, body):
    admin_id = _own_id(client, admin_headers)

    resp = client.put(f"/api/admin/users/{admin_id}", json=body, headers=admin_headers)

    assert resp.status_code == 422
    assert resp.get_json()["error"]["details"]["violated_rule"] == "cannot_demote_self"


def test_admin_cannot_delete_self(client, admin_headers):
    admin_id = _own_id(client, admin_headers)

    resp = client.delete(f"/api/admin/users/{admin_id}", headers=admin_headers)

    assert resp.status_code == 422
    assert resp.get_json()["error"]["details"]["violated_rule"] == "cannot_delete_self"


def test_user_with_orders_is_deactivated_not_deleted(client, user_headers, admin_headers, catalog):
    _place_order(client, user_headers, catalog["serum"]["id"], quantity=1)
    user_id = _own_id(client, user_headers)

    resp = client.delete(f"/api/admin/users/{user_id}", headers=admin_headers)

    assert resp.get_json()["data"]["deleted"] is False
    user = client.get(f"/api/admin/users/{user_id}", headers=admin_headers).get_json()["data"]
    assert user["is_active"] is False


def test_admin_lists_every_order(client, user_headers, admin_headers, catalog):
    _place_order(client, user_headers, catalog["serum"]["id"], quantity=1)
    token = client.post(
        "/api/auth/register",
        json={"first_name": "Yassine", "last_name": "K", "email": "yassine@example.com", "password": "secret123"},
    ).get_json()["data"]["token"]
    other = {"Authorization": f"Bearer {token}"}
    second = _place_order(client, other, catalog["serum"]["id"], quantity=1)
    client.put(f"/api/orders/{second['id']}/status", json={"status": "processing"}, headers=admin_headers)

    data = client.get("/api/admin/orders", headers=admin_headers).get_json()["data"]
    assert data["pagination"]["total"] == 2
    assert {o["user"]["email"] for o in data["items"]} == {"amira@example.com", "yassine@example.com"}

    processing = client.get("/api/admin/orders?status=processing", headers=admin_headers).get_json()["data"]
    assert [o["id"] for o in processing["items"]] == [second["id"]]
    assert client.get("/api/admin/orders?status=lost", headers=admin_headers).status_code == 400


def test_admin_dashboard_stats(client, user_headers, admin_headers, catalog):
    delivered = _place_order(client, user_headers, catalog["serum"]["id"], quantity=2)
    for status in ("processing", "shipped", "delivered"):
        client.put(f"/api/orders/{delivered['id']}/status", json={"status": status}, headers=admin_headers)
    cancelled = _place_order(client, user_headers, catalog["serum"]["id"], quantity=1)
    client.put(f"/api/orders/{cancelled['id']}/cancel", headers=user_headers)

    stats = client.get("/api/admin/stats", headers=admin_headers).get_json()["data"]

    assert stats["total_users"] == 2
    assert stats["customers"] == 1
    assert stats["admins"] == 1
    assert stats["total_products"] == 2
    assert stats["total_orders"] == 2
    assert stats["orders_by_status"] == {"delivered": 1, "cancelled": 1}
    # 2 x 2000 + 18% tax, only the paid order counts
    assert stats["revenue_cents"] == 4720
    assert stats["top_products"] == [
        {"product_id": catalog["serum"]["id"], "name": "Hydrating Serum", "total_sold": 2, "revenue_cents": 4000}
    ]
    assert [o["id"] for o in stats["recent_orders"]] == [cancelled["id"], delivered["id"]]
    assert stats["recent_orders"][0]["user"]["first_name"] == "Amira"


# ------------------------------------------------------------------ #
# Health, metrics and error envelope                                   #
# ------------------------------------------------------------------ #
def test_health_reports_connected(client):
    resp = client.get("/health")

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["database"] == "connected"
    assert body["connection_state"] == "connected"


def test_health_returns_503_when_database_is_gone(client, connector):
    connector.close()

    resp = client.get("/health")

    assert resp.status_code == 503
    assert resp.get_json()["connection_state"] == "closed"


def test_metrics_endpoint_exports_prometheus_text(client, user_headers):
    client.get("/health")

    resp = client.get("/metrics")

    assert resp.status_code == 200
    assert resp.content_type.startswith("text/plain")
    text = resp.get_data(as_text=True)
    assert "http_requests_total" in text
    assert "db_connection_status" in text
    assert "users_total 1.0" in text


def test_active_connections_settles_after_requests(app, client, metrics):
    @app.get("/explode")
    def explode():
        raise RuntimeError("view crashed")

    app.config["PROPAGATE_EXCEPTIONS"] = True

    client.get("/health")
    with pytest.raises(RuntimeError):
        client.get("/explode")
    with pytest.raises(RuntimeError):
        client.get("/explode")

    assert metrics.registry.get_sample_value("active_connections") == 0.0


def test_unknown_route_uses_error_envelope(client):
    resp = client.get("/api/nothing-here")

    assert resp.status_code == 404
    body = resp.get_json()
    assert body["success"] is False
    assert body["error"]["code"] == "NOT_FOUND"


def test_wrong_method_uses_error_envelope(client):
    resp = client.patch("/api/products")
    assert resp.status_code == 405
    assert resp.get_json()["error"]["code"] == "METHOD_NOT_ALLOWED"
