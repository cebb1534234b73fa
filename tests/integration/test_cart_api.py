def test_guest_cart_lives_in_session(client, catalog):
    r = client.post("/api/v1/cart/items", json={"product_id": "p1", "quantity": 2})
    assert r.status_code == 200
    assert r.json()["source"] == "guest"
    client.post("/api/v1/cart/items", json={"product_id": "p1", "quantity": 1})

    cart = client.get("/api/v1/cart").json()
    assert cart["count"] == 3
    assert [i["product_id"] for i in cart["items"]] == ["p1"]


def test_unknown_product(client, catalog):
    r = client.post("/api/v1/cart/items", json={"product_id": "nope", "quantity": 1})
    assert r.status_code == 404
    assert r.json()["code"] == "PRODUCT_NOT_FOUND"


def test_non_positive_quantity_adds_one(client, catalog):
    client.post("/api/v1/cart/items", json={"product_id": "p2", "quantity": -4})
    assert client.get("/api/v1/cart").json()["count"] == 1


def test_merge_after_login(client, login, db, customer, catalog):
    db.seed("cart_items", {"user_id": customer["id"], "product_id": "p1", "quantity": 1})
    client.post("/api/v1/cart/items", json={"product_id": "p1", "quantity": 2})
    client.post("/api/v1/cart/items", json={"product_id": "p2", "quantity": 1})

    login(customer)
    r = client.post("/api/v1/cart/merge")

    assert r.status_code == 200
    body = r.json()
    assert body["source"] == "account"
    assert body["merge"] == {"merged": 2, "skipped": 0, "kept": []}
    quantities = {row["product_id"]: row["quantity"] for row in db.rows("cart_items")}
    assert quantities == {"p1": 3, "p2": 1}

    again = client.post("/api/v1/cart/merge").json()
    assert again["merge"]["merged"] == 0
    assert {row["product_id"]: row["quantity"] for row in db.rows("cart_items")} == quantities


def test_merge_requires_login(client):
    assert client.post("/api/v1/cart/merge").status_code == 401


def test_account_cart_update_and_delete(client, login, db, customer, catalog):
    login(customer)
    client.post("/api/v1/cart/items", json={"product_id": "p1", "quantity": 1})
    r = client.patch("/api/v1/cart/items/p1", json={"quantity": 5})
    assert r.json()["count"] == 5
    r = client.delete("/api/v1/cart/items/p1")
    assert r.json() == {"source": "account", "items": [], "count": 0}


def test_unreadable_account_cart_returns_503(client, login, db, customer, catalog):
    db.seed("cart_items", {"user_id": customer["id"], "product_id": "p1", "quantity": 1})
    login(customer)
    db.fail_on.add(("cart_items", "select"))

    r = client.get("/api/v1/cart")

    assert r.status_code == 503
    assert r.json()["code"] == "CART_UNAVAILABLE"
