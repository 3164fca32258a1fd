def category_by_name(c, name):
    return next(cat for cat in c.get("/api/categories").json() if cat["name"] == name)


def test_default_categories_listed(client):
    names = [c["name"] for c in client.get("/api/categories").json()]
    assert names == ["frock", "lehenga", "kurta", "net", "cutpiece"]


def test_creating_product_increments_count(admin_client):
    before = category_by_name(admin_client, "kurta")["product_count"]
    res = admin_client.post("/api/products", json={
        "name": "Handloom Kurta Fabric",
        "description": "Handloom weave",
        "price": 59900,
        "image_url": "https://example.com/kurta.jpg",
        "category": "kurta",
        "stock": 12,
        "sku": "FB-KR-003",
    })
    assert res.status_code == 201
    assert category_by_name(admin_client, "kurta")["product_count"] == before + 1


def test_count_follows_category_change_and_deactivation(admin_client, make_product):
    product = make_product(category="frock")
    assert category_by_name(admin_client, "frock")["product_count"] == 1

    admin_client.put(f"/api/products/{product['id']}", json={"category": "net"})
    assert category_by_name(admin_client, "frock")["product_count"] == 0
    assert category_by_name(admin_client, "net")["product_count"] == 1

    admin_client.put(f"/api/products/{product['id']}", json={"is_active": False})
    assert category_by_name(admin_client, "net")["product_count"] == 0


def test_get_category(client):
    cat = category_by_name(client, "net")
    res = client.get(f"/api/categories/{cat['id']}")
    assert res.status_code == 200
    assert res.json()["name"] == "net"
    assert client.get("/api/categories/5f1d7f3e9b1e8a3d2c4b6a10").status_code == 404


def test_delete_category_with_products_rejected(admin_client, make_product):
    make_product(category="lehenga", is_active=False)
    cat = category_by_name(admin_client, "lehenga")
    res = admin_client.delete(f"/api/categories/{cat['id']}")
    assert res.status_code == 409
    assert admin_client.get(f"/api/categories/{cat['id']}").status_code == 200


def test_delete_and_recreate_empty_category(admin_client):
    cat = category_by_name(admin_client, "cutpiece")
    assert admin_client.delete(f"/api/categories/{cat['id']}").status_code == 200
    assert admin_client.get(f"/api/categories/{cat['id']}").status_code == 404

    res = admin_client.post("/api/categories", json={"name": "cutpiece", "description": "Remnants"})
    assert res.status_code == 201
    assert res.json()["product_count"] == 0


def test_duplicate_category_rejected(admin_client):
    res = admin_client.post("/api/categories", json={"name": "frock"})
    assert res.status_code == 409


def test_unknown_category_name_rejected(admin_client):
    res = admin_client.post("/api/categories", json={"name": "saree"})
    assert res.status_code == 400


def test_update_category_description(admin_client):
    cat = category_by_name(admin_client, "net")
    res = admin_client.put(f"/api/categories/{cat['id']}", json={"description": "Sheer fabrics"})
    assert res.status_code == 200
    assert res.json()["description"] == "Sheer fabrics"


def test_rename_category_with_products_rejected(admin_client, make_product):
    cat = category_by_name(admin_client, "cutpiece")
    admin_client.delete(f"/api/categories/{category_by_name(admin_client, 'net')['id']}")
    make_product(category="cutpiece")
    res = admin_client.put(f"/api/categories/{cat['id']}", json={"name": "net"})
    assert res.status_code == 409


def test_category_writes_require_admin(customer_client):
    cat = category_by_name(customer_client, "net")
    assert customer_client.delete(f"/api/categories/{cat['id']}").status_code == 403
