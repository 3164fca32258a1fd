from config import SESSION_COOKIE


def test_register_logs_in(client, mongo_db):
    res = client.post("/api/users/register", json={
        "username": "meera",
        "email": "Meera@Example.com",
        "password": "secret123",
        "first_name": "Meera",
    })
    assert res.status_code == 201
    body = res.json()
    assert body["access_token"]
    assert body["user"]["email"] == "meera@example.com"
    assert body["user"]["is_admin"] is False
    assert "password_hash" not in body["user"]

    stored = mongo_db["user"].find_one({"username": "meera"})
    assert stored["password_hash"] != "secret123"

    status = client.get("/api/auth/status").json()
    assert status == {"is_authenticated": True, "username": "meera", "is_admin": False}


def test_register_rejects_duplicates(client, register_user):
    register_user(client, "meera")
    res = client.post("/api/users/register", json={
        "username": "meera", "email": "other@example.com", "password": "secret123",
    })
    assert res.status_code == 409
    res = client.post("/api/users/register", json={
        "username": "meera2", "email": "meera@example.com", "password": "secret123",
    })
    assert res.status_code == 409


def test_register_validation(client):
    res = client.post("/api/users/register", json={"username": "ab", "email": "nope", "password": "123"})
    assert res.status_code == 400
    fields = {e["loc"][-1] for e in res.json()["errors"]}
    assert {"username", "email", "password"} <= fields


def test_login_by_username_or_email(make_client, register_user):
    register_user(make_client(), "kavya", password="hunter22")
    c = make_client()
    assert c.post("/api/users/login", json={"username": "kavya", "password": "hunter22"}).status_code == 200
    c2 = make_client()
    res = c2.post("/api/users/login", json={"username": "kavya@example.com", "password": "hunter22"})
    assert res.status_code == 200
    assert res.json()["user"]["username"] == "kavya"
    assert c2.get("/api/users/me").json()["username"] == "kavya"


def test_login_wrong_password(make_client, register_user):
    register_user(make_client(), "kavya", password="hunter22")
    res = make_client().post("/api/users/login", json={"username": "kavya", "password": "wrong"})
    assert res.status_code == 401


def test_me_requires_login(client):
    assert client.get("/api/users/me").status_code == 401


def test_cart_survives_login(make_client, register_user, make_product):
    register_user(make_client(), "kavya", password="hunter22")
    c = make_client()
    c.post("/api/cart", json={"product_id": make_product()["id"], "quantity": 2})
    c.post("/api/users/login", json={"username": "kavya", "password": "hunter22"})
    assert c.get("/api/cart").json()["item_count"] == 2


def test_update_profile(customer_client):
    res = customer_client.put("/api/users/me", json={"city": "Pune", "zip_code": "411001"})
    assert res.status_code == 200
    assert res.json()["city"] == "Pune"
    assert customer_client.get("/api/users/me").json()["zip_code"] == "411001"


def test_profile_update_cannot_change_role(customer_client):
    customer_client.put("/api/users/me", json={"role": "admin", "city": "Surat"})
    assert customer_client.get("/api/users/me").json()["role"] == "customer"


def test_change_password(make_client, customer_client):
    url = "/api/users/change-password"
    mismatch = {"current_password": "secret123", "new_password": "newpass1", "confirm_password": "newpass2"}
    assert customer_client.post(url, json=mismatch).status_code == 400
    wrong = {"current_password": "nope", "new_password": "newpass1", "confirm_password": "newpass1"}
    assert customer_client.post(url, json=wrong).status_code == 401
    ok = {"current_password": "secret123", "new_password": "newpass1", "confirm_password": "newpass1"}
    assert customer_client.post(url, json=ok).status_code == 200

    c = make_client()
    assert c.post("/api/users/login", json={"username": "priya", "password": "newpass1"}).status_code == 200


def test_admin_login(client):
    res = client.post("/api/auth/login", json={"username": "admin", "password": "admin123"})
    assert res.status_code == 200
    assert res.json()["is_admin"] is True
    assert client.get("/api/auth/status").json()["is_admin"] is True


def test_admin_login_rejects_customers_and_bad_passwords(make_client, register_user):
    register_user(make_client(), "kavya", password="hunter22")
    c = make_client()
    assert c.post("/api/auth/login", json={"username": "kavya", "password": "hunter22"}).status_code == 403
    assert c.post("/api/auth/login", json={"username": "admin", "password": "admin"}).status_code == 401


def test_logout(customer_client):
    assert customer_client.post("/api/auth/logout").status_code == 200
    assert SESSION_COOKIE not in customer_client.cookies
    assert customer_client.get("/api/auth/status").json()["is_authenticated"] is False


def test_bearer_token(make_client, register_user):
    c = make_client()
    token = c.post("/api/users/register", json={
        "username": "api", "email": "api@example.com", "password": "secret123",
    }).json()["access_token"]

    api = make_client()
    res = api.get("/api/users/me", headers={"Authorization": f"Bearer {token}"})
    assert res.status_code == 200
    assert res.json()["username"] == "api"

    res = api.get("/api/users/me", headers={"Authorization": "Bearer garbage"})
    assert res.status_code == 401


def test_logout_revokes_bearer_token(make_client):
    c = make_client()
    token = c.post("/api/users/register", json={
        "username": "meera", "email": "meera@example.com", "password": "secret123",
    }).json()["access_token"]
    headers = {"Authorization": f"Bearer {token}"}

    api = make_client()
    assert api.get("/api/users/me", headers=headers).status_code == 200
    assert api.post("/api/auth/logout", headers=headers).status_code == 200

    assert api.get("/api/users/me", headers=headers).status_code == 401
    assert api.get("/api/auth/status", headers=headers).json()["is_authenticated"] is False
    assert c.get("/api/users/me").status_code == 401

    # logging in again issues a token for the new revision
    res = c.post("/api/users/login", json={"username": "meera", "password": "secret123"})
    assert c.get("/api/users/me").status_code == 200
    fresh = {"Authorization": f"Bearer {res.json()['access_token']}"}
    assert api.get("/api/users/me", headers=fresh).status_code == 200
