import os
import tempfile

os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="fabric-uploads-")
os.environ["SEED_SAMPLE_PRODUCTS"] = "false"

import mongomock
import pytest
from fastapi.testclient import TestClient

from database import ensure_indexes, get_db
from main import app
from schemas import Product
from seed import seed_admin, seed_categories
from storage import Storage

ADMIN = {"username": "admin", "password": "admin123"}


@pytest.fixture
def mongo_db():
    database = mongomock.MongoClient()["fabricshop_test"]
    ensure_indexes(database)
    seed_categories(database)
    seed_admin(database, username=ADMIN["username"], password=ADMIN["password"], email="admin@example.com")
    return database


@pytest.fixture
def storage(mongo_db):
    return Storage(mongo_db)


@pytest.fixture
def make_client(mongo_db):
    app.dependency_overrides[get_db] = lambda: mongo_db
    clients = []

    def factory():
        c = TestClient(app)
        clients.append(c)
        return c

    yield factory
    for c in clients:
        c.close()
    app.dependency_overrides.clear()


@pytest.fixture
def client(make_client):
    return make_client()


@pytest.fixture
def admin_client(make_client):
    c = make_client()
    res = c.post("/api/auth/login", json=ADMIN)
    assert res.status_code == 200, res.text
    return c


def register(c, username="priya", email=None, password="secret123"):
    res = c.post("/api/users/register", json={
        "username": username,
        "email": email or f"{username}@example.com",
        "password": password,
    })
    assert res.status_code == 201, res.text
    return res.json()["user"]


@pytest.fixture
def register_user():
    return register


@pytest.fixture
def customer_client(make_client):
    c = make_client()
    register(c)
    return c


@pytest.fixture
def make_product(storage):
    counter = {"n": 0}

    def factory(**overrides):
        counter["n"] += 1
        data = dict(
            name=f"Fabric {counter['n']}",
            description="Soft cotton fabric",
            price=49900,
            image_url="https://example.com/fabric.jpg",
            category="frock",
            stock=10,
            sku=f"FB-T-{counter['n']:03d}",
        )
        data.update(overrides)
        return storage.create_product(Product(**data))

    return factory
