import os

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import erpledger.models  # noqa: F401
from erpledger.core.config import settings
from erpledger.core.deps import get_db
from erpledger.db.base import Base
from erpledger.main import app


@pytest.fixture()
def test_context():
    original_secret = settings.secret_key
    original_allow_negative = settings.stock_allow_negative
    original_role_permissions = settings.role_permissions
    settings.secret_key = "test-secret-key"
    settings.stock_allow_negative = False
    settings.role_permissions = None

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    def override_get_db():
        db = session_local()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as client:
        yield client, session_local

    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)
    settings.secret_key = original_secret
    settings.stock_allow_negative = original_allow_negative
    settings.role_permissions = original_role_permissions


@pytest.fixture()
def db_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


def register_company(client, *, email: str, company_name: str = "Acme Trading") -> dict[str, str]:
    res = client.post(
        "/auth/register",
        json={
            "email": email,
            "password": "password123",
            "first_name": "Anna",
            "last_name": "Petrova",
            "company_name": company_name,
        },
    )
    assert res.status_code == 201, res.text
    return {"Authorization": f"Bearer {res.json()['access_token']}"}


def add_member(client, admin_headers: dict[str, str], *, email: str, role: str) -> dict[str, str]:
    res = client.post(
        "/team/members",
        json={"email": email, "password": "password123", "role": role},
        headers=admin_headers,
    )
    assert res.status_code == 201, res.text
    login = client.post("/auth/login", json={"email": email, "password": "password123"})
    assert login.status_code == 200, login.text
    return {"Authorization": f"Bearer {login.json()['access_token']}"}


def create_warehouse(client, headers: dict[str, str], name: str = "Main warehouse") -> str:
    res = client.post("/warehouses", json={"name": name}, headers=headers)
    assert res.status_code == 201, res.text
    return res.json()["id"]


def create_product(client, headers: dict[str, str], name: str = "Steel bolt M8", **extra) -> str:
    res = client.post("/products", json={"name": name, **extra}, headers=headers)
    assert res.status_code == 201, res.text
    return res.json()["id"]


def post_movement(client, headers, *, warehouse_id: str, product_id: str, movement_type: str, quantity):
    return client.post(
        "/stock-movements",
        json={
            "warehouse_id": warehouse_id,
            "product_id": product_id,
            "movement_type": movement_type,
            "quantity": quantity,
        },
        headers=headers,
    )


def stock_level(client, headers, *, warehouse_id: str, product_id: str) -> dict:
    res = client.get(
        "/stock",
        params={"warehouse_id": warehouse_id, "product_id": product_id},
        headers=headers,
    )
    assert res.status_code == 200, res.text
    items = res.json()["items"]
    assert len(items) == 1, items
    return items[0]
