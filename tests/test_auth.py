from jose import jwt

from conftest import add_member, register_company
from erpledger.core.config import settings
from erpledger.core.security import ALGORITHM


def test_register_returns_company_scoped_tokens(test_context):
    client, _ = test_context
    headers = register_company(client, email="Owner@Example.com", company_name="Acme Trading")

    me = client.get("/auth/me", headers=headers)
    assert me.status_code == 200, me.text
    body = me.json()
    assert body["email"] == "owner@example.com"
    assert body["role"] == "admin"
    assert body["company_name"] == "Acme Trading"
    assert body["base_currency"] == settings.default_currency

    token = headers["Authorization"].split(" ", 1)[1]
    claims = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    assert claims["type"] == "access"
    assert claims["cid"] == body["company_id"]


def test_duplicate_email_is_rejected(test_context):
    client, _ = test_context
    register_company(client, email="dup@example.com")
    res = client.post(
        "/auth/register",
        json={
            "email": "DUP@example.com",
            "password": "password123",
            "first_name": "Boris",
            "last_name": "Ivanov",
            "company_name": "Other",
        },
    )
    assert res.status_code == 400, res.text
    assert res.json()["error"]["details"][0]["field"] == "email"


def test_login_refresh_and_bad_credentials(test_context):
    client, _ = test_context
    register_company(client, email="login@example.com")

    bad = client.post("/auth/login", json={"email": "login@example.com", "password": "wrong-password"})
    assert bad.status_code == 401, bad.text

    login = client.post("/auth/login", json={"email": "login@example.com", "password": "password123"})
    assert login.status_code == 200, login.text
    tokens = login.json()

    refreshed = client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert refreshed.status_code == 200, refreshed.text
    me = client.get("/auth/me", headers={"Authorization": f"Bearer {refreshed.json()['access_token']}"})
    assert me.status_code == 200, me.text

    # An access token is not accepted where a refresh token is expected.
    wrong_type = client.post("/auth/refresh", json={"refresh_token": tokens["access_token"]})
    assert wrong_type.status_code == 401, wrong_type.text


def test_swagger_token_form_login(test_context):
    client, _ = test_context
    register_company(client, email="swagger@example.com")
    res = client.post("/auth/token", data={"username": "swagger@example.com", "password": "password123"})
    assert res.status_code == 200, res.text
    assert res.json()["token_type"] == "bearer"


def test_team_members_listing(test_context):
    client, _ = test_context
    admin = register_company(client, email="lead@example.com")
    member = add_member(client, admin, email="clerk@example.com", role="accountant")

    me = client.get("/auth/me", headers=member)
    assert me.status_code == 200, me.text
    assert me.json()["role"] == "accountant"

    listed = client.get("/team/members", headers=admin)
    assert listed.status_code == 200, listed.text
    assert sorted(item["role"] for item in listed.json()["items"]) == ["accountant", "admin"]

    forbidden = client.get("/team/members", headers=member)
    assert forbidden.status_code == 403, forbidden.text
