import pytest
from fastapi import Depends
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from auth import AuthService
from database import Base
from main import app, get_auth_service, get_db


@pytest.fixture()
def client():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    def override_auth(db: Session = Depends(get_db)) -> AuthService:
        return AuthService(db, bcrypt_rounds=4)

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_auth_service] = override_auth
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def register(client: TestClient, email: str = "grace@example.com") -> dict:
    response = client.post(
        "/api/auth/register",
        json={
            "email": email,
            "password": "hopper-42",
            "first_name": "Grace",
            "last_name": "Hopper",
        },
    )
    assert response.status_code == 201
    return response.json()


def auth_header(tokens: dict) -> dict:
    return {"Authorization": f"Bearer {tokens['access_token']}"}


def test_health(client: TestClient) -> None:
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "OK"


def test_register_login_refresh_logout_flow(client: TestClient) -> None:
    registered = register(client)
    assert registered["user"]["email"] == "grace@example.com"
    assert registered["user"]["currency"] == "USD"
    assert "password_hash" not in registered["user"]

    duplicate = client.post(
        "/api/auth/register",
        json={
            "email": "GRACE@example.com",
            "password": "hopper-42",
            "first_name": "Grace",
            "last_name": "Hopper",
        },
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["code"] == "conflict"

    login = client.post(
        "/api/auth/login", json={"email": "grace@example.com", "password": "hopper-42"}
    )
    assert login.status_code == 200
    tokens = login.json()

    stale = client.post(
        "/api/auth/refresh", json={"refresh_token": registered["refresh_token"]}
    )
    assert stale.status_code == 401
    assert stale.json()["error"]["code"] == "invalid_token"

    rotated = client.post(
        "/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
    )
    assert rotated.status_code == 200
    new_tokens = rotated.json()

    out = client.post(
        "/api/auth/logout", json={"refresh_token": new_tokens["refresh_token"]}
    )
    assert out.status_code == 200
    again = client.post(
        "/api/auth/refresh", json={"refresh_token": new_tokens["refresh_token"]}
    )
    assert again.status_code == 401


def test_refresh_and_logout_without_a_body(client: TestClient) -> None:
    tokens = register(client)

    out = client.post("/api/auth/logout")
    assert out.status_code == 200
    assert out.json() == {"message": "Logged out successfully"}

    refresh = client.post("/api/auth/refresh")
    assert refresh.status_code == 401
    assert refresh.json()["error"]["code"] == "invalid_token"

    still_live = client.post(
        "/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
    )
    assert still_live.status_code == 200


def test_login_failures_share_one_response(client: TestClient) -> None:
    register(client)

    wrong_password = client.post(
        "/api/auth/login", json={"email": "grace@example.com", "password": "nope"}
    )
    unknown_email = client.post(
        "/api/auth/login", json={"email": "ghost@example.com", "password": "hopper-42"}
    )

    assert wrong_password.status_code == unknown_email.status_code == 401
    assert wrong_password.json() == unknown_email.json()
    assert wrong_password.json()["error"]["code"] == "invalid_credentials"


def test_protected_routes_require_a_bearer_token(client: TestClient) -> None:
    missing = client.get("/api/user/profile")
    assert missing.status_code == 401
    assert missing.json()["error"]["code"] == "invalid_token"

    garbage = client.get(
        "/api/user/profile", headers={"Authorization": "Bearer not-a-token"}
    )
    assert garbage.status_code == 401

    tokens = register(client)
    refresh_as_access = client.get(
        "/api/user/profile",
        headers={"Authorization": f"Bearer {tokens['refresh_token']}"},
    )
    assert refresh_as_access.status_code == 401

    ok = client.get("/api/user/profile", headers=auth_header(tokens))
    assert ok.status_code == 200
    assert ok.json()["first_name"] == "Grace"


def test_invalid_payload_is_a_validation_error(client: TestClient) -> None:
    response = client.post(
        "/api/auth/register",
        json={"email": "not-an-email", "password": "123", "first_name": "G"},
    )

    assert response.status_code == 400
    body = response.json()["error"]
    assert body["code"] == "validation_failed"
    fields = {detail["field"] for detail in body["details"]}
    assert {"email", "password", "first_name", "last_name"} <= fields


def test_transaction_crud_and_listing(client: TestClient) -> None:
    headers = auth_header(register(client))
    categories = client.get(
        "/api/categories", params={"type": "expense"}, headers=headers
    ).json()["categories"]
    food = next(c for c in categories if c["name"] == "Food & Dining")

    created = client.post(
        "/api/transactions",
        json={
            "amount": "42.50",
            "description": "Dinner",
            "type": "expense",
            "category_id": food["id"],
            "date": "2024-03-10",
        },
        headers=headers,
    )
    assert created.status_code == 201
    txn = created.json()
    assert txn["amount"] == "42.50"
    assert txn["category"]["name"] == "Food & Dining"

    mismatch = client.post(
        "/api/transactions",
        json={
            "amount": "10",
            "description": "Refund",
            "type": "income",
            "category_id": food["id"],
        },
        headers=headers,
    )
    assert mismatch.status_code == 400

    non_positive = client.post(
        "/api/transactions",
        json={
            "amount": "0",
            "description": "Nothing",
            "type": "expense",
            "category_id": food["id"],
        },
        headers=headers,
    )
    assert non_positive.status_code == 400

    updated = client.put(
        f"/api/transactions/{txn['id']}",
        json={"description": "Late dinner"},
        headers=headers,
    )
    assert updated.status_code == 200
    assert updated.json()["description"] == "Late dinner"
    assert updated.json()["amount"] == "42.50"

    listing = client.get(
        "/api/transactions", params={"search": "late", "limit": 5}, headers=headers
    ).json()
    assert [t["id"] for t in listing["transactions"]] == [txn["id"]]
    assert listing["pagination"] == {
        "current_page": 1,
        "total_pages": 1,
        "total_items": 1,
        "items_per_page": 5,
    }

    too_big = client.get("/api/transactions", params={"limit": 101}, headers=headers)
    assert too_big.status_code == 400

    in_use = client.delete(f"/api/categories/{food['id']}", headers=headers)
    assert in_use.status_code == 409

    deleted = client.delete(f"/api/transactions/{txn['id']}", headers=headers)
    assert deleted.status_code == 204
    missing = client.get(f"/api/transactions/{txn['id']}", headers=headers)
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "not_found"


def test_users_cannot_reach_each_others_records(client: TestClient) -> None:
    alice = auth_header(register(client, "alice@example.com"))
    bob = auth_header(register(client, "bob@example.com"))
    category = client.post(
        "/api/categories",
        json={"name": "Hobbies", "type": "expense", "color": "#123456"},
        headers=alice,
    ).json()

    assert client.put(
        f"/api/categories/{category['id']}", json={"name": "Mine"}, headers=bob
    ).status_code == 404
    assert client.delete(
        f"/api/categories/{category['id']}", headers=bob
    ).status_code == 404
    forbidden_txn = client.post(
        "/api/transactions",
        json={
            "amount": "5.00",
            "description": "Sneaky",
            "type": "expense",
            "category_id": category["id"],
        },
        headers=bob,
    )
    assert forbidden_txn.status_code == 404


def test_reports_and_investments(client: TestClient) -> None:
    headers = auth_header(register(client))
    categories = client.get("/api/categories", headers=headers).json()["categories"]
    salary = next(c for c in categories if c["name"] == "Salary")

    client.post(
        "/api/transactions",
        json={
            "amount": "1000.00",
            "description": "Pay",
            "type": "income",
            "category_id": salary["id"],
            "date": "2024-03-01",
        },
        headers=headers,
    )

    summary = client.get("/api/reports/summary", headers=headers).json()
    assert summary["summary"]["total_income"] == "1000.00"
    assert summary["summary"]["net_income"] == "1000.00"
    assert summary["summary"]["period"]["name"] == "all"
    assert summary["category_breakdown"][0]["name"] == "Salary"
    assert len(summary["recent_transactions"]) == 1

    bad_period = client.get(
        "/api/reports/summary", params={"period": "decade"}, headers=headers
    )
    assert bad_period.status_code == 400
    bad_months = client.get(
        "/api/reports/trends", params={"months": 13}, headers=headers
    )
    assert bad_months.status_code == 400
    assert client.get("/api/reports/trends", headers=headers).status_code == 200

    created = client.post(
        "/api/investments",
        json={
            "name": "Index fund",
            "type": "etf",
            "amount": "100.00",
            "current_value": "110.00",
            "purchase_date": "2024-01-02",
        },
        headers=headers,
    )
    assert created.status_code == 201
    overview = client.get("/api/investments/overview", headers=headers).json()
    assert overview["count"] == 1
    assert overview["gain"] == "10.00"
    assert overview["roi_percent"] == "10.00"


def test_change_password_issues_new_tokens(client: TestClient) -> None:
    tokens = register(client)

    wrong = client.post(
        "/api/user/password",
        json={"current_password": "bad", "new_password": "brand-new"},
        headers=auth_header(tokens),
    )
    assert wrong.status_code == 401

    changed = client.post(
        "/api/user/password",
        json={"current_password": "hopper-42", "new_password": "brand-new"},
        headers=auth_header(tokens),
    )
    assert changed.status_code == 200
    old_refresh = client.post(
        "/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
    )
    assert old_refresh.status_code == 401
