from urllib.parse import unquote

import pytest
from fastapi.testclient import TestClient

from auth import AdminGate
from config import Settings
from main import create_app

PASSWORD = "melam2024"


@pytest.fixture
def app(database_url, generator):
    settings = Settings(database_url=database_url, secret_key="test-secret")
    return create_app(settings, generator=generator)


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


def sign_up(client, email, name="Ramesh"):
    resp = client.post("/auth/register", json={"name": name, "email": email, "password": PASSWORD})
    assert resp.status_code == 200
    resp = client.post("/auth/login", data={"username": email, "password": PASSWORD})
    assert resp.status_code == 200
    token = resp.json()["access_token"]
    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"}).json()
    return me["uid"], {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(app, client):
    uid, headers = sign_up(client, "admin@example.com", name="Admin")
    app.state.gate = AdminGate({uid})
    return headers


def test_root_and_database_check(client):
    assert client.get("/").status_code == 200
    info = client.get("/test").json()
    assert info["connection_status"] == "Connected"
    assert info["using_sqlite_fallback"] is True


def test_expense_categories(client):
    assert client.get("/expense-categories").json() == [
        "Food", "Decoration", "Cultural Event", "Pooja", "Travel", "Miscellaneous",
    ]


def test_login_with_wrong_password(client):
    client.post("/auth/register", json={"name": "Ramesh", "email": "ramesh@example.com", "password": PASSWORD})
    resp = client.post("/auth/login", data={"username": "ramesh@example.com", "password": "nope"})
    assert resp.status_code == 401
    assert resp.json()["error"] == "auth_error"


def test_me_reports_admin_flag(client, admin_headers):
    assert client.get("/auth/me", headers=admin_headers).json()["is_admin"] is True
    _, villager = sign_up(client, "villager@example.com")
    assert client.get("/auth/me", headers=villager).json()["is_admin"] is False


def test_me_requires_token(client):
    resp = client.get("/auth/me")
    assert resp.status_code == 401
    assert resp.headers["www-authenticate"] == "Bearer"
    assert client.get("/auth/me", headers={"Authorization": "Bearer garbage"}).status_code == 401


def test_writes_are_admin_only(client, admin_headers):
    body = {"name": "Arun Kumar", "amount": 1000}
    assert client.post("/years/2024/contributions", json=body).status_code == 401

    _, villager = sign_up(client, "villager@example.com")
    resp = client.post("/years/2024/contributions", json=body, headers=villager)
    assert resp.status_code == 403
    assert resp.json()["error"] == "forbidden"

    assert client.post("/years/2024/contributions", json=body, headers=admin_headers).status_code == 201
    assert len(client.get("/years/2024/contributions").json()) == 1


def test_contributions_are_year_scoped(client, admin_headers):
    for year, name, amount in [(2024, "A", 1000), (2024, "B", 750), (2023, "C", 500)]:
        resp = client.post(f"/years/{year}/contributions", json={"name": name, "amount": amount}, headers=admin_headers)
        assert resp.status_code == 201
        assert resp.json()["year"] == year

    records = client.get("/years/2024/contributions").json()
    assert sorted(r["name"] for r in records) == ["A", "B"]
    assert client.get("/years/2025/contributions").json() == []


def test_invalid_payloads_are_rejected(client, admin_headers):
    resp = client.post("/years/2024/contributions", json={"name": "A", "amount": -1}, headers=admin_headers)
    assert resp.status_code == 422
    assert resp.json()["error"] == "validation_error"
    assert resp.json()["errors"][0]["loc"] == ["body", "amount"]

    bad_expense = {"reason": "Fuel", "amount": 10, "category": "Petrol", "date": "2024-07-01T00:00:00"}
    resp = client.post("/years/2024/expenses", json=bad_expense, headers=admin_headers)
    assert resp.status_code == 422
    assert resp.json()["error"] == "validation_error"

    huge = client.post("/years/2024/contributions", json={"name": "A", "amount": 1e308}, headers=admin_headers)
    assert huge.status_code == 422
    assert huge.json()["error"] == "validation_error"

    resp = client.get("/years/0/programs")
    assert resp.status_code == 422
    assert resp.json()["error"] == "validation_error"
    assert client.get("/years/2024/contributions").json() == []


def test_program_patch_flow(client, admin_headers):
    created = client.post(
        "/years/2024/programs",
        json={"name": "Ganamela (Musical Night)", "organizer": "Team B", "notes": "Sound check at 5 PM."},
        headers=admin_headers,
    ).json()
    assert created["budget"] == 0

    resp = client.patch(f"/programs/{created['id']}", json={"budget": 4000}, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["budget"] == 4000
    assert resp.json()["notes"] == "Sound check at 5 PM."

    cleared = client.patch(f"/programs/{created['id']}", json={"name": None}, headers=admin_headers)
    assert cleared.status_code == 422
    assert cleared.json()["error"] == "validation_error"
    misspelled = client.patch(f"/programs/{created['id']}", json={"budgt": 99999}, headers=admin_headers)
    assert misspelled.status_code == 422
    assert misspelled.json()["error"] == "validation_error"
    assert client.get("/years/2024/programs").json()[0]["budget"] == 4000
    missing = client.patch("/programs/999", json={"budget": 1}, headers=admin_headers)
    assert missing.status_code == 404
    assert missing.json()["error"] == "not_found"


def test_dashboard_totals(client, admin_headers):
    client.post("/years/2024/contributions", json={"name": "A", "amount": 1000}, headers=admin_headers)
    client.post("/years/2024/contributions", json={"name": "B", "amount": 750}, headers=admin_headers)
    for reason, amount, category, day in [("Stage Decoration Items", 2500, "Decoration", 20), ("Welcome Dinner (Day 1)", 4000, "Food", 21)]:
        client.post(
            "/years/2024/expenses",
            json={"reason": reason, "amount": amount, "category": category, "date": f"2024-07-{day}T00:00:00"},
            headers=admin_headers,
        )
    client.post("/years/2024/programs", json={"name": "Kerala Sendai Melam", "organizer": "Team A", "budget": 5000}, headers=admin_headers)

    anonymous = client.get("/years/2024/dashboard").json()
    assert anonymous["is_admin"] is False
    assert anonymous["totals"] == {
        "total_collection": 1750,
        "total_expenses": 6500,
        "remaining_balance": -4750,
        "total_budget": 5000,
        "budget_status": -3250,
    }
    assert [e["reason"] for e in anonymous["expenses"]] == ["Welcome Dinner (Day 1)", "Stage Decoration Items"]

    assert client.get("/years/2024/dashboard", headers=admin_headers).json()["is_admin"] is True


def test_summary_and_share_link(client, admin_headers, generator):
    client.post("/years/2024/contributions", json={"name": "A", "amount": 1750}, headers=admin_headers)
    client.post("/years/2024/programs", json={"name": "Kerala Sendai Melam", "organizer": "Team A"}, headers=admin_headers)
    generator.response = {"summary": "Utsav 2024: collected 1750"}

    resp = client.post("/years/2024/summary")

    assert resp.status_code == 200
    body = resp.json()
    assert body["summary"] == "Utsav 2024: collected 1750"
    assert unquote(body["share_url"].split("text=", 1)[1]) == "Utsav 2024: collected 1750"
    assert generator.requests[-1]["eventList"] == ["Kerala Sendai Melam"]


def test_summary_failure_is_distinct(client, generator):
    generator.error = ConnectionError("ollama is down")
    resp = client.post("/years/2024/summary")
    assert resp.status_code == 502
    assert resp.json()["error"] == "generation_failed"


def test_unreachable_store_is_reported(tmp_path, generator):
    settings = Settings(database_url=f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'x.db'}")
    with TestClient(create_app(settings, generator=generator)) as client:
        resp = client.get("/years/2024/dashboard")
        assert resp.status_code == 503
        assert resp.json()["error"] == "store_unavailable"
        assert client.get("/test").json()["connection_status"] == "Not Connected"
