import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from fundledger.database import Base
from fundledger.deps import get_db
from fundledger.main import app

HEADERS = {"X-Actor-Id": "admin-1"}


@pytest.fixture
def client():
    """TestClient whose requests share one in-memory database."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    sessions = async_sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    ready = []

    async def override_get_db():
        if not ready:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            ready.append(True)
        async with sessions() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
        test_client.portal.call(engine.dispose)
    app.dependency_overrides.clear()


def _create_investor(client, national_id, capital):
    response = client.post("/api/v1/investors", headers=HEADERS, json={
        "full_name": f"Investor {national_id}",
        "national_id": national_id,
        "contributed_capital": capital,
        "join_date": "2022-06-01",
    })
    assert response.status_code == 201
    return response.json()["data"]


def _create_year(client, total_profit=3000):
    response = client.post("/api/v1/financial-years", headers=HEADERS, json={
        "year": 2023,
        "period_name": "FY 2023",
        "total_profit": total_profit,
        "start_date": "2023-01-01",
        "end_date": "2023-12-31",
    })
    assert response.status_code == 201
    return response.json()["data"]


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_actor_header_is_required(client):
    assert client.get("/api/v1/investors").status_code == 401
    assert client.get("/api/v1/investors", headers={"X-Actor-Id": "system"}).status_code == 403


def test_domain_errors_map_to_status_codes(client):
    response = client.get("/api/v1/investors/999", headers=HEADERS)
    assert response.status_code == 404
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "not_found"

    year = _create_year(client)
    response = client.post(f"/api/v1/financial-years/{year['id']}/approve", headers=HEADERS)
    assert response.status_code == 409
    assert response.json()["error"] == "invalid_state"


def test_investor_endpoints(client):
    a = _create_investor(client, "A-100", 1000)
    _create_investor(client, "B-200", 3000)

    body = client.get("/api/v1/investors", headers=HEADERS).json()
    assert body["success"] is True
    assert body["data"]["total_active_capital"] == 4000
    shares = {i["national_id"]: i["share_percentage"] for i in body["data"]["investors"]}
    assert shares == {"A-100": 25.0, "B-200": 75.0}

    duplicate = client.post("/api/v1/investors", headers=HEADERS, json={
        "full_name": "Again", "national_id": "A-100", "contributed_capital": 1, "join_date": "2023-01-01",
    })
    assert duplicate.status_code == 400

    response = client.delete(f"/api/v1/investors/{a['id']}", headers=HEADERS)
    assert response.json()["data"] == {"deleted": False, "deactivated": True}
    assert client.get("/api/v1/investors", headers=HEADERS).json()["data"]["total_active_capital"] == 3000


def test_transaction_endpoints(client):
    investor = _create_investor(client, "T-1", 1000)
    response = client.post("/api/v1/transactions", headers=HEADERS, json={
        "investor_id": investor["id"], "transaction_type": "deposit", "amount": 500, "is_contribution": True,
    })
    assert response.status_code == 201
    transaction = response.json()["data"]
    assert transaction["receipt_number"].startswith("TRX-")

    assert client.get(f"/api/v1/investors/{investor['id']}", headers=HEADERS).json()["data"]["contributed_capital"] == 1500

    response = client.put(f"/api/v1/transactions/{transaction['id']}", headers=HEADERS, json={"notes": "wire"})
    assert response.json()["data"]["notes"] == "wire"

    listed = client.get("/api/v1/transactions", headers=HEADERS, params={"investor_id": investor["id"]}).json()
    assert len(listed["data"]) == 1
    assert client.get("/api/v1/transactions", headers=HEADERS, params={"transaction_type": "gift"}).status_code == 400


def test_profit_lifecycle(client):
    a = _create_investor(client, "A-1", 1000)
    _create_investor(client, "B-1", 2000)
    year = _create_year(client, total_profit=3000)
    year_id = year["id"]
    assert year["total_days"] == 365

    calculated = client.post(f"/api/v1/financial-years/{year_id}/calculate", headers=HEADERS).json()["data"]
    assert calculated["summary"]["total_calculated_profit"] == 3000.0
    assert calculated["financial_year"]["status"] == "calculated"
    assert sorted(d["calculated_profit"] for d in calculated["distributions"]) == [1000.0, 2000.0]

    approved = client.post(f"/api/v1/financial-years/{year_id}/approve", headers=HEADERS).json()["data"]
    assert approved["approved_count"] == 2

    again = client.post(
        f"/api/v1/financial-years/{year_id}/calculate", headers=HEADERS, json={"force_full_period": True}
    ).json()["data"]
    assert again["summary"]["view_only"] is True

    rolled = client.post(
        f"/api/v1/financial-years/{year_id}/rollover", headers=HEADERS, json={"percentage": 100}
    ).json()["data"]
    assert rolled["total_rolled_over"] == 2
    assert rolled["total_failed"] == 0

    balance = client.get(f"/api/v1/investors/{a['id']}/balance", headers=HEADERS).json()["data"]
    assert balance["current_balance"] == 2000.0

    summary = client.get(f"/api/v1/financial-years/{year_id}/summary", headers=HEADERS).json()["data"]
    assert summary["profit_efficiency"] == "100.00%"
    assert summary["financial_year"]["status"] == "distributed"

    closed = client.post(f"/api/v1/financial-years/{year_id}/close", headers=HEADERS).json()["data"]
    assert closed["status"] == "closed"
    assert client.delete(f"/api/v1/financial-years/{year_id}", headers=HEADERS).status_code == 409


def test_notification_endpoints(client):
    _create_year(client)
    count = client.get("/api/v1/notifications/unread/count", headers=HEADERS).json()["data"]
    assert count == {"unread_count": 1}

    [notification] = client.get("/api/v1/notifications", headers=HEADERS).json()["data"]
    assert notification["notification_type"] == "financial_year_created"

    read = client.put(f"/api/v1/notifications/{notification['id']}/read", headers=HEADERS).json()["data"]
    assert read["status"] == "read"
    assert client.get("/api/v1/notifications/unread/count", headers=HEADERS).json()["data"]["unread_count"] == 0

    assert client.delete(f"/api/v1/notifications/{notification['id']}", headers=HEADERS).status_code == 200
    assert client.delete(f"/api/v1/notifications/{notification['id']}", headers=HEADERS).status_code == 404


def test_settings_endpoints(client):
    settings = client.get("/api/v1/settings", headers=HEADERS).json()["data"]
    assert settings["default_currency"] == "USD"

    updated = client.put("/api/v1/settings/exchange-rate", headers=HEADERS, json={"usd_to_iqd": 1400}).json()["data"]
    assert updated["usd_to_iqd"] == 1400
    assert updated["updated_by"] == "admin-1"

    converted = client.post("/api/v1/settings/convert", headers=HEADERS, json={
        "amount": 2, "from_currency": "usd", "to_currency": "IQD",
    }).json()["data"]
    assert converted["source"] == "static"
    assert converted["converted_amount"] == 2800

    assert client.post("/api/v1/settings/exchange-rate/refresh", headers=HEADERS).status_code == 502


def test_notification_archive_and_stats_endpoints(client):
    _create_year(client)
    [notification] = client.get("/api/v1/notifications", headers=HEADERS).json()["data"]

    archived = client.put(f"/api/v1/notifications/{notification['id']}/archive", headers=HEADERS).json()["data"]
    assert archived["status"] == "archived"
    assert client.put("/api/v1/notifications/404/archive", headers=HEADERS).status_code == 404

    stats = client.get("/api/v1/notifications/stats", headers=HEADERS).json()["data"]
    assert stats["by_status"] == {"unread": 0, "read": 0, "archived": 1}
    assert stats["by_type"] == {"financial_year_created": 1}
    assert stats["total_unread"] == 0


def test_settings_update_and_display_amount_endpoints(client):
    updated = client.put("/api/v1/settings", headers=HEADERS, json={"display_currency": "BOTH"}).json()["data"]
    assert updated["display_currency"] == "BOTH"
    assert updated["default_currency"] == "USD"
    assert client.put("/api/v1/settings", headers=HEADERS, json={"display_currency": "EUR"}).status_code == 422

    client.put("/api/v1/settings/exchange-rate", headers=HEADERS, json={"usd_to_iqd": 1400})
    shown = client.post("/api/v1/settings/display-amount", headers=HEADERS, json={
        "amount": 2800, "currency": "IQD",
    }).json()["data"]
    assert shown["currency"] == "USD"
    assert shown["display_text"] == "2.00 $ (2,800 IQD)"


def test_scheduler_endpoints(client):
    status = client.get("/api/v1/settings/scheduler", headers=HEADERS).json()["data"]
    assert set(status) == {"auto_rollover", "export_cleanup", "notification_cleanup", "profit_recalculation"}
    assert not any(job["running"] for job in status.values())

    assert client.post("/api/v1/settings/scheduler/unknown/run", headers=HEADERS).status_code == 404
