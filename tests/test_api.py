import pytest
from fastapi.testclient import TestClient

from catalog_api import launcher
from catalog_api.config import Settings, get_settings
from catalog_api.main import app
from spring_ingest.schema import CatalogSnapshot, ExpandedProductEntry, VariantRecord
from spring_ingest.store import write_snapshot


@pytest.fixture
def api_settings(tmp_path):
    return Settings(ADMIN_PASSWORD="let-me-in", CRON_SECRET="cron-token", CATALOG_PATH=str(tmp_path / "catalog.json"))


@pytest.fixture
def launches(monkeypatch):
    calls = []

    def fake_launch():
        calls.append(True)
        return 4242

    monkeypatch.setattr(launcher, "launch_ingest", fake_launch)
    return calls


@pytest.fixture
def client(api_settings):
    app.dependency_overrides[get_settings] = lambda: api_settings
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json()["status"] == "ok"


def test_trigger_rejects_wrong_password(client, launches):
    res = client.post("/api/ingest", json={"password": "nope"})
    assert res.status_code == 401
    assert res.json() == {"success": False, "message": "Invalid password"}
    assert launches == []


def test_trigger_rejects_missing_password(client, launches):
    assert client.post("/api/ingest", json={}).status_code == 401
    assert launches == []


def test_trigger_starts_job(client, launches):
    res = client.post("/api/ingest", json={"password": "let-me-in"})
    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert body["message"].startswith("Product ingestion started!")
    assert launches == [True]


def test_trigger_only_accepts_post(client, launches):
    assert client.get("/api/ingest").status_code == 405


def test_trigger_reports_launch_failure(client, monkeypatch):
    def broken():
        raise OSError("no python")

    monkeypatch.setattr(launcher, "launch_ingest", broken)
    res = client.post("/api/ingest", json={"password": "let-me-in"})
    assert res.status_code == 500
    assert res.json()["success"] is False
    assert res.json()["error"] == "no python"


def test_cron_requires_bearer_secret(client, launches):
    assert client.get("/api/cron/ingest").status_code == 401
    assert client.get("/api/cron/ingest", headers={"Authorization": "Bearer wrong"}).status_code == 401

    res = client.get("/api/cron/ingest", headers={"Authorization": "Bearer cron-token"})
    assert res.status_code == 200
    assert res.json()["message"] == "Ingestion triggered"
    assert launches == [True]


def test_cron_refuses_everything_without_configured_secret(client, api_settings, launches):
    app.dependency_overrides[get_settings] = lambda: api_settings.model_copy(update={"cron_secret": None})
    assert client.get("/api/cron/ingest", headers={"Authorization": "Bearer "}).status_code == 401
    assert launches == []


def test_catalog_empty_before_first_run(client):
    assert client.get("/catalog").json() == {"generatedAt": None, "store": None, "designs": []}


def test_catalog_serves_snapshot(client, api_settings):
    entry = ExpandedProductEntry(
        slug="mug-a-mug", title="Mug A - Mug", category="drinkware", hero_image="https://cdn.test/m.png",
        variants=[VariantRecord(
            product_id="1565", label="Mug", image="https://cdn.test/m.png",
            checkout_url="https://shop.test/listing/mug-a?product=1565", product_type="Mug",
        )],
        design_slug="mug-a", design_title="Mug A", product_type="Mug",
    )
    write_snapshot(CatalogSnapshot(store="test-store", designs=[entry]), api_settings.catalog_path)

    doc = client.get("/catalog").json()
    assert doc["store"] == "test-store"
    assert [d["slug"] for d in doc["designs"]] == ["mug-a-mug"]

    res = client.get("/catalog/mug-a-mug")
    assert res.status_code == 200
    assert res.json()["variants"][0]["springUrl"].endswith("product=1565")
    assert client.get("/catalog/missing").status_code == 404
