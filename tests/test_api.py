from __future__ import annotations

import os

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite://")

from fastapi.testclient import TestClient

from seb_mvp.api import main as api_main
from seb_mvp.api.routes import get_settings_store
from seb_mvp.rules.settings_store import MemoryKeyValueStorage, SettingsStore

ADMIN = {"X-Admin-Passcode": "332"}


@pytest.fixture
def client(monkeypatch):
    store = SettingsStore(MemoryKeyValueStorage(), key="teu_admin_settings")
    monkeypatch.setitem(api_main.app.dependency_overrides, get_settings_store, lambda: store)
    return TestClient(api_main.app)


def test_estimate_standard_defaults(client):
    response = client.get(
        "/api/v1/bond/estimate",
        params={"mode": "standard", "invoice_value": "1000", "duties_value": "50"},
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["total_bond_value"] == "1050"
    assert payload["sell_value"] == "4.200000"
    assert payload["is_below_min"] is True
    assert payload["advisory"] == "Minimum Billing Applies: $65.00"
    assert payload["clipboard_text"] == "$4.200000"
    assert payload["pga_multiplier"] == 3


def test_estimate_pga_ignores_standard_fields_and_garbage(client):
    response = client.get(
        "/api/v1/bond/estimate",
        params={
            "mode": "pga",
            "invoice_value": "999999",
            "pga_invoice_value": "500",
            "non_pga_invoice_value": "200abc",
        },
    )

    payload = response.json()
    assert payload["total_bond_value"] == "1700"
    assert payload["sell_value"] == "6.800000"


def test_estimate_blank_inputs(client):
    payload = client.get("/api/v1/bond/estimate").json()

    assert payload["total_bond_value"] == "0"
    assert payload["sell_value"] == "0.000000"
    assert payload["is_below_min"] is False
    assert payload["advisory"] == "Standard Logic Active"


def test_estimate_unknown_mode(client):
    response = client.get("/api/v1/bond/estimate", params={"mode": "air"})

    assert response.status_code == 422


def test_calculator_press_tokens_and_keys(client):
    response = client.post(
        "/api/v1/calculator/press",
        json={"tokens": ["2", "+", "3", "×"], "keys": ["4", "Enter"]},
    )

    assert response.status_code == 200
    assert response.json() == {"display_text": "20", "expression_text": "20", "phase": "solved"}


def test_calculator_press_continues_client_state(client):
    response = client.post(
        "/api/v1/calculator/press",
        json={"display_text": "5÷", "expression_text": "5/", "tokens": ["0", "="]},
    )

    assert response.json()["display_text"] == "Error"
    assert response.json()["expression_text"] == ""


def test_calculator_rejects_unknown_token(client):
    response = client.post("/api/v1/calculator/press", json={"tokens": ["%"]})

    assert response.status_code == 422


def test_admin_login(client):
    ok = client.post("/api/v1/admin/login", json={"passcode": "332"})
    denied = client.post("/api/v1/admin/login", json={"passcode": "nope"})

    assert ok.status_code == 200
    assert ok.json()["pga_multiplier"] == 3
    assert denied.status_code == 401
    assert denied.json()["detail"] == "Access Denied"


def test_admin_commit_changes_estimates(client):
    response = client.put(
        "/api/v1/admin/settings",
        headers=ADMIN,
        json={
            "min_billing": "100",
            "sell_rate_percent": "0.5",
            "pga_multiplier": 2,
            "asset_reference": "https://example.com/logo.png",
        },
    )
    assert response.status_code == 200
    assert response.json()["pga_multiplier"] == 2

    settings = client.get("/api/v1/settings").json()
    assert settings["asset_reference"] == "https://example.com/logo.png"

    payload = client.get(
        "/api/v1/bond/estimate",
        params={"invoice_value": "20000", "duties_value": "1000"},
    ).json()
    assert payload["sell_value"] == "105.000000"
    assert payload["is_below_min"] is False
    assert payload["min_billing"] == "100.00"


def test_admin_commit_requires_passcode(client):
    body = {"min_billing": "1", "sell_rate_percent": "1", "pga_multiplier": 1}

    assert client.put("/api/v1/admin/settings", json=body).status_code == 401
    assert client.put(
        "/api/v1/admin/settings", json=body, headers={"X-Admin-Passcode": "0"}
    ).status_code == 401
    assert client.get("/api/v1/settings").json()["min_billing"] == "65.00"


def test_admin_commit_validates_ranges(client):
    response = client.put(
        "/api/v1/admin/settings",
        headers=ADMIN,
        json={"min_billing": "10", "sell_rate_percent": "1", "pga_multiplier": 0},
    )

    assert response.status_code == 422


def test_admin_defaults(client):
    client.put(
        "/api/v1/admin/settings",
        headers=ADMIN,
        json={"min_billing": "10", "sell_rate_percent": "1", "pga_multiplier": 5},
    )

    defaults = client.get("/api/v1/admin/defaults", headers=ADMIN).json()

    assert defaults["min_billing"] == "65.00"
    assert defaults["sell_rate_percent"] == "0.40"
    assert defaults["pga_multiplier"] == 3
    # committed record is untouched by fetching defaults
    assert client.get("/api/v1/settings").json()["pga_multiplier"] == 5


def test_health_reports_db_failure(client, monkeypatch):
    class BrokenSession:
        def __enter__(self):
            raise RuntimeError("db down")

        def __exit__(self, *exc):
            return False

    monkeypatch.setattr(api_main, "SessionLocal", lambda: BrokenSession())

    payload = client.get("/health").json()

    assert payload["ok"] is True
    assert payload["db_ok"] is False
    assert "quick_calculator" in payload["features"]


def test_landing_page(client):
    response = client.get("/")

    assert response.status_code == 200
    assert "SEB Fee Desk" in response.text


def test_landing_page_serializes_calculator_presses(client):
    html = client.get("/").text

    assert "this.q = this.q.then(" in html
    assert "if (n === this.seq) this.r = data;" in html


def test_estimate_survives_out_of_range_stored_record(monkeypatch):
    storage = MemoryKeyValueStorage({"teu_admin_settings": '{"minBilling": NaN, "pgaMultiplier": 0}'})
    store = SettingsStore(storage, key="teu_admin_settings")
    monkeypatch.setitem(api_main.app.dependency_overrides, get_settings_store, lambda: store)
    client = TestClient(api_main.app)

    response = client.get("/api/v1/bond/estimate", params={"invoice_value": "1000"})

    assert response.status_code == 200
    assert response.json()["min_billing"] == "65.00"
    assert response.json()["pga_multiplier"] == 3


def test_settings_read_back_keeps_commit_formatting(client):
    committed = client.put(
        "/api/v1/admin/settings",
        headers=ADMIN,
        json={"min_billing": "65.00", "sell_rate_percent": "0.125", "pga_multiplier": 3},
    ).json()

    read_back = client.get("/api/v1/settings").json()

    assert committed["min_billing"] == read_back["min_billing"] == "65.00"
    assert committed["sell_rate_percent"] == read_back["sell_rate_percent"] == "0.125"
    assert client.get("/api/v1/bond/estimate").json()["sell_rate_percent"] == "0.125"


@pytest.mark.filterwarnings("ignore::RuntimeWarning")
def test_dev_entrypoint_runs_uvicorn(monkeypatch):
    import runpy

    import uvicorn

    calls = []
    monkeypatch.setattr(uvicorn, "run", lambda *args, **kwargs: calls.append((args, kwargs)))
    monkeypatch.setenv("PORT", "8123")

    runpy.run_module("seb_mvp.api.main", run_name="__main__")

    assert calls == [(("seb_mvp.api.main:app",), {"host": "0.0.0.0", "port": 8123, "reload": True})]
