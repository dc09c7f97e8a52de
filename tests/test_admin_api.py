from __future__ import annotations

from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

from fakes import FakeClock, FakeUptimeRobot, StaticCronSignal, StaticStorage
from upmon.admin import (
    build_form_state,
    ensure_linkage_consistent,
    find_matching_monitor,
    parse_monitor_selection,
    parse_submission,
)
from upmon.app import create_app
from upmon.models import MonitorType, MonitorValidationError, RemoteMonitor, Selection
from upmon.probes import MemoryCache
from upmon.services import build_services
from upmon.settings import UpmonSettings
from upmon.store import (
    API_KEY,
    CHECK_TOKEN,
    FRIENDLY_NAME,
    MONITOR_ID,
    MONITOR_TYPE,
    MemoryConfigStore,
    PluginConfig,
)
from upmon.uptimerobot import AFFILIATE_URL


ADMIN = "adm_test_token"
AUTH = {"Authorization": f"Bearer {ADMIN}"}
CHECK_URL = "https://site.example/check"


def _client(tmp_path: Path, store: MemoryConfigStore, api: FakeUptimeRobot, *, admin_token: str = ADMIN) -> TestClient:
    clock = FakeClock()
    settings = UpmonSettings(
        public_base_url="https://site.example",
        site_name="My Site",
        dataroot=str(tmp_path),
        admin_token=admin_token,
    )
    services = build_services(
        settings,
        store=store,
        storage=StaticStorage(1),
        cache=MemoryCache(),
        cron_signal=StaticCronSignal(clock.now),
        client=api.client(api_key=str(store.get(API_KEY) or "")),
        clock=clock,
    )
    return TestClient(create_app(services=services))


def test_admin_api_requires_bearer(tmp_path: Path) -> None:
    client = _client(tmp_path, MemoryConfigStore(), FakeUptimeRobot())
    with client:
        assert client.get("/api/v1/monitor").status_code == 401
        r = client.get("/api/v1/monitor", headers={"Authorization": "Bearer wrong"})
    assert r.status_code == 403
    assert r.json()["detail"] == "invalid_admin_token"


def test_admin_api_unconfigured_token(tmp_path: Path) -> None:
    client = _client(tmp_path, MemoryConfigStore(), FakeUptimeRobot(), admin_token="")
    with client:
        r = client.get("/api/v1/monitor", headers=AUTH)
    assert r.status_code == 503


def test_form_state_without_api_key(tmp_path: Path) -> None:
    api = FakeUptimeRobot()
    client = _client(tmp_path, MemoryConfigStore(), api)
    with client:
        r = client.get("/api/v1/monitor", headers=AUTH)
    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert body["api_key_configured"] is False
    assert body["monitors"] == []
    assert api.requests == []


def test_form_state_lists_compatible_monitors_and_preselects_match(tmp_path: Path) -> None:
    api = FakeUptimeRobot()
    api.add("GET", "account", body={"data": {"email": "a@example.com", "monitor_interval": 1}})
    api.add(
        "GET",
        "monitors",
        body={
            "data": [
                {"id": 1, "friendlyName": "Other", "type": "HTTP", "url": CHECK_URL},
                {"id": 2, "friendlyName": "Site", "type": "KEYWORD", "url": CHECK_URL + "?token=abc"},
                {"id": 3, "friendlyName": "Push", "type": "HEARTBEAT", "url": "tok"},
            ]
        },
    )
    client = _client(tmp_path, MemoryConfigStore({API_KEY: "test-api-key"}), api)
    with client:
        body = client.get("/api/v1/monitor", headers=AUTH).json()

    assert [m["id"] for m in body["monitors"]] == [2, 3]
    assert body["matching_monitor_id"] == 2
    assert body["selected_monitor_id"] == 2
    assert body["selected_type"] == "KEYWORD"
    assert body["is_paid"] is True
    assert body["default_friendly_name"] == "My Site"


def test_form_state_clears_vanished_monitor(tmp_path: Path) -> None:
    api = FakeUptimeRobot()
    store = MemoryConfigStore({API_KEY: "test-api-key", MONITOR_ID: 42, MONITOR_TYPE: "keyword", FRIENDLY_NAME: "Gone"})
    client = _client(tmp_path, store, api)
    with client:
        body = client.get("/api/v1/monitor", headers=AUTH).json()
    assert body["linkage"]["monitor_id"] is None
    assert store.get(MONITOR_ID) is None
    assert store.get(FRIENDLY_NAME) is None


def test_linkage_survives_unreachable_api() -> None:
    api = FakeUptimeRobot()
    api.raise_error = httpx.ConnectTimeout("timed out")
    store = MemoryConfigStore({API_KEY: "test-api-key", MONITOR_ID: 42, MONITOR_TYPE: "keyword"})
    linkage = ensure_linkage_consistent(api.client(), PluginConfig(store))
    assert linkage.monitor_id == 42
    assert store.get(MONITOR_ID) == 42


def test_paid_flag_requires_one_minute_interval() -> None:
    api = FakeUptimeRobot()
    api.add("GET", "account", body={"monitor_interval": 5})
    api.add("GET", "monitors", body={"data": []})
    state = build_form_state(
        api.client(),
        PluginConfig(MemoryConfigStore({API_KEY: "k"})),
        check_url=CHECK_URL,
        site_name="Site",
    )
    assert state.is_paid is False
    assert state.matching_monitor_id is None


def test_put_creates_monitor(tmp_path: Path) -> None:
    api = FakeUptimeRobot()
    api.add("POST", "monitors", body={"id": 790, "friendlyName": "MySite", "type": "KEYWORD"})
    store = MemoryConfigStore({API_KEY: "test-api-key"})
    client = _client(tmp_path, store, api)
    with client:
        r = client.put(
            "/api/v1/monitor",
            headers=AUTH,
            json={"monitor_id": "new", "friendly_name": "My Site", "type": "KEYWORD", "check_token": "abc123"},
        )
    assert r.status_code == 200
    linkage = r.json()["linkage"]
    assert linkage["monitor_id"] == 790
    assert linkage["monitor_type"] == "keyword"
    assert store.get(CHECK_TOKEN) == "abc123"
    [(_method, _path, body)] = api.calls("POST")
    assert body["url"] == "https://site.example/check?token=abc123"


def test_put_rejects_bad_token(tmp_path: Path) -> None:
    api = FakeUptimeRobot()
    client = _client(tmp_path, MemoryConfigStore({API_KEY: "test-api-key"}), api)
    with client:
        r = client.put(
            "/api/v1/monitor",
            headers=AUTH,
            json={"monitor_id": "new", "friendly_name": "Site", "check_token": "bad token"},
        )
    assert r.status_code == 400
    assert "letters and numbers" in r.json()["detail"]
    assert api.requests == []


def test_put_rejects_type_change(tmp_path: Path) -> None:
    api = FakeUptimeRobot()
    store = MemoryConfigStore({API_KEY: "test-api-key", MONITOR_ID: 123, MONITOR_TYPE: "keyword"})
    client = _client(tmp_path, store, api)
    with client:
        r = client.put(
            "/api/v1/monitor",
            headers=AUTH,
            json={"monitor_id": 123, "friendly_name": "Site", "type": "HEARTBEAT"},
        )
    assert r.status_code == 400
    assert "cannot be changed" in r.json()["detail"]
    assert store.get(MONITOR_TYPE) == "keyword"


def test_put_blank_selection_unlinks(tmp_path: Path) -> None:
    store = MemoryConfigStore({MONITOR_ID: 123, MONITOR_TYPE: "keyword", CHECK_TOKEN: "abc"})
    client = _client(tmp_path, store, FakeUptimeRobot())
    with client:
        r = client.put("/api/v1/monitor", headers=AUTH, json={"monitor_id": ""})
    assert r.status_code == 200
    assert r.json()["linkage"]["monitor_id"] is None
    assert store.get(CHECK_TOKEN) == "abc"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("new", Selection.create_new()),
        ("NEW", Selection.create_new()),
        ("123", Selection.existing(123)),
        (123, Selection.existing(123)),
        ("", Selection.none()),
        ("0", Selection.none()),
        ("abc", Selection.none()),
        (None, Selection.none()),
    ],
)
def test_parse_monitor_selection(raw: object, expected: Selection) -> None:
    assert parse_monitor_selection(raw) == expected


def test_parse_submission_type_rules() -> None:
    assert parse_submission(monitor_id="new", friendly_name="x").type is MonitorType.KEYWORD
    assert parse_submission(monitor_id="5", monitor_type="heartbeat").type is MonitorType.HEARTBEAT
    # An unselected form never fails on its other fields.
    assert parse_submission(monitor_id="", monitor_type="bogus").selection.is_none
    with pytest.raises(MonitorValidationError):
        parse_submission(monitor_id="new", monitor_type="bogus")


def test_find_matching_monitor_ignores_query() -> None:
    monitors = [
        RemoteMonitor(id=1, type="KEYWORD", url="https://other.example/check"),
        RemoteMonitor(id=2, type="KEYWORD", url=CHECK_URL + "?token=x"),
    ]
    assert find_matching_monitor(monitors, CHECK_URL) == 2
    assert find_matching_monitor(monitors[:1], CHECK_URL) is None


@pytest.mark.parametrize(
    ("status", "body"),
    [
        (503, {}),
        (500, {"code": "500", "message": "Internal error"}),
        (401, {"code": "401", "message": "Unauthorized"}),
        (403, {"error": {"type": "forbidden", "message": "api_key is invalid"}}),
    ],
)
def test_linkage_survives_api_errors_other_than_not_found(status: int, body: dict) -> None:
    api = FakeUptimeRobot()
    api.add("GET", "monitors/42", status=status, body=body)
    store = MemoryConfigStore({API_KEY: "test-api-key", MONITOR_ID: 42, MONITOR_TYPE: "heartbeat"})

    linkage = ensure_linkage_consistent(api.client(), PluginConfig(store))

    assert linkage.monitor_id == 42
    assert linkage.monitor_type is MonitorType.HEARTBEAT
    assert store.get(MONITOR_ID) == 42


def test_legacy_not_found_envelope_clears_linkage() -> None:
    api = FakeUptimeRobot()
    api.add("GET", "monitors/42", body={"error": {"type": "not_found", "message": "Monitor not found"}})
    store = MemoryConfigStore({API_KEY: "test-api-key", MONITOR_ID: 42, MONITOR_TYPE: "keyword"})

    linkage = ensure_linkage_consistent(api.client(), PluginConfig(store))

    assert linkage.monitor_id is None
    assert store.get(MONITOR_TYPE) is None


def test_upgrade_url_only_for_free_plans() -> None:
    api = FakeUptimeRobot()
    api.add("GET", "monitors", body={"data": []})
    config = PluginConfig(MemoryConfigStore({API_KEY: "k"}))

    api.add("GET", "account", body={"monitor_interval": 5})
    free = build_form_state(api.client(), config, check_url=CHECK_URL, site_name="Site").to_dict()
    assert free["upgrade_url"] == AFFILIATE_URL

    api.add("GET", "account", body={"monitor_interval": 1})
    paid = build_form_state(api.client(), config, check_url=CHECK_URL, site_name="Site").to_dict()
    assert paid["upgrade_url"] is None
