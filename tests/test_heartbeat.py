from __future__ import annotations

from pathlib import Path

import httpx
import pytest
from structlog.testing import capture_logs

from fakes import FailingStorage, FakeClock, StaticCronSignal, StaticStorage
from upmon.health import HealthCheckAggregator
from upmon.heartbeat import HeartbeatOutcome, HeartbeatScheduler, HttpPinger, PingResult
from upmon.maintenance import MaintenanceTracker
from upmon.probes import MemoryCache
from upmon.store import (
    ENABLE,
    ENABLE_CRON_ALERTS,
    HEARTBEAT_URL,
    MONITOR_TYPE,
    MemoryConfigStore,
    PluginConfig,
)


PUSH_URL = "https://heartbeat.example.com/m456-token123"


class FakePinger:
    def __init__(self, result: PingResult | None = None) -> None:
        self.result = result or PingResult(status_code=200)
        self.urls: list[str] = []

    def ping(self, url: str) -> PingResult:
        self.urls.append(url)
        return self.result


def _scheduler(
    tmp_path: Path,
    store: MemoryConfigStore,
    *,
    storage=None,
    last_cron: float | None = None,
    pinger: FakePinger | None = None,
) -> tuple[HeartbeatScheduler, FakePinger]:
    clock = FakeClock()
    config = PluginConfig(store)
    agg = HealthCheckAggregator(
        config,
        storage=storage if storage is not None else StaticStorage(1),
        cache=MemoryCache(),
        cron_signal=StaticCronSignal(clock.now - 60 if last_cron is None else last_cron),
        tracker=MaintenanceTracker(store, dataroot=tmp_path, clock=clock),
        clock=clock,
    )
    pinger = pinger or FakePinger()
    return HeartbeatScheduler(config, agg, pinger), pinger


def _heartbeat_store(**extra: object) -> MemoryConfigStore:
    data = {ENABLE: 1, MONITOR_TYPE: "heartbeat", HEARTBEAT_URL: PUSH_URL}
    data.update(extra)
    return MemoryConfigStore(data)


def test_disabled_plugin_does_nothing(tmp_path: Path) -> None:
    scheduler, pinger = _scheduler(tmp_path, _heartbeat_store(**{ENABLE: 0}))
    with capture_logs() as logs:
        assert scheduler.tick() is HeartbeatOutcome.DISABLED
    assert pinger.urls == []
    assert any(e["event"] == "Uptime Monitor plugin is disabled." for e in logs)


def test_keyword_monitor_is_not_pinged(tmp_path: Path) -> None:
    scheduler, pinger = _scheduler(tmp_path, _heartbeat_store(**{MONITOR_TYPE: "keyword"}))
    assert scheduler.tick() is HeartbeatOutcome.NOT_HEARTBEAT
    assert pinger.urls == []


def test_missing_url_is_logged(tmp_path: Path) -> None:
    store = _heartbeat_store()
    store.unset(HEARTBEAT_URL)
    scheduler, pinger = _scheduler(tmp_path, store)
    with capture_logs() as logs:
        assert scheduler.tick() is HeartbeatOutcome.NO_URL
    assert pinger.urls == []
    assert any("No heartbeat URL configured" in e["event"] for e in logs)


def test_healthy_site_pings_once(tmp_path: Path) -> None:
    scheduler, pinger = _scheduler(tmp_path, _heartbeat_store())
    with capture_logs() as logs:
        assert scheduler.tick() is HeartbeatOutcome.PINGED
    assert pinger.urls == [PUSH_URL]
    events = [e["event"] for e in logs]
    assert "All health checks passed, pinging heartbeat URL" in events
    assert "Heartbeat ping successful" in events


def test_core_failure_skips_ping(tmp_path: Path) -> None:
    scheduler, pinger = _scheduler(tmp_path, _heartbeat_store(), storage=FailingStorage())
    with capture_logs() as logs:
        assert scheduler.tick() is HeartbeatOutcome.UNHEALTHY
    assert pinger.urls == []
    failed = [e for e in logs if e["event"] == "Health check failed"]
    assert len(failed) == 1
    assert failed[0]["check"] == "core"
    assert "Simulated DB Down" in failed[0]["message"]
    assert failed[0]["log_level"] == "warning"


def test_stale_cron_skips_ping_only_when_enabled(tmp_path: Path) -> None:
    scheduler, pinger = _scheduler(tmp_path, _heartbeat_store(**{ENABLE_CRON_ALERTS: 1}), last_cron=0.0)
    assert scheduler.tick() is HeartbeatOutcome.UNHEALTHY
    assert pinger.urls == []

    scheduler, pinger = _scheduler(tmp_path, _heartbeat_store(**{ENABLE_CRON_ALERTS: 0}), last_cron=0.0)
    assert scheduler.tick() is HeartbeatOutcome.PINGED
    assert pinger.urls == [PUSH_URL]


@pytest.mark.parametrize(
    ("result", "outcome", "level"),
    [
        (PingResult(error="ConnectTimeout: timed out"), HeartbeatOutcome.PING_FAILED, "error"),
        (PingResult(status_code=500), HeartbeatOutcome.UNEXPECTED_STATUS, "warning"),
    ],
)
def test_ping_problems_are_logged(tmp_path: Path, result: PingResult, outcome: HeartbeatOutcome, level: str) -> None:
    scheduler, _pinger = _scheduler(tmp_path, _heartbeat_store(), pinger=FakePinger(result))
    with capture_logs() as logs:
        assert scheduler.tick() is outcome
    assert logs[-1]["log_level"] == level


def test_http_pinger_reports_status() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return httpx.Response(200, text="OK")

    result = HttpPinger(transport=httpx.MockTransport(handler)).ping(PUSH_URL)
    assert result == PingResult(status_code=200)
    assert seen == [PUSH_URL]


def test_http_pinger_turns_transport_error_into_result() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused")

    result = HttpPinger(transport=httpx.MockTransport(handler)).ping(PUSH_URL)
    assert result.status_code is None
    assert result.error is not None
    assert "connection refused" in result.error
