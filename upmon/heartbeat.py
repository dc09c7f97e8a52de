from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import httpx
import structlog

from upmon.health import HealthCheckAggregator
from upmon.models import MonitorType
from upmon.store import PluginConfig


logger = structlog.get_logger(__name__)


class HeartbeatOutcome(str, Enum):
    DISABLED = "disabled"
    NOT_HEARTBEAT = "not_heartbeat"
    NO_URL = "no_url"
    UNHEALTHY = "unhealthy"
    PINGED = "pinged"
    UNEXPECTED_STATUS = "unexpected_status"
    PING_FAILED = "ping_failed"


@dataclass(frozen=True)
class PingResult:
    status_code: int | None = None
    error: str | None = None


class HttpPinger:
    def __init__(self, *, timeout: float = 30.0, transport: httpx.BaseTransport | None = None) -> None:
        self.timeout = float(timeout)
        self._transport = transport

    def ping(self, url: str) -> PingResult:
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                resp = client.get(url)
        except httpx.HTTPError as exc:
            return PingResult(error=f"{type(exc).__name__}: {exc}")
        return PingResult(status_code=resp.status_code)


class HeartbeatScheduler:
    """
    Periodic push for Heartbeat monitors.

    The URL is pinged only when every enabled health check passes. When a check
    fails nothing is sent, and UptimeRobot raises the alert once the expected
    heartbeat does not arrive.
    """

    def __init__(self, config: PluginConfig, aggregator: HealthCheckAggregator, pinger: HttpPinger) -> None:
        self.config = config
        self.aggregator = aggregator
        self.pinger = pinger

    def tick(self) -> HeartbeatOutcome:
        if not self.config.enabled:
            logger.info("Uptime Monitor plugin is disabled.")
            return HeartbeatOutcome.DISABLED

        monitor_type = self.config.monitor_type
        if monitor_type != MonitorType.HEARTBEAT.local_name:
            logger.info(
                "Skipping heartbeat ping, monitor is not a heartbeat monitor",
                monitor_type=monitor_type or "unknown",
            )
            return HeartbeatOutcome.NOT_HEARTBEAT

        url = self.config.heartbeat_url
        if not url:
            logger.info("No heartbeat URL configured, this task only works with Heartbeat (Push) monitors")
            return HeartbeatOutcome.NO_URL

        errors = self.aggregator.run_enabled_checks()
        if errors:
            for check, message in errors.items():
                logger.warning("Health check failed", check=check, message=message)
            logger.warning("Skipping heartbeat ping, UptimeRobot will detect the outage")
            return HeartbeatOutcome.UNHEALTHY

        logger.info("All health checks passed, pinging heartbeat URL")
        return self._ping(url)

    def _ping(self, url: str) -> HeartbeatOutcome:
        result = self.pinger.ping(url)
        if result.error is not None:
            logger.error("Heartbeat ping failed", error=result.error)
            return HeartbeatOutcome.PING_FAILED
        code = int(result.status_code or 0)
        if 200 <= code < 300:
            logger.info("Heartbeat ping successful", status=code)
            return HeartbeatOutcome.PINGED
        logger.warning("Heartbeat ping returned unexpected status", status=code)
        return HeartbeatOutcome.UNEXPECTED_STATUS
