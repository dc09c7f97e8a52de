from __future__ import annotations

import secrets
import time
from typing import Callable

import structlog

from upmon.maintenance import MaintenanceTracker, round_minutes
from upmon.probes import CacheBackend, CronSignal, StorageProbe
from upmon.store import PluginConfig


logger = structlog.get_logger(__name__)

CHECK_CORE = "core"
CHECK_CRON = "cron"
CHECK_MAINTENANCE = "maintenance"


def check_storage(storage: StorageProbe) -> str | None:
    try:
        result = storage.select_one()
    except Exception as exc:
        return f"Database connection failed: {exc}"
    try:
        ok = int(result) == 1
    except (TypeError, ValueError):
        ok = False
    if not ok:
        return "Database returned unexpected result."
    return None


def check_cache(cache: CacheBackend, *, now: float) -> str | None:
    key = f"upmon_healthcheck_{int(now)}"
    value = secrets.token_hex(8)
    try:
        cache.set(key, value)
        retrieved = cache.get(key)
        cache.delete(key)
    except Exception as exc:
        return f"Cache system error: {exc}"
    if retrieved != value:
        return "Cache read/write test failed."
    return None


def check_cron(last_start: float | None, *, now: float, threshold_minutes: int) -> str | None:
    if not last_start:
        return "Cron has never run on this site."
    elapsed = now - float(last_start)
    if elapsed / 60.0 > threshold_minutes:
        return f"Cron has not run for {round_minutes(elapsed)} minutes (Threshold: {threshold_minutes} mins)."
    return None


class HealthCheckAggregator:
    """
    Runs core -> cron -> maintenance in that order.

    A core failure (storage or cache) is reported alone: nothing downstream is
    meaningful once the storage layer is broken. Cron and maintenance checks
    are independently toggled by the caller.
    """

    def __init__(
        self,
        config: PluginConfig,
        *,
        storage: StorageProbe,
        cache: CacheBackend,
        cron_signal: CronSignal,
        tracker: MaintenanceTracker,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.storage = storage
        self.cache = cache
        self.cron_signal = cron_signal
        self.tracker = tracker
        self.clock = clock

    def check_core(self) -> str | None:
        err = check_storage(self.storage)
        if err:
            return err
        return check_cache(self.cache, now=float(self.clock()))

    def check_cron(self) -> str | None:
        try:
            last_start = self.cron_signal.last_cron_start()
        except Exception as exc:
            return f"Cron status unavailable: {exc}"
        return check_cron(last_start, now=float(self.clock()), threshold_minutes=self.config.cron_threshold)

    def check_maintenance(self) -> str | None:
        try:
            return self.tracker.check_threshold(self.config.maintenance_threshold)
        except Exception as exc:
            return f"Maintenance status unavailable: {exc}"

    def run_checks(self, enable_cron: bool, enable_maintenance: bool) -> dict[str, str]:
        errors: dict[str, str] = {}

        try:
            self.tracker.reset_if_exited()
        except Exception as exc:
            logger.warning("Maintenance tracker reset failed", error=str(exc))

        err = self.check_core()
        if err:
            errors[CHECK_CORE] = err
            return errors

        if enable_cron:
            err = self.check_cron()
            if err:
                errors[CHECK_CRON] = err

        if enable_maintenance:
            err = self.check_maintenance()
            if err:
                errors[CHECK_MAINTENANCE] = err

        return errors

    def run_enabled_checks(self) -> dict[str, str]:
        return self.run_checks(
            enable_cron=self.config.cron_alerts_enabled,
            enable_maintenance=self.config.maintenance_alerts_enabled,
        )
