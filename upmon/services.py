from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

from upmon.health import HealthCheckAggregator
from upmon.heartbeat import HeartbeatScheduler, HttpPinger
from upmon.maintenance import MaintenanceTracker
from upmon.probes import CacheBackend, CronSignal, SqliteCache, SqliteStorageProbe, StorageProbe, StoreCronSignal
from upmon.reconciler import CheckUrlBuilder, MonitorReconciler, check_url_builder
from upmon.settings import UpmonSettings
from upmon.store import ConfigStore, JsonFileConfigStore, PluginConfig
from upmon.uptimerobot import UptimeRobotClient


@dataclass
class UpmonServices:
    settings: UpmonSettings
    store: ConfigStore
    config: PluginConfig
    client: UptimeRobotClient
    tracker: MaintenanceTracker
    aggregator: HealthCheckAggregator
    reconciler: MonitorReconciler
    heartbeat: HeartbeatScheduler
    build_check_url: CheckUrlBuilder


def build_services(
    settings: UpmonSettings,
    *,
    store: ConfigStore | None = None,
    storage: StorageProbe | None = None,
    cache: CacheBackend | None = None,
    cron_signal: CronSignal | None = None,
    client: UptimeRobotClient | None = None,
    pinger: HttpPinger | None = None,
    clock: Callable[[], float] = time.time,
) -> UpmonServices:
    store = store if store is not None else JsonFileConfigStore(settings.state_path)
    config = PluginConfig(store)
    if client is None:
        # Read the key on every call so a key saved at runtime takes effect.
        client = UptimeRobotClient(
            lambda: config.api_key,
            base_url=settings.api_url,
            timeout=settings.http_timeout_seconds,
        )
    tracker = MaintenanceTracker(store, dataroot=settings.dataroot, clock=clock)
    aggregator = HealthCheckAggregator(
        config,
        storage=storage if storage is not None else SqliteStorageProbe(settings.db_path),
        cache=cache if cache is not None else SqliteCache(settings.cache_db_path),
        cron_signal=cron_signal if cron_signal is not None else StoreCronSignal(store),
        tracker=tracker,
        clock=clock,
    )
    build_check_url = check_url_builder(settings.public_base_url)
    reconciler = MonitorReconciler(client, store, build_check_url, push_domain=settings.push_domain)
    heartbeat = HeartbeatScheduler(
        config,
        aggregator,
        pinger if pinger is not None else HttpPinger(timeout=settings.http_timeout_seconds),
    )
    return UpmonServices(
        settings=settings,
        store=store,
        config=config,
        client=client,
        tracker=tracker,
        aggregator=aggregator,
        reconciler=reconciler,
        heartbeat=heartbeat,
        build_check_url=build_check_url,
    )
