from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Protocol

import structlog

from upmon.models import LocalLinkage, MonitorType


logger = structlog.get_logger(__name__)


# Plugin configuration keys.
ENABLE = "enable"
API_KEY = "apikey"
CHECK_TOKEN = "check_token"
ENABLE_CRON_ALERTS = "enable_cron_alerts"
CRON_THRESHOLD = "cron_threshold"
ENABLE_MAINTENANCE_ALERTS = "enable_maintenance_alerts"
MAINTENANCE_THRESHOLD = "maintenance_threshold"

# Linkage (written by the reconciler).
MONITOR_ID = "monitor_id"
MONITOR_TYPE = "monitor_type"
FRIENDLY_NAME = "friendly_name"
HEARTBEAT_URL = "heartbeat_url"

# Tracker and site signals.
MAINTENANCE_START = "maintenance_start"
MAINTENANCE_ENABLED = "maintenance_enabled"
LAST_CRON_START = "lastcronstart"

DEFAULT_THRESHOLD_MINUTES = 60

LINKAGE_KEYS = (MONITOR_ID, MONITOR_TYPE, FRIENDLY_NAME, HEARTBEAT_URL)


class ConfigStore(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def unset(self, key: str) -> None: ...


class MemoryConfigStore:
    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def unset(self, key: str) -> None:
        self._data.pop(key, None)

    def as_dict(self) -> dict[str, Any]:
        return dict(self._data)


class JsonFileConfigStore:
    """
    Key/value store persisted as a single JSON object.

    Every write rewrites the file through a temporary sibling and an atomic
    rename, so a reader never observes a partially written document. There is
    no locking across processes: single-key writes are the only guarantee.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def _load(self) -> dict[str, Any]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Config store is not valid JSON, starting empty", path=str(self.path))
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(f"{self.path.name}.tmp")
        tmp.write_text(json.dumps(data, ensure_ascii=False, sort_keys=True), encoding="utf-8")
        tmp.replace(self.path)

    def get(self, key: str, default: Any = None) -> Any:
        return self._load().get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = self._load()
        data[key] = value
        self._write(data)

    def unset(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._write(data)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "y", "on"}
    return bool(value)


def _as_threshold(value: Any) -> int:
    try:
        n = int(str(value).strip())
    except (TypeError, ValueError):
        return DEFAULT_THRESHOLD_MINUTES
    return n if n > 0 else DEFAULT_THRESHOLD_MINUTES


def _as_optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _as_optional_str(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value)
    return s if s else None


class PluginConfig:
    """Typed view over the plugin-scoped configuration store."""

    def __init__(self, store: ConfigStore) -> None:
        self.store = store

    @property
    def enabled(self) -> bool:
        return _as_bool(self.store.get(ENABLE))

    @property
    def api_key(self) -> str:
        return str(self.store.get(API_KEY) or "")

    @property
    def check_token(self) -> str:
        return str(self.store.get(CHECK_TOKEN) or "")

    @property
    def cron_alerts_enabled(self) -> bool:
        return _as_bool(self.store.get(ENABLE_CRON_ALERTS))

    @property
    def maintenance_alerts_enabled(self) -> bool:
        return _as_bool(self.store.get(ENABLE_MAINTENANCE_ALERTS))

    @property
    def cron_threshold(self) -> int:
        return _as_threshold(self.store.get(CRON_THRESHOLD))

    @property
    def maintenance_threshold(self) -> int:
        return _as_threshold(self.store.get(MAINTENANCE_THRESHOLD))

    @property
    def monitor_type(self) -> str:
        return str(self.store.get(MONITOR_TYPE) or "")

    @property
    def heartbeat_url(self) -> str:
        return str(self.store.get(HEARTBEAT_URL) or "")

    def load_linkage(self) -> LocalLinkage:
        return LocalLinkage(
            monitor_id=_as_optional_int(self.store.get(MONITOR_ID)),
            monitor_type=MonitorType.from_local(self.store.get(MONITOR_TYPE)),
            friendly_name=_as_optional_str(self.store.get(FRIENDLY_NAME)),
            heartbeat_url=_as_optional_str(self.store.get(HEARTBEAT_URL)),
            check_token=_as_optional_str(self.store.get(CHECK_TOKEN)),
        )

    def clear_linkage(self) -> None:
        # check_token is a site setting and survives unlinking.
        for key in LINKAGE_KEYS:
            self.store.unset(key)
