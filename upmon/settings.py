"""Process-level settings for upmon."""

import os
from typing import Optional

import yaml
from pydantic import BaseModel, Field

from upmon.uptimerobot import API_URL, PUSH_DOMAIN


class UpmonSettings(BaseModel):
    """Where things live and how to reach them. Plugin options live in the config store."""

    # UptimeRobot
    api_url: str = Field(default=API_URL, description="UptimeRobot API v3 base URL")
    push_domain: str = Field(default=PUSH_DOMAIN, description="Host used to expand heartbeat tokens")
    http_timeout_seconds: float = Field(default=30.0, description="Timeout for every outbound call")

    # Site
    public_base_url: str = Field(default="http://localhost:8112", description="Public URL of this site")
    site_name: str = Field(default="Site", description="Default monitor friendly name")
    dataroot: str = Field(default="data", description="Directory holding the maintenance marker file")

    # Storage
    state_path: str = Field(default="data/upmon-config.json", description="JSON config store")
    db_path: str = Field(default="data/upmon.db", description="SQLite file probed by the core check")
    cache_db_path: str = Field(default="data/upmon-cache.db", description="SQLite cache probed by the core check")

    # Admin API
    admin_token: str = Field(default="", description="Bearer token for the admin API")

    # Scheduling
    heartbeat_interval_seconds: int = Field(default=300, description="Heartbeat tick interval")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")


_ENV_OVERRIDES = {
    "api_url": "UPMON_API_URL",
    "push_domain": "UPMON_PUSH_DOMAIN",
    "http_timeout_seconds": "UPMON_HTTP_TIMEOUT_SECONDS",
    "public_base_url": "UPMON_PUBLIC_BASE_URL",
    "site_name": "UPMON_SITE_NAME",
    "dataroot": "UPMON_DATAROOT",
    "state_path": "UPMON_STATE_PATH",
    "db_path": "UPMON_DB_PATH",
    "cache_db_path": "UPMON_CACHE_DB_PATH",
    "admin_token": "UPMON_ADMIN_TOKEN",
    "heartbeat_interval_seconds": "UPMON_HEARTBEAT_INTERVAL_SECONDS",
    "log_level": "LOG_LEVEL",
}


def load_settings(config_path: Optional[str] = None) -> UpmonSettings:
    """Load settings from a YAML file, then apply environment overrides."""
    if config_path is None:
        config_path = os.getenv("UPMON_CONFIG", "config/upmon.yaml")

    config_data = {}
    if os.path.exists(config_path):
        with open(config_path, "r", encoding="utf-8") as f:
            config_data = yaml.safe_load(f) or {}
        if not isinstance(config_data, dict):
            raise ValueError("Config YAML must be a mapping")

    for key, env_name in _ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value is not None and value.strip():
            config_data[key] = value.strip()

    # pydantic coerces the numeric strings coming from the environment.
    return UpmonSettings(**config_data)
