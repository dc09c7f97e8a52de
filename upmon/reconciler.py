from __future__ import annotations

import re
from typing import Any, Callable

import structlog

from upmon.models import DesiredMonitorConfig, LocalLinkage, MonitorType, MonitorValidationError, RemoteMonitor
from upmon.store import (
    CHECK_TOKEN,
    FRIENDLY_NAME,
    HEARTBEAT_URL,
    MONITOR_ID,
    MONITOR_TYPE,
    ConfigStore,
    PluginConfig,
)
from upmon.uptimerobot import (
    KEYWORD,
    KEYWORD_TYPE_ALERT_NOT_EXISTS,
    PUSH_DOMAIN,
    Ok,
    UptimeRobotClient,
    expand_heartbeat_url,
)


logger = structlog.get_logger(__name__)

FRIENDLY_NAME_MAX_LEN = 250

ERR_FRIENDLY_NAME_REQUIRED = "A friendly name is required."
ERR_FRIENDLY_NAME_TOO_LONG = "The friendly name must be 250 characters or less."
ERR_INVALID_TOKEN = "The security token may only contain letters and numbers."
ERR_TYPE_CHANGE = "The monitor type cannot be changed for an existing monitor."
ERR_CREATE_FAILED = "Could not create the monitor"

_NOT_ALPHANUMEXT_RE = re.compile(r"[^A-Za-z0-9_-]")
_NOT_ALPHANUM_RE = re.compile(r"[^A-Za-z0-9]")

CheckUrlBuilder = Callable[[str], str]


def clean_friendly_name(value: Any) -> str:
    return _NOT_ALPHANUMEXT_RE.sub("", str(value or ""))


def clean_token(value: Any) -> str:
    return _NOT_ALPHANUM_RE.sub("", str(value or ""))


def check_url_builder(public_base_url: str, path: str = "/check") -> CheckUrlBuilder:
    """URL the keyword monitor polls; the security token rides along as ?token=."""
    base = str(public_base_url or "").rstrip("/")

    def build(token: str = "") -> str:
        url = base + path
        if token:
            url += f"?token={token}"
        return url

    return build


def validate_desired(desired: DesiredMonitorConfig) -> tuple[str, str]:
    name = clean_friendly_name(desired.friendly_name)
    if not name:
        raise MonitorValidationError(ERR_FRIENDLY_NAME_REQUIRED)
    if len(name) > FRIENDLY_NAME_MAX_LEN:
        raise MonitorValidationError(ERR_FRIENDLY_NAME_TOO_LONG)

    token = str(desired.security_token or "")
    if clean_token(token) != token:
        raise MonitorValidationError(ERR_INVALID_TOKEN)
    return name, token


class MonitorReconciler:
    """
    Applies a submitted monitor setting: unlink, create a new UptimeRobot
    monitor, or link an existing one and push drift corrections to it.

    The linkage written to the store is the only persisted state. A failed
    validation or a failed create leaves it untouched.
    """

    def __init__(
        self,
        client: UptimeRobotClient,
        store: ConfigStore,
        build_check_url: CheckUrlBuilder,
        *,
        push_domain: str = PUSH_DOMAIN,
    ) -> None:
        self.client = client
        self.store = store
        self.config = PluginConfig(store)
        self.build_check_url = build_check_url
        self.push_domain = push_domain

    def reconcile(self, desired: DesiredMonitorConfig) -> LocalLinkage:
        if desired.selection.is_none:
            self.config.clear_linkage()
            logger.info("Monitor unlinked")
            return self.config.load_linkage()

        name, token = validate_desired(desired)
        current = self.config.load_linkage()

        if desired.selection.is_existing:
            self._guard_type_change(desired, current)

        if desired.selection.is_new:
            return self._create(name, desired.type, token)
        return self._link_existing(int(desired.selection.monitor_id), name, desired.type, token)

    def _guard_type_change(self, desired: DesiredMonitorConfig, current: LocalLinkage) -> None:
        # Compared against what we recorded, not the vendor's copy, so a stale
        # remote cannot mask the change.
        if current.monitor_id != desired.selection.monitor_id or current.monitor_type is None:
            return
        if desired.type is not current.monitor_type:
            logger.warning(
                "Rejected monitor type change",
                monitor_id=current.monitor_id,
                recorded=current.monitor_type.value,
                submitted=desired.type.value,
            )
            raise MonitorValidationError(ERR_TYPE_CHANGE)

    def _create(self, name: str, mtype: MonitorType, token: str) -> LocalLinkage:
        url = self.build_check_url(token)
        result = self.client.create_monitor(name, mtype, url, KEYWORD, KEYWORD_TYPE_ALERT_NOT_EXISTS)
        if not isinstance(result, Ok):
            message = getattr(result, "message", "") or "Unknown error"
            raise MonitorValidationError(f"{ERR_CREATE_FAILED}: {message}")

        monitor: RemoteMonitor = result.payload
        self.store.set(CHECK_TOKEN, token)
        self.store.set(MONITOR_ID, monitor.id)
        self.store.set(MONITOR_TYPE, mtype.local_name)
        self.store.set(FRIENDLY_NAME, name)
        heartbeat_url = expand_heartbeat_url(monitor, self.push_domain) if mtype is MonitorType.HEARTBEAT else ""
        if heartbeat_url:
            self.store.set(HEARTBEAT_URL, heartbeat_url)
        else:
            self.store.unset(HEARTBEAT_URL)

        logger.info("Created monitor", monitor_id=monitor.id, type=mtype.value)
        return self.config.load_linkage()

    def _link_existing(self, monitor_id: int, name: str, submitted_type: MonitorType, token: str) -> LocalLinkage:
        # Linking succeeds locally even when the detail fetch fails.
        if self.config.load_linkage().monitor_id != monitor_id:
            # The previous monitor's details must not outlive its id.
            for key in (MONITOR_TYPE, FRIENDLY_NAME, HEARTBEAT_URL):
                self.store.unset(key)
        self.store.set(CHECK_TOKEN, token)
        self.store.set(MONITOR_ID, monitor_id)

        result = self.client.get_monitor(monitor_id)
        if not isinstance(result, Ok):
            logger.warning("Linked monitor but could not fetch its details", monitor_id=monitor_id, result=result)
            return self.config.load_linkage()

        monitor: RemoteMonitor = result.payload
        remote_type = monitor.monitor_type or MonitorType.KEYWORD
        if remote_type is not submitted_type:
            logger.warning(
                "Submitted type differs from the remote monitor, keeping the remote type",
                monitor_id=monitor_id,
                remote=remote_type.value,
                submitted=submitted_type.value,
            )

        updates = self.drift_updates(monitor, name, token)

        if remote_type is MonitorType.HEARTBEAT:
            heartbeat_url = expand_heartbeat_url(monitor, self.push_domain)
            if heartbeat_url:
                self.store.set(HEARTBEAT_URL, heartbeat_url)
            else:
                self.store.unset(HEARTBEAT_URL)
        else:
            self.store.unset(HEARTBEAT_URL)

        if updates:
            update = self.client.update_monitor(monitor_id, updates)
            if not isinstance(update, Ok):
                logger.warning("Drift update failed", monitor_id=monitor_id, fields=sorted(updates), result=update)
            else:
                logger.info("Updated monitor", monitor_id=monitor_id, fields=sorted(updates))

        self.store.set(MONITOR_TYPE, remote_type.local_name)
        self.store.set(FRIENDLY_NAME, name or monitor.friendly_name)
        return self.config.load_linkage()

    def drift_updates(self, monitor: RemoteMonitor, name: str, token: str) -> dict[str, Any]:
        """Fields to PATCH so the remote monitor matches this site; empty when in sync."""
        updates: dict[str, Any] = {}
        if name and name != monitor.friendly_name:
            updates["friendlyName"] = name

        if monitor.monitor_type is MonitorType.HEARTBEAT:
            # The push URL belongs to UptimeRobot.
            return updates

        expected_url = self.build_check_url(token)
        if monitor.url != expected_url:
            updates["url"] = expected_url
        if monitor.keyword_value != KEYWORD:
            updates["keywordValue"] = KEYWORD
            updates["keywordType"] = KEYWORD_TYPE_ALERT_NOT_EXISTS
        return updates
