from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import structlog

from upmon.models import DesiredMonitorConfig, LocalLinkage, MonitorType, RemoteMonitor, Selection
from upmon.store import PluginConfig
from upmon.uptimerobot import AFFILIATE_URL, Ok, Unauthenticated, UptimeRobotClient


logger = structlog.get_logger(__name__)


def parse_monitor_selection(raw: Any) -> Selection:
    s = str(raw if raw is not None else "").strip()
    if s.lower() == "new":
        return Selection.create_new()
    # Non-numeric input cleans to 0, which means "nothing selected".
    digits = s if s.isdigit() else ""
    monitor_id = int(digits) if digits else 0
    if monitor_id <= 0:
        return Selection.none()
    return Selection.existing(monitor_id)


def parse_submission(
    *,
    monitor_id: Any,
    friendly_name: Any = "",
    monitor_type: Any = None,
    check_token: Any = "",
) -> DesiredMonitorConfig:
    selection = parse_monitor_selection(monitor_id)
    if selection.is_none:
        return DesiredMonitorConfig(selection=selection)
    mtype = MonitorType.parse(monitor_type) if monitor_type else MonitorType.KEYWORD
    return DesiredMonitorConfig(
        selection=selection,
        friendly_name=str(friendly_name or ""),
        type=mtype,
        security_token=str(check_token or ""),
    )


def ensure_linkage_consistent(client: UptimeRobotClient, config: PluginConfig) -> LocalLinkage:
    """Clear the local linkage when the linked monitor no longer exists at UptimeRobot."""
    linkage = config.load_linkage()
    if not linkage.is_linked or not config.api_key:
        return linkage

    result = client.get_monitor(int(linkage.monitor_id))
    if isinstance(result, (Ok, Unauthenticated)):
        return linkage
    if not result.not_found:
        # Unreachable, rejected or erroring is not the same as deleted.
        logger.warning(
            "Could not verify linked monitor",
            monitor_id=linkage.monitor_id,
            reason=result.message,
            status=result.status,
        )
        return linkage

    logger.warning("Linked monitor is gone, clearing local linkage", monitor_id=linkage.monitor_id, reason=result.message)
    config.clear_linkage()
    return config.load_linkage()


def compatible_monitors(monitors: list[RemoteMonitor]) -> list[RemoteMonitor]:
    return [m for m in monitors if m.monitor_type is not None]


def find_matching_monitor(monitors: list[RemoteMonitor], check_url: str) -> int | None:
    """First monitor already polling this site's check endpoint, ignoring the query string."""
    target = check_url.split("?", 1)[0]
    for m in monitors:
        if m.url.split("?", 1)[0] == target:
            return m.id
    return None


@dataclass
class MonitorFormState:
    api_key_configured: bool
    linkage: LocalLinkage = field(default_factory=LocalLinkage)
    monitors: list[RemoteMonitor] = field(default_factory=list)
    matching_monitor_id: int | None = None
    is_paid: bool = False
    default_friendly_name: str = ""

    @property
    def selected_monitor_id(self) -> int | None:
        return self.linkage.monitor_id or self.matching_monitor_id

    @property
    def selected_type(self) -> MonitorType:
        return self.linkage.monitor_type or MonitorType.KEYWORD

    def to_dict(self) -> dict[str, Any]:
        return {
            "api_key_configured": self.api_key_configured,
            "linkage": self.linkage.to_dict(),
            "selected_monitor_id": self.selected_monitor_id,
            "selected_type": self.selected_type.value,
            "matching_monitor_id": self.matching_monitor_id,
            "monitors": [m.to_dict() for m in self.monitors],
            "is_paid": self.is_paid,
            # Heartbeat monitors need a paid plan.
            "upgrade_url": None if self.is_paid else AFFILIATE_URL,
            "default_friendly_name": self.default_friendly_name,
        }


def build_form_state(
    client: UptimeRobotClient,
    config: PluginConfig,
    *,
    check_url: str,
    site_name: str,
) -> MonitorFormState:
    if not config.api_key:
        return MonitorFormState(api_key_configured=False, linkage=config.load_linkage())

    linkage = ensure_linkage_consistent(client, config)

    # Heartbeat monitors need a paid plan; paid accounts poll every minute.
    is_paid = False
    account = client.get_account()
    if isinstance(account, Ok):
        try:
            is_paid = int(account.payload.get("monitor_interval") or 0) == 1
        except (TypeError, ValueError):
            is_paid = False

    monitors: list[RemoteMonitor] = []
    listed = client.list_monitors()
    if isinstance(listed, Ok):
        monitors = compatible_monitors(listed.payload)

    return MonitorFormState(
        api_key_configured=True,
        linkage=linkage,
        monitors=monitors,
        matching_monitor_id=find_matching_monitor(monitors, check_url),
        is_paid=is_paid,
        default_friendly_name=linkage.friendly_name or site_name,
    )
