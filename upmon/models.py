from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class MonitorValidationError(Exception):
    message: str

    def __str__(self) -> str:
        return self.message


class MonitorType(str, Enum):
    KEYWORD = "KEYWORD"
    HEARTBEAT = "HEARTBEAT"

    @classmethod
    def parse(cls, value: Any) -> MonitorType:
        if isinstance(value, cls):
            return value
        s = str(value or "").strip().upper()
        for member in cls:
            if member.value == s:
                return member
        raise MonitorValidationError("Invalid monitor type.")

    @classmethod
    def from_local(cls, value: Any) -> MonitorType | None:
        """Decode the lower-cased type stored in the linkage; unknown values map to None."""
        s = str(value or "").strip().upper()
        for member in cls:
            if member.value == s:
                return member
        return None

    @property
    def local_name(self) -> str:
        return self.value.lower()


@dataclass(frozen=True)
class Selection:
    kind: str  # none|new|existing
    monitor_id: int | None = None

    @classmethod
    def none(cls) -> Selection:
        return cls(kind="none")

    @classmethod
    def create_new(cls) -> Selection:
        return cls(kind="new")

    @classmethod
    def existing(cls, monitor_id: int) -> Selection:
        return cls(kind="existing", monitor_id=int(monitor_id))

    @property
    def is_none(self) -> bool:
        return self.kind == "none"

    @property
    def is_new(self) -> bool:
        return self.kind == "new"

    @property
    def is_existing(self) -> bool:
        return self.kind == "existing"


@dataclass(frozen=True)
class DesiredMonitorConfig:
    selection: Selection
    friendly_name: str = ""
    type: MonitorType = MonitorType.KEYWORD
    security_token: str = ""


@dataclass(frozen=True)
class RemoteMonitor:
    id: int
    friendly_name: str = ""
    type: str = ""
    url: str = ""
    keyword_value: str = ""
    keyword_type: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> RemoteMonitor:
        # v3 uses camelCase; older payloads still carry snake_case names.
        name = data.get("friendlyName")
        if name is None:
            name = data.get("friendly_name")
        return cls(
            id=int(data["id"]),
            friendly_name=str(name or ""),
            type=str(data.get("type") or "").upper(),
            url=str(data.get("url") or ""),
            keyword_value=str(data.get("keywordValue") or ""),
            keyword_type=str(data.get("keywordType") or ""),
        )

    @property
    def monitor_type(self) -> MonitorType | None:
        return MonitorType.from_local(self.type)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "friendlyName": self.friendly_name,
            "type": self.type,
            "url": self.url,
        }


@dataclass(frozen=True)
class LocalLinkage:
    monitor_id: int | None = None
    monitor_type: MonitorType | None = None
    friendly_name: str | None = None
    heartbeat_url: str | None = None
    check_token: str | None = None

    @property
    def is_linked(self) -> bool:
        return self.monitor_id is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "monitor_id": self.monitor_id,
            "monitor_type": self.monitor_type.local_name if self.monitor_type else None,
            "friendly_name": self.friendly_name,
            "heartbeat_url": self.heartbeat_url,
            "check_token": self.check_token,
        }
