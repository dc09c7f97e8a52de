from __future__ import annotations

from pydantic import BaseModel


class MonitorSubmission(BaseModel):
    # "" clears the linkage, "new" creates a monitor, digits link an existing one.
    monitor_id: str | int = ""
    friendly_name: str = ""
    type: str | None = None
    check_token: str = ""
