from __future__ import annotations

import math
import time
from pathlib import Path
from typing import Callable

import structlog

from upmon.store import MAINTENANCE_ENABLED, MAINTENANCE_START, ConfigStore


logger = structlog.get_logger(__name__)

MAINTENANCE_MARKER = "climaintenance.html"


def round_minutes(seconds: float) -> int:
    # Half-up, so 90.5 minutes reads as 91.
    return int(math.floor(float(seconds) / 60.0 + 0.5))


class MaintenanceTracker:
    """
    Remembers when maintenance mode was first observed.

    Maintenance is detected from either the live `maintenance_enabled` flag or
    the CLI marker file in the data root. The recorded start is cleared as soon
    as neither signal is present, and set on the first threshold check that sees
    maintenance without a recorded start.
    """

    def __init__(
        self,
        store: ConfigStore,
        *,
        dataroot: str | Path | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.dataroot = Path(dataroot) if dataroot else None
        self.clock = clock

    @property
    def marker_path(self) -> Path | None:
        if self.dataroot is None:
            return None
        return self.dataroot / MAINTENANCE_MARKER

    def is_maintenance_mode(self) -> bool:
        flag = self.store.get(MAINTENANCE_ENABLED)
        if isinstance(flag, str):
            flag = flag.strip().lower() in {"1", "true", "yes", "on"}
        if flag:
            return True
        marker = self.marker_path
        return bool(marker is not None and marker.exists())

    def started_at(self) -> float | None:
        raw = self.store.get(MAINTENANCE_START)
        if raw is None or raw == "":
            return None
        try:
            ts = float(raw)
        except (TypeError, ValueError):
            return None
        return ts if ts > 0 else None

    def reset_if_exited(self) -> None:
        if not self.is_maintenance_mode() and self.store.get(MAINTENANCE_START) is not None:
            logger.info("Site left maintenance mode, clearing tracked start")
            self.store.unset(MAINTENANCE_START)

    def check_threshold(self, threshold_minutes: int) -> str | None:
        """Return an error message when maintenance has lasted longer than the threshold."""
        if not self.is_maintenance_mode():
            return None

        now = float(self.clock())
        start = self.started_at()
        if start is None:
            self.store.set(MAINTENANCE_START, now)
            return None

        elapsed = now - start
        if elapsed / 60.0 > threshold_minutes:
            return (
                f"Site has been in maintenance mode for {round_minutes(elapsed)} minutes "
                f"(Threshold: {threshold_minutes} mins)."
            )
        return None

    def enter_maintenance(self) -> None:
        self.store.set(MAINTENANCE_ENABLED, True)

    def exit_maintenance(self) -> None:
        self.store.unset(MAINTENANCE_ENABLED)
        self.reset_if_exited()
