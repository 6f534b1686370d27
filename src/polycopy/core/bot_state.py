"""Runtime pause/resume state.

Not persisted. One instance is created by the application and handed to the
components that need it.
"""

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Optional

import structlog

log = structlog.get_logger()


@dataclass
class BotState:
    """Whether new copy trades should be placed."""

    is_paused: bool = False
    paused_at: Optional[datetime] = None
    paused_by: Optional[str] = None

    def pause(self, by: str = "UI") -> None:
        self.is_paused = True
        self.paused_at = datetime.now(timezone.utc)
        self.paused_by = by
        log.info("bot_paused", paused_by=by)

    def resume(self) -> None:
        self.is_paused = False
        self.paused_at = None
        self.paused_by = None
        log.info("bot_resumed")

    def snapshot(self) -> "BotState":
        """Return a detached copy."""
        return replace(self)
