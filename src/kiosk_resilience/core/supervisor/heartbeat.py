"""File heartbeat consumed by external watchdogs."""

from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from pathlib import Path

logger = logging.getLogger(__name__)


class FileHeartbeat:
    """Writes a JSON liveness record to ``path`` on every beat.

    The file is replaced atomically so a watchdog never reads a partial
    record. Write failures are logged and swallowed.
    """

    path: Path

    def __init__(self, path: Path) -> None:
        self.path = path

    async def beat(self, status: dict[str, object]) -> None:
        record: dict[str, object] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "pid": os.getpid(),
            **status,
        }
        tmp_path = self.path.with_suffix(f"{self.path.suffix}.tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(record, f, default=str)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            logger.warning("Failed to write heartbeat to %s: %s", self.path, exc)
