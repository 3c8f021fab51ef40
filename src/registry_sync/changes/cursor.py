"""
Change feed cursor persistence.

Stores the last enqueued sequence token so a restarted listener resumes
from it instead of ``"now"``. Uses the atomic write pattern (write to a
temp file, then os.replace).
"""

import json
import logging
import os
from datetime import UTC, datetime
from pathlib import Path

logger = logging.getLogger(__name__)


class CursorStore:
    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> str | None:
        if not self.path.exists():
            logger.info("No change feed cursor found", extra={"path": str(self.path)})
            return None
        try:
            with open(self.path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(
                "Failed to load change feed cursor, starting from now",
                extra={"path": str(self.path), "error": str(e)},
            )
            return None
        seq = data.get("last_seq") if isinstance(data, dict) else None
        return str(seq) if seq else None

    def save(self, last_seq: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.path.with_suffix(".tmp")
        with open(temp_path, "w") as f:
            json.dump({"last_seq": last_seq, "updated_at": datetime.now(UTC).isoformat()}, f)
        os.replace(temp_path, self.path)
        logger.debug("Saved change feed cursor", extra={"last_seq": last_seq})


__all__ = ["CursorStore"]
