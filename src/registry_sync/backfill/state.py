"""
Backfill state persistence.

Two keys are persisted:
    backfill:state     -> BackfillState record (single writer: the controller)
    backfill:packages  -> full list of package ids being walked

JsonBackfillStore keeps each key in its own JSON file and writes with the
temp-file + os.replace pattern, so a crash mid-write leaves the previous
checkpoint intact.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)

STATE_KEY = "backfill:state"
PACKAGES_KEY = "backfill:packages"


class BackfillStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class BackfillState:
    status: BackfillStatus = BackfillStatus.IDLE
    offset: int = 0
    total: int = 0
    synced: int = 0
    failed: int = 0
    started_at: int = 0  # epoch ms
    updated_at: int = 0  # epoch ms
    rate: float = 0.0  # packages queued per second
    error: str | None = None
    run_id: int = 0  # epoch ms of the start command; 0 before any run

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BackfillState":
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        if "status" in values:
            values["status"] = BackfillStatus(values["status"])
        return cls(**values)


class BackfillStore(Protocol):
    async def get_state(self) -> BackfillState: ...

    async def set_state(self, state: BackfillState) -> None: ...

    async def get_packages(self) -> list[str]: ...

    async def set_packages(self, packages: list[str]) -> None: ...

    async def delete_packages(self) -> None: ...


class MemoryBackfillStore:
    """Process-local store keyed the same way as the durable one."""

    def __init__(self):
        self.data: dict[str, Any] = {}

    async def get_state(self) -> BackfillState:
        raw = self.data.get(STATE_KEY)
        return BackfillState.from_dict(raw) if raw else BackfillState()

    async def set_state(self, state: BackfillState) -> None:
        self.data[STATE_KEY] = state.to_dict()

    async def get_packages(self) -> list[str]:
        return list(self.data.get(PACKAGES_KEY) or [])

    async def set_packages(self, packages: list[str]) -> None:
        self.data[PACKAGES_KEY] = list(packages)

    async def delete_packages(self) -> None:
        self.data.pop(PACKAGES_KEY, None)


class JsonBackfillStore:
    """
    Durable store: ``<state_dir>/backfill_state.json`` and
    ``<state_dir>/backfill_packages.json``.
    """

    def __init__(self, state_dir: str | Path):
        self.state_dir = Path(state_dir)

    def _path(self, key: str) -> Path:
        return self.state_dir / f"{key.replace(':', '_')}.json"

    def _read(self, key: str) -> Any:
        path = self._path(key)
        if not path.exists():
            return None
        with open(path) as f:
            return json.load(f)

    def _write(self, key: str, value: Any) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = path.with_suffix(".tmp")
        with open(temp_path, "w") as f:
            json.dump(value, f)
        os.replace(temp_path, path)

    async def get_state(self) -> BackfillState:
        raw = self._read(STATE_KEY)
        return BackfillState.from_dict(raw) if isinstance(raw, dict) else BackfillState()

    async def set_state(self, state: BackfillState) -> None:
        self._write(STATE_KEY, state.to_dict())

    async def get_packages(self) -> list[str]:
        raw = self._read(PACKAGES_KEY)
        return [p for p in raw if isinstance(p, str)] if isinstance(raw, list) else []

    async def set_packages(self, packages: list[str]) -> None:
        self._write(PACKAGES_KEY, list(packages))
        logger.info(
            "Stored backfill package list",
            extra={"path": str(self._path(PACKAGES_KEY)), "total": len(packages)},
        )

    async def delete_packages(self) -> None:
        self._path(PACKAGES_KEY).unlink(missing_ok=True)


__all__ = [
    "BackfillState",
    "BackfillStatus",
    "BackfillStore",
    "JsonBackfillStore",
    "MemoryBackfillStore",
    "PACKAGES_KEY",
    "STATE_KEY",
]
