"""Shared JSON serialization utilities for type-safe JSON encoding."""

from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel


def json_serializer(obj: Any) -> Any:
    """
    ``default=`` hook for json.dumps.

    Keeps numbers numeric and gives readable output for the types that
    show up in log extras and persisted state:
    - datetime/date -> ISO 8601 string
    - pydantic models -> JSON-mode dict
    - Enum -> value
    - Path, sets -> string / sorted list
    - Everything else -> string
    """
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=str)
    return str(obj)


__all__ = ["json_serializer"]
