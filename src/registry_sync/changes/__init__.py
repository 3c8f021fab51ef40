"""Registry change feed: streaming consumer, listener and cursor store."""

from registry_sync.changes.consumer import ChangeStreamConsumer, LineBuffer, parse_change_line
from registry_sync.changes.cursor import CursorStore
from registry_sync.changes.listener import ChangeListener, ListenerStats

__all__ = [
    "ChangeListener",
    "ChangeStreamConsumer",
    "CursorStore",
    "LineBuffer",
    "ListenerStats",
    "parse_change_line",
]
