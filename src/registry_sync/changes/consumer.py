"""
Registry change feed consumer.

Streams ``{replicate}/_changes?feed=continuous`` as newline-delimited JSON.
Each complete line is parsed into a ChangeEvent; heartbeats (blank lines,
``{}``), unparseable lines and records without ``id``/``seq`` are dropped.

The consumer does not reconnect. When the stream ends or breaks the
generator stops (or raises ChangeFeedError) and the process supervisor
restarts from the last stored sequence token.
"""

import codecs
import json
import logging
from collections.abc import AsyncIterator

import aiohttp

from core.errors import ChangeFeedError
from registry_sync.metrics import changes_received_counter, changes_skipped_counter
from registry_sync.schemas.jobs import ChangeEvent

logger = logging.getLogger(__name__)

HEARTBEAT_MS = 30_000
READ_CHUNK_BYTES = 64 * 1024


class LineBuffer:
    """Accumulates decoded text across reads and releases only complete lines."""

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""

    def feed(self, chunk: bytes) -> list[str]:
        self._pending += self._decoder.decode(chunk)
        if "\n" not in self._pending:
            return []
        *lines, self._pending = self._pending.split("\n")
        return lines

    @property
    def pending(self) -> str:
        return self._pending


def parse_change_line(line: str) -> ChangeEvent | None:
    """Parse one feed line; None for heartbeats and anything malformed."""
    if not line.strip():
        return None
    try:
        record = json.loads(line)
    except json.JSONDecodeError:
        changes_skipped_counter.labels(reason="invalid_json").inc()
        return None
    if not isinstance(record, dict):
        changes_skipped_counter.labels(reason="invalid_json").inc()
        return None

    package_id = record.get("id")
    seq = record.get("seq")
    if not package_id or seq is None or seq == "":
        changes_skipped_counter.labels(reason="heartbeat").inc()
        return None
    if not isinstance(package_id, str) or not isinstance(seq, (str, int)):
        changes_skipped_counter.labels(reason="invalid_record").inc()
        return None

    return ChangeEvent(
        sequence_token=str(seq),
        package_id=package_id,
        deleted=bool(record.get("deleted", False)),
    )


class ChangeStreamConsumer:
    """
    One continuous-changes connection per ``changes()`` call.

    Example:
        consumer = ChangeStreamConsumer("https://replicate.npmjs.com/registry")
        async for change in consumer.changes(since="now"):
            ...
    """

    def __init__(
        self,
        replicate_url: str,
        session: aiohttp.ClientSession | None = None,
        connect_timeout_seconds: float = 30.0,
        heartbeat_ms: int = HEARTBEAT_MS,
    ):
        self.replicate_url = replicate_url.rstrip("/")
        self.heartbeat_ms = heartbeat_ms
        self._session = session
        self._owns_session = session is None
        # Read timeout covers several missed heartbeats
        self._timeout = aiohttp.ClientTimeout(
            total=None,
            sock_connect=connect_timeout_seconds,
            sock_read=max(heartbeat_ms / 1000 * 3, 1.0),
        )

    def changes_url(self, since: str) -> str:
        return (
            f"{self.replicate_url}/_changes?since={since}"
            f"&feed=continuous&include_docs=false&heartbeat={self.heartbeat_ms}"
        )

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def changes(self, since: str = "now") -> AsyncIterator[ChangeEvent]:
        """
        Yield ChangeEvents in feed order.

        Raises:
            ChangeFeedError: Connection could not be opened, returned a
                non-2xx status, or broke mid-stream
        """
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True

        url = self.changes_url(since)
        logger.info("Connecting to change feed", extra={"api_url": url, "since": since})

        try:
            response = await self._session.get(url, timeout=self._timeout)
        except (aiohttp.ClientError, TimeoutError) as e:
            raise ChangeFeedError(f"Failed to connect to changes feed: {e}", cause=e) from e

        try:
            if response.status >= 300:
                raise ChangeFeedError(
                    f"Failed to connect to changes feed: {response.status}",
                    context={"status_code": response.status},
                )
            logger.info("Change feed connected", extra={"since": since})

            buffer = LineBuffer()
            try:
                async for chunk in response.content.iter_chunked(READ_CHUNK_BYTES):
                    for line in buffer.feed(chunk):
                        change = parse_change_line(line)
                        if change is None:
                            continue
                        changes_received_counter.inc()
                        yield change
            except (aiohttp.ClientError, TimeoutError) as e:
                raise ChangeFeedError(f"Change feed stream interrupted: {e}", cause=e) from e

            logger.info(
                "Change feed closed by server",
                extra={"unflushed_bytes": len(buffer.pending)},
            )
        finally:
            response.release()


__all__ = ["ChangeStreamConsumer", "LineBuffer", "parse_change_line"]
