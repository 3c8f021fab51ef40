"""
Job queue primitives.

A Job is a named-topic message with a caller-chosen identity. JobOptions
carry the per-topic policy: attempts, backoff curve, consumer concurrency,
rolling-window rate limit, dedup retention and whether permanent errors
skip the remaining attempts. Brokers move jobs between
producers and QueueWorkers and know nothing about policy.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Protocol

from core.resilience.retry import BackoffPolicy

DEFAULT_DEDUP_TTL_SECONDS = 24 * 60 * 60


@dataclass
class Job:
    """One unit of work on a queue topic."""

    id: str
    queue: str
    data: dict[str, Any]
    # Attempts already made; 0 for a fresh job
    attempt: int = 0
    created_at: float = field(default_factory=time.time)
    # Opaque broker handle used by ack()
    receipt: Any = field(default=None, repr=False, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "queue": self.queue,
            "data": self.data,
            "attempt": self.attempt,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Job":
        return cls(
            id=payload["id"],
            queue=payload["queue"],
            data=payload.get("data") or {},
            attempt=int(payload.get("attempt", 0)),
            created_at=float(payload.get("created_at") or time.time()),
        )


@dataclass(frozen=True)
class LimiterConfig:
    """At most ``max_jobs`` job starts in any ``duration_seconds`` window."""

    max_jobs: int
    duration_seconds: float


@dataclass
class JobOptions:
    attempts: int = 3
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)
    concurrency: int = 1
    limiter: LimiterConfig | None = None
    dedup_ttl_seconds: float = DEFAULT_DEDUP_TTL_SECONDS
    # Dead-letter PERMANENT errors on the first attempt instead of retrying
    fail_fast: bool = False

    @classmethod
    def from_config(cls, settings: dict[str, Any]) -> "JobOptions":
        """Build from a merged ``queue.topics.<name>`` config mapping."""
        limiter = None
        if settings.get("limiter_max"):
            limiter = LimiterConfig(
                max_jobs=int(settings["limiter_max"]),
                duration_seconds=float(settings.get("limiter_duration_seconds", 1.0)),
            )
        return cls(
            attempts=int(settings.get("attempts", 3)),
            backoff=BackoffPolicy(
                type=settings.get("backoff_type", "exponential"),
                delay_seconds=float(settings.get("backoff_delay_seconds", 1.0)),
                max_delay_seconds=float(settings.get("backoff_max_delay_seconds", 300.0)),
            ),
            concurrency=int(settings.get("concurrency", 1)),
            limiter=limiter,
            dedup_ttl_seconds=float(
                settings.get("dedup_ttl_seconds", DEFAULT_DEDUP_TTL_SECONDS)
            ),
            fail_fast=bool(settings.get("fail_fast", False)),
        )


class Broker(Protocol):
    """Transport for jobs. Implementations: InMemoryBroker, KafkaBroker."""

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def publish(self, job: Job, delay_seconds: float = 0.0) -> None:
        """Make ``job`` available to consumers after ``delay_seconds``."""
        ...

    async def pull(self, queue: str, timeout_seconds: float = 1.0) -> Job | None:
        """Next available job on ``queue``, or None after the timeout."""
        ...

    async def ack(self, job: Job) -> None:
        """Mark a pulled job as finished (completed, rescheduled or dead)."""
        ...


__all__ = [
    "Broker",
    "DEFAULT_DEDUP_TTL_SECONDS",
    "Job",
    "JobOptions",
    "LimiterConfig",
]
