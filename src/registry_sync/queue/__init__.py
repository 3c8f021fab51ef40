"""
Job queue abstraction.

Producers call JobQueue.add(); QueueWorkers pull from a Broker and apply
the per-topic JobOptions. RepeatableScheduler emits cron-driven jobs.
"""

from registry_sync.queue.base import Broker, Job, JobOptions, LimiterConfig
from registry_sync.queue.dedup import DedupStore, JsonDedupStore, MemoryDedupStore
from registry_sync.queue.memory import InMemoryBroker
from registry_sync.queue.queue import JobQueue
from registry_sync.queue.scheduler import RepeatableScheduler, repeat_job_id
from registry_sync.queue.worker import QueueWorker

__all__ = [
    "Broker",
    "DedupStore",
    "InMemoryBroker",
    "Job",
    "JobOptions",
    "JobQueue",
    "JsonDedupStore",
    "LimiterConfig",
    "MemoryDedupStore",
    "QueueWorker",
    "RepeatableScheduler",
    "repeat_job_id",
]
