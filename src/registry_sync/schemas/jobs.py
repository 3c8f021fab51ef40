"""
Job payload schemas for the registry sync queues.

Contains Pydantic models for the messages carried on each queue topic:

Topics:
    - sync: SyncJob (one package change from the change feed)
    - bulk-sync: BulkSyncJob (up to 50 package ids from the backfill)
    - email-delivery: EmailDeliveryJob
    - chat-delivery: ChatDeliveryJob
    - digest: DigestJob

Identity keys are load-bearing for deduplication; see SyncJob.job_id and
BulkSyncJob.job_id.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

BULK_CHUNK_SIZE = 50

EmailTemplate = Literal["critical-alert", "release-launched"]
DigestPeriod = Literal["daily", "weekly"]


class CamelModel(BaseModel):
    """Accepts camelCase (wire) or snake_case (Python) keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChangeEvent(BaseModel):
    """One registry document mutation read from the change feed."""

    sequence_token: str = Field(..., min_length=1)
    package_id: str = Field(..., min_length=1)
    deleted: bool = False

    model_config = {"coerce_numbers_to_str": True}

    @property
    def is_design_document(self) -> bool:
        return self.package_id.startswith("_design/")

    def to_sync_job(self) -> "SyncJob":
        return SyncJob(
            package_id=self.package_id,
            sequence_token=self.sequence_token,
            deleted=self.deleted,
        )


class SyncJob(BaseModel):
    """Single-package sync, keyed by (package, sequence token).

    Example:
        >>> SyncJob(package_id="left-pad", sequence_token="42").job_id
        'sync:left-pad:42'
    """

    package_id: str = Field(..., min_length=1)
    sequence_token: str = Field(..., min_length=1)
    deleted: bool = False

    model_config = {"coerce_numbers_to_str": True}

    @property
    def job_id(self) -> str:
        return f"sync:{self.package_id}:{self.sequence_token}"


class BulkSyncJob(BaseModel):
    """Batch of package ids emitted by the backfill controller."""

    package_ids: list[str] = Field(..., min_length=1, max_length=BULK_CHUNK_SIZE)
    phase: int | None = None
    chunk_index: int = Field(default=0, ge=0)
    # Backfill run that emitted the chunk (run start, epoch ms)
    run_id: int | None = None

    @property
    def job_id(self) -> str:
        return make_bulk_job_id(self.phase, self.chunk_index, self.run_id)


def make_bulk_job_id(phase: int | None, chunk_index: int, run_id: int | None = None) -> str:
    if run_id:
        return f"bulk:{phase or 0}:{run_id}:{chunk_index}"
    return f"bulk:{phase or 0}:{chunk_index}"


class CriticalAlertProps(CamelModel):
    package_name: str
    new_version: str
    previous_version: str | None = None
    vulnerabilities_fixed: int = 0
    changelog_snippet: str | None = None


class ReleaseLaunchedProps(CamelModel):
    release_title: str
    released_version: str
    package_name: str | None = None
    target_version: str | None = None
    description: str | None = None
    website_url: str | None = None


class EmailDeliveryJob(CamelModel):
    """Rendered-template email for one recipient. Delivery is at-least-once."""

    to: str = Field(..., min_length=3)
    user_id: str | None = None
    template: str
    props: dict[str, Any] = Field(default_factory=dict)

    @field_validator("to")
    @classmethod
    def validate_recipient(cls, v: str) -> str:
        if "@" not in v:
            raise ValueError("recipient must be an email address")
        return v.strip()


class ChatNotification(CamelModel):
    """Notification payload rendered into Slack blocks."""

    package_name: str
    new_version: str
    previous_version: str | None = None
    is_security_update: bool = False
    is_breaking_change: bool = False
    vulnerabilities_fixed: int | None = None
    changelog_snippet: str | None = None


class ChatDeliveryJob(CamelModel):
    integration_id: str = Field(..., min_length=1)
    notification: ChatNotification


class DigestJob(BaseModel):
    period: DigestPeriod

    @property
    def window_days(self) -> int:
        return 1 if self.period == "daily" else 7
