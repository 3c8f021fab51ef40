"""
Digest scheduling and processing.

The scheduler registers two wall-clock schedules on the ``digest`` queue
(daily 09:00 UTC, weekly Monday 09:00 UTC). The processor handles each
fire: for every user with that digest frequency it collects unread
notifications from the window and sends one email.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from core.errors import ConfigurationError
from core.logging import log_exception
from registry_sync.clients.email import EmailClient
from registry_sync.delivery.store import DIGEST_LIMIT, DigestUser, NotificationStore
from registry_sync.delivery.templates import digest_subject, render_digest
from registry_sync.delivery.unsubscribe import build_unsubscribe_url, generate_unsubscribe_token
from registry_sync.metrics import record_delivery
from registry_sync.queue.base import Job
from registry_sync.queue.scheduler import RepeatableScheduler
from registry_sync.schemas.jobs import DigestJob

logger = logging.getLogger(__name__)

DIGEST_QUEUE = "digest"
CHANNEL = "digest"
DEFAULT_DIGEST_SCHEDULES = {"daily": "0 9 * * *", "weekly": "0 9 * * 1"}


def register_digest_schedules(
    scheduler: RepeatableScheduler,
    schedules: dict[str, str] | None = None,
) -> None:
    """Replace any existing registrations with the daily and weekly digests."""
    scheduler.clear()
    for period, pattern in (schedules or DEFAULT_DIGEST_SCHEDULES).items():
        scheduler.register(f"{period}-digest", DIGEST_QUEUE, pattern, {"period": period})


@dataclass
class DigestResult:
    sent: int = 0
    failed: int = 0
    skipped: int = 0


class DigestProcessor:
    def __init__(
        self,
        store: NotificationStore,
        client: EmailClient | None,
        app_base_url: str,
        unsubscribe_base_url: str,
        unsubscribe_secret: str = "",
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self.store = store
        self.client = client
        self.app_base_url = app_base_url
        self.unsubscribe_base_url = unsubscribe_base_url
        self.unsubscribe_secret = unsubscribe_secret
        self._clock = clock

    def _unsubscribe_url(self, user_id: str) -> str | None:
        try:
            token = generate_unsubscribe_token(self.unsubscribe_secret, user_id, action="digest")
        except ConfigurationError:
            return None
        return build_unsubscribe_url(self.unsubscribe_base_url, token)

    async def process_user(self, user: DigestUser, job: DigestJob, since: datetime) -> bool:
        """Returns True if a digest was sent, False if there was nothing to send."""
        updates = await self.store.get_unread_notifications(user.user_id, since, limit=DIGEST_LIMIT)
        if not updates:
            logger.debug("No notifications for user, skipping", extra={"user_id": user.user_id})
            return False
        if self.client is None:
            logger.warning("Email delivery not configured, skipping digest")
            return False

        unsubscribe_url = self._unsubscribe_url(user.user_id)
        subject = digest_subject(job.period, updates)
        html = render_digest(updates, job.period, self.app_base_url, unsubscribe_url)
        await self.client.send_email(user.email, subject, html, unsubscribe_url=unsubscribe_url)
        logger.info(
            "Sent %s digest (%d updates)",
            job.period,
            len(updates),
            extra={"user_id": user.user_id},
        )
        return True

    async def process_digests(self, job: DigestJob) -> DigestResult:
        since = self._clock() - timedelta(days=job.window_days)
        users = await self.store.get_digest_users(job.period)
        logger.info("Found %d users with %s digest enabled", len(users), job.period)

        result = DigestResult()
        for user in users:
            try:
                sent = await self.process_user(user, job, since)
            except Exception as e:
                log_exception(logger, e, "Digest failed for user", user_id=user.user_id)
                result.failed += 1
                record_delivery(CHANNEL, "failed")
                continue
            if sent:
                result.sent += 1
                record_delivery(CHANNEL, "sent")
            else:
                result.skipped += 1
                record_delivery(CHANNEL, "skipped")

        logger.info(
            "%s digest complete: %d sent, %d failed, %d skipped",
            job.period,
            result.sent,
            result.failed,
            result.skipped,
        )
        return result

    async def handle(self, job: Job) -> None:
        await self.process_digests(DigestJob.model_validate(job.data))


__all__ = [
    "DEFAULT_DIGEST_SCHEDULES",
    "DIGEST_QUEUE",
    "DigestProcessor",
    "DigestResult",
    "register_digest_schedules",
]
