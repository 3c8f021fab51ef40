"""
Email delivery worker.

Handles ``email-delivery`` jobs: validates the template props, renders the
HTML body and sends it through Resend. Unknown templates and a missing
Resend key are logged and skipped; send failures propagate so the queue
retries with backoff.
"""

import logging
from collections.abc import Callable

from core.errors import ConfigurationError
from registry_sync.clients.email import EmailClient
from registry_sync.delivery.templates import (
    critical_alert_subject,
    release_launched_subject,
    render_critical_alert,
    render_release_launched,
)
from registry_sync.delivery.unsubscribe import build_unsubscribe_url, generate_unsubscribe_token
from registry_sync.metrics import record_delivery
from registry_sync.queue.base import Job
from registry_sync.schemas.jobs import CriticalAlertProps, EmailDeliveryJob, ReleaseLaunchedProps

logger = logging.getLogger(__name__)

CHANNEL = "email"

OUTCOME_SENT = "sent"
OUTCOME_SKIPPED = "skipped"


class EmailDeliveryWorker:
    def __init__(
        self,
        client: EmailClient | None,
        app_base_url: str,
        unsubscribe_base_url: str,
        unsubscribe_secret: str = "",
    ):
        self.client = client
        self.app_base_url = app_base_url
        self.unsubscribe_base_url = unsubscribe_base_url
        self.unsubscribe_secret = unsubscribe_secret
        self._renderers: dict[str, Callable[[EmailDeliveryJob, str | None], tuple[str, str]]] = {
            "critical-alert": self._render_critical_alert,
            "release-launched": self._render_release_launched,
        }

    def unsubscribe_url(self, user_id: str | None) -> str | None:
        if not user_id:
            return None
        try:
            token = generate_unsubscribe_token(self.unsubscribe_secret, user_id)
        except ConfigurationError as e:
            logger.warning("Sending without unsubscribe link: %s", e, extra={"user_id": user_id})
            return None
        return build_unsubscribe_url(self.unsubscribe_base_url, token)

    def _render_critical_alert(
        self, job: EmailDeliveryJob, unsubscribe_url: str | None
    ) -> tuple[str, str]:
        props = CriticalAlertProps.model_validate(job.props)
        return (
            critical_alert_subject(props),
            render_critical_alert(props, self.app_base_url, unsubscribe_url),
        )

    def _render_release_launched(
        self, job: EmailDeliveryJob, unsubscribe_url: str | None
    ) -> tuple[str, str]:
        props = ReleaseLaunchedProps.model_validate(job.props)
        return (
            release_launched_subject(props),
            render_release_launched(props, self.app_base_url, unsubscribe_url),
        )

    async def deliver(self, job: EmailDeliveryJob) -> str:
        """Render and send one email; returns OUTCOME_SENT or OUTCOME_SKIPPED."""
        renderer = self._renderers.get(job.template)
        if renderer is None:
            logger.warning("Unknown email template %s, skipping", job.template)
            record_delivery(CHANNEL, OUTCOME_SKIPPED)
            return OUTCOME_SKIPPED

        if self.client is None:
            logger.warning("Email delivery not configured, skipping", extra={"template": job.template})
            record_delivery(CHANNEL, OUTCOME_SKIPPED)
            return OUTCOME_SKIPPED

        unsubscribe_url = self.unsubscribe_url(job.user_id)
        subject, html = renderer(job, unsubscribe_url)
        try:
            await self.client.send_email(job.to, subject, html, unsubscribe_url=unsubscribe_url)
        except Exception:
            record_delivery(CHANNEL, "failed")
            raise

        record_delivery(CHANNEL, OUTCOME_SENT)
        logger.info("Sent %s email", job.template, extra={"subject": subject[:100]})
        return OUTCOME_SENT

    async def handle(self, job: Job) -> None:
        # Malformed payloads raise ValidationError (a ValueError) and are
        # dead-lettered without retries.
        await self.deliver(EmailDeliveryJob.model_validate(job.data))


__all__ = ["EmailDeliveryWorker", "OUTCOME_SENT", "OUTCOME_SKIPPED"]
