"""
Chat (Slack) delivery worker.

Looks up the integration record for each ``chat-delivery`` job. A missing
or disabled integration, or one without an access token and channel, is a
logged no-op: retrying cannot fix it.
"""

import logging

from registry_sync.clients.slack import SlackClient
from registry_sync.delivery.store import NotificationStore
from registry_sync.delivery.templates import build_slack_message
from registry_sync.metrics import record_delivery
from registry_sync.queue.base import Job
from registry_sync.schemas.jobs import ChatDeliveryJob

logger = logging.getLogger(__name__)

CHANNEL = "chat"


class ChatDeliveryWorker:
    def __init__(self, client: SlackClient, store: NotificationStore, app_base_url: str):
        self.client = client
        self.store = store
        self.app_base_url = app_base_url

    def _skip(self, reason: str, integration_id: str) -> bool:
        logger.info(
            "Skipping chat delivery: %s", reason, extra={"integration_id": integration_id}
        )
        record_delivery(CHANNEL, "skipped")
        return False

    async def deliver(self, job: ChatDeliveryJob) -> bool:
        """Returns True when a message was posted."""
        integration = await self.store.get_integration(job.integration_id)
        if integration is None:
            return self._skip("integration not found", job.integration_id)
        if not integration.enabled:
            return self._skip("integration disabled", job.integration_id)

        access_token = integration.config.get("accessToken")
        channel_id = integration.config.get("channelId")
        if not access_token or not channel_id:
            return self._skip("missing accessToken or channelId", job.integration_id)

        notification = job.notification
        text, blocks = build_slack_message(notification, self.app_base_url)
        try:
            await self.client.post_message(access_token, channel_id, text, blocks)
        except Exception:
            record_delivery(CHANNEL, "failed")
            raise

        record_delivery(CHANNEL, "sent")
        logger.info(
            "Sent chat notification for %s@%s",
            notification.package_name,
            notification.new_version,
            extra={"integration_id": job.integration_id, "package": notification.package_name},
        )
        return True

    async def handle(self, job: Job) -> None:
        await self.deliver(ChatDeliveryJob.model_validate(job.data))


__all__ = ["ChatDeliveryWorker"]
