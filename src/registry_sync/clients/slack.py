"""Slack Web API client for ``chat.postMessage``."""

import logging
from typing import Any

from core.errors import DeliveryError
from core.resilience.circuit_breaker import DELIVERY_CIRCUIT_CONFIG
from registry_sync.clients.http import BaseApiClient

logger = logging.getLogger(__name__)

SLACK_API_URL = "https://slack.com/api"


class SlackApiError(DeliveryError):
    """Slack answered HTTP 200 with ``ok: false``."""

    def __init__(self, error_code: str):
        super().__init__(f"Slack API error: {error_code}", context={"slack_error": error_code})
        self.error_code = error_code


class SlackClient(BaseApiClient):
    """Posts messages with a per-integration bearer token."""

    service_name = "slack"

    def __init__(self, base_url: str = SLACK_API_URL, **kwargs):
        kwargs.setdefault("circuit_config", DELIVERY_CIRCUIT_CONFIG)
        super().__init__(base_url, **kwargs)

    async def post_message(
        self,
        access_token: str,
        channel_id: str,
        text: str,
        blocks: list[dict[str, Any]],
    ) -> dict[str, Any]:
        """
        Raises:
            SlackApiError: Response body has ``ok: false``
            ApiError: Non-2xx status or transport failure
        """
        data = await self._request(
            "POST",
            self.url("chat.postMessage"),
            json_body={
                "channel": channel_id,
                "text": text,
                "blocks": blocks,
                "unfurl_links": False,
                "unfurl_media": False,
            },
            headers={"Authorization": f"Bearer {access_token}"},
        )
        if not isinstance(data, dict) or not data.get("ok"):
            error_code = data.get("error", "unknown_error") if isinstance(data, dict) else "invalid_response"
            raise SlackApiError(error_code)
        return data


__all__ = ["SLACK_API_URL", "SlackApiError", "SlackClient"]
