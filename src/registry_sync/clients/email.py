"""Resend transactional email client."""

import logging
from typing import Any

from core.errors import ConfigurationError
from core.resilience.circuit_breaker import DELIVERY_CIRCUIT_CONFIG
from registry_sync.clients.http import BaseApiClient

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com"


class EmailClient(BaseApiClient):
    """
    Sends rendered HTML through ``POST {resend}/emails``.

    When ``unsubscribe_url`` is given the RFC 8058 one-click headers are
    attached so mail clients can show a native unsubscribe button.
    """

    service_name = "email"

    def __init__(
        self,
        api_key: str,
        sender: str,
        base_url: str = RESEND_API_URL,
        **kwargs,
    ):
        if not api_key:
            raise ConfigurationError("Email delivery requires RESEND_API_KEY")
        kwargs.setdefault("circuit_config", DELIVERY_CIRCUIT_CONFIG)
        kwargs["headers"] = {"Authorization": f"Bearer {api_key}", **kwargs.get("headers", {})}
        super().__init__(base_url, **kwargs)
        self.sender = sender

    async def send_email(
        self,
        to: str,
        subject: str,
        html: str,
        unsubscribe_url: str | None = None,
    ) -> dict[str, Any]:
        """
        Send one message.

        Returns:
            Resend response (``{"id": ...}``)

        Raises:
            ApiError: 429 surfaces as a transient error so the queue backs off
        """
        payload: dict[str, Any] = {
            "from": self.sender,
            "to": [to],
            "subject": subject,
            "html": html,
        }
        if unsubscribe_url:
            payload["headers"] = {
                "List-Unsubscribe": f"<{unsubscribe_url}>",
                "List-Unsubscribe-Post": "List-Unsubscribe=One-Click",
            }

        result = await self._request("POST", self.url("emails"), json_body=payload)
        logger.debug(
            "Email accepted",
            extra={"email_id": (result or {}).get("id"), "subject": subject[:100]},
        )
        return result or {}


__all__ = ["EmailClient", "RESEND_API_URL"]
