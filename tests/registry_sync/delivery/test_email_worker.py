"""Tests for the email delivery worker."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import ValidationError

from registry_sync.clients.http import ApiError
from registry_sync.delivery.email_worker import (
    OUTCOME_SENT,
    OUTCOME_SKIPPED,
    EmailDeliveryWorker,
)
from registry_sync.delivery.unsubscribe import verify_unsubscribe_token
from registry_sync.queue.base import Job
from registry_sync.schemas.jobs import EmailDeliveryJob

APP_URL = "https://packrun.dev"
UNSUBSCRIBE_URL = "https://packrun.dev/api/unsubscribe"


@pytest.fixture
def client():
    mock = MagicMock()
    mock.send_email = AsyncMock(return_value={"id": "email-1"})
    return mock


def make_worker(client, secret="s3cret"):
    return EmailDeliveryWorker(client, APP_URL, UNSUBSCRIBE_URL, unsubscribe_secret=secret)


def critical_job(**overrides):
    payload = {
        "to": "dev@example.com",
        "userId": "user-1",
        "template": "critical-alert",
        "props": {
            "packageName": "lodash",
            "newVersion": "4.17.21",
            "previousVersion": "4.17.20",
            "vulnerabilitiesFixed": 2,
        },
    }
    payload.update(overrides)
    return EmailDeliveryJob.model_validate(payload)


@pytest.mark.asyncio
async def test_critical_alert_is_rendered_and_sent(client):
    outcome = await make_worker(client).deliver(critical_job())

    assert outcome == OUTCOME_SENT
    to, subject, html = client.send_email.await_args.args
    assert to == "dev@example.com"
    assert subject == "🔒 Security update: lodash@4.17.21"
    assert "4.17.20 → 4.17.21" in html
    assert "Fixes 2 known vulnerabilities" in html


@pytest.mark.asyncio
async def test_unsubscribe_url_is_signed_for_the_user(client):
    await make_worker(client).deliver(critical_job())

    url = client.send_email.await_args.kwargs["unsubscribe_url"]
    assert url.startswith(f"{UNSUBSCRIBE_URL}?token=")
    token = url.split("token=", 1)[1]
    assert verify_unsubscribe_token("s3cret", token) == ("user-1", "all")


@pytest.mark.asyncio
async def test_missing_secret_sends_without_unsubscribe(client):
    await make_worker(client, secret="").deliver(critical_job())

    assert client.send_email.await_args.kwargs["unsubscribe_url"] is None


@pytest.mark.asyncio
async def test_release_launched_subject(client):
    job = EmailDeliveryJob.model_validate(
        {
            "to": "dev@example.com",
            "template": "release-launched",
            "props": {"releaseTitle": "Next", "releasedVersion": "15.0.0", "packageName": "next"},
        }
    )

    assert await make_worker(client).deliver(job) == OUTCOME_SENT

    _, subject, _ = client.send_email.await_args.args
    assert subject == "🚀 Next is here! next v15.0.0 just shipped"


@pytest.mark.asyncio
async def test_unknown_template_is_skipped(client):
    outcome = await make_worker(client).deliver(critical_job(template="weekly-newsletter"))

    assert outcome == OUTCOME_SKIPPED
    client.send_email.assert_not_awaited()


@pytest.mark.asyncio
async def test_unconfigured_client_is_skipped():
    assert await make_worker(None).deliver(critical_job()) == OUTCOME_SKIPPED


@pytest.mark.asyncio
async def test_send_failure_propagates_for_retry(client):
    client.send_email.side_effect = ApiError("Resend unavailable", status_code=503)

    with pytest.raises(ApiError):
        await make_worker(client).deliver(critical_job())


@pytest.mark.asyncio
async def test_handle_rejects_invalid_recipient(client):
    job = Job(id="e-1", queue="email-delivery", data={"to": "nobody", "template": "critical-alert"})

    with pytest.raises(ValidationError):
        await make_worker(client).handle(job)


@pytest.mark.asyncio
async def test_handle_rejects_invalid_props(client):
    job = Job(
        id="e-2",
        queue="email-delivery",
        data={"to": "dev@example.com", "template": "critical-alert", "props": {}},
    )

    with pytest.raises(ValidationError):
        await make_worker(client).handle(job)
    client.send_email.assert_not_awaited()
