"""Tests for email and Slack message rendering."""

from datetime import UTC, datetime

from registry_sync.delivery.store import Notification
from registry_sync.delivery.templates import (
    CHANGELOG_PREVIEW_LENGTH,
    build_slack_message,
    critical_alert_subject,
    digest_subject,
    package_url,
    release_launched_subject,
    render_critical_alert,
    render_digest,
    version_text,
)
from registry_sync.schemas.jobs import ChatNotification, CriticalAlertProps, ReleaseLaunchedProps

APP_URL = "https://packrun.dev/"
CREATED = datetime(2024, 7, 1, tzinfo=UTC)


def update(name, severity="info", **kwargs):
    return Notification(
        package_name=name, new_version="1.0.0", created_at=CREATED, severity=severity, **kwargs
    )


class TestHelpers:
    def test_package_url_encodes_scoped_names(self):
        assert package_url(APP_URL, "@types/node") == "https://packrun.dev/%40types%2Fnode"

    def test_version_text(self):
        assert version_text("2.0.0", "1.0.0") == "1.0.0 → 2.0.0"
        assert version_text("2.0.0", None) == "2.0.0"


class TestSubjects:
    def test_critical_alert_subject(self):
        props = CriticalAlertProps(package_name="lodash", new_version="4.17.21")
        assert critical_alert_subject(props) == "🔒 Security update: lodash@4.17.21"

    def test_release_launched_subject_without_package(self):
        props = ReleaseLaunchedProps(release_title="packrun 2", released_version="2.0.0")
        assert release_launched_subject(props) == "🚀 packrun 2 is here! v2.0.0 just shipped"

    def test_digest_subject_prefers_security_count(self):
        updates = [update("a", "critical"), update("b", "critical"), update("c")]
        assert digest_subject("daily", updates) == "🔒 Daily digest: 2 security updates"

    def test_digest_subject_counts_all_updates(self):
        assert digest_subject("weekly", [update("a")]) == "📦 Weekly digest: 1 package update"


class TestCriticalAlert:
    def test_user_text_is_escaped(self):
        props = CriticalAlertProps(
            package_name="<script>",
            new_version="1.0.0",
            changelog_snippet="fix <img onerror=x>",
        )

        html = render_critical_alert(props, APP_URL)

        assert "<script>" not in html
        assert "&lt;script&gt;" in html
        assert "fix &lt;img onerror=x&gt;" in html

    def test_unsubscribe_link_only_when_given(self):
        props = CriticalAlertProps(
            package_name="lodash", new_version="4.17.21", vulnerabilities_fixed=1
        )

        without = render_critical_alert(props, APP_URL)
        with_link = render_critical_alert(props, APP_URL, "https://packrun.dev/u?token=t")

        assert "Unsubscribe" not in without
        assert "https://packrun.dev/u?token=t" in with_link
        assert "Fixes 1 known vulnerability" in without


class TestDigest:
    def test_sections_follow_severity(self):
        html = render_digest(
            [update("crit", "critical"), update("brk", "important"), update("misc")],
            "daily",
            APP_URL,
        )

        assert "3 updates today" in html
        assert html.index("SECURITY (1)") < html.index("BREAKING (1)") < html.index("OTHER (1)")

    def test_empty_digest_message(self):
        html = render_digest([], "weekly", APP_URL)

        assert "No updates this week" in html
        assert "SECURITY" not in html

    def test_breaking_hint_only_for_non_security(self):
        html = render_digest(
            [update("major", "important", is_breaking_change=True)], "daily", APP_URL
        )

        assert "Major version, check for breaking changes" in html


class TestSlackMessage:
    def test_security_update_blocks(self):
        notification = ChatNotification(
            package_name="lodash",
            new_version="4.17.21",
            previous_version="4.17.20",
            is_security_update=True,
            vulnerabilities_fixed=3,
        )

        text, blocks = build_slack_message(notification, APP_URL)

        assert text == "🔒 lodash updated to 4.17.21"
        assert blocks[0]["text"]["text"] == (
            "🔒 *<https://packrun.dev/lodash|lodash>* updated to `4.17.20 → 4.17.21`"
        )
        assert blocks[1] == {
            "type": "context",
            "elements": [{"type": "mrkdwn", "text": "🔐 Fixes 3 vulnerabilities"}],
        }
        button = blocks[-1]["elements"][0]
        assert button["text"]["text"] == "View on packrun.dev"
        assert button["url"] == "https://packrun.dev/lodash"

    def test_plain_update_has_no_context(self):
        text, blocks = build_slack_message(
            ChatNotification(package_name="react", new_version="18.3.1"), APP_URL
        )

        assert text.startswith("📦 ")
        assert [b["type"] for b in blocks] == ["section", "actions"]

    def test_long_changelog_is_truncated(self):
        snippet = "x" * (CHANGELOG_PREVIEW_LENGTH + 50)

        _, blocks = build_slack_message(
            ChatNotification(package_name="a", new_version="1.0.0", changelog_snippet=snippet),
            APP_URL,
        )

        quote = blocks[1]["text"]["text"]
        assert quote == "> " + "x" * CHANGELOG_PREVIEW_LENGTH + "..."

    def test_short_changelog_is_not_marked_truncated(self):
        _, blocks = build_slack_message(
            ChatNotification(package_name="a", new_version="1.0.0", changelog_snippet="bugfix"),
            APP_URL,
        )

        assert blocks[1]["text"]["text"] == "> bugfix"
