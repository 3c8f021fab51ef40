"""
Message rendering for delivery channels.

Email bodies are self-contained HTML with inline styles (dark palette, no
external CSS). Slack messages are Block Kit payloads. All user-supplied text
is HTML-escaped.
"""

from html import escape
from typing import Any
from urllib.parse import quote

from registry_sync.delivery.store import Notification
from registry_sync.schemas.jobs import ChatNotification, CriticalAlertProps, ReleaseLaunchedProps

CHANGELOG_PREVIEW_LENGTH = 200

COLORS = {
    "bg": "#050505",
    "fg": "#ffffff",
    "border": "#1a1a1a",
    "muted": "#888888",
    "subtle": "#666666",
    "surface": "#0a0a0a",
}


def package_url(app_base_url: str, package_name: str) -> str:
    return f"{app_base_url.rstrip('/')}/{quote(package_name, safe='')}"


def version_text(new_version: str, previous_version: str | None) -> str:
    return f"{previous_version} → {new_version}" if previous_version else new_version


def plural(count: int, singular: str, many: str) -> str:
    return singular if count == 1 else many


def _box(content: str, border: str = "1px solid") -> str:
    return (
        f'<div style="border:{border} {COLORS["border"]};background:{COLORS["surface"]};'
        f'padding:8px 12px;margin:0 0 20px 0;">{content}</div>'
    )


def _text(content: str, color: str = "muted", size: int = 12, extra: str = "") -> str:
    return f'<p style="margin:0;font-size:{size}px;color:{COLORS[color]};{extra}">{content}</p>'


def _button(href: str, label: str) -> str:
    return (
        f'<div style="text-align:center;margin:0 0 20px 0;">'
        f'<a href="{escape(href)}" style="display:inline-block;padding:8px 20px;font-size:12px;'
        f'background:{COLORS["fg"]};color:{COLORS["bg"]};text-decoration:none;">{label}</a></div>'
    )


def render_layout(
    preview_text: str,
    body: str,
    app_base_url: str,
    unsubscribe_url: str | None = None,
) -> str:
    base = app_base_url.rstrip("/")
    unsubscribe = (
        f'<a href="{escape(unsubscribe_url)}" style="color:{COLORS["subtle"]};">Unsubscribe</a> · '
        if unsubscribe_url
        else ""
    )
    return (
        "<!DOCTYPE html>"
        '<html><head><meta charset="utf-8"></head>'
        f'<body style="margin:0;padding:0;background:{COLORS["bg"]};font-family:\'Geist Mono\',monospace;">'
        f'<div style="display:none;max-height:0;overflow:hidden;">{escape(preview_text)}</div>'
        '<div style="max-width:600px;margin:40px auto;">'
        f'<div style="padding:16px 20px;border-bottom:1px solid {COLORS["border"]};">'
        f'<a href="{escape(base)}" style="font-size:11px;color:{COLORS["subtle"]};text-decoration:none;">'
        "packrun.dev</a></div>"
        f'<div style="padding:20px;">{body}</div>'
        f'<div style="padding:32px 20px;border-top:1px solid {COLORS["border"]};">'
        + _text(
            "You're receiving this because you follow packages on "
            f'<a href="{escape(base)}" style="color:{COLORS["subtle"]};">packrun.dev</a>.',
            color="subtle",
            size=10,
        )
        + _text(
            f"{unsubscribe}"
            f'<a href="{escape(base)}/profile?tab=notifications" style="color:{COLORS["subtle"]};">'
            "Manage preferences</a>",
            color="subtle",
            size=10,
        )
        + "</div></div></body></html>"
    )


# =============================================================================
# Email templates
# =============================================================================


def critical_alert_subject(props: CriticalAlertProps) -> str:
    return f"🔒 Security update: {props.package_name}@{props.new_version}"


def render_critical_alert(
    props: CriticalAlertProps, app_base_url: str, unsubscribe_url: str | None = None
) -> str:
    url = package_url(app_base_url, props.package_name)
    fixed = props.vulnerabilities_fixed
    body = [
        _box(_text("SECURITY UPDATE", size=10, extra="letter-spacing:2px;")),
        '<div style="margin:0 0 20px 0;">',
        _text(
            f'<a href="{escape(url)}" style="color:{COLORS["fg"]};text-decoration:none;">'
            f"{escape(props.package_name)}</a>",
            color="fg",
            size=16,
        ),
        _text(escape(version_text(props.new_version, props.previous_version))),
        "</div>",
        _box(
            _text(f"Fixes {fixed} known {plural(fixed, 'vulnerability', 'vulnerabilities')}"),
            border="0;border-left:2px solid",
        ),
    ]
    if props.changelog_snippet:
        body.append(
            _box(
                _text("RELEASE NOTES", color="subtle", size=10)
                + _text(escape(props.changelog_snippet), size=11, extra="white-space:pre-wrap;")
            )
        )
    body.append(_button(url, "View Package Details →"))
    body.append(
        _text(
            "We recommend updating this package as soon as possible.",
            color="subtle",
            size=11,
            extra=f"border-top:1px solid {COLORS['border']};padding:8px 12px;",
        )
    )
    preview = (
        f"Security update: {props.package_name} {props.new_version} fixes {fixed} vulnerabilities"
    )
    return render_layout(preview, "".join(body), app_base_url, unsubscribe_url)


def release_launched_subject(props: ReleaseLaunchedProps) -> str:
    package_part = f"{props.package_name} " if props.package_name else ""
    return f"🚀 {props.release_title} is here! {package_part}v{props.released_version} just shipped"


def render_release_launched(
    props: ReleaseLaunchedProps, app_base_url: str, unsubscribe_url: str | None = None
) -> str:
    base = app_base_url.rstrip("/")
    releases_url = f"{base}/releases"
    url = package_url(app_base_url, props.package_name) if props.package_name else None

    version_line = f"v{escape(props.released_version)}"
    if props.package_name:
        version_line += (
            f' · <a href="{escape(url)}" style="color:{COLORS["muted"]};text-decoration:none;">'
            f"{escape(props.package_name)}</a>"
        )

    body = [
        _box(_text("🚀 IT'S HERE", size=10, extra="letter-spacing:2px;")),
        '<div style="margin:0 0 20px 0;">',
        _text(escape(props.release_title), color="fg", size=18),
        _text(version_line, size=14),
        "</div>",
    ]
    if props.description:
        body.append(
            _box(
                _text(escape(props.description), extra="white-space:pre-wrap;"),
                border="0;border-left:2px solid",
            )
        )
    body.append(_button(url or releases_url, "View Package →" if url else "View Release →"))

    links = []
    if props.website_url:
        links.append(
            f'<a href="{escape(props.website_url)}" style="color:{COLORS["muted"]};'
            'text-decoration:none;margin-right:16px;">Read Announcement ↗</a>'
        )
    links.append(
        f'<a href="{escape(releases_url)}" style="color:{COLORS["muted"]};'
        'text-decoration:none;">All Releases →</a>'
    )
    body.append(f'<div style="text-align:center;font-size:12px;margin:0 0 20px 0;">{"".join(links)}</div>')
    body.append(
        _text(
            "You followed this release on packrun.dev. Get notified about more upcoming releases!",
            color="subtle",
            size=11,
            extra=f"border-top:1px solid {COLORS['border']};padding:8px 12px;",
        )
    )
    preview = f"{props.release_title} v{props.released_version} just shipped! Check out what's new."
    return render_layout(preview, "".join(body), app_base_url, unsubscribe_url)


# =============================================================================
# Digest
# =============================================================================

DIGEST_SECTIONS = (
    ("critical", "SECURITY", "#ff003c"),
    ("important", "BREAKING", "#ff6700"),
    ("info", "OTHER", COLORS["subtle"]),
)


def digest_subject(period: str, updates: list[Notification]) -> str:
    period_text = "Daily" if period == "daily" else "Weekly"
    critical = sum(1 for u in updates if u.severity == "critical")
    if critical > 0:
        return f"🔒 {period_text} digest: {critical} security {plural(critical, 'update', 'updates')}"
    total = len(updates)
    return f"📦 {period_text} digest: {total} package {plural(total, 'update', 'updates')}"


def _digest_row(update: Notification, app_base_url: str) -> str:
    url = package_url(app_base_url, update.package_name)
    lines = [
        _text(
            f'<a href="{escape(url)}" style="color:{COLORS["fg"]};text-decoration:none;">'
            f"{escape(update.package_name)}</a>"
            f'<span style="font-size:11px;margin-left:8px;color:{COLORS["muted"]};">'
            f"{escape(version_text(update.new_version, update.previous_version))}</span>"
        )
    ]
    fixed = update.vulnerabilities_fixed or 0
    if fixed > 0:
        lines.append(_text(f"Fixes {fixed} {plural(fixed, 'vulnerability', 'vulnerabilities')}", size=11))
    if update.is_breaking_change and not update.is_security_update:
        lines.append(_text("Major version, check for breaking changes", size=11))
    if update.changelog_snippet:
        lines.append(
            _text(
                escape(update.changelog_snippet),
                size=11,
                extra=f"padding-left:8px;border-left:2px solid {COLORS['border']};",
            )
        )
    return _box("".join(lines))


def render_digest(
    updates: list[Notification],
    period: str,
    app_base_url: str,
    unsubscribe_url: str | None = None,
) -> str:
    period_text = "today" if period == "daily" else "this week"
    count_text = f"{len(updates)} {plural(len(updates), 'update', 'updates')} {period_text}"
    body = [
        _text(f"{period.upper()} DIGEST", color="subtle", size=10),
        _text(count_text, color="fg", size=16, extra="margin-bottom:20px;"),
    ]

    for severity, label, color in DIGEST_SECTIONS:
        if severity == "info":
            section = [u for u in updates if u.severity not in ("critical", "important")]
        else:
            section = [u for u in updates if u.severity == severity]
        if not section:
            continue
        body.append(_text(f'<span style="color:{color};">▪</span> {label} ({len(section)})', size=11))
        body.extend(_digest_row(u, app_base_url) for u in section)

    if not updates:
        body.append(_text(f"No updates {period_text}. Your packages are up to date."))

    preview = f"{len(updates)} package {plural(len(updates), 'update', 'updates')} {period_text}"
    return render_layout(preview, "".join(body), app_base_url, unsubscribe_url)


# =============================================================================
# Slack
# =============================================================================


def build_slack_message(
    notification: ChatNotification, app_base_url: str
) -> tuple[str, list[dict[str, Any]]]:
    """
    Returns:
        (fallback text, Block Kit blocks)
    """
    name = notification.package_name
    url = package_url(app_base_url, name)

    emoji = "📦"
    if notification.is_security_update:
        emoji = "🔒"
    elif notification.is_breaking_change:
        emoji = "⚠️"

    text = f"{emoji} {name} updated to {notification.new_version}"
    versions = version_text(notification.new_version, notification.previous_version)
    blocks: list[dict[str, Any]] = [
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": f"{emoji} *<{url}|{name}>* updated to `{versions}`"},
        }
    ]

    context = []
    if notification.is_security_update and notification.vulnerabilities_fixed:
        context.append(f"🔐 Fixes {notification.vulnerabilities_fixed} vulnerabilities")
    if notification.is_breaking_change:
        context.append("⚠️ Breaking change - check before updating")
    if context:
        blocks.append(
            {"type": "context", "elements": [{"type": "mrkdwn", "text": item} for item in context]}
        )

    snippet = notification.changelog_snippet
    if snippet:
        suffix = "..." if len(snippet) > CHANGELOG_PREVIEW_LENGTH else ""
        blocks.append(
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"> {snippet[:CHANGELOG_PREVIEW_LENGTH]}{suffix}"},
            }
        )

    blocks.append(
        {
            "type": "actions",
            "elements": [
                {
                    "type": "button",
                    "text": {"type": "plain_text", "text": "View on packrun.dev"},
                    "url": url,
                }
            ],
        }
    )
    return text, blocks


__all__ = [
    "build_slack_message",
    "critical_alert_subject",
    "digest_subject",
    "package_url",
    "release_launched_subject",
    "render_critical_alert",
    "render_digest",
    "render_release_launched",
]
