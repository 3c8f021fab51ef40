"""
Read access to user, integration and notification records.

The relational store is external; workers only query it. PostgresNotificationStore
talks to it through an asyncpg pool, MemoryNotificationStore backs tests and
single-process runs.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

import asyncpg

from core.errors import ConfigurationError, TransientError

logger = logging.getLogger(__name__)

DIGEST_LIMIT = 50
SEVERITY_RANK = {"critical": 1, "important": 2}


def severity_rank(severity: str) -> int:
    return SEVERITY_RANK.get(severity, 3)


@dataclass
class Integration:
    id: str
    config: dict[str, Any]
    enabled: bool


@dataclass
class DigestUser:
    user_id: str
    email: str


@dataclass
class Notification:
    package_name: str
    new_version: str
    created_at: datetime
    previous_version: str | None = None
    severity: str = "info"
    is_security_update: bool = False
    is_breaking_change: bool = False
    changelog_snippet: str | None = None
    vulnerabilities_fixed: int | None = None


class NotificationStore(Protocol):
    async def get_integration(self, integration_id: str) -> Integration | None: ...

    async def get_digest_users(self, period: str) -> list[DigestUser]: ...

    async def get_unread_notifications(
        self, user_id: str, since: datetime, limit: int = DIGEST_LIMIT
    ) -> list[Notification]:
        """Unread since ``since``, critical first, then important, then the rest; newest first within a rank."""
        ...

    async def close(self) -> None: ...


@dataclass
class _MemoryUser:
    user_id: str
    email: str
    digest_enabled: bool = True
    digest_frequency: str = "daily"


@dataclass
class _MemoryNotification:
    user_id: str
    notification: Notification
    read: bool = False


class MemoryNotificationStore:
    def __init__(self):
        self.integrations: dict[str, Integration] = {}
        self._users: list[_MemoryUser] = []
        self._notifications: list[_MemoryNotification] = []

    def add_integration(self, integration: Integration) -> None:
        self.integrations[integration.id] = integration

    def add_user(
        self, user_id: str, email: str, digest_enabled: bool = True, digest_frequency: str = "daily"
    ) -> None:
        self._users.append(_MemoryUser(user_id, email, digest_enabled, digest_frequency))

    def add_notification(self, user_id: str, notification: Notification, read: bool = False) -> None:
        self._notifications.append(_MemoryNotification(user_id, notification, read))

    async def get_integration(self, integration_id: str) -> Integration | None:
        return self.integrations.get(integration_id)

    async def get_digest_users(self, period: str) -> list[DigestUser]:
        return [
            DigestUser(u.user_id, u.email)
            for u in self._users
            if u.digest_enabled and u.digest_frequency == period
        ]

    async def get_unread_notifications(
        self, user_id: str, since: datetime, limit: int = DIGEST_LIMIT
    ) -> list[Notification]:
        matching = [
            n.notification
            for n in self._notifications
            if n.user_id == user_id and not n.read and n.notification.created_at >= since
        ]
        matching.sort(key=lambda n: (severity_rank(n.severity), -n.created_at.timestamp()))
        return matching[:limit]

    async def close(self) -> None:
        pass


class PostgresNotificationStore:
    def __init__(self, database_url: str, min_pool_size: int = 1, max_pool_size: int = 5):
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise ConfigurationError("DATABASE_URL is required for delivery workers")
        if self._pool is not None:
            return self._pool
        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
        except (OSError, asyncpg.PostgresError) as exc:
            raise TransientError("Database unavailable", cause=exc) from exc
        return self._pool

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def get_integration(self, integration_id: str) -> Integration | None:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            """
            select id, config, enabled
            from integration_connection
            where id = $1
            """,
            integration_id,
        )
        if row is None:
            return None
        config = row["config"]
        if isinstance(config, str):
            config = json.loads(config)
        return Integration(
            id=str(row["id"]),
            config=config if isinstance(config, dict) else {},
            enabled=bool(row["enabled"]),
        )

    async def get_digest_users(self, period: str) -> list[DigestUser]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select np.user_id, u.email
            from notification_preferences np
            join "user" u on np.user_id = u.id
            where np.email_digest_enabled = true
              and np.email_digest_frequency = $1
            """,
            period,
        )
        return [DigestUser(user_id=str(r["user_id"]), email=r["email"]) for r in rows]

    async def get_unread_notifications(
        self, user_id: str, since: datetime, limit: int = DIGEST_LIMIT
    ) -> list[Notification]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select
              package_name, new_version, previous_version, severity,
              is_security_update, is_breaking_change, changelog_snippet,
              vulnerabilities_fixed, created_at
            from notification
            where user_id = $1
              and created_at >= $2
              and read = false
            order by
              case severity
                when 'critical' then 1
                when 'important' then 2
                else 3
              end,
              created_at desc
            limit $3
            """,
            user_id,
            since,
            limit,
        )
        return [
            Notification(
                package_name=r["package_name"],
                new_version=r["new_version"],
                previous_version=r["previous_version"],
                severity=r["severity"] or "info",
                is_security_update=bool(r["is_security_update"]),
                is_breaking_change=bool(r["is_breaking_change"]),
                changelog_snippet=r["changelog_snippet"],
                vulnerabilities_fixed=r["vulnerabilities_fixed"],
                created_at=r["created_at"],
            )
            for r in rows
        ]


__all__ = [
    "DIGEST_LIMIT",
    "DigestUser",
    "Integration",
    "MemoryNotificationStore",
    "Notification",
    "NotificationStore",
    "PostgresNotificationStore",
    "severity_rank",
]
