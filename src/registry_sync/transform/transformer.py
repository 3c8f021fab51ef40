"""
Registry metadata to search document transformation.

transform_to_document() is pure: for a fixed ``now`` the same metadata and
download count always produce an identical PackageDocument. Malformed input
degrades to missing fields and never raises.
"""

import json
import logging
from datetime import UTC, datetime
from typing import Any

from registry_sync.schemas.documents import PackageDocument
from registry_sync.transform.normalizers import (
    as_dict,
    as_str,
    as_str_list,
    normalize_author,
    normalize_funding,
    normalize_repository,
)

logger = logging.getLogger(__name__)

DEFAULT_VERSION = "0.0.0"
MAX_DESCRIPTION_LENGTH = 500
MAX_KEYWORDS = 20
MAX_MAINTAINERS = 10
MAINTENANCE_DECAY_DAYS = 730
INSTALL_SCRIPTS = ("preinstall", "install", "postinstall")
TYPES_SCOPE = "@types/"

_MS_PER_DAY = 1000 * 60 * 60 * 24


def _to_epoch_ms(value: Any) -> int | None:
    """Parse an ISO-8601 timestamp into epoch milliseconds; None if unparseable."""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return int(parsed.timestamp() * 1000)


def _compact_json(mapping: dict[str, Any]) -> str | None:
    if not mapping:
        return None
    return json.dumps(mapping, separators=(",", ":"), ensure_ascii=False)


def maintenance_score(updated_ms: int, now_ms: int) -> float | None:
    """Linear decay from 1.0 to 0 over two years; None when it reaches 0."""
    days_since_update = (now_ms - updated_ms) / _MS_PER_DAY
    score = max(0.0, min(1.0, 1 - days_since_update / MAINTENANCE_DECAY_DAYS))
    if score <= 0:
        return None
    return round(score, 2)


def detect_module_system(version_data: dict[str, Any] | None) -> tuple[bool, bool]:
    """
    Return (is_esm, is_cjs) for a version record.

    Dual-mode packages legitimately report both. Without a version record
    neither flag is set.
    """
    if version_data is None:
        return False, False
    module_type = version_data.get("type")
    is_esm = bool(
        module_type == "module"
        or version_data.get("module")
        or version_data.get("exports") is not None
    )
    is_cjs = bool(module_type != "module" or version_data.get("main"))
    return is_esm, is_cjs


def _deprecation(metadata: dict[str, Any], version_data: dict[str, Any]) -> tuple[bool, str | None]:
    value = version_data.get("deprecated") or metadata.get("deprecated")
    message = value if isinstance(value, str) and value else None
    return bool(value), message


def _maintainer_names(raw: Any) -> list[str] | None:
    if not isinstance(raw, list):
        return None
    names = [m["name"] for m in raw if isinstance(m, dict) and isinstance(m.get("name"), str) and m["name"]]
    return names[:MAX_MAINTAINERS]


def transform_to_document(
    metadata: dict[str, Any],
    downloads: int = 0,
    now: datetime | None = None,
) -> PackageDocument:
    """
    Convert raw registry metadata plus weekly downloads into a PackageDocument.

    Args:
        metadata: Registry document as returned by ``GET {registry}/{name}``
        downloads: Weekly download count
        now: Reference time for maintenance score and timestamp fallbacks

    Returns:
        PackageDocument with id == name
    """
    now_ms = int((now or datetime.now(UTC)).timestamp() * 1000)
    metadata = as_dict(metadata)
    name = as_str(metadata.get("name")) or ""

    dist_tags = as_dict(metadata.get("dist-tags"))
    latest_version = as_str(dist_tags.get("latest")) or DEFAULT_VERSION

    raw_version = as_dict(metadata.get("versions")).get(latest_version)
    has_record = isinstance(raw_version, dict)
    version_data: dict[str, Any] = raw_version if has_record else {}

    is_esm, is_cjs = detect_module_system(version_data if has_record else None)
    has_types = bool(
        version_data.get("types") or version_data.get("typings") or name.startswith(TYPES_SCOPE)
    )

    times = as_dict(metadata.get("time"))
    updated = _to_epoch_ms(times.get("modified"))
    if updated is None:
        updated = now_ms
    created = _to_epoch_ms(times.get("created"))
    if created is None:
        created = now_ms

    direct_deps = as_dict(version_data.get("dependencies"))
    peer_deps = as_dict(version_data.get("peerDependencies"))
    scripts = as_dict(version_data.get("scripts"))
    has_install_scripts = any(scripts.get(script) for script in INSTALL_SCRIPTS)

    deprecated, deprecated_message = _deprecation(metadata, version_data)

    description = as_str(metadata.get("description"))
    keywords = as_str_list(metadata.get("keywords"))

    try:
        download_count = max(0, int(downloads or 0))
    except (TypeError, ValueError):
        download_count = 0

    funding_raw = version_data.get("funding") or metadata.get("funding")

    return PackageDocument(
        id=name,
        name=name,
        description=description[:MAX_DESCRIPTION_LENGTH] if description else None,
        keywords=keywords[:MAX_KEYWORDS] if keywords is not None else None,
        author=normalize_author(metadata.get("author")),
        version=latest_version,
        license=as_str(metadata.get("license")),
        homepage=as_str(metadata.get("homepage")),
        repository=normalize_repository(metadata.get("repository")),
        downloads=download_count,
        updated=updated,
        created=created,
        has_types=has_types,
        is_esm=is_esm,
        is_cjs=is_cjs,
        dependencies=len(direct_deps),
        maintainers=_maintainer_names(metadata.get("maintainers")),
        node_version=as_str(as_dict(version_data.get("engines")).get("node")),
        peer_dependencies=_compact_json(peer_deps),
        direct_dependencies=_compact_json(direct_deps),
        deprecated=deprecated,
        deprecated_message=deprecated_message,
        maintenance_score=maintenance_score(updated, now_ms),
        has_install_scripts=True if has_install_scripts else None,
        funding=normalize_funding(funding_raw),
    )


__all__ = [
    "DEFAULT_VERSION",
    "MAX_DESCRIPTION_LENGTH",
    "MAX_KEYWORDS",
    "MAX_MAINTAINERS",
    "detect_module_system",
    "maintenance_score",
    "transform_to_document",
]
