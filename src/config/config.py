"""Registry sync configuration from YAML file.

Loads from config/config.yaml with all settings in one place:
- Registry, downloads and change-feed endpoints
- Search index connection
- Job queue backend and per-topic options
- Change listener, backfill and delivery settings

Environment variables ARE supported using ${VAR_NAME} and
${VAR_NAME:-default} syntax in YAML files.
"""

import json
import logging
import os
import re
import sys
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

QUEUE_NAMES = ("sync", "bulk-sync", "email-delivery", "chat-delivery", "digest")


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file and return dict."""
    if not path.exists():
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand ${VAR_NAME} and ${VAR_NAME:-default} environment variables in config data."""
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        pattern = r"\$\{([^}:]+)(?::-(([^}]*))?)?\}"

        def replacer(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) is not None else match.group(0)
            return os.getenv(var_name, default_value)

        return re.sub(pattern, replacer, data)
    else:
        return data


# Default config file: config/config.yaml in src/ directory
DEFAULT_CONFIG_FILE = Path(__file__).parent.parent / "config" / "config.yaml"


def _as_bool(value: Any) -> bool:
    # bool("false") is True, so strings from env expansion need parsing
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


@dataclass
class RegistrySyncConfig:
    """Registry sync configuration.

    Configuration structure:
        registry: {...}     # npm registry, downloads API, change feed
        search: {...}       # Typesense connection
        osv: {...}          # Vulnerability enrichment
        queue:              # Job queue
          backend: memory | kafka
          defaults: {...}   # Applied to every topic
          topics:
            sync: {...}
            bulk-sync: {...}
        changes: {...}      # Change listener
        backfill: {...}     # Backfill controller
        delivery: {...}     # Email / chat / digest
        database: {...}     # Relational store for users and notifications
    """

    # =========================================================================
    # REGISTRY
    # =========================================================================
    registry_url: str = "https://registry.npmjs.org"
    replicate_url: str = "https://replicate.npmjs.com/registry"
    downloads_url: str = "https://api.npmjs.org/downloads"
    registry_timeout_seconds: int = 30
    registry_concurrency: int = 20
    downloads_cache_ttl_seconds: int = 3600

    # =========================================================================
    # SEARCH INDEX
    # =========================================================================
    search_url: str = "http://localhost:8108"
    search_api_key: str = ""
    search_collection: str = "packages"
    search_timeout_seconds: int = 30

    # =========================================================================
    # VULNERABILITY ENRICHMENT
    # =========================================================================
    osv_url: str = "https://api.osv.dev"
    osv_enabled: bool = False

    # =========================================================================
    # JOB QUEUE
    # =========================================================================
    queue_backend: str = "memory"
    bootstrap_servers: str = ""
    topic_prefix: str = "registry-sync"
    dedup_dir: str = ""
    queue_defaults: Dict[str, Any] = field(default_factory=dict)
    queue_topics: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    # =========================================================================
    # CHANGE LISTENER
    # =========================================================================
    changes_since: str = "now"
    changes_cursor_file: str = ""
    changes_flush_every: int = 100
    stats_interval_seconds: int = 30

    # =========================================================================
    # BACKFILL
    # =========================================================================
    backfill_state_dir: str = ".state/backfill"
    backfill_page_size: int = 500
    backfill_tick_seconds: float = 5.0

    # =========================================================================
    # DELIVERY
    # =========================================================================
    resend_api_key: str = ""
    email_from: str = "packrun.dev <notifications@packrun.dev>"
    app_base_url: str = "https://packrun.dev"
    unsubscribe_base_url: str = "https://api.packrun.dev/v1/unsubscribe"
    unsubscribe_secret: str = ""
    slack_api_url: str = "https://slack.com/api"
    digest_timezone: str = "UTC"
    digest_schedules: Dict[str, str] = field(
        default_factory=lambda: {"daily": "0 9 * * *", "weekly": "0 9 * * 1"}
    )

    # =========================================================================
    # DATABASE
    # =========================================================================
    database_url: str = ""

    def get_queue_options(self, queue_name: str) -> Dict[str, Any]:
        """Get merged options for a queue topic.

        Merge priority (highest to lowest):
        1. Topic-specific config (queue.topics.<name>)
        2. Default config (queue.defaults)
        """
        if queue_name not in QUEUE_NAMES:
            raise ValueError(
                f"Unknown queue '{queue_name}'. Available queues: {list(QUEUE_NAMES)}"
            )
        result = self.queue_defaults.copy()
        result.update(self.queue_topics.get(queue_name, {}))
        return result

    def get_topic(self, queue_name: str) -> str:
        """Broker topic backing a queue, e.g. ``registry-sync.email-delivery``."""
        if queue_name not in QUEUE_NAMES:
            raise ValueError(f"Unknown queue '{queue_name}'")
        return f"{self.topic_prefix}.{queue_name}" if self.topic_prefix else queue_name

    def validate(self) -> None:
        """Validate configuration for correctness and constraints."""
        self._validate_enum(
            {"backend": self.queue_backend}, "backend", ["memory", "kafka"], "queue"
        )
        if self.queue_backend == "kafka" and not self.bootstrap_servers:
            raise ValueError("queue.bootstrap_servers is required when queue.backend is 'kafka'")

        if not self.registry_url or not self.replicate_url or not self.downloads_url:
            raise ValueError("registry section requires registry_url, replicate_url and downloads_url")

        self._validate_min(
            {"backfill_page_size": self.backfill_page_size},
            "backfill_page_size", 1, inclusive=True, context="backfill",
        )
        self._validate_min(
            {"tick_seconds": self.backfill_tick_seconds},
            "tick_seconds", 0, inclusive=False, context="backfill",
        )
        self._validate_range(
            {"registry_concurrency": self.registry_concurrency},
            "registry_concurrency", 1, 100, "registry",
        )

        self._validate_queue_settings(self.queue_defaults, "queue.defaults")
        for name, settings in self.queue_topics.items():
            if name not in QUEUE_NAMES:
                raise ValueError(
                    f"queue.topics: unknown queue '{name}', expected one of {list(QUEUE_NAMES)}"
                )
            self._validate_queue_settings(settings, f"queue.topics.{name}")

        for period in self.digest_schedules:
            self._validate_enum({"period": period}, "period", ["daily", "weekly"], "delivery.digest_schedules")

    @staticmethod
    def _validate_enum(
        settings: Dict[str, Any],
        key: str,
        valid_values: List[Any],
        context: str
    ) -> None:
        if key in settings and settings[key] not in valid_values:
            raise ValueError(
                f"{context}: {key} must be one of {valid_values}, "
                f"got '{settings[key]}'"
            )

    @staticmethod
    def _validate_min(
        settings: Dict[str, Any],
        key: str,
        min_value: float,
        inclusive: bool,
        context: str
    ) -> None:
        if key in settings:
            value = settings[key]
            if inclusive and value < min_value:
                raise ValueError(
                    f"{context}: {key} must be >= {min_value}, got {value}"
                )
            elif not inclusive and value <= min_value:
                raise ValueError(
                    f"{context}: {key} must be > {min_value}, got {value}"
                )

    @staticmethod
    def _validate_range(
        settings: Dict[str, Any],
        key: str,
        min_value: float,
        max_value: float,
        context: str
    ) -> None:
        if key in settings:
            value = settings[key]
            if not (min_value <= value <= max_value):
                raise ValueError(
                    f"{context}: {key} must be between {min_value} and {max_value}, got {value}"
                )

    def _validate_queue_settings(self, settings: Dict[str, Any], context: str) -> None:
        self._validate_min(settings, "attempts", 1, inclusive=True, context=context)
        self._validate_enum(settings, "backoff_type", ["fixed", "exponential"], context)
        self._validate_min(settings, "backoff_delay_seconds", 0, inclusive=True, context=context)
        self._validate_range(settings, "concurrency", 1, 100, context)
        self._validate_min(settings, "limiter_max", 1, inclusive=True, context=context)
        self._validate_min(settings, "limiter_duration_seconds", 0, inclusive=False, context=context)
        self._validate_enum(settings, "fail_fast", [True, False], context)
        self._validate_min(settings, "dedup_ttl_seconds", 0, inclusive=True, context=context)


def _deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge overlay into base dict."""
    result = base.copy()
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def config_from_dict(yaml_data: Dict[str, Any]) -> RegistrySyncConfig:
    """Build a config object from already expanded YAML data."""
    defaults = RegistrySyncConfig()
    registry = yaml_data.get("registry", {})
    search = yaml_data.get("search", {})
    osv = yaml_data.get("osv", {})
    queue = yaml_data.get("queue", {})
    changes = yaml_data.get("changes", {})
    backfill = yaml_data.get("backfill", {})
    delivery = yaml_data.get("delivery", {})
    database = yaml_data.get("database", {})

    return RegistrySyncConfig(
        registry_url=str(registry.get("registry_url", defaults.registry_url)).rstrip("/"),
        replicate_url=str(registry.get("replicate_url", defaults.replicate_url)).rstrip("/"),
        downloads_url=str(registry.get("downloads_url", defaults.downloads_url)).rstrip("/"),
        registry_timeout_seconds=int(registry.get("timeout_seconds", defaults.registry_timeout_seconds)),
        registry_concurrency=int(registry.get("max_concurrent", defaults.registry_concurrency)),
        downloads_cache_ttl_seconds=int(
            registry.get("downloads_cache_ttl_seconds", defaults.downloads_cache_ttl_seconds)
        ),
        search_url=str(search.get("url", defaults.search_url)).rstrip("/"),
        search_api_key=str(search.get("api_key", "")),
        search_collection=str(search.get("collection", defaults.search_collection)),
        search_timeout_seconds=int(search.get("timeout_seconds", defaults.search_timeout_seconds)),
        osv_url=str(osv.get("url", defaults.osv_url)).rstrip("/"),
        osv_enabled=_as_bool(osv.get("enabled", False)),
        queue_backend=str(queue.get("backend", defaults.queue_backend)),
        bootstrap_servers=str(queue.get("bootstrap_servers", "")),
        topic_prefix=str(queue.get("topic_prefix", defaults.topic_prefix)),
        dedup_dir=str(queue.get("dedup_dir", "")),
        queue_defaults=dict(queue.get("defaults", {})),
        queue_topics={name: dict(opts or {}) for name, opts in queue.get("topics", {}).items()},
        changes_since=str(changes.get("since", defaults.changes_since)),
        changes_cursor_file=str(changes.get("cursor_file", "")),
        changes_flush_every=int(changes.get("flush_every", defaults.changes_flush_every)),
        stats_interval_seconds=int(changes.get("stats_interval_seconds", defaults.stats_interval_seconds)),
        backfill_state_dir=str(backfill.get("state_dir", defaults.backfill_state_dir)),
        backfill_page_size=int(backfill.get("page_size", defaults.backfill_page_size)),
        backfill_tick_seconds=float(backfill.get("tick_seconds", defaults.backfill_tick_seconds)),
        resend_api_key=str(delivery.get("resend_api_key", "")),
        email_from=str(delivery.get("email_from", defaults.email_from)),
        app_base_url=str(delivery.get("app_base_url", defaults.app_base_url)).rstrip("/"),
        unsubscribe_base_url=str(delivery.get("unsubscribe_base_url", defaults.unsubscribe_base_url)),
        unsubscribe_secret=str(delivery.get("unsubscribe_secret", "")),
        slack_api_url=str(delivery.get("slack_api_url", defaults.slack_api_url)).rstrip("/"),
        digest_timezone=str(delivery.get("digest_timezone", defaults.digest_timezone)),
        digest_schedules=dict(delivery.get("digest_schedules") or defaults.digest_schedules),
        database_url=str(database.get("url", "")),
    )


def load_config(
    config_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> RegistrySyncConfig:
    """Load configuration from config.yaml, apply overrides, and validate."""
    if config_path is None:
        config_path = DEFAULT_CONFIG_FILE

    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path}\n" f"Expected file: config/config.yaml"
        )

    logger.info("Loading configuration from file: %s", config_path)
    yaml_data = _expand_env_vars(load_yaml(config_path))

    if overrides:
        logger.debug("Applying overrides: %s", list(overrides.keys()))
        yaml_data = _deep_merge(yaml_data, overrides)

    config = config_from_dict(yaml_data)

    if not config.search_api_key:
        logger.warning("Search index API key not configured")
    if not config.resend_api_key:
        logger.warning("Resend API key not configured; email delivery will fail")

    config.validate()
    logger.debug("Configuration validation passed")
    return config


_config: Optional[RegistrySyncConfig] = None


def get_config() -> RegistrySyncConfig:
    """Get or load the singleton config instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: RegistrySyncConfig) -> None:
    """Set the singleton config instance (useful for testing)."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the singleton config instance (forces reload on next get_config() call)."""
    global _config
    _config = None


def _redacted(config: RegistrySyncConfig) -> Dict[str, Any]:
    data = asdict(config)
    for key in ("search_api_key", "resend_api_key", "unsubscribe_secret", "database_url"):
        if data.get(key):
            data[key] = "***"
    return data


def _cli_main() -> int:
    """CLI entry point for config validation and debugging."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Registry Sync Configuration Tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Validate configuration
  python -m config.config --validate

  # Show merged configuration (secrets redacted)
  python -m config.config --show-merged

  # Use a custom config file, JSON output
  python -m config.config --config /path/to/config.yaml --validate --json
        """,
    )
    parser.add_argument("--validate", action="store_true", help="Validate configuration")
    parser.add_argument("--show-merged", action="store_true", help="Display resolved configuration")
    parser.add_argument("--config", type=Path, help="Path to config.yaml file (default: src/config/config.yaml)")
    parser.add_argument("--json", action="store_true", help="Output in JSON format")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    if not args.validate and not args.show_merged:
        parser.print_help()
        return 0

    try:
        config = load_config(config_path=args.config)
    except FileNotFoundError as e:
        print(json.dumps({"error": str(e)}) if args.json else f"✗ Error: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(json.dumps({"error": str(e)}) if args.json else f"✗ Validation error: {e}", file=sys.stderr)
        return 1

    output: Dict[str, Any] = {}
    if args.validate:
        if args.json:
            output["validation"] = {"passed": True, "errors": []}
        else:
            print("✓ Configuration validation passed")
            print(f"  - Queue backend: {config.queue_backend}")
            print(f"  - Search collection: {config.search_collection}")

    if args.show_merged:
        if args.json:
            output["merged_config"] = _redacted(config)
        else:
            print("\nConfiguration:")
            print("=" * 80)
            print(yaml.dump(_redacted(config), default_flow_style=False, sort_keys=False))
            print("=" * 80)

    if args.json:
        print(json.dumps(output, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(_cli_main())
