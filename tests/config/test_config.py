"""Tests for YAML configuration loading and validation."""

from pathlib import Path

import pytest
import yaml

from config.config import (
    DEFAULT_CONFIG_FILE,
    QUEUE_NAMES,
    _expand_env_vars,
    config_from_dict,
    get_config,
    load_config,
    reset_config,
    set_config,
)


def write_config(tmp_path: Path, data: dict) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


class TestExpandEnvVars:
    def test_set_variable(self, monkeypatch):
        monkeypatch.setenv("TYPESENSE_URL", "http://search:8108")

        assert _expand_env_vars({"url": "${TYPESENSE_URL}"}) == {"url": "http://search:8108"}

    def test_default_used_when_unset(self, monkeypatch):
        monkeypatch.delenv("QUEUE_BACKEND", raising=False)

        assert _expand_env_vars(["${QUEUE_BACKEND:-memory}"]) == ["memory"]

    def test_empty_default(self, monkeypatch):
        monkeypatch.delenv("RESEND_API_KEY", raising=False)

        assert _expand_env_vars("${RESEND_API_KEY:-}") == ""

    def test_unset_without_default_left_as_is(self, monkeypatch):
        monkeypatch.delenv("NOT_SET_ANYWHERE", raising=False)

        assert _expand_env_vars("${NOT_SET_ANYWHERE}") == "${NOT_SET_ANYWHERE}"


class TestLoadConfig:
    def test_bundled_config_loads(self, monkeypatch):
        monkeypatch.delenv("QUEUE_BACKEND", raising=False)

        config = load_config(DEFAULT_CONFIG_FILE)

        assert config.queue_backend == "memory"
        assert config.search_collection == "packages"
        assert config.get_queue_options("chat-delivery")["limiter_max"] == 1
        assert config.digest_schedules == {"daily": "0 9 * * *", "weekly": "0 9 * * 1"}

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_overrides_deep_merge(self, tmp_path):
        path = write_config(tmp_path, {"search": {"url": "http://a:8108", "collection": "pkgs"}})

        config = load_config(path, overrides={"search": {"collection": "packages_v2"}})

        assert config.search_url == "http://a:8108"
        assert config.search_collection == "packages_v2"

    def test_env_expansion_and_bool_parsing(self, tmp_path, monkeypatch):
        monkeypatch.setenv("OSV_ENRICHMENT_ENABLED", "true")
        path = write_config(tmp_path, {"osv": {"enabled": "${OSV_ENRICHMENT_ENABLED:-false}"}})

        assert load_config(path).osv_enabled is True

    def test_urls_are_normalized(self, tmp_path):
        path = write_config(tmp_path, {"registry": {"registry_url": "https://registry.example/"}})

        assert load_config(path).registry_url == "https://registry.example"


class TestValidation:
    def test_kafka_requires_bootstrap_servers(self):
        config = config_from_dict({"queue": {"backend": "kafka"}})

        with pytest.raises(ValueError, match="bootstrap_servers"):
            config.validate()

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="backend"):
            config_from_dict({"queue": {"backend": "redis"}}).validate()

    def test_unknown_topic(self):
        config = config_from_dict({"queue": {"topics": {"mystery": {"attempts": 1}}}})

        with pytest.raises(ValueError, match="unknown queue"):
            config.validate()

    @pytest.mark.parametrize(
        "settings",
        [
            {"attempts": 0},
            {"backoff_type": "linear"},
            {"concurrency": 0},
            {"limiter_duration_seconds": 0},
        ],
    )
    def test_invalid_topic_settings(self, settings):
        config = config_from_dict({"queue": {"topics": {"sync": settings}}})

        with pytest.raises(ValueError):
            config.validate()

    def test_invalid_digest_period(self):
        config = config_from_dict({"delivery": {"digest_schedules": {"hourly": "0 * * * *"}}})

        with pytest.raises(ValueError, match="period"):
            config.validate()

    def test_backfill_page_size(self):
        with pytest.raises(ValueError, match="backfill_page_size"):
            config_from_dict({"backfill": {"page_size": 0}}).validate()


class TestQueueOptions:
    def test_topic_overrides_defaults(self):
        config = config_from_dict(
            {
                "queue": {
                    "defaults": {"attempts": 3, "concurrency": 1},
                    "topics": {"email-delivery": {"attempts": 5}},
                }
            }
        )

        assert config.get_queue_options("email-delivery") == {"attempts": 5, "concurrency": 1}
        assert config.get_queue_options("digest") == {"attempts": 3, "concurrency": 1}

    def test_fail_fast_defaults_off(self, monkeypatch):
        monkeypatch.delenv("QUEUE_BACKEND", raising=False)
        config = load_config(DEFAULT_CONFIG_FILE)

        assert config.get_queue_options("sync")["fail_fast"] is False

    def test_fail_fast_must_be_boolean(self):
        config = config_from_dict({"queue": {"topics": {"sync": {"fail_fast": "yes"}}}})

        with pytest.raises(ValueError, match="fail_fast"):
            config.validate()

    def test_unknown_queue(self):
        with pytest.raises(ValueError):
            config_from_dict({}).get_queue_options("nope")

    def test_topic_names(self):
        config = config_from_dict({})

        assert config.get_topic("email-delivery") == "registry-sync.email-delivery"
        assert {config.get_topic(name) for name in QUEUE_NAMES} == {
            f"registry-sync.{name}" for name in QUEUE_NAMES
        }


def test_singleton_set_and_reset():
    config = config_from_dict({"search": {"collection": "custom"}})
    set_config(config)

    assert get_config() is config

    reset_config()
    assert get_config() is not config
