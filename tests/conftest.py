"""
pytest configuration shared by all registry_sync tests.

Resets process-wide registries (circuit breakers, rate limiters, loaded
config) so tests never observe state from an earlier test.
"""

import os

import pytest

os.environ.setdefault("TEST_MODE", "true")


@pytest.fixture(autouse=True)
def reset_resilience_registries():
    from core.resilience import circuit_breaker, rate_limiter

    circuit_breaker._breakers.clear()
    rate_limiter._rate_limiters.clear()
    yield
    circuit_breaker._breakers.clear()
    rate_limiter._rate_limiters.clear()


@pytest.fixture(autouse=True)
def reset_loaded_config():
    from config.config import reset_config

    reset_config()
    yield
    reset_config()


@pytest.fixture
def registry_metadata():
    """Registry document for a typical dual-mode package."""
    return {
        "_id": "left-pad",
        "name": "left-pad",
        "description": "String left pad",
        "dist-tags": {"latest": "1.3.0"},
        "versions": {
            "1.3.0": {
                "name": "left-pad",
                "version": "1.3.0",
                "main": "index.js",
                "exports": {".": {"import": "./index.mjs", "require": "./index.js"}},
                "types": "index.d.ts",
                "dependencies": {"a": "^1.0.0", "b": "^2.0.0"},
                "peerDependencies": {"react": ">=17"},
                "engines": {"node": ">=14"},
            }
        },
        "time": {
            "created": "2014-03-01T00:00:00.000Z",
            "modified": "2024-01-01T00:00:00.000Z",
        },
        "keywords": ["pad", "string"],
        "author": {"name": "Azer", "email": "azer@example.com"},
        "license": "WTFPL",
        "homepage": "https://github.com/left-pad/left-pad",
        "repository": {"type": "git", "url": "git+https://github.com/left-pad/left-pad.git"},
        "maintainers": [{"name": "azer"}, {"name": "cam"}],
    }
