"""
Tests for registry metadata to search document transformation.

Coverage:
    - Field mapping and truncation
    - Module system flags (ESM, CJS, dual)
    - Timestamp fallbacks and maintenance score
    - Malformed input never raises
"""

import json
from datetime import UTC, datetime

import pytest

from registry_sync.transform.transformer import (
    DEFAULT_VERSION,
    MAX_DESCRIPTION_LENGTH,
    MAX_KEYWORDS,
    MAX_MAINTAINERS,
    detect_module_system,
    maintenance_score,
    transform_to_document,
)

NOW = datetime(2024, 7, 1, tzinfo=UTC)
NOW_MS = int(NOW.timestamp() * 1000)
DAY_MS = 24 * 60 * 60 * 1000


class TestTransformToDocument:
    def test_maps_core_fields(self, registry_metadata):
        doc = transform_to_document(registry_metadata, downloads=1234, now=NOW)

        assert doc.id == "left-pad"
        assert doc.name == doc.id
        assert doc.version == "1.3.0"
        assert doc.downloads == 1234
        assert doc.description == "String left pad"
        assert doc.keywords == ["pad", "string"]
        assert doc.author == "Azer"
        assert doc.license == "WTFPL"
        assert doc.repository == "https://github.com/left-pad/left-pad"
        assert doc.maintainers == ["azer", "cam"]
        assert doc.node_version == ">=14"
        assert doc.dependencies == 2

    def test_dependency_maps_are_compact_json(self, registry_metadata):
        doc = transform_to_document(registry_metadata, now=NOW)

        assert doc.direct_dependencies == '{"a":"^1.0.0","b":"^2.0.0"}'
        assert json.loads(doc.peer_dependencies) == {"react": ">=17"}

    def test_empty_dependency_maps_are_omitted(self, registry_metadata):
        version = registry_metadata["versions"]["1.3.0"]
        version["dependencies"] = {}
        del version["peerDependencies"]

        doc = transform_to_document(registry_metadata, now=NOW)

        assert doc.dependencies == 0
        assert doc.direct_dependencies is None
        assert doc.peer_dependencies is None

    def test_dual_mode_package_sets_both_flags(self, registry_metadata):
        doc = transform_to_document(registry_metadata, now=NOW)

        assert doc.is_esm is True
        assert doc.is_cjs is True

    def test_is_pure_for_fixed_now(self, registry_metadata):
        first = transform_to_document(registry_metadata, downloads=10, now=NOW)
        second = transform_to_document(registry_metadata, downloads=10, now=NOW)

        assert first == second

    def test_missing_latest_tag_uses_default_version(self):
        doc = transform_to_document({"name": "ghost"}, now=NOW)

        assert doc.version == DEFAULT_VERSION
        assert doc.is_esm is False
        assert doc.is_cjs is False
        assert doc.dependencies == 0

    def test_missing_timestamps_fall_back_to_now(self):
        doc = transform_to_document({"name": "ghost"}, now=NOW)

        assert doc.updated == NOW_MS
        assert doc.created == NOW_MS
        assert doc.maintenance_score == 1.0

    def test_truncates_description_keywords_and_maintainers(self):
        metadata = {
            "name": "big",
            "description": "x" * (MAX_DESCRIPTION_LENGTH + 100),
            "keywords": [f"k{i}" for i in range(30)],
            "maintainers": [{"name": f"m{i}"} for i in range(15)],
        }

        doc = transform_to_document(metadata, now=NOW)

        assert len(doc.description) == MAX_DESCRIPTION_LENGTH
        assert len(doc.keywords) == MAX_KEYWORDS
        assert len(doc.maintainers) == MAX_MAINTAINERS

    def test_types_scope_implies_types(self):
        doc = transform_to_document({"name": "@types/node"}, now=NOW)

        assert doc.has_types is True

    def test_typings_field_counts_as_types(self, registry_metadata):
        version = registry_metadata["versions"]["1.3.0"]
        del version["types"]
        version["typings"] = "lib/index.d.ts"

        doc = transform_to_document(registry_metadata, now=NOW)

        assert doc.has_types is True

    def test_version_deprecation_with_message(self, registry_metadata):
        registry_metadata["versions"]["1.3.0"]["deprecated"] = "use padStart"

        doc = transform_to_document(registry_metadata, now=NOW)

        assert doc.deprecated is True
        assert doc.deprecated_message == "use padStart"

    def test_boolean_deprecation_has_no_message(self, registry_metadata):
        registry_metadata["deprecated"] = True

        doc = transform_to_document(registry_metadata, now=NOW)

        assert doc.deprecated is True
        assert doc.deprecated_message is None

    @pytest.mark.parametrize("script", ["preinstall", "install", "postinstall"])
    def test_install_scripts_detected(self, registry_metadata, script):
        registry_metadata["versions"]["1.3.0"]["scripts"] = {script: "node build.js"}

        doc = transform_to_document(registry_metadata, now=NOW)

        assert doc.has_install_scripts is True

    def test_other_scripts_leave_install_flag_absent(self, registry_metadata):
        registry_metadata["versions"]["1.3.0"]["scripts"] = {"test": "jest"}

        doc = transform_to_document(registry_metadata, now=NOW)

        assert doc.has_install_scripts is None

    def test_negative_or_invalid_downloads_become_zero(self, registry_metadata):
        assert transform_to_document(registry_metadata, downloads=-5, now=NOW).downloads == 0
        assert transform_to_document(registry_metadata, downloads=None, now=NOW).downloads == 0

    def test_malformed_fields_never_raise(self):
        metadata = {
            "name": "weird",
            "dist-tags": "latest",
            "versions": ["1.0.0"],
            "time": None,
            "keywords": "not-a-list",
            "maintainers": {"name": "x"},
            "author": 42,
            "repository": ["git"],
        }

        doc = transform_to_document(metadata, now=NOW)

        assert doc.name == "weird"
        assert doc.keywords is None
        assert doc.maintainers is None
        assert doc.author is None
        assert doc.repository is None

    def test_index_dict_uses_camel_case_and_drops_absent(self, registry_metadata):
        wire = transform_to_document(registry_metadata, now=NOW).to_index_dict()

        assert wire["isESM"] is True
        assert wire["isCJS"] is True
        assert wire["hasTypes"] is True
        assert wire["nodeVersion"] == ">=14"
        assert "vulnerabilities" not in wire
        assert "funding" not in wire


class TestDetectModuleSystem:
    def test_no_version_record(self):
        assert detect_module_system(None) == (False, False)

    def test_type_module_only(self):
        assert detect_module_system({"type": "module"}) == (True, False)

    def test_type_module_with_main_is_dual(self):
        assert detect_module_system({"type": "module", "main": "index.cjs"}) == (True, True)

    def test_plain_commonjs(self):
        assert detect_module_system({"main": "index.js"}) == (False, True)

    def test_module_field_adds_esm(self):
        assert detect_module_system({"module": "index.mjs", "main": "index.js"}) == (True, True)


class TestMaintenanceScore:
    def test_recent_update_is_close_to_one(self):
        assert maintenance_score(NOW_MS, NOW_MS) == 1.0

    def test_linear_decay(self):
        assert maintenance_score(NOW_MS - 365 * DAY_MS, NOW_MS) == 0.5

    def test_two_years_is_absent(self):
        assert maintenance_score(NOW_MS - 730 * DAY_MS, NOW_MS) is None
        assert maintenance_score(NOW_MS - 1000 * DAY_MS, NOW_MS) is None

    def test_score_is_rounded(self, registry_metadata):
        # 2024-01-01 to 2024-07-01 is 182 days
        doc = transform_to_document(registry_metadata, now=NOW)
        assert doc.maintenance_score == 0.75
