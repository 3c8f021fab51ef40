"""Tests for string-or-object metadata normalizers."""

from registry_sync.transform.normalizers import (
    StringOrUrlObject,
    as_str_list,
    normalize_author,
    normalize_funding,
    normalize_repository,
)


class TestStringOrUrlObject:
    def test_parse_string(self):
        parsed = StringOrUrlObject.parse("Jane")
        assert parsed.kind == "string"
        assert parsed.as_name() == "Jane"
        assert parsed.as_url() == "Jane"

    def test_parse_object(self):
        parsed = StringOrUrlObject.parse({"name": "Jane", "url": "https://jane.dev"})
        assert parsed.kind == "object"
        assert parsed.as_name() == "Jane"
        assert parsed.as_url() == "https://jane.dev"

    def test_parse_rejects_other_types(self):
        assert StringOrUrlObject.parse(None) is None
        assert StringOrUrlObject.parse(42) is None
        assert StringOrUrlObject.parse("") is None


class TestNormalizeAuthor:
    def test_string_author(self):
        assert normalize_author("Jane <jane@example.com>") == "Jane <jane@example.com>"

    def test_object_author(self):
        assert normalize_author({"name": "Jane"}) == "Jane"

    def test_object_without_name(self):
        assert normalize_author({"email": "jane@example.com"}) is None


class TestNormalizeRepository:
    def test_string_kept_verbatim(self):
        assert normalize_repository("github:user/repo") == "github:user/repo"

    def test_object_url_is_cleaned(self):
        raw = {"type": "git", "url": "git+https://github.com/user/repo.git"}
        assert normalize_repository(raw) == "https://github.com/user/repo"

    def test_object_without_url(self):
        assert normalize_repository({"type": "git"}) is None


class TestNormalizeFunding:
    def test_string(self):
        assert normalize_funding("https://opencollective.com/x") == "https://opencollective.com/x"

    def test_object(self):
        assert normalize_funding({"type": "github", "url": "https://github.com/sponsors/x"}) == (
            "https://github.com/sponsors/x"
        )

    def test_list_uses_first_object(self):
        raw = [{"url": "https://a.example"}, {"url": "https://b.example"}]
        assert normalize_funding(raw) == "https://a.example"

    def test_list_of_strings_is_ignored(self):
        assert normalize_funding(["https://a.example"]) is None

    def test_empty_list(self):
        assert normalize_funding([]) is None


def test_as_str_list_filters_non_strings():
    assert as_str_list(["a", 1, None, "b"]) == ["a", "b"]
    assert as_str_list("a") is None
