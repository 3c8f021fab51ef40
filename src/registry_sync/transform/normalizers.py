"""
Normalizers for loosely-typed registry metadata fields.

Registry JSON encodes author, repository and funding as either a bare string,
an object with ``name``/``url``, or (for funding) a list of those. These are
modeled as a tagged variant so callers never narrow types ad hoc.
"""

import re
from dataclasses import dataclass
from typing import Any, Literal

_GIT_PREFIX = re.compile(r"^git\+")
_GIT_SUFFIX = re.compile(r"\.git$")


@dataclass(frozen=True)
class StringOrUrlObject:
    """A metadata value that was either a plain string or a {name, url} object."""

    kind: Literal["string", "object"]
    value: str | None = None
    name: str | None = None
    url: str | None = None

    @classmethod
    def parse(cls, raw: Any) -> "StringOrUrlObject | None":
        """Parse a raw field; anything unrecognised yields None."""
        if isinstance(raw, str):
            return cls(kind="string", value=raw) if raw else None
        if isinstance(raw, dict):
            name = raw.get("name")
            url = raw.get("url")
            return cls(
                kind="object",
                name=name if isinstance(name, str) and name else None,
                url=url if isinstance(url, str) and url else None,
            )
        return None

    def as_name(self) -> str | None:
        return self.value if self.kind == "string" else self.name

    def as_url(self) -> str | None:
        return self.value if self.kind == "string" else self.url


def normalize_author(raw: Any) -> str | None:
    parsed = StringOrUrlObject.parse(raw)
    return parsed.as_name() if parsed else None


def normalize_repository(raw: Any) -> str | None:
    """Repository URL; object URLs lose their ``git+`` prefix and ``.git`` suffix."""
    parsed = StringOrUrlObject.parse(raw)
    if parsed is None:
        return None
    if parsed.kind == "string":
        return parsed.value
    if parsed.url is None:
        return None
    return _GIT_SUFFIX.sub("", _GIT_PREFIX.sub("", parsed.url))


def normalize_funding(raw: Any) -> str | None:
    """Funding URL from a string, an object, or the first entry of a list."""
    if isinstance(raw, list):
        if not raw:
            return None
        parsed = StringOrUrlObject.parse(raw[0])
        # Only object entries count inside a list
        return parsed.url if parsed and parsed.kind == "object" else None
    parsed = StringOrUrlObject.parse(raw)
    return parsed.as_url() if parsed else None


def as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def as_str(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def as_str_list(value: Any) -> list[str] | None:
    if not isinstance(value, list):
        return None
    return [item for item in value if isinstance(item, str)]


__all__ = [
    "StringOrUrlObject",
    "as_dict",
    "as_str",
    "as_str_list",
    "normalize_author",
    "normalize_funding",
    "normalize_repository",
]
