"""
Search index document schema.

PackageDocument is the flat record stored per package in the search index.
Fields are snake_case in Python and camelCase on the wire; optional fields
are omitted from the serialized form when absent.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class PackageDocument(BaseModel):
    """Normalized search document for one package. Invariant: id == name."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    name: str
    version: str
    downloads: int = 0
    updated: int
    created: int
    has_types: bool = False
    is_esm: bool = Field(default=False, alias="isESM")
    is_cjs: bool = Field(default=False, alias="isCJS")
    dependencies: int = 0
    deprecated: bool = False

    description: str | None = None
    keywords: list[str] | None = None
    author: str | None = None
    license: str | None = None
    homepage: str | None = None
    repository: str | None = None
    maintainers: list[str] | None = None
    node_version: str | None = None
    peer_dependencies: str | None = None
    direct_dependencies: str | None = None
    deprecated_message: str | None = None
    maintenance_score: float | None = None
    vulnerabilities: int | None = None
    vuln_critical: int | None = None
    vuln_high: int | None = None
    has_install_scripts: bool | None = None
    funding: str | None = None

    def to_index_dict(self) -> dict[str, Any]:
        """Wire form: camelCase keys, absent optionals dropped."""
        return self.model_dump(by_alias=True, exclude_none=True)
