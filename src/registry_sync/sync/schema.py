"""Desired search collection schema."""

from typing import Any


def _field(name: str, type_: str, **flags: bool) -> dict[str, Any]:
    return {"name": name, "type": type_, **flags}


PACKAGE_FIELDS: list[dict[str, Any]] = [
    # Core fields
    _field("name", "string", facet=True),
    _field("description", "string", optional=True),
    _field("keywords", "string[]", facet=True, optional=True),
    _field("author", "string", facet=True, optional=True),
    _field("version", "string"),
    _field("license", "string", facet=True, optional=True),
    _field("homepage", "string", optional=True),
    _field("repository", "string", optional=True),
    _field("downloads", "int64", sort=True),
    _field("updated", "int64", sort=True),
    _field("created", "int64", sort=True),
    _field("hasTypes", "bool", facet=True),
    _field("isESM", "bool", facet=True),
    _field("isCJS", "bool", facet=True),
    _field("dependencies", "int32"),
    _field("maintainers", "string[]", optional=True),
    _field("nodeVersion", "string", optional=True),
    _field("peerDependencies", "string", optional=True),
    _field("directDependencies", "string", optional=True),
    _field("deprecated", "bool", facet=True),
    _field("deprecatedMessage", "string", optional=True),
    _field("maintenanceScore", "float", optional=True),
    _field("vulnerabilities", "int32", optional=True),
    _field("vulnCritical", "int32", optional=True),
    _field("vulnHigh", "int32", optional=True),
    _field("hasInstallScripts", "bool", facet=True, optional=True),
    _field("stars", "int32", sort=True, optional=True),
    _field("dependents", "int32", sort=True, optional=True),
    _field("typesPackage", "string", optional=True),
    _field("funding", "string", optional=True),
    # Filter and discovery fields
    _field("inferredCategory", "string", facet=True, optional=True),
    _field("moduleFormat", "string", facet=True, optional=True),
    _field("hasBin", "bool", facet=True, optional=True),
    _field("licenseType", "string", facet=True, optional=True),
    _field("hasProvenance", "bool", facet=True, optional=True),
    _field("unpackedSize", "int64", sort=True, optional=True),
    _field("isStable", "bool", facet=True, optional=True),
    _field("authorGithub", "string", facet=True, optional=True),
]


def package_collection_schema(collection: str) -> dict[str, Any]:
    return {
        "name": collection,
        "fields": [dict(f) for f in PACKAGE_FIELDS],
        "default_sorting_field": "downloads",
        "enable_nested_fields": False,
    }


def missing_fields(existing: dict[str, Any]) -> list[dict[str, Any]]:
    """Desired fields absent from a retrieved collection, in declaration order."""
    present = {f.get("name") for f in existing.get("fields") or [] if isinstance(f, dict)}
    return [dict(f) for f in PACKAGE_FIELDS if f["name"] not in present]


__all__ = ["PACKAGE_FIELDS", "missing_fields", "package_collection_schema"]
