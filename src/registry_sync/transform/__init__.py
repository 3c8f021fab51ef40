"""Pure transformation of registry metadata into search documents."""

from registry_sync.transform.normalizers import StringOrUrlObject
from registry_sync.transform.transformer import transform_to_document

__all__ = ["StringOrUrlObject", "transform_to_document"]
