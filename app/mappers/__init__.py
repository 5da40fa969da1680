"""
app/mappers package marker.
"""

from app.mappers.field_mapping_detector import (
    SEMANTIC_FIELDS,
    FieldMappingDetector,
    FieldMappingResolution,
    FieldMatch,
    normalize_header,
)

__all__ = [
    "SEMANTIC_FIELDS",
    "FieldMappingDetector",
    "FieldMappingResolution",
    "FieldMatch",
    "normalize_header",
]
