"""
app/domain package marker.
"""

from app.domain.geocoding import CoordinateValidation, GeocodeResult, ValidationStatus, normalize_address
from app.domain.schema_types import ObjectField, schema_from_dict
from app.domain.stages import StageTransitionError, TerminalStateError, stage_after, validate_transition

__all__ = [
    "CoordinateValidation",
    "GeocodeResult",
    "ObjectField",
    "StageTransitionError",
    "TerminalStateError",
    "ValidationStatus",
    "normalize_address",
    "schema_from_dict",
    "stage_after",
    "validate_transition",
]
