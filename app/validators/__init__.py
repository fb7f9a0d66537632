"""
app/validators package marker.
"""

from app.validators.mapping_validator import MappingEntry, MappingPlan, MappingValidator, resolve_system_field

__all__ = [
    "MappingEntry",
    "MappingPlan",
    "MappingValidator",
    "resolve_system_field",
]
