"""
Mapping of EDM property types onto JSON schema fragments.
"""

from typing import Any, Dict, Optional, Set

from .constants import (
    BINARY_TYPES,
    DATETIME_TYPES,
    INTEGER_TYPES,
    MAX_SORTABLE_STRING_LENGTH,
    NUMBER_TYPES,
    SORTABLE_TYPES,
)
from .models import Model, Property, split_collection


def _coerce_default(value: str, json_type: str) -> Any:
    """Convert a metadata DefaultValue into the JSON type, or None if it doesn't fit."""
    try:
        if json_type == 'integer':
            return int(value)
        if json_type == 'number':
            return float(value)
        if json_type == 'boolean':
            lowered = value.strip().lower()
            if lowered in ('true', 'false'):
                return lowered == 'true'
            return None
    except ValueError:
        return None
    if json_type == 'string':
        return value
    return None


def _complex_schema(type_name: str, model: Model, seen: Set[str]) -> Optional[Dict[str, Any]]:
    complex_type = model.get_complex_type(type_name)
    if complex_type is None:
        return None
    if complex_type.full_name in seen:
        return {"type": "object"}
    seen = seen | {complex_type.full_name}
    properties = {
        prop.name: property_schema(prop, model, _seen=seen)
        for prop in model.properties_of(complex_type)
    }
    schema = {"type": "object", "properties": properties}
    required = [p.name for p in model.properties_of(complex_type) if not p.nullable and not p.has_default]
    if required:
        schema["required"] = required
    return schema


def type_schema(type_name: str, prop: Optional[Property] = None, model: Optional[Model] = None,
                _seen: Optional[Set[str]] = None) -> Dict[str, Any]:
    """JSON schema for a single (non-collection) EDM type."""
    if type_name == 'Edm.String':
        schema = {"type": "string"}
        if prop is not None and prop.max_length:
            schema["maxLength"] = prop.max_length
        return schema
    if type_name in DATETIME_TYPES:
        return {"type": "string", "format": "date-time"}
    if type_name == 'Edm.Date':
        return {"type": "string", "format": "date"}
    if type_name == 'Edm.Guid':
        return {"type": "string", "format": "uuid"}
    if type_name in INTEGER_TYPES:
        return {"type": "integer"}
    if type_name in NUMBER_TYPES:
        schema = {"type": "number"}
        if prop is not None and prop.scale:
            schema["multipleOf"] = 10 ** -prop.scale
        return schema
    if type_name == 'Edm.Boolean':
        return {"type": "boolean"}
    if type_name in BINARY_TYPES:
        return {"type": "string", "contentEncoding": "base64"}
    if model is not None and not type_name.startswith('Edm.'):
        nested = _complex_schema(type_name, model, _seen or set())
        if nested is not None:
            return nested
    # Unknown custom scalars (enums, type definitions) travel as strings
    return {"type": "string"}


def property_schema(prop: Property, model: Optional[Model] = None, _seen: Optional[Set[str]] = None) -> Dict[str, Any]:
    """JSON schema for a property, including collections, description and default."""
    is_collection, element_type = split_collection(prop.type)
    item = type_schema(element_type, prop, model, _seen)
    schema = {"type": "array", "items": item} if is_collection else dict(item)
    if prop.description:
        schema["description"] = prop.description
    if prop.default_value is not None and not is_collection:
        default = _coerce_default(prop.default_value, schema.get("type"))
        if default is not None:
            schema["default"] = default
    return schema


def is_complex(prop: Property, model: Model) -> bool:
    return model.get_complex_type(prop.element_type) is not None


def is_sortable(prop: Property) -> bool:
    """Primitive scalars and short strings can be used in $orderby."""
    if prop.is_collection:
        return False
    if prop.type == 'Edm.String':
        return prop.max_length is None or prop.max_length <= MAX_SORTABLE_STRING_LENGTH
    return prop.type in SORTABLE_TYPES


def is_binary(prop: Property) -> bool:
    return prop.element_type in BINARY_TYPES
