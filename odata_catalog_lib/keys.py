"""
OData literal formatting for key predicates and function parameters.
"""

import re
from typing import Any, Dict, Optional, Sequence
from urllib.parse import quote

from .constants import DATETIME_TYPES, INTEGER_TYPES, NUMBER_TYPES
from .models import Property

GUID_PATTERN = re.compile(r'^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$')
NUMBER_PATTERN = re.compile(r'^[+-]?\d+(\.\d+)?([eE][+-]?\d+)?$')
INTEGER_PATTERN = re.compile(r'^[+-]?\d+$')


def quote_string(value: str) -> str:
    """Single-quote a string literal, doubling embedded quotes."""
    return "'" + value.replace("'", "''") + "'"


def _strict_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"expected an integer, got {value!r}")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"expected an integer, got {value!r}")
        return int(value)
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not INTEGER_PATTERN.match(text):
        raise ValueError(f"expected an integer, got {value!r}")
    return int(text)


def _strict_number(value: Any) -> str:
    if isinstance(value, bool):
        raise ValueError(f"expected a number, got {value!r}")
    if isinstance(value, (int, float)):
        return repr(value) if isinstance(value, float) else str(value)
    text = str(value).strip()
    if not NUMBER_PATTERN.match(text):
        raise ValueError(f"expected a number, got {value!r}")
    return text


def format_literal(value: Any, edm_type: Optional[str] = None, version: str = "4.0") -> str:
    """Render a value as an OData URL literal. Raises ValueError on type mismatch."""
    v4 = version.startswith('4')

    if isinstance(value, bool):
        return 'true' if value else 'false'

    if edm_type == 'Edm.String':
        return quote_string(str(value))
    if edm_type == 'Edm.Guid':
        text = str(value).strip()
        if not GUID_PATTERN.match(text):
            raise ValueError(f"expected a GUID, got {value!r}")
        return text if v4 else f"guid'{text}'"
    if edm_type in INTEGER_TYPES:
        number = _strict_int(value)
        if edm_type == 'Edm.Int64' and not v4:
            return f"{number}L"
        return str(number)
    if edm_type in NUMBER_TYPES:
        text = _strict_number(value)
        if edm_type == 'Edm.Decimal' and not v4:
            return f"{text}M"
        return text
    if edm_type == 'Edm.Boolean':
        lowered = str(value).strip().lower()
        if lowered not in ('true', 'false'):
            raise ValueError(f"expected a boolean, got {value!r}")
        return lowered
    if edm_type in DATETIME_TYPES:
        text = str(value).strip()
        if v4:
            return text
        prefix = 'datetimeoffset' if edm_type == 'Edm.DateTimeOffset' else 'datetime'
        return f"{prefix}'{text}'"
    if edm_type == 'Edm.Date':
        return str(value).strip()

    # Undeclared or custom types: infer from the value itself
    if isinstance(value, (int, float)):
        return repr(value) if isinstance(value, float) else str(value)
    text = str(value)
    if NUMBER_PATTERN.match(text):
        return text
    if GUID_PATTERN.match(text):
        return text if v4 else f"guid'{text}'"
    return quote_string(text)


def encode_literal(literal: str) -> str:
    """Percent-encode a literal for use inside a path segment."""
    return quote(literal, safe="'-.+")


def build_key_predicate(key_properties: Sequence[Property], values: Dict[str, Any], version: str = "4.0") -> str:
    """Build '(value)' or '(A=1,B='x')' in key declaration order."""
    if not key_properties:
        raise ValueError("Entity type has no key properties")
    if len(key_properties) == 1:
        prop = key_properties[0]
        return f"({encode_literal(format_literal(values[prop.name], prop.type, version))})"
    parts = [
        f"{prop.name}={encode_literal(format_literal(values[prop.name], prop.type, version))}"
        for prop in key_properties
    ]
    return f"({','.join(parts)})"
