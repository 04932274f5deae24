"""
Tool naming: casing conventions, prefixes/suffixes and collision detection.
"""

import fnmatch
import re
from enum import Enum
from typing import Dict, Iterable, Optional

from .constants import MAX_TOOL_NAME_LENGTH
from .errors import SynthesisError


class NamingConvention(str, Enum):
    PASCAL = "pascal"
    CAMEL = "camel"
    SNAKE = "snake"
    KEBAB = "kebab"


def _insert_separator(name: str, separator: str) -> str:
    result = []
    for i, char in enumerate(name):
        if i > 0 and char.isupper():
            result.append(separator)
        result.append(char.lower())
    return ''.join(result)


def apply_convention(name: str, convention: NamingConvention) -> str:
    """Render a PascalCase name in the given convention."""
    if not name:
        return name
    if convention == NamingConvention.CAMEL:
        return name[0].lower() + name[1:]
    if convention == NamingConvention.SNAKE:
        return _insert_separator(name, '_')
    if convention == NamingConvention.KEBAB:
        return _insert_separator(name, '-')
    return name


def _pascal_segment(segment: str) -> str:
    """Make a metadata name usable as a PascalCase segment."""
    cleaned = re.sub(r'[^0-9A-Za-z_]', '', segment)
    return cleaned[:1].upper() + cleaned[1:]


def format_name(operation: str, entity_name: str, navigation_name: Optional[str] = None,
                convention: NamingConvention = NamingConvention.PASCAL) -> str:
    """Concatenate operation word, entity and optional navigation, then apply the convention."""
    base = f"{operation}{_pascal_segment(entity_name)}"
    if navigation_name:
        base += _pascal_segment(navigation_name)
    return apply_convention(base, convention)


def matches_any(name: str, patterns: Iterable[str]) -> bool:
    """Case-sensitive match against exact names or '*' wildcards."""
    for pattern in patterns:
        if '*' in pattern or '?' in pattern:
            if fnmatch.fnmatchcase(name, pattern):
                return True
        elif name == pattern:
            return True
    return False


class ToolNamer:
    """Applies prefix/suffix and the length cap, and rejects duplicate names."""

    def __init__(self, convention: NamingConvention = NamingConvention.PASCAL, prefix: str = "",
                 suffix: str = "", max_length: Optional[int] = MAX_TOOL_NAME_LENGTH):
        self.convention = convention
        self.prefix = prefix or ""
        self.suffix = suffix or ""
        self.max_length = max_length
        self._issued: Dict[str, str] = {}

    def make(self, operation: str, entity_name: str, navigation_name: Optional[str] = None,
             owner: Optional[str] = None) -> str:
        base = format_name(operation, entity_name, navigation_name, self.convention)
        name = f"{self.prefix}{base}{self.suffix}"
        if self.max_length and len(name) > self.max_length:
            room = self.max_length - len(self.prefix) - len(self.suffix)
            if room <= 0:
                raise SynthesisError(
                    f"Tool prefix/suffix leave no room for names within {self.max_length} characters")
            name = f"{self.prefix}{base[:room]}{self.suffix}"
        owner = owner or entity_name
        if name in self._issued:
            raise SynthesisError(
                f"Operation name '{name}' generated for '{owner}' collides with the one generated for "
                f"'{self._issued[name]}'",
                entity=owner,
            )
        self._issued[name] = owner
        return name
