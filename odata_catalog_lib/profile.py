"""
Synthesis profile: the immutable configuration value driving catalog synthesis.
"""

from typing import Any, Dict, FrozenSet, Optional
from pydantic import BaseModel, ConfigDict, field_validator

from .constants import MAX_TOOL_NAME_LENGTH
from .errors import ConfigurationError
from .models import OperationKind
from .naming import NamingConvention

DEFAULT_OPERATIONS = frozenset(kind for kind in OperationKind if kind != OperationKind.SEARCH)
WRITE_OPERATIONS = frozenset({
    OperationKind.CREATE,
    OperationKind.UPDATE,
    OperationKind.DELETE,
    OperationKind.NAVIGATE_ADD,
    OperationKind.NAVIGATE_REMOVE,
})


class SynthesisProfile(BaseModel):
    """Controls which operations are generated and how they are shaped."""

    model_config = ConfigDict(frozen=True)

    operations: FrozenSet[OperationKind] = DEFAULT_OPERATIONS
    naming_convention: NamingConvention = NamingConvention.PASCAL
    tool_prefix: str = ""
    tool_suffix: str = ""
    max_name_length: Optional[int] = MAX_TOOL_NAME_LENGTH
    include_entity_sets: FrozenSet[str] = frozenset()
    exclude_entity_sets: FrozenSet[str] = frozenset()
    # keyed by entity type name (simple or qualified)
    excluded_properties: Dict[str, FrozenSet[str]] = {}
    excluded_navigation_properties: Dict[str, FrozenSet[str]] = {}
    max_properties_per_tool: Optional[int] = 20
    include_complex_types: bool = True
    exclude_binary_fields: bool = True
    default_page_size: int = 50
    max_page_size: int = 1000
    navigation_default_page_size: int = 25
    navigation_max_page_size: int = 500
    support_filter: bool = True
    support_orderby: bool = True
    support_select: bool = True
    support_expand: bool = True
    support_top: bool = True
    support_skip: bool = True
    support_count: bool = True
    include_collection_navigations: bool = True
    include_single_navigations: bool = True
    include_singletons: bool = True
    include_function_imports: bool = True
    max_tool_count: Optional[int] = None
    detailed_descriptions: bool = False
    include_examples: bool = False

    @field_validator('operations', mode='before')
    @classmethod
    def _coerce_operations(cls, value):
        if isinstance(value, (list, tuple, set, frozenset)):
            return frozenset(OperationKind(v) for v in value)
        return value

    def enables(self, kind: OperationKind) -> bool:
        return kind in self.operations

    def excluded_properties_for(self, entity_type_name: str, full_name: Optional[str] = None) -> FrozenSet[str]:
        return (self.excluded_properties.get(entity_type_name, frozenset())
                | self.excluded_properties.get(full_name or '', frozenset()))

    def excluded_navigation_for(self, entity_type_name: str, full_name: Optional[str] = None) -> FrozenSet[str]:
        return (self.excluded_navigation_properties.get(entity_type_name, frozenset())
                | self.excluded_navigation_properties.get(full_name or '', frozenset()))

    def validate_profile(self) -> 'SynthesisProfile':
        """Raise ConfigurationError when settings contradict each other."""
        errors = []
        overlap = self.include_entity_sets & self.exclude_entity_sets
        if overlap:
            errors.append(f"entity sets both included and excluded: {', '.join(sorted(overlap))}")
        if self.default_page_size <= 0 or self.max_page_size <= 0:
            errors.append("page sizes must be positive")
        elif self.default_page_size > self.max_page_size:
            errors.append("default_page_size exceeds max_page_size")
        if self.navigation_default_page_size <= 0 or self.navigation_max_page_size <= 0:
            errors.append("navigation page sizes must be positive")
        elif self.navigation_default_page_size > self.navigation_max_page_size:
            errors.append("navigation_default_page_size exceeds navigation_max_page_size")
        if self.max_tool_count is not None and self.max_tool_count <= 0:
            errors.append("max_tool_count must be greater than zero")
        if self.max_properties_per_tool is not None and self.max_properties_per_tool <= 0:
            errors.append("max_properties_per_tool must be greater than zero")
        if self.max_name_length is not None and self.max_name_length <= 0:
            errors.append("max_name_length must be greater than zero")
        if not self.operations:
            errors.append("no operation kinds enabled")
        if errors:
            raise ConfigurationError("Invalid synthesis profile: " + "; ".join(errors))
        return self

    @classmethod
    def layered(cls, *overrides: Optional[Dict[str, Any]]) -> 'SynthesisProfile':
        """Build a profile from the defaults plus successive override dicts."""
        values: Dict[str, Any] = {}
        for layer in overrides:
            if layer:
                values.update(layer)
        return cls(**values).validate_profile()

    def with_overrides(self, **overrides: Any) -> 'SynthesisProfile':
        values = self.model_dump()
        values.update(overrides)
        return type(self)(**values).validate_profile()

    @classmethod
    def read_only(cls, **overrides: Any) -> 'SynthesisProfile':
        """Only reads, lists, counts and related-entity lookups."""
        return cls.layered({'operations': DEFAULT_OPERATIONS - WRITE_OPERATIONS}, overrides)

    @classmethod
    def high_security(cls, **overrides: Any) -> 'SynthesisProfile':
        """Read-only, narrow schemas, small pages and no expansion."""
        return cls.layered({
            'operations': DEFAULT_OPERATIONS - WRITE_OPERATIONS,
            'max_properties_per_tool': 10,
            'include_complex_types': False,
            'support_expand': False,
            'default_page_size': 10,
            'max_page_size': 100,
            'navigation_default_page_size': 10,
            'navigation_max_page_size': 100,
            'include_function_imports': False,
        }, overrides)

    @classmethod
    def development(cls, **overrides: Any) -> 'SynthesisProfile':
        """Everything on, with verbose descriptions and examples."""
        return cls.layered({
            'operations': frozenset(OperationKind),
            'max_properties_per_tool': None,
            'detailed_descriptions': True,
            'include_examples': True,
        }, overrides)
