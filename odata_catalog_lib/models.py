"""
Data models for the parsed OData type model and the synthesized operation catalog.

Every model is frozen: a Model is built once per metadata refresh and shared
read-only by synthesis and by in-flight invocations.
"""

from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple
from pydantic import BaseModel, ConfigDict


def split_collection(type_name: str) -> Tuple[bool, str]:
    """Split 'Collection(NS.Type)' into (True, 'NS.Type')."""
    if type_name.startswith('Collection(') and type_name.endswith(')'):
        return True, type_name[len('Collection('):-1]
    return False, type_name


class FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True)


class Property(FrozenModel):
    name: str
    type: str  # OData type string (e.g., "Edm.String")
    nullable: bool = True
    max_length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    default_value: Optional[str] = None
    unicode: Optional[bool] = None
    srid: Optional[str] = None
    is_key: bool = False
    description: Optional[str] = None

    @property
    def is_collection(self) -> bool:
        return split_collection(self.type)[0]

    @property
    def element_type(self) -> str:
        return split_collection(self.type)[1]

    @property
    def has_default(self) -> bool:
        return self.default_value is not None


class ReferentialConstraint(FrozenModel):
    property_name: str
    referenced_property: str


class NavigationProperty(FrozenModel):
    name: str
    type: str
    nullable: bool = True
    partner: Optional[str] = None
    contains_target: bool = False
    referential_constraints: Tuple[ReferentialConstraint, ...] = ()
    on_delete: Optional[str] = None
    description: Optional[str] = None

    @property
    def is_collection(self) -> bool:
        return split_collection(self.type)[0]

    @property
    def target_type_name(self) -> str:
        return split_collection(self.type)[1]

    @property
    def is_required(self) -> bool:
        return not self.is_collection and not self.nullable


class StructuredType(FrozenModel):
    name: str
    namespace: str
    base_type: Optional[str] = None
    abstract: bool = False
    open_type: bool = False
    properties: Tuple[Property, ...] = ()
    navigation_properties: Tuple[NavigationProperty, ...] = ()
    description: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.namespace}.{self.name}" if self.namespace else self.name

    def get_property(self, name: str) -> Optional[Property]:
        return next((p for p in self.properties if p.name == name), None)


class EntityType(StructuredType):
    has_stream: bool = False
    key_properties: Tuple[str, ...] = ()


class ComplexType(StructuredType):
    pass


class NavigationPropertyBinding(FrozenModel):
    path: str
    target: str


class EntitySet(FrozenModel):
    name: str
    entity_type: str  # qualified type name as written in the metadata
    navigation_bindings: Tuple[NavigationPropertyBinding, ...] = ()
    include_in_service_document: bool = True
    description: Optional[str] = None

    def binding_for(self, path: str) -> Optional[str]:
        binding = next((b for b in self.navigation_bindings if b.path == path), None)
        return binding.target if binding else None


class Singleton(EntitySet):
    pass


class Function(FrozenModel):
    """A schema-level function or action (OData v4)."""
    name: str
    namespace: str
    is_action: bool = False
    is_bound: bool = False
    parameters: Tuple[Property, ...] = ()
    return_type: Optional[str] = None
    description: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.namespace}.{self.name}"


class FunctionImport(FrozenModel):
    name: str
    function: Optional[str] = None  # v4: qualified function name
    entity_set: Optional[str] = None
    include_in_service_document: bool = True
    # v2 function imports carry their definition inline
    http_method: str = "GET"
    return_type: Optional[str] = None
    parameters: Tuple[Property, ...] = ()
    description: Optional[str] = None


class ActionImport(FrozenModel):
    name: str
    action: str
    entity_set: Optional[str] = None
    description: Optional[str] = None


class EntityContainer(FrozenModel):
    name: str
    namespace: str
    extends: Optional[str] = None
    entity_sets: Dict[str, EntitySet] = {}
    singletons: Dict[str, Singleton] = {}
    function_imports: Dict[str, FunctionImport] = {}
    action_imports: Dict[str, ActionImport] = {}

    @property
    def full_name(self) -> str:
        return f"{self.namespace}.{self.name}"


class Model(FrozenModel):
    version: str = "4.0"
    entity_types: Dict[str, EntityType] = {}
    complex_types: Dict[str, ComplexType] = {}
    containers: Dict[str, EntityContainer] = {}
    functions: Dict[str, Function] = {}
    namespaces: Tuple[str, ...] = ()
    aliases: Dict[str, str] = {}
    service_description: Optional[str] = None

    @property
    def is_v4(self) -> bool:
        return self.version.startswith('4')

    def qualify(self, name: str) -> str:
        """Replace a schema alias prefix with its namespace."""
        namespace, _, local = name.rpartition('.')
        if namespace in self.aliases:
            return f"{self.aliases[namespace]}.{local}"
        return name

    def _lookup(self, index: Dict[str, Any], name: Optional[str]):
        if not name:
            return None
        qualified = self.qualify(name)
        if qualified in index:
            return index[qualified]
        if '.' not in name:
            matches = [t for key, t in index.items() if key.rpartition('.')[2] == name]
            if len(matches) == 1:
                return matches[0]
        return None

    def get_entity_type(self, name: Optional[str]) -> Optional[EntityType]:
        return self._lookup(self.entity_types, name)

    def get_complex_type(self, name: Optional[str]) -> Optional[ComplexType]:
        return self._lookup(self.complex_types, name)

    def get_function(self, name: Optional[str]) -> Optional[Function]:
        return self._lookup(self.functions, name)

    def _hierarchy(self, structured: StructuredType) -> List[StructuredType]:
        """Ancestors first, the type itself last."""
        chain = []
        seen = set()
        current = structured
        while current is not None and current.full_name not in seen:
            seen.add(current.full_name)
            chain.append(current)
            if not current.base_type:
                break
            if isinstance(current, EntityType):
                current = self.get_entity_type(current.base_type)
            else:
                current = self.get_complex_type(current.base_type)
        return list(reversed(chain))

    def properties_of(self, structured: StructuredType) -> List[Property]:
        """Declared properties including inherited ones, in declaration order."""
        return [prop for t in self._hierarchy(structured) for prop in t.properties]

    def navigation_properties_of(self, structured: StructuredType) -> List[NavigationProperty]:
        return [nav for t in self._hierarchy(structured) for nav in t.navigation_properties]

    def key_names_of(self, entity_type: EntityType) -> Tuple[str, ...]:
        for t in reversed(self._hierarchy(entity_type)):
            if isinstance(t, EntityType) and t.key_properties:
                return t.key_properties
        return ()

    def key_properties_of(self, entity_type: EntityType) -> List[Property]:
        """Key properties in key declaration order."""
        by_name = {p.name: p for p in self.properties_of(entity_type)}
        return [by_name[name] for name in self.key_names_of(entity_type) if name in by_name]

    def iter_entity_sets(self) -> Iterator[Tuple[EntityContainer, EntitySet]]:
        for container in self.containers.values():
            for entity_set in container.entity_sets.values():
                yield container, entity_set

    def entity_sets_for_type(self, type_name: str) -> List[EntitySet]:
        qualified = self.qualify(type_name)
        return [
            es for _, es in self.iter_entity_sets()
            if self.qualify(es.entity_type) == qualified
        ]


class OperationKind(str, Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    LIST = "list"
    SEARCH = "search"
    COUNT = "count"
    NAVIGATE_GET = "navigate_get"
    NAVIGATE_ADD = "navigate_add"
    NAVIGATE_REMOVE = "navigate_remove"
    INVOKE = "invoke"


class OperationDescriptor(FrozenModel):
    name: str
    kind: OperationKind
    entity_set: Optional[str] = None  # entity set, singleton or import name
    entity_type: Optional[str] = None  # qualified target entity type name
    input_schema: Dict[str, Any]
    description: str
    examples: Tuple[Dict[str, Any], ...] = ()
    key_properties: Tuple[str, ...] = ()
    is_singleton: bool = False
    navigation_property: Optional[str] = None
    navigation_is_collection: bool = False
    related_entity_set: Optional[str] = None
    related_entity_type: Optional[str] = None
    default_page_size: Optional[int] = None
    max_page_size: Optional[int] = None
    default_select: Tuple[str, ...] = ()  # $select sent when the caller gives none
    operation: Optional[str] = None  # qualified function/action name for INVOKE
    is_action: bool = False
    http_method: Optional[str] = None

    @property
    def required_parameters(self) -> List[str]:
        return list(self.input_schema.get('required', []))

    @property
    def parameter_names(self) -> List[str]:
        return list(self.input_schema.get('properties', {}).keys())


class Catalog(FrozenModel):
    service_identity: str
    model: Model
    descriptors: Tuple[OperationDescriptor, ...] = ()
    synthesized_at: float = 0.0

    def get(self, name: str) -> Optional[OperationDescriptor]:
        return next((d for d in self.descriptors if d.name == name), None)

    @property
    def names(self) -> List[str]:
        return [d.name for d in self.descriptors]
