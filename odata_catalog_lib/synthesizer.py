"""
Operation catalog synthesis: walks a Model and emits OperationDescriptors.

Generation is split into generator classes, one per family of operations. The
synthesizer runs only the generators whose operation kinds the profile enables.
"""

import sys
import time
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Optional

from .errors import SynthesisError
from .models import (
    Catalog,
    EntityContainer,
    EntitySet,
    EntityType,
    Model,
    NavigationProperty,
    OperationDescriptor,
    OperationKind,
    Property,
)
from .naming import ToolNamer, matches_any
from .profile import SynthesisProfile
from .keys import format_literal
from .schema import is_binary, is_complex, is_sortable, property_schema

READ_KIND_SET = frozenset({OperationKind.READ})


def sample_value(prop: Property) -> Any:
    """Placeholder value used in usage examples."""
    element = prop.element_type
    if element in ('Edm.Int16', 'Edm.Int32', 'Edm.Int64', 'Edm.Byte', 'Edm.SByte'):
        value = 1
    elif element in ('Edm.Decimal', 'Edm.Double', 'Edm.Single'):
        value = 1.5
    elif element == 'Edm.Boolean':
        value = True
    elif element in ('Edm.DateTime', 'Edm.DateTimeOffset'):
        value = "2024-01-01T00:00:00Z"
    elif element == 'Edm.Date':
        value = "2024-01-01"
    elif element == 'Edm.Guid':
        value = "00000000-0000-0000-0000-000000000001"
    else:
        value = f"example {prop.name}"
    return [value] if prop.is_collection else value


class EntitySetContext:
    """Everything a generator needs to describe one entity set."""

    def __init__(self, model: Model, profile: SynthesisProfile, namer: ToolNamer,
                 container: EntityContainer, entity_set: EntitySet, entity_type: EntityType):
        self.model = model
        self.profile = profile
        self.namer = namer
        self.container = container
        self.entity_set = entity_set
        self.entity_type = entity_type
        self.key_properties = model.key_properties_of(entity_type)
        self.key_names = tuple(p.name for p in self.key_properties)

    @property
    def set_name(self) -> str:
        return self.entity_set.name

    @property
    def type_name(self) -> str:
        return self.entity_type.name

    def eligible_properties(self) -> List[Property]:
        """Non-key properties after exclusions, complex-type filtering and the per-tool cap."""
        excluded = self.profile.excluded_properties_for(self.entity_type.name, self.entity_type.full_name)
        props = [
            p for p in self.model.properties_of(self.entity_type)
            if p.name not in excluded and p.name not in self.key_names
        ]
        if not self.profile.include_complex_types:
            props = [p for p in props if not is_complex(p, self.model)]
        if self.profile.max_properties_per_tool:
            props = props[:self.profile.max_properties_per_tool]
        return props

    def key_schema(self) -> Dict[str, Dict[str, Any]]:
        return {p.name: self.property_schema(p) for p in self.key_properties}

    def property_schema(self, prop: Property) -> Dict[str, Any]:
        return property_schema(prop, self.model)

    def entity_description(self) -> Optional[str]:
        return self.entity_set.description or self.entity_type.description

    def describe(self, summary: str, details: Optional[str] = None, example: Optional[str] = None) -> str:
        description = summary
        if self.profile.detailed_descriptions and details:
            description += f"\n\n{details}"
        entity_desc = self.entity_description()
        if entity_desc:
            description += f"\n\nEntity Description: {entity_desc}"
        if self.profile.include_examples and example:
            description += f"\n\nExample usage: {example}"
        return description

    def examples(self, *examples: Dict[str, Any]) -> tuple:
        if not self.profile.include_examples:
            return ()
        return tuple(e for e in examples if e is not None)


class OperationGenerator:
    """Base class for a family of generated operations."""

    kinds: FrozenSet[OperationKind] = frozenset()

    def generate_for_entity_set(self, ctx: EntitySetContext) -> List[OperationDescriptor]:
        return []

    def generate_for_container(self, model: Model, profile: SynthesisProfile, namer: ToolNamer,
                               container: EntityContainer) -> List[OperationDescriptor]:
        return []


class CrudGenerator(OperationGenerator):
    """Create, Read, Update and Delete against entity sets."""

    kinds = frozenset({OperationKind.CREATE, OperationKind.READ, OperationKind.UPDATE, OperationKind.DELETE})

    def generate_for_entity_set(self, ctx: EntitySetContext) -> List[OperationDescriptor]:
        descriptors = []
        profile = ctx.profile
        if profile.enables(OperationKind.CREATE):
            descriptors.append(self._create(ctx))
        if not ctx.key_properties:
            if profile.operations & {OperationKind.READ, OperationKind.UPDATE, OperationKind.DELETE}:
                print(f"WARNING: Entity type '{ctx.entity_type.full_name}' has no key; "
                      f"skipping keyed operations for '{ctx.set_name}'", file=sys.stderr)
            return descriptors
        if profile.enables(OperationKind.READ):
            descriptors.append(self._read(ctx))
        if profile.enables(OperationKind.UPDATE):
            descriptors.append(self._update(ctx))
        if profile.enables(OperationKind.DELETE):
            descriptors.append(self._delete(ctx))
        return descriptors

    def _descriptor(self, ctx: EntitySetContext, kind: OperationKind, name: str, schema: Dict[str, Any],
                    description: str, examples: tuple = ()) -> OperationDescriptor:
        return OperationDescriptor(
            name=name,
            kind=kind,
            entity_set=ctx.set_name,
            entity_type=ctx.entity_type.full_name,
            input_schema=schema,
            description=description,
            examples=examples,
            key_properties=ctx.key_names,
        )

    def _key_only_schema(self, ctx: EntitySetContext) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": ctx.key_schema(),
            "required": list(ctx.key_names),
            "additionalProperties": False,
        }

    def _key_example(self, ctx: EntitySetContext) -> Dict[str, Any]:
        return {p.name: sample_value(p) for p in ctx.key_properties}

    def _create(self, ctx: EntitySetContext) -> OperationDescriptor:
        props = ctx.eligible_properties()
        schema = {
            "type": "object",
            "properties": {p.name: ctx.property_schema(p) for p in props},
            "additionalProperties": ctx.entity_type.open_type,
        }
        required = [p.name for p in props if not p.nullable and not p.has_default]
        if required:
            schema["required"] = required
        description = ctx.describe(
            f"Creates a new {ctx.type_name} entity in the {ctx.set_name} collection.",
            details=(f"Provide values for the properties of the new {ctx.type_name}. "
                     + (f"Required properties: {', '.join(required)}. " if required else "")
                     + "Key properties are assigned by the service."),
            example=f"create a {ctx.type_name} by providing its property values.",
        )
        example = {p.name: sample_value(p) for p in props if p.name in required} or \
            {p.name: sample_value(p) for p in props[:2]}
        return self._descriptor(ctx, OperationKind.CREATE, ctx.namer.make("Create", ctx.set_name),
                                schema, description, ctx.examples(example))

    def _read(self, ctx: EntitySetContext) -> OperationDescriptor:
        description = ctx.describe(
            f"Retrieves a specific {ctx.type_name} entity from the {ctx.set_name} collection by its key.",
            details=f"Identify the entity with its key values ({', '.join(ctx.key_names)}).",
            example=f"get a {ctx.type_name} by providing its key values.",
        )
        return self._descriptor(ctx, OperationKind.READ, ctx.namer.make("Get", ctx.set_name),
                                self._key_only_schema(ctx), description, ctx.examples(self._key_example(ctx)))

    def _update(self, ctx: EntitySetContext) -> OperationDescriptor:
        props = ctx.eligible_properties()
        properties = ctx.key_schema()
        properties.update({p.name: ctx.property_schema(p) for p in props})
        schema = {
            "type": "object",
            "properties": properties,
            "required": list(ctx.key_names),
            "additionalProperties": ctx.entity_type.open_type,
        }
        description = ctx.describe(
            f"Updates an existing {ctx.type_name} entity in the {ctx.set_name} collection.",
            details=(f"Identify the entity with its key values ({', '.join(ctx.key_names)}) and provide only "
                     "the properties to change; omitted properties are left untouched."),
            example=f"update a {ctx.type_name} by providing its key values and the changed properties.",
        )
        example = self._key_example(ctx)
        if props:
            example[props[0].name] = sample_value(props[0])
        return self._descriptor(ctx, OperationKind.UPDATE, ctx.namer.make("Update", ctx.set_name),
                                schema, description, ctx.examples(example))

    def _delete(self, ctx: EntitySetContext) -> OperationDescriptor:
        description = ctx.describe(
            f"Deletes a specific {ctx.type_name} entity from the {ctx.set_name} collection.",
            details=f"Identify the entity with its key values ({', '.join(ctx.key_names)}). This cannot be undone.",
            example=f"delete a {ctx.type_name} by providing its key values.",
        )
        return self._descriptor(ctx, OperationKind.DELETE, ctx.namer.make("Delete", ctx.set_name),
                                self._key_only_schema(ctx), description, ctx.examples(self._key_example(ctx)))


class QueryGenerator(OperationGenerator):
    """List, Search and Count against entity sets."""

    kinds = frozenset({OperationKind.LIST, OperationKind.SEARCH, OperationKind.COUNT})

    def generate_for_entity_set(self, ctx: EntitySetContext) -> List[OperationDescriptor]:
        descriptors = []
        if ctx.profile.enables(OperationKind.LIST):
            descriptors.append(self._list(ctx))
        if ctx.profile.enables(OperationKind.SEARCH):
            descriptors.append(self._search(ctx))
        if ctx.profile.enables(OperationKind.COUNT):
            descriptors.append(self._count(ctx))
        return descriptors

    def _sortable_properties(self, ctx: EntitySetContext) -> List[Property]:
        excluded = ctx.profile.excluded_properties_for(ctx.entity_type.name, ctx.entity_type.full_name)
        return [p for p in ctx.model.properties_of(ctx.entity_type)
                if is_sortable(p) and p.name not in excluded]

    def _sortable(self, ctx: EntitySetContext) -> List[str]:
        return [p.name for p in self._sortable_properties(ctx)]

    def _default_select(self, ctx: EntitySetContext) -> tuple:
        """Non-binary properties, or nothing when there is no binary property to leave out."""
        if not ctx.profile.exclude_binary_fields:
            return ()
        props = ctx.model.properties_of(ctx.entity_type)
        selected = tuple(p.name for p in props if not is_binary(p))
        if len(selected) == len(props):
            return ()
        return selected

    def _filter_schema(self, ctx: EntitySetContext) -> Dict[str, Any]:
        schema = {
            "type": "string",
            "description": f"OData $filter expression to filter {ctx.type_name} entities.",
        }
        sortable = self._sortable_properties(ctx)
        if sortable:
            first = sortable[0]
            literal = format_literal(sample_value(first), first.type, ctx.model.version)
            schema["examples"] = [f"{first.name} eq {literal}"]
        return schema

    def _orderby_schema(self, ctx: EntitySetContext) -> Dict[str, Any]:
        sortable = self._sortable(ctx)
        description = f"OData $orderby expression to sort {ctx.type_name} entities."
        if sortable:
            description += f" Sortable properties: {', '.join(sortable)}."
        schema = {"type": "string", "description": description}
        if sortable:
            schema["examples"] = [sortable[0], f"{sortable[0]} desc"]
        return schema

    def _top_schema(self, default: int, maximum: int) -> Dict[str, Any]:
        return {
            "type": "integer",
            "description": f"Maximum number of entities to return (1-{maximum}).",
            "minimum": 1,
            "maximum": maximum,
            "default": default,
        }

    def _list(self, ctx: EntitySetContext) -> OperationDescriptor:
        profile = ctx.profile
        properties = {}
        if profile.support_filter:
            properties["filter"] = self._filter_schema(ctx)
        if profile.support_orderby:
            properties["orderby"] = self._orderby_schema(ctx)
        if profile.support_select:
            names = [p.name for p in ctx.model.properties_of(ctx.entity_type)]
            properties["select"] = {
                "type": "string",
                "description": f"Comma-separated list of properties to return. Available: {', '.join(names)}.",
            }
        navigation = ctx.model.navigation_properties_of(ctx.entity_type)
        if profile.support_expand and navigation:
            properties["expand"] = {
                "type": "string",
                "description": ("Comma-separated navigation properties to include inline. Available: "
                                f"{', '.join(n.name for n in navigation)}."),
            }
        if profile.support_top:
            properties["top"] = self._top_schema(profile.default_page_size, profile.max_page_size)
        if profile.support_skip:
            properties["skip"] = {
                "type": "integer",
                "description": "Number of entities to skip for paging.",
                "minimum": 0,
            }
        if profile.support_count:
            properties["count"] = {
                "type": "boolean",
                "description": "Include the total number of matching entities in the result.",
            }

        options = []
        if profile.support_filter:
            options.append("filtering")
        if profile.support_orderby:
            options.append("sorting")
        if profile.support_top or profile.support_skip:
            options.append("paging")
        description = ctx.describe(
            f"Lists {ctx.type_name} entities from the {ctx.set_name} collection with optional filtering, "
            f"sorting, and paging.",
            details=(f"Supports {', '.join(options)}. " if options else "")
            + f"Results are limited to {profile.default_page_size} entities unless 'top' is given.",
            example=f"list the first 10 {ctx.set_name} by passing top=10.",
        )
        default_select = self._default_select(ctx)
        if default_select:
            description += (" Binary and stream properties are left out unless requested with 'select'."
                            if profile.support_select else " Binary and stream properties are left out.")
        examples = ctx.examples({"top": 10}) if profile.support_top else ()
        return OperationDescriptor(
            name=ctx.namer.make("List", ctx.set_name),
            kind=OperationKind.LIST,
            entity_set=ctx.set_name,
            entity_type=ctx.entity_type.full_name,
            input_schema={"type": "object", "properties": properties, "additionalProperties": False},
            description=description,
            examples=examples,
            key_properties=ctx.key_names,
            default_page_size=profile.default_page_size,
            max_page_size=profile.max_page_size,
            default_select=default_select,
        )

    def _search(self, ctx: EntitySetContext) -> OperationDescriptor:
        profile = ctx.profile
        properties = {
            "search": {
                "type": "string",
                "description": f"Free-text search expression applied to {ctx.type_name} entities.",
            },
        }
        if profile.support_orderby:
            properties["orderby"] = self._orderby_schema(ctx)
        if profile.support_top:
            properties["top"] = self._top_schema(profile.default_page_size, profile.max_page_size)
        description = ctx.describe(
            f"Searches {ctx.type_name} entities in the {ctx.set_name} collection using free-text search.",
            details="The search expression is passed to the service's $search option unchanged.",
            example=f"search {ctx.set_name} by passing search='term'.",
        )
        return OperationDescriptor(
            name=ctx.namer.make("Search", ctx.set_name),
            kind=OperationKind.SEARCH,
            entity_set=ctx.set_name,
            entity_type=ctx.entity_type.full_name,
            input_schema={
                "type": "object",
                "properties": properties,
                "required": ["search"],
                "additionalProperties": False,
            },
            description=description,
            examples=ctx.examples({"search": "term"}),
            key_properties=ctx.key_names,
            default_page_size=profile.default_page_size,
            max_page_size=profile.max_page_size,
        )

    def _count(self, ctx: EntitySetContext) -> OperationDescriptor:
        properties = {}
        if ctx.profile.support_filter:
            properties["filter"] = self._filter_schema(ctx)
        description = ctx.describe(
            f"Counts {ctx.type_name} entities in the {ctx.set_name} collection, optionally filtered.",
            example=f"count {ctx.set_name} matching a filter.",
        )
        return OperationDescriptor(
            name=ctx.namer.make("Count", ctx.set_name),
            kind=OperationKind.COUNT,
            entity_set=ctx.set_name,
            entity_type=ctx.entity_type.full_name,
            input_schema={"type": "object", "properties": properties, "additionalProperties": False},
            description=description,
            key_properties=ctx.key_names,
        )


class NavigationGenerator(OperationGenerator):
    """Related-entity lookups and relationship edits along navigation properties."""

    kinds = frozenset({OperationKind.NAVIGATE_GET, OperationKind.NAVIGATE_ADD, OperationKind.NAVIGATE_REMOVE})

    def __init__(self, verbose: bool = False):
        self.verbose = verbose

    def _log_verbose(self, message: str):
        if self.verbose:
            timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
            print(f"[{timestamp} Synthesizer VERBOSE] {message}", file=sys.stderr)

    def _related_entity_set(self, ctx: EntitySetContext, nav: NavigationProperty) -> Optional[str]:
        if nav.contains_target:
            return None
        for binding in ctx.entity_set.navigation_bindings:
            if binding.path == nav.name or binding.path.endswith(f"/{nav.name}"):
                # Target may be container-qualified: "Container/Set"
                return binding.target.rpartition('/')[2]
        candidates = ctx.model.entity_sets_for_type(nav.target_type_name)
        if len(candidates) == 1:
            return candidates[0].name
        return None

    def _related_key_schema(self, ctx: EntitySetContext, target: EntityType) -> Dict[str, Any]:
        keys = ctx.model.key_properties_of(target)
        if len(keys) == 1:
            schema = property_schema(keys[0], ctx.model)
            schema["description"] = f"Key value ({keys[0].name}) of the related {target.name} entity."
            return schema
        return {
            "type": "object",
            "description": f"Key values of the related {target.name} entity.",
            "properties": {k.name: property_schema(k, ctx.model) for k in keys},
            "required": [k.name for k in keys],
        }

    def generate_for_entity_set(self, ctx: EntitySetContext) -> List[OperationDescriptor]:
        profile = ctx.profile
        descriptors = []
        navigation = ctx.model.navigation_properties_of(ctx.entity_type)
        if not navigation:
            return descriptors
        if not ctx.key_properties:
            self._log_verbose(f"Skipping navigation operations for keyless entity set '{ctx.set_name}'")
            return descriptors

        excluded = profile.excluded_navigation_for(ctx.entity_type.name, ctx.entity_type.full_name)
        for nav in navigation:
            if nav.name in excluded:
                continue
            if nav.is_collection and not profile.include_collection_navigations:
                continue
            if not nav.is_collection and not profile.include_single_navigations:
                continue

            target = ctx.model.get_entity_type(nav.target_type_name)
            if target is None:
                raise SynthesisError(
                    f"Navigation property '{ctx.type_name}.{nav.name}' targets undefined entity type "
                    f"'{nav.target_type_name}'",
                    entity=ctx.set_name,
                )

            if profile.enables(OperationKind.NAVIGATE_GET):
                descriptors.append(self._get_related(ctx, nav, target))

            editable = nav.is_collection or not nav.is_required
            wants_edit = profile.operations & {OperationKind.NAVIGATE_ADD, OperationKind.NAVIGATE_REMOVE}
            if not (editable and wants_edit):
                continue
            related_set = self._related_entity_set(ctx, nav)
            if related_set is None:
                self._log_verbose(f"No entity set found for '{ctx.set_name}/{nav.name}'; "
                                  "relationship edits not generated")
                continue
            if not ctx.model.key_properties_of(target):
                self._log_verbose(f"Target type '{target.full_name}' has no key; relationship edits not generated")
                continue
            if profile.enables(OperationKind.NAVIGATE_ADD):
                descriptors.append(self._add_relationship(ctx, nav, target, related_set))
            if profile.enables(OperationKind.NAVIGATE_REMOVE):
                descriptors.append(self._remove_relationship(ctx, nav, target, related_set))
        return descriptors

    def _base(self, ctx: EntitySetContext, nav: NavigationProperty, target: EntityType,
              related_set: Optional[str]) -> Dict[str, Any]:
        return dict(
            entity_set=ctx.set_name,
            entity_type=ctx.entity_type.full_name,
            key_properties=ctx.key_names,
            navigation_property=nav.name,
            navigation_is_collection=nav.is_collection,
            related_entity_set=related_set,
            related_entity_type=target.full_name,
        )

    def _get_related(self, ctx: EntitySetContext, nav: NavigationProperty, target: EntityType) -> OperationDescriptor:
        profile = ctx.profile
        properties = ctx.key_schema()
        if nav.is_collection:
            if profile.support_filter:
                properties["filter"] = {
                    "type": "string",
                    "description": f"OData filter expression to filter related {target.name} entities.",
                }
            if profile.support_orderby:
                properties["orderby"] = {
                    "type": "string",
                    "description": f"OData orderby expression to sort related {target.name} entities.",
                }
            if profile.support_top:
                properties["top"] = {
                    "type": "integer",
                    "description": f"Maximum number of related entities to return (1-{profile.navigation_max_page_size}).",
                    "minimum": 1,
                    "maximum": profile.navigation_max_page_size,
                    "default": profile.navigation_default_page_size,
                }
        related = f"{target.name} entities" if nav.is_collection else f"{target.name} entity"
        description = ctx.describe(
            f"Gets {related} related to a {ctx.type_name} via the {nav.name} navigation property.",
            details=(f"You must provide the key values ({', '.join(ctx.key_names)}) to identify the source "
                     f"{ctx.type_name} entity."),
            example=f"Get the {nav.name} for a specific {ctx.type_name} by providing its key values.",
        )
        return OperationDescriptor(
            name=ctx.namer.make("Get", ctx.set_name, nav.name),
            kind=OperationKind.NAVIGATE_GET,
            input_schema={
                "type": "object",
                "properties": properties,
                "required": list(ctx.key_names),
                "additionalProperties": False,
            },
            description=description,
            default_page_size=profile.navigation_default_page_size if nav.is_collection else None,
            max_page_size=profile.navigation_max_page_size if nav.is_collection else None,
            **self._base(ctx, nav, target, self._related_entity_set(ctx, nav)),
        )

    def _add_relationship(self, ctx: EntitySetContext, nav: NavigationProperty, target: EntityType,
                          related_set: str) -> OperationDescriptor:
        properties = ctx.key_schema()
        properties["relatedEntityKey"] = self._related_key_schema(ctx, target)
        verb = "Adds a relationship" if nav.is_collection else "Sets the relationship"
        description = ctx.describe(
            f"{verb} between a {ctx.type_name} and a {target.name} via the {nav.name} navigation property.",
            details=(f"You must provide the source entity key values ({', '.join(ctx.key_names)}) "
                     f"and the key of the {target.name} in {related_set} to establish the relationship."),
            example=f"{verb.lower()} by providing both entity keys.",
        )
        return OperationDescriptor(
            name=ctx.namer.make("AddTo" if nav.is_collection else "Set", ctx.set_name, nav.name),
            kind=OperationKind.NAVIGATE_ADD,
            input_schema={
                "type": "object",
                "properties": properties,
                "required": list(ctx.key_names) + ["relatedEntityKey"],
                "additionalProperties": False,
            },
            description=description,
            **self._base(ctx, nav, target, related_set),
        )

    def _remove_relationship(self, ctx: EntitySetContext, nav: NavigationProperty, target: EntityType,
                             related_set: str) -> OperationDescriptor:
        properties = ctx.key_schema()
        required = list(ctx.key_names)
        if nav.is_collection:
            properties["relatedEntityKey"] = self._related_key_schema(ctx, target)
            required.append("relatedEntityKey")
        verb = "Removes a relationship" if nav.is_collection else "Unsets the relationship"
        description = ctx.describe(
            f"{verb} between a {ctx.type_name} and a {target.name} via the {nav.name} navigation property.",
            details=(f"You must provide the source entity key values ({', '.join(ctx.key_names)})"
                     + (" and the key of the related entity to remove." if nav.is_collection
                        else " to identify which entity's navigation property to clear.")),
            example=f"{verb.lower()} by providing the entity key values.",
        )
        return OperationDescriptor(
            name=ctx.namer.make("RemoveFrom" if nav.is_collection else "Unset", ctx.set_name, nav.name),
            kind=OperationKind.NAVIGATE_REMOVE,
            input_schema={
                "type": "object",
                "properties": properties,
                "required": required,
                "additionalProperties": False,
            },
            description=description,
            **self._base(ctx, nav, target, related_set),
        )


class SingletonGenerator(OperationGenerator):
    """Reads of container singletons."""

    kinds = READ_KIND_SET

    def generate_for_container(self, model: Model, profile: SynthesisProfile, namer: ToolNamer,
                               container: EntityContainer) -> List[OperationDescriptor]:
        if not profile.include_singletons:
            return []
        descriptors = []
        for singleton in container.singletons.values():
            if not _selected(profile, singleton.name):
                continue
            entity_type = model.get_entity_type(singleton.entity_type)
            if entity_type is None:
                raise SynthesisError(
                    f"Singleton '{singleton.name}' references undefined entity type '{singleton.entity_type}'",
                    entity=singleton.name,
                )
            description = f"Retrieves the {singleton.name} singleton ({entity_type.name})."
            if singleton.description or entity_type.description:
                description += f"\n\nEntity Description: {singleton.description or entity_type.description}"
            descriptors.append(OperationDescriptor(
                name=namer.make("Get", singleton.name),
                kind=OperationKind.READ,
                entity_set=singleton.name,
                entity_type=entity_type.full_name,
                input_schema={"type": "object", "properties": {}, "additionalProperties": False},
                description=description,
                is_singleton=True,
            ))
        return descriptors


class ImportGenerator(OperationGenerator):
    """Invocation of function and action imports."""

    kinds = frozenset({OperationKind.INVOKE})

    def _parameter_schema(self, model: Model, parameters) -> Dict[str, Any]:
        schema = {
            "type": "object",
            "properties": {p.name: property_schema(p, model) for p in parameters},
            "additionalProperties": False,
        }
        required = [p.name for p in parameters if not p.nullable]
        if required:
            schema["required"] = required
        return schema

    def generate_for_container(self, model: Model, profile: SynthesisProfile, namer: ToolNamer,
                               container: EntityContainer) -> List[OperationDescriptor]:
        if not profile.include_function_imports:
            return []
        descriptors = []
        for fi in container.function_imports.values():
            if fi.function:
                function = model.get_function(fi.function)
                if function is None or function.is_action:
                    raise SynthesisError(
                        f"Function import '{fi.name}' references undefined function '{fi.function}'",
                        entity=fi.name,
                    )
                parameters = function.parameters[1:] if function.is_bound else function.parameters
                operation, return_type = function.full_name, function.return_type
                description = fi.description or function.description
            else:
                parameters = fi.parameters
                operation, return_type = fi.name, fi.return_type
                description = fi.description
            summary = f"Invokes the {fi.name} function."
            if return_type:
                summary += f" Returns {return_type}."
            if description:
                summary += f"\n\nFunction Description: {description}"
            descriptors.append(OperationDescriptor(
                name=namer.make("Invoke", fi.name),
                kind=OperationKind.INVOKE,
                entity_set=fi.name,
                input_schema=self._parameter_schema(model, parameters),
                description=summary,
                operation=operation,
                is_action=False,
                http_method=fi.http_method if not fi.function else "GET",
            ))
        for ai in container.action_imports.values():
            action = model.get_function(ai.action)
            if action is None or not action.is_action:
                raise SynthesisError(
                    f"Action import '{ai.name}' references undefined action '{ai.action}'",
                    entity=ai.name,
                )
            parameters = action.parameters[1:] if action.is_bound else action.parameters
            summary = f"Invokes the {ai.name} action."
            if action.return_type:
                summary += f" Returns {action.return_type}."
            if ai.description or action.description:
                summary += f"\n\nFunction Description: {ai.description or action.description}"
            descriptors.append(OperationDescriptor(
                name=namer.make("Invoke", ai.name),
                kind=OperationKind.INVOKE,
                entity_set=ai.name,
                input_schema=self._parameter_schema(model, parameters),
                description=summary,
                operation=action.full_name,
                is_action=True,
                http_method="POST",
            ))
        return descriptors


def _selected(profile: SynthesisProfile, name: str) -> bool:
    if profile.include_entity_sets and not matches_any(name, profile.include_entity_sets):
        return False
    return not matches_any(name, profile.exclude_entity_sets)


class CatalogSynthesizer:
    """Builds an operation catalog from a Model according to a SynthesisProfile."""

    def __init__(self, profile: Optional[SynthesisProfile] = None, verbose: bool = False):
        self.profile = (profile or SynthesisProfile()).validate_profile()
        self.verbose = verbose
        self.generators: List[OperationGenerator] = [
            generator for generator in (
                CrudGenerator(),
                QueryGenerator(),
                NavigationGenerator(verbose=verbose),
                SingletonGenerator(),
                ImportGenerator(),
            )
            if generator.kinds & self.profile.operations
        ]

    def _log_verbose(self, message: str):
        """Prints message to stderr only if verbose mode is enabled."""
        if self.verbose:
            timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
            print(f"[{timestamp} Synthesizer VERBOSE] {message}", file=sys.stderr)

    def synthesize(self, model: Model, service_identity: str = "") -> Catalog:
        """Generate the catalog. Raises SynthesisError; never returns a partial catalog."""
        profile = self.profile
        namer = ToolNamer(
            convention=profile.naming_convention,
            prefix=profile.tool_prefix,
            suffix=profile.tool_suffix,
            max_length=profile.max_name_length,
        )
        descriptors: List[OperationDescriptor] = []

        for container in model.containers.values():
            for entity_set in container.entity_sets.values():
                if not _selected(profile, entity_set.name):
                    self._log_verbose(f"Skipping entity set '{entity_set.name}' (not selected)")
                    continue
                entity_type = model.get_entity_type(entity_set.entity_type)
                if entity_type is None:
                    raise SynthesisError(
                        f"Entity set '{entity_set.name}' references undefined entity type '{entity_set.entity_type}'",
                        entity=entity_set.name,
                    )
                ctx = EntitySetContext(model, profile, namer, container, entity_set, entity_type)
                before = len(descriptors)
                for generator in self.generators:
                    descriptors.extend(generator.generate_for_entity_set(ctx))
                self._log_verbose(f"Entity set '{entity_set.name}': {len(descriptors) - before} operations")

            for generator in self.generators:
                descriptors.extend(generator.generate_for_container(model, profile, namer, container))

        if profile.max_tool_count is not None and len(descriptors) > profile.max_tool_count:
            print(f"WARNING: {len(descriptors)} operations generated, keeping the first "
                  f"{profile.max_tool_count} (max_tool_count)", file=sys.stderr)
            descriptors = descriptors[:profile.max_tool_count]

        self._log_verbose(f"Synthesized {len(descriptors)} operations for {service_identity or 'model'}")
        return Catalog(
            service_identity=service_identity,
            model=model,
            descriptors=tuple(descriptors),
            synthesized_at=time.time(),
        )
