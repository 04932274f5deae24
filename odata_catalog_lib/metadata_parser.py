"""
OData metadata parser turning a CSDL document into an immutable type model.

Handles the OData v4 envelope as well as the v1-v3 (EDMX 1.0) envelope used by
SAP Gateway and WCF Data Services.
"""

import re
import sys
from datetime import datetime
from typing import Dict, List, Optional, Tuple, Union
import requests
from lxml import etree

from .constants import (
    EDM_NAMESPACES,
    EDMX_NAMESPACES,
    METADATA_NAMESPACE_V2,
    SAP_NAMESPACE,
    UNBOUNDED_MAX_LENGTH,
    VARIABLE_SCALE,
)
from .errors import ExecutionError, ExecutionErrorKind, ParseError, ParseErrorKind
from .models import (
    ActionImport,
    ComplexType,
    EntityContainer,
    EntitySet,
    EntityType,
    Function,
    FunctionImport,
    Model,
    NavigationProperty,
    NavigationPropertyBinding,
    Property,
    ReferentialConstraint,
    Singleton,
)
from .session import Auth, build_session

XML_DECLARATION = re.compile(r'^\ufeff?\s*<\?xml[^>]*\?>')


def _local_name(element) -> str:
    return etree.QName(element).localname


def _parse_bool(element, attribute: str, default: bool) -> bool:
    value = element.get(attribute)
    if value is None:
        return default
    return value.strip().lower() == 'true'


class MetadataParser:
    """Parses OData CSDL metadata documents."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self._xml_parser = etree.XMLParser(
            resolve_entities=False,
            no_network=True,
            remove_comments=True,
            huge_tree=False,
        )

    def _log_verbose(self, message: str):
        """Prints message to stderr only if verbose mode is enabled."""
        if self.verbose:
            timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
            print(f"[{timestamp} Parser VERBOSE] {message}", file=sys.stderr)

    def _get_description(self, element) -> Optional[str]:
        """Extract a description from annotations or SAP labels."""
        label = element.get(f'{{{SAP_NAMESPACE}}}label')
        if label:
            return label
        for child in element:
            if not isinstance(child.tag, str):
                continue
            name = _local_name(child)
            if name == 'Annotation':
                term = child.get('Term', '')
                if term.endswith('.Description') or term.endswith('.LongDescription'):
                    if child.get('String'):
                        return child.get('String')
                    text = child.xpath("./*[local-name()='String']/text()")
                    if text:
                        return text[0]
            elif name == 'Documentation':
                summary = child.xpath("./*[local-name()='Summary' or local-name()='LongDescription']/text()")
                if summary:
                    return summary[0].strip()
        return None

    def _required(self, element, attribute: str, context: Optional[str] = None) -> str:
        value = element.get(attribute)
        if value is None or not value.strip():
            raise ParseError.missing_attribute(_local_name(element), attribute, context)
        return value

    def _parse_facet(self, element, attribute: str, sentinels=frozenset()) -> Optional[int]:
        raw = element.get(attribute)
        if raw is None or raw.strip().lower() in sentinels:
            return None
        try:
            return int(raw)
        except ValueError:
            raise ParseError(
                f"Attribute '{attribute}' on '{element.get('Name', _local_name(element))}' has invalid value '{raw}'",
                kind=ParseErrorKind.INVALID_VALUE,
                element=_local_name(element),
                attribute=attribute,
            ) from None

    def _load_xml(self, document: Union[bytes, str]):
        if isinstance(document, str):
            # Already decoded, so the declared encoding no longer applies
            document = XML_DECLARATION.sub('', document, count=1)
        try:
            return etree.fromstring(document, parser=self._xml_parser)
        except etree.XMLSyntaxError as xml_error:
            raise ParseError(f"Metadata document is not well-formed XML: {xml_error}",
                             kind=ParseErrorKind.MALFORMED) from xml_error

    def parse(self, document: Union[bytes, str]) -> Model:
        """Parse a metadata document into a Model. Raises ParseError."""
        root = self._load_xml(document)

        root_qname = etree.QName(root)
        family = EDMX_NAMESPACES.get(root_qname.namespace)
        if root_qname.localname != 'Edmx' or family is None:
            raise ParseError(f"Root element must be an Edmx envelope, found '{root.tag}'",
                             kind=ParseErrorKind.STRUCTURE, element=root_qname.localname)

        data_services = root.find(f'{{{root_qname.namespace}}}DataServices')
        if data_services is None:
            raise ParseError("Edmx envelope has no DataServices element",
                             kind=ParseErrorKind.STRUCTURE, element='Edmx')

        if family == 'v4':
            version = root.get('Version', '4.0')
        else:
            version = data_services.get(f'{{{METADATA_NAMESPACE_V2}}}DataServiceVersion', '2.0')

        schemas = [
            child for child in data_services
            if isinstance(child.tag, str)
            and _local_name(child) == 'Schema'
            and etree.QName(child).namespace in EDM_NAMESPACES
        ]
        if not schemas:
            raise ParseError("DataServices contains no Schema element",
                             kind=ParseErrorKind.STRUCTURE, element='DataServices')

        self._log_verbose(f"Parsing {len(schemas)} schema(s), protocol version {version}")

        namespaces: List[str] = []
        aliases: Dict[str, str] = {}
        for schema in schemas:
            namespace = self._required(schema, 'Namespace')
            namespaces.append(namespace)
            alias = schema.get('Alias')
            if alias:
                aliases[alias] = namespace

        def qualify(name: str) -> str:
            prefix, _, local = name.rpartition('.')
            return f"{aliases[prefix]}.{local}" if prefix in aliases else name

        associations = {}
        for schema in schemas:
            associations.update(self._parse_associations(schema, qualify))

        entity_types: Dict[str, EntityType] = {}
        complex_types: Dict[str, ComplexType] = {}
        containers: Dict[str, EntityContainer] = {}
        functions: Dict[str, Function] = {}
        service_description = None

        for schema in schemas:
            namespace = schema.get('Namespace')
            ns = {'edm': etree.QName(schema).namespace}
            if service_description is None:
                service_description = self._get_description(schema)

            for et_elem in schema.xpath('./edm:EntityType', namespaces=ns):
                entity_type = self._parse_entity_type(et_elem, namespace, ns, associations, qualify)
                entity_types[entity_type.full_name] = entity_type

            for ct_elem in schema.xpath('./edm:ComplexType', namespaces=ns):
                complex_type = self._parse_complex_type(ct_elem, namespace, ns, associations, qualify)
                complex_types[complex_type.full_name] = complex_type

            for fn_elem in schema.xpath('./edm:Function | ./edm:Action', namespaces=ns):
                function = self._parse_function(fn_elem, namespace, ns)
                existing = functions.get(function.full_name)
                # Overloads share a name; imports refer to the unbound one
                if existing is None or (existing.is_bound and not function.is_bound):
                    functions[function.full_name] = function

            for ec_elem in schema.xpath('./edm:EntityContainer', namespaces=ns):
                container = self._parse_container(ec_elem, namespace, ns, family)
                containers[container.full_name] = container

        model = Model(
            version=version,
            entity_types=entity_types,
            complex_types=complex_types,
            containers=containers,
            functions=functions,
            namespaces=tuple(namespaces),
            aliases=aliases,
            service_description=service_description,
        )
        self._validate(model)
        self._log_verbose(
            f"Parsing complete. Found {len(entity_types)} entity types, {len(complex_types)} complex types, "
            f"{sum(len(c.entity_sets) for c in containers.values())} entity sets."
        )
        return model

    def _validate(self, model: Model):
        """Cross-type checks that need the whole model."""
        for entity_type in model.entity_types.values():
            if entity_type.base_type and model.get_entity_type(entity_type.base_type) is None:
                raise ParseError(
                    f"Base type '{entity_type.base_type}' of entity type '{entity_type.full_name}' is not defined",
                    kind=ParseErrorKind.STRUCTURE, element='EntityType', attribute='BaseType')
            known = {p.name for p in model.properties_of(entity_type)}
            missing = [name for name in entity_type.key_properties if name not in known]
            if missing:
                raise ParseError(
                    f"Key of entity type '{entity_type.full_name}' references unknown properties: {', '.join(missing)}",
                    kind=ParseErrorKind.STRUCTURE, element='PropertyRef', attribute='Name')
        for complex_type in model.complex_types.values():
            if complex_type.base_type and model.get_complex_type(complex_type.base_type) is None:
                raise ParseError(
                    f"Base type '{complex_type.base_type}' of complex type '{complex_type.full_name}' is not defined",
                    kind=ParseErrorKind.STRUCTURE, element='ComplexType', attribute='BaseType')

    def _parse_associations(self, schema, qualify) -> Dict[str, Dict[str, Tuple[str, str]]]:
        """v2 associations: qualified name -> role -> (type, multiplicity)."""
        associations = {}
        namespace = schema.get('Namespace')
        ns = {'edm': etree.QName(schema).namespace}
        for assoc_elem in schema.xpath('./edm:Association', namespaces=ns):
            name = self._required(assoc_elem, 'Name')
            ends = {}
            for end_elem in assoc_elem.xpath('./edm:End', namespaces=ns):
                role = self._required(end_elem, 'Role', context=name)
                ends[role] = (
                    qualify(self._required(end_elem, 'Type', context=name)),
                    self._required(end_elem, 'Multiplicity', context=name),
                )
            associations[f"{namespace}.{name}"] = ends
        return associations

    def _parse_property(self, prop_elem, key_names=(), owner: Optional[str] = None) -> Property:
        name = self._required(prop_elem, 'Name', context=owner)
        prop_type = self._required(prop_elem, 'Type', context=f"{owner}.{name}" if owner else name)
        return Property(
            name=name,
            type=prop_type,
            nullable=_parse_bool(prop_elem, 'Nullable', True),
            max_length=self._parse_facet(prop_elem, 'MaxLength', UNBOUNDED_MAX_LENGTH),
            precision=self._parse_facet(prop_elem, 'Precision'),
            scale=self._parse_facet(prop_elem, 'Scale', VARIABLE_SCALE),
            default_value=prop_elem.get('DefaultValue'),
            unicode=_parse_bool(prop_elem, 'Unicode', True) if prop_elem.get('Unicode') is not None else None,
            srid=prop_elem.get('SRID'),
            is_key=name in key_names,
            description=self._get_description(prop_elem),
        )

    def _parse_navigation_property(self, nav_elem, ns, associations, qualify, owner: str) -> NavigationProperty:
        name = self._required(nav_elem, 'Name', context=owner)
        nav_type = nav_elem.get('Type')
        nullable = _parse_bool(nav_elem, 'Nullable', True)

        if nav_type is None and nav_elem.get('Relationship'):
            # v2: multiplicity lives on the association end
            relationship = qualify(nav_elem.get('Relationship'))
            to_role = self._required(nav_elem, 'ToRole', context=f"{owner}.{name}")
            ends = associations.get(relationship)
            if ends is None or to_role not in ends:
                raise ParseError(
                    f"Navigation property '{owner}.{name}' refers to unknown association end '{relationship}/{to_role}'",
                    kind=ParseErrorKind.STRUCTURE, element='NavigationProperty', attribute='Relationship')
            target, multiplicity = ends[to_role]
            nav_type = f"Collection({target})" if multiplicity == '*' else target
            nullable = multiplicity != '1'
        elif nav_type is None:
            raise ParseError.missing_attribute('NavigationProperty', 'Type', context=f"{owner}.{name}")

        constraints = tuple(
            ReferentialConstraint(
                property_name=self._required(rc, 'Property', context=f"{owner}.{name}"),
                referenced_property=self._required(rc, 'ReferencedProperty', context=f"{owner}.{name}"),
            )
            for rc in nav_elem.xpath('./edm:ReferentialConstraint', namespaces=ns)
        )
        on_delete = nav_elem.find('./edm:OnDelete', namespaces=ns)

        return NavigationProperty(
            name=name,
            type=nav_type,
            nullable=nullable,
            partner=nav_elem.get('Partner'),
            contains_target=_parse_bool(nav_elem, 'ContainsTarget', False),
            referential_constraints=constraints,
            on_delete=on_delete.get('Action') if on_delete is not None else None,
            description=self._get_description(nav_elem),
        )

    def _parse_entity_type(self, et_elem, namespace: str, ns, associations, qualify) -> EntityType:
        name = self._required(et_elem, 'Name', context=namespace)

        # Key and Property may appear in either order
        key_names = []
        key_elem = et_elem.find('./edm:Key', namespaces=ns)
        if key_elem is not None:
            key_names = [
                self._required(ref, 'Name', context=name)
                for ref in key_elem.findall('./edm:PropertyRef', namespaces=ns)
            ]

        properties = tuple(
            self._parse_property(prop_elem, key_names, owner=name)
            for prop_elem in et_elem.xpath('./edm:Property', namespaces=ns)
        )
        navigation = tuple(
            self._parse_navigation_property(nav_elem, ns, associations, qualify, owner=name)
            for nav_elem in et_elem.xpath('./edm:NavigationProperty', namespaces=ns)
        )

        return EntityType(
            name=name,
            namespace=namespace,
            base_type=qualify(et_elem.get('BaseType')) if et_elem.get('BaseType') else None,
            abstract=_parse_bool(et_elem, 'Abstract', False),
            open_type=_parse_bool(et_elem, 'OpenType', False),
            has_stream=_parse_bool(et_elem, 'HasStream', False)
            or _parse_bool(et_elem, f'{{{METADATA_NAMESPACE_V2}}}HasStream', False),
            properties=properties,
            navigation_properties=navigation,
            key_properties=tuple(key_names),
            description=self._get_description(et_elem),
        )

    def _parse_complex_type(self, ct_elem, namespace: str, ns, associations, qualify) -> ComplexType:
        name = self._required(ct_elem, 'Name', context=namespace)
        return ComplexType(
            name=name,
            namespace=namespace,
            base_type=qualify(ct_elem.get('BaseType')) if ct_elem.get('BaseType') else None,
            abstract=_parse_bool(ct_elem, 'Abstract', False),
            open_type=_parse_bool(ct_elem, 'OpenType', False),
            properties=tuple(
                self._parse_property(prop_elem, owner=name)
                for prop_elem in ct_elem.xpath('./edm:Property', namespaces=ns)
            ),
            navigation_properties=tuple(
                self._parse_navigation_property(nav_elem, ns, associations, qualify, owner=name)
                for nav_elem in ct_elem.xpath('./edm:NavigationProperty', namespaces=ns)
            ),
            description=self._get_description(ct_elem),
        )

    def _parse_function(self, fn_elem, namespace: str, ns) -> Function:
        name = self._required(fn_elem, 'Name', context=namespace)
        return_elem = fn_elem.find('./edm:ReturnType', namespaces=ns)
        return Function(
            name=name,
            namespace=namespace,
            is_action=_local_name(fn_elem) == 'Action',
            is_bound=_parse_bool(fn_elem, 'IsBound', False),
            parameters=tuple(
                self._parse_property(param_elem, owner=name)
                for param_elem in fn_elem.xpath('./edm:Parameter', namespaces=ns)
            ),
            return_type=return_elem.get('Type') if return_elem is not None else None,
            description=self._get_description(fn_elem),
        )

    def _parse_v2_function_import(self, fi_elem, name: str, ns) -> FunctionImport:
        http_method = fi_elem.get(f'{{{METADATA_NAMESPACE_V2}}}HttpMethod') or fi_elem.get('HttpMethod', 'GET')
        parameters = []
        for param_elem in fi_elem.xpath('./edm:Parameter', namespaces=ns):
            # SAP Mode attribute: only 'In' and 'InOut' are inputs
            mode = param_elem.get(f'{{{SAP_NAMESPACE}}}Mode') or param_elem.get('Mode', 'In')
            if mode.lower() not in ('in', 'inout'):
                continue
            parameters.append(self._parse_property(param_elem, owner=name))
        return FunctionImport(
            name=name,
            entity_set=fi_elem.get('EntitySet'),
            http_method=http_method.upper(),
            return_type=fi_elem.get('ReturnType'),
            parameters=tuple(parameters),
            description=self._get_description(fi_elem),
        )

    def _parse_entity_set(self, es_elem, ns, cls=EntitySet, type_attribute: str = 'EntityType') -> EntitySet:
        name = self._required(es_elem, 'Name')
        bindings = tuple(
            NavigationPropertyBinding(
                path=self._required(b, 'Path', context=name),
                target=self._required(b, 'Target', context=name),
            )
            for b in es_elem.xpath('./edm:NavigationPropertyBinding', namespaces=ns)
        )
        return cls(
            name=name,
            entity_type=self._required(es_elem, type_attribute, context=name),
            navigation_bindings=bindings,
            include_in_service_document=_parse_bool(es_elem, 'IncludeInServiceDocument', True),
            description=self._get_description(es_elem),
        )

    def _parse_container(self, ec_elem, namespace: str, ns, family: str) -> EntityContainer:
        name = self._required(ec_elem, 'Name', context=namespace)

        entity_sets = {}
        for es_elem in ec_elem.xpath('./edm:EntitySet', namespaces=ns):
            entity_set = self._parse_entity_set(es_elem, ns)
            entity_sets[entity_set.name] = entity_set

        singletons = {}
        for sg_elem in ec_elem.xpath('./edm:Singleton', namespaces=ns):
            singleton = self._parse_entity_set(sg_elem, ns, cls=Singleton, type_attribute='Type')
            singletons[singleton.name] = singleton

        function_imports = {}
        for fi_elem in ec_elem.xpath('./edm:FunctionImport', namespaces=ns):
            fi_name = self._required(fi_elem, 'Name', context=name)
            if family == 'v4':
                function_imports[fi_name] = FunctionImport(
                    name=fi_name,
                    function=self._required(fi_elem, 'Function', context=fi_name),
                    entity_set=fi_elem.get('EntitySet'),
                    include_in_service_document=_parse_bool(fi_elem, 'IncludeInServiceDocument', False),
                    description=self._get_description(fi_elem),
                )
            else:
                function_imports[fi_name] = self._parse_v2_function_import(fi_elem, fi_name, ns)

        action_imports = {}
        for ai_elem in ec_elem.xpath('./edm:ActionImport', namespaces=ns):
            ai_name = self._required(ai_elem, 'Name', context=name)
            action_imports[ai_name] = ActionImport(
                name=ai_name,
                action=self._required(ai_elem, 'Action', context=ai_name),
                entity_set=ai_elem.get('EntitySet'),
                description=self._get_description(ai_elem),
            )

        self._log_verbose(
            f"Container {namespace}.{name}: {len(entity_sets)} entity sets, {len(singletons)} singletons, "
            f"{len(function_imports)} function imports, {len(action_imports)} action imports"
        )
        return EntityContainer(
            name=name,
            namespace=namespace,
            extends=ec_elem.get('Extends'),
            entity_sets=entity_sets,
            singletons=singletons,
            function_imports=function_imports,
            action_imports=action_imports,
        )


class MetadataFetcher:
    """Retrieves the $metadata document of an OData service."""

    def __init__(self, service_url: str, auth: Auth = None, verbose: bool = False, timeout: float = 60):
        self.service_url = service_url.rstrip('/')
        self.metadata_url = f"{self.service_url}/$metadata"
        self.verbose = verbose
        self.timeout = timeout
        self.session = build_session(auth, accept='application/xml')
        self.session.headers.update({'OData-MaxVersion': '4.0', 'MaxDataServiceVersion': '3.0'})

    def _log_verbose(self, message: str):
        """Prints message to stderr only if verbose mode is enabled."""
        if self.verbose:
            timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
            print(f"[{timestamp} Fetcher VERBOSE] {message}", file=sys.stderr)

    def fetch(self) -> bytes:
        """Fetch the raw metadata document. Raises ExecutionError."""
        self._log_verbose(f"Fetching metadata from {self.metadata_url}...")
        try:
            response = self.session.get(self.metadata_url, timeout=self.timeout)
        except requests.exceptions.RequestException as req_err:
            raise ExecutionError(f"Could not fetch metadata: {req_err}",
                                 kind=ExecutionErrorKind.NETWORK) from req_err

        if not response.ok:
            if response.status_code in (401, 403):
                print("ERROR: Authentication might be required or incorrect. Check credentials.", file=sys.stderr)
            raise ExecutionError(
                f"Could not fetch metadata ({response.status_code} {response.reason})",
                kind=ExecutionErrorKind.HTTP,
                status_code=response.status_code,
                error_body=response.text[:500] if response.text else None,
            )
        self._log_verbose(f"Metadata fetched successfully ({len(response.content)} bytes).")
        return response.content
