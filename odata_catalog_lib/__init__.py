"""
OData Catalog Library - metadata parsing, operation catalog synthesis and
invocation for exposing OData services as MCP tools.
"""

from .errors import (
    ConfigurationError,
    ExecutionError,
    ExecutionErrorKind,
    ODataCatalogError,
    ParseError,
    ParseErrorKind,
    SynthesisError,
    ValidationError
)
from .models import (
    Catalog,
    EntitySet,
    EntityType,
    Model,
    OperationDescriptor,
    OperationKind,
    Property
)
from .metadata_parser import MetadataFetcher, MetadataParser
from .naming import NamingConvention
from .profile import SynthesisProfile
from .synthesizer import CatalogSynthesizer
from .executor import InvocationExecutor, InvocationResult
from .catalog_cache import CatalogCache, CatalogLoader
from .config import BridgeConfig
from .bridge import ODataMCPBridge

__all__ = [
    'ConfigurationError',
    'ExecutionError',
    'ExecutionErrorKind',
    'ODataCatalogError',
    'ParseError',
    'ParseErrorKind',
    'SynthesisError',
    'ValidationError',
    'Catalog',
    'EntitySet',
    'EntityType',
    'Model',
    'OperationDescriptor',
    'OperationKind',
    'Property',
    'MetadataFetcher',
    'MetadataParser',
    'NamingConvention',
    'SynthesisProfile',
    'CatalogSynthesizer',
    'InvocationExecutor',
    'InvocationResult',
    'CatalogCache',
    'CatalogLoader',
    'BridgeConfig',
    'ODataMCPBridge'
]
