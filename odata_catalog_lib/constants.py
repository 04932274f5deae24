"""
Constants used throughout the OData catalog library.
"""

# Envelope namespaces, keyed by protocol family
EDMX_NAMESPACES = {
    'http://docs.oasis-open.org/odata/ns/edmx': 'v4',
    'http://schemas.microsoft.com/ado/2007/06/edmx': 'v2',
}

# Schema namespaces (CSDL 1.0 through 4.0)
EDM_NAMESPACES = {
    'http://docs.oasis-open.org/odata/ns/edm',
    'http://schemas.microsoft.com/ado/2006/04/edm',
    'http://schemas.microsoft.com/ado/2007/05/edm',
    'http://schemas.microsoft.com/ado/2008/01/edm',
    'http://schemas.microsoft.com/ado/2008/09/edm',
    'http://schemas.microsoft.com/ado/2009/11/edm',
}

METADATA_NAMESPACE_V2 = 'http://schemas.microsoft.com/ado/2007/08/dataservices/metadata'
SAP_NAMESPACE = 'http://www.sap.com/Protocols/SAPData'

# Sentinel attribute values meaning "no constraint"
UNBOUNDED_MAX_LENGTH = {'max'}
VARIABLE_SCALE = {'variable', 'floating'}

INTEGER_TYPES = {'Edm.Int16', 'Edm.Int32', 'Edm.Int64', 'Edm.Byte', 'Edm.SByte'}
NUMBER_TYPES = {'Edm.Decimal', 'Edm.Double', 'Edm.Single'}
DATETIME_TYPES = {'Edm.DateTime', 'Edm.DateTimeOffset'}
TEMPORAL_TYPES = DATETIME_TYPES | {'Edm.Date', 'Edm.TimeOfDay', 'Edm.Time', 'Edm.Duration'}
BINARY_TYPES = {'Edm.Binary', 'Edm.Stream'}

# Types an $orderby may reasonably use; strings only when short
SORTABLE_TYPES = INTEGER_TYPES | NUMBER_TYPES | DATETIME_TYPES | {'Edm.Boolean', 'Edm.Guid', 'Edm.Date'}
MAX_SORTABLE_STRING_LENGTH = 255

# MCP tool names are limited to 64 characters
MAX_TOOL_NAME_LENGTH = 64

USER_AGENT = 'OData-Catalog-MCP/1.0'
