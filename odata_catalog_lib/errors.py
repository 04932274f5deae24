"""
Error taxonomy for metadata parsing, catalog synthesis and invocation.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ODataCatalogError(ValueError):
    """Base class for every error raised by the library."""

    kind_name = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        """Structured form used in tool error responses."""
        return {"kind": self.kind_name, "message": self.message}


class ParseErrorKind(str, Enum):
    MALFORMED = "malformed"
    MISSING_ATTRIBUTE = "missing_attribute"
    INVALID_VALUE = "invalid_value"
    STRUCTURE = "structure"


class ParseError(ODataCatalogError):
    """The metadata document could not be turned into a model."""

    kind_name = "parse_error"

    def __init__(self, message: str, kind: ParseErrorKind = ParseErrorKind.STRUCTURE,
                 element: Optional[str] = None, attribute: Optional[str] = None):
        super().__init__(message)
        self.kind = kind
        self.element = element
        self.attribute = attribute

    @classmethod
    def missing_attribute(cls, element: str, attribute: str, context: Optional[str] = None) -> 'ParseError':
        where = f" ({context})" if context else ""
        return cls(
            f"Element '{element}'{where} is missing required attribute '{attribute}'",
            kind=ParseErrorKind.MISSING_ATTRIBUTE,
            element=element,
            attribute=attribute,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["parse_kind"] = self.kind.value
        if self.element:
            data["element"] = self.element
        if self.attribute:
            data["attribute"] = self.attribute
        return data


class SynthesisError(ODataCatalogError):
    """The operation catalog could not be built from a model."""

    kind_name = "synthesis_error"

    def __init__(self, message: str, entity: Optional[str] = None):
        super().__init__(message)
        self.entity = entity


class ValidationError(ODataCatalogError):
    """Caller-supplied parameters do not satisfy an operation's schema."""

    kind_name = "validation_error"

    def __init__(self, message: str, parameter: Optional[str] = None):
        super().__init__(message)
        self.parameter = parameter

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.parameter:
            data["parameter"] = self.parameter
        return data


class ExecutionErrorKind(str, Enum):
    HTTP = "http"
    NETWORK = "network"
    MALFORMED_RESPONSE = "malformed_response"
    CANCELLED = "cancelled"


class ExecutionError(ODataCatalogError):
    """An invocation against the remote service did not succeed."""

    kind_name = "execution_error"

    def __init__(self, message: str, kind: ExecutionErrorKind = ExecutionErrorKind.HTTP,
                 status_code: Optional[int] = None, error_body: Any = None):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code
        self.error_body = error_body

    @property
    def cancelled(self) -> bool:
        return self.kind == ExecutionErrorKind.CANCELLED

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["execution_kind"] = self.kind.value
        if self.status_code is not None:
            data["status_code"] = self.status_code
        if self.error_body is not None:
            data["error_body"] = self.error_body
        return data


class ConfigurationError(ODataCatalogError):
    """Required configuration is missing or inconsistent."""

    kind_name = "configuration_error"
