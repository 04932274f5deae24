"""
Bridge configuration.
"""

from typing import Dict, Literal, Optional, Tuple, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import ConfigurationError
from .profile import SynthesisProfile


def normalize_service_url(url: Optional[str]) -> str:
    """Canonical service identity: trimmed, no trailing slash, no '$metadata' suffix."""
    if not url or not url.strip():
        raise ConfigurationError("OData service URL not provided")
    normalized = url.strip()
    if normalized.endswith('/$metadata'):
        normalized = normalized[:-len('/$metadata')]
    normalized = normalized.rstrip('/')
    if not normalized.lower().startswith(('http://', 'https://')):
        raise ConfigurationError(f"OData service URL must start with http:// or https://: {url}")
    return normalized


def parse_http_addr(http_addr: str) -> Tuple[str, int]:
    """Split 'host:port' or ':port' into (host, port); an empty host binds all interfaces."""
    addr_parts = http_addr.rsplit(":", 1)
    try:
        if len(addr_parts) == 2:
            return addr_parts[0] or "0.0.0.0", int(addr_parts[1])
        return "0.0.0.0", int(http_addr)
    except ValueError:
        raise ConfigurationError(f"Invalid HTTP address: {http_addr}") from None


class BridgeConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    service_url: str
    auth: Optional[Union[Tuple[str, str], Dict[str, str]]] = None
    verbose: bool = False
    profile: SynthesisProfile = Field(default_factory=SynthesisProfile)
    cache_ttl: float = 300
    request_timeout: float = 60
    response_metadata: bool = False
    transport: Literal["stdio", "http", "sse"] = "stdio"
    http_host: str = "0.0.0.0"
    http_port: int = 8080
    mcp_name: str = "odata-catalog-mcp"

    @field_validator('service_url')
    @classmethod
    def _normalize_url(cls, value: str) -> str:
        return normalize_service_url(value)

    @property
    def auth_summary(self) -> str:
        if isinstance(self.auth, tuple):
            return f"Basic (user: {self.auth[0]})"
        if isinstance(self.auth, dict):
            return f"Cookie ({len(self.auth)} cookies)"
        return "None (anonymous)"
