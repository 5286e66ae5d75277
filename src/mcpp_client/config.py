"""Configuration settings for the MCPP client."""

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerConfig(BaseModel):
    """One configured MCPP server endpoint.

    Attributes:
        url: JSON-RPC endpoint URL
        description: Human readable description
    """

    url: str
    description: str = ""


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with MCPP_ prefix.
    Complex values are given as JSON.

    Examples:
        >>> settings = Settings(servers={"crm": {"url": "http://localhost:8000/mcp"}})
        >>> settings.default_server_key()
        'crm'
    """

    model_config = SettingsConfigDict(env_prefix="MCPP_")

    # Servers, e.g. MCPP_SERVERS='{"crm": {"url": "http://localhost:8000/mcp"}}'
    servers: dict[str, ServerConfig] = {}

    # Identity stamped into usage contexts
    host_id: str = "mcpp-python-client"

    # Transport
    request_timeout_seconds: float = 30.0
    transport_retries: int = 1

    # Consent
    remember_consent_minutes: int | None = None

    log_level: str = "INFO"

    def default_server_key(self) -> str | None:
        """Get the fallback server key (lexicographically first).

        Returns:
            First server key in sorted order, or None if no servers configured
        """
        if not self.servers:
            return None
        return sorted(self.servers)[0]
