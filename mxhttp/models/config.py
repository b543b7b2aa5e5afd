"""
Pydantic model for client configuration.
Every transport-level setting is validated once, at client construction.
"""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from yarl import URL

from mxhttp import __version__

DEFAULT_USER_AGENT = f"mxhttp/{__version__}"
DEFAULT_TIMEOUT = 120.0


class ClientConfig(BaseModel):
    """A validated, immutable configuration for a Client and its transport."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True, extra="forbid")

    # Timeouts (seconds)
    timeout: float = DEFAULT_TIMEOUT
    connect_timeout: Optional[float] = None

    # Redirects
    follow_redirects: bool = True
    max_redirects: int = 10

    # Proxy
    proxy: Optional[str] = None
    trust_env: bool = False

    # TLS
    verify: bool = True
    root_certs: list[str] = Field(default_factory=list)
    client_cert: Optional[str] = None
    client_key: Optional[str] = None

    # Session
    use_cookies: bool = True
    user_agent: str = DEFAULT_USER_AGENT
    headers: dict[str, str] = Field(default_factory=dict)

    # Connection pool
    max_connections: int = 100
    max_connections_per_host: int = 0

    # Retry defaults, applied when a request has no policy of its own
    retry_max_attempts: int = 1
    retry_min_wait: float = 1.0
    retry_max_wait: float = 30.0

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Timeout must be a positive number of seconds.")
        return v

    @field_validator("connect_timeout")
    @classmethod
    def validate_connect_timeout(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("Connect timeout must be a positive number of seconds.")
        return v

    @field_validator("max_redirects", "max_connections_per_host")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Value cannot be negative.")
        return v

    @field_validator("max_connections")
    @classmethod
    def validate_max_connections(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Max connections must be at least 1.")
        return v

    @field_validator("proxy")
    @classmethod
    def validate_proxy(cls, v: Optional[str]) -> Optional[str]:
        """Ensures the proxy is an absolute http(s) URL."""
        if not v:
            return None
        try:
            url = URL(v)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid proxy URL '{v}': {e}") from e
        if url.scheme not in ("http", "https") or not url.host:
            raise ValueError(f"Proxy must be an absolute http(s) URL, got: '{v}'")
        return v

    @field_validator("root_certs")
    @classmethod
    def validate_root_certs(cls, v: list[str]) -> list[str]:
        paths = [str(Path(pem).expanduser()) for pem in v]
        for pem, path in zip(v, paths):
            if not Path(path).is_file():
                raise ValueError(f"Root certificate file not found: '{pem}'")
        return paths

    @field_validator("client_cert", "client_key")
    @classmethod
    def expand_client_paths(cls, v: Optional[str]) -> Optional[str]:
        return str(Path(v).expanduser()) if v else None

    @field_validator("retry_min_wait", "retry_max_wait")
    @classmethod
    def validate_wait(cls, v: float) -> float:
        if v < 0:
            raise ValueError("Retry wait times cannot be negative.")
        return v

    @model_validator(mode="after")
    def validate_client_certificate(self) -> "ClientConfig":
        """A client key is meaningless without its certificate."""
        if self.client_key and not self.client_cert:
            raise ValueError("'client_key' requires 'client_cert'.")
        for path in (self.client_cert, self.client_key):
            if path and not Path(path).is_file():
                raise ValueError(f"Client certificate file not found: '{path}'")
        return self

    @model_validator(mode="after")
    def validate_retry_window(self) -> "ClientConfig":
        if self.retry_max_wait < self.retry_min_wait:
            raise ValueError("'retry_max_wait' cannot be lower than 'retry_min_wait'.")
        return self

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that may appear in the INI file."""
        return set(cls.model_fields)
